"""Environment-driven defaults for the dispatcher.

Explicit constructor arguments always win over these values.
"""

import os
from typing import Literal, cast

ENV_CASCADE_DEFER = "CASCADE_DEFER"
ENV_CASCADE_UNCAUGHT = "CASCADE_UNCAUGHT"
ENV_CASCADE_MAX_ITERATIONS = "CASCADE_MAX_ITERATIONS"

DeferMode = Literal["loop", "manual"]
UncaughtMode = Literal["raise", "log"]

DEFAULT_MAX_ITERATIONS = 10000


class Env:
	@property
	def defer_mode(self) -> DeferMode:
		value = os.environ.get(ENV_CASCADE_DEFER, "loop").strip().lower()
		if value not in ("loop", "manual"):
			raise ValueError(
				f"Invalid {ENV_CASCADE_DEFER}={value!r}, expected 'loop' or 'manual'"
			)
		return cast(DeferMode, value)

	@property
	def uncaught_mode(self) -> UncaughtMode:
		value = os.environ.get(ENV_CASCADE_UNCAUGHT, "raise").strip().lower()
		if value not in ("raise", "log"):
			raise ValueError(
				f"Invalid {ENV_CASCADE_UNCAUGHT}={value!r}, expected 'raise' or 'log'"
			)
		return cast(UncaughtMode, value)

	@property
	def max_iterations(self) -> int:
		raw = os.environ.get(ENV_CASCADE_MAX_ITERATIONS)
		if not raw:
			return DEFAULT_MAX_ITERATIONS
		try:
			value = int(raw)
		except ValueError as exc:
			raise ValueError(
				f"Invalid {ENV_CASCADE_MAX_ITERATIONS}={raw!r}, expected an integer"
			) from exc
		if value <= 0:
			raise ValueError(f"{ENV_CASCADE_MAX_ITERATIONS} must be positive")
		return value


env = Env()

__all__ = [
	"DEFAULT_MAX_ITERATIONS",
	"ENV_CASCADE_DEFER",
	"ENV_CASCADE_MAX_ITERATIONS",
	"ENV_CASCADE_UNCAUGHT",
	"DeferMode",
	"Env",
	"UncaughtMode",
	"env",
]
