from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
	from cascade.core import Node

logger = logging.getLogger(__name__)


class CascadeError(RuntimeError):
	pass


class DoubleResolutionError(CascadeError):
	"""Raised when a one-shot Promise is resolved or rejected a second time."""

	def __init__(self, node: "Node[Any]", message: str | None = None) -> None:
		self.node = node
		super().__init__(message or f"{node!r} has already been resolved")


class StreamEndedError(CascadeError):
	"""Raised when updating a Stream after `end()` has taken effect."""

	def __init__(self, node: "Node[Any]") -> None:
		self.node = node
		super().__init__(f"{node!r} has ended and accepts no further updates")


class RejectedValueError(CascadeError):
	"""Wraps a rejection payload that is not an exception so it can be raised."""

	def __init__(self, node: "Node[Any]", error: Any) -> None:
		self.node = node
		self.error = error
		super().__init__(f"{node!r} rejected with {error!r}")


class NoEventLoopError(CascadeError):
	"""Raised by a defer hook that has no event loop to schedule onto."""


class UncaughtError(CascadeError):
	"""A rejection reached a Node with no listener to receive it.

	`error` is the rejection payload, `node` the Node it stopped at.
	"""

	def __init__(self, node: "Node[Any]", error: Any) -> None:
		self.node = node
		self.error = error
		super().__init__(f"Uncaught rejection in {node!r}: {error!r}")
		if isinstance(error, BaseException):
			self.__cause__ = error


class CombinatorError(CascadeError):
	"""Rejection payload of a `when`/`whenever` combinator.

	`index` is the position of the rejecting source in the argument list and
	`error` its original rejection payload.
	"""

	def __init__(self, index: int, error: Any) -> None:
		self.index = index
		self.error = error
		super().__init__(f"Source {index} rejected: {error!r}")
		if isinstance(error, BaseException):
			self.__cause__ = error


UncaughtPolicyName = Literal["raise", "log"]
UncaughtHandler = Callable[[UncaughtError], None]
UncaughtPolicy = UncaughtPolicyName | UncaughtHandler


def report_uncaught(uncaught: UncaughtError, policy: UncaughtPolicy) -> None:
	"""Surface an uncaught rejection according to `policy`.

	- "raise": re-raise the UncaughtError to whoever drives the dispatcher
	- "log": log at ERROR level with the original traceback attached
	- callable: hand the error to the host
	"""
	if policy == "raise":
		raise uncaught
	if policy == "log":
		error = uncaught.error
		logger.error(
			"Uncaught rejection in %r: %r",
			uncaught.node,
			error,
			exc_info=error if isinstance(error, BaseException) else None,
		)
		return
	if callable(policy):
		policy(uncaught)
		return
	raise ValueError(f"Unknown uncaught error policy: {policy!r}")


__all__ = [
	"CascadeError",
	"CombinatorError",
	"DoubleResolutionError",
	"NoEventLoopError",
	"RejectedValueError",
	"StreamEndedError",
	"UncaughtError",
	"UncaughtPolicy",
	"report_uncaught",
]
