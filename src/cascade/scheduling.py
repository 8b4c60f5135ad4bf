import asyncio
import logging
from collections import deque
from collections.abc import Callable
from contextvars import ContextVar, Token
from types import TracebackType
from typing import TYPE_CHECKING, Literal

from anyio import from_thread

from cascade.env import env
from cascade.errors import (
	NoEventLoopError,
	UncaughtError,
	UncaughtPolicy,
	report_uncaught,
)

if TYPE_CHECKING:
	from cascade.core import DispatchUnit

logger = logging.getLogger(__name__)

Defer = Callable[[Callable[[], None]], None]

# NOTE: the process-wide dispatcher lives at the bottom of the file


def _call_soon(callback: Callable[[], None]) -> None:
	asyncio.get_running_loop().call_soon(callback)


def defer_on_loop(callback: Callable[[], None]) -> None:
	"""Schedule `callback` for the next iteration of the running event loop.

	From an AnyIO worker thread the callback is handed to the loop that owns the
	thread. Raises NoEventLoopError when there is no loop at all.
	"""
	try:
		loop = asyncio.get_running_loop()
	except RuntimeError:
		pass
	else:
		loop.call_soon(callback)
		return

	try:
		from_thread.run_sync(_call_soon, callback)
	except RuntimeError as exc:
		raise NoEventLoopError("No running event loop to defer dispatch onto") from exc


class ManualDefer:
	"""Defer hook that holds tick callbacks until the host steps them.

	Gives tests a deterministic, synchronous scheduler.
	"""

	_callbacks: deque[Callable[[], None]]

	def __init__(self) -> None:
		self._callbacks = deque()

	def __call__(self, callback: Callable[[], None]) -> None:
		self._callbacks.append(callback)

	def __len__(self) -> int:
		return len(self._callbacks)

	def step(self) -> bool:
		if not self._callbacks:
			return False
		callback = self._callbacks.popleft()
		callback()
		return True

	def run(self, max_steps: int | None = None) -> int:
		steps = 0
		while self._callbacks and (max_steps is None or steps < max_steps):
			self.step()
			steps += 1
		return steps


class Dispatcher:
	"""FIFO of dispatch units, drained one unit per scheduling tick.

	All listeners of one unit fire inside the same tick. Successive units, even
	of the same Node, are spread over separate ticks so other work scheduled on
	the host loop gets to run in between.
	"""

	defer: Defer
	on_uncaught: UncaughtPolicy
	max_iterations: int
	uncaught: list[UncaughtError]
	_queue: "deque[DispatchUnit]"
	_scheduled: bool
	_token: "Token[Dispatcher] | None"

	def __init__(
		self,
		defer: Defer | None = None,
		*,
		on_uncaught: UncaughtPolicy | None = None,
		max_iterations: int | None = None,
	) -> None:
		if defer is None:
			defer = ManualDefer() if env.defer_mode == "manual" else defer_on_loop
		self.defer = defer
		self.on_uncaught = on_uncaught if on_uncaught is not None else env.uncaught_mode
		self.max_iterations = (
			max_iterations if max_iterations is not None else env.max_iterations
		)
		self.uncaught = []
		self._queue = deque()
		self._scheduled = False
		self._token = None

	def __len__(self) -> int:
		return len(self._queue)

	@property
	def idle(self) -> bool:
		return not self._queue

	def enqueue(self, unit: "DispatchUnit") -> None:
		self._queue.append(unit)
		self._schedule()

	def _schedule(self) -> None:
		if self._scheduled or not self._queue:
			return
		self._scheduled = True
		try:
			self.defer(self._on_tick)
		except NoEventLoopError:
			# Units stay queued until someone calls flush() or tick()
			self._scheduled = False
			logger.debug("No event loop available, %d unit(s) wait for flush()", len(self))

	def _on_tick(self) -> None:
		self._scheduled = False
		self.tick()

	def tick(self) -> bool:
		"""Dispatch a single unit. Returns False if the queue was empty.

		Exceptions raised by listener callbacks are re-raised here after every
		listener of the unit has run, grouped when there is more than one.
		"""
		if not self._queue:
			return False
		unit = self._queue.popleft()
		try:
			result = unit.node._dispatch(unit)  # pyright: ignore[reportPrivateUsage]
		finally:
			self._schedule()

		errors: list[Exception] = list(result.failures)
		if result.uncaught is not None:
			self.uncaught.append(result.uncaught)
			if self.on_uncaught == "raise":
				errors.insert(0, result.uncaught)
			else:
				report_uncaught(result.uncaught, self.on_uncaught)
		if len(errors) == 1:
			raise errors[0]
		if errors:
			raise ExceptionGroup(f"Dispatch of {unit.node!r} failed", errors)
		return True

	def flush(self, max_iterations: int | None = None) -> bool:
		"""Drain the queue synchronously.

		Stops after `max_iterations` units, which guards against update cycles
		that keep re-enqueueing forever. Returns True if the queue is empty.
		"""
		limit = max_iterations if max_iterations is not None else self.max_iterations
		iters = 0
		while self._queue and iters < limit:
			self.tick()
			iters += 1
		if self._queue:
			logger.warning(
				"Dispatcher stopped after %d iterations with %d unit(s) left. "
				"There is likely an update cycle between streams.",
				iters,
				len(self._queue),
			)
		return not self._queue

	def clear(self) -> None:
		if self._queue:
			logger.debug("Dropping %d queued dispatch unit(s)", len(self._queue))
		self._queue.clear()

	def __enter__(self) -> "Dispatcher":
		self._token = DISPATCHER.set(self)
		return self

	def __exit__(
		self,
		exc_type: type[BaseException] | None = None,
		exc_val: BaseException | None = None,
		exc_tb: TracebackType | None = None,
	) -> Literal[False]:
		if self._token is not None:
			DISPATCHER.reset(self._token)
			self._token = None
		return False


def get_dispatcher() -> Dispatcher:
	return DISPATCHER.get()


def set_dispatcher(dispatcher: Dispatcher) -> "Token[Dispatcher]":
	return DISPATCHER.set(dispatcher)


def flush(max_iterations: int | None = None) -> bool:
	return get_dispatcher().flush(max_iterations)


# --- Globals ---
DISPATCHER: ContextVar[Dispatcher] = ContextVar(
	"cascade_dispatcher", default=Dispatcher()
)

__all__ = [
	"DISPATCHER",
	"Defer",
	"Dispatcher",
	"ManualDefer",
	"defer_on_loop",
	"flush",
	"get_dispatcher",
	"set_dispatcher",
]
