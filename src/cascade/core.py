from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Generator, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Literal, TypeVar

from cascade.errors import DoubleResolutionError, StreamEndedError, UncaughtError
from cascade.scheduling import Dispatcher, get_dispatcher

T = TypeVar("T")
U = TypeVar("U")

logger = logging.getLogger(__name__)


class ResolutionState(Enum):
	PENDING = "pending"
	FULFILLED = "fulfilled"
	REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
	value: T


@dataclass(frozen=True, slots=True)
class Err:
	error: Any


Outcome = Ok[Any] | Err

# value: then(on_value, on_error?)     error: catch_error / error_then
# pipe: pipe(fn)                       error_pipe: error_pipe(fn)
# mirror: copy every outcome            filter: forward values passing a predicate
# tap: call back without deriving a node
ListenerKind = Literal["value", "error", "pipe", "error_pipe", "mirror", "filter", "tap"]


@dataclass(eq=False, slots=True)
class Listener:
	"""Edge from a parent Node to the Node its outcomes drive."""

	target: "Node[Any] | None"
	kind: ListenerKind
	on_value: Callable[[Any], Any] | None = None
	on_error: Callable[[Any], Any] | None = None
	# Only edges the parent created for its own derived nodes can be detached
	detachable: bool = True


@dataclass(frozen=True, slots=True)
class DispatchUnit:
	node: "Node[Any]"
	listeners: tuple[Listener, ...]
	outcome: Outcome


@dataclass(frozen=True, slots=True)
class DispatchResult:
	"""What the Dispatcher must surface after a unit was delivered."""

	uncaught: UncaughtError | None = None
	# Exceptions raised by listeners that had no target to reject
	failures: tuple[Exception, ...] = ()


class Node(Generic[T]):
	"""Shared state machine behind Promise and Stream.

	A one-shot Node settles at most once. A repeatable Node accepts any number
	of updates and flushes them one dispatch unit at a time, in order.

	Each resolve/reject enqueues one DispatchUnit on the dispatcher holding the
	listeners registered at that moment. Listeners attached while the unit is
	still in flight join that unit. Listeners attached once the Node has
	settled and is idle get the current outcome replayed synchronously.
	"""

	one_shot: bool
	name: str | None
	uncaught: UncaughtError | None
	_dispatcher: Dispatcher
	_state: ResolutionState
	_value: T | None
	_error: Any
	_has_value: bool
	_resolved: bool
	_errored: bool
	_in_flight: bool
	_delivering: bool
	_listeners: list[Listener]
	_queued_updates: deque[Outcome]

	def __init__(
		self,
		*,
		one_shot: bool,
		name: str | None = None,
		dispatcher: Dispatcher | None = None,
	) -> None:
		self.one_shot = one_shot
		self.name = name
		self.uncaught = None
		self._dispatcher = dispatcher if dispatcher is not None else get_dispatcher()
		self._state = ResolutionState.PENDING
		self._value = None
		self._error = None
		self._has_value = False
		self._resolved = False
		self._errored = False
		self._in_flight = False
		self._delivering = False
		self._listeners = []
		self._queued_updates = deque()

	def __repr__(self) -> str:
		label = f" {self.name!r}" if self.name else ""
		return f"<{type(self).__name__}{label} {self._state.value}>"

	def __await__(self) -> Generator[Any, None, T]:
		from cascade.adapters import to_future

		return to_future(self).__await__()

	# --- Introspection ---

	@property
	def state(self) -> ResolutionState:
		return self._state

	@property
	def value(self) -> T | None:
		"""Last delivered value, retained for replay."""
		return self._value

	@property
	def error(self) -> Any:
		"""Last delivered rejection payload."""
		return self._error

	@property
	def dispatcher(self) -> Dispatcher:
		return self._dispatcher

	@property
	def listeners(self) -> tuple[Listener, ...]:
		return tuple(self._listeners)

	def is_resolved(self) -> bool:
		"""True as soon as resolve/reject has been called, before any dispatch."""
		return self._resolved

	def is_pending(self) -> bool:
		"""True while dispatch work for this Node is outstanding."""
		return self._in_flight or self._delivering or bool(self._queued_updates)

	def is_fulfilled(self) -> bool:
		return self._state is ResolutionState.FULFILLED

	def is_rejected(self) -> bool:
		return self._state is ResolutionState.REJECTED

	def is_errored(self) -> bool:
		"""True if a rejection has ever been delivered by this Node."""
		return self._errored

	def is_error_handled(self) -> bool:
		for listener in self._listeners:
			if listener.kind in ("error", "error_pipe"):
				return True
			if listener.kind in ("value", "tap") and listener.on_error is not None:
				return True
		return False

	def is_linked(self, child: "Node[Any]") -> bool:
		return any(listener.target is child for listener in self._listeners)

	# --- Mutators ---

	def resolve(self, value: T) -> None:
		self._accept(Ok(value))

	def reject(self, error: Any) -> None:
		self._accept(Err(error))

	def _accept(self, outcome: Outcome) -> None:
		if self.one_shot:
			if self._resolved:
				raise DoubleResolutionError(self)
			self._resolved = True
			self._start(outcome)
			return
		self._check_open()
		self._resolved = True
		if self.is_pending():
			self._queued_updates.append(outcome)
		else:
			self._start(outcome)

	def _check_open(self) -> None: ...

	def _is_closed(self) -> bool:
		return False

	def _start(self, outcome: Outcome) -> None:
		self._in_flight = True
		self._state = ResolutionState.PENDING
		self._dispatcher.enqueue(DispatchUnit(self, tuple(self._listeners), outcome))

	def _dispatch(self, unit: DispatchUnit) -> DispatchResult:
		"""Commit the unit's outcome and deliver it. Called by the Dispatcher."""
		snapshot = unit.listeners
		targets = snapshot + tuple(
			listener for listener in self._listeners if listener not in snapshot
		)
		outcome = unit.outcome
		if isinstance(outcome, Ok):
			self._value = outcome.value
			self._has_value = True
			self._state = ResolutionState.FULFILLED
		else:
			self._error = outcome.error
			self._errored = True
			self._state = ResolutionState.REJECTED
		self._in_flight = False

		handled = False
		failures: list[Exception] = []
		self._delivering = True
		try:
			for listener in targets:
				try:
					handled = self._deliver(listener, outcome) or handled
				except Exception as exc:
					# The rest of the unit is still delivered in this tick
					handled = True
					failures.append(exc)
		finally:
			self._delivering = False
			self._advance()

		if isinstance(outcome, Err) and not handled:
			self.uncaught = UncaughtError(self, outcome.error)
			return DispatchResult(self.uncaught, tuple(failures))
		return DispatchResult(failures=tuple(failures))

	def _advance(self) -> None:
		if self._queued_updates:
			self._start(self._queued_updates.popleft())

	# --- Listener graph ---

	def _link(self, listener: Listener) -> Listener:
		self._listeners.append(listener)
		# Settled and idle: replay now instead of waiting for a tick
		if not self._in_flight and self._state is not ResolutionState.PENDING:
			if self._state is ResolutionState.FULFILLED:
				self._deliver(listener, Ok(self._value))
			else:
				self._deliver(listener, Err(self._error))
		return listener

	def _unlink(self, listener: Listener) -> bool:
		try:
			self._listeners.remove(listener)
		except ValueError:
			return False
		return True

	def _deliver(self, listener: Listener, outcome: Outcome) -> bool:
		"""Hand `outcome` to one listener.

		Returns False when a rejection was neither handled nor forwarded.
		"""
		target = listener.target
		kind = listener.kind

		if target is not None and target._is_closed():
			# An ended Stream accepts nothing more, drop the edge
			self._unlink(listener)
			return False

		if kind == "tap":
			callback = listener.on_value if isinstance(outcome, Ok) else listener.on_error
			payload = outcome.value if isinstance(outcome, Ok) else outcome.error
			if callback is None:
				if target is None:
					return isinstance(outcome, Ok)
				target._accept(outcome)
				return True
			try:
				callback(payload)
			except Exception as exc:
				if target is None:
					raise
				target._accept(Err(exc))
			return True

		assert target is not None, f"{kind} listener without a target"

		if isinstance(outcome, Ok):
			if kind == "value":
				target._settle_with(listener.on_value, outcome.value)
			elif kind == "pipe":
				target._follow(listener.on_value, outcome.value)
			elif kind == "filter":
				try:
					keep = listener.on_value(outcome.value)  # pyright: ignore[reportOptionalCall]
				except Exception as exc:
					target._accept(Err(exc))
					return True
				if keep:
					target._accept(outcome)
			else:
				target._accept(outcome)
		else:
			if kind == "value" and listener.on_error is not None:
				target._settle_with(listener.on_error, outcome.error)
			elif kind == "error":
				target._settle_with(listener.on_error, outcome.error)
			elif kind == "error_pipe":
				target._follow(listener.on_error, outcome.error)
			else:
				target._accept(outcome)

		if kind == "mirror" and target.one_shot:
			self._unlink(listener)
		return True

	def _settle_with(self, fn: Callable[[Any], Any] | None, arg: Any) -> None:
		assert fn is not None
		try:
			result = fn(arg)
		except Exception as exc:
			self._accept(Err(exc))
			return
		self._accept(Ok(result))

	def _follow(self, fn: Callable[[Any], Any] | None, arg: Any) -> None:
		assert fn is not None
		try:
			source = fn(arg)
		except Exception as exc:
			self._accept(Err(exc))
			return
		if not isinstance(source, Node):
			self._accept(
				Err(TypeError(f"Expected a Promise or Stream, got {type(source).__name__}"))
			)
			return
		source._link(Listener(self, "mirror", detachable=False))

	def _derive(self, name: str | None = None) -> "Node[Any]":
		if self.one_shot:
			return Promise(name=name, dispatcher=self._dispatcher)
		return Stream(name=name, dispatcher=self._dispatcher)

	# --- Composition ---

	def then(
		self,
		on_value: Callable[[T], U],
		on_error: Callable[[Any], U] | None = None,
	) -> "Node[U]":
		"""Derive a Node resolved with `on_value`'s return value.

		If `on_error` is given it converts rejections into values. Otherwise
		rejections pass through to the derived Node unchanged. Exceptions raised
		by either callback reject the derived Node.
		"""
		child = self._derive()
		self._link(Listener(child, "value", on_value, on_error))
		return child

	def pipe(self, fn: "Callable[[T], Node[U]]") -> "Node[U]":
		"""Derive a Node that mirrors the Node returned by `fn`."""
		child = self._derive()
		self._link(Listener(child, "pipe", on_value=fn))
		return child

	def catch_error(self, on_error: Callable[[Any], T]) -> "Node[T]":
		"""Derive a Node fulfilled with `on_error`'s return value on rejection.

		Values pass through untouched.
		"""
		child = self._derive()
		self._link(Listener(child, "error", on_error=on_error))
		return child

	def error_then(self, on_error: Callable[[Any], T]) -> "Node[T]":
		"""Same as `catch_error`, for chains that map an error back into a value."""
		return self.catch_error(on_error)

	def error_pipe(self, fn: "Callable[[Any], Node[T]]") -> "Node[T]":
		"""On rejection, mirror the Node returned by `fn` instead."""
		child = self._derive()
		self._link(Listener(child, "error_pipe", on_error=fn))
		return child

	def listen(
		self,
		on_value: Callable[[T], Any] | None,
		on_error: Callable[[Any], Any] | None,
		*,
		target: "Node[Any] | None" = None,
	) -> Listener:
		"""Call back on each outcome without deriving a Node.

		Exceptions raised by the callbacks reject `target` when one is given.
		Otherwise the dispatcher raises them once the rest of the unit has been
		delivered. A rejection reaching a listener without `on_error` or
		`target` counts as uncaught. Remove with `unlisten`.
		"""
		return self._link(Listener(target, "tap", on_value, on_error, detachable=False))

	def unlisten(self, listener: Listener) -> bool:
		return self._unlink(listener)


class Promise(Node[T]):
	"""One-shot Node: resolves or rejects at most once."""

	def __init__(self, name: str | None = None, *, dispatcher: Dispatcher | None = None):
		super().__init__(one_shot=True, name=name, dispatcher=dispatcher)

	@classmethod
	def resolved(cls, value: T, *, dispatcher: Dispatcher | None = None) -> "Promise[T]":
		promise: Promise[T] = cls(dispatcher=dispatcher)
		promise.resolve(value)
		return promise

	@classmethod
	def rejected(cls, error: Any, *, dispatcher: Dispatcher | None = None) -> "Promise[T]":
		promise: Promise[T] = cls(dispatcher=dispatcher)
		promise.reject(error)
		return promise

	@staticmethod
	def when(*sources: Node[Any]) -> "Promise[tuple[Any, ...]]":
		from cascade.combinators import when

		return when(*sources)


class Stream(Node[T]):
	"""Repeatable Node: every update is flushed in its own dispatch unit."""

	_ended: bool
	_end_requested: bool
	_end_promise: "Promise[T | None] | None"

	def __init__(self, name: str | None = None, *, dispatcher: Dispatcher | None = None):
		super().__init__(one_shot=False, name=name, dispatcher=dispatcher)
		self._ended = False
		self._end_requested = False
		self._end_promise = None

	@classmethod
	def from_iterable(
		cls, values: Iterable[T], *, dispatcher: Dispatcher | None = None
	) -> "Stream[T]":
		stream: Stream[T] = cls(dispatcher=dispatcher)
		for value in values:
			stream.update(value)
		stream.end()
		return stream

	@staticmethod
	def whenever(*sources: Node[Any]) -> "Stream[tuple[Any, ...]]":
		from cascade.combinators import whenever

		return whenever(*sources)

	def update(self, value: T) -> None:
		self.resolve(value)

	def _check_open(self) -> None:
		if self._is_closed():
			raise StreamEndedError(self)

	def _is_closed(self) -> bool:
		return self._ended or self._end_requested

	def _advance(self) -> None:
		super()._advance()
		if self._end_requested and not self.is_pending():
			self._finish_end()

	# --- Detachment ---

	def detach_stream(self, child: Node[Any]) -> bool:
		"""Stop dispatching to `child`, a Node this Stream derived itself.

		Units enqueued before the call still reach `child`. Returns False if
		`child` is not a direct, detachable child.
		"""
		kept = [
			listener
			for listener in self._listeners
			if not (listener.target is child and listener.detachable)
		]
		removed = len(kept) != len(self._listeners)
		self._listeners = kept
		return removed

	# --- Derived streams ---

	def first(self) -> Promise[T]:
		promise: Promise[T] = Promise(dispatcher=self._dispatcher)
		self._link(Listener(promise, "mirror"))
		return promise

	def filter(self, predicate: Callable[[T], bool]) -> "Stream[T]":
		child: Stream[T] = Stream(dispatcher=self._dispatcher)
		self._link(Listener(child, "filter", on_value=predicate))
		return child

	def merge(self, other: "Stream[T]") -> "Stream[T]":
		child: Stream[T] = Stream(dispatcher=self._dispatcher)
		self._link(Listener(child, "mirror"))
		other._link(Listener(child, "mirror"))
		return child

	def concat(self, other: "Stream[T]") -> "Stream[T]":
		"""Forward this Stream's updates, then `other`'s once this one ends."""
		child: Stream[T] = Stream(dispatcher=self._dispatcher)
		self._link(Listener(child, "mirror"))

		def _switch(_: Any) -> None:
			other._link(Listener(child, "mirror"))
			other.end_then(lambda _: child.end())

		self.end_then(_switch)
		return child

	# --- Ending ---

	def is_ended(self) -> bool:
		return self._ended

	@property
	def end_promise(self) -> "Promise[T | None]":
		"""Resolves with the last value (or None) once the Stream has ended."""
		if self._end_promise is None:
			self._end_promise = Promise(dispatcher=self._dispatcher)
			if self._ended:
				self._end_promise.resolve(self._value if self._has_value else None)
		return self._end_promise

	def end(self) -> "Stream[T]":
		"""End the Stream once in-flight and queued updates have flushed.

		Drops every listener. Further updates raise StreamEndedError.
		"""
		if self._ended or self._end_requested:
			return self
		if self.is_pending():
			self._end_requested = True
		else:
			self._finish_end()
		return self

	def end_then(self, fn: Callable[[T | None], U]) -> "Node[U]":
		return self.end_promise.then(fn)

	def _finish_end(self) -> None:
		self._ended = True
		self._end_requested = False
		self._listeners = []
		if self._end_promise is not None:
			self._end_promise.resolve(self._value if self._has_value else None)
		logger.debug("%r ended", self)


__all__ = [
	"DispatchResult",
	"DispatchUnit",
	"Err",
	"Listener",
	"ListenerKind",
	"Node",
	"Ok",
	"Outcome",
	"Promise",
	"ResolutionState",
	"Stream",
]
