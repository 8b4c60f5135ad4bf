"""
Bridges between asyncio-style sources and Promise/Stream nodes.

Every adapter owns the translation from its native payload into node values,
and its own unsubscription. The nodes only ever see resolve/update/reject.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, Awaitable, Callable
from types import TracebackType
from typing import Any, Generic, Literal, TypeVar

from cascade.core import Node, Promise, Stream
from cascade.errors import RejectedValueError, StreamEndedError

T = TypeVar("T")

logger = logging.getLogger(__name__)


class TaskRegistry:
	"""Keeps adapter tasks alive until they finish."""

	_tasks: set[asyncio.Task[Any]]
	name: str | None

	def __init__(self, name: str | None = None) -> None:
		self._tasks = set()
		self.name = name

	def __len__(self) -> int:
		return len(self._tasks)

	def track(self, task: asyncio.Task[T]) -> asyncio.Task[T]:
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)
		return task

	def create(self, coroutine: Awaitable[T], *, name: str | None = None) -> asyncio.Task[T]:
		task = asyncio.ensure_future(coroutine)
		if name is not None:
			task.set_name(name)
		return self.track(task)

	def cancel_all(self) -> None:
		for task in list(self._tasks):
			if not task.done():
				task.cancel()
		self._tasks.clear()


tasks = TaskRegistry(name="cascade.adapters")


def from_awaitable(awaitable: Awaitable[T], *, name: str | None = None) -> Promise[T]:
	"""Run `awaitable` on the current loop and settle a Promise with its result.

	Cancelling the task rejects the Promise with the CancelledError.
	"""
	promise: Promise[T] = Promise(name=name)

	async def _run() -> None:
		try:
			value = await awaitable
		except asyncio.CancelledError as exc:
			promise.reject(exc)
			raise
		except Exception as exc:
			promise.reject(exc)
			return
		promise.resolve(value)

	tasks.create(_run(), name=name)
	return promise


def from_async_iterable(
	iterable: AsyncIterable[T], *, name: str | None = None
) -> Stream[T]:
	"""Feed each item of `iterable` into a Stream, ending it on exhaustion.

	An exception raised by the iterator rejects the Stream before it ends.
	"""
	stream: Stream[T] = Stream(name=name)

	async def _run() -> None:
		try:
			async for item in iterable:
				stream.update(item)
		except StreamEndedError:
			# Ended by its consumer, stop reading the source
			return
		except asyncio.CancelledError:
			stream.end()
			raise
		except Exception as exc:
			logger.debug("Async source for %r failed", stream, exc_info=exc)
			stream.reject(exc)
		stream.end()

	tasks.create(_run(), name=name)
	return stream


def to_future(node: Node[T]) -> asyncio.Future[T]:
	"""Future settled by the first outcome `node` delivers.

	Rejection payloads that are not exceptions are wrapped in RejectedValueError.
	"""
	loop = asyncio.get_running_loop()
	future: asyncio.Future[T] = loop.create_future()
	listener = None

	def _detach() -> None:
		if listener is not None:
			node.unlisten(listener)

	def _on_value(value: T) -> None:
		_detach()
		if not future.done():
			future.set_result(value)

	def _on_error(error: Any) -> None:
		_detach()
		if future.done():
			return
		if isinstance(error, BaseException):
			future.set_exception(error)
		else:
			future.set_exception(RejectedValueError(node, error))

	listener = node.listen(_on_value, _on_error)
	# A replay may already have settled the future while listen() ran
	if future.done():
		_detach()
	return future


def later(delay: float, value: T | None = None) -> Promise[T | None]:
	"""Promise resolved with `value` after `delay` seconds on the running loop."""
	promise: Promise[T | None] = Promise(name=f"later({delay})")
	loop = asyncio.get_running_loop()
	loop.call_later(delay, promise.resolve, value)
	return promise


def every(interval: float) -> Stream[int]:
	"""Stream of tick counts, one every `interval` seconds, until it is ended."""
	stream: Stream[int] = Stream(name=f"every({interval})")
	loop = asyncio.get_running_loop()
	count = 0
	handle: asyncio.TimerHandle | None = None

	def _tick() -> None:
		nonlocal count, handle
		count += 1
		try:
			stream.update(count)
		except StreamEndedError:
			return
		handle = loop.call_later(interval, _tick)

	def _cancel(_: Any) -> None:
		if handle is not None:
			handle.cancel()

	handle = loop.call_later(interval, _tick)
	stream.end_then(_cancel)
	return stream


Subscribe = Callable[[Callable[[Any], None]], Callable[[], None]]


class EventSource(Generic[T]):
	"""Adapter from a callback-style event source to a Stream.

	`bind(subscribe)` hands `emit` to the native source; `subscribe` must
	return a function that unsubscribes. `close()` unsubscribes everything and
	ends the Stream.

	Example:
		source = EventSource(lambda event: event["target"]["value"])
		source.bind(lambda emit: widget.on("change", emit))
		source.stream.then(print)
	"""

	stream: Stream[T]
	closed: bool
	_translate: Callable[[Any], T] | None
	_disposers: list[Callable[[], None]]

	def __init__(
		self, translate: Callable[[Any], T] | None = None, *, name: str | None = None
	) -> None:
		self.stream = Stream(name=name)
		self.closed = False
		self._translate = translate
		self._disposers = []

	def bind(self, subscribe: Subscribe) -> "EventSource[T]":
		if self.closed:
			raise RuntimeError("Cannot bind a closed EventSource")
		self._disposers.append(subscribe(self.emit))
		return self

	def emit(self, payload: Any) -> None:
		if self.closed:
			logger.debug("Dropping event emitted after close: %r", payload)
			return
		if self._translate is None:
			self.stream.update(payload)
			return
		try:
			value = self._translate(payload)
		except Exception as exc:
			self.stream.reject(exc)
			return
		self.stream.update(value)

	def close(self) -> None:
		if self.closed:
			return
		self.closed = True
		disposers, self._disposers = self._disposers, []
		for dispose in disposers:
			dispose()
		self.stream.end()

	def __enter__(self) -> "EventSource[T]":
		return self

	def __exit__(
		self,
		exc_type: type[BaseException] | None = None,
		exc_val: BaseException | None = None,
		exc_tb: TracebackType | None = None,
	) -> Literal[False]:
		self.close()
		return False


__all__ = [
	"EventSource",
	"TaskRegistry",
	"every",
	"from_async_iterable",
	"from_awaitable",
	"later",
	"tasks",
	"to_future",
]
