import asyncio
from collections.abc import Callable

import pytest
from cascade import (
	EventSource,
	Promise,
	RejectedValueError,
	every,
	from_async_iterable,
	from_awaitable,
	later,
	to_future,
)
from cascade.adapters import TaskRegistry, tasks
from cascade.scheduling import Dispatcher, defer_on_loop
from cascade.test_helpers import manual_dispatcher, wait_for


@pytest.mark.asyncio
async def test_from_awaitable_resolves_with_result():
	async def compute() -> int:
		await asyncio.sleep(0)
		return 42

	with Dispatcher(defer_on_loop):
		p = from_awaitable(compute(), name="compute")
		assert await p == 42
		assert p.is_fulfilled()


@pytest.mark.asyncio
async def test_from_awaitable_rejects_with_raised_exception():
	async def fail() -> int:
		raise ValueError("boom")

	with Dispatcher(defer_on_loop):
		p = from_awaitable(fail())
		with pytest.raises(ValueError, match="boom"):
			await p
		assert p.is_rejected()


@pytest.mark.asyncio
async def test_cancelled_task_rejects_promise():
	started = asyncio.Event()

	async def forever() -> None:
		started.set()
		await asyncio.sleep(10)

	with Dispatcher(defer_on_loop):
		p = from_awaitable(forever(), name="forever")
		errors: list[BaseException] = []
		p.catch_error(errors.append)
		await started.wait()
		tasks.cancel_all()
		assert await wait_for(lambda: len(errors) == 1)

	assert isinstance(errors[0], asyncio.CancelledError)


@pytest.mark.asyncio
async def test_from_async_iterable_emits_items_then_ends():
	async def numbers():
		for i in range(3):
			yield i

	with Dispatcher(defer_on_loop):
		s = from_async_iterable(numbers())
		seen: list[int] = []
		s.listen(seen.append, None)
		last = await s.end_promise

	assert seen == [0, 1, 2]
	assert last == 2
	assert s.is_ended()


@pytest.mark.asyncio
async def test_from_async_iterable_rejects_on_source_failure():
	async def broken():
		yield 1
		raise ValueError("source")

	with Dispatcher(defer_on_loop):
		s = from_async_iterable(broken())
		values: list[int] = []
		errors: list[BaseException] = []
		s.listen(values.append, errors.append)
		await s.end_promise

	assert values == [1]
	assert len(errors) == 1
	assert isinstance(errors[0], ValueError)


@pytest.mark.asyncio
async def test_ending_the_stream_stops_reading_the_source():
	pulled = 0

	async def numbers():
		nonlocal pulled
		while True:
			pulled += 1
			yield pulled
			await asyncio.sleep(0)

	with Dispatcher(defer_on_loop):
		s = from_async_iterable(numbers())
		first = await s.first()
		s.end()
		count = pulled
		await asyncio.sleep(0.01)

	assert first == 1
	assert pulled <= count + 1


@pytest.mark.asyncio
async def test_to_future_wraps_non_exception_rejection():
	d, _ = manual_dispatcher()
	with d:
		p = Promise()
		future = to_future(p)
		p.reject("nope")
		d.flush()

	assert future.done()
	error = future.exception()
	assert isinstance(error, RejectedValueError)
	assert error.error == "nope"
	assert error.node is p


@pytest.mark.asyncio
async def test_to_future_on_settled_promise_detaches_immediately():
	d, _ = manual_dispatcher()
	with d:
		p = Promise.resolved(5)
		d.flush()
		future = to_future(p)

	assert future.result() == 5
	assert p.listeners == ()


@pytest.mark.asyncio
async def test_later_resolves_after_delay():
	with Dispatcher(defer_on_loop):
		assert await later(0.01, "done") == "done"


@pytest.mark.asyncio
async def test_every_counts_until_ended():
	with Dispatcher(defer_on_loop):
		ticks = every(0.001)
		seen: list[int] = []
		ticks.listen(seen.append, None)
		assert await wait_for(lambda: len(seen) >= 3)
		ticks.end()
		await ticks.end_promise
		count = len(seen)
		await asyncio.sleep(0.01)

	assert seen[:3] == [1, 2, 3]
	assert len(seen) == count


def _subscriber(handlers: list[Callable[[object], None]]):
	def subscribe(emit: Callable[[object], None]) -> Callable[[], None]:
		handlers.append(emit)
		return lambda: handlers.remove(emit)

	return subscribe


def test_event_source_translates_payloads_and_unsubscribes_on_close(
	dispatcher: Dispatcher,
):
	handlers: list[Callable[[object], None]] = []
	seen: list[str] = []
	with EventSource(lambda event: event["value"], name="input") as source:
		source.bind(_subscriber(handlers))
		source.stream.listen(seen.append, None)
		handlers[0]({"value": "a"})
		handlers[0]({"value": "b"})
		dispatcher.flush()

	assert seen == ["a", "b"]
	assert handlers == []
	assert source.closed
	assert source.stream.is_ended()


def test_event_source_rejects_when_translation_fails(dispatcher: Dispatcher):
	source: EventSource[str] = EventSource(lambda event: event["value"])
	errors: list[BaseException] = []
	source.stream.listen(None, errors.append)
	source.emit({})
	dispatcher.flush()
	assert len(errors) == 1
	assert isinstance(errors[0], KeyError)


def test_event_source_drops_events_after_close(dispatcher: Dispatcher):
	source: EventSource[int] = EventSource()
	source.close()
	source.emit(1)
	dispatcher.flush()
	assert source.stream.value is None
	with pytest.raises(RuntimeError):
		source.bind(_subscriber([]))


@pytest.mark.asyncio
async def test_task_registry_discards_finished_tasks():
	registry = TaskRegistry(name="test")

	async def work() -> int:
		await asyncio.sleep(0)
		return 1

	task = registry.create(work(), name="test.task")
	assert len(registry) == 1
	assert await task == 1
	assert await wait_for(lambda: len(registry) == 0, timeout=0.2)


@pytest.mark.asyncio
async def test_task_registry_cancel_all_cancels_and_clears():
	registry = TaskRegistry(name="test")
	started = asyncio.Event()

	async def work() -> None:
		started.set()
		await asyncio.sleep(10)

	task = registry.create(work())
	assert await wait_for(lambda: started.is_set(), timeout=0.2)

	registry.cancel_all()
	assert len(registry) == 0
	assert await wait_for(lambda: task.done(), timeout=0.2)
	assert task.cancelled()
