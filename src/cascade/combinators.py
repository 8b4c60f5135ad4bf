from __future__ import annotations

from functools import partial
from typing import Any

from cascade.core import Listener, Node, Promise, Stream
from cascade.errors import CombinatorError

MISSING: Any = object()


class Combination:
	"""Latest value seen from each source of one combinator node."""

	__slots__: tuple[str, ...] = ("sources", "latest", "node", "edges")

	sources: tuple[Node[Any], ...]
	latest: list[Any]
	node: Node[tuple[Any, ...]]
	edges: list[tuple[Node[Any], Listener]]

	def __init__(self, sources: tuple[Node[Any], ...], node: Node[tuple[Any, ...]]):
		self.sources = sources
		self.latest = [MISSING] * len(sources)
		self.node = node
		self.edges = []

	def complete(self) -> bool:
		return all(value is not MISSING for value in self.latest)

	def snapshot(self) -> tuple[Any, ...]:
		return tuple(self.latest)

	def detach(self) -> None:
		"""Remove the combinator's listeners from every source."""
		edges, self.edges = self.edges, []
		for source, listener in edges:
			source.unlisten(listener)


def _check_sources(fn: str, sources: tuple[Any, ...]) -> None:
	for index, source in enumerate(sources):
		if not isinstance(source, Node):
			raise TypeError(
				f"{fn}() argument {index} must be a Promise or Stream, got {type(source).__name__}"
			)


def when(*sources: Node[Any]) -> Promise[tuple[Any, ...]]:
	"""Promise of every source's first value, in argument order.

	Resolves once all sources have fulfilled. The first source rejection rejects
	the result with a CombinatorError. Once settled, the Promise stops listening
	to its sources.
	"""
	_check_sources("when", sources)
	if not sources:
		promise: Promise[tuple[Any, ...]] = Promise(name="when")
		promise.resolve(())
		return promise
	promise = Promise(name="when", dispatcher=sources[0].dispatcher)
	combination = Combination(sources, promise)
	for index, source in enumerate(sources):
		listener = source.listen(
			partial(_when_value, combination, index),
			partial(_when_error, combination, index),
			target=promise,
		)
		combination.edges.append((source, listener))
	# Settled sources replay while listening, so the Promise may already be done
	if promise.is_resolved():
		combination.detach()
	return promise


def _when_value(combination: Combination, index: int, value: Any) -> None:
	if combination.node.is_resolved():
		return
	if combination.latest[index] is MISSING:
		combination.latest[index] = value
	if combination.complete():
		combination.node.resolve(combination.snapshot())
		combination.detach()


def _when_error(combination: Combination, index: int, error: Any) -> None:
	if combination.node.is_resolved():
		return
	combination.node.reject(CombinatorError(index, error))
	combination.detach()


def whenever(*sources: Node[Any]) -> Stream[tuple[Any, ...]]:
	"""Stream of the latest value of every source.

	Emits on each source update once every source has produced a value. Source
	rejections are forwarded as CombinatorError without ending the Stream. The
	sources drop their edges to it once it has ended.
	"""
	_check_sources("whenever", sources)
	if not sources:
		stream: Stream[tuple[Any, ...]] = Stream(name="whenever")
		stream.update(())
		return stream
	stream = Stream(name="whenever", dispatcher=sources[0].dispatcher)
	combination = Combination(sources, stream)
	for index, source in enumerate(sources):
		listener = source.listen(
			partial(_whenever_value, combination, index),
			partial(_whenever_error, index, stream),
			target=stream,
		)
		combination.edges.append((source, listener))
	return stream


def _whenever_value(combination: Combination, index: int, value: Any) -> None:
	combination.latest[index] = value
	if combination.complete():
		combination.node.resolve(combination.snapshot())


def _whenever_error(index: int, stream: Stream[Any], error: Any) -> None:
	stream.reject(CombinatorError(index, error))


__all__ = ["Combination", "when", "whenever"]
