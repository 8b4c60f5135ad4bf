"""
Generator-based chaining sugar over `then`.

	@chained
	def total(a: Promise[int], b: Promise[int]):
		x = yield a
		y = yield b
		return x + y

	total(p1, p2)  # -> Promise resolving with x + y

Each `yield` waits for the first outcome of the yielded Promise or Stream.
A rejection is thrown into the generator at the `yield`, so it can be handled
with an ordinary try/except.
"""

from __future__ import annotations

import functools
from collections.abc import Callable, Generator
from typing import Any, ParamSpec, TypeVar

from cascade.core import Err, Node, Ok, Outcome, Promise, Stream
from cascade.errors import RejectedValueError

P = ParamSpec("P")
R = TypeVar("R")

ChainFn = Callable[P, Generator[Node[Any], Any, R]]


def chained(fn: ChainFn[P, R]) -> Callable[P, Promise[R]]:
	@functools.wraps(fn)
	def wrapper(*args: P.args, **kwargs: P.kwargs) -> Promise[R]:
		result: Promise[R] = Promise(name=fn.__name__)
		generator = fn(*args, **kwargs)
		_step(generator, result, Ok(None))
		return result

	return wrapper


def _step(
	generator: Generator[Node[Any], Any, Any], result: Promise[Any], outcome: Outcome
) -> None:
	try:
		if isinstance(outcome, Ok):
			node = generator.send(outcome.value)
		else:
			error = outcome.error
			if not isinstance(error, BaseException):
				error = RejectedValueError(result, error)
			node = generator.throw(error)
	except StopIteration as stop:
		result.resolve(stop.value)
		return
	except Exception as exc:
		result.reject(exc)
		return

	if not isinstance(node, Node):
		generator.close()
		result.reject(TypeError(f"Can only yield a Promise or Stream, got {type(node).__name__}"))
		return

	source = node.first() if isinstance(node, Stream) else node
	source.then(
		lambda value: _step(generator, result, Ok(value)),
		lambda error: _step(generator, result, Err(error)),
	)


__all__ = ["chained"]
