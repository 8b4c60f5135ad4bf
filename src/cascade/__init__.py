from .adapters import (
	EventSource,
	every,
	from_async_iterable,
	from_awaitable,
	later,
	to_future,
)
from .chain import chained
from .combinators import when, whenever
from .core import (
	Err,
	Listener,
	Node,
	Ok,
	Outcome,
	Promise,
	ResolutionState,
	Stream,
)
from .env import env
from .errors import (
	CascadeError,
	CombinatorError,
	DoubleResolutionError,
	NoEventLoopError,
	RejectedValueError,
	StreamEndedError,
	UncaughtError,
)
from .scheduling import (
	Dispatcher,
	ManualDefer,
	defer_on_loop,
	flush,
	get_dispatcher,
	set_dispatcher,
)

__all__ = [
	"CascadeError",
	"CombinatorError",
	"Dispatcher",
	"DoubleResolutionError",
	"Err",
	"EventSource",
	"Listener",
	"ManualDefer",
	"NoEventLoopError",
	"Node",
	"Ok",
	"Outcome",
	"Promise",
	"RejectedValueError",
	"ResolutionState",
	"Stream",
	"StreamEndedError",
	"UncaughtError",
	"chained",
	"defer_on_loop",
	"env",
	"every",
	"flush",
	"from_async_iterable",
	"from_awaitable",
	"get_dispatcher",
	"later",
	"set_dispatcher",
	"to_future",
	"when",
	"whenever",
]
