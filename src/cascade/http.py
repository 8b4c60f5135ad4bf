"""
Request helper that exposes each HTTP call as a single-shot Promise.
"""

import logging
from types import TracebackType
from typing import Any, Literal

import httpx

from cascade.adapters import from_awaitable
from cascade.core import Node, Promise
from cascade.errors import CascadeError

logger = logging.getLogger(__name__)


class HttpStatusError(CascadeError):
	"""Rejection payload for responses with a 4xx/5xx status."""

	response: httpx.Response

	def __init__(self, response: httpx.Response) -> None:
		self.response = response
		super().__init__(
			f"{response.request.method} {response.request.url} returned {response.status_code}"
		)

	@property
	def status_code(self) -> int:
		return self.response.status_code


class HttpClient:
	"""
	Issues requests on an httpx.AsyncClient and settles one Promise per request.
	"""

	base_url: str
	timeout: float
	raise_for_status: bool
	_client: httpx.AsyncClient | None
	_owns_client: bool

	def __init__(
		self,
		*,
		base_url: str = "",
		timeout: float = 30.0,
		raise_for_status: bool = True,
		client: httpx.AsyncClient | None = None,
	) -> None:
		"""
		Args:
		    base_url: Prefix for relative request URLs
		    timeout: Request timeout in seconds, used when no client is passed
		    raise_for_status: Reject with HttpStatusError on 4xx/5xx responses
		    client: Existing client to send requests on. The caller keeps
		        ownership and closes it.
		"""
		self.base_url = base_url
		self.timeout = timeout
		self.raise_for_status = raise_for_status
		self._client = client
		self._owns_client = client is None

	@property
	def client(self) -> httpx.AsyncClient:
		"""Lazy initialization of HTTP client."""
		if self._client is None:
			self._client = httpx.AsyncClient(
				base_url=self.base_url,
				timeout=httpx.Timeout(self.timeout),
			)
			self._owns_client = True
		return self._client

	def request(self, method: str, url: str, **kwargs: Any) -> Promise[httpx.Response]:
		"""Send a request. Must be called with a running event loop."""
		logger.debug("%s %s", method, url)
		response: Node[httpx.Response] = from_awaitable(
			self.client.request(method, url, **kwargs), name=f"{method} {url}"
		)
		if not self.raise_for_status:
			return response  # pyright: ignore[reportReturnType]
		return response.then(_check_status)  # pyright: ignore[reportReturnType]

	def get(self, url: str, **kwargs: Any) -> Promise[httpx.Response]:
		return self.request("GET", url, **kwargs)

	def post(self, url: str, **kwargs: Any) -> Promise[httpx.Response]:
		return self.request("POST", url, **kwargs)

	def put(self, url: str, **kwargs: Any) -> Promise[httpx.Response]:
		return self.request("PUT", url, **kwargs)

	def delete(self, url: str, **kwargs: Any) -> Promise[httpx.Response]:
		return self.request("DELETE", url, **kwargs)

	async def aclose(self) -> None:
		"""Close the underlying client if this HttpClient created it."""
		if self._client is not None and self._owns_client:
			await self._client.aclose()
			self._client = None

	async def __aenter__(self) -> "HttpClient":
		return self

	async def __aexit__(
		self,
		exc_type: type[BaseException] | None = None,
		exc_val: BaseException | None = None,
		exc_tb: TracebackType | None = None,
	) -> Literal[False]:
		await self.aclose()
		return False


def _check_status(response: httpx.Response) -> httpx.Response:
	if response.is_error:
		raise HttpStatusError(response)
	return response


__all__ = ["HttpClient", "HttpStatusError"]
