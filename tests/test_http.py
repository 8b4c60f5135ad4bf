import httpx
import pytest
from cascade.http import HttpClient, HttpStatusError
from cascade.scheduling import Dispatcher, defer_on_loop


def _handler(request: httpx.Request) -> httpx.Response:
	if request.url.path == "/items":
		return httpx.Response(200, json=[{"id": 1}])
	if request.url.path == "/echo":
		return httpx.Response(201, content=request.content)
	return httpx.Response(404, text="missing")


def _transport_client() -> httpx.AsyncClient:
	return httpx.AsyncClient(base_url="http://test", transport=httpx.MockTransport(_handler))


@pytest.mark.asyncio
async def test_get_resolves_with_response():
	with Dispatcher(defer_on_loop):
		async with _transport_client() as http, HttpClient(client=http) as client:
			ids = client.get("/items").then(lambda response: [item["id"] for item in response.json()])
			assert await ids == [1]


@pytest.mark.asyncio
async def test_post_sends_body():
	with Dispatcher(defer_on_loop):
		async with _transport_client() as http, HttpClient(client=http) as client:
			response = await client.post("/echo", content=b"hello")

	assert response.status_code == 201
	assert response.content == b"hello"


@pytest.mark.asyncio
async def test_error_status_rejects_with_http_status_error():
	with Dispatcher(defer_on_loop):
		async with _transport_client() as http, HttpClient(client=http) as client:
			statuses: list[int] = []
			handled = client.get("/nope").catch_error(lambda e: statuses.append(e.status_code))
			await handled

	assert statuses == [404]


@pytest.mark.asyncio
async def test_error_status_passes_through_when_not_raising():
	with Dispatcher(defer_on_loop):
		async with (
			_transport_client() as http,
			HttpClient(client=http, raise_for_status=False) as client,
		):
			response = await client.delete("/nope")

	assert response.status_code == 404


@pytest.mark.asyncio
async def test_transport_failure_rejects():
	def refuse(request: httpx.Request) -> httpx.Response:
		raise httpx.ConnectError("refused", request=request)

	with Dispatcher(defer_on_loop):
		async with httpx.AsyncClient(
			base_url="http://test", transport=httpx.MockTransport(refuse)
		) as http:
			client = HttpClient(client=http)
			with pytest.raises(httpx.ConnectError):
				await client.put("/items", json={})


@pytest.mark.asyncio
async def test_aclose_leaves_caller_client_open():
	async with _transport_client() as http:
		async with HttpClient(client=http):
			pass
		assert not http.is_closed


@pytest.mark.asyncio
async def test_aclose_closes_client_it_created():
	client = HttpClient(base_url="http://example.test")
	created = client.client
	await client.aclose()
	assert created.is_closed


def test_lazy_client_uses_base_url_and_timeout():
	client = HttpClient(base_url="http://example.test", timeout=5.0)
	assert client.client.base_url.host == "example.test"
	assert client.client.timeout == httpx.Timeout(5.0)


def test_status_error_message_names_request():
	request = httpx.Request("GET", "http://test/nope")
	error = HttpStatusError(httpx.Response(500, request=request))
	assert error.status_code == 500
	assert "GET http://test/nope returned 500" in str(error)
