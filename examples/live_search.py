# pyright: reportUnusedFunction=false
"""
Live Search Demo
================
Keystrokes come in through an EventSource, get combined with an "in stock"
toggle and each combination is turned into a catalog request.
"""

import asyncio

import httpx

import cascade as cs
from cascade.http import HttpClient

CATALOG = ["cascade", "castle", "cassette", "catalog", "cobalt"]
IN_STOCK = {"castle", "catalog"}


def catalog(request: httpx.Request) -> httpx.Response:
	query = request.url.params.get("q", "")
	stock_only = request.url.params.get("stock") == "1"
	items = [
		name
		for name in CATALOG
		if name.startswith(query) and (not stock_only or name in IN_STOCK)
	]
	return httpx.Response(200, json=items)


async def main():
	with cs.Dispatcher(cs.defer_on_loop):
		transport = httpx.AsyncClient(
			base_url="http://catalog", transport=httpx.MockTransport(catalog)
		)
		http = HttpClient(client=transport)
		keystrokes = cs.EventSource(lambda event: event["target"]["value"], name="query")
		stock_only = cs.Stream(name="stock_only")

		results = cs.whenever(keystrokes.stream, stock_only).pipe(
			lambda args: http.get("/search", params={"q": args[0], "stock": int(args[1])})
		)
		results.listen(
			lambda response: print(response.url.params["q"], "->", response.json()),
			lambda error: print("search failed:", error),
		)

		stock_only.update(False)
		for text in ("c", "ca", "cas"):
			keystrokes.emit({"target": {"value": text}})
			await asyncio.sleep(0.01)
		stock_only.update(True)
		await asyncio.sleep(0.05)

		keystrokes.close()
		await transport.aclose()


if __name__ == "__main__":
	asyncio.run(main())
