"""
Checkout Flow Demo
==================
Runs independent lookups in parallel with `when`, then walks the dependent
steps with a `chained` generator. A declined card is handled with try/except
at the yield that produced it.
"""

import asyncio

import cascade as cs


async def fetch_price(sku: str) -> float:
	await asyncio.sleep(0.01)
	return {"book": 12.5, "pen": 1.5}[sku]


async def charge(card: str, amount: float) -> str:
	await asyncio.sleep(0.01)
	if card.endswith("0000"):
		raise ValueError(f"card {card} declined")
	return f"receipt for {amount:.2f}"


@cs.chained
def checkout(card: str, *skus: str):
	prices = yield cs.when(*(cs.from_awaitable(fetch_price(sku)) for sku in skus))
	total = sum(prices)
	try:
		receipt = yield cs.from_awaitable(charge(card, total))
	except ValueError as exc:
		return f"payment failed: {exc}"
	return receipt


async def main():
	with cs.Dispatcher(cs.defer_on_loop):
		print(await checkout("4242-4242", "book", "pen"))
		print(await checkout("4242-0000", "book"))


if __name__ == "__main__":
	asyncio.run(main())
