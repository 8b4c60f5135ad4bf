import pytest
from cascade.scheduling import Dispatcher, ManualDefer


@pytest.fixture(autouse=True)
def dispatcher():
	# Ticks only run when a test calls tick()/flush() on the dispatcher
	with Dispatcher(ManualDefer(), on_uncaught="raise") as d:
		yield d
