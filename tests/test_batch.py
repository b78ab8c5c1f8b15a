import asyncio

import pytest

from mcfetch.batch import fetch_all, run_bounded, successes
from mcfetch.errors import ValidationError


@pytest.mark.parametrize("limit", [1, 2, 3, 7, 50])
def test_cardinality_matches_input_despite_failures(limit):
    items = list(range(17))

    async def task(item):
        await asyncio.sleep(0)
        if item % 3 == 0:
            raise RuntimeError(f"boom {item}")
        return item * 10

    results = asyncio.run(run_bounded(items, limit, task, label="test"))
    assert len(results) == len(items)
    assert sorted(r.item for r in results) == items
    failed = [r for r in results if not r.ok]
    assert sorted(r.item for r in failed) == [i for i in items if i % 3 == 0]
    assert all(isinstance(r.error, RuntimeError) for r in failed)
    assert sorted(successes(results)) == [i * 10 for i in items if i % 3]


def test_peak_concurrency_never_exceeds_limit():
    state = {"active": 0, "peak": 0}

    async def task(item):
        state["active"] += 1
        state["peak"] = max(state["peak"], state["active"])
        await asyncio.sleep(0.01)
        state["active"] -= 1
        return item

    asyncio.run(run_bounded(range(23), 4, task))
    assert state["peak"] == 4


def test_next_batch_waits_for_whole_previous_batch():
    finished = []
    started = []

    async def task(item):
        started.append((item, len(finished)))
        # The first item of each batch is the slowest.
        await asyncio.sleep(0.03 if item % 3 == 0 else 0.001)
        finished.append(item)
        return item

    asyncio.run(run_bounded(range(9), 3, task))
    for item, finished_before_start in started:
        assert finished_before_start == (item // 3) * 3


def test_empty_input_returns_empty():
    async def task(item):
        return item

    assert asyncio.run(run_bounded([], 5, task)) == []


def test_limit_below_one_is_rejected():
    async def task(item):
        return item

    with pytest.raises(ValidationError):
        asyncio.run(run_bounded([1], 0, task))


def test_fetch_all_alias():
    assert fetch_all is run_bounded
