import asyncio
from contextlib import asynccontextmanager

import pytest
from redis.exceptions import LockError

from servicezones.config import Settings
from servicezones.services import aggregation
from servicezones.services.aggregation import AggregateRefresher
from servicezones.services.assignment import AreaAssigner
from servicezones.services.store_memory import InMemoryBoundaryStore

from factories import build_world, shop_seed, store_factory


async def seeded_store(store):
    await build_world(store)
    await AreaAssigner(store).assign_batch([
        shop_seed("Quick Fix", 30.1, 31.1, "central-zone"),
        shop_seed("Auto Spa", 30.2, 31.2, "central-zone"),
        shop_seed("Suez Tyres", 30.2, 31.7, "east-district"),
    ])
    return store


async def counts_by_code(store):
    boundaries = await store.list_boundaries()
    stats = await store.get_stats([b.id for b in boundaries])
    return {b.official_code: stats[b.id].shop_count for b in boundaries if b.id in stats}


@pytest.mark.anyio
async def test_refresh_counts_shops_per_boundary(store):
    await seeded_store(store)

    report = await AggregateRefresher(store_factory(store)).run_once("test")

    assert report.boundaries == 7
    assert report.created == 7
    assert report.failed == {}
    assert await counts_by_code(store) == {
        "EG01": 2, "EG02": 1,
        "EG0101": 2, "EG0102": 0, "EG0103": 0, "EG0104": 0, "EG0201": 1,
    }


@pytest.mark.anyio
async def test_second_refresh_leaves_unchanged_counts_alone(store):
    await seeded_store(store)
    refresher = AggregateRefresher(store_factory(store))
    await refresher.run_once("test")
    await AreaAssigner(store).assign_batch([shop_seed("Late Garage", 30.3, 31.3, "giza-governorate")])

    report = await refresher.run_once("test")

    assert report.updated == 2
    assert report.unchanged == 5
    assert (await counts_by_code(store))["EG0104"] == 1
    assert refresher.last_report is report


@pytest.mark.anyio
async def test_overlapping_runs_are_skipped(store):
    await seeded_store(store)
    entered = asyncio.Event()
    gate = asyncio.Event()

    @asynccontextmanager
    async def slow_factory():
        entered.set()
        await gate.wait()
        yield store

    refresher = AggregateRefresher(slow_factory)
    first = asyncio.create_task(refresher.run_once("timer"))
    await entered.wait()

    assert refresher.is_running
    assert await refresher.run_once("timer") is None
    assert await refresher.try_trigger("admin") is False

    gate.set()
    report = await first
    assert report is not None
    assert not refresher.is_running


@pytest.mark.anyio
async def test_triggered_run_completes_in_background(store):
    await seeded_store(store)
    refresher = AggregateRefresher(store_factory(store))

    assert await refresher.try_trigger("admin") is True
    assert refresher.is_running
    while refresher.is_running:
        await asyncio.sleep(0)

    assert refresher.last_report.trigger == "admin"
    assert (await counts_by_code(store))["EG01"] == 2


class FlakyStore(InMemoryBoundaryStore):
    def __init__(self, broken_code):
        super().__init__()
        self.broken_code = broken_code
        self.recovered = 0

    async def count_shops_in_boundary(self, boundary_id):
        boundary = await self.get_boundary(boundary_id)
        if boundary.official_code == self.broken_code:
            raise RuntimeError("geometry exploded")
        return await super().count_shops_in_boundary(boundary_id)

    async def recover(self):
        self.recovered += 1


@pytest.mark.anyio
async def test_one_failing_boundary_does_not_stop_the_run():
    store = await seeded_store(FlakyStore("EG0101"))

    report = await AggregateRefresher(store_factory(store)).run_once("test")

    broken = (await store.get_boundaries_by_codes(2, ["EG0101"]))["EG0101"]
    assert list(report.failed) == [broken.id]
    assert report.created == 6
    assert store.recovered == 1
    assert "EG0101" not in await counts_by_code(store)


@pytest.mark.anyio
async def test_transient_failure_is_retried(store):
    await seeded_store(store)
    calls = []

    @asynccontextmanager
    async def unreliable_factory():
        calls.append(1)
        if len(calls) == 1:
            raise OSError("connection reset")
        yield store

    report = await AggregateRefresher(unreliable_factory).run_once("test")

    assert len(calls) == 2
    assert report.created == 7


@pytest.mark.anyio
async def test_timer_loop_survives_a_failed_tick(store, monkeypatch):
    await seeded_store(store)
    monkeypatch.setattr(
        aggregation,
        "get_settings",
        lambda: Settings(AGGREGATION_INITIAL_DELAY_SECONDS=0, AGGREGATION_INTERVAL_SECONDS=0),
    )
    calls = []

    @asynccontextmanager
    async def breaks_once():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("store unavailable")
        yield store

    refresher = AggregateRefresher(breaks_once)
    refresher.start()
    for _ in range(200):
        if refresher.last_report is not None:
            break
        await asyncio.sleep(0)
    await refresher.stop()

    assert len(calls) >= 2
    assert refresher.last_report is not None
    assert refresher.last_report.trigger == "timer"
    assert (await counts_by_code(store))["EG01"] == 2


class FakeSharedLock:
    """Mimics a non-blocking Redis lock; ``state`` is what every worker sees."""

    def __init__(self, state, expire_before_release=False):
        self.state = state
        self.expire_before_release = expire_before_release

    async def acquire(self):
        if self.state["held"]:
            return False
        self.state["held"] = True
        self.state["acquired"] += 1
        return True

    async def release(self):
        self.state["held"] = False
        if self.expire_before_release:
            raise LockError("Cannot release an unlocked lock")


@pytest.mark.anyio
async def test_run_held_by_another_worker_is_skipped(store):
    await seeded_store(store)
    state = {"held": True, "acquired": 0}
    opened = []

    @asynccontextmanager
    async def tracking_factory():
        opened.append(1)
        yield store

    refresher = AggregateRefresher(tracking_factory, shared_lock_factory=lambda: FakeSharedLock(state))

    assert await refresher.run_once("timer") is None
    assert await refresher.try_trigger("admin") is False
    assert not refresher.is_running
    assert opened == []
    assert await counts_by_code(store) == {}


@pytest.mark.anyio
async def test_shared_lock_is_held_for_the_run_and_released(store):
    await seeded_store(store)
    state = {"held": False, "acquired": 0}
    seen_while_running = []

    @asynccontextmanager
    async def observing_factory():
        seen_while_running.append(state["held"])
        yield store

    refresher = AggregateRefresher(observing_factory, shared_lock_factory=lambda: FakeSharedLock(state))

    report = await refresher.run_once("timer")
    assert report.created == 7
    assert seen_while_running == [True]
    assert state == {"held": False, "acquired": 1}

    assert await refresher.try_trigger("admin") is True
    while refresher.is_running:
        await asyncio.sleep(0)
    assert state == {"held": False, "acquired": 2}


@pytest.mark.anyio
async def test_expired_shared_lock_does_not_lose_the_report(store):
    await seeded_store(store)
    state = {"held": False, "acquired": 0}
    refresher = AggregateRefresher(
        store_factory(store),
        shared_lock_factory=lambda: FakeSharedLock(state, expire_before_release=True),
    )

    report = await refresher.run_once("timer")

    assert report is not None
    assert report.created == 7
    assert not refresher.is_running
