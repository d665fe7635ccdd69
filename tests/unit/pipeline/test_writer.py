import asyncio
from datetime import datetime
from decimal import Decimal

import pytest
from prometheus_client import REGISTRY
from redis.exceptions import ConnectionError as RedisConnectionError

from beacon.domain.models import ClassifiedHit, ResourceType, UpdateKind, UpdateRequest
from beacon.infrastructure.redis.repository import AggregateRepository
from beacon.pipeline.writer import PersistenceWriter
from shared.utils.retry import RetryPolicy

NO_WAIT = RetryPolicy(retries=3, base_delay=0.0, max_delay=0.0, jitter=0.0)
DAY = "2024-01-01"


def _hit(response_time, resource_type=ResourceType.MOVIE, resource_id=42, ts=""):
    return ClassifiedHit(
        resource_type=resource_type,
        resource_id=resource_id,
        url=f"/{resource_type.value}/{resource_id}.html",
        response_time=Decimal(response_time),
        client_timestamp=ts,
    )


def _sample(name, labels):
    return REGISTRY.get_sample_value(name, labels) or 0


@pytest.fixture
def repo(fake_redis):
    return AggregateRepository(fake_redis)


@pytest.fixture
def writer(repo, fixed_clock):
    return PersistenceWriter(repo, retry_policy=NO_WAIT, clock=fixed_clock)


async def _apply_both(writer, hit):
    for kind in (UpdateKind.AVG, UpdateKind.MAX):
        assert await writer.handle(UpdateRequest(kind=kind, hit=hit))


@pytest.mark.asyncio
async def test_two_hits_same_resource_and_day(writer, fake_redis):
    await _apply_both(writer, _hit("10.5"))
    assert await fake_redis.get(f"sum_day_{DAY}_movie42") == "10.5"
    assert await fake_redis.get("count_movie_42") == "1"
    assert await fake_redis.get("avg_movie_42") == "10.5"
    assert await fake_redis.get(f"max_day_{DAY}_movie42") == "10.5"

    await _apply_both(writer, _hit("20.0"))
    assert await fake_redis.get(f"sum_day_{DAY}_movie42") == "30.5"
    assert await fake_redis.get("count_movie_42") == "2"
    assert await fake_redis.get("avg_movie_42") == "15.25"
    assert await fake_redis.get(f"max_day_{DAY}_movie42") == "20.0"


@pytest.mark.asyncio
async def test_max_only_moves_up(writer, fake_redis):
    for value in ("5.0", "9.25", "7.0", "9.25"):
        await writer.handle(UpdateRequest(kind=UpdateKind.MAX, hit=_hit(value)))
    assert await fake_redis.get(f"max_day_{DAY}_movie42") == "9.25"


@pytest.mark.asyncio
async def test_sum_is_exact_decimal(writer, fake_redis):
    for _ in range(10):
        await writer.handle(UpdateRequest(kind=UpdateKind.AVG, hit=_hit("0.1")))
    assert await fake_redis.get(f"sum_day_{DAY}_movie42") == "1.0"
    assert await fake_redis.get("avg_movie_42") == "0.1"


@pytest.mark.asyncio
async def test_mean_independent_of_order(repo, fixed_clock, fake_redis):
    values = ["3.3", "1.1", "7.75", "2"]
    results = []
    for ordering in (values, list(reversed(values))):
        await fake_redis.flushall()
        w = PersistenceWriter(repo, retry_policy=NO_WAIT, clock=fixed_clock)
        for v in ordering:
            await w.handle(UpdateRequest(kind=UpdateKind.AVG, hit=_hit(v)))
        results.append(await fake_redis.get("avg_movie_42"))
    expected = sum(Decimal(v) for v in values) / 4
    assert results == [format(expected, "f")] * 2


@pytest.mark.asyncio
async def test_replayed_hit_counts_twice(writer, fake_redis):
    hit = _hit("4.5")
    await writer.handle(UpdateRequest(kind=UpdateKind.AVG, hit=hit))
    await writer.handle(UpdateRequest(kind=UpdateKind.AVG, hit=hit))
    assert await fake_redis.get("count_movie_42") == "2"
    assert await fake_redis.get(f"sum_day_{DAY}_movie42") == "9.0"


@pytest.mark.asyncio
async def test_lifetime_count_and_mean_span_days(repo, fake_redis):
    days = iter([datetime(2024, 1, 1, 12), datetime(2024, 1, 2, 12)])
    w = PersistenceWriter(repo, retry_policy=NO_WAIT, clock=lambda: next(days))
    await w.handle(UpdateRequest(kind=UpdateKind.AVG, hit=_hit("10")))
    await w.handle(UpdateRequest(kind=UpdateKind.AVG, hit=_hit("20")))

    assert await fake_redis.get("sum_day_2024-01-01_movie42") == "10"
    assert await fake_redis.get("sum_day_2024-01-02_movie42") == "20"
    assert await fake_redis.get("count_movie_42") == "2"
    assert await fake_redis.get("sum_movie_42") == "30"
    assert await fake_redis.get("avg_movie_42") == "15"


@pytest.mark.asyncio
async def test_day_scope_keeps_count_and_mean_per_day(repo, fixed_clock, fake_redis):
    w = PersistenceWriter(
        repo, aggregate_scope="day", retry_policy=NO_WAIT, clock=fixed_clock
    )
    await w.handle(UpdateRequest(kind=UpdateKind.AVG, hit=_hit("1.5")))
    await w.handle(UpdateRequest(kind=UpdateKind.AVG, hit=_hit("2.5")))

    assert await fake_redis.get(f"count_day_{DAY}_movie42") == "2"
    assert await fake_redis.get(f"avg_day_{DAY}_movie42") == "2.0"
    assert await fake_redis.exists("count_movie_42", "avg_movie_42") == 0


@pytest.mark.asyncio
async def test_event_time_bucketing_uses_client_timestamp(repo, fixed_clock, fake_redis):
    w = PersistenceWriter(
        repo, day_bucketing="event", retry_policy=NO_WAIT, clock=fixed_clock
    )
    ts = str(int(datetime(2023, 6, 15, 8, 0).timestamp()))
    await w.handle(UpdateRequest(kind=UpdateKind.MAX, hit=_hit("3", ts=ts)))
    assert await fake_redis.get("max_day_2023-06-15_movie42") == "3"


@pytest.mark.asyncio
async def test_event_time_falls_back_to_ingestion(repo, fixed_clock, fake_redis):
    before = _sample("beacon_event_time_fallbacks_total", {})
    w = PersistenceWriter(
        repo, day_bucketing="event", retry_policy=NO_WAIT, clock=fixed_clock
    )
    await w.handle(UpdateRequest(kind=UpdateKind.MAX, hit=_hit("3", ts="not-a-time")))
    assert await fake_redis.get(f"max_day_{DAY}_movie42") == "3"
    assert _sample("beacon_event_time_fallbacks_total", {}) == before + 1


@pytest.mark.asyncio
async def test_hour_granularity_changes_bucket(repo, fixed_clock, fake_redis):
    w = PersistenceWriter(repo, granularity="hour", retry_policy=NO_WAIT, clock=fixed_clock)
    await w.handle(UpdateRequest(kind=UpdateKind.MAX, hit=_hit("3")))
    assert await fake_redis.get("max_day_2024-01-01 12_movie42") == "3"


@pytest.mark.asyncio
async def test_retry_resumes_without_double_counting(writer, repo, fake_redis, monkeypatch):
    real_increment = repo.increment
    calls = {"n": 0}

    async def flaky_increment(key):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RedisConnectionError("connection reset")
        return await real_increment(key)

    monkeypatch.setattr(repo, "increment", flaky_increment)
    retries = _sample("beacon_store_retries_total", {"kind": "avg"})

    assert await writer.handle(UpdateRequest(kind=UpdateKind.AVG, hit=_hit("10.5")))
    assert await fake_redis.get(f"sum_day_{DAY}_movie42") == "10.5"
    assert await fake_redis.get("sum_movie_42") == "10.5"
    assert await fake_redis.get("count_movie_42") == "1"
    assert _sample("beacon_store_retries_total", {"kind": "avg"}) == retries + 1


@pytest.mark.asyncio
async def test_exhausted_retries_drop_update(writer, repo, monkeypatch, caplog):
    async def down(key, value):
        raise RedisConnectionError("down")

    monkeypatch.setattr(repo, "raise_max", down)
    failures = _sample("beacon_store_failures_total", {"kind": "max"})
    caplog.set_level("ERROR")

    assert not await writer.handle(UpdateRequest(kind=UpdateKind.MAX, hit=_hit("1")))
    assert _sample("beacon_store_failures_total", {"kind": "max"}) == failures + 1
    assert any(r.message == "store_update_failed" for r in caplog.records)


@pytest.mark.asyncio
async def test_corrupt_aggregate_is_not_retried(writer, fake_redis, caplog):
    await fake_redis.set(f"max_day_{DAY}_movie42", "garbage")
    caplog.set_level("ERROR")

    assert not await writer.handle(UpdateRequest(kind=UpdateKind.MAX, hit=_hit("1")))
    assert await fake_redis.get(f"max_day_{DAY}_movie42") == "garbage"
    assert any(r.message == "aggregate_corrupt" for r in caplog.records)


@pytest.mark.asyncio
async def test_run_drains_queue_then_exits(writer, fake_redis):
    queue: asyncio.Queue = asyncio.Queue()
    done = asyncio.Event()
    for value in ("1", "2", "3"):
        await queue.put(UpdateRequest(kind=UpdateKind.AVG, hit=_hit(value, ResourceType.HOME, 1)))
    done.set()

    assert await writer.run(queue, done, 0.01) == 3
    assert await fake_redis.get("count_home_1") == "3"
    assert await fake_redis.get("avg_home_1") == "2"
