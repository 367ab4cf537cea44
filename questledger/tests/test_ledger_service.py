"""
Functional tests for the ledger against a real database.

These tests run the ledger on a SQLite file through aiosqlite, focusing on:
- Idempotent recording and crediting, sequential and concurrent
- The summary recomputed in the same unit of work
- Read paths and reconciliation
- Mapping of storage failures
"""

import asyncio
import datetime
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from questledger.common.exceptions import InconsistentState, StorageUnavailable, ValidationError
from questledger.database.init_db import create_engine_for_url, create_schema, create_session_factory
from questledger.ledger.aggregator import Aggregator, apply_event, fold_events
from questledger.ledger.database_models import LearnerSummaryRecord
from questledger.ledger.event_store import EventStore
from questledger.ledger.gateway import RewardCreditingGateway
from questledger.ledger.models import (
    AlreadyCredited, CompletionEvent, CompletionOrigin, Credited, RecordOutcome
)
from questledger.ledger.query import ProgressQueryService
from questledger.ledger.service import LedgerService

TODAY = datetime.date(2026, 3, 10)


def completion(source_unit_id="q1", learner_id="learner-1", event_id=None, days_ago=0,
               origin="interactive", coins=10, xp=50, category="math", difficulty="easy",
               was_correct=True):
    day = TODAY - datetime.timedelta(days=days_ago)
    return CompletionEvent.create(
        event_id=event_id,
        learner_id=learner_id,
        source_unit_id=source_unit_id,
        title=f"Quest {source_unit_id}",
        category=category,
        difficulty=difficulty,
        was_correct=was_correct,
        coins_awarded=coins,
        xp_awarded=xp,
        origin=origin,
        occurred_at=datetime.datetime.combine(day, datetime.time(15, 0), tzinfo=datetime.timezone.utc),
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Session factory on a fresh SQLite file with the ledger schema"""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await create_schema(engine)
    try:
        yield create_session_factory(engine)
    finally:
        await engine.dispose()


@pytest.fixture
def event_store(session_factory):
    return EventStore(session_factory)


@pytest.fixture
def gateway(session_factory):
    return RewardCreditingGateway(session_factory)


@pytest.fixture
def aggregator(session_factory, event_store):
    return Aggregator(session_factory, event_store=event_store, clock=lambda: TODAY)


@pytest.fixture
def ledger(session_factory, event_store, gateway, aggregator):
    return LedgerService(session_factory, event_store=event_store, gateway=gateway, aggregator=aggregator)


@pytest.fixture
def queries(session_factory, event_store, gateway, aggregator):
    return ProgressQueryService(session_factory, aggregator=aggregator, event_store=event_store, gateway=gateway)


@pytest.mark.asyncio
async def test_first_completion_is_credited(ledger):
    outcome = await ledger.complete(completion("q1", coins=10, xp=50))

    assert outcome.record is RecordOutcome.ACCEPTED
    assert isinstance(outcome.credit, Credited)
    assert outcome.credit.balance.coins == 10
    assert outcome.credit.balance.xp == 50
    assert outcome.summary.total_quests_completed == 1
    assert outcome.summary.current_streak == 1
    assert "first-quest" in outcome.summary.unlocked_badges


@pytest.mark.asyncio
async def test_resent_event_is_rejected_and_balance_unchanged(ledger, event_store, gateway):
    event = completion("q1", coins=10, xp=50)

    first = await ledger.complete(event)
    second = await ledger.complete(event)

    assert first.credited is True
    assert second.record is RecordOutcome.DUPLICATE_REJECTED
    assert isinstance(second.credit, AlreadyCredited)
    assert second.summary.total_quests_completed == 1

    balance = await gateway.get_balance("learner-1")
    assert (balance.coins, balance.xp) == (10, 50)
    assert len(await event_store.list_events("learner-1")) == 1
    assert await event_store.count_attempts("learner-1") == 2


@pytest.mark.asyncio
async def test_external_assignment_reported_twice_is_credited_once(ledger, gateway):
    first = await ledger.complete(completion("gc_123", origin="external_sync", coins=20, xp=50))
    second = await ledger.complete(completion("gc_123", origin="external_sync", coins=20, xp=50))

    assert first.event.event_id != second.event.event_id
    assert isinstance(first.credit, Credited)
    assert isinstance(second.credit, AlreadyCredited)

    balance = await gateway.get_balance("learner-1")
    assert (balance.coins, balance.xp) == (20, 50)


@pytest.mark.asyncio
async def test_same_unit_from_different_origins_is_credited_separately(ledger, gateway):
    interactive = await ledger.complete(completion("q7", origin="interactive"))
    external = await ledger.complete(completion("q7", origin="external_sync"))

    assert interactive.credited and external.credited
    assert (await gateway.get_balance("learner-1")).coins == 20


@pytest.mark.asyncio
async def test_concurrent_deliveries_credit_exactly_once(ledger, gateway, event_store):
    events = [completion("gc_999", origin="external_sync", coins=20, xp=50) for _ in range(5)]

    outcomes = await asyncio.gather(*(ledger.complete(event) for event in events))

    credited = [outcome for outcome in outcomes if outcome.credited]
    rejected = [outcome for outcome in outcomes if outcome.record is RecordOutcome.DUPLICATE_REJECTED]
    assert len(credited) == 1
    assert len(rejected) == 4

    balance = await gateway.get_balance("learner-1")
    assert (balance.coins, balance.xp) == (20, 50)
    assert await event_store.has_source_unit("learner-1", "gc_999", CompletionOrigin.EXTERNAL_SYNC)
    assert await event_store.count_attempts("learner-1") == 5


@pytest.mark.asyncio
async def test_concurrent_completions_for_different_learners(ledger, gateway):
    events = [completion("q1", learner_id=f"learner-{i}") for i in range(4)]

    outcomes = await asyncio.gather(*(ledger.complete(event) for event in events))

    assert all(outcome.credited for outcome in outcomes)
    for i in range(4):
        assert (await gateway.get_balance(f"learner-{i}")).coins == 10


@pytest.mark.asyncio
async def test_summary_does_not_depend_on_arrival_order(ledger):
    await ledger.complete(completion("q2", days_ago=0))
    await ledger.complete(completion("q3", days_ago=2))
    outcome = await ledger.complete(completion("q1", days_ago=1))

    assert outcome.summary.current_streak == 3
    assert outcome.summary.longest_streak == 3
    assert "streak-3" in outcome.summary.unlocked_badges
    assert outcome.summary.last_completed_at.date() == TODAY


@pytest.mark.asyncio
async def test_non_event_is_rejected_before_any_write(ledger, event_store):
    with pytest.raises(ValidationError):
        await ledger.complete({"learner_id": "learner-1", "source_unit_id": "q1"})

    assert await event_store.count_attempts("learner-1") == 0


@pytest.mark.asyncio
async def test_credit_requires_a_recorded_event(gateway):
    with pytest.raises(ValidationError):
        await gateway.credit(completion("never-recorded"))

    assert (await gateway.get_balance("learner-1")).coins == 0


@pytest.mark.asyncio
async def test_gateway_credits_a_recorded_event_once(event_store, gateway):
    event = completion("q1", coins=5, xp=15)

    assert await event_store.record(event) is RecordOutcome.ACCEPTED
    assert await event_store.record(event) is RecordOutcome.DUPLICATE_REJECTED

    first = await gateway.credit(event)
    second = await gateway.credit(event)

    assert isinstance(first, Credited)
    assert (first.balance.coins, first.balance.xp) == (5, 15)
    assert isinstance(second, AlreadyCredited)
    assert (await gateway.get_balance("learner-1")).coins == 5


@pytest.mark.asyncio
async def test_database_errors_surface_as_storage_unavailable(ledger):
    failure = OperationalError("INSERT INTO completion_events", {}, Exception("database is locked"))

    with patch.object(ledger, "_complete", AsyncMock(side_effect=failure)):
        with pytest.raises(StorageUnavailable) as exc_info:
            await ledger.complete(completion("q1"))

    assert exc_info.value.outcome_unknown is False
    assert exc_info.value.original_exception is failure


@pytest.mark.asyncio
async def test_timeout_surfaces_as_unknown_outcome(session_factory):
    ledger = LedgerService(session_factory, write_timeout=0.01)

    async def slow_unit_of_work(event):
        await asyncio.sleep(1)

    with patch.object(ledger, "_complete", slow_unit_of_work):
        with pytest.raises(StorageUnavailable) as exc_info:
            await ledger.complete(completion("q1"))

    assert exc_info.value.outcome_unknown is True


@pytest.mark.asyncio
async def test_retry_after_timeout_is_safe(ledger, gateway):
    event = completion("q1", coins=10)
    await ledger.complete(event)

    # The caller never saw the first outcome and retries with the same ids
    retried = await ledger.complete(event)

    assert retried.credited is False
    assert (await gateway.get_balance("learner-1")).coins == 10


@pytest.mark.asyncio
async def test_query_service_reads(ledger, queries):
    await ledger.complete(completion("q1", days_ago=3, category="science", was_correct=False))
    await ledger.complete(completion("m-g1-1", days_ago=1, category="math", difficulty="hard"))
    await ledger.complete(completion("q3", days_ago=0, category="math"))

    summary = await queries.get_summary("learner-1")
    assert summary.total_quests_completed == 3
    assert summary.accuracy_rate == 67
    assert summary.quests_by_category["math"] == 2
    assert summary.unlocked_trophies == {"trophy-g1-1"}

    completions = await queries.get_completions("learner-1", limit=2)
    assert [event.source_unit_id for event in completions] == ["q3", "m-g1-1"]

    balance = await queries.get_balance("learner-1")
    assert balance.coins == 30

    progress = await queries.get_badge_progress("learner-1")
    assert progress["worlds"]["g1"] == {"unlocked": 1, "total": 10}
    rows = {row["id"]: row for row in progress["badges"]}
    assert rows["first-quest"]["unlocked"] is True
    assert rows["quest-master"]["progress"] == 3


@pytest.mark.asyncio
async def test_unknown_learner_reads_as_zero(queries):
    summary = await queries.get_summary("nobody")
    balance = await queries.get_balance("nobody")

    assert summary.total_quests_completed == 0
    assert summary.unlocked_badges == set()
    assert (balance.coins, balance.xp) == (0, 0)
    assert await queries.get_completions("nobody") == []


@pytest.mark.asyncio
async def test_cached_streak_decays_on_read(session_factory, ledger, event_store):
    await ledger.complete(completion("q1", days_ago=1))
    await ledger.complete(completion("q2", days_ago=0))

    later = Aggregator(session_factory, event_store=event_store, clock=lambda: TODAY + datetime.timedelta(days=5))
    summary = await ProgressQueryService(session_factory, aggregator=later).get_summary("learner-1")

    assert summary.current_streak == 0
    assert summary.longest_streak == 2
    assert "first-quest" in summary.unlocked_badges


@pytest.mark.asyncio
async def test_reconcile_detects_and_repairs_divergence(session_factory, ledger, aggregator):
    await ledger.complete(completion("q1", xp=50))
    await ledger.complete(completion("q2", xp=50))

    assert (await aggregator.reconcile("learner-1", strict=True)).total_xp == 100

    async with session_factory() as session:
        async with session.begin():
            await session.execute(
                update(LearnerSummaryRecord)
                .where(LearnerSummaryRecord.learner_id == "learner-1")
                .values(total_xp=7, total_quests_completed=9)
            )

    with pytest.raises(InconsistentState) as exc_info:
        await aggregator.reconcile("learner-1", strict=True)
    assert set(exc_info.value.differences) == {"total_xp", "total_quests_completed"}

    repaired = await aggregator.reconcile("learner-1")
    assert repaired.total_xp == 100
    assert (await aggregator.load_cached("learner-1")).total_quests_completed == 2
    await aggregator.reconcile("learner-1", strict=True)


@pytest.mark.asyncio
async def test_event_id_reused_for_another_unit_is_rejected(ledger, event_store, gateway):
    await ledger.complete(completion("q1", event_id="E1", coins=10, xp=50))

    with pytest.raises(ValidationError) as exc_info:
        await ledger.complete(completion("q2", event_id="E1", coins=99, xp=99))

    assert "event_id" in exc_info.value.errors
    balance = await gateway.get_balance("learner-1")
    assert (balance.coins, balance.xp) == (10, 50)
    assert not await event_store.has_source_unit("learner-1", "q2", CompletionOrigin.INTERACTIVE)
    assert await event_store.count_attempts("learner-1") == 1


@pytest.mark.asyncio
async def test_cached_summary_keeps_active_days(ledger, event_store, aggregator):
    await ledger.complete(completion("q1", days_ago=2))
    await ledger.complete(completion("q2", days_ago=1))

    cached = await aggregator.load_cached("learner-1")
    assert cached.active_days == {TODAY - datetime.timedelta(days=2), TODAY - datetime.timedelta(days=1)}

    new_event = completion("q3", days_ago=0)
    incremental = apply_event(cached, new_event, TODAY)
    replayed = fold_events(
        "learner-1", await event_store.list_events("learner-1") + [new_event], TODAY, previous=cached
    )

    assert incremental.current_streak == 3
    assert incremental == replayed
