"""
Tests for the classroom sync integration.

This module covers:
1. Reward tariffs and category detection
2. The sync pass reporting completions to the ledger
3. Paging, retries and error mapping of the API client
"""

import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio

from questledger.classroom.client import ClassroomClient
from questledger.classroom.sync import ClassroomSyncService, create_sync_service
from questledger.classroom.tariff import (
    FixedTariff, Reward, WeightedTariff, build_tariff, detect_category
)
from questledger.common.exceptions import (
    ClassroomAPIError, ConfigurationError, StorageUnavailable, ValidationError
)
from questledger.config import Settings
from questledger.database.init_db import create_engine_for_url, create_schema, create_session_factory
from questledger.ledger.models import CompletionOrigin, QuestCategory, QuestDifficulty
from questledger.ledger.service import LedgerService


def test_fixed_tariff_ignores_the_assignment():
    tariff = FixedTariff()

    assert tariff.reward_for({"maxPoints": 100, "workType": "ASSIGNMENT"}) == Reward(xp=50, coins=20)
    assert tariff.reward_for({}) == Reward(xp=50, coins=20)


@pytest.mark.parametrize("course_work,expected", [
    ({"maxPoints": 20, "workType": "ASSIGNMENT"}, Reward(xp=150, coins=30)),
    ({"workType": "MULTIPLE_CHOICE_QUESTION"}, Reward(xp=40, coins=8)),
    ({"maxPoints": 100, "workType": "SHORT_ANSWER_QUESTION"}, Reward(xp=150, coins=30)),
    ({"maxPoints": 5, "workType": "ASSIGNMENT"}, Reward(xp=38, coins=8)),
    ({"maxPoints": 10}, Reward(xp=50, coins=10)),
])
def test_weighted_tariff(course_work, expected):
    assert WeightedTariff().reward_for(course_work) == expected


@pytest.mark.parametrize("title,course_name,expected", [
    ("Fracciones - Matemática", None, QuestCategory.MATH),
    ("Reading log", "5th grade", QuestCategory.LANGUAGE),
    ("Lab report", "Biology 101", QuestCategory.SCIENCE),
    ("Essay", "Historia Universal", QuestCategory.SOCIAL_STUDIES),
    ("Homework 3", "Homeroom", QuestCategory.MATH),
])
def test_detect_category(title, course_name, expected):
    assert detect_category(title, course_name) is expected


def test_build_tariff():
    assert isinstance(build_tariff("fixed", xp=10, coins=5), FixedTariff)
    assert build_tariff("fixed", xp=10, coins=5).reward == Reward(xp=10, coins=5)
    assert isinstance(build_tariff("weighted"), WeightedTariff)

    with pytest.raises(ConfigurationError):
        build_tariff("generous")


def outcome(credited):
    result = MagicMock()
    result.credited = credited
    return result


@pytest.fixture
def classroom_client():
    client = MagicMock()
    client.list_courses = AsyncMock(return_value=[
        {"id": "c1", "name": "Matemática 5B"},
        {"id": "c2", "name": "Science"},
    ])

    async def list_course_work(token, course_id):
        if course_id == "c2":
            raise ClassroomAPIError("courseWork returned 500", 500)
        return [
            {"id": "123", "title": "Fracciones", "maxPoints": 20, "workType": "ASSIGNMENT"},
            {"id": "124", "title": "Decimales"},
            {"id": "125", "title": "Porcentajes"},
        ]

    async def list_my_submissions(token, course_id, course_work_id):
        states = {"123": "TURNED_IN", "124": "RETURNED", "125": "CREATED"}
        return [{"state": states[course_work_id], "updateTime": "2026-03-10T14:30:00.000Z"}]

    client.list_course_work = AsyncMock(side_effect=list_course_work)
    client.list_my_submissions = AsyncMock(side_effect=list_my_submissions)
    return client


@pytest.mark.asyncio
async def test_sync_reports_turned_in_assignments(classroom_client):
    ledger = MagicMock()
    ledger.complete = AsyncMock(side_effect=[outcome(True), outcome(False)])
    token_provider = AsyncMock(return_value="token-abc")

    service = ClassroomSyncService(ledger, classroom_client, token_provider)
    report = await service.sync_learner("learner-1")

    token_provider.assert_awaited_once_with("learner-1")
    classroom_client.list_courses.assert_awaited_once_with("token-abc")
    assert report.credited == 1
    assert report.duplicates == 1
    assert report.xp_awarded == 50
    assert report.coins_awarded == 20
    assert report.failed_courses == ["c2"]

    events = [call.args[0] for call in ledger.complete.await_args_list]
    assert [event.source_unit_id for event in events] == ["gc_123", "gc_124"]
    first = events[0]
    assert first.origin is CompletionOrigin.EXTERNAL_SYNC
    assert first.difficulty is QuestDifficulty.MEDIUM
    assert first.category is QuestCategory.MATH
    assert first.was_correct is True
    assert first.occurred_at == datetime.datetime(2026, 3, 10, 14, 30, tzinfo=datetime.timezone.utc)
    assert events[0].event_id != events[1].event_id


@pytest.mark.asyncio
async def test_sync_uses_the_tariff(classroom_client):
    ledger = MagicMock()
    ledger.complete = AsyncMock(return_value=outcome(True))

    service = ClassroomSyncService(ledger, classroom_client, AsyncMock(return_value="t"), tariff=WeightedTariff())
    report = await service.sync_learner("learner-1")

    assert report.credited == 2
    # 150 XP for the 20 point assignment, 50 XP for the ungraded one
    assert report.xp_awarded == 200


@pytest.mark.asyncio
async def test_sync_propagates_storage_errors(classroom_client):
    ledger = MagicMock()
    ledger.complete = AsyncMock(side_effect=StorageUnavailable("database is locked"))

    service = ClassroomSyncService(ledger, classroom_client, AsyncMock(return_value="t"))

    with pytest.raises(StorageUnavailable):
        await service.sync_learner("learner-1")


def test_create_sync_service_from_settings():
    config = Settings(CLASSROOM_TARIFF_MODE="weighted", CLASSROOM_API_BASE_URL="https://example.test/v1/")

    service = create_sync_service(MagicMock(), AsyncMock(), config=config)

    assert isinstance(service._tariff, WeightedTariff)
    assert service._client.base_url == "https://example.test/v1"


class FakeResponse:
    def __init__(self, status, payload=None):
        self.status = status
        self._payload = payload or {}

    async def json(self):
        return self._payload

    async def text(self):
        return str(self._payload)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Serves queued responses and records the requests made."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def get(self, url, params=None, headers=None):
        self.requests.append((url, dict(params or {}), headers))
        return self.responses.pop(0)


@pytest.mark.asyncio
async def test_client_follows_page_tokens():
    session = FakeSession([
        FakeResponse(200, {"courses": [{"id": "c1"}], "nextPageToken": "p2"}),
        FakeResponse(200, {"courses": [{"id": "c2"}]}),
    ])
    client = ClassroomClient(base_url="https://example.test/v1", session=session)

    courses = await client.list_courses("token-abc")

    assert [course["id"] for course in courses] == ["c1", "c2"]
    assert session.requests[0][0] == "https://example.test/v1/courses"
    assert session.requests[0][1] == {"courseStates": "ACTIVE"}
    assert session.requests[0][2] == {"Authorization": "Bearer token-abc"}
    assert session.requests[1][1]["pageToken"] == "p2"


@pytest.mark.asyncio
async def test_client_retries_server_errors():
    session = FakeSession([
        FakeResponse(503),
        FakeResponse(200, {"courseWork": [{"id": "w1"}]}),
    ])
    client = ClassroomClient(session=session, max_retries=2)

    with patch("questledger.classroom.client.asyncio.sleep", AsyncMock()) as sleep:
        work = await client.list_course_work("t", "c1")

    assert work == [{"id": "w1"}]
    sleep.assert_awaited_once_with(1)


@pytest.mark.asyncio
async def test_client_gives_up_after_retries():
    session = FakeSession([FakeResponse(500), FakeResponse(500)])
    client = ClassroomClient(session=session, max_retries=1)

    with patch("questledger.classroom.client.asyncio.sleep", AsyncMock()):
        with pytest.raises(ClassroomAPIError) as exc_info:
            await client.list_courses("t")

    assert exc_info.value.status == 500


@pytest.mark.asyncio
async def test_client_does_not_retry_client_errors():
    session = FakeSession([FakeResponse(401)])
    client = ClassroomClient(session=session)

    with pytest.raises(ClassroomAPIError) as exc_info:
        await client.list_courses("expired")

    assert exc_info.value.status == 401
    assert len(session.requests) == 1


@pytest.mark.asyncio
async def test_hidden_course_work_has_no_submissions():
    session = FakeSession([FakeResponse(404)])
    client = ClassroomClient(session=session)

    assert await client.list_my_submissions("t", "c1", "w1") == []
    assert session.requests[0][1] == {"userId": "me"}


@pytest.mark.asyncio
async def test_client_leaves_injected_session_open():
    session = MagicMock()
    session.close = AsyncMock()

    async with ClassroomClient(session=session):
        pass

    session.close.assert_not_awaited()


def test_weighted_tariff_never_goes_negative():
    assert WeightedTariff().reward_for({"maxPoints": -10, "workType": "ASSIGNMENT"}) == Reward(xp=0, coins=0)


@pytest.mark.asyncio
async def test_sync_skips_malformed_course_work():
    client = MagicMock()
    client.list_courses = AsyncMock(return_value=[{"id": "c1", "name": "Art"}, {"id": "c2", "name": "Science"}])
    course_work = {
        "c1": [{"title": "No id"}, {"id": "201", "title": "Collage"}, {"id": "202", "maxPoints": -10}],
        "c2": [{"id": "301", "title": "Lab report"}],
    }
    client.list_course_work = AsyncMock(side_effect=lambda token, course_id: course_work[course_id])
    client.list_my_submissions = AsyncMock(return_value=[{"state": "TURNED_IN"}])

    ledger = MagicMock()
    ledger.complete = AsyncMock(side_effect=[
        ValidationError("Validation error", {"title": "must be a string"}),
        outcome(True),
        outcome(True),
    ])

    service = ClassroomSyncService(ledger, client, AsyncMock(return_value="t"), tariff=WeightedTariff())
    report = await service.sync_learner("learner-1")

    assert report.skipped == 2
    assert report.credited == 2
    assert report.failed_courses == []
    assert report.to_dict()["skipped"] == 2

    events = [call.args[0] for call in ledger.complete.await_args_list]
    assert [event.source_unit_id for event in events] == ["gc_201", "gc_202", "gc_301"]
    assert (events[1].xp_awarded, events[1].coins_awarded) == (0, 0)


@pytest_asyncio.fixture
async def ledger_service(tmp_path):
    """Ledger service on a fresh SQLite file"""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await create_schema(engine)
    try:
        yield LedgerService(create_session_factory(engine))
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_repeated_polls_credit_each_assignment_once(classroom_client, ledger_service):
    service = ClassroomSyncService(ledger_service, classroom_client, AsyncMock(return_value="t"))

    first = await service.sync_learner("learner-1")
    second = await service.sync_learner("learner-1")

    assert (first.credited, first.duplicates) == (2, 0)
    assert (second.credited, second.duplicates) == (0, 2)
    assert second.coins_awarded == 0

    balance = await ledger_service.gateway.get_balance("learner-1")
    assert (balance.coins, balance.xp) == (40, 100)
    assert await ledger_service.event_store.count_attempts("learner-1") == 4
