"""
Classroom Sync Service

Turns a learner's turned-in classroom assignments into ledger completions.
Each poll reports every turned-in assignment again with a fresh event id;
the ledger's dedup key ``(learner, gc_<course work id>, external_sync)``
makes sure each assignment is credited once.
"""

import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from questledger.classroom.client import ClassroomClient, TokenProvider
from questledger.classroom.tariff import FixedTariff, build_tariff, detect_category
from questledger.common.exceptions import ClassroomAPIError, ValidationError
from questledger.common.logger import LoggerAdapter, app_logger
from questledger.ledger.models import (
    MAX_TITLE_LENGTH, CompletionEvent, CompletionOrigin, QuestDifficulty, utc_now
)
from questledger.ledger.service import LedgerService

# Set up logging
logger = app_logger.getChild("classroom.sync")

COMPLETED_STATES = ("TURNED_IN", "RETURNED")


@dataclass
class SyncReport:
    """What one sync pass for one learner did."""
    learner_id: str
    credited: int = 0
    duplicates: int = 0
    skipped: int = 0
    xp_awarded: int = 0
    coins_awarded: int = 0
    failed_courses: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "learner_id": self.learner_id,
            "credited": self.credited,
            "duplicates": self.duplicates,
            "skipped": self.skipped,
            "xp_awarded": self.xp_awarded,
            "coins_awarded": self.coins_awarded,
            "failed_courses": list(self.failed_courses),
        }


def source_unit_id_for(course_work_id: str) -> str:
    return f"gc_{course_work_id}"


def _parse_timestamp(value: Optional[str]) -> Optional[datetime.datetime]:
    if not value:
        return None
    try:
        return datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _completed_submission(submissions: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    for submission in submissions:
        if submission.get("state") in COMPLETED_STATES:
            return submission
    return None


class ClassroomSyncService:
    """Polls the classroom API for one learner and reports completions to the ledger."""

    def __init__(
        self,
        ledger: LedgerService,
        client: ClassroomClient,
        token_provider: TokenProvider,
        tariff=None,
    ):
        """
        Initialize the sync service.

        Args:
            ledger: Ledger service completions are reported to
            client: Classroom API client
            token_provider: Coroutine returning a bearer token for a learner
            tariff: Reward policy; a FixedTariff when omitted
        """
        self._ledger = ledger
        self._client = client
        self._token_provider = token_provider
        self._tariff = tariff or FixedTariff()

    async def sync_learner(self, learner_id: str) -> SyncReport:
        """
        Report every turned-in assignment of a learner to the ledger.

        A course whose data cannot be fetched is skipped and listed in the
        report. Course work without an id, or whose completion the ledger
        rejects as malformed, is skipped and counted. Ledger storage errors
        propagate so the caller can reschedule the whole pass.

        Args:
            learner_id: The ID of the learner

        Returns:
            SyncReport with credited and duplicate counts

        Raises:
            ClassroomAPIError: If the course list itself cannot be fetched
            StorageUnavailable: If the ledger cannot be written
        """
        log = LoggerAdapter(logger, {"learner_id": learner_id})
        report = SyncReport(learner_id=learner_id)

        token = await self._token_provider(learner_id)
        courses = await self._client.list_courses(token)
        log.info(f"Syncing {len(courses)} active courses")

        for course in courses:
            course_id = course.get("id")
            try:
                course_work = await self._client.list_course_work(token, course_id)
                for work in course_work:
                    work_id = work.get("id")
                    if not work_id:
                        log.bind(course_id=course_id).warning("Skipping course work without an id")
                        report.skipped += 1
                        continue
                    submissions = await self._client.list_my_submissions(token, course_id, work_id)
                    submission = _completed_submission(submissions)
                    if submission is None:
                        continue
                    try:
                        await self._report(learner_id, course, work, submission, report)
                    except ValidationError as e:
                        log.bind(course_id=course_id, course_work_id=work_id, errors=e.errors).warning(
                            f"Skipping malformed course work: {e.message}"
                        )
                        report.skipped += 1
            except ClassroomAPIError as e:
                log.bind(course_id=course_id, status=e.status).warning(f"Skipping course: {e.message}")
                report.failed_courses.append(course_id)

        log.info(
            f"Sync finished: {report.credited} credited, {report.duplicates} already credited, "
            f"{report.skipped} skipped, {len(report.failed_courses)} courses failed"
        )
        return report

    async def _report(
        self,
        learner_id: str,
        course: Dict[str, Any],
        work: Dict[str, Any],
        submission: Dict[str, Any],
        report: SyncReport,
    ) -> None:
        reward = self._tariff.reward_for(work)
        title = (work.get("title") or "")[:MAX_TITLE_LENGTH]
        event = CompletionEvent.create(
            learner_id=learner_id,
            source_unit_id=source_unit_id_for(work["id"]),
            title=title,
            category=detect_category(title, course.get("name")),
            difficulty=QuestDifficulty.MEDIUM,
            was_correct=True,
            coins_awarded=reward.coins,
            xp_awarded=reward.xp,
            origin=CompletionOrigin.EXTERNAL_SYNC,
            occurred_at=_parse_timestamp(submission.get("updateTime")) or utc_now(),
        )

        outcome = await self._ledger.complete(event)
        if outcome.credited:
            report.credited += 1
            report.xp_awarded += reward.xp
            report.coins_awarded += reward.coins
        else:
            report.duplicates += 1


def create_sync_service(ledger: LedgerService, token_provider: TokenProvider, config=None) -> ClassroomSyncService:
    """Build a sync service from application settings."""
    if config is None:
        from questledger.config import settings as config

    client = ClassroomClient(
        base_url=config.CLASSROOM_API_BASE_URL,
        timeout=config.CLASSROOM_HTTP_TIMEOUT,
    )
    tariff = build_tariff(
        config.CLASSROOM_TARIFF_MODE,
        xp=config.CLASSROOM_XP_REWARD,
        coins=config.CLASSROOM_COIN_REWARD,
    )
    return ClassroomSyncService(ledger, client, token_provider, tariff=tariff)
