"""
Ledger Module

Provides the event store, crediting gateway, aggregator, badge evaluation and
query services that make up the progress and reward ledger.
"""

# Expose key components for easier import
from .models import (
    CompletionEvent, CompletionOrigin, QuestCategory, QuestDifficulty,
    RecordOutcome, Credited, AlreadyCredited, Balance, LearnerSummary, LedgerOutcome
)
from .event_store import EventStore
from .gateway import RewardCreditingGateway
from .aggregator import Aggregator
from .query import ProgressQueryService
from .service import LedgerService

__all__ = [
    "CompletionEvent",
    "CompletionOrigin",
    "QuestCategory",
    "QuestDifficulty",
    "RecordOutcome",
    "Credited",
    "AlreadyCredited",
    "Balance",
    "LearnerSummary",
    "LedgerOutcome",
    "EventStore",
    "RewardCreditingGateway",
    "Aggregator",
    "ProgressQueryService",
    "LedgerService",
]
