"""
Classroom Module

Syncs turned-in classroom assignments into the ledger as external completions.
"""

# Expose key components for easier import
from .client import ClassroomClient, TokenProvider
from .tariff import FixedTariff, WeightedTariff, Reward, build_tariff, detect_category
from .sync import ClassroomSyncService, SyncReport, create_sync_service

__all__ = [
    "ClassroomClient",
    "TokenProvider",
    "FixedTariff",
    "WeightedTariff",
    "Reward",
    "build_tariff",
    "detect_category",
    "ClassroomSyncService",
    "SyncReport",
    "create_sync_service",
]
