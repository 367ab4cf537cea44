"""
Common Components for Quest Ledger

Shared infrastructure used by the ledger and its collaborators:
1. Logging - Centralized logging configuration
2. Exceptions - The ledger error taxonomy
3. Database settings - Connection URL assembly from the environment
"""

from questledger.common.logger import app_logger
from questledger.common.exceptions import (
    BaseError, LedgerError, ValidationError, StorageUnavailable,
    InconsistentState, ConfigurationError, ClassroomAPIError
)

__all__ = [
    'app_logger',
    'BaseError', 'LedgerError', 'ValidationError', 'StorageUnavailable',
    'InconsistentState', 'ConfigurationError', 'ClassroomAPIError',
]
