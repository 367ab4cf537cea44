"""
Database Module

Connection settings and transaction scoping for the ledger's relational store.
"""

from questledger.common.db.connection import get_database_settings
from questledger.common.db.session import transaction_scope

__all__ = [
    'get_database_settings',
    'transaction_scope',
]
