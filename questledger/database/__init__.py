"""
Database Module

This module provides the declarative base and engine lifecycle for the ledger.
"""

from questledger.database.base import Base, ModelBase, metadata

__all__ = ['Base', 'ModelBase', 'metadata']
