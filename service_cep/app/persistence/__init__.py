"""
Persistence package for the CEP Lookup Service.

Provides the PostgreSQL-backed cache table. One row per normalized CEP
holds the serialized record and the time it was last written; rows are
overwritten on refresh and never deleted here.
"""

from .postgres import PostgresCepStore

__all__ = ["PostgresCepStore"]
