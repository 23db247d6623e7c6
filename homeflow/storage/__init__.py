"""Persistent storage for homeflow."""

from homeflow.storage.schema import ALLOWED_TABLES, SCHEMA_VERSION
from homeflow.storage.sqlite import SQLiteStore, StoreSession, parse_datetime

__all__ = ["ALLOWED_TABLES", "SCHEMA_VERSION", "SQLiteStore", "StoreSession", "parse_datetime"]
