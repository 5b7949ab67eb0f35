"""
pygpasswd Storage
=================
Public API for the database layer.

Usage:
    from storage import GroupDatabase, ShadowDatabase, GroupRecord, ShadowRecord
"""

from storage.records import (
    GroupRecord, ShadowRecord,
    NO_PASSWORD, LOCKED_PASSWORD, SHADOW_PASSWORD,
)
from storage.database import GroupDatabase, ShadowDatabase
from storage.nscd import flush_cache

__all__ = [
    "GroupRecord", "ShadowRecord",
    "NO_PASSWORD", "LOCKED_PASSWORD", "SHADOW_PASSWORD",
    "GroupDatabase", "ShadowDatabase",
    "flush_cache",
]
