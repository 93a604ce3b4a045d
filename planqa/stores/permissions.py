"""
Permission Store

Per-user access records persisted to ``data/user-permissions.json`` as a
camelCase list. Reads come from an immutable snapshot; writes take a
process lock, replace the snapshot and rewrite the whole file.

A file that cannot be decoded, or that holds any invalid record, leaves
the store unavailable: lookups find nothing, the rewriter denies every
non-admin query and writes are refused, so the file on disk is never
overwritten from a partial snapshot. The next clean reload clears it.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from types import MappingProxyType

from pydantic import ValidationError

from planqa.config import Settings
from planqa.models.permissions import UserPermissions, UserPermissionsUpdate
from planqa.stores.json_file import load_json, write_json_atomic

logger = logging.getLogger(__name__)


class PermissionStoreUnavailable(Exception):
    """The permission file could not be loaded; the store refuses writes."""


class PermissionStore:
    """
    CRUD over user permission records.

    Usage:
        store = PermissionStore(Path("data/user-permissions.json"))
        store.upsert("u-100", UserPermissionsUpdate(username="planner", allowed_plants=["P1"]))
        store.get_by_username("PLANNER").allowed_plants  # ['P1']
    """

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()
        self._records: Mapping[str, UserPermissions] = MappingProxyType({})
        self.load_error: str | None = None
        self.reload()

    @classmethod
    def from_settings(cls, settings: Settings) -> "PermissionStore":
        return cls(settings.data.permissions_path)

    @property
    def available(self) -> bool:
        return self.load_error is None

    def reload(self) -> int:
        """
        Re-read the file.

        Returns:
            Number of records loaded; 0 when the store is left unavailable
        """
        try:
            records = self._read_records()
        except (OSError, json.JSONDecodeError, ValueError) as e:
            self._records = MappingProxyType({})
            self.load_error = str(e)
            logger.error(f"Permission store unavailable, {self.path} could not be loaded: {e}")
            return 0
        self._records = MappingProxyType(records)
        self.load_error = None
        logger.info(f"Loaded {len(records)} user permissions from {self.path}")
        return len(records)

    def ensure_available(self) -> bool:
        """Retry the load once if the last one failed."""
        if not self.available:
            with self._lock:
                if not self.available:
                    self.reload()
        return self.available

    def _read_records(self) -> dict[str, UserPermissions]:
        raw = load_json(self.path, [])
        if not isinstance(raw, list):
            raise ValueError("expected a list of permission records")
        records: dict[str, UserPermissions] = {}
        for position, item in enumerate(raw):
            try:
                record = UserPermissions.model_validate(item)
            except ValidationError as e:
                raise ValueError(f"invalid permission record at index {position}: {e}") from e
            records[record.user_id] = record
        return records

    # ------------------------------------------------------------------
    # Reads (lock-free)
    # ------------------------------------------------------------------

    def get_all(self) -> list[UserPermissions]:
        return list(self._records.values())

    def get_by_id(self, user_id: str) -> UserPermissions | None:
        return self._records.get(user_id)

    def get_by_username(self, username: str) -> UserPermissions | None:
        target = username.lower()
        for record in self._records.values():
            if record.username.lower() == target:
                return record
        return None

    def is_admin(self, user_id: str | None = None, username: str | None = None) -> bool:
        record = self.get_by_id(user_id) if user_id else None
        if record is None and username:
            record = self.get_by_username(username)
        return bool(record and record.is_admin)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, user_id: str, update: UserPermissionsUpdate) -> UserPermissions:
        """
        Create or replace a record, preserving ``created_at`` on update.

        Raises:
            PermissionStoreUnavailable: The file on disk could not be loaded
        """
        self._require_available()
        with self._lock:
            now = datetime.now(UTC).isoformat()
            existing = self._records.get(user_id)
            record = UserPermissions(
                user_id=user_id,
                created_at=existing.created_at if existing else now,
                updated_at=now,
                **update.model_dump(),
            )
            self._commit({**self._records, user_id: record})
        logger.info(
            f"{'Updated' if existing else 'Created'} permissions for user: {record.username}",
            extra={"user_id": user_id},
        )
        return record

    def delete(self, user_id: str) -> bool:
        self._require_available()
        with self._lock:
            removed = self._records.get(user_id)
            if removed is None:
                return False
            self._commit({k: v for k, v in self._records.items() if k != user_id})
        logger.info(f"Deleted permissions for user: {removed.username}", extra={"user_id": user_id})
        return True

    def _require_available(self) -> None:
        if not self.ensure_available():
            raise PermissionStoreUnavailable(
                f"Permission file {self.path.name} could not be loaded ({self.load_error}); "
                "fix the file before editing permissions"
            )

    def _commit(self, records: dict[str, UserPermissions]) -> None:
        payload = [record.model_dump(by_alias=True) for record in records.values()]
        write_json_atomic(self.path, payload)
        self._records = MappingProxyType(records)
