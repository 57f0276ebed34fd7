"""Namespaced per-user record storage with sensitive-field encryption."""

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from ..errors import InvalidFormat, MediumError, NoData, StorageUnavailable
from ..logging import JSONLLogger, get_logger
from .cipher import Cipher, XorCipher
from .media import StorageMedium

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "haven_"
RECORD_VERSION = "1.0"
EXPORT_VERSION = "1.0"
METADATA_FIELD = "_metadata"
RECORD_KINDS = ("regular", "sensitive", "meta")

# Fields that are always encrypted, compared after dropping "_" and case so
# both snake_case and camelCase spellings match.
SENSITIVE_FIELDS = frozenset({
    "personalinfo",
    "medicalinfo",
    "emergencycontacts",
    "privatenotes",
    "assessmentresponses",
})

SENSITIVE_KEYWORDS = ("password", "email", "phone", "address", "ssn", "medical")

_PROBE_KEY = "__haven_probe__"


def is_sensitive_field(name: str) -> bool:
    """Classify a record field as sensitive by name."""
    lowered = name.lower()
    if lowered.replace("_", "") in SENSITIVE_FIELDS:
        return True
    return any(keyword in lowered for keyword in SENSITIVE_KEYWORDS)


def partition_fields(data: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Split a field mapping into (regular, sensitive)."""
    regular: dict[str, Any] = {}
    sensitive: dict[str, Any] = {}
    for key, value in data.items():
        if is_sensitive_field(key):
            sensitive[key] = value
        else:
            regular[key] = value
    return regular, sensitive


@dataclass(frozen=True)
class StorageInfo:
    """Summary of what is stored for one user."""

    has_data: bool = False
    last_updated: str | None = None
    data_size: int = 0
    version: str | None = None


class PersistentStore:
    """Durable per-user records over any StorageMedium.

    Each user's record lives under three keys: ``<prefix><user>_regular``
    (plain JSON), ``<prefix><user>_sensitive`` (cipher text) and
    ``<prefix><user>_meta`` (timestamp, version, user id). A store() replaces
    the whole record; meta is rewritten on every successful store.
    """

    def __init__(
        self,
        medium: StorageMedium,
        *,
        cipher: Cipher | None = None,
        prefix: str = DEFAULT_PREFIX,
        event_log: JSONLLogger | None = None,
    ) -> None:
        if not prefix:
            raise ValueError("Storage prefix must not be empty")
        self.medium = medium
        self.cipher = cipher if cipher is not None else XorCipher()
        self.prefix = prefix
        self.event_log = event_log if event_log is not None else get_logger()

    def storage_key(self, user_id: str, kind: str) -> str:
        """Get the medium key for one namespace of a user's record."""
        return f"{self.prefix}{user_id}_{kind}"

    def is_available(self) -> bool:
        """Probe the medium with a throwaway write/remove round-trip."""
        try:
            self.medium.set(_PROBE_KEY, _PROBE_KEY)
            self.medium.remove(_PROBE_KEY)
        except MediumError as e:
            logger.warning("Storage medium unavailable: %s", e)
            return False
        return True

    def _require_available(self) -> None:
        if not self.is_available():
            raise StorageUnavailable("Storage medium is not available")

    def encrypt(self, data: dict[str, Any]) -> str:
        """Encrypt a field mapping with the configured cipher."""
        return self.cipher.encrypt(data)

    def decrypt(self, blob: str) -> dict[str, Any]:
        """Decrypt a blob; unreadable input yields an empty mapping."""
        return self.cipher.decrypt(blob)

    def store(self, user_id: str, data: dict[str, Any]) -> None:
        """Store a user's record, replacing whatever was there.

        Raises:
            StorageUnavailable: If the medium cannot be probed or written.
            TypeError: If a value will not serialize; nothing is written.
        """
        self._require_available()

        regular, sensitive = partition_fields(data)
        metadata = {
            "last_updated": datetime.now(timezone.utc).isoformat(),
            "version": RECORD_VERSION,
            "user_id": user_id,
        }

        # Serialize everything first so a bad value leaves the old record untouched.
        regular_blob = json.dumps(regular) if regular else None
        sensitive_blob = self.encrypt(sensitive) if sensitive else None
        meta_blob = json.dumps(metadata)

        try:
            for kind, blob in (("regular", regular_blob), ("sensitive", sensitive_blob)):
                key = self.storage_key(user_id, kind)
                if blob is None:
                    self.medium.remove(key)
                else:
                    self.medium.set(key, blob)
            self.medium.set(self.storage_key(user_id, "meta"), meta_blob)
        except MediumError as e:
            raise StorageUnavailable(f"Failed to store data for {user_id}: {e}") from e

        logger.debug("Stored %d regular / %d sensitive fields for %s",
                     len(regular), len(sensitive), user_id)
        self.event_log.log(
            "store",
            user_id=user_id,
            regular_fields=len(regular),
            sensitive_fields=len(sensitive),
        )

    def retrieve(self, user_id: str) -> dict[str, Any] | None:
        """Read a user's merged record.

        Returns:
            Regular and decrypted sensitive fields plus ``_metadata``, or None
            if nothing but metadata is stored, the medium is unavailable, or
            the stored JSON is corrupt.
        """
        if not self.is_available():
            return None

        try:
            regular_raw = self.medium.get(self.storage_key(user_id, "regular"))
            sensitive_raw = self.medium.get(self.storage_key(user_id, "sensitive"))
            meta_raw = self.medium.get(self.storage_key(user_id, "meta"))
        except MediumError as e:
            logger.warning("Failed to read record for %s: %s", user_id, e)
            return None

        try:
            regular = json.loads(regular_raw) if regular_raw else {}
            metadata = json.loads(meta_raw) if meta_raw else None
        except json.JSONDecodeError as e:
            logger.warning("Corrupt record for %s: %s", user_id, e)
            self.event_log.log_failure("retrieve_failed", e, user_id=user_id)
            return None

        if not isinstance(regular, dict) or not isinstance(metadata, (dict, type(None))):
            logger.warning("Corrupt record for %s: unexpected JSON shape", user_id)
            self.event_log.log("retrieve_failed", user_id=user_id, error="unexpected JSON shape")
            return None

        sensitive: dict[str, Any] = {}
        if sensitive_raw:
            sensitive = self.decrypt(sensitive_raw)
            if not sensitive:
                self.event_log.log("decrypt_failed", user_id=user_id)

        combined = {**regular, **sensitive}
        if not combined:
            return None
        combined[METADATA_FIELD] = metadata
        return combined

    def export(self, user_id: str) -> str:
        """Export a user's record as a portable JSON envelope.

        Raises:
            NoData: If nothing is stored for the user.
        """
        record = self.retrieve(user_id)
        if record is None:
            raise NoData(f"No data stored for {user_id}")

        record.pop(METADATA_FIELD, None)
        envelope = {
            "exportedAt": datetime.now(timezone.utc).isoformat(),
            "userId": user_id,
            "data": record,
            "version": EXPORT_VERSION,
        }
        self.event_log.log("export", user_id=user_id, fields=len(record))
        return json.dumps(envelope, indent=2, ensure_ascii=False)

    def import_(self, user_id: str, envelope: str) -> None:
        """Import an exported envelope as the user's record.

        Raises:
            InvalidFormat: If the envelope is not JSON or lacks data, userId
                or version.
            StorageUnavailable: If the medium cannot be written.
        """
        try:
            parsed = json.loads(envelope)
        except (json.JSONDecodeError, TypeError) as e:
            raise InvalidFormat(f"Export envelope is not valid JSON: {e}") from e

        if not isinstance(parsed, dict):
            raise InvalidFormat("Export envelope must be a JSON object")

        missing = [name for name in ("data", "userId", "version") if not parsed.get(name)]
        if missing:
            raise InvalidFormat(f"Export envelope missing: {', '.join(missing)}")
        if not isinstance(parsed["data"], dict):
            raise InvalidFormat("Export envelope data must be an object")

        self.store(user_id, parsed["data"])
        self.event_log.log("import", user_id=user_id, source_user_id=parsed["userId"])

    def _is_other_users_record_key(self, key: str, user_id: str) -> bool:
        """True if key is one of the three record keys of a different user."""
        rest = key[len(self.prefix):]
        for kind in RECORD_KINDS:
            suffix = f"_{kind}"
            if rest.endswith(suffix) and rest[: -len(suffix)] != user_id:
                return True
        return False

    def delete(self, user_id: str) -> int:
        """Delete a user's record, including stray keys left by older layouts.

        Returns:
            Number of keys removed.

        Raises:
            StorageUnavailable: If the medium cannot be probed or written.
        """
        self._require_available()

        owned = re.compile(rf"(^|_){re.escape(user_id)}(_|$)")
        try:
            targets = {self.storage_key(user_id, kind) for kind in RECORD_KINDS}
            targets.update(
                key for key in self.medium.keys()
                if key.startswith(self.prefix)
                and owned.search(key[len(self.prefix):])
                and not self._is_other_users_record_key(key, user_id)
            )
            existing = set(self.medium.keys())
            for key in targets:
                self.medium.remove(key)
        except MediumError as e:
            raise StorageUnavailable(f"Failed to delete data for {user_id}: {e}") from e

        removed = len(targets & existing)
        self.event_log.log("delete", user_id=user_id, keys_removed=removed)
        return removed

    def clear_all(self) -> int:
        """Remove every key carrying this store's prefix, for all users.

        Returns:
            Number of keys removed.

        Raises:
            StorageUnavailable: If the medium cannot be probed or written.
        """
        self._require_available()

        try:
            targets = [key for key in self.medium.keys() if key.startswith(self.prefix)]
            for key in targets:
                self.medium.remove(key)
        except MediumError as e:
            raise StorageUnavailable(f"Failed to clear storage: {e}") from e

        self.event_log.log("clear_all", keys_removed=len(targets))
        return len(targets)

    def storage_info(self, user_id: str) -> StorageInfo:
        """Summarize what is stored for a user; zeroed if nothing readable."""
        record = self.retrieve(user_id)
        if not record or not record.get(METADATA_FIELD):
            return StorageInfo()

        metadata = record[METADATA_FIELD]
        return StorageInfo(
            has_data=True,
            last_updated=metadata.get("last_updated"),
            data_size=len(json.dumps(record, default=str).encode("utf-8")),
            version=metadata.get("version"),
        )
