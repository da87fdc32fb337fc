"""Install manifest - durable record of which skills live in which agents."""

import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from qaskills.errors import ManifestCorruptionError, ManifestIOError
from qaskills.models import InstallRecord

logger = logging.getLogger(__name__)

MANIFEST_VERSION = 1

# (skill_id, agent_id, record or None to delete)
RecordChange = tuple[str, str, InstallRecord | None]


class InstallStateTracker:
    """Owner of the manifest file.

    The manifest is only ever replaced atomically: a temp file in the same
    directory is written and renamed over the original. Writers within the
    process are serialized by a lock.
    """

    def __init__(self, manifest_path: Path):
        self.manifest_path = Path(manifest_path)
        self._lock = threading.RLock()

    def load(self) -> list[InstallRecord]:
        """Read all install records.

        Returns:
            Records in manifest order; empty if no manifest exists yet.

        Raises:
            ManifestCorruptionError: If the manifest cannot be parsed.
            ManifestIOError: If the manifest cannot be read.
        """
        try:
            raw = self.manifest_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except UnicodeDecodeError as e:
            raise ManifestCorruptionError(self.manifest_path, "not UTF-8 text") from e
        except OSError as e:
            raise ManifestIOError(self.manifest_path, e) from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ManifestCorruptionError(self.manifest_path, f"invalid JSON: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("records"), list):
            raise ManifestCorruptionError(self.manifest_path, "missing 'records' list")

        version = data.get("version")
        if version != MANIFEST_VERSION:
            raise ManifestCorruptionError(
                self.manifest_path, f"unsupported manifest version {version!r}"
            )

        try:
            records = [InstallRecord.model_validate(item) for item in data["records"]]
        except PydanticValidationError as e:
            raise ManifestCorruptionError(self.manifest_path, f"invalid record: {e}") from e

        seen: set[tuple[str, str]] = set()
        for record in records:
            if record.key in seen:
                raise ManifestCorruptionError(
                    self.manifest_path, f"duplicate record for {record.key}"
                )
            seen.add(record.key)
        return records

    def reconcile(self, records: Iterable[InstallRecord]) -> None:
        """Atomically rewrite the manifest with the given records.

        Raises:
            ManifestIOError: If the manifest cannot be written. The previous
                manifest is left untouched.
        """
        payload = {
            "version": MANIFEST_VERSION,
            "records": [record.model_dump(mode="json") for record in records],
        }
        content = json.dumps(payload, indent=2, ensure_ascii=False) + "\n"

        with self._lock:
            try:
                self._replace(content)
            except OSError as e:
                raise ManifestIOError(self.manifest_path, e) from e

        logger.debug(f"Manifest written: {self.manifest_path} ({len(payload['records'])} records)")

    def _replace(self, content: str) -> None:
        self.manifest_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.manifest_path.name}.",
            suffix=".tmp",
            dir=self.manifest_path.parent,
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.manifest_path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

    def commit(self, changes: Iterable[RecordChange]) -> list[InstallRecord]:
        """Apply a batch of upserts/deletes and rewrite the manifest once.

        Returns:
            The records now stored in the manifest.
        """
        changes = list(changes)
        with self._lock:
            records = self.load()
            if not changes:
                return records

            by_key = {record.key: record for record in records}
            for skill_id, agent_id, record in changes:
                if record is None:
                    by_key.pop((skill_id, agent_id), None)
                else:
                    by_key[(skill_id, agent_id)] = record

            updated = list(by_key.values())
            self.reconcile(updated)
            return updated

    def record_outcome(
        self, skill_id: str, agent_id: str, record: InstallRecord | None
    ) -> list[InstallRecord]:
        """Upsert or remove a single record and rewrite the manifest."""
        return self.commit([(skill_id, agent_id, record)])

    def find(self, skill_id: str, agent_id: str) -> InstallRecord | None:
        for record in self.load():
            if record.key == (skill_id, agent_id):
                return record
        return None

    def records_for(self, skill_id: str) -> dict[str, InstallRecord]:
        """Records of one skill keyed by agent id."""
        return {
            record.agent_id: record
            for record in self.load()
            if record.skill_id == skill_id
        }

    def quarantine(self) -> Path | None:
        """Move the current manifest aside so it can be rebuilt.

        Returns:
            The new location of the old manifest, or None if there was none.
        """
        if not self.manifest_path.exists():
            return None
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        target = self.manifest_path.with_name(f"{self.manifest_path.name}.corrupt-{stamp}")
        with self._lock:
            try:
                os.replace(self.manifest_path, target)
            except OSError as e:
                raise ManifestIOError(self.manifest_path, e) from e
        logger.warning(f"Moved manifest aside to {target}")
        return target
