"""Record stores behind the persistence boundary.

The pipeline needs only read-by-id, write-replace and append-to-audit-log.
Records are stored as JSON objects grouped by kind (``task``, ``reflection``,
``plan``, ...).
"""

import json
import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import structlog
from pydantic import BaseModel

from taskintel.errors import InputValidationError, PersistenceUnavailable
from taskintel.models import AuditRecord

logger = structlog.get_logger(__name__)

Record = Union[BaseModel, Dict[str, Any]]

_SAFE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:-]*$")


def _to_dict(record: Record) -> Dict[str, Any]:
    if isinstance(record, BaseModel):
        return record.model_dump(mode="json")
    return dict(record)


def _check_name(value: str, label: str) -> None:
    if not value or not _SAFE_NAME.match(value):
        raise InputValidationError(f"Invalid record {label}: {value!r}")


class RecordStore(ABC):
    """Opaque record store consumed by the pipeline."""

    @abstractmethod
    def read(self, kind: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Read a record by id.

        Args:
            kind: Record kind
            record_id: Record id

        Returns:
            Record as a dict, or None if absent

        Raises:
            PersistenceUnavailable: If the store cannot be reached
        """
        pass

    @abstractmethod
    def write(self, kind: str, record_id: str, record: Record) -> None:
        """Write a record, replacing any previous version.

        Raises:
            PersistenceUnavailable: If the store cannot be reached
        """
        pass

    @abstractmethod
    def append_audit(self, record: AuditRecord) -> None:
        """Append an entry to the audit log.

        Raises:
            PersistenceUnavailable: If the store cannot be reached
        """
        pass

    @abstractmethod
    def read_audit(self) -> List[AuditRecord]:
        """All audit entries in append order."""
        pass


class InMemoryStore(RecordStore):
    """Process-local store, used by tests and one-shot CLI runs."""

    def __init__(self) -> None:
        self._records: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._audit: List[AuditRecord] = []

    def read(self, kind: str, record_id: str) -> Optional[Dict[str, Any]]:
        record = self._records.get(kind, {}).get(record_id)
        return dict(record) if record is not None else None

    def write(self, kind: str, record_id: str, record: Record) -> None:
        self._records.setdefault(kind, {})[record_id] = _to_dict(record)

    def append_audit(self, record: AuditRecord) -> None:
        self._audit.append(record.model_copy())

    def read_audit(self) -> List[AuditRecord]:
        return list(self._audit)


class JsonFileStore(RecordStore):
    """Directory-backed store.

    Layout::

        <root>/<kind>/<id>.json   one record per file, replaced atomically
        <root>/audit.jsonl        append-only audit log
    """

    def __init__(self, root: Union[str, Path]) -> None:
        """Initialize the store.

        Args:
            root: Directory holding the records (created on first write)
        """
        self.root = Path(root)
        self.audit_file = self.root / "audit.jsonl"

    def _record_path(self, kind: str, record_id: str) -> Path:
        _check_name(kind, "kind")
        _check_name(record_id, "id")
        return self.root / kind / f"{record_id}.json"

    def read(self, kind: str, record_id: str) -> Optional[Dict[str, Any]]:
        path = self._record_path(kind, record_id)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            logger.warning("corrupt_record", kind=kind, record_id=record_id, error=str(e))
            return None
        except OSError as e:
            raise PersistenceUnavailable(f"Could not read {kind}/{record_id}: {e}") from e

    def write(self, kind: str, record_id: str, record: Record) -> None:
        path = self._record_path(kind, record_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Write to a temporary file first so readers never see a partial record
            fd, temp_path = tempfile.mkstemp(
                dir=path.parent, prefix=f".{record_id}_", suffix=".json.tmp"
            )
        except OSError as e:
            raise PersistenceUnavailable(f"Could not write {kind}/{record_id}: {e}") from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(_to_dict(record), f, indent=2, default=str)
            os.replace(temp_path, path)
        except OSError as e:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise PersistenceUnavailable(f"Could not write {kind}/{record_id}: {e}") from e

        logger.debug("record_written", kind=kind, record_id=record_id)

    def append_audit(self, record: AuditRecord) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            with open(self.audit_file, "a", encoding="utf-8") as f:
                f.write(record.model_dump_json() + "\n")
        except OSError as e:
            raise PersistenceUnavailable(f"Could not append audit record: {e}") from e

    def read_audit(self) -> List[AuditRecord]:
        if not self.audit_file.exists():
            return []
        try:
            with open(self.audit_file, "r", encoding="utf-8") as f:
                lines = [line for line in f if line.strip()]
        except OSError as e:
            raise PersistenceUnavailable(f"Could not read audit log: {e}") from e
        return [AuditRecord.model_validate_json(line) for line in lines]
