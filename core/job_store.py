"""
Persisted Job Store

Keeps the one job record each owner may hold per kind, so tracking
survives a process restart. Records live in memory and are written to a
single JSON file (tmp file + atomic replace) after every change.
"""

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from models.job_record import JobKind, JobRecord, record_key
from utils.logger import logger


class JobStore:
    """Thread-safe record store keyed by (owner_id, kind)"""

    def __init__(self, storage_path: Optional[str] = None):
        self.storage_path = Path(storage_path) if storage_path else None
        self._records: Dict[str, JobRecord] = {}
        self._lock = threading.Lock()
        self._load()

    def _load(self) -> None:
        """Load persisted records from disk"""
        if not self.storage_path or not self.storage_path.exists():
            return

        try:
            data = json.loads(self.storage_path.read_text())
        except json.JSONDecodeError as e:
            logger.error(f"Job state file is unreadable, starting empty: {e}")
            return

        for item in data.get("records", []):
            try:
                record = JobRecord.from_dict(item)
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping malformed job record: {e}")
                continue
            self._records[record.key] = record
        logger.info(f"Loaded {len(self._records)} job records")

    def _save(self) -> None:
        """Persist records to disk; caller holds the lock"""
        if not self.storage_path:
            return

        data = {
            "records": [r.to_dict() for r in self._records.values()],
            "saved_at": datetime.now().isoformat(),
        }
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.storage_path.with_suffix(self.storage_path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2))
        tmp.replace(self.storage_path)

    def save(self, record: JobRecord) -> None:
        """Insert or replace the record for its (owner_id, kind)"""
        with self._lock:
            self._records[record.key] = record
            self._save()

    def get(self, owner_id: str, kind: JobKind) -> Optional[JobRecord]:
        with self._lock:
            return self._records.get(record_key(owner_id, kind))

    def get_by_job_id(self, job_id: str) -> Optional[JobRecord]:
        with self._lock:
            for record in self._records.values():
                if record.job_id == job_id:
                    return record
        return None

    def delete(self, owner_id: str, kind: JobKind) -> Optional[JobRecord]:
        """Remove and return the record, if any"""
        with self._lock:
            record = self._records.pop(record_key(owner_id, kind), None)
            if record is not None:
                self._save()
            return record

    def all(self) -> List[JobRecord]:
        with self._lock:
            return list(self._records.values())

    def non_terminal(self) -> List[JobRecord]:
        """Records whose job has not reached a terminal state"""
        return [r for r in self.all() if not r.is_terminal]
