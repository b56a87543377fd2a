"""Application records in a structured table (CSV) with file locking.

One row per (user_id, job_id). Status changes are validated so a record only
moves forward through its lifecycle.
"""
from __future__ import annotations

import csv
import fcntl
from dataclasses import asdict, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from jobbot.config import DATA_DIR
from jobbot.errors import InvalidTransition
from jobbot.log import get_logger
from jobbot.models import ApplicationRecord, ApplicationStatus

log = get_logger(__name__)

APPLICATIONS_CSV: Path = DATA_DIR / "applications.csv"
HEADERS: list[str] = [f.name for f in fields(ApplicationRecord)]
MAX_DESCRIPTION_CHARS = 10_000

S = ApplicationStatus
TRANSITIONS: dict[str, set[str]] = {
    S.FRESH.value: {S.PENDING_REVIEW.value, S.SKIPPED.value, S.QUEUED.value},
    S.PENDING_REVIEW.value: {S.QUEUED.value, S.SKIPPED.value},
    S.QUEUED.value: {S.APPLIED.value, S.ERROR.value, S.NOT_APPLIED.value},
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def can_transition(current: str, requested: str) -> bool:
    current = str(getattr(current, "value", current))
    requested = str(getattr(requested, "value", requested))
    if current == requested:
        return True
    return requested in TRANSITIONS.get(current, set())


def _lock(f, exclusive: bool = True) -> None:
    """Advisory file lock (Unix fcntl)."""
    try:
        op = fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH
        fcntl.flock(f.fileno(), op)
    except (OSError, AttributeError):
        pass


def _unlock(f) -> None:
    try:
        fcntl.flock(f.fileno(), fcntl.LOCK_UN)
    except (OSError, AttributeError):
        pass


class ApplicationStore:
    """Key/record store for application records keyed by (user_id, job_id)."""

    def __init__(self, path: Path = APPLICATIONS_CSV) -> None:
        self.path = Path(path)

    def ensure(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            with open(self.path, "w", newline="", encoding="utf-8") as f:
                _lock(f)
                csv.writer(f).writerow(HEADERS)
                _unlock(f)
            log.info("Created application store → %s", self.path.name)

    # -- reads -------------------------------------------------------------

    def _read_rows(self) -> list[dict[str, str]]:
        self.ensure()
        with open(self.path, "r", newline="", encoding="utf-8") as f:
            _lock(f, exclusive=False)
            rows = list(csv.DictReader(f))
            _unlock(f)
        return rows

    def _write_rows(self, rows: Iterable[dict[str, str]]) -> None:
        with open(self.path, "w", newline="", encoding="utf-8") as f:
            _lock(f)
            w = csv.DictWriter(f, fieldnames=HEADERS)
            w.writeheader()
            w.writerows(rows)
            _unlock(f)

    @staticmethod
    def _to_record(row: dict[str, str]) -> ApplicationRecord:
        return ApplicationRecord(**{h: row.get(h) or "" for h in HEADERS})

    def all(self) -> list[ApplicationRecord]:
        return [self._to_record(r) for r in self._read_rows()]

    def get(self, user_id: str, job_id: str) -> ApplicationRecord | None:
        for r in self._read_rows():
            if r.get("user_id") == user_id and r.get("job_id") == job_id:
                return self._to_record(r)
        return None

    def fetch(
        self,
        user_id: str,
        statuses: Iterable[str],
        limit: int = 10,
    ) -> list[ApplicationRecord]:
        """Records in any of *statuses*, newest first."""
        wanted = {str(getattr(s, "value", s)) for s in statuses}
        matches = [
            (r.get("created_at") or "", i, self._to_record(r))
            for i, r in enumerate(self._read_rows())
            if r.get("user_id") == user_id and r.get("status") in wanted
        ]
        # later rows win ties on the second-resolution timestamp
        matches.sort(key=lambda m: (m[0], m[1]), reverse=True)
        return [rec for _, _, rec in matches[:limit]]

    # -- writes ------------------------------------------------------------

    def upsert(self, user_id: str, job_id: str, **values: str) -> ApplicationRecord:
        """Insert or update the (user, job) record.

        A status change on an existing record must be a legal forward
        transition, otherwise InvalidTransition is raised and nothing is
        written.
        """
        unknown = set(values) - set(HEADERS)
        if unknown:
            raise ValueError(f"Unknown record fields: {sorted(unknown)}")
        values = {k: str(getattr(v, "value", v) if v is not None else "") for k, v in values.items()}
        if "job_description" in values:
            values["job_description"] = values["job_description"][:MAX_DESCRIPTION_CHARS]

        rows = self._read_rows()
        now = _now()
        for r in rows:
            if r.get("user_id") == user_id and r.get("job_id") == job_id:
                requested = values.get("status")
                current = r.get("status") or ""
                if requested and current and not can_transition(current, requested):
                    raise InvalidTransition(job_id, current, requested)
                r.update(values)
                r["updated_at"] = now
                self._write_rows(rows)
                log.debug("Updated %s/%s → %s", user_id, job_id, r.get("status"))
                return self._to_record(r)

        record = asdict(ApplicationRecord(user_id=user_id, job_id=job_id, status=S.FRESH.value))
        record.update(values)
        record["created_at"] = record["created_at"] or now
        record["updated_at"] = now
        rows.append(record)
        self._write_rows(rows)
        log.debug("Inserted %s/%s [%s]", user_id, job_id, record["status"])
        return self._to_record(record)

    def update(self, user_id: str, job_id: str, **values: str) -> ApplicationRecord:
        """Alias of upsert used by callers recording an outcome."""
        return self.upsert(user_id, job_id, **values)

    # -- review actions ----------------------------------------------------

    def approve(self, user_id: str, job_id: str) -> ApplicationRecord:
        """Manual review: pending_review → queued."""
        return self._review(user_id, job_id, S.QUEUED)

    def reject(self, user_id: str, job_id: str) -> ApplicationRecord:
        """Manual review: pending_review → skipped."""
        return self._review(user_id, job_id, S.SKIPPED, reason="Rejected in review")

    def _review(self, user_id: str, job_id: str, status: ApplicationStatus, reason: str = "") -> ApplicationRecord:
        record = self.get(user_id, job_id)
        if record is None:
            raise KeyError(f"No application record for job {job_id}")
        if record.status != S.PENDING_REVIEW:
            raise InvalidTransition(job_id, record.status, status.value)
        return self.upsert(user_id, job_id, status=status, reason=reason)
