"""services/report_service.py

Counter-based monthly reports.

Activities reported by event (a dated manual entry, a book reading) are kept
in one JSON document per employee:

    {"2026-01": {"infaq": {"count": 2, "completedAt": "...",
                           "entries": [{"date": "2026-01-05", "completedAt": "...", "note": "..."}]}}}

The document keeps the camelCase keys of the stored data; the Python side
works with ReportActivityRecord and only maps at this boundary.

Writes are read-modify-write with a compare-and-swap on the row version, and
go through a short-lived per-employee coalescing queue.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Optional

from flask import current_app
from sqlalchemy import insert, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from extensions import db
from models import EmployeeMonthlyReport
from services.catalog import ENTRY_BOOK, ENTRY_DAILY, ENTRY_MANUAL, get_catalog
from services.errors import (
    ConcurrentUpdateError,
    DuplicateDateError,
    NotFoundError,
    StoreTimeoutError,
    ValidationError,
)
from services.progress_service import ensure_month_editable, ensure_month_not_approved
from utils import clock

logger = logging.getLogger(__name__)

_EXTENSION_KEY = "mutabaah.report_store"


# =========================
# Record shapes
# =========================
@dataclass
class ManualEntry:
    date: str
    completed_at: str
    note: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: dict) -> "ManualEntry":
        return cls(date=raw.get("date", ""), completed_at=raw.get("completedAt", ""), note=raw.get("note"))

    def to_dict(self):
        data = {"date": self.date, "completedAt": self.completed_at}
        if self.note:
            data["note"] = self.note
        return data


@dataclass
class BookEntry:
    book_title: str
    pages_read: str
    date_completed: str
    completed_at: str

    @classmethod
    def from_dict(cls, raw: dict) -> "BookEntry":
        return cls(
            book_title=raw.get("bookTitle", ""),
            pages_read=str(raw.get("pagesRead", "")),
            date_completed=raw.get("dateCompleted", ""),
            completed_at=raw.get("completedAt", ""),
        )

    def to_dict(self):
        return {
            "bookTitle": self.book_title,
            "pagesRead": self.pages_read,
            "dateCompleted": self.date_completed,
            "completedAt": self.completed_at,
        }


@dataclass
class ReportActivityRecord:
    count: int = 0
    completed_at: Optional[str] = None
    note: Optional[str] = None
    entries: Optional[list] = None
    book_entries: Optional[list] = None

    @classmethod
    def from_dict(cls, raw: dict) -> "ReportActivityRecord":
        raw = raw or {}
        entries = raw.get("entries")
        book_entries = raw.get("bookEntries")
        return cls(
            count=int(raw.get("count") or 0),
            completed_at=raw.get("completedAt"),
            note=raw.get("note"),
            entries=[ManualEntry.from_dict(e) for e in entries] if isinstance(entries, list) else None,
            book_entries=[BookEntry.from_dict(e) for e in book_entries] if isinstance(book_entries, list) else None,
        )

    def to_dict(self):
        data = {"count": self.count}
        if self.completed_at:
            data["completedAt"] = self.completed_at
        if self.note:
            data["note"] = self.note
        if self.entries is not None:
            data["entries"] = [e.to_dict() for e in self.entries]
        if self.book_entries is not None:
            data["bookEntries"] = [e.to_dict() for e in self.book_entries]
        return data

    def recount(self):
        if self.entries is not None:
            self.count = len(self.entries)
        elif self.book_entries is not None:
            self.count = len(self.book_entries)
        return self


def reports_from_document(doc: dict) -> dict:
    return {
        month_key: {aid: ReportActivityRecord.from_dict(rec) for aid, rec in (month or {}).items()}
        for month_key, month in (doc or {}).items()
    }


def reports_to_document(reports: dict) -> dict:
    return {
        month_key: {aid: rec.to_dict() for aid, rec in month.items()}
        for month_key, month in reports.items()
    }


# =========================
# Persistence adapter
# =========================
def _is_timeout(exc: Exception) -> bool:
    msg = str(getattr(exc, "orig", exc) or exc).lower()
    return "locked" in msg or "timeout" in msg or "timed out" in msg or "busy" in msg


class MonthlyReportRepository:
    """get/put of the per-employee report document with optimistic versioning."""

    def get(self, employee_id: int) -> tuple[dict, int]:
        try:
            row = db.session.get(EmployeeMonthlyReport, employee_id)
        except OperationalError as e:
            db.session.rollback()
            if _is_timeout(e):
                raise StoreTimeoutError("Request timed out. Please try again.") from e
            raise
        if row is None:
            return {}, 0
        db.session.refresh(row)
        return row.reports, int(row.version or 0)

    def put(self, employee_id: int, doc: dict, expected_version: Optional[int] = None) -> int:
        payload = json.dumps(doc, ensure_ascii=False, sort_keys=True)
        now = datetime.utcnow()
        try:
            if expected_version == 0:
                db.session.execute(insert(EmployeeMonthlyReport).values(
                    employee_id=employee_id, reports_json=payload, version=1, updated_at=now
                ))
                db.session.commit()
                return 1

            stmt = update(EmployeeMonthlyReport).where(EmployeeMonthlyReport.employee_id == employee_id)
            if expected_version is not None:
                stmt = stmt.where(EmployeeMonthlyReport.version == expected_version)
            stmt = stmt.values(
                reports_json=payload,
                version=EmployeeMonthlyReport.version + 1,
                updated_at=now,
            )
            result = db.session.execute(stmt)

            if result.rowcount == 0:
                if expected_version is not None:
                    db.session.rollback()
                    raise ConcurrentUpdateError(
                        "Reports were changed by another session", employee_id=employee_id
                    )
                db.session.execute(insert(EmployeeMonthlyReport).values(
                    employee_id=employee_id, reports_json=payload, version=1, updated_at=now
                ))
            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            raise ConcurrentUpdateError(
                "Reports were created by another session", employee_id=employee_id
            ) from e
        except OperationalError as e:
            db.session.rollback()
            if _is_timeout(e):
                raise StoreTimeoutError("Request timed out. Please try again.") from e
            raise
        except SQLAlchemyError:
            db.session.rollback()
            raise

        row = db.session.get(EmployeeMonthlyReport, employee_id)
        db.session.refresh(row)
        return int(row.version)


# =========================
# Write coalescing
# =========================
class ReportWriteCoalescer:
    """Per-employee pending payloads merged within a short window.

    Retry contract: a payload whose write timed out is kept, with a fresh
    window, so a retry inside that window reuses it; any other outcome drops
    it. Months the caller removed are never brought back by a merge.
    """

    def __init__(self, window_ms: int = 500, time_func: Callable[[], float] = time.monotonic):
        self.window = max(0, window_ms) / 1000.0
        self._time = time_func
        self._pending: dict = {}
        self._lock = threading.Lock()

    def pending(self, employee_id) -> Optional[dict]:
        with self._lock:
            return self._pending_locked(employee_id)

    def _pending_locked(self, employee_id):
        entry = self._pending.get(employee_id)
        if not entry:
            return None
        doc, ts = entry
        if self._time() - ts < self.window:
            return doc
        self._pending.pop(employee_id, None)
        return None

    def stage(self, employee_id, doc: dict, removed=()) -> dict:
        with self._lock:
            pending = self._pending_locked(employee_id)
            merged = {**pending, **doc} if pending else dict(doc)
            for month_key in removed:
                merged.pop(month_key, None)
            self._pending[employee_id] = (merged, self._time())
            return merged

    def keep_for_retry(self, employee_id):
        with self._lock:
            entry = self._pending.get(employee_id)
            if entry:
                self._pending[employee_id] = (entry[0], self._time())

    def clear(self, employee_id):
        with self._lock:
            self._pending.pop(employee_id, None)


# =========================
# Store
# =========================
class MonthlyReportStore:
    def __init__(self, repository=None, coalescer=None, retries: int = 3):
        self.repository = repository or MonthlyReportRepository()
        self.coalescer = coalescer or ReportWriteCoalescer()
        self.retries = max(1, int(retries))

    def load(self, employee_id: int) -> tuple[dict, int]:
        doc, version = self.repository.get(employee_id)
        return reports_from_document(doc), version

    def save(self, employee_id: int, reports: dict, expected_version: Optional[int] = None, removed=()) -> int:
        doc = self.coalescer.stage(employee_id, reports_to_document(reports), removed)
        try:
            version = self.repository.put(employee_id, doc, expected_version)
        except StoreTimeoutError:
            self.coalescer.keep_for_retry(employee_id)
            logger.warning("Report write timed out | employee=%s | payload kept for retry", employee_id)
            raise
        except Exception:
            self.coalescer.clear(employee_id)
            raise
        self.coalescer.clear(employee_id)
        return version

    def mutate(self, employee_id: int, fn):
        """Read-modify-write; ``fn(reports)`` edits in place and returns the result.

        Domain errors raised by ``fn`` abort before anything is written.
        """
        last_error = None
        for attempt in range(1, self.retries + 1):
            reports, version = self.load(employee_id)
            before = set(reports)
            result = fn(reports)
            try:
                self.save(employee_id, reports, expected_version=version, removed=before - set(reports))
                return result
            except ConcurrentUpdateError as e:
                last_error = e
                logger.info("Report write conflict | employee=%s | attempt=%s", employee_id, attempt)
        raise last_error


def get_report_store() -> MonthlyReportStore:
    store = current_app.extensions.get(_EXTENSION_KEY)
    if store is None:
        cfg = current_app.config
        store = MonthlyReportStore(
            coalescer=ReportWriteCoalescer(cfg.get("REPORT_WRITE_DEBOUNCE_MS", 500)),
            retries=cfg.get("REPORT_WRITE_RETRIES", 3),
        )
        current_app.extensions[_EXTENSION_KEY] = store
    return store


# =========================
# Helpers
# =========================
def _timestamp() -> str:
    return clock.now().isoformat()


def _activity_of_kind(activity_id: str, kind: str):
    activity = get_catalog().get(activity_id)
    if activity.entry_kind != kind:
        raise ValidationError(
            f"Activity {activity_id} is not reported as {kind} entries",
            activity_id=activity_id,
        )
    return activity


def _date_in_month(value: str, month_key: str, today: Optional[date]) -> date:
    d = clock.parse_date(value)
    if clock.month_key_of(d) != month_key:
        raise ValidationError(f"Date {value} is outside {month_key}", month_key=month_key)
    if d > (today or clock.today()):
        raise ValidationError(f"Date {value} is in the future")
    return d


# =========================
# Reads
# =========================
def get_monthly_reports(employee_id: int) -> dict:
    """{month_key: {activity_id: ReportActivityRecord}}; {} when nothing stored."""
    if not employee_id:
        return {}
    reports, _ = get_report_store().load(employee_id)
    return reports


def get_report_activity_count(employee_id: int, month_key: str, activity_id: str) -> int:
    rec = get_monthly_reports(employee_id).get(month_key, {}).get(activity_id)
    return rec.count if rec else 0


def get_manual_report_entries(employee_id: int, month_key: str, activity_id: str) -> list:
    rec = get_monthly_reports(employee_id).get(month_key, {}).get(activity_id)
    return list(rec.entries or []) if rec else []


def get_book_reading_entries(employee_id: int, month_key: str, activity_id: str) -> list:
    rec = get_monthly_reports(employee_id).get(month_key, {}).get(activity_id)
    return list(rec.book_entries or []) if rec else []


# =========================
# Writes
# =========================
def update_monthly_reports(employee_id: int, reports: dict, expected_version: Optional[int] = None) -> int:
    return get_report_store().save(employee_id, reports, expected_version)


def add_manual_report_by_date(employee_id: int, month_key: str, activity_id: str, report_date: str,
                              note: Optional[str] = None, *, today: Optional[date] = None) -> ReportActivityRecord:
    """Append a dated entry; a second report for the same date is refused."""
    clock.parse_month_key(month_key)
    _activity_of_kind(activity_id, ENTRY_MANUAL)
    _date_in_month(report_date, month_key, today)
    ensure_month_editable(employee_id, month_key, today)

    def _apply(reports):
        month = reports.setdefault(month_key, {})
        rec = month.get(activity_id) or ReportActivityRecord()
        if rec.entries is None and rec.count:
            raise ValidationError(
                f"Activity {activity_id} holds an undated count for {month_key}",
                activity_id=activity_id,
            )
        entries = list(rec.entries or [])
        if any(e.date == report_date for e in entries):
            raise DuplicateDateError(
                f"Activity already reported for {report_date}",
                activity_id=activity_id,
                date=report_date,
            )
        stamp = _timestamp()
        entries.append(ManualEntry(date=report_date, completed_at=stamp, note=(note or None)))
        month[activity_id] = ReportActivityRecord(
            count=len(entries), completed_at=stamp, entries=entries
        )
        return month[activity_id]

    rec = get_report_store().mutate(employee_id, _apply)
    logger.info("Manual report | employee=%s | %s/%s | date=%s", employee_id, month_key, activity_id, report_date)
    return rec


def add_book_reading_report(employee_id: int, month_key: str, activity_id: str, book_title: str,
                            pages_read, date_completed: str, *, today: Optional[date] = None) -> ReportActivityRecord:
    """Append a book reading entry; one entry per completion date."""
    clock.parse_month_key(month_key)
    _activity_of_kind(activity_id, ENTRY_BOOK)
    book_title = (book_title or "").strip()
    pages_read = str(pages_read or "").strip()
    if not book_title:
        raise ValidationError("Book title is required")
    if not pages_read:
        raise ValidationError("Pages read is required")
    _date_in_month(date_completed, month_key, today)
    ensure_month_editable(employee_id, month_key, today)

    def _apply(reports):
        month = reports.setdefault(month_key, {})
        rec = month.get(activity_id) or ReportActivityRecord()
        if rec.book_entries is None and rec.count:
            raise ValidationError(
                f"Activity {activity_id} holds an undated count for {month_key}",
                activity_id=activity_id,
            )
        entries = list(rec.book_entries or [])
        if any(e.date_completed == date_completed for e in entries):
            raise DuplicateDateError(
                f"Reading already reported for {date_completed}",
                activity_id=activity_id,
                date=date_completed,
            )
        stamp = _timestamp()
        entries.append(BookEntry(
            book_title=book_title,
            pages_read=pages_read,
            date_completed=date_completed,
            completed_at=stamp,
        ))
        month[activity_id] = ReportActivityRecord(
            count=len(entries), completed_at=stamp, book_entries=entries
        )
        return month[activity_id]

    rec = get_report_store().mutate(employee_id, _apply)
    logger.info("Book report | employee=%s | %s/%s | date=%s", employee_id, month_key, activity_id, date_completed)
    return rec


def increment_report_activity(employee_id: int, month_key: str, activity_id: str,
                              note: Optional[str] = None) -> ReportActivityRecord:
    """Record one undated "done" event (administrator tooling)."""
    clock.parse_month_key(month_key)
    _activity_of_kind(activity_id, ENTRY_DAILY)
    ensure_month_not_approved(employee_id, month_key)

    def _apply(reports):
        month = reports.setdefault(month_key, {})
        rec = month.get(activity_id)
        if rec and (rec.entries is not None or rec.book_entries is not None):
            raise ValidationError(
                f"Activity {activity_id} keeps dated entries; add an entry instead",
                activity_id=activity_id,
            )
        month[activity_id] = ReportActivityRecord(
            count=(rec.count if rec else 0) + 1,
            completed_at=_timestamp(),
            note=note or (rec.note if rec else None),
        )
        return month[activity_id]

    return get_report_store().mutate(employee_id, _apply)


def decrement_report_activity(employee_id: int, month_key: str, activity_id: str) -> ReportActivityRecord:
    clock.parse_month_key(month_key)
    ensure_month_not_approved(employee_id, month_key)

    def _apply(reports):
        rec = reports.get(month_key, {}).get(activity_id)
        if rec is None:
            raise NotFoundError("Activity not found for this month", month_key=month_key, activity_id=activity_id)
        if rec.entries is not None or rec.book_entries is not None:
            raise ValidationError(
                f"Activity {activity_id} keeps dated entries; remove an entry instead",
                activity_id=activity_id,
            )
        new_count = max(0, rec.count - 1)
        if new_count == 0:
            del reports[month_key][activity_id]
            return ReportActivityRecord(count=0)
        rec.count = new_count
        return rec

    return get_report_store().mutate(employee_id, _apply)


def remove_report_entry(employee_id: int, month_key: str, activity_id: str, entry_date: str) -> ReportActivityRecord:
    """Administrator removal of one dated or book entry."""
    clock.parse_month_key(month_key)
    ensure_month_not_approved(employee_id, month_key)

    def _apply(reports):
        month = reports.get(month_key, {})
        rec = month.get(activity_id)
        if rec is None:
            raise NotFoundError("Activity not found for this month", month_key=month_key, activity_id=activity_id)

        if rec.entries is not None:
            kept = [e for e in rec.entries if e.date != entry_date]
            removed = len(rec.entries) - len(kept)
            rec.entries = kept
        elif rec.book_entries is not None:
            kept = [e for e in rec.book_entries if e.date_completed != entry_date]
            removed = len(rec.book_entries) - len(kept)
            rec.book_entries = kept
        else:
            removed = 0

        if not removed:
            raise NotFoundError(f"No entry dated {entry_date}", month_key=month_key, activity_id=activity_id)

        rec.recount()
        if rec.count == 0:
            del month[activity_id]
            return ReportActivityRecord(count=0)
        return rec

    rec = get_report_store().mutate(employee_id, _apply)
    logger.info("Report entry removed | employee=%s | %s/%s | date=%s", employee_id, month_key, activity_id, entry_date)
    return rec


def delete_reports_for_month(employee_id: int, month_key: str) -> bool:
    clock.parse_month_key(month_key)
    ensure_month_not_approved(employee_id, month_key)

    def _apply(reports):
        return reports.pop(month_key, None) is not None

    return get_report_store().mutate(employee_id, _apply)


# =========================
# Projection to daily progress shape
# =========================
def _mark(result: dict, month_key: str, day_key: str, activity_id: str):
    result.setdefault(month_key, {}).setdefault(day_key, {})[activity_id] = True


def reports_to_progress(reports: dict) -> dict:
    """{month_key: {day_key: {activity_id: True}}} from a report mapping.

    Accepts ReportActivityRecord values or raw stored dicts.
    """
    result: dict = {}
    for month_key, month in (reports or {}).items():
        result.setdefault(month_key, {})
        for activity_id, rec in (month or {}).items():
            if isinstance(rec, dict):
                rec = ReportActivityRecord.from_dict(rec)

            if rec.entries is not None:
                for e in rec.entries:
                    if isinstance(e.date, str) and len(e.date) >= 10 and e.date[:7] == month_key:
                        _mark(result, month_key, e.date[8:10], activity_id)

            if rec.book_entries is not None:
                for e in rec.book_entries:
                    d = e.date_completed
                    if isinstance(d, str) and len(d) >= 10 and d[:7] == month_key:
                        _mark(result, month_key, d[8:10], activity_id)

            if rec.entries is None and rec.book_entries is None and rec.completed_at:
                try:
                    done = datetime.fromisoformat(rec.completed_at.replace("Z", "+00:00"))
                except (TypeError, ValueError):
                    continue
                if clock.month_key_of(done) == month_key:
                    _mark(result, month_key, clock.day_key(done.day), activity_id)
    return result
