import json
from datetime import date

import pytest

from extensions import db
from models import MonthlyReportSubmission
from services.errors import (
    ConcurrentUpdateError,
    DuplicateDateError,
    MonthLockedError,
    NotFoundError,
    StoreTimeoutError,
    ValidationError,
)
from services.report_service import (
    MonthlyReportRepository,
    MonthlyReportStore,
    ReportActivityRecord,
    ReportWriteCoalescer,
    add_book_reading_report,
    add_manual_report_by_date,
    decrement_report_activity,
    delete_reports_for_month,
    get_book_reading_entries,
    get_manual_report_entries,
    get_monthly_reports,
    get_report_activity_count,
    increment_report_activity,
    remove_report_entry,
    reports_from_document,
    reports_to_progress,
    update_monthly_reports,
)

TODAY = date(2026, 1, 20)


def test_duplicate_date_is_refused_and_count_unchanged(ctx, people):
    emp = people["employee"]
    rec = add_manual_report_by_date(emp, "2026-01", "infaq", "2026-01-05", today=TODAY)
    assert rec.count == 1

    with pytest.raises(DuplicateDateError):
        add_manual_report_by_date(emp, "2026-01", "infaq", "2026-01-05", today=TODAY)
    assert get_report_activity_count(emp, "2026-01", "infaq") == 1


def test_manual_entries_keep_count_equal_to_entries(ctx, people):
    emp = people["employee"]
    add_manual_report_by_date(emp, "2026-01", "jujur", "2026-01-02", "rapat pagi", today=TODAY)
    add_manual_report_by_date(emp, "2026-01", "jujur", "2026-01-09", today=TODAY)

    rec = get_monthly_reports(emp)["2026-01"]["jujur"]
    assert rec.count == len(rec.entries) == 2
    assert [e.date for e in get_manual_report_entries(emp, "2026-01", "jujur")] == ["2026-01-02", "2026-01-09"]
    assert rec.entries[0].note == "rapat pagi"


def test_manual_entry_validation(ctx, people):
    emp = people["employee"]
    with pytest.raises(ValidationError):
        add_manual_report_by_date(emp, "2026-01", "infaq", "2026-02-01", today=TODAY)
    with pytest.raises(ValidationError):
        add_manual_report_by_date(emp, "2026-01", "infaq", "05-01-2026", today=TODAY)
    with pytest.raises(ValidationError):
        add_manual_report_by_date(emp, "2026-01", "infaq", "2026-01-25", today=TODAY)
    with pytest.raises(ValidationError):
        add_manual_report_by_date(emp, "2026-01", "tadarus", "2026-01-05", today=TODAY)
    assert get_monthly_reports(emp) == {}


def test_manual_entry_respects_edit_lock(ctx, people):
    emp = people["employee"]
    db.session.add(MonthlyReportSubmission(employee_id=emp, month_key="2026-01", status="pending_mentor"))
    db.session.commit()
    with pytest.raises(MonthLockedError):
        add_manual_report_by_date(emp, "2026-01", "infaq", "2026-01-05", today=TODAY)


def test_book_entries_are_guarded_too(ctx, people):
    emp = people["employee"]
    add_book_reading_report(emp, "2026-01", "baca_alquran_buku", "Riyadhus Shalihin", "20", "2026-01-03", today=TODAY)
    add_book_reading_report(emp, "2026-01", "baca_alquran_buku", "Fiqih Sunnah", 15, "2026-01-04", today=TODAY)
    with pytest.raises(DuplicateDateError):
        add_book_reading_report(emp, "2026-01", "baca_alquran_buku", "Lain", "5", "2026-01-04", today=TODAY)

    entries = get_book_reading_entries(emp, "2026-01", "baca_alquran_buku")
    assert [e.book_title for e in entries] == ["Riyadhus Shalihin", "Fiqih Sunnah"]
    assert entries[1].pages_read == "15"
    assert get_report_activity_count(emp, "2026-01", "baca_alquran_buku") == 2


def test_book_entry_requires_title_and_pages(ctx, people):
    emp = people["employee"]
    with pytest.raises(ValidationError):
        add_book_reading_report(emp, "2026-01", "baca_alquran_buku", "", "5", "2026-01-03", today=TODAY)
    with pytest.raises(ValidationError):
        add_book_reading_report(emp, "2026-01", "baca_alquran_buku", "Judul", "", "2026-01-03", today=TODAY)


def test_reads_on_absence(ctx, people):
    emp = people["employee"]
    assert get_monthly_reports(emp) == {}
    assert get_manual_report_entries(emp, "2026-01", "infaq") == []
    assert get_book_reading_entries(emp, "2026-01", "baca_alquran_buku") == []


def test_remove_entry_recounts(ctx, people):
    emp = people["employee"]
    add_manual_report_by_date(emp, "2026-01", "jujur", "2026-01-02", today=TODAY)
    add_manual_report_by_date(emp, "2026-01", "jujur", "2026-01-03", today=TODAY)

    rec = remove_report_entry(emp, "2026-01", "jujur", "2026-01-02")
    assert rec.count == 1
    with pytest.raises(NotFoundError):
        remove_report_entry(emp, "2026-01", "jujur", "2026-01-02")

    remove_report_entry(emp, "2026-01", "jujur", "2026-01-03")
    assert "jujur" not in get_monthly_reports(emp)["2026-01"]


def test_increment_and_decrement(ctx, people):
    emp = people["employee"]
    assert increment_report_activity(emp, "2026-01", "tadarus").count == 1
    assert increment_report_activity(emp, "2026-01", "tadarus").count == 2
    assert decrement_report_activity(emp, "2026-01", "tadarus").count == 1
    assert decrement_report_activity(emp, "2026-01", "tadarus").count == 0
    assert "tadarus" not in get_monthly_reports(emp)["2026-01"]
    with pytest.raises(NotFoundError):
        decrement_report_activity(emp, "2026-01", "tadarus")


def test_increment_refuses_dated_activities(ctx, people):
    emp = people["employee"]
    add_manual_report_by_date(emp, "2026-01", "infaq", "2026-01-05", today=TODAY)
    with pytest.raises(ValidationError):
        increment_report_activity(emp, "2026-01", "infaq")
    with pytest.raises(ValidationError):
        increment_report_activity(emp, "2026-01", "jujur")
    assert get_report_activity_count(emp, "2026-01", "jujur") == 0


def test_delete_reports_for_month(ctx, people):
    emp = people["employee"]
    add_manual_report_by_date(emp, "2026-01", "infaq", "2026-01-05", today=TODAY)
    assert delete_reports_for_month(emp, "2026-01") is True
    assert delete_reports_for_month(emp, "2026-01") is False
    assert get_monthly_reports(emp) == {}


# =========================
# Persistence / concurrency
# =========================
def test_repository_compare_and_swap(ctx, people):
    emp = people["employee"]
    repo = MonthlyReportRepository()
    assert repo.get(emp) == ({}, 0)

    v1 = repo.put(emp, {"2026-01": {}}, expected_version=0)
    assert v1 == 1
    v2 = repo.put(emp, {"2026-01": {"tadarus": {"count": 1}}}, expected_version=v1)
    assert v2 == 2

    with pytest.raises(ConcurrentUpdateError):
        repo.put(emp, {"2026-02": {}}, expected_version=v1)
    with pytest.raises(ConcurrentUpdateError):
        repo.put(emp, {"2026-02": {}}, expected_version=0)

    doc, version = repo.get(emp)
    assert version == 2
    assert doc == {"2026-01": {"tadarus": {"count": 1}}}


class _Clock:
    def __init__(self):
        self.t = 100.0

    def __call__(self):
        return self.t


def test_coalescer_merges_within_window_only():
    clock = _Clock()
    c = ReportWriteCoalescer(500, time_func=clock)
    c.stage(1, {"2026-01": {"a": 1}})
    merged = c.stage(1, {"2026-02": {"b": 1}})
    assert set(merged) == {"2026-01", "2026-02"}

    clock.t += 1.0
    assert c.pending(1) is None
    assert c.stage(1, {"2026-03": {}}) == {"2026-03": {}}


class _TimeoutRepo:
    def __init__(self, exc):
        self.exc = exc
        self.calls = []

    def get(self, employee_id):
        return {}, 0

    def put(self, employee_id, doc, expected_version=None):
        self.calls.append(doc)
        raise self.exc


def test_pending_payload_kept_on_timeout():
    clock = _Clock()
    store = MonthlyReportStore(_TimeoutRepo(StoreTimeoutError("slow")), ReportWriteCoalescer(500, clock))
    reports = reports_from_document({"2026-01": {"tadarus": {"count": 1}}})

    with pytest.raises(StoreTimeoutError):
        store.save(7, reports)

    clock.t += 0.2
    assert store.coalescer.pending(7) == {"2026-01": {"tadarus": {"count": 1}}}
    clock.t += 1.0
    assert store.coalescer.pending(7) is None


def test_pending_payload_cleared_on_other_errors():
    clock = _Clock()
    store = MonthlyReportStore(_TimeoutRepo(RuntimeError("boom")), ReportWriteCoalescer(500, clock))
    with pytest.raises(RuntimeError):
        store.save(7, reports_from_document({"2026-01": {}}))
    assert store.coalescer.pending(7) is None


class _FlakyRepo:
    """Loses the compare-and-swap once, then succeeds."""

    def __init__(self):
        self.doc = {}
        self.version = 0
        self.conflicts = 1

    def get(self, employee_id):
        return dict(self.doc), self.version

    def put(self, employee_id, doc, expected_version=None):
        if self.conflicts:
            self.conflicts -= 1
            self.doc = {"2025-12": {"tadarus": {"count": 1}}}
            self.version += 1
            raise ConcurrentUpdateError("lost race")
        self.doc = doc
        self.version += 1
        return self.version


def test_mutate_retries_after_conflict():
    repo = _FlakyRepo()
    store = MonthlyReportStore(repo, ReportWriteCoalescer(0), retries=3)

    def _apply(reports):
        reports.setdefault("2026-01", {})
        return "done"

    assert store.mutate(1, _apply) == "done"
    assert set(repo.doc) == {"2025-12", "2026-01"}


class _MemoryRepo:
    """In-memory repository that times out on the next ``timeouts`` writes."""

    def __init__(self, doc=None, timeouts=0):
        self.doc = doc or {}
        self.version = 1 if doc else 0
        self.timeouts = timeouts

    def get(self, employee_id):
        return json.loads(json.dumps(self.doc)), self.version

    def put(self, employee_id, doc, expected_version=None):
        if self.timeouts:
            self.timeouts -= 1
            raise StoreTimeoutError("slow")
        self.doc = doc
        self.version += 1
        return self.version


def _bump(reports):
    rec = reports.setdefault("2026-01", {}).setdefault("tadarus", ReportActivityRecord())
    rec.count += 1
    return rec


def test_late_write_after_timeout_does_not_replay_stale_payload():
    clock = _Clock()
    repo = _MemoryRepo({"2026-01": {"tadarus": {"count": 1}}}, timeouts=1)
    store = MonthlyReportStore(repo, ReportWriteCoalescer(500, clock))

    with pytest.raises(StoreTimeoutError):
        store.mutate(7, _bump)

    clock.t += 3600
    assert store.mutate(7, lambda reports: reports.pop("2026-01", None) is not None) is True
    assert repo.doc == {}


def test_removed_month_stays_removed_inside_window():
    clock = _Clock()
    repo = _MemoryRepo({"2026-01": {"tadarus": {"count": 1}}, "2026-02": {}}, timeouts=1)
    store = MonthlyReportStore(repo, ReportWriteCoalescer(500, clock))

    with pytest.raises(StoreTimeoutError):
        store.mutate(7, _bump)

    clock.t += 0.1
    store.mutate(7, lambda reports: reports.pop("2026-01"))
    assert repo.doc == {"2026-02": {}}


def test_retry_inside_window_reuses_pending_payload():
    clock = _Clock()
    repo = _MemoryRepo(timeouts=1)
    store = MonthlyReportStore(repo, ReportWriteCoalescer(500, clock))

    with pytest.raises(StoreTimeoutError):
        store.save(7, reports_from_document({"2026-01": {"tadarus": {"count": 1}}}))

    clock.t += 0.1
    store.save(7, reports_from_document({"2026-02": {"infaq": {"count": 1}}}))
    assert set(repo.doc) == {"2026-01", "2026-02"}
    assert store.coalescer.pending(7) is None


# =========================
# Approved months
# =========================
def _approve(employee_id, month_key):
    db.session.add(MonthlyReportSubmission(employee_id=employee_id, month_key=month_key, status="approved"))
    db.session.commit()


def test_admin_tools_refuse_approved_month(ctx, people):
    emp = people["employee"]
    add_manual_report_by_date(emp, "2026-01", "infaq", "2026-01-05", today=TODAY)
    increment_report_activity(emp, "2026-01", "tadarus")
    _approve(emp, "2026-01")

    with pytest.raises(MonthLockedError):
        remove_report_entry(emp, "2026-01", "infaq", "2026-01-05")
    with pytest.raises(MonthLockedError):
        increment_report_activity(emp, "2026-01", "tadarus")
    with pytest.raises(MonthLockedError):
        decrement_report_activity(emp, "2026-01", "tadarus")
    with pytest.raises(MonthLockedError):
        delete_reports_for_month(emp, "2026-01")

    assert [e.date for e in get_manual_report_entries(emp, "2026-01", "infaq")] == ["2026-01-05"]
    assert get_report_activity_count(emp, "2026-01", "tadarus") == 1


def test_admin_tools_still_correct_closed_months(ctx, people):
    emp = people["employee"]
    add_manual_report_by_date(emp, "2026-01", "infaq", "2026-01-05", today=TODAY)
    db.session.add(MonthlyReportSubmission(employee_id=emp, month_key="2026-01", status="rejected_mentor"))
    db.session.commit()
    assert remove_report_entry(emp, "2026-01", "infaq", "2026-01-05").count == 0


def test_dated_entry_refused_over_undated_count(ctx, people):
    emp = people["employee"]
    update_monthly_reports(emp, reports_from_document({"2026-01": {"infaq": {"count": 2}}}))
    with pytest.raises(ValidationError):
        add_manual_report_by_date(emp, "2026-01", "infaq", "2026-01-05", today=TODAY)
    assert get_report_activity_count(emp, "2026-01", "infaq") == 2


def test_update_monthly_reports_compare_and_swap(ctx, people):
    emp = people["employee"]
    v1 = update_monthly_reports(emp, reports_from_document({"2026-01": {"tadarus": {"count": 1}}}), expected_version=0)
    v2 = update_monthly_reports(emp, reports_from_document({"2026-01": {"tadarus": {"count": 2}}}), expected_version=v1)
    assert v2 == v1 + 1
    with pytest.raises(ConcurrentUpdateError):
        update_monthly_reports(emp, reports_from_document({}), expected_version=v1)
    assert get_report_activity_count(emp, "2026-01", "tadarus") == 2


# =========================
# Projection
# =========================
def test_reports_to_progress_projection():
    doc = {
        "2026-01": {
            "infaq": {"count": 2, "entries": [
                {"date": "2026-01-05", "completedAt": "2026-01-05T08:00:00+07:00"},
                {"date": "2026-01-12", "completedAt": "2026-01-12T08:00:00+07:00"},
            ]},
            "baca_alquran_buku": {"count": 1, "bookEntries": [
                {"bookTitle": "X", "pagesRead": "3", "dateCompleted": "2026-01-07", "completedAt": "..."},
            ]},
            "tadarus": {"count": 1, "completedAt": "2026-01-09T10:00:00Z"},
            "doa_bersama": {"count": 1, "completedAt": "2026-02-01T10:00:00Z"},
        }
    }
    progress = reports_to_progress(doc)
    assert progress == {
        "2026-01": {
            "05": {"infaq": True},
            "12": {"infaq": True},
            "07": {"baca_alquran_buku": True},
            "09": {"tadarus": True},
        }
    }
