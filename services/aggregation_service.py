"""services/aggregation_service.py

One scoring engine for every view (month card, week summary, yearly roll-up,
transcript PDF, admin analytics).

Inputs are progress mappings of the daily-store shape
``{month_key: {day_key: {activity_id: True}}}``; the counter reports and the
reading histories are projected onto that shape before scoring.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import MonthlyReportSubmission, QuranReadingHistory, ReadingHistory
from services.catalog import Catalog, get_catalog
from services.progress_service import get_month_progress
from services.report_service import get_monthly_reports, reports_to_progress
from utils import clock
from utils.scoring import grade_for_score, mean_score, percentage, predicate_for_index, round_half_up
from workflow.states import SubmissionStatus, parse_status

logger = logging.getLogger(__name__)

READING_ACTIVITY_ID = "baca_alquran_buku"


@dataclass
class ActivityScore:
    activity_id: str
    title: str
    category: str
    achieved: int
    target: int
    percentage: int

    def to_dict(self):
        return {
            "activityId": self.activity_id,
            "title": self.title,
            "category": self.category,
            "achieved": self.achieved,
            "target": self.target,
            "percentage": self.percentage,
        }


@dataclass
class CategoryScore:
    category: str
    score: int
    grade: str
    points: float
    activities: list = field(default_factory=list)

    def to_dict(self):
        return {
            "category": self.category,
            "score": self.score,
            "grade": self.grade,
            "points": self.points,
            "activities": [a.to_dict() for a in self.activities],
        }


@dataclass
class PerformanceResult:
    month_keys: list
    categories: list
    index: float
    predicate: str

    @property
    def activities(self) -> list:
        return [a for c in self.categories for a in c.activities]

    def activity(self, activity_id: str) -> Optional[ActivityScore]:
        for a in self.activities:
            if a.activity_id == activity_id:
                return a
        return None

    def category(self, name: str) -> Optional[CategoryScore]:
        for c in self.categories:
            if c.category == name:
                return c
        return None

    def to_dict(self):
        return {
            "monthKeys": list(self.month_keys),
            "categories": [c.to_dict() for c in self.categories],
            "index": self.index,
            "predicate": self.predicate,
        }


# =========================
# Progress helpers
# =========================
def merge_progress(*sources: dict) -> dict:
    """Union of {day_key: {activity_id: True}} month mappings."""
    merged: dict = {}
    for src in sources:
        for day_key, flags in (src or {}).items():
            for activity_id, value in (flags or {}).items():
                if value:
                    merged.setdefault(day_key, {})[activity_id] = True
    return merged


def history_to_progress(month_key: str, reading_history=(), quran_history=(),
                        activity_id: str = READING_ACTIVITY_ID) -> dict:
    """Book and Quran reading history days for ``month_key`` as month progress."""
    result: dict = {}
    dates = [getattr(h, "date_completed", None) for h in reading_history or ()]
    dates += [getattr(h, "date", None) for h in quran_history or ()]
    for d in dates:
        if isinstance(d, str) and len(d) >= 10 and d[:7] == month_key:
            result.setdefault(d[8:10], {})[activity_id] = True
    return result


def count_achieved(month_progress: dict, activity_id: str, days: Optional[Iterable[int]] = None) -> int:
    wanted = {clock.day_key(d) for d in days} if days is not None else None
    total = 0
    for day_key, flags in (month_progress or {}).items():
        if wanted is not None and day_key not in wanted:
            continue
        if (flags or {}).get(activity_id):
            total += 1
    return total


# =========================
# Core
# =========================
def _score(catalog: Catalog, month_keys, achieved_by_id: dict, target_by_id: dict) -> PerformanceResult:
    categories = []
    for category in catalog.categories():
        scores = []
        for activity in catalog:
            if activity.category != category:
                continue
            achieved = achieved_by_id.get(activity.id, 0)
            target = target_by_id.get(activity.id, 0)
            scores.append(ActivityScore(
                activity_id=activity.id,
                title=activity.title,
                category=category,
                achieved=achieved,
                target=target,
                percentage=percentage(achieved, target),
            ))
        score = mean_score(a.percentage for a in scores)
        grade, points = grade_for_score(score)
        categories.append(CategoryScore(category, score, grade, points, scores))

    index = 0.0
    if categories:
        index = round(sum(c.points for c in categories) / len(categories), 2)
    return PerformanceResult(
        month_keys=list(month_keys),
        categories=categories,
        index=index,
        predicate=predicate_for_index(index),
    )


def aggregate(catalog: Catalog, month_keys, progress_by_month: dict, *,
              include_month: Optional[Callable[[str], bool]] = None,
              target_months: Optional[int] = None) -> PerformanceResult:
    """Score ``month_keys`` together.

    Targets count every month (or ``target_months``); achievement counts
    only months accepted by ``include_month``.
    """
    month_keys = list(month_keys)
    months = len(month_keys) if target_months is None else target_months

    achieved = {}
    targets = {}
    for activity in catalog:
        targets[activity.id] = activity.monthly_target * months
        total = 0
        for mk in month_keys:
            if include_month is not None and not include_month(mk):
                continue
            total += count_achieved(progress_by_month.get(mk, {}), activity.id)
        achieved[activity.id] = total
    return _score(catalog, month_keys, achieved, targets)


def monthly_performance(catalog: Catalog, month_key: str, month_progress: dict) -> PerformanceResult:
    return aggregate(catalog, [month_key], {month_key: month_progress})


def weekly_summary(catalog: Catalog, month_key: str, month_progress: dict, week_days) -> PerformanceResult:
    """Daily-cadence activities are scored on the week; the rest on the month."""
    week_days = list(week_days)
    achieved = {}
    targets = {}
    for activity in catalog:
        if activity.is_daily_cadence:
            targets[activity.id] = len(week_days)
            achieved[activity.id] = count_achieved(month_progress, activity.id, week_days)
        else:
            targets[activity.id] = activity.monthly_target
            achieved[activity.id] = count_achieved(month_progress, activity.id)
    return _score(catalog, [month_key], achieved, targets)


def year_month_keys(year: int, today: date) -> list:
    if year > today.year:
        return []
    last = today.month if year == today.year else 12
    return [f"{year:04d}-{m:02d}" for m in range(1, last + 1)]


def yearly_performance(catalog: Catalog, year: int, progress_by_month: dict, status_by_month: dict,
                       *, today: Optional[date] = None) -> PerformanceResult:
    """Full-year targets; only approved months contribute achievement."""
    today = today or clock.today()

    def _approved(mk):
        return parse_status(status_by_month.get(mk)) is SubmissionStatus.APPROVED

    return aggregate(
        catalog,
        year_month_keys(year, today),
        progress_by_month,
        include_month=_approved,
        target_months=12,
    )


# =========================
# DB-backed views
# =========================
def _histories(employee_id: int, month_key: str):
    try:
        reading = ReadingHistory.query.filter(
            ReadingHistory.employee_id == employee_id,
            ReadingHistory.date_completed.like(f"{month_key}-%"),
        ).all()
        quran = QuranReadingHistory.query.filter(
            QuranReadingHistory.employee_id == employee_id,
            QuranReadingHistory.date.like(f"{month_key}-%"),
        ).all()
    except SQLAlchemyError:
        db.session.rollback()
        logger.warning("Reading history unavailable | employee=%s | month=%s", employee_id, month_key, exc_info=True)
        return [], []
    return reading, quran


def collect_month_progress(employee_id: int, month_key: str, reports: Optional[dict] = None) -> dict:
    """Daily check-offs, counter reports and reading histories for one month."""
    clock.parse_month_key(month_key)
    if reports is None:
        reports = get_monthly_reports(employee_id)
    projected = reports_to_progress({month_key: reports.get(month_key, {})})
    reading, quran = _histories(employee_id, month_key)
    return merge_progress(
        get_month_progress(employee_id, month_key),
        projected.get(month_key, {}),
        history_to_progress(month_key, reading, quran),
    )


def employee_monthly_performance(employee_id: int, month_key: str) -> PerformanceResult:
    return monthly_performance(get_catalog(), month_key, collect_month_progress(employee_id, month_key))


def employee_weekly_summary(employee_id: int, month_key: str, week_days) -> PerformanceResult:
    return weekly_summary(get_catalog(), month_key, collect_month_progress(employee_id, month_key), week_days)


def submission_statuses(employee_id: int, year: int) -> dict:
    rows = (
        db.session.query(MonthlyReportSubmission.month_key, MonthlyReportSubmission.status)
        .filter(
            MonthlyReportSubmission.employee_id == employee_id,
            MonthlyReportSubmission.month_key.like(f"{year:04d}-%"),
        )
        .all()
    )
    return {mk: status for mk, status in rows}


def employee_yearly_performance(employee_id: int, year: int, *, today: Optional[date] = None) -> PerformanceResult:
    today = today or clock.today()
    reports = get_monthly_reports(employee_id)
    progress = {
        mk: collect_month_progress(employee_id, mk, reports)
        for mk in year_month_keys(year, today)
    }
    return yearly_performance(
        get_catalog(), year, progress, submission_statuses(employee_id, year), today=today
    )


def employee_yearly_history(employee_id: int, years: Iterable[int], *, today: Optional[date] = None) -> list:
    """Index and predicate per year, newest first."""
    out = []
    for year in sorted(set(int(y) for y in years), reverse=True):
        result = employee_yearly_performance(employee_id, year, today=today)
        out.append({
            "year": year,
            "index": result.index,
            "predicate": result.predicate,
            "score": round_half_up(
                sum(c.score for c in result.categories) / len(result.categories)
            ) if result.categories else 0,
        })
    return out
