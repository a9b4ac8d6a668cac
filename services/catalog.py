"""services/catalog.py

Static configuration of the trackable mutaba'ah activities.

The catalog is read-only at runtime: it is loaded once per application
(optionally from ACTIVITY_CATALOG_PATH) and cached on app.extensions.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Optional

from flask import current_app

from services.errors import CatalogError, ValidationError

logger = logging.getLogger(__name__)

# Automation trigger types
MANUAL_USER_REPORT = "MANUAL_USER_REPORT"
BOOK_READING_REPORT = "BOOK_READING_REPORT"
TEAM_ATTENDANCE = "TEAM_ATTENDANCE"
PRAYER_WAJIB = "PRAYER_WAJIB"
TADARUS_SESSION = "TADARUS_SESSION"

TRIGGER_TYPES = (
    MANUAL_USER_REPORT,
    BOOK_READING_REPORT,
    TEAM_ATTENDANCE,
    PRAYER_WAJIB,
    TADARUS_SESSION,
)

# Where writes for an activity go
ENTRY_DAILY = "daily"
ENTRY_MANUAL = "manual"
ENTRY_BOOK = "book"

# Activities with more expected occurrences than days in a week are daily habits
DAILY_CADENCE_THRESHOLD = 7

_EXTENSION_KEY = "mutabaah.catalog"


@dataclass(frozen=True)
class AutomationTrigger:
    type: str
    value: Optional[str] = None


@dataclass(frozen=True)
class Activity:
    id: str
    title: str
    category: str
    monthly_target: int
    automation_trigger: Optional[AutomationTrigger] = None

    @property
    def entry_kind(self) -> str:
        trigger = (self.automation_trigger.type if self.automation_trigger else "") or ""
        if trigger == MANUAL_USER_REPORT:
            return ENTRY_MANUAL
        if trigger == BOOK_READING_REPORT:
            return ENTRY_BOOK
        return ENTRY_DAILY

    @property
    def is_daily_cadence(self) -> bool:
        return self.monthly_target > DAILY_CADENCE_THRESHOLD

    def to_dict(self):
        trigger = None
        if self.automation_trigger:
            trigger = {"type": self.automation_trigger.type}
            if self.automation_trigger.value:
                trigger["value"] = self.automation_trigger.value
        return {
            "id": self.id,
            "title": self.title,
            "category": self.category,
            "monthlyTarget": self.monthly_target,
            "automationTrigger": trigger,
            "entryKind": self.entry_kind,
        }


def _a(activity_id, category, title, target, trigger, value=None):
    return Activity(activity_id, title, category, target, AutomationTrigger(trigger, value))


SIDIQ = "SIDIQ (Integritas)"
TABLIGH = "TABLIGH (Teamwork)"
AMANAH = "AMANAH (Disiplin)"
FATONAH = "FATONAH (Belajar)"

DEFAULT_ACTIVITIES = (
    _a("infaq", SIDIQ, "Gemar berinfaq", 1, MANUAL_USER_REPORT),
    _a("jujur", SIDIQ, "Jujur menyampaikan informasi", 4, MANUAL_USER_REPORT),
    _a("tanggung_jawab", SIDIQ, "Tanggung jawab terhadap pekerjaan", 1, MANUAL_USER_REPORT),

    _a("persyarikatan", TABLIGH, "Aktif dalam kegiatan persyarikatan", 1, MANUAL_USER_REPORT),
    _a("doa_bersama", TABLIGH, "Doa bersama mengawali pekerjaan", 20, TEAM_ATTENDANCE, "Doa Bersama"),
    _a("lima_s", TABLIGH, "5S (Salam, Senyum, Sapa, Sopan, Santun)", 20, MANUAL_USER_REPORT),

    _a("shalat_berjamaah", AMANAH, "Sholat lima waktu berjamaah", 20, PRAYER_WAJIB),
    _a("penampilan_diri", AMANAH, "Menjaga penampilan diri", 20, MANUAL_USER_REPORT),
    _a("tepat_waktu_kie", AMANAH, "Tepat waktu menghadiri KIE", 1, TEAM_ATTENDANCE, "KIE"),

    _a("tadarus", FATONAH, "RSIJ bertadarus (berkelompok)", 3, TADARUS_SESSION),
    _a("kajian_selasa", FATONAH, "Kajian Selasa", 2, MANUAL_USER_REPORT),
    _a("baca_alquran_buku", FATONAH, "Membaca Al-Quran dan buku", 20, BOOK_READING_REPORT),
)


class Catalog:
    """Ordered, validated collection of activities."""

    def __init__(self, activities):
        self._activities = tuple(activities)
        self._by_id = {}
        for act in self._activities:
            if not act.id:
                raise CatalogError("Activity id is required")
            if act.id in self._by_id:
                raise CatalogError(f"Duplicate activity id: {act.id}")
            if not (act.category or "").strip():
                raise CatalogError(f"Activity {act.id} has no category")
            if not isinstance(act.monthly_target, int) or act.monthly_target < 1:
                raise CatalogError(f"Activity {act.id} needs a monthly target >= 1")
            if act.automation_trigger and act.automation_trigger.type not in TRIGGER_TYPES:
                raise CatalogError(
                    f"Activity {act.id} has unknown trigger {act.automation_trigger.type!r}"
                )
            self._by_id[act.id] = act

    def __iter__(self):
        return iter(self._activities)

    def __len__(self):
        return len(self._activities)

    def __contains__(self, activity_id):
        return activity_id in self._by_id

    def get(self, activity_id: str) -> Activity:
        act = self._by_id.get(activity_id)
        if act is None:
            raise ValidationError(f"Unknown activity: {activity_id}", activity_id=activity_id)
        return act

    def categories(self) -> list[str]:
        seen = []
        for act in self._activities:
            if act.category not in seen:
                seen.append(act.category)
        return seen

    def by_trigger(self, trigger_type: str) -> list[Activity]:
        return [
            a for a in self._activities
            if a.automation_trigger and a.automation_trigger.type == trigger_type
        ]

    def to_list(self):
        return [a.to_dict() for a in self._activities]


def _activity_from_dict(raw: dict) -> Activity:
    trigger = raw.get("automationTrigger") or raw.get("automation_trigger")
    target = raw.get("monthlyTarget", raw.get("monthly_target"))
    try:
        target = int(target)
    except (TypeError, ValueError):
        raise CatalogError(f"Activity {raw.get('id')!r} has an invalid monthly target")
    return Activity(
        id=str(raw.get("id") or "").strip(),
        title=str(raw.get("title") or "").strip(),
        category=str(raw.get("category") or "").strip(),
        monthly_target=target,
        automation_trigger=AutomationTrigger(trigger["type"], trigger.get("value")) if trigger else None,
    )


def load_catalog(path: str | None = None) -> Catalog:
    if not path:
        return Catalog(DEFAULT_ACTIVITIES)

    try:
        with open(path, encoding="utf-8") as fh:
            raw = json.load(fh)
    except (OSError, json.JSONDecodeError) as e:
        raise CatalogError(f"Cannot read activity catalog {path}: {e}") from e

    if not isinstance(raw, list):
        raise CatalogError("Activity catalog must be a JSON list")

    catalog = Catalog(_activity_from_dict(item) for item in raw)
    logger.info("Loaded %s activities from %s", len(catalog), path)
    return catalog


def get_catalog() -> Catalog:
    catalog = current_app.extensions.get(_EXTENSION_KEY)
    if catalog is None:
        catalog = load_catalog(current_app.config.get("ACTIVITY_CATALOG_PATH"))
        current_app.extensions[_EXTENSION_KEY] = catalog
    return catalog


def get_activity(activity_id: str) -> Activity:
    return get_catalog().get(activity_id)
