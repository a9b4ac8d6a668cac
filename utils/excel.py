"""utils/excel.py

.xlsx export of the administrator analytics table (openpyxl).

Header row bold and frozen, column widths from content. No database access:
callers pass plain rows.
"""

from __future__ import annotations

from io import BytesIO
from typing import Iterable, Sequence

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font
from openpyxl.utils import get_column_letter

MAX_SHEET_NAME = 31
MIN_WIDTH = 10
MAX_WIDTH = 55


def _write_sheet(ws, headers: Sequence[str], rows: Iterable[Sequence[object]]):
    ws.append(list(headers))
    header_font = Font(bold=True)
    for col in range(1, len(headers) + 1):
        cell = ws.cell(row=1, column=col)
        cell.font = header_font
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)

    for r in rows:
        ws.append(["" if v is None else v for v in r])

    ws.freeze_panes = "A2"

    for col_idx in range(1, len(headers) + 1):
        letter = get_column_letter(col_idx)
        longest = max((len(str(c.value)) for c in ws[letter] if c.value is not None), default=0)
        ws.column_dimensions[letter].width = min(max(MIN_WIDTH, longest + 2), MAX_WIDTH)


def make_xlsx_bytes(sheet_name: str, headers: Sequence[str], rows: Iterable[Sequence[object]]) -> bytes:
    return make_xlsx_bytes_multi([(sheet_name, headers, rows)])


def make_xlsx_bytes_multi(tables: Sequence[tuple]) -> bytes:
    """One sheet per ``(sheet_name, headers, rows)``."""
    wb = Workbook()
    wb.remove(wb.active)
    for idx, (sheet_name, headers, rows) in enumerate(tables, start=1):
        ws = wb.create_sheet(title=(sheet_name or f"Sheet{idx}")[:MAX_SHEET_NAME])
        _write_sheet(ws, headers, rows)
    if not wb.worksheets:
        wb.create_sheet(title="Sheet1")

    bio = BytesIO()
    wb.save(bio)
    return bio.getvalue()


ANALYTICS_HEADERS = ("NIP", "Nama", "Unit", "Status", "Indeks", "Predikat")


def analytics_workbook(month_key: str, rows: Sequence[dict]) -> bytes:
    """Summary sheet plus a per-activity detail sheet.

    ``rows`` are analytics entries: employee fields, submission status and
    a PerformanceResult.to_dict() under ``performance``.
    """
    summary = []
    detail = []
    categories = []
    for row in rows:
        perf = row.get("performance") or {}
        cats = perf.get("categories") or []
        if not categories:
            categories = [c.get("category") for c in cats]
        summary.append(
            [row.get("nip"), row.get("name"), row.get("unit"), row.get("status"), perf.get("index"), perf.get("predicate")]
            + [c.get("score") for c in cats]
        )
        for cat in cats:
            for act in cat.get("activities") or []:
                detail.append([
                    row.get("nip"),
                    row.get("name"),
                    cat.get("category"),
                    act.get("title"),
                    act.get("achieved"),
                    act.get("target"),
                    act.get("percentage"),
                ])

    return make_xlsx_bytes_multi([
        (f"Ringkasan {month_key}", list(ANALYTICS_HEADERS) + categories, summary),
        ("Detail", ["NIP", "Nama", "Kategori", "Indikator", "Capaian", "Target", "Persen"], detail),
    ])
