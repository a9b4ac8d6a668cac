"""services/report_pdf.py

reportlab renderings of the aggregation results: the transcript
("Transkrip Nilai") and the monthly checklist ("Lembar Mutaba'ah").
"""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from models import User
from utils import clock

DOTS = "........................."
SIGNATORY_TITLE = "Direktur Utama"
HEADER_TEAL = colors.HexColor("#0D9488")
LIGHT = colors.HexColor("#F1F5F9")

MONTH_NAMES_ID = (
    "Januari", "Februari", "Maret", "April", "Mei", "Juni",
    "Juli", "Agustus", "September", "Oktober", "November", "Desember",
)


@dataclass
class Signatory:
    name: str
    nip: str
    title: str = SIGNATORY_TITLE


def find_signatory() -> Signatory:
    """The user flagged as director, or a dotted placeholder."""
    dirut = User.query.filter_by(can_be_dirut=True).order_by(User.id.asc()).first()
    if dirut is None:
        return Signatory(name=DOTS, nip=DOTS)
    return Signatory(name=dirut.full_name, nip=dirut.nip or str(dirut.id))


def month_label(month_key: str) -> str:
    year, month = clock.parse_month_key(month_key)
    return f"{MONTH_NAMES_ID[month - 1]} {year}"


def _date_label(d) -> str:
    return f"{d.day} {MONTH_NAMES_ID[d.month - 1]} {d.year}"


def _styles():
    styles = getSampleStyleSheet()
    styles.add(ParagraphStyle(
        name="Header",
        fontSize=14,
        leading=18,
        alignment=1,
        spaceAfter=6
    ))
    styles.add(ParagraphStyle(
        name="SubHeader",
        fontSize=10,
        leading=13,
        alignment=1,
        spaceAfter=12
    ))
    styles.add(ParagraphStyle(
        name="Small",
        fontSize=8,
        textColor=colors.grey
    ))
    return styles


def _nip(user) -> str:
    return (getattr(user, "nip", None) or str(getattr(user, "id", "") or "-"))


def _name(user) -> str:
    return getattr(user, "full_name", None) or getattr(user, "name", None) or "-"


def build_transcript_pdf(employee, performance, period_label: str, signatory: Signatory | None = None) -> bytes:
    """Transcript for one employee; ``performance`` is PerformanceResult or its to_dict()."""
    data = performance.to_dict() if hasattr(performance, "to_dict") else dict(performance or {})
    signatory = signatory or Signatory(name=DOTS, nip=DOTS)
    styles = _styles()

    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=40,
        leftMargin=40,
        topMargin=50,
        bottomMargin=40
    )

    elements = []
    elements.append(Paragraph("TRANSKRIP NILAI APPI", styles["Header"]))
    elements.append(Paragraph("Aplikasi Perilaku Pelayanan Islami", styles["SubHeader"]))

    mentor = getattr(employee, "mentor", None)
    elements.append(Table(
        [
            ["Nama", f": {_name(employee)}", "Unit Kerja", f": {getattr(employee, 'unit', None) or '-'}"],
            ["Nopeg", f": {_nip(employee)}", "Mentor", f": {_name(mentor) if mentor else 'Belum Diatur'}"],
        ],
        colWidths=[60, 180, 70, 180],
        style=TableStyle([
            ("TEXTCOLOR", (0, 0), (0, -1), colors.grey),
            ("TEXTCOLOR", (2, 0), (2, -1), colors.grey),
            ("FONTSIZE", (0, 0), (-1, -1), 9),
        ])
    ))
    elements.append(Spacer(1, 10))

    index = float(data.get("index") or 0)
    elements.append(Table(
        [
            ["PERIODE", "INDEKS PRESTASI", "PREDIKAT"],
            [(period_label or "-").upper(), f"{index:.2f}", data.get("predicate") or "-"],
        ],
        colWidths=[170, 170, 150],
        style=TableStyle([
            ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
            ("BACKGROUND", (0, 0), (-1, 0), LIGHT),
            ("ALIGN", (0, 0), (-1, -1), "CENTER"),
            ("FONTNAME", (0, 0), (-1, -1), "Helvetica-Bold"),
            ("FONTSIZE", (0, 1), (-1, 1), 14),
            ("TEXTCOLOR", (0, 1), (-1, 1), HEADER_TEAL),
            ("TOPPADDING", (0, 1), (-1, 1), 6),
            ("BOTTOMPADDING", (0, 1), (-1, 1), 8),
        ])
    ))
    elements.append(Spacer(1, 14))

    rows = [["Kategori & Indikator Penilaian", "Detail Capaian", "Nilai", "Huruf", "Bobot"]]
    category_rows = []
    for cat in data.get("categories") or []:
        category_rows.append(len(rows))
        rows.append([
            (cat.get("category") or "").upper(),
            "",
            cat.get("score", 0),
            cat.get("grade", "-"),
            f"{float(cat.get('points') or 0):.1f}",
        ])
        for act in cat.get("activities") or []:
            rows.append([
                f"- {act.get('title')}",
                f"{act.get('achieved', 0)}/{act.get('target', 0)}",
                "", "", "",
            ])

    if len(rows) > 1:
        table_style = [
            ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
            ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ("FONTSIZE", (0, 0), (-1, -1), 8),
            ("ALIGN", (1, 1), (-1, -1), "CENTER"),
        ]
        for r in category_rows:
            table_style.append(("BACKGROUND", (0, r), (-1, r), LIGHT))
            table_style.append(("FONTNAME", (0, r), (-1, r), "Helvetica-Bold"))
        elements.append(Table(rows, colWidths=[250, 80, 50, 50, 60], style=TableStyle(table_style)))
    else:
        elements.append(Paragraph("No activities scored.", styles["Normal"]))

    elements.append(Spacer(1, 24))
    elements.append(Paragraph(f"Jakarta, {_date_label(clock.today())}", styles["Normal"]))
    elements.append(Spacer(1, 6))
    elements.append(Table(
        [
            [f"{signatory.title},", "Pegawai,"],
            ["", ""],
            ["", ""],
            [signatory.name, _name(employee)],
            [f"NIP. {signatory.nip}", f"NIP. {_nip(employee)}"],
        ],
        colWidths=[245, 245],
        rowHeights=[14, 18, 18, 14, 14],
        style=TableStyle([
            ("ALIGN", (0, 0), (-1, -1), "CENTER"),
            ("FONTSIZE", (0, 0), (-1, -1), 9),
            ("FONTNAME", (0, 3), (-1, 3), "Helvetica-Bold"),
        ])
    ))

    doc.build(elements)
    return buffer.getvalue()


def build_checklist_pdf(employee, catalog, month_key: str, month_progress: dict) -> bytes:
    """Landscape day-by-activity grid for one month with the reviewer signature row."""
    days = clock.days_in_month(month_key)
    styles = _styles()

    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=landscape(A4),
        rightMargin=20,
        leftMargin=20,
        topMargin=30,
        bottomMargin=30
    )

    elements = []
    elements.append(Paragraph("LEMBAR MUTABA'AH HARIAN KARYAWAN", styles["Header"]))
    elements.append(Paragraph(f"PERIODE: {month_label(month_key).upper()}", styles["SubHeader"]))
    elements.append(Table(
        [
            ["Nama", f": {_name(employee)}", "Unit Kerja", f": {getattr(employee, 'unit', None) or '-'}"],
            ["NIP", f": {_nip(employee)}", "Bagian", f": {getattr(employee, 'job_title', None) or '-'}"],
        ],
        colWidths=[50, 250, 70, 250],
        style=TableStyle([("FONTSIZE", (0, 0), (-1, -1), 9)])
    ))
    elements.append(Spacer(1, 8))

    rows = [["No", "Indikator Penilaian"] + [str(d) for d in range(1, days + 1)] + ["Total"]]
    for idx, activity in enumerate(catalog, start=1):
        row = [str(idx), activity.title]
        total = 0
        for d in range(1, days + 1):
            done = bool((month_progress or {}).get(clock.day_key(d), {}).get(activity.id))
            row.append("v" if done else "")
            total += 1 if done else 0
        row.append(str(total))
        rows.append(row)

    elements.append(Table(
        rows,
        colWidths=[20, 150] + [17] * days + [30],
        repeatRows=1,
        style=TableStyle([
            ("GRID", (0, 0), (-1, -1), 0.3, colors.grey),
            ("BACKGROUND", (0, 0), (-1, 0), HEADER_TEAL),
            ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
            ("BACKGROUND", (0, 1), (1, -1), LIGHT),
            ("FONTSIZE", (0, 0), (-1, -1), 6.5),
            ("ALIGN", (0, 0), (-1, -1), "CENTER"),
            ("ALIGN", (1, 1), (1, -1), "LEFT"),
            ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
            ("TEXTCOLOR", (2, 1), (-2, -1), HEADER_TEAL),
            ("FONTNAME", (-1, 1), (-1, -1), "Helvetica-Bold"),
        ])
    ))
    elements.append(Spacer(1, 16))

    def _reviewer(rel):
        user = getattr(employee, rel, None)
        if user is None:
            return "Belum Diatur", "-"
        return _name(user), _nip(user)

    signers = [
        ("Kepala Unit",) + _reviewer("ka_unit"),
        ("Supervisor",) + _reviewer("supervisor"),
        ("Mentor",) + _reviewer("mentor"),
        ("Karyawan", _name(employee), _nip(employee)),
    ]
    elements.append(Table(
        [
            [s[0] for s in signers],
            ["" for _ in signers],
            [s[1] for s in signers],
            [f"NIP. {s[2]}" for s in signers],
        ],
        colWidths=[190] * len(signers),
        rowHeights=[12, 28, 12, 12],
        style=TableStyle([
            ("ALIGN", (0, 0), (-1, -1), "CENTER"),
            ("FONTSIZE", (0, 0), (-1, -1), 8),
            ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
            ("TEXTCOLOR", (0, 0), (-1, 0), HEADER_TEAL),
            ("FONTNAME", (0, 2), (-1, 2), "Helvetica-Bold"),
            ("TEXTCOLOR", (0, 3), (-1, 3), colors.grey),
        ])
    ))

    doc.build(elements)
    return buffer.getvalue()
