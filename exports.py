"""
Export Module

License report generation and export to CSV, Excel and PDF.
"""

import os
import io
import csv
import logging
from datetime import date, datetime
from typing import List, Dict, Any, Optional

import pandas as pd
from openpyxl.styles import PatternFill
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from dotenv import load_dotenv

from date_normalizer import render_date_cell, utc_today
from license_status import EXPIRY_FIELDS, LicenseStatus, classify_value, parse_status
from record_store import FIELD_LABELS, RECORD_FIELDS, ControllerStore
from security import ValidationError

load_dotenv()

logger = logging.getLogger(__name__)

# Optional TTF (e.g. Cairo) so Arabic names render in PDFs
PDF_FONT_PATH = os.getenv("PDF_FONT_PATH", "")

REPORT_TITLES = {
    LicenseStatus.EXPIRED: "Expired Licenses Report",
    LicenseStatus.EXPIRING_SOON: "Licenses Expiring Soon Report",
    LicenseStatus.ACTIVE: "Active Licenses Report",
}

# Fill colours for the expiry column, matching the dashboard cell classes
STATUS_FILLS = {
    LicenseStatus.EXPIRED: "F8D7DA",
    LicenseStatus.EXPIRING_SOON: "FFF3CD",
    LicenseStatus.ACTIVE: "D4EDDA",
}

CONTENT_TYPES = {
    'csv': 'text/csv',
    'xlsx': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
    'pdf': 'application/pdf'
}

REPORT_HEADERS = {
    "full_name": "Full Name",
    "license_type": "License Type",
    "expiry": "Expiry Date",
}


# =====================================================
# Report Generation
# =====================================================

def generate_license_report(
    records: List[Dict[str, Any]],
    status: LicenseStatus,
    today: date = None
) -> List[Dict[str, Any]]:
    """
    Flatten controllers into one row per license with the given status.

    Args:
        records: Controller records
        status: Status to keep
        today: Reference date (default: today)

    Returns:
        Rows with full_name, license_type and the raw expiry value
    """
    if status not in REPORT_TITLES:
        raise ValidationError([f"Unsupported report status: {status.value}"])

    today = today or utc_today()
    report = []

    for record in records:
        for field, label in EXPIRY_FIELDS.items():
            if field not in record:
                continue

            current = classify_value(record[field], today, for_report=True)
            if current == status:
                report.append({
                    "full_name": record.get("full_name"),
                    "license_type": label,
                    "expiry": record[field],
                })

    return report


def report_display_rows(report: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Report rows with readable headers and formatted expiry dates."""
    return [
        {
            REPORT_HEADERS["full_name"]: row.get("full_name") or "",
            REPORT_HEADERS["license_type"]: row.get("license_type") or "",
            REPORT_HEADERS["expiry"]: render_date_cell(row.get("expiry")),
        }
        for row in report
    ]


def controller_display_rows(records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Full table rows keyed by spreadsheet headers, dates formatted."""
    rows = []
    for record in records:
        row = {}
        for field in RECORD_FIELDS:
            value = record.get(field)
            if field in EXPIRY_FIELDS or field == "date_of_birth":
                row[FIELD_LABELS[field]] = render_date_cell(value)
            else:
                row[FIELD_LABELS[field]] = "" if value is None else value
        rows.append(row)
    return rows


# =====================================================
# CSV Export
# =====================================================

def export_to_csv(data: List[Dict[str, Any]], filename: str = None) -> bytes:
    """
    Export data to CSV format.

    Args:
        data: List of dictionaries to export
        filename: Optional filename (not used, just for reference)

    Returns:
        CSV content as bytes
    """
    if not data:
        return b""

    output = io.StringIO()

    # Get headers from first row
    headers = list(data[0].keys())

    writer = csv.DictWriter(output, fieldnames=headers)
    writer.writeheader()
    writer.writerows(data)

    return output.getvalue().encode('utf-8-sig')


# =====================================================
# Excel Export
# =====================================================

def export_to_excel(
    sheets: Dict[str, List[Dict[str, Any]]],
    column_fills: Dict[str, Dict[str, str]] = None
) -> bytes:
    """
    Export data to Excel format with multiple sheets.

    Args:
        sheets: Dictionary of sheet_name -> data
        column_fills: Optional sheet_name -> {column header: RGB hex} shading

    Returns:
        Excel file as bytes
    """
    column_fills = column_fills or {}
    output = io.BytesIO()

    with pd.ExcelWriter(output, engine='openpyxl') as writer:
        for sheet_name, data in sheets.items():
            sheet_name = sheet_name[:31]
            df = pd.DataFrame(data)
            df.to_excel(writer, sheet_name=sheet_name, index=False)

            fills = column_fills.get(sheet_name)
            if not fills or df.empty:
                continue

            worksheet = writer.sheets[sheet_name]
            for col_idx, header in enumerate(df.columns, start=1):
                color = fills.get(header)
                if not color:
                    continue
                fill = PatternFill(start_color=color, end_color=color, fill_type="solid")
                for row_idx in range(2, len(df) + 2):
                    worksheet.cell(row=row_idx, column=col_idx).fill = fill

    return output.getvalue()


# =====================================================
# PDF Export (using reportlab)
# =====================================================

def _pdf_font_name() -> Optional[str]:
    """Register PDF_FONT_PATH once and return its font name."""
    if not PDF_FONT_PATH:
        return None

    name = os.path.splitext(os.path.basename(PDF_FONT_PATH))[0]
    if name not in pdfmetrics.getRegisteredFontNames():
        try:
            pdfmetrics.registerFont(TTFont(name, PDF_FONT_PATH))
        except Exception as e:
            logger.warning(f"Could not load PDF font {PDF_FONT_PATH}: {e}")
            return None
    return name


def export_to_pdf(title: str, data: List[Dict[str, Any]]) -> bytes:
    """
    Export data to PDF format.

    Args:
        title: Report title
        data: Data to export

    Returns:
        PDF file as bytes
    """
    output = io.BytesIO()

    doc = SimpleDocTemplate(
        output,
        pagesize=landscape(A4),
        rightMargin=30,
        leftMargin=30,
        topMargin=30,
        bottomMargin=30
    )

    elements = []
    styles = getSampleStyleSheet()
    font_name = _pdf_font_name()
    body_font = font_name or 'Helvetica'
    header_font = font_name or 'Helvetica-Bold'

    # Title
    elements.append(Paragraph(title, styles['Title']))
    elements.append(Spacer(1, 20))

    # Timestamp
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    elements.append(Paragraph(f"Generated: {timestamp}", styles['Normal']))
    elements.append(Spacer(1, 20))

    if data:
        headers = list(data[0].keys())

        table_data = [headers]
        for row in data:
            table_data.append([str(row.get(h, "")) for h in headers])

        table = Table(table_data)
        table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.grey),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
            ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
            ('FONTNAME', (0, 0), (-1, 0), header_font),
            ('FONTSIZE', (0, 0), (-1, 0), 10),
            ('BOTTOMPADDING', (0, 0), (-1, 0), 12),
            ('BACKGROUND', (0, 1), (-1, -1), colors.beige),
            ('TEXTCOLOR', (0, 1), (-1, -1), colors.black),
            ('FONTNAME', (0, 1), (-1, -1), body_font),
            ('FONTSIZE', (0, 1), (-1, -1), 8),
            ('GRID', (0, 0), (-1, -1), 1, colors.black)
        ]))
        elements.append(table)
    else:
        elements.append(Paragraph("No data available", styles['Normal']))

    doc.build(elements)
    return output.getvalue()


# =====================================================
# Export Service
# =====================================================

class ExportService:
    """
    Service for handling all exports.
    """

    def __init__(self, store: ControllerStore):
        self.store = store

    @staticmethod
    def _coerce_status(status: Any) -> LicenseStatus:
        if isinstance(status, LicenseStatus):
            return status
        try:
            return parse_status(status)
        except ValueError:
            raise ValidationError([f"Unknown report status: {status}"])

    def license_report(self, status: Any, today: date = None) -> List[Dict[str, Any]]:
        """Report rows for a status name or LicenseStatus."""
        return generate_license_report(self.store.list_all(), self._coerce_status(status), today)

    def export_license_report(self, status: Any, format: str = "xlsx", today: date = None) -> bytes:
        """Export a license report as csv, xlsx or pdf."""
        status = self._coerce_status(status)
        rows = report_display_rows(self.license_report(status, today))
        title = REPORT_TITLES[status]

        if format == "csv":
            return export_to_csv(rows)
        elif format == "xlsx":
            sheet = title[:31]
            return export_to_excel(
                {sheet: rows},
                column_fills={sheet: {REPORT_HEADERS["expiry"]: STATUS_FILLS[status]}}
            )
        elif format == "pdf":
            return export_to_pdf(title, rows)

        raise ValidationError([f"Unsupported export format: {format}"])

    def export_controllers(self, format: str = "xlsx") -> bytes:
        """Export the whole controllers table."""
        rows = controller_display_rows(self.store.list_all())

        if format == "csv":
            return export_to_csv(rows)
        elif format == "xlsx":
            return export_to_excel({"Controllers": rows})

        raise ValidationError([f"Unsupported export format: {format}"])
