"""
CSV and Excel export of computed reports.

CSV columns enumerate the same category keys the reports are stored with,
prefixed by their section (``revenue.patientCare``, ``assets.current.cash``).
The Excel workbook holds a summary sheet with one row per report and one
detail sheet per report listing its line items by section.
"""
import csv
import io
from typing import Iterable, List

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from derivation import derive

IDENTITY_COLUMNS = ["id", "hospitalId", "reportType", "period", "year", "month", "quarter", "status"]
SECTION_KEYS = {
    ("revenue",): ["patientCare", "emergencyServices", "surgery", "laboratory", "pharmacy", "other"],
    ("expenses",): ["salaries", "medicalSupplies", "equipment", "utilities", "maintenance", "insurance", "other"],
    ("assets", "current"): ["cash", "accountsReceivable", "inventory", "other"],
    ("assets", "fixed"): ["buildings", "equipment", "vehicles", "other"],
    ("liabilities", "current"): ["accountsPayable", "shortTermDebt", "accruedExpenses", "other"],
    ("liabilities", "longTerm"): ["longTermDebt", "other"],
    ("equity",): ["capital", "retainedEarnings", "currentEarnings"],
}
FIGURE_COLUMNS = [
    "totalRevenue",
    "totalExpenses",
    "grossProfit",
    "taxableIncome",
    "taxAmount",
    "netProfit",
    "totalAssets",
    "totalLiabilities",
    "totalEquity",
    "isBalanced",
]


def header() -> List[str]:
    columns = list(IDENTITY_COLUMNS)
    for section in SECTION_KEYS:
        prefix = ".".join(section)
        columns.extend(f"{prefix}.{key}" for key in SECTION_KEYS[section])
    columns.extend(FIGURE_COLUMNS)
    return columns


def report_row(doc: dict) -> List:
    row = ["" if doc.get(col) is None else doc.get(col) for col in IDENTITY_COLUMNS]
    for section in SECTION_KEYS:
        values = doc
        for part in section:
            values = values.get(part, {})
        row.extend(values.get(key, 0) for key in SECTION_KEYS[section])
    figures = derive(doc).model_dump(by_alias=True)
    row.extend(figures[col] for col in FIGURE_COLUMNS)
    return row


def reports_to_csv(docs: Iterable[dict]) -> bytes:
    buffer = io.StringIO()
    # UTF-8 BOM for Excel compatibility
    buffer.write("\ufeff")
    writer = csv.writer(buffer)
    writer.writerow(header())
    for doc in docs:
        writer.writerow(report_row(doc))
    return buffer.getvalue().encode("utf-8")


XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

SUMMARY_COLUMNS = [
    ("Period", "period"),
    ("Year", "year"),
    ("Type", "reportType"),
    ("Status", "status"),
    ("Total Revenue", "totalRevenue"),
    ("Total Expenses", "totalExpenses"),
    ("Net Profit", "netProfit"),
    ("Total Assets", "totalAssets"),
    ("Total Liabilities", "totalLiabilities"),
    ("Total Equity", "totalEquity"),
    ("Tax", "taxAmount"),
]
SECTION_TITLES = {
    ("revenue",): "REVENUE",
    ("expenses",): "EXPENSES",
    ("assets", "current"): "CURRENT ASSETS",
    ("assets", "fixed"): "FIXED ASSETS",
    ("liabilities", "current"): "CURRENT LIABILITIES",
    ("liabilities", "longTerm"): "LONG-TERM LIABILITIES",
    ("equity",): "EQUITY",
}
DETAIL_HEADERS = ["Category", "Item", "Amount"]

HEADER_FILL = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
HEADER_FONT = Font(bold=True, color="FFFFFF")


def _write_header(ws, headers: List[str], width: int = 18) -> None:
    for col_num, title in enumerate(headers, 1):
        cell = ws.cell(row=1, column=col_num)
        cell.value = title
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.alignment = Alignment(horizontal="center", vertical="center")
        ws.column_dimensions[get_column_letter(col_num)].width = width


def _detail_rows(doc: dict) -> List[List]:
    rows: List[List] = []
    for section, keys in SECTION_KEYS.items():
        values = doc
        for part in section:
            values = values.get(part, {})
        rows.append([SECTION_TITLES[section], None, None])
        rows.extend([None, key, values.get(key, 0)] for key in keys)
        rows.append([None, None, None])
    figures = derive(doc)
    rows.append(["TOTALS", None, None])
    rows.extend([
        [None, "grossProfit", figures.gross_profit],
        [None, "taxableIncome", figures.taxable_income],
        [None, "taxAmount", figures.tax_amount],
        [None, "netProfit", figures.net_profit],
        [None, "isBalanced", figures.is_balanced],
    ])
    return rows


def reports_to_xlsx(docs: Iterable[dict]) -> bytes:
    wb = Workbook()
    summary = wb.active
    summary.title = "Summary"
    _write_header(summary, [title for title, _ in SUMMARY_COLUMNS])

    for index, doc in enumerate(docs, 1):
        figures = derive(doc).model_dump(by_alias=True)
        for col_num, (_, key) in enumerate(SUMMARY_COLUMNS, 1):
            summary.cell(row=index + 1, column=col_num).value = doc.get(key, figures.get(key))

        detail = wb.create_sheet(f"Detail {index}")
        _write_header(detail, DETAIL_HEADERS)
        for row_num, row in enumerate(_detail_rows(doc), 2):
            for col_num, value in enumerate(row, 1):
                detail.cell(row=row_num, column=col_num).value = value

    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()
