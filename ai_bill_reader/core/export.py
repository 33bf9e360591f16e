"""
CSV export of analyzed bills.

Layout: bill details, then line items, then one row per chart/month/year
usage value. Sections are separated by an empty row.
"""

import csv
from datetime import date
from pathlib import Path
from typing import List, Optional, Union

from ai_bill_reader.storage.models import BillRecord


def _text(value: object) -> str:
    return "" if value is None else str(value)


def bill_to_rows(record: BillRecord) -> List[List[str]]:
    """Build the CSV rows for a record."""
    bill = record.bill
    rows: List[List[str]] = [["Category", "Field", "Value"]]

    confidence = "N/A" if not bill.confidence_score else str(bill.confidence_score)
    rows += [
        ["Bill Details", "Account Name", _text(bill.account_name)],
        ["Bill Details", "Account Number", bill.account_number],
        ["Bill Details", "Service Address", _text(bill.service_address)],
        ["Bill Details", "Statement Date", _text(bill.statement_date)],
        ["Bill Details", "Due Date", _text(bill.due_date)],
        ["Bill Details", "Total Current Charges", str(bill.total_current_charges)],
        ["Bill Details", "Confidence Score", confidence],
        [],
    ]

    if bill.line_items:
        rows.append(["Line Items", "Description", "Amount"])
        rows += [["Line Items", item.description, str(item.amount)] for item in bill.line_items]
        rows.append([])

    if bill.usage_charts:
        rows.append(["Usage Data", "Chart Title", "Unit", "Month", "Year", "Usage"])
        for chart in bill.usage_charts:
            for point in chart.data:
                for usage in point.usage:
                    rows.append([
                        "Usage Data", chart.title, chart.unit,
                        point.month, usage.year, str(usage.value),
                    ])

    return rows


def default_export_filename(record: BillRecord, today: Optional[date] = None) -> str:
    stamp = record.bill.statement_date or (today or date.today()).isoformat()
    return f"bill-analysis-{record.bill.account_number}-{stamp}.csv"


def export_bill_csv(record: BillRecord, path: Union[str, Path]) -> Path:
    """Write the record as CSV with every field quoted.

    Returns:
        The path written
    """
    out = Path(path)
    with open(out, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerows(bill_to_rows(record))
    return out
