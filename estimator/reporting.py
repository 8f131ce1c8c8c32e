"""
Reporting utilities for presenting estimation results.

These adapters only read the stable shape of EstimationResult (line items,
totals, ranges, contingencies); they know nothing about how the numbers
were calculated.
"""

from __future__ import annotations

import csv
import json
from typing import Any, Dict, List, Optional

import pandas as pd

from .engine import EstimationResult
from .units import format_currency, format_number, format_percent


CSV_HEADER = ["Item", "CSI Code", "Quantity", "Unit", "Rate", "Total"]

LINE_ITEM_COLUMNS = [
    "id",
    "name",
    "csi_code",
    "unit",
    "quantity",
    "rate",
    "total",
    "rate_category",
    "state_adjustment",
    "overridden",
]

UNCLASSIFIED = "Unclassified"


def to_csv_rows(result: EstimationResult) -> List[List[str]]:
    """
    Header, one row per line item, then subtotal (and contingency/total when
    a contingency applies) in the Rate/Total columns.
    """
    rows: List[List[str]] = [list(CSV_HEADER)]
    for item in result.line_items:
        rows.append([
            item.name,
            item.csi_code or "",
            format_number(item.quantity, 2),
            item.unit,
            f"{item.rate:.2f}",
            f"{item.total:.2f}",
        ])

    cont = result.contingencies
    rows.append(["", "", "", "", "Subtotal:", f"{result.totals.without_contingency:.2f}"])
    if cont.contingency_amount > 0:
        rows.append(["", "", "", "", f"Contingency ({format_percent(cont.contingency_rate)}):", f"{cont.contingency_amount:.2f}"])
        rows.append(["", "", "", "", "Total:", f"{cont.total:.2f}"])
    return rows


def to_csv_text(result: EstimationResult) -> str:
    rows = to_csv_rows(result)
    frame = pd.DataFrame(rows[1:], columns=rows[0])
    return frame.to_csv(index=False, quoting=csv.QUOTE_ALL, lineterminator="\n")


def line_items_frame(result: EstimationResult) -> pd.DataFrame:
    if not result.line_items:
        return pd.DataFrame(columns=LINE_ITEM_COLUMNS)
    records = [
        {
            "id": item.id,
            "name": item.name,
            "csi_code": item.csi_code,
            "unit": item.unit,
            "quantity": item.quantity,
            "rate": item.rate,
            "total": item.total,
            "rate_category": item.rate_category.value,
            "state_adjustment": item.state_adjustment,
            "overridden": item.overridden,
        }
        for item in result.line_items
    ]
    return pd.DataFrame.from_records(records, columns=LINE_ITEM_COLUMNS)


def csi_breakdown_frame(result: EstimationResult) -> pd.DataFrame:
    """
    Totals per CSI code in first-seen order. Items without a code are
    grouped under "Unclassified" so the breakdown sums to the subtotal.
    """
    df = line_items_frame(result)
    if df.empty:
        return pd.DataFrame(columns=["csi_code", "items", "total", "share"])

    df = df.copy()
    df["csi_code"] = df["csi_code"].fillna(UNCLASSIFIED)
    grouped = df.groupby("csi_code", sort=False).agg(items=("id", "count"), total=("total", "sum")).reset_index()
    overall = float(grouped["total"].sum())
    grouped["share"] = grouped["total"] / overall if overall else 0.0
    return grouped


def to_pdf_lines(result: EstimationResult, title: Optional[str] = None) -> List[str]:
    meta = result.metadata
    lines: List[str] = [
        title or str(meta.get("calculatorName") or meta.get("calculatorId", "Estimate")),
        f"Region: {meta.get('region', '')}    Class: {meta.get('aaceClass', '')} ({meta.get('accuracy', '')})",
        f"Generated: {meta.get('timestamp', '')}",
        "",
    ]
    for item in result.line_items:
        code = f"[{item.csi_code}] " if item.csi_code else ""
        lines.append(
            f"{code}{item.name}: {format_number(item.quantity, 2)} {item.unit} "
            f"x {format_currency(item.rate)} = {format_currency(item.total)}"
        )
    lines.append("")
    lines.extend(_summary_lines(result))
    if result.assumptions:
        lines.append("")
        lines.append("Assumptions:")
        lines.extend(f"- {a}" for a in result.assumptions)
    return lines


def _summary_lines(result: EstimationResult) -> List[str]:
    cont = result.contingencies
    ranges = result.ranges
    return [
        f"Subtotal: {format_currency(cont.subtotal, 0)}",
        f"Contingency ({format_percent(cont.contingency_rate)}): {format_currency(cont.contingency_amount, 0)}",
        f"Total: {format_currency(cont.total, 0)}",
        f"Range (P10-P90): {format_currency(ranges.p10, 0)} - {format_currency(ranges.p90, 0)}",
    ]


def to_clipboard_text(result: EstimationResult) -> str:
    meta = result.metadata
    header = f"{meta.get('calculatorName', meta.get('calculatorId', 'Estimate'))} ({meta.get('region', '')})"
    body = [f"{item.name}: {format_currency(item.total)}" for item in result.line_items]
    return "\n".join([header, *body, *_summary_lines(result)])


def to_json(result: EstimationResult, indent: int = 2) -> str:
    return json.dumps(result.to_dict(), indent=indent, ensure_ascii=False)


def summarize(result: EstimationResult) -> Dict[str, Any]:
    """Headline numbers for a results card."""
    return {
        "label": "ROM Total Installed Cost",
        "value": format_currency(result.totals.with_contingency, 0),
        "low": result.ranges.p10,
        "expected": result.ranges.p50,
        "high": result.ranges.p90,
    }
