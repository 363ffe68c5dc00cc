"""
Output writers: manifest (CSV + XLSX), manual review list, delivery note
workbooks, per-document JSON and the delivery summary.

All writers run on the main thread after the batch has finished.
"""

import csv
import json
import logging
from pathlib import Path
from typing import Iterable, List, Sequence

import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from notescan.records import MANIFEST_COLUMNS, ClassificationResult, ManifestEntry

logger = logging.getLogger(__name__)

HEADER_FONT = Font(bold=True)
HEADER_FILL = PatternFill(start_color="D9E1F2", end_color="D9E1F2", fill_type="solid")

DELIVERY_SHEET = "Sheet1"
DELIVERY_COLUMN_WIDTH = 15

SUMMARY_COLUMNS = ["Input", "Pages", "Accepted", "Excluded", "Invalid",
                   "AutoCorrections", "Duplicates", "Error"]


# ============================================================================
# CR manifest
# ============================================================================

def write_manifest_csv(entries: Sequence[ManifestEntry], out_path) -> Path:
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with open(out_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(MANIFEST_COLUMNS)
        for entry in entries:
            writer.writerow(entry.as_row())
    logger.info("Manifest written: %s (%d rows)", out_path, len(entries))
    return out_path


def write_manifest_xlsx(entries: Sequence[ManifestEntry], out_path) -> Path:
    """Manifest as a workbook with a styled, frozen header row."""
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Manifest"

    for col_idx, col_name in enumerate(MANIFEST_COLUMNS, start=1):
        cell = ws.cell(row=1, column=col_idx, value=col_name)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center")

    rows = [entry.as_row() for entry in entries]
    for row_idx, row in enumerate(rows, start=2):
        for col_idx, value in enumerate(row, start=1):
            ws.cell(row=row_idx, column=col_idx, value=value)

    # Auto-fit column widths (approximate)
    for col_idx, col_name in enumerate(MANIFEST_COLUMNS, start=1):
        max_len = len(col_name)
        for row in rows:
            max_len = max(max_len, min(60, len(str(row[col_idx - 1]))))
        ws.column_dimensions[get_column_letter(col_idx)].width = max_len + 3

    ws.freeze_panes = "A2"
    wb.save(str(out_path))
    return out_path


def write_manual_review(messages: Iterable[str], out_path) -> Path:
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    messages = list(messages)
    with open(out_path, "w", encoding="utf-8") as f:
        for msg in messages:
            f.write(msg + "\n")
    if messages:
        logger.warning("%d group(s) need manual review, see %s", len(messages), out_path)
    return out_path


# ============================================================================
# Delivery notes
# ============================================================================

def unique_in_order(values: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(values))


def write_delivery_workbook(accepted: Iterable[str], out_path) -> Path:
    """Unique accepted delivery note numbers in column A of 'Sheet1', no header."""
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = DELIVERY_SHEET
    for row_idx, value in enumerate(unique_in_order(accepted), start=1):
        ws.cell(row=row_idx, column=1, value=value)
    ws.column_dimensions["A"].width = DELIVERY_COLUMN_WIDTH

    wb.save(str(out_path))
    return out_path


def write_classification_json(result: ClassificationResult, out_path) -> Path:
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(result.to_dict(), f, indent=2, ensure_ascii=False)
    return out_path


def write_summary_csv(results, out_path) -> Path:
    """
    One row per delivery document with bucket counts.

    Args:
        results: DocumentResult objects of a delivery run
        out_path: CSV path
    """
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with open(out_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(SUMMARY_COLUMNS)
        for res in results:
            c = res.classification
            if c is None:
                writer.writerow([res.input, res.total_pages, 0, 0, 0, 0, 0, res.error or ""])
                continue
            writer.writerow([
                res.input, res.total_pages, len(c.accepted), len(c.excluded),
                len(c.invalid), len(c.auto_corrections), c.duplicate_count, "",
            ])
    return out_path
