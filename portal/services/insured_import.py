from __future__ import annotations

import csv
import logging
import zipfile
from io import BytesIO, StringIO
from typing import Any, Iterable

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from portal.core.errors import ValidationError

logger = logging.getLogger(__name__)

IMPORT_COLUMNS = (
    "insured_name",
    "primary_contact_name",
    "contact_email",
    "phone",
    "street",
    "city",
    "state",
    "zipcode",
)
IMPORT_EXTENSIONS = (".csv", ".xlsx")


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _csv_rows(content: bytes) -> list[list[str]]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = content.decode("latin-1")
    return list(csv.reader(StringIO(text)))


def _xlsx_rows(content: bytes) -> Iterable[tuple]:
    try:
        workbook = load_workbook(BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError) as exc:
        raise ValidationError("The uploaded spreadsheet could not be read") from exc
    return workbook.active.iter_rows(min_row=1, values_only=True)


def parse_insured_rows(file_name: str, content: bytes) -> tuple[list[dict[str, str]], int]:
    """Read insured accounts from a CSV or XLSX upload.

    The first row is a header and is skipped. Columns are positional, in
    ``IMPORT_COLUMNS`` order; rows missing any of them are skipped. Returns the
    valid rows and the number of skipped rows.
    """
    lowered = str(file_name or "").lower()
    if lowered.endswith(".csv"):
        rows = _csv_rows(content)
    elif lowered.endswith(".xlsx"):
        rows = _xlsx_rows(content)
    else:
        raise ValidationError(f"Only {', '.join(IMPORT_EXTENSIONS)} files are supported")

    accounts: list[dict[str, str]] = []
    skipped = 0
    for index, row in enumerate(rows):
        if index == 0:
            continue
        values = [_cell_text(value) for value in list(row or ())[: len(IMPORT_COLUMNS)]]
        if not any(values):
            continue
        if len(values) < len(IMPORT_COLUMNS) or not all(values):
            skipped += 1
            continue
        accounts.append(dict(zip(IMPORT_COLUMNS, values)))
    if skipped:
        logger.info("Insured import %s: skipped %d incomplete row(s)", file_name, skipped)
    return accounts, skipped
