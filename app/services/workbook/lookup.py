"""
Display-text lookups shared by the workbook writer and reader.

Spreadsheets carry no hidden ids: sheets are found by section title, rows by
field label or table title, columns by header text. All of that text matching
lives here so a move to id-based lookups stays a local change.
"""
import re
from datetime import date, datetime, time
from typing import Dict, Iterable, List, Optional, Set

from openpyxl.workbook.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from app.services.workbook.styles import (
    BODY_FONT_SIZE, SUBTITLE_FONT_SIZE, TITLE_FONT_SIZE, CellRole, same_color,
)
from app.core.config import settings

# ============= WIRE CONTRACT =============

INSTRUCTIONS_SHEET = "Instructions"
SUPPLIER_SHEET = "Supplier"
LISTS_SHEET = "Lists"
PLACEHOLDER_SHEET = "RFQ Details"
TOKEN_LABEL = "Verification UUID"

# Header row sits directly beneath a table title
TABLE_HEADER_OFFSET = 1

MAX_SHEET_NAME = 31
_INVALID_SHEET_CHARS = re.compile(r"[\[\]:*?/\\]")
_RESERVED_SHEETS = (INSTRUCTIONS_SHEET, SUPPLIER_SHEET, LISTS_SHEET, PLACEHOLDER_SHEET)


def _clean_sheet_name(title: str, index: int) -> str:
    name = _INVALID_SHEET_CHARS.sub("-", title or "").strip().strip("'")
    return name[:MAX_SHEET_NAME].strip() or f"Section {index + 1}"


def assign_sheet_names(titles: Iterable[str]) -> List[str]:
    """
    Sheet name for each section title, in order.

    Titles are used verbatim where the file format allows; otherwise invalid
    characters are replaced, long titles truncated, and clashes (sheet names
    are case-insensitive) suffixed with a counter. Writer and reader both call
    this, so a section always maps to the same sheet.
    """
    used: Set[str] = {name.lower() for name in _RESERVED_SHEETS}
    names = []
    for index, title in enumerate(titles):
        base = _clean_sheet_name(title, index)
        name = base
        counter = 2
        while name.lower() in used:
            suffix = f" ({counter})"
            name = base[:MAX_SHEET_NAME - len(suffix)].rstrip() + suffix
            counter += 1
        used.add(name.lower())
        names.append(name)
    return names


def find_sheet(workbook: Workbook, name: str) -> Optional[Worksheet]:
    if name in workbook.sheetnames:
        return workbook[name]
    return None


# ============= CELL VALUES =============

def cell_text(value) -> str:
    """
    Text form of a cell value.

    Never raises: anything without a dedicated rule falls back to str().
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, str):
        return value.strip()
    try:
        return str(value)
    except (TypeError, ValueError):
        return repr(value)


# ============= SHEET INDEX =============

class SheetIndex:
    """Read-side view of one worksheet: text search, row roles, editability."""

    def __init__(self, worksheet: Worksheet):
        self.worksheet = worksheet
        self.max_row = worksheet.max_row or 0
        self.max_column = worksheet.max_column or 0

    @property
    def title(self) -> str:
        return self.worksheet.title

    def raw(self, row: int, column: int):
        return self.worksheet.cell(row=row, column=column).value

    def text(self, row: int, column: int) -> str:
        return cell_text(self.raw(row, column))

    def role(self, row: int, column: int = 1) -> Optional[CellRole]:
        """Structural role of a cell inferred from its style, if any."""
        cell = self.worksheet.cell(row=row, column=column)
        font = cell.font
        bold = bool(font is not None and font.b)
        size = (font.sz if font is not None else None) or BODY_FONT_SIZE
        fill = cell.fill
        color = fill.fgColor.rgb if fill is not None and fill.fill_type == "solid" else None

        if bold and same_color(color, settings.HEADER_FILL_COLOR):
            return CellRole.HEADER
        if same_color(color, settings.EDITABLE_FILL_COLOR):
            return CellRole.EDITABLE
        if bold and size >= TITLE_FONT_SIZE:
            return CellRole.TITLE
        if bold and size >= SUBTITLE_FONT_SIZE:
            return CellRole.SUBTITLE
        if bold:
            return CellRole.TABLE_TITLE
        return None

    def is_editable(self, row: int, column: int) -> bool:
        """True when the cell carries the editable fill written by the serializer."""
        return self.role(row, column) == CellRole.EDITABLE

    def is_blank(self, row: int) -> bool:
        return all(self.text(row, c) == "" for c in range(1, self.max_column + 1))

    def is_marker(self, row: int) -> bool:
        """Rows that start a new block: 'Label:' or 'Section: ...'."""
        first = self.text(row, 1)
        return first.endswith(":") or first.startswith("Section:")

    def is_structural(self, row: int) -> bool:
        return self.role(row) in (CellRole.TITLE, CellRole.SUBTITLE, CellRole.TABLE_TITLE)

    def find_row(
        self,
        text: str,
        start: int = 1,
        end: Optional[int] = None,
        roles: Optional[Iterable[CellRole]] = None,
        column: int = 1,
    ) -> Optional[int]:
        """
        First row in [start, end) whose cell in ``column`` equals ``text``.

        ``roles`` restricts matches to cells styled as one of the given roles;
        a role of None in the collection matches unstyled cells.
        """
        wanted = (text or "").strip()
        if not wanted:
            return None
        stop = min(end if end is not None else self.max_row + 1, self.max_row + 1)
        allowed = set(roles) if roles is not None else None
        for row in range(max(start, 1), stop):
            if self.text(row, column) != wanted:
                continue
            if allowed is not None and self.role(row, column) not in allowed:
                continue
            return row
        return None

    def header_columns(self, row: int) -> Dict[str, int]:
        """Lower-cased header text -> 1-based column index."""
        headers = {}
        for column in range(1, self.max_column + 1):
            value = self.text(row, column).lower()
            if value and value not in headers:
                headers[value] = column
        return headers


def read_verification_token(workbook: Workbook) -> Optional[str]:
    """Token embedded in the Supplier sheet, or None when absent."""
    worksheet = find_sheet(workbook, SUPPLIER_SHEET)
    if worksheet is None:
        return None
    index = SheetIndex(worksheet)
    row = index.find_row(TOKEN_LABEL)
    if row is None:
        return None
    # Raw value: the token must match exactly, whitespace included
    value = index.raw(row, 2)
    if value is None or value == "":
        return None
    return str(value)
