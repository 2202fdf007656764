"""
Cell roles and the styles they map to.

Styling is a pure function of the role: the planner only decides *what* a
cell is, ``cell_style`` decides how it looks and whether it is locked. The
reader side (lookup.py) inverts the same mapping to recognise titles and
header rows in an uploaded workbook.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.core.config import settings


class CellRole(str, Enum):
    TITLE = "title"  # sheet title
    SUBTITLE = "subtitle"  # subsection title
    TABLE_TITLE = "table_title"
    HEADER = "header"  # column header row
    LABEL = "label"  # field label in a Field/Value block
    LOCKED = "locked"  # read-only value
    EDITABLE = "editable"  # supplier input
    NOTE = "note"  # free text on the instructions sheet


TITLE_FONT_SIZE = 14
SUBTITLE_FONT_SIZE = 12
BODY_FONT_SIZE = 11


@dataclass(frozen=True)
class CellStyle:
    bold: bool = False
    size: int = BODY_FONT_SIZE
    fill: Optional[str] = None  # ARGB hex, None = no fill
    locked: bool = True
    border: bool = False
    wrap: bool = False


def cell_style(role: CellRole) -> CellStyle:
    """Map a cell role to its visual style and protection state."""
    if role == CellRole.TITLE:
        return CellStyle(bold=True, size=TITLE_FONT_SIZE)
    if role == CellRole.SUBTITLE:
        return CellStyle(bold=True, size=SUBTITLE_FONT_SIZE)
    if role == CellRole.TABLE_TITLE:
        return CellStyle(bold=True)
    if role == CellRole.HEADER:
        return CellStyle(bold=True, fill=settings.HEADER_FILL_COLOR, border=True, wrap=True)
    if role == CellRole.LABEL:
        return CellStyle(border=True, wrap=True)
    if role == CellRole.LOCKED:
        return CellStyle(border=True, wrap=True)
    if role == CellRole.EDITABLE:
        return CellStyle(fill=settings.EDITABLE_FILL_COLOR, locked=False, border=True, wrap=True)
    if role == CellRole.NOTE:
        return CellStyle(wrap=False)
    raise ValueError(f"Unknown cell role: {role}")


def same_color(left: Optional[str], right: Optional[str]) -> bool:
    """Compare ARGB colours ignoring the alpha byte, which spreadsheet apps rewrite."""
    if not isinstance(left, str) or not isinstance(right, str):
        return False
    return left.upper()[-6:] == right.upper()[-6:]
