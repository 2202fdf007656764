"""
openpyxl rendering of a WorkbookPlan.

Everything about layout and editability is decided in plan.py; this stage
only translates roles into openpyxl styles, attaches data validations and
applies sheet and workbook protection.
"""
import io
import os
import tempfile
from contextlib import contextmanager
from typing import Dict, Generator, List, Optional, Tuple

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Protection, Side
from openpyxl.utils import get_column_letter, quote_sheetname
from openpyxl.workbook.protection import WorkbookProtection
from openpyxl.worksheet.datavalidation import DataValidation
from openpyxl.worksheet.worksheet import Worksheet

from app.core.config import settings
from app.core.logging import get_logger
from app.services.workbook.lookup import LISTS_SHEET
from app.services.workbook.plan import SheetPlan, ValidationPlan, WorkbookPlan, needs_list_sheet
from app.services.workbook.styles import CellStyle, cell_style

logger = get_logger(__name__)

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

_THIN = Side(style="thin")
_BORDER = Border(left=_THIN, right=_THIN, top=_THIN, bottom=_THIN)


def _apply_style(cell, style: CellStyle) -> None:
    cell.font = Font(bold=style.bold, size=style.size)
    if style.fill:
        cell.fill = PatternFill(fill_type="solid", start_color=style.fill, end_color=style.fill)
    if style.border:
        cell.border = _BORDER
    cell.alignment = Alignment(wrap_text=style.wrap, vertical="top")
    cell.protection = Protection(locked=style.locked)


def _protect_sheet(worksheet: Worksheet) -> None:
    """Value edits on unlocked cells only; no structural changes."""
    protection = worksheet.protection
    protection.sheet = True
    # True = the operation is blocked
    protection.formatCells = True
    protection.formatColumns = True
    protection.formatRows = True
    protection.insertColumns = True
    protection.insertRows = True
    protection.insertHyperlinks = True
    protection.deleteColumns = True
    protection.deleteRows = True
    protection.sort = True
    protection.autoFilter = True
    protection.pivotTables = True
    protection.selectLockedCells = False
    protection.selectUnlockedCells = False
    if settings.SHEET_PROTECTION_PASSWORD:
        protection.password = settings.SHEET_PROTECTION_PASSWORD


class _ListSheet:
    """Hidden sheet holding option lists too long or too awkward to inline."""

    def __init__(self, worksheet: Optional[Worksheet]):
        self.worksheet = worksheet
        self.ranges: Dict[Tuple[str, ...], str] = {}

    def reference(self, options: List[str]) -> str:
        key = tuple(options)
        if key in self.ranges:
            return self.ranges[key]
        if self.worksheet is None:
            raise ValueError("Long option list planned without a Lists sheet")
        column = len(self.ranges) + 1
        for row, option in enumerate(options, start=1):
            cell = self.worksheet.cell(row=row, column=column, value=option)
            cell.protection = Protection(locked=True)
        letter = get_column_letter(column)
        reference = f"{quote_sheetname(LISTS_SHEET)}!${letter}$1:${letter}${len(options)}"
        self.ranges[key] = reference
        return reference


def _add_validations(worksheet: Worksheet, validations: List[ValidationPlan], lists: _ListSheet) -> None:
    for planned in validations:
        if needs_list_sheet(planned.options):
            formula = lists.reference(planned.options)
        else:
            formula = '"' + ",".join(planned.options) + '"'
        validation = DataValidation(
            type="list",
            formula1=formula,
            allow_blank=True,
            showErrorMessage=True,
            errorTitle="Invalid entry",
            error="Please choose a value from the list.",
        )
        worksheet.add_data_validation(validation)
        validation.add(worksheet.cell(row=planned.row, column=planned.column))


def _render_sheet(worksheet: Worksheet, sheet: SheetPlan, lists: _ListSheet) -> None:
    for planned in sheet.cells:
        cell = worksheet.cell(row=planned.row, column=planned.column, value=planned.value)
        _apply_style(cell, cell_style(planned.role))
    for column, width in sheet.column_widths.items():
        worksheet.column_dimensions[get_column_letter(column)].width = width
    _add_validations(worksheet, sheet.validations, lists)
    _protect_sheet(worksheet)


def write_workbook(plan: WorkbookPlan) -> bytes:
    """Render a plan to xlsx bytes."""
    workbook = Workbook()
    workbook.remove(workbook.active)
    workbook.properties.creator = settings.WORKBOOK_CREATOR

    worksheets = {sheet.name: workbook.create_sheet(title=sheet.name) for sheet in plan.sheets}
    lists = _ListSheet(worksheets.get(LISTS_SHEET))

    for sheet in plan.sheets:
        worksheet = worksheets[sheet.name]
        _render_sheet(worksheet, sheet, lists)
        if sheet.hidden:
            worksheet.sheet_state = "hidden"

    workbook.active = 0
    workbook.security = WorkbookProtection(lockStructure=True)
    if settings.SHEET_PROTECTION_PASSWORD:
        workbook.security.workbookPassword = settings.SHEET_PROTECTION_PASSWORD

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


@contextmanager
def temporary_workbook_file(data: bytes, prefix: str = "rfq-") -> Generator[str, None, None]:
    """
    Write workbook bytes to a temporary .xlsx file for collaborators that
    need a path (mail attachments). The file is removed on every exit path.
    """
    fd, path = tempfile.mkstemp(prefix=prefix, suffix=".xlsx", dir=settings.TEMP_DIR)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        yield path
    finally:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove temporary workbook {path}: {e}")
