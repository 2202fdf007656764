"""
Workbook helpers for tests: open, edit and save xlsx bytes the way a
supplier's spreadsheet application would.
"""
import io

from openpyxl import load_workbook


def open_xlsx(data: bytes):
    return load_workbook(io.BytesIO(data))


def save_xlsx(workbook) -> bytes:
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def find_cell(worksheet, value):
    """First cell whose value equals ``value``."""
    for row in worksheet.iter_rows():
        for cell in row:
            if cell.value == value:
                return cell
    raise AssertionError(f"{value!r} not found on sheet {worksheet.title}")


def edit_workbook(data: bytes, edits) -> bytes:
    """Apply ``{sheet: {coordinate: value}}`` and return the new bytes."""
    workbook = open_xlsx(data)
    for sheet, cells in edits.items():
        for coordinate, value in cells.items():
            workbook[sheet][coordinate] = value
    return save_xlsx(workbook)


def cell_right_of(worksheet, label, offset: int = 1):
    """Coordinate of the cell ``offset`` columns right of the cell holding ``label``."""
    cell = find_cell(worksheet, label)
    return worksheet.cell(row=cell.row, column=cell.column + offset).coordinate
