"""
Workbook cell plan.

Serialization is split in two stages. This module turns a document into a
``WorkbookPlan``: plain data describing every cell (position, value, role),
every dropdown and every column width. No spreadsheet engine is involved, so
tests can assert on layout and editability directly. ``writer.py`` renders a
plan with openpyxl.

Sheet layout, in order:

    Instructions   read-only guidance and the list of section sheets
    Supplier       read-only recipient details and the verification token
    <section>...   one sheet per visible top-level section

Section sheet layout (rows top to bottom):

    Section title
    (blank)
    Heading | Description          when the section or a subsection has content
    Field | Value                  when the container has visible fields
    <table title>
    <header row>                   TABLE_HEADER_OFFSET rows below the title
    <data rows> <empty input rows>
    (blank)
    <subsection title>, (blank), its fields and tables ...
"""
import html
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from app.core.logging import get_logger
from app.services.workbook.document import (
    SELECTION_TYPES, Column, Field, Section, Subsection, SupplierDocument, Table, split_options,
)
from app.services.workbook.lookup import (
    INSTRUCTIONS_SHEET, LISTS_SHEET, PLACEHOLDER_SHEET, SUPPLIER_SHEET,
    TABLE_HEADER_OFFSET, TOKEN_LABEL, assign_sheet_names,
)
from app.services.workbook.styles import CellRole

logger = get_logger(__name__)

# Inline list formulas are limited to 255 characters by the file format
MAX_INLINE_LIST_LENGTH = 255
MIN_COLUMN_WIDTH = 10
MAX_COLUMN_WIDTH = 50


@dataclass(frozen=True)
class CellPlan:
    row: int
    column: int
    value: Any
    role: CellRole


@dataclass
class ValidationPlan:
    """Dropdown list attached to one cell; options keep the supplied order."""
    row: int
    column: int
    options: List[str]


@dataclass
class Recipient:
    supplier_id: str
    name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    contact_person: Optional[str] = None


@dataclass
class RFQInfo:
    rfq_id: str
    title: str = ""
    due_date: Optional[str] = None


@dataclass
class SheetPlan:
    name: str
    cells: List[CellPlan] = field(default_factory=list)
    validations: List[ValidationPlan] = field(default_factory=list)
    column_widths: Dict[int, float] = field(default_factory=dict)
    hidden: bool = False

    def put(self, row: int, column: int, value: Any, role: CellRole) -> None:
        # Empty strings are written as empty cells
        self.cells.append(CellPlan(row, column, None if value == "" else value, role))

    def cell(self, row: int, column: int) -> Optional[CellPlan]:
        for planned in self.cells:
            if planned.row == row and planned.column == column:
                return planned
        return None

    def find(self, value: Any, role: Optional[CellRole] = None) -> Optional[CellPlan]:
        for planned in self.cells:
            if planned.value == value and (role is None or planned.role == role):
                return planned
        return None

    def validation_at(self, row: int, column: int) -> Optional[ValidationPlan]:
        for validation in self.validations:
            if validation.row == row and validation.column == column:
                return validation
        return None


@dataclass
class WorkbookPlan:
    sheets: List[SheetPlan] = field(default_factory=list)

    @property
    def sheet_names(self) -> List[str]:
        return [s.name for s in self.sheets]

    def sheet(self, name: str) -> Optional[SheetPlan]:
        for sheet in self.sheets:
            if sheet.name == name:
                return sheet
        return None


# ============= HELPERS =============

_TAG_RE = re.compile(r"<[^>]+>")
_BREAK_RE = re.compile(r"<br\s*/?>|</p>|</li>|</div>", re.IGNORECASE)


def strip_html(text: Optional[str]) -> str:
    """Rich-text content to plain text with line breaks kept."""
    if not text:
        return ""
    plain = _BREAK_RE.sub("\n", str(text))
    plain = _TAG_RE.sub("", plain)
    plain = html.unescape(plain)
    lines = [line.strip() for line in plain.splitlines()]
    return "\n".join(line for line in lines if line)


def visible_sections(document: SupplierDocument) -> List[Section]:
    return [s for s in document.sections if s.visible_to_supplier]


def section_sheet_names(document: SupplierDocument) -> List[str]:
    return assign_sheet_names(s.title for s in visible_sections(document))


def visible_columns(table: Table) -> List[Column]:
    return [c for c in table.columns if c.visible_to_supplier]


def is_selection_column(column: Column) -> bool:
    return (
        column.type.lower() in SELECTION_TYPES
        or column.id == "response"
        or column.accessor_key == "response"
    )


def row_options(row: Dict[str, Any], column: Column) -> Optional[List[str]]:
    """
    Dropdown options for one table cell.

    Row-level ``options`` win over the column's own list. They only count on
    rows without a ``type`` or with a selection ``type``; other rows fall back
    to the column.
    """
    row_type = str(row.get("type") or "").lower()
    options = None
    if not row_type or row_type in SELECTION_TYPES:
        options = split_options(row.get("options"))
    return options or column.options or None


def display_value(value: Any) -> Any:
    """Value as written to a cell: scalars as-is, collections flattened to text."""
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    if isinstance(value, dict):
        return ", ".join(f"{k}: {v}" for k, v in value.items())
    return value


def _track_width(sheet: SheetPlan, column: int, value: Any) -> None:
    text = str(value) if value is not None else ""
    longest = max((len(line) for line in text.splitlines()), default=0)
    width = min(max(longest + 2, MIN_COLUMN_WIDTH), MAX_COLUMN_WIDTH)
    if width > sheet.column_widths.get(column, 0):
        sheet.column_widths[column] = width


# ============= SHEET BUILDERS =============

class _SectionSheetBuilder:
    """Lays out one section sheet, tracking the next free row."""

    def __init__(self, sheet: SheetPlan):
        self.sheet = sheet
        self.row = 1
        self.fixed_widths: Dict[int, float] = {}

    def put(self, column: int, value: Any, role: CellRole) -> None:
        value = display_value(value)
        self.sheet.put(self.row, column, value, role)
        _track_width(self.sheet, column, value)

    def skip(self, count: int = 1) -> None:
        self.row += count

    def title(self, text: str, role: CellRole) -> None:
        self.sheet.put(self.row, 1, text, role)
        self.skip(2)

    def content_block(self, section: Section) -> None:
        entries = []
        if section.content:
            entries.append((section.title, strip_html(section.content)))
        for subsection in section.subsections:
            if subsection.visible_to_supplier and subsection.content:
                entries.append((subsection.title, strip_html(subsection.content)))
        if not entries:
            return
        self.put(1, "Heading", CellRole.HEADER)
        self.put(2, "Description", CellRole.HEADER)
        self.skip()
        for heading, description in entries:
            self.put(1, heading, CellRole.LOCKED)
            self.put(2, description, CellRole.LOCKED)
            self.skip()
        self.skip()

    def fields_block(self, fields: List[Field]) -> None:
        fields = [f for f in fields if f.visible_to_supplier]
        if not fields:
            return
        self.put(1, "Field", CellRole.HEADER)
        self.put(2, "Value", CellRole.HEADER)
        self.skip()
        for item in fields:
            self.put(1, item.label, CellRole.LABEL)
            if item.editable_by_supplier:
                self.put(2, item.value, CellRole.EDITABLE)
                if item.options:
                    self.sheet.validations.append(ValidationPlan(self.row, 2, list(item.options)))
            else:
                self.put(2, item.value, CellRole.LOCKED)
            self.skip()
        self.skip()

    def table_block(self, table: Table) -> None:
        if not table.visible_to_supplier:
            return
        columns = visible_columns(table)
        if not columns:
            logger.debug(f"Skipping table '{table.title}': no visible columns")
            return

        self.sheet.put(self.row, 1, table.title, CellRole.TABLE_TITLE)
        self.skip(TABLE_HEADER_OFFSET)
        for index, column in enumerate(columns, start=1):
            self.put(index, column.header, CellRole.HEADER)
            if column.width:
                self.fixed_widths[index] = column.width
        self.skip()

        for record in table.data:
            self._table_row(columns, record)
        for _ in range(max(table.empty_rows, 0)):
            self._table_row(columns, {})
        self.skip()

    def _table_row(self, columns: List[Column], record: Dict[str, Any]) -> None:
        for index, column in enumerate(columns, start=1):
            value = record.get(column.key, "")
            if column.editable_by_supplier:
                self.put(index, value, CellRole.EDITABLE)
                if is_selection_column(column):
                    options = row_options(record, column)
                    if options:
                        self.sheet.validations.append(ValidationPlan(self.row, index, options))
            else:
                self.put(index, value, CellRole.LOCKED)
        self.skip()

    def container(self, node: Subsection) -> None:
        self.fields_block(node.fields)
        for table in node.tables:
            self.table_block(table)

    def build(self, section: Section) -> SheetPlan:
        self.title(section.title, CellRole.TITLE)
        self.content_block(section)
        self.container(section)
        for subsection in section.subsections:
            if not subsection.visible_to_supplier:
                continue
            self.title(subsection.title, CellRole.SUBTITLE)
            self.container(subsection)
        self.sheet.column_widths.update(self.fixed_widths)
        return self.sheet


def build_section_sheet(section: Section, name: str) -> SheetPlan:
    return _SectionSheetBuilder(SheetPlan(name=name)).build(section)


def build_instructions_sheet(section_names: List[str]) -> SheetPlan:
    sheet = SheetPlan(name=INSTRUCTIONS_SHEET)
    sheet.put(1, 1, "Instructions", CellRole.TITLE)
    lines = [
        "1. Enter your responses in the cells highlighted in yellow. All other cells are locked.",
        "2. Where a cell offers a dropdown list, choose one of the listed values.",
        "3. Do not rename, move, add or delete sheets, rows or columns.",
        "4. Do not change the Supplier sheet. It identifies this workbook and its recipient.",
        "5. Only the most recently issued workbook is accepted. Upload it before the due date.",
    ]
    row = 3
    for line in lines:
        sheet.put(row, 1, line, CellRole.NOTE)
        row += 1
    row += 1
    sheet.put(row, 1, "Sheets in this workbook:", CellRole.TABLE_TITLE)
    row += 1
    for name in section_names:
        sheet.put(row, 1, f"• {name}", CellRole.NOTE)
        row += 1
    sheet.column_widths[1] = 100
    return sheet


def build_supplier_sheet(recipient: Recipient, rfq: Optional[RFQInfo], token: Optional[str]) -> SheetPlan:
    sheet = SheetPlan(name=SUPPLIER_SHEET)
    sheet.put(1, 1, "Supplier Information", CellRole.TITLE)
    sheet.put(3, 1, "Field", CellRole.HEADER)
    sheet.put(3, 2, "Value", CellRole.HEADER)
    rows = [
        ("Supplier ID", recipient.supplier_id),
        ("Name", recipient.name),
        ("Email", recipient.email),
        ("Phone", recipient.phone),
        ("Address", recipient.address),
        ("Contact Person", recipient.contact_person),
        ("RFQ ID", rfq.rfq_id if rfq else ""),
        ("RFQ Title", rfq.title if rfq else ""),
        ("RFQ Due Date", rfq.due_date if rfq else ""),
        (TOKEN_LABEL, token),
    ]
    for offset, (label, value) in enumerate(rows):
        sheet.put(4 + offset, 1, label, CellRole.LABEL)
        sheet.put(4 + offset, 2, "" if value is None else str(value), CellRole.LOCKED)
    sheet.column_widths.update({1: 22, 2: 50})
    return sheet


def needs_list_sheet(options: List[str]) -> bool:
    if any("," in o or '"' in o for o in options):
        return True
    return len(",".join(options)) > MAX_INLINE_LIST_LENGTH


def plan_workbook(
    document: SupplierDocument,
    recipient: Optional[Recipient] = None,
    rfq: Optional[RFQInfo] = None,
    token: Optional[str] = None,
) -> WorkbookPlan:
    """Lay out the whole workbook for a document and optional recipient."""
    sections = visible_sections(document)
    names = section_sheet_names(document)

    section_sheets = [build_section_sheet(s, n) for s, n in zip(sections, names)]
    if not section_sheets:
        placeholder = SheetPlan(name=PLACEHOLDER_SHEET)
        placeholder.put(1, 1, rfq.title if rfq and rfq.title else "RFQ Details", CellRole.TITLE)
        placeholder.put(3, 1, "This request has no sections to complete.", CellRole.NOTE)
        section_sheets = [placeholder]

    plan = WorkbookPlan()
    plan.sheets.append(build_instructions_sheet([s.name for s in section_sheets]))
    if recipient is not None:
        plan.sheets.append(build_supplier_sheet(recipient, rfq, token))
    plan.sheets.extend(section_sheets)

    if any(needs_list_sheet(v.options) for s in section_sheets for v in s.validations):
        plan.sheets.append(SheetPlan(name=LISTS_SHEET, hidden=True))
    return plan
