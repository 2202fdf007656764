"""
Reconciliation of supplier-uploaded workbooks against the issued document.

The uploaded file is untrusted. The verification token is checked before
anything is read; after that every value is located by display text, taken
only from cells that still carry the editable fill, and merged into a copy
of the document that was issued. Non-editable data always comes from the
issued document, never from the file.

Lookup misses (deleted sheet, renamed table, unknown question) are reported
as diagnostics and skipped; they never abort reconciliation.
"""
import io
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from zipfile import BadZipFile

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.workbook.workbook import Workbook

from app.core.errors import WorkbookAuthenticityError, WorkbookFormatError
from app.core.logging import get_logger, mask_token
from app.services.workbook.document import (
    ExtractionMetadata, Section, SectionType, Subsection, SupplierDocument, Table,
    load_document, to_number,
)
from app.services.workbook.lookup import (
    TABLE_HEADER_OFFSET, SheetIndex, find_sheet, read_verification_token,
)
from app.services.workbook.plan import section_sheet_names, visible_columns, visible_sections
from app.services.workbook.styles import CellRole

logger = get_logger(__name__)


@dataclass
class Diagnostic:
    message: str
    section_id: Optional[str] = None
    node_id: Optional[str] = None
    level: str = "warning"

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "message": self.message,
            "section_id": self.section_id,
            "node_id": self.node_id,
        }


@dataclass
class VerificationResult:
    verified: bool
    token_prefix: str


@dataclass
class ReconcileResult:
    document: SupplierDocument
    verification: VerificationResult
    diagnostics: List[Diagnostic] = field(default_factory=list)


def open_workbook(data: bytes) -> Workbook:
    """Load uploaded bytes, mapping every unreadable-file failure to WorkbookFormatError."""
    if not data:
        raise WorkbookFormatError("Uploaded workbook is empty")
    try:
        return load_workbook(io.BytesIO(data))
    except (InvalidFileException, BadZipFile, KeyError, OSError, ValueError, TypeError) as e:
        raise WorkbookFormatError(f"Uploaded file is not a readable workbook: {e}") from e


def verify_token(workbook: Workbook, stored_token: Optional[str]) -> VerificationResult:
    """
    Compare the embedded token with the one stored for the recipient.

    Raises WorkbookAuthenticityError when either side is missing or they
    differ. Only the most recently issued workbook carries a valid token.
    """
    if not stored_token:
        raise WorkbookAuthenticityError("No workbook has been issued to this supplier")
    embedded = read_verification_token(workbook)
    if embedded is None:
        raise WorkbookAuthenticityError("Workbook has no verification token; it was not issued by this system")
    if embedded != stored_token:
        logger.warning(
            f"Token mismatch: embedded {mask_token(embedded)} stored {mask_token(stored_token)}"
        )
        raise WorkbookAuthenticityError(
            "Workbook verification failed: the file was tampered with or is not the latest issued workbook"
        )
    return VerificationResult(verified=True, token_prefix=mask_token(embedded))


def _is_questionnaire(node: Subsection) -> bool:
    return node.type == SectionType.QUESTIONNAIRE


class _SectionReader:
    """Applies one worksheet to one section of the working copy."""

    def __init__(self, section: Section, index: SheetIndex, diagnostics: List[Diagnostic]):
        self.section = section
        self.index = index
        self.diagnostics = diagnostics

    def note(self, message: str, node_id: Optional[str] = None) -> None:
        logger.info(f"[{self.index.title}] {message}")
        self.diagnostics.append(Diagnostic(message=message, section_id=self.section.id, node_id=node_id))

    # ---------- layout ----------

    def container_ranges(self) -> List[tuple]:
        """(container, first_row, end_row) for the section and each located subsection."""
        end_of_sheet = self.index.max_row + 1
        located = []
        cursor = 2
        for subsection in self.section.subsections:
            if not subsection.visible_to_supplier:
                continue
            row = self.index.find_row(subsection.title, cursor, roles=[CellRole.SUBTITLE])
            if row is None:
                self.note(f"Subsection '{subsection.title}' not found", subsection.id)
                continue
            located.append((subsection, row))
            cursor = row + 1

        first_boundary = located[0][1] if located else end_of_sheet
        ranges = [(self.section, 2, first_boundary)]
        for position, (subsection, row) in enumerate(located):
            end = located[position + 1][1] if position + 1 < len(located) else end_of_sheet
            ranges.append((subsection, row + 1, end))
        return ranges

    def apply(self) -> None:
        for container, start, end in self.container_ranges():
            self.read_fields(container, start, end)
            cursor = start
            for table in container.tables:
                if not table.visible_to_supplier or not visible_columns(table):
                    continue
                next_row = self.read_table(table, cursor, end, _is_questionnaire(container))
                if next_row is not None:
                    cursor = next_row

    # ---------- fields ----------

    def _field_row(self, label: str, start: int, end: int) -> Optional[int]:
        """First row labelled ``label`` with an editable value cell, else the first labelled row."""
        first = None
        row = self.index.find_row(label, start, end, roles=[None, CellRole.EDITABLE])
        while row is not None:
            if self.index.is_editable(row, 2):
                return row
            first = first or row
            row = self.index.find_row(label, row + 1, end, roles=[None, CellRole.EDITABLE])
        return first

    def read_fields(self, container: Subsection, start: int, end: int) -> None:
        header = self.index.find_row("Field", start, end, roles=[CellRole.HEADER])
        if header is not None and self.index.text(header, 2) == "Value":
            start = header + 1
        for item in container.fields:
            if not item.visible_to_supplier or not item.editable_by_supplier:
                continue
            row = self._field_row(item.label, start, end)
            if row is None:
                self.note(f"Field '{item.label}' not found", item.id)
                continue
            if not self.index.is_editable(row, 2):
                self.note(f"Field '{item.label}' value cell is not an editable cell; ignored", item.id)
                continue
            item.value = self.index.text(row, 2)

    # ---------- tables ----------

    def _data_rows(self, first_row: int, end: int, expected: int) -> List[int]:
        """
        Rows belonging to a table body.

        The issued data rows are always read, even when blank. Past them the
        body ends at a blank row, a marker row, the next title or the end of
        the container.
        """
        rows = []
        row = first_row
        stop = min(end, self.index.max_row + 1)
        while row < stop:
            if self.index.is_structural(row):
                break
            past_issued = len(rows) >= expected
            if past_issued and (self.index.is_blank(row) or self.index.is_marker(row)):
                break
            rows.append(row)
            row += 1
        return rows

    def read_table(self, table: Table, start: int, end: int, questionnaire: bool) -> Optional[int]:
        title_row = self.index.find_row(table.title, start, end, roles=[CellRole.TABLE_TITLE])
        if title_row is None:
            self.note(f"Table '{table.title}' not found", table.id)
            return None

        header_row = title_row + TABLE_HEADER_OFFSET
        headers = self.index.header_columns(header_row)
        columns = visible_columns(table)
        positions = {
            c.key: headers[c.header.strip().lower()]
            for c in columns
            if c.header.strip().lower() in headers
        }
        if not positions:
            self.note(f"Table '{table.title}' has no recognisable header row", table.id)
            return header_row + 1

        editable = [c for c in columns if c.editable_by_supplier and c.key in positions]
        body = self._data_rows(header_row + 1, end, len(table.data))

        if "id" in positions and any(c.key == "id" for c in columns):
            match_key = "id"
        elif questionnaire and "question" in positions:
            match_key = "question"
        else:
            match_key = None

        merged: List[Dict[str, Any]] = [dict(row) for row in table.data]
        appended: List[Dict[str, Any]] = []
        used = set()

        for position, row in enumerate(body):
            target = self._match(table, row, position, match_key, positions, used)
            values = {}
            for column in editable:
                cell_column = positions[column.key]
                if self.index.is_editable(row, cell_column):
                    values[column.key] = self.index.text(row, cell_column)

            if target is None:
                key_text = self.index.text(row, positions[match_key]) if match_key else ""
                if key_text:
                    self.note(f"Row '{key_text}' in table '{table.title}' does not match the issued rows; ignored",
                              table.id)
                elif any(v != "" for v in values.values()):
                    appended.append(values)
                continue

            used.add(target)
            merged[target].update(values)
            if questionnaire and "response" in values:
                merged[target]["value"] = values["response"]

        table.data = merged + appended
        return (body[-1] + 1) if body else header_row + 1

    def _match(self, table: Table, row: int, position: int, match_key: Optional[str],
               positions: Dict[str, int], used: set) -> Optional[int]:
        """Index of the issued row that a sheet row corresponds to."""
        if match_key is None:
            if position < len(table.data) and position not in used:
                return position
            return None

        text = self.index.text(row, positions[match_key])
        if not text:
            return None
        for index, record in enumerate(table.data):
            if index in used:
                continue
            if str(record.get(match_key, "")).strip() == text:
                return index
        return None


def reconcile(
    data: bytes,
    original,
    recipient_id: str,
    stored_token: Optional[str],
    rfq_id: Optional[Any] = None,
    submitted_at: Optional[datetime] = None,
) -> ReconcileResult:
    """
    Merge an uploaded workbook into a copy of the document it was issued from.

    Raises WorkbookFormatError for unreadable bytes and
    WorkbookAuthenticityError for a missing or stale token; in both cases
    nothing is applied.
    """
    workbook = open_workbook(data)
    verification = verify_token(workbook, stored_token)

    document = load_document(original)
    diagnostics: List[Diagnostic] = []

    for section, name in zip(visible_sections(document), section_sheet_names(document)):
        worksheet = find_sheet(workbook, name)
        if worksheet is None:
            message = f"Sheet '{name}' not found; section left unchanged"
            logger.info(message)
            diagnostics.append(Diagnostic(message=message, section_id=section.id))
            continue
        _SectionReader(section, SheetIndex(worksheet), diagnostics).apply()

    document.metadata = ExtractionMetadata(
        rfq_id=str(rfq_id) if rfq_id is not None else None,
        supplier_id=str(recipient_id),
        submitted_at=submitted_at or datetime.now(timezone.utc),
    )
    logger.info(
        f"Reconciled workbook for supplier {recipient_id}: "
        f"{len(document.sections)} sections, {len(diagnostics)} diagnostics"
    )
    return ReconcileResult(document=document, verification=verification, diagnostics=diagnostics)


# ============= QUOTE SUMMARY =============

def extract_quote_summary(document: SupplierDocument) -> dict:
    """Totals the supplier entered in the Quote Summary section."""
    summary = {
        "total_quote_value": None,
        "currency": None,
        "comments": None,
        "delivery_time": None,
        "validity_period": None,
    }
    for section in document.sections:
        if section.id != "quote-summary" and section.title != "Quote Summary":
            continue
        values = {f.id: f.value for f in section.fields}
        summary["total_quote_value"] = to_number(values.get("totalQuoteValue"))
        summary["delivery_time"] = to_number(values.get("deliveryTime"))
        summary["validity_period"] = to_number(values.get("validityPeriod"))
        currency = str(values.get("currency") or "").strip()
        summary["currency"] = currency.upper() or None
        comments = str(values.get("comments") or "").strip()
        summary["comments"] = comments or None
        break
    return summary
