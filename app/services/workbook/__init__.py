"""
Supplier workbook engine.
Projects RFQ templates into supplier documents, writes them to protected
xlsx workbooks and reconciles uploaded workbooks back into documents.
"""
from .document import (
    Column, Field, Section, SectionType, Subsection, SupplierDocument, Table,
    dump_document, dump_sections, load_document, load_sections,
)
from .projector import build_default_sections, project, project_rfq
from .plan import Recipient, RFQInfo, WorkbookPlan, plan_workbook
from .writer import XLSX_CONTENT_TYPE, temporary_workbook_file, write_workbook
from .reconcile import ReconcileResult, extract_quote_summary, reconcile


def serialize(document, recipient=None, rfq=None, token=None) -> bytes:
    """Document to xlsx bytes: plan the cells, then render them."""
    return write_workbook(plan_workbook(load_document(document), recipient=recipient, rfq=rfq, token=token))


__all__ = [
    "Column",
    "Field",
    "Section",
    "SectionType",
    "Subsection",
    "SupplierDocument",
    "Table",
    "dump_document",
    "dump_sections",
    "load_document",
    "load_sections",
    "build_default_sections",
    "project",
    "project_rfq",
    "Recipient",
    "RFQInfo",
    "WorkbookPlan",
    "plan_workbook",
    "XLSX_CONTENT_TYPE",
    "temporary_workbook_file",
    "write_workbook",
    "ReconcileResult",
    "extract_quote_summary",
    "reconcile",
    "serialize",
]
