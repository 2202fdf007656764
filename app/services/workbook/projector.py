"""
Projection of RFQ templates into supplier-facing documents.

Two entry points:

* ``project`` filters a buyer-authored template: hidden nodes are dropped
  with their whole subtree, survivors are marked visible, and field defaults
  are resolved into values.
* ``build_default_sections`` synthesises the fixed layout used when an RFQ
  was created without a template.

Both are pure. Missing optional input degrades to empty collections.
"""
import re
from datetime import date, datetime
from typing import Any, Iterable, List, Optional

from app.core.logging import get_logger
from app.services.workbook.document import (
    Column, Field, Section, SectionType, Subsection, SupplierDocument, Table,
    load_sections,
)

logger = get_logger(__name__)


# ============= TEMPLATE PROJECTION =============

def _visible(node) -> bool:
    return node.visible_to_supplier is not False


def project_column(column: Column) -> Column:
    return column.model_copy(update={"visible_to_supplier": True})


def project_field(field: Field) -> Field:
    if field.default_value is not None:
        value = field.default_value
    elif field.value is not None:
        value = field.value
    else:
        value = ""
    # default_value is consumed so a projected document is a fixed point
    return field.model_copy(update={
        "visible_to_supplier": True,
        "value": value,
        "default_value": None,
    }, deep=True)


def project_table(table: Table) -> Table:
    columns = [project_column(c) for c in table.columns if _visible(c)]
    return table.model_copy(update={
        "visible_to_supplier": True,
        "columns": columns,
        "data": [dict(row) for row in table.data],
    }, deep=True)


def _project_container(node: Subsection) -> dict:
    return {
        "visible_to_supplier": True,
        "fields": [project_field(f) for f in node.fields if _visible(f)],
        "tables": [project_table(t) for t in node.tables if _visible(t)],
    }


def project_subsection(subsection: Subsection) -> Subsection:
    return subsection.model_copy(update=_project_container(subsection))


def project_section(section: Section) -> Section:
    update = _project_container(section)
    update["subsections"] = [
        project_subsection(s) for s in section.subsections if _visible(s)
    ]
    return section.model_copy(update=update)


def project(template_structure, supplier_context: Optional[dict] = None) -> SupplierDocument:
    """
    Project a template into the view a supplier is allowed to see.

    ``supplier_context`` is accepted for callers that project per supplier;
    the filtering rules do not currently depend on the supplier.
    """
    sections = load_sections(template_structure)
    projected = [project_section(s) for s in sections if _visible(s)]
    dropped = len(sections) - len(projected)
    if dropped:
        logger.debug(f"Projection dropped {dropped} hidden top-level sections")
    return SupplierDocument(sections=projected)


# ============= DEFAULT LAYOUT (NO TEMPLATE) =============

def humanize_key(key: str) -> str:
    """unitPrice -> Unit Price"""
    spaced = re.sub(r"([A-Z])", r" \1", key).replace("_", " ").strip()
    return spaced[:1].upper() + spaced[1:]


EDITABLE_ITEM_KEYS = frozenset({"unitPrice", "quantity", "comments"})


def _format_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.date().isoformat() if isinstance(value, datetime) else value.isoformat()
    return "" if value is None else value


def _general_details_section(general: dict) -> Section:
    return Section(
        id="general-details",
        title="General Details",
        type=SectionType.FORM,
        fields=[
            Field(id="title", label="RFQ Title", type="text", value=_format_value(general.get("title"))),
            Field(id="description", label="Description", type="text",
                  value=_format_value(general.get("description"))),
            Field(id="dueDate", label="Due Date", type="date", value=_format_value(general.get("due_date"))),
        ],
    )


def _scope_of_work_section(scope_of_work: str) -> Section:
    return Section(
        id="scope-of-work",
        title="Scope of Work",
        type=SectionType.SOW,
        content=scope_of_work,
    )


def _questionnaire_table(group_title: str, questions: Iterable[dict]) -> Table:
    columns = [
        Column(id="question", header="Question", accessor_key="question", type="string"),
        Column(id="type", header="Type", accessor_key="type", type="string"),
        Column(id="options", header="Options", accessor_key="options", type="string"),
        Column(id="response", header="Response", accessor_key="response", type="string",
               editable_by_supplier=True),
        Column(id="remarks", header="Remarks", accessor_key="remarks", type="string",
               editable_by_supplier=True),
    ]
    rows = []
    for index, item in enumerate(questions):
        if not isinstance(item, dict):
            continue
        options = item.get("options")
        if isinstance(options, (list, tuple)):
            options = ", ".join(str(o) for o in options)
        rows.append({
            "id": str(item.get("id") or index + 1),
            "question": item.get("question") or item.get("label") or "",
            "type": item.get("type") or "text",
            "options": options or "",
            "response": "",
            "remarks": "",
        })
    return Table(
        id=f"table-{group_title}",
        title=group_title,
        columns=columns,
        data=rows,
        editable_by_supplier=True,
    )


def _questionnaire_section(groups: List[dict]) -> Section:
    subsections = []
    for index, group in enumerate(groups):
        if not isinstance(group, dict):
            continue
        title = group.get("title") or f"Questionnaire {index + 1}"
        questions = group.get("questions") or group.get("data") or []
        subsections.append(Subsection(
            id=str(group.get("id") or f"section-{title}"),
            title=title,
            type=SectionType.QUESTIONNAIRE,
            tables=[_questionnaire_table(title, questions)],
            editable_by_supplier=True,
        ))
    return Section(
        id="questionnaire",
        title="Questionnaire",
        type=SectionType.QUESTIONNAIRE,
        subsections=subsections,
        editable_by_supplier=True,
    )


def _items_section(items: List[dict]) -> Section:
    keys: List[str] = []
    for item in items:
        for key in item:
            if key not in keys:
                keys.append(key)
    for key in ("unitPrice", "comments"):
        if key not in keys:
            keys.append(key)

    columns = [
        Column(
            id=key,
            header=humanize_key(key),
            accessor_key=key,
            type="number" if key in ("unitPrice", "quantity") else "string",
            editable_by_supplier=key in EDITABLE_ITEM_KEYS,
        )
        for key in keys
    ]
    data = [{k: _format_value(item.get(k)) for k in keys} for item in items]
    return Section(
        id="commercial-table",
        title="Commercial Table",
        type=SectionType.COMMERCIAL_TABLE,
        tables=[Table(id="items-table", title="Items", columns=columns, data=data, editable_by_supplier=True)],
        editable_by_supplier=True,
    )


def _terms_section(terms: List[dict]) -> Section:
    columns = [
        Column(id="term", header="Term", accessor_key="term"),
        Column(id="description", header="Description", accessor_key="description"),
        Column(id="target", header="Target", accessor_key="target"),
        Column(id="user-response", header="Supplier Response", accessor_key="user-response",
               editable_by_supplier=True),
    ]
    data = [
        {
            "id": str(term.get("id") or index + 1),
            "term": term.get("term") or term.get("title") or "",
            "description": term.get("description") or "",
            "target": _format_value(term.get("target")),
            "user-response": "",
        }
        for index, term in enumerate(terms)
        if isinstance(term, dict)
    ]
    return Section(
        id="commercial-terms",
        title="Terms and Conditions",
        type=SectionType.COMMERCIAL_TERMS,
        tables=[Table(id="terms-table", title="Commercial Terms", columns=columns, data=data,
                      editable_by_supplier=True)],
        editable_by_supplier=True,
    )


def quote_summary_section() -> Section:
    return Section(
        id="quote-summary",
        title="Quote Summary",
        type=SectionType.QUOTE_SUMMARY,
        fields=[
            Field(id="totalQuoteValue", label="Total Quote Value", type="number", required=True,
                  editable_by_supplier=True),
            Field(id="currency", label="Currency", type="text", required=True, editable_by_supplier=True),
            Field(id="deliveryTime", label="Delivery Time (days)", type="number", required=True,
                  editable_by_supplier=True),
            Field(id="validityPeriod", label="Quote Validity Period (days)", type="number", value="30",
                  required=True, editable_by_supplier=True),
            Field(id="comments", label="Additional Comments", type="textarea", editable_by_supplier=True),
        ],
        editable_by_supplier=True,
    )


def build_default_sections(
    general: Optional[dict] = None,
    scope_of_work: Optional[str] = None,
    questionnaire: Optional[list] = None,
    items: Optional[list] = None,
    terms: Optional[list] = None,
) -> List[Section]:
    """Fixed supplier layout for RFQs created without a template."""
    sections = [_general_details_section(general or {})]

    if scope_of_work:
        sections.append(_scope_of_work_section(str(scope_of_work)))

    if isinstance(questionnaire, list) and questionnaire:
        sections.append(_questionnaire_section(questionnaire))

    if isinstance(items, list):
        item_rows = [i for i in items if isinstance(i, dict)]
        if item_rows:
            sections.append(_items_section(item_rows))

    if isinstance(terms, list) and terms:
        sections.append(_terms_section(terms))

    sections.append(quote_summary_section())
    return sections


def project_rfq(rfq) -> SupplierDocument:
    """Supplier view of a stored RFQ, template path first."""
    template_sections = load_sections(rfq.template_structure)
    if template_sections:
        return project(template_sections)

    general = {"title": rfq.title, "description": rfq.description, "due_date": rfq.due_date}
    general.update(rfq.general_details or {})
    return SupplierDocument(sections=build_default_sections(
        general=general,
        scope_of_work=rfq.scope_of_work,
        questionnaire=rfq.questionnaire,
        items=rfq.items,
        terms=rfq.terms_and_conditions,
    ))
