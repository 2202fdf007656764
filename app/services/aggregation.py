"""
Cross-supplier comparison of reconciled quote documents.

Rows are grouped by their stable ``id`` across suppliers and the lowest
numeric offer per group becomes the baseline used for evaluation and
negotiation. Missing or non-numeric offers are left out of the comparison,
never treated as zero.
"""
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Iterable, List, Optional, Sequence

from app.core.logging import get_logger
from app.services.workbook.document import (
    SectionType, SupplierDocument, Table, containers, load_document, to_number,
)

logger = get_logger(__name__)

PRICE_KEYS = ("unitPrice", "unit-price", "price")
TERM_RESPONSE_KEYS = ("user-response", "response")
QUESTION_RESPONSE_KEYS = ("response", "value")


@dataclass
class Offer:
    id: str
    baseline: Optional[float]
    supplier_id: Optional[str]


@dataclass
class PerLineItemBaseline:
    items: Dict[str, Offer] = field(default_factory=dict)
    commercial_terms: Dict[str, Offer] = field(default_factory=dict)
    # subsection id -> question id -> offer
    questionnaires: Dict[str, Dict[str, Offer]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "items": [asdict(o) for o in self.items.values()],
            "commercial_terms": [asdict(o) for o in self.commercial_terms.values()],
            "questionnaires": {
                subsection_id: [asdict(o) for o in questions.values()]
                for subsection_id, questions in self.questionnaires.items()
            },
        }


def _first_value(record: Dict[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        if key in record and record[key] not in (None, ""):
            return record[key]
    return None


def _tables_of_type(document: SupplierDocument, section_type: str) -> Iterable[Table]:
    for section in document.sections:
        if section.type != section_type:
            continue
        for container in containers(section):
            yield from container.tables


def _consider(groups: Dict[str, Offer], row_id: str, value: Any, supplier_id: Optional[str]) -> None:
    """Keep the lowest numeric offer per id; the first supplier wins ties."""
    number = to_number(value)
    current = groups.get(row_id)
    if current is None:
        groups[row_id] = Offer(id=row_id, baseline=number, supplier_id=supplier_id if number is not None else None)
        return
    if number is None:
        return
    if current.baseline is None or number < current.baseline:
        current.baseline = number
        current.supplier_id = supplier_id


def _supplier_of(document: SupplierDocument) -> Optional[str]:
    return document.metadata.supplier_id if document.metadata else None


def lowest_offer(documents: Iterable, price_keys: Sequence[str] = PRICE_KEYS) -> PerLineItemBaseline:
    """
    Lowest offer per line item, commercial term and questionnaire question.

    ``documents`` are reconciled supplier documents (or their stored JSON);
    the supplier is taken from each document's extraction metadata. Rows
    without an id cannot be compared and are skipped. Groups where no
    supplier gave a numeric value keep a baseline of None.
    """
    result = PerLineItemBaseline()

    for raw in documents:
        document = load_document(raw)
        supplier_id = _supplier_of(document)

        for table in _tables_of_type(document, SectionType.COMMERCIAL_TABLE):
            for row in table.data:
                row_id = str(row.get("id") or "").strip()
                if not row_id:
                    continue
                price = _first_value(row, price_keys)
                if price is None or to_number(price) is None:
                    # excluded from comparison, but the item stays listed
                    result.items.setdefault(row_id, Offer(id=row_id, baseline=None, supplier_id=None))
                    continue
                _consider(result.items, row_id, price, supplier_id)

        for table in _tables_of_type(document, SectionType.COMMERCIAL_TERMS):
            for row in table.data:
                row_id = str(row.get("id") or "").strip()
                if row_id:
                    _consider(result.commercial_terms, row_id, _first_value(row, TERM_RESPONSE_KEYS), supplier_id)

        for section in document.sections:
            for container in containers(section):
                if container.type != SectionType.QUESTIONNAIRE or not container.tables:
                    continue
                questions = result.questionnaires.setdefault(container.id, {})
                for table in container.tables:
                    for row in table.data:
                        row_id = str(row.get("id") or row.get("question") or "").strip()
                        if row_id:
                            _consider(questions, row_id, _first_value(row, QUESTION_RESPONSE_KEYS), supplier_id)

    logger.debug(
        f"Lowest offers computed for {len(result.items)} items, "
        f"{len(result.commercial_terms)} commercial terms"
    )
    return result


# ============= ANALYSIS PAYLOADS =============

def _pick(record: Dict[str, Any], *keys: str) -> Any:
    return _first_value(record, keys)


def _commercial_rows(document: SupplierDocument) -> List[Dict[str, Any]]:
    return [row for table in _tables_of_type(document, SectionType.COMMERCIAL_TABLE) for row in table.data]


def _term_rows(document: SupplierDocument) -> List[Dict[str, Any]]:
    return [row for table in _tables_of_type(document, SectionType.COMMERCIAL_TERMS) for row in table.data]


def _questionnaires(document: SupplierDocument) -> List[dict]:
    groups = []
    for section in document.sections:
        for container in containers(section):
            if container.type != SectionType.QUESTIONNAIRE or not container.tables:
                continue
            questions = [dict(row) for table in container.tables for row in table.data]
            groups.append({"id": container.id, "title": container.title, "questions": questions})
    return groups


def build_rfq_analysis(rfq, document) -> dict:
    """Buyer-side view of an RFQ for evaluation: items, terms, questionnaires, suppliers."""
    document = load_document(document)
    return {
        "id": rfq.id,
        "rfq_number": rfq.rfq_number,
        "title": rfq.title,
        "status": rfq.status,
        "suppliers": [
            {"id": s.supplier_id, "name": s.name, "email": s.email, "status": s.status}
            for s in rfq.suppliers
        ],
        "items": [
            {
                "id": row.get("id"),
                "type": row.get("type"),
                "product": _pick(row, "item", "product", "name"),
                "description": row.get("description"),
                "quantity": to_number(_pick(row, "qty", "quantity")),
                "unit": _pick(row, "uom", "unit"),
                "target": row.get("target"),
            }
            for row in _commercial_rows(document)
        ],
        "commercial_terms": [
            {
                "id": row.get("id"),
                "term": row.get("term"),
                "description": row.get("description"),
                "target": row.get("target"),
            }
            for row in _term_rows(document)
        ],
        "questionnaires": _questionnaires(document),
    }


def build_supplier_quote_analysis(document, quote_id: Optional[int] = None) -> dict:
    """One supplier's reconciled answers flattened for evaluation."""
    document = load_document(document)
    return {
        "id": quote_id,
        "supplier_id": _supplier_of(document),
        "items": [
            {
                "id": row.get("id"),
                "type": row.get("type"),
                "product": _pick(row, "item", "product", "name"),
                "description": row.get("description"),
                "quantity": to_number(_pick(row, "qty", "quantity")),
                "unit": _pick(row, "uom", "unit"),
                "price": to_number(_first_value(row, PRICE_KEYS)),
            }
            for row in _commercial_rows(document)
        ],
        "commercial_terms": [
            {
                "id": row.get("id"),
                "term": row.get("term"),
                "description": row.get("description"),
                "response": _first_value(row, TERM_RESPONSE_KEYS),
            }
            for row in _term_rows(document)
        ],
        "questionnaires": _questionnaires(document),
    }
