"""
Document tree shared by RFQ templates and supplier-facing quote requests.

The tree is a closed set of node kinds:

    Section -> Subsection -> Field / Table -> Column

Every tree walker dispatches over exactly these kinds and raises TypeError
for anything else, so adding a kind forces every walker to be revisited.

Nodes accept both the camelCase names used in stored JSON
(``visibleToSupplier``, ``accessorKey``, ...) and the snake_case attribute
names. ``dump_sections`` writes the camelCase form back.
"""
import math
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from app.core.logging import get_logger

logger = get_logger(__name__)


class SectionType:
    """Well-known section type tags. Any other string is allowed."""
    FORM = "form"
    SOW = "sow"
    QUESTIONNAIRE = "questionnaire"
    COMMERCIAL_TABLE = "commercialTable"
    COMMERCIAL_TERMS = "commercialTerms"
    QUOTE_SUMMARY = "quoteSummary"


# Column / field types that carry an enumerated option list
SELECTION_TYPES = frozenset({"select", "multiselect", "single-select", "multi-select", "dropdown"})


def _option_text(option) -> str:
    if isinstance(option, dict):
        option = option.get("label") or option.get("value")
    return "" if option is None else str(option)


def split_options(value):
    """Options arrive as a comma separated string or a list of strings or {label, value} objects."""
    if value is None:
        return None
    if isinstance(value, str):
        parts = [part.strip() for part in value.split(",")]
        return [part for part in parts if part] or None
    if isinstance(value, (list, tuple)):
        return [text for text in map(_option_text, value) if text] or None
    return None


class DocumentNode(BaseModel):
    """Attributes common to every node kind."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    id: str = ""
    visible_to_supplier: bool = True
    editable_by_supplier: bool = False

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, v):
        return "" if v is None else str(v)

    @field_validator("visible_to_supplier", "editable_by_supplier", mode="before")
    @classmethod
    def _default_flag(cls, v, info):
        # null in stored JSON means "not set"
        if v is None:
            return info.field_name == "visible_to_supplier"
        return v


class Column(DocumentNode):
    header: str = ""
    accessor_key: str = ""
    type: str = "text"
    width: Optional[float] = None
    options: Optional[List[str]] = None

    @field_validator("options", mode="before")
    @classmethod
    def _options(cls, v):
        return split_options(v)

    @property
    def key(self) -> str:
        """Row-record key for this column."""
        return self.accessor_key or self.id


class Field(DocumentNode):
    label: str = ""
    type: str = "text"
    value: Any = ""
    default_value: Any = None
    options: Optional[List[str]] = None
    required: bool = False

    @field_validator("options", mode="before")
    @classmethod
    def _options(cls, v):
        return split_options(v)


class Table(DocumentNode):
    title: str = ""
    columns: List[Column] = []
    data: List[Dict[str, Any]] = []
    # Blank editable rows appended below the data for supplier additions
    empty_rows: int = 0

    @field_validator("columns", "data", mode="before")
    @classmethod
    def _none_to_list(cls, v):
        return [] if v is None else v


class Subsection(DocumentNode):
    title: str = ""
    type: str = ""
    content: Optional[str] = None
    fields: List[Field] = []
    tables: List[Table] = []

    @field_validator("fields", "tables", mode="before")
    @classmethod
    def _none_to_list(cls, v):
        return [] if v is None else v


class Section(Subsection):
    type: str = SectionType.FORM
    subsections: List[Subsection] = []

    @field_validator("subsections", mode="before")
    @classmethod
    def _none_to_list_sub(cls, v):
        return [] if v is None else v


class ExtractionMetadata(BaseModel):
    """Set on a document produced by reconciling an uploaded workbook."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    rfq_id: Optional[str] = None
    supplier_id: Optional[str] = None
    submitted_at: Optional[datetime] = None


class SupplierDocument(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    sections: List[Section] = []
    metadata: Optional[ExtractionMetadata] = None


Node = Union[Section, Subsection, Field, Table, Column]


# ============= TREE WALKING =============

def children(node: Node) -> List[Node]:
    """Direct children of a node, in document order."""
    # Section before Subsection: Section is a Subsection subclass
    if isinstance(node, Section):
        return [*node.fields, *node.tables, *node.subsections]
    if isinstance(node, Subsection):
        return [*node.fields, *node.tables]
    if isinstance(node, Table):
        return list(node.columns)
    if isinstance(node, (Field, Column)):
        return []
    raise TypeError(f"Unknown document node: {type(node).__name__}")


def iter_nodes(document: SupplierDocument) -> Iterator[Node]:
    """Depth-first walk over every node of a document."""
    stack: List[Node] = list(reversed(document.sections))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(children(node)))


def containers(section: Section) -> Iterator[Subsection]:
    """The section itself followed by its subsections."""
    yield section
    yield from section.subsections


# ============= LOADING / DUMPING =============

def load_sections(raw) -> List[Section]:
    """
    Build sections from stored JSON.

    Accepts a SupplierDocument, a ``{"sections": [...]}`` mapping, a bare list
    of section mappings or None. Anything unusable degrades to an empty list;
    individual malformed sections are skipped with a warning.
    """
    if raw is None:
        return []
    if isinstance(raw, SupplierDocument):
        return [s.model_copy(deep=True) for s in raw.sections]
    if isinstance(raw, dict):
        raw = raw.get("sections")
    if not isinstance(raw, list):
        return []

    sections = []
    for index, item in enumerate(raw):
        if isinstance(item, Section):
            sections.append(item.model_copy(deep=True))
            continue
        if not isinstance(item, dict):
            logger.warning(f"Skipping section {index}: expected mapping, got {type(item).__name__}")
            continue
        try:
            sections.append(Section.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Skipping malformed section {index}: {e.error_count()} errors")
    return sections


def load_document(raw) -> SupplierDocument:
    if isinstance(raw, SupplierDocument):
        return raw.model_copy(deep=True)
    document = SupplierDocument(sections=load_sections(raw))
    if isinstance(raw, dict) and isinstance(raw.get("metadata"), dict):
        document.metadata = ExtractionMetadata.model_validate(raw["metadata"])
    return document


def dump_sections(sections: List[Section]) -> List[dict]:
    """JSON-ready camelCase form used for storage and API responses."""
    return [s.model_dump(mode="json", by_alias=True, exclude_none=True) for s in sections]


def dump_document(document: SupplierDocument) -> dict:
    return document.model_dump(mode="json", by_alias=True, exclude_none=True)


def to_number(value) -> Optional[float]:
    """Numeric form of a cell or record value; None when blank or not a finite number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().replace(",", "")
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number
