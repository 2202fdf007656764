"""
Tests for template projection and the default (no-template) layout.
"""
from datetime import datetime

from app.services.workbook import SectionType, dump_document, project, build_default_sections
from app.services.workbook.document import (
    Field, Section, Subsection, SupplierDocument, Table, iter_nodes, load_sections, children,
)

import pytest


TEMPLATE = {
    "sections": [
        {
            "id": "pricing",
            "title": "Pricing",
            "type": "commercialTable",
            "visibleToSupplier": True,
            "fields": [
                {"id": "incoterm", "label": "Incoterm", "value": "", "defaultValue": "FOB",
                 "editableBySupplier": True, "options": "FOB, CIF, DDP"},
                {"id": "internal-budget", "label": "Budget", "value": "10000", "visibleToSupplier": False},
            ],
            "tables": [
                {
                    "id": "items",
                    "title": "Items",
                    "columns": [
                        {"id": "description", "header": "Description", "accessorKey": "description"},
                        {"id": "unitPrice", "header": "Unit Price", "accessorKey": "unitPrice",
                         "editableBySupplier": True},
                        {"id": "cost", "header": "Internal Cost", "accessorKey": "cost",
                         "visibleToSupplier": False},
                    ],
                    "data": [{"id": "1", "description": "Widget", "unitPrice": "", "cost": 4.2}],
                },
            ],
            "subsections": [
                {
                    "id": "internal",
                    "title": "Internal Notes",
                    "visibleToSupplier": False,
                    "fields": [{"id": "note", "label": "Note", "visibleToSupplier": True}],
                    "tables": [{"id": "shadow", "title": "Shadow", "visibleToSupplier": True}],
                },
            ],
        },
        {
            "id": "evaluation",
            "title": "Evaluation",
            "visibleToSupplier": False,
            "fields": [{"id": "score", "label": "Score", "visibleToSupplier": True}],
        },
    ]
}


class TestProjectionVisibility:
    """Hidden nodes disappear together with their whole subtree."""

    def test_hidden_nodes_and_descendants_are_dropped(self):
        document = project(TEMPLATE)
        ids = {getattr(node, "id", None) for node in iter_nodes(document)}

        assert "evaluation" not in ids
        assert "score" not in ids  # visible child of a hidden section
        assert "internal" not in ids
        assert "note" not in ids and "shadow" not in ids
        assert "internal-budget" not in ids
        assert "cost" not in ids

    def test_no_projected_node_is_hidden(self):
        document = project(TEMPLATE)
        assert all(node.visible_to_supplier for node in iter_nodes(document))

    def test_rows_pass_through_unchanged(self):
        """Only columns are pruned; row records keep every key."""
        document = project(TEMPLATE)
        table = document.sections[0].tables[0]
        assert table.data == [{"id": "1", "description": "Widget", "unitPrice": "", "cost": 4.2}]
        assert [c.key for c in table.columns] == ["description", "unitPrice"]

    def test_editability_passes_through(self):
        document = project(TEMPLATE)
        columns = {c.id: c for c in document.sections[0].tables[0].columns}
        assert columns["unitPrice"].editable_by_supplier is True
        assert columns["description"].editable_by_supplier is False

    def test_template_is_not_mutated(self):
        sections = load_sections(TEMPLATE)
        before = [s.model_dump() for s in sections]
        project(sections)
        assert [s.model_dump() for s in sections] == before


class TestProjectionValues:
    """Field values resolve from defaults."""

    def test_default_value_wins_and_is_consumed(self):
        field = project(TEMPLATE).sections[0].fields[0]
        assert field.value == "FOB"
        assert field.default_value is None
        assert field.options == ["FOB", "CIF", "DDP"]

    def test_missing_value_becomes_empty_string(self):
        document = project([{"id": "s", "title": "S", "fields": [{"id": "f", "label": "F", "value": None}]}])
        assert document.sections[0].fields[0].value == ""

    def test_projection_is_idempotent(self):
        once = project(TEMPLATE)
        twice = project(once)
        assert dump_document(twice) == dump_document(once)


class TestProjectionInputShapes:
    """Malformed input degrades to empty collections."""

    @pytest.mark.parametrize("raw", [None, {}, {"sections": None}, "not a template", 42])
    def test_unusable_input_gives_empty_document(self, raw):
        assert project(raw).sections == []

    def test_malformed_section_is_skipped(self):
        document = project([{"id": "ok", "title": "Ok"}, "garbage", {"id": "bad", "fields": "not-a-list"}])
        assert [s.id for s in document.sections] == ["ok"]

    def test_null_child_collections_are_empty(self):
        document = project([{"id": "s", "title": "S", "fields": None, "tables": None, "subsections": None}])
        section = document.sections[0]
        assert section.fields == [] and section.tables == [] and section.subsections == []

    def test_accepts_snake_case_names(self):
        document = project([{"id": 7, "title": "S", "visible_to_supplier": True, "fields": [
            {"id": "f", "label": "F", "editable_by_supplier": True}]}])
        assert document.sections[0].id == "7"
        assert document.sections[0].fields[0].editable_by_supplier is True


class TestTreeWalking:
    def test_unknown_node_kind_raises(self):
        with pytest.raises(TypeError):
            children(object())

    def test_walk_order_is_depth_first(self):
        document = SupplierDocument(sections=[Section(
            id="s",
            fields=[Field(id="f")],
            tables=[Table(id="t")],
            subsections=[Subsection(id="sub", fields=[Field(id="sf")])],
        )])
        assert [n.id for n in iter_nodes(document)] == ["s", "f", "t", "sub", "sf"]


class TestDefaultSections:
    """Fixed layout for RFQs created without a template."""

    ITEMS = [
        {"id": "P-1", "item": "Bolt", "qty": 100, "uom": "pcs"},
        {"id": "P-2", "item": "Nut", "qty": 200, "uom": "pcs"},
    ]
    TERMS = [{"id": "payment", "term": "Payment", "description": "Payment terms", "target": "Net 60"}]
    QUESTIONNAIRE = [{
        "id": "quality",
        "title": "Quality",
        "questions": [
            {"id": "q1", "question": "ISO 9001 certified?", "type": "select", "options": ["Yes", "No"]},
            {"id": "q2", "question": "Describe your QA process", "type": "text"},
        ],
    }]

    def _sections(self):
        return build_default_sections(
            general={"title": "Fasteners", "description": "Annual supply", "due_date": datetime(2026, 11, 30)},
            scope_of_work="<p>Deliver fasteners</p>",
            questionnaire=self.QUESTIONNAIRE,
            items=self.ITEMS,
            terms=self.TERMS,
        )

    def test_section_order(self):
        titles = [s.title for s in self._sections()]
        assert titles == [
            "General Details", "Scope of Work", "Questionnaire",
            "Commercial Table", "Terms and Conditions", "Quote Summary",
        ]

    def test_general_details_are_read_only(self):
        general = self._sections()[0]
        values = {f.id: f.value for f in general.fields}
        assert values["title"] == "Fasteners"
        assert values["dueDate"] == "2026-11-30"
        assert not any(f.editable_by_supplier for f in general.fields)

    def test_item_columns_add_price_and_comments(self):
        table = self._sections()[3].tables[0]
        keys = [c.key for c in table.columns]
        assert keys == ["id", "item", "qty", "uom", "unitPrice", "comments"]
        editable = {c.key for c in table.columns if c.editable_by_supplier}
        assert editable == {"unitPrice", "comments"}
        assert table.data[0]["unitPrice"] == ""

    def test_questionnaire_groups_become_subsections(self):
        questionnaire = self._sections()[2]
        assert questionnaire.type == SectionType.QUESTIONNAIRE
        group = questionnaire.subsections[0]
        assert group.id == "quality"
        rows = group.tables[0].data
        assert rows[0]["options"] == "Yes, No"
        assert rows[1]["type"] == "text"

    def test_terms_get_supplier_response_column(self):
        terms = self._sections()[4]
        columns = {c.key: c for c in terms.tables[0].columns}
        assert columns["user-response"].editable_by_supplier
        assert terms.tables[0].data[0]["target"] == "Net 60"

    def test_missing_inputs_leave_only_general_and_summary(self):
        titles = [s.title for s in build_default_sections()]
        assert titles == ["General Details", "Quote Summary"]
