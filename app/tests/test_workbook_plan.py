"""
Tests for workbook layout and the openpyxl rendering of it.
"""
import os

import pytest

from app.services.workbook import (
    Recipient, RFQInfo, load_document, plan_workbook, serialize, temporary_workbook_file,
)
from app.services.workbook.lookup import assign_sheet_names, cell_text
from app.services.workbook.plan import needs_list_sheet, strip_html
from app.services.workbook.styles import CellRole, cell_style
from app.tests.helpers import find_cell, open_xlsx


def _document():
    return load_document([
        {
            "id": "pricing",
            "title": "Pricing",
            "fields": [
                {"id": "incoterm", "label": "Incoterm", "editableBySupplier": True,
                 "options": ["FOB", "CIF", "DDP"]},
                {"id": "buyer", "label": "Buyer", "value": "Jane Doe"},
            ],
            "tables": [{
                "id": "items",
                "title": "Items",
                "columns": [
                    {"id": "description", "header": "Description", "accessorKey": "description"},
                    {"id": "unitPrice", "header": "Unit Price", "accessorKey": "unitPrice",
                     "editableBySupplier": True},
                    {"id": "grade", "header": "Grade", "accessorKey": "grade", "type": "select",
                     "editableBySupplier": True, "options": ["A", "B"]},
                ],
                "data": [
                    {"id": "1", "description": "Widget", "unitPrice": "", "grade": ""},
                    {"id": "2", "description": "Gadget", "unitPrice": "", "grade": ""},
                ],
            }],
        },
        {
            "id": "sow",
            "title": "Scope of Work",
            "content": "<p>Deliver <b>everything</b></p><p>On time</p>",
        },
    ])


RECIPIENT = Recipient(supplier_id="SUP-1", name="Acme Ltd", email="quotes@acme.test")
RFQ = RFQInfo(rfq_id="RFQ-20260101-ABC123", title="Fasteners", due_date="2026-11-30")


class TestSheetOrder:
    """Instructions first, Supplier only when addressed, then one sheet per section."""

    def test_with_recipient(self):
        plan = plan_workbook(_document(), recipient=RECIPIENT, rfq=RFQ, token="tok")
        assert plan.sheet_names == ["Instructions", "Supplier", "Pricing", "Scope of Work"]

    def test_without_recipient(self):
        plan = plan_workbook(_document())
        assert plan.sheet_names == ["Instructions", "Pricing", "Scope of Work"]

    def test_hidden_sections_get_no_sheet(self):
        document = _document()
        document.sections[1].visible_to_supplier = False
        assert "Scope of Work" not in plan_workbook(document).sheet_names

    def test_empty_document_gets_placeholder(self):
        plan = plan_workbook(load_document([]), rfq=RFQ)
        assert plan.sheet_names == ["Instructions", "RFQ Details"]
        assert plan.sheet("RFQ Details").cell(1, 1).value == "Fasteners"

    def test_instructions_list_section_sheets(self):
        plan = plan_workbook(_document())
        instructions = plan.sheet("Instructions")
        assert instructions.find("• Pricing") is not None
        assert instructions.find("• Scope of Work") is not None


class TestSectionLayout:
    """Cell positions and roles on a section sheet."""

    def test_field_block(self):
        sheet = plan_workbook(_document()).sheet("Pricing")
        assert sheet.cell(1, 1).value == "Pricing"
        assert sheet.cell(1, 1).role == CellRole.TITLE
        assert sheet.cell(3, 1).value == "Field" and sheet.cell(3, 2).value == "Value"
        assert sheet.cell(4, 1).value == "Incoterm"
        assert sheet.cell(4, 2).role == CellRole.EDITABLE
        assert sheet.cell(5, 2).value == "Jane Doe"
        assert sheet.cell(5, 2).role == CellRole.LOCKED

    def test_table_block(self):
        sheet = plan_workbook(_document()).sheet("Pricing")
        title = sheet.find("Items", CellRole.TABLE_TITLE)
        header_row = title.row + 1
        assert [sheet.cell(header_row, c).value for c in (1, 2, 3)] == ["Description", "Unit Price", "Grade"]
        assert sheet.cell(header_row + 1, 1).value == "Widget"
        assert sheet.cell(header_row + 1, 1).role == CellRole.LOCKED
        assert sheet.cell(header_row + 1, 2).role == CellRole.EDITABLE
        # blank values are planned as empty cells
        assert sheet.cell(header_row + 1, 2).value is None

    def test_empty_rows_are_editable(self):
        document = _document()
        document.sections[0].tables[0].empty_rows = 2
        sheet = plan_workbook(document).sheet("Pricing")
        header_row = sheet.find("Items", CellRole.TABLE_TITLE).row + 1
        last_row = header_row + 4
        assert sheet.cell(last_row, 1).role == CellRole.LOCKED
        assert sheet.cell(last_row, 2).role == CellRole.EDITABLE

    def test_content_block(self):
        sheet = plan_workbook(_document()).sheet("Scope of Work")
        assert sheet.cell(3, 1).value == "Heading"
        assert sheet.cell(3, 2).value == "Description"
        assert sheet.cell(4, 2).value == "Deliver everything\nOn time"

    def test_only_editable_role_is_unlocked(self):
        for role in CellRole:
            assert cell_style(role).locked is (role != CellRole.EDITABLE)

    def test_supplier_sheet_carries_token(self):
        sheet = plan_workbook(_document(), recipient=RECIPIENT, rfq=RFQ, token="abc-123").sheet("Supplier")
        label = sheet.find("Verification UUID")
        assert sheet.cell(label.row, 2).value == "abc-123"
        assert sheet.cell(label.row, 2).role == CellRole.LOCKED
        assert sheet.find("SUP-1") is not None


class TestDropdowns:
    """Editable cells with options get a list validation in the given order."""

    def test_planned_validations(self):
        sheet = plan_workbook(_document()).sheet("Pricing")
        assert sheet.validation_at(4, 2).options == ["FOB", "CIF", "DDP"]
        header_row = sheet.find("Items", CellRole.TABLE_TITLE).row + 1
        assert sheet.validation_at(header_row + 1, 3).options == ["A", "B"]
        assert sheet.validation_at(header_row + 2, 3).options == ["A", "B"]
        # no dropdown on a plain editable column
        assert sheet.validation_at(header_row + 1, 2) is None

    def test_row_options_override_column(self):
        document = _document()
        document.sections[0].tables[0].data[0]["options"] = "Gold, Silver"
        sheet = plan_workbook(document).sheet("Pricing")
        header_row = sheet.find("Items", CellRole.TABLE_TITLE).row + 1
        assert sheet.validation_at(header_row + 1, 3).options == ["Gold", "Silver"]

    def test_typed_row_uses_column_options(self):
        document = _document()
        for record in document.sections[0].tables[0].data:
            record["type"] = "product"
        document.sections[0].tables[0].data[1]["options"] = "Gold, Silver"
        sheet = plan_workbook(document).sheet("Pricing")
        header_row = sheet.find("Items", CellRole.TABLE_TITLE).row + 1
        assert sheet.validation_at(header_row + 1, 3).options == ["A", "B"]
        # row options only apply to selection rows
        assert sheet.validation_at(header_row + 2, 3).options == ["A", "B"]

    def test_labelled_options(self):
        document = _document()
        document.sections[0].tables[0].columns[2].options = None
        document.sections[0].tables[0].data[0]["options"] = [
            {"label": "Gold", "value": "g"}, {"value": "s"}, {"label": ""}, "Bronze",
        ]
        sheet = plan_workbook(document).sheet("Pricing")
        header_row = sheet.find("Items", CellRole.TABLE_TITLE).row + 1
        assert sheet.validation_at(header_row + 1, 3).options == ["Gold", "s", "Bronze"]
        assert sheet.validation_at(header_row + 2, 3) is None

    def test_labelled_field_options(self):
        document = load_document([{
            "id": "terms", "title": "Terms",
            "fields": [{"id": "tier", "label": "Tier", "editableBySupplier": True,
                        "options": [{"label": "Gold", "value": "g"}, {"label": "Silver", "value": "s"}]}],
        }])
        assert document.sections[0].fields[0].options == ["Gold", "Silver"]
        assert plan_workbook(document).sheet("Terms").validation_at(4, 2).options == ["Gold", "Silver"]

    def test_free_text_question_gets_no_dropdown(self):
        document = load_document([{
            "id": "q", "title": "Questions",
            "tables": [{
                "id": "t", "title": "General",
                "columns": [
                    {"id": "question", "header": "Question", "accessorKey": "question"},
                    {"id": "response", "header": "Response", "accessorKey": "response",
                     "editableBySupplier": True},
                ],
                "data": [
                    {"id": "1", "question": "Certified?", "type": "select", "options": "Yes, No"},
                    {"id": "2", "question": "Explain", "type": "text", "options": "Yes, No"},
                ],
            }],
        }])
        sheet = plan_workbook(document).sheet("Questions")
        assert sheet.validation_at(5, 2).options == ["Yes", "No"]
        assert sheet.validation_at(6, 2) is None

    def test_rendered_validations(self):
        worksheet = open_xlsx(serialize(_document()))["Pricing"]
        formulas = {str(dv.sqref): dv.formula1 for dv in worksheet.data_validations.dataValidation}
        assert formulas["B4"].strip('"').split(",") == ["FOB", "CIF", "DDP"]
        assert formulas["C9"].strip('"').split(",") == ["A", "B"]

    @pytest.mark.parametrize("options,expected", [
        (["Yes", "No"], False),
        (["Net 30, EOM", "Net 60"], True),
        (['Say "yes"'], True),
        ([f"Option {i:03d}" for i in range(40)], True),
    ])
    def test_needs_list_sheet(self, options, expected):
        assert needs_list_sheet(options) is expected

    def test_awkward_options_move_to_hidden_list_sheet(self):
        document = _document()
        document.sections[0].fields[0].options = ["Net 30, EOM", "Net 60"]
        plan = plan_workbook(document)
        assert plan.sheet_names[-1] == "Lists"
        assert plan.sheet("Lists").hidden

        workbook = open_xlsx(serialize(document))
        lists = workbook["Lists"]
        assert lists.sheet_state == "hidden"
        assert [lists["A1"].value, lists["A2"].value] == ["Net 30, EOM", "Net 60"]

        formulas = {str(dv.sqref): dv.formula1 for dv in workbook["Pricing"].data_validations.dataValidation}
        assert "Lists" in formulas["B4"]
        assert "$A$1:$A$2" in formulas["B4"]

    def test_no_list_sheet_for_short_options(self):
        assert "Lists" not in plan_workbook(_document()).sheet_names


class TestRenderedWorkbook:
    """Protection and fills in the xlsx output."""

    def test_sheets_are_protected(self):
        workbook = open_xlsx(serialize(_document(), recipient=RECIPIENT, rfq=RFQ, token="tok"))
        assert workbook.sheetnames == ["Instructions", "Supplier", "Pricing", "Scope of Work"]
        assert workbook.security.lockStructure
        for worksheet in workbook.worksheets:
            protection = worksheet.protection
            assert protection.sheet
            for operation in ("insertRows", "insertColumns", "deleteRows", "deleteColumns",
                              "sort", "autoFilter", "pivotTables"):
                assert getattr(protection, operation), operation

    def test_editable_cells_are_unlocked(self):
        worksheet = open_xlsx(serialize(_document()))["Pricing"]
        assert worksheet["B9"].protection.locked is False
        assert worksheet["A9"].protection.locked is True
        assert worksheet["B9"].fill.fgColor.rgb.upper().endswith("FFD700")

    def test_token_is_written(self):
        worksheet = open_xlsx(serialize(_document(), recipient=RECIPIENT, rfq=RFQ, token="tok-1"))["Supplier"]
        label = find_cell(worksheet, "Verification UUID")
        assert worksheet.cell(row=label.row, column=2).value == "tok-1"


class TestSheetNames:
    def test_invalid_characters_and_clashes(self):
        names = assign_sheet_names(["Instructions", "A/B", "a/b", "x" * 40, ""])
        assert names[0] == "Instructions (2)"
        assert names[1] == "A-B"
        assert names[2] == "a-b (2)"
        assert len(names[3]) == 31
        assert names[4] == "Section 5"


class TestHelpers:
    def test_strip_html(self):
        assert strip_html("<p>One &amp; two</p><ul><li>three</li></ul>") == "One & two\nthree"
        assert strip_html(None) == ""

    @pytest.mark.parametrize("value,expected", [
        (None, ""),
        (9.99, "9.99"),
        (10.0, "10"),
        (True, "true"),
        ("  padded ", "padded"),
    ])
    def test_cell_text(self, value, expected):
        assert cell_text(value) == expected


class TestTemporaryFile:
    def test_file_removed_after_use(self):
        with temporary_workbook_file(b"data") as path:
            assert os.path.exists(path)
            assert path.endswith(".xlsx")
            with open(path, "rb") as handle:
                assert handle.read() == b"data"
        assert not os.path.exists(path)

    def test_file_removed_on_error(self):
        with pytest.raises(RuntimeError):
            with temporary_workbook_file(b"data") as path:
                raise RuntimeError("send failed")
        assert not os.path.exists(path)
