"""
Tests for cross-supplier lowest-offer aggregation.
"""
from app.services.aggregation import build_supplier_quote_analysis, lowest_offer


def _quote(supplier_id, prices, term_response=None, answer=None):
    sections = [{
        "id": "commercial-table",
        "title": "Commercial Table",
        "type": "commercialTable",
        "tables": [{
            "id": "items-table",
            "title": "Items",
            "data": [{"id": item_id, "item": item_id, "unitPrice": price} for item_id, price in prices.items()],
        }],
    }]
    if term_response is not None:
        sections.append({
            "id": "commercial-terms",
            "title": "Terms and Conditions",
            "type": "commercialTerms",
            "tables": [{"id": "terms-table", "title": "Commercial Terms",
                        "data": [{"id": "payment", "term": "Payment", "user-response": term_response}]}],
        })
    if answer is not None:
        sections.append({
            "id": "questionnaire",
            "title": "Questionnaire",
            "type": "questionnaire",
            "subsections": [{
                "id": "capacity",
                "title": "Capacity",
                "type": "questionnaire",
                "tables": [{"id": "t", "title": "Capacity",
                            "data": [{"id": "q1", "question": "Lead time (days)", "response": answer}]}],
            }],
        })
    return {"sections": sections, "metadata": {"supplierId": supplier_id}}


class TestLowestOffer:
    """Lowest numeric offer per line item wins; blanks never count as zero."""

    def test_lowest_price_wins(self):
        result = lowest_offer([
            _quote("s1", {"1": "12.00"}),
            _quote("s2", {"1": "9.50"}),
            _quote("s3", {"1": ""}),
        ])
        offer = result.items["1"]
        assert offer.baseline == 9.5
        assert offer.supplier_id == "s2"

    def test_non_numeric_offers_are_excluded(self):
        result = lowest_offer([
            _quote("s1", {"1": "on request"}),
            _quote("s2", {"1": "1,250.00"}),
            _quote("s3", {"1": None}),
        ])
        assert result.items["1"].baseline == 1250.0
        assert result.items["1"].supplier_id == "s2"

    def test_item_without_any_price_keeps_empty_baseline(self):
        result = lowest_offer([_quote("s1", {"1": ""}), _quote("s2", {"1": "n/a"})])
        assert result.items["1"].baseline is None
        assert result.items["1"].supplier_id is None

    def test_first_supplier_wins_ties(self):
        result = lowest_offer([_quote("s1", {"1": 5}), _quote("s2", {"1": "5.0"})])
        assert result.items["1"].supplier_id == "s1"

    def test_items_are_grouped_by_id(self):
        result = lowest_offer([
            _quote("s1", {"1": "10", "2": "30"}),
            _quote("s2", {"1": "11", "2": "25"}),
        ])
        assert result.items["1"].supplier_id == "s1"
        assert result.items["2"].supplier_id == "s2"

    def test_terms_and_questionnaires(self):
        result = lowest_offer([
            _quote("s1", {"1": "10"}, term_response="60", answer="14"),
            _quote("s2", {"1": "11"}, term_response="45", answer="not sure"),
        ])
        assert result.commercial_terms["payment"].baseline == 45.0
        assert result.commercial_terms["payment"].supplier_id == "s2"
        question = result.questionnaires["capacity"]["q1"]
        assert question.baseline == 14.0
        assert question.supplier_id == "s1"

    def test_to_dict(self):
        payload = lowest_offer([_quote("s1", {"1": "3"})]).to_dict()
        assert payload["items"] == [{"id": "1", "baseline": 3.0, "supplier_id": "s1"}]
        assert payload["commercial_terms"] == []
        assert payload["questionnaires"] == {}

    def test_no_documents(self):
        assert lowest_offer([]).to_dict() == {"items": [], "commercial_terms": [], "questionnaires": {}}


class TestSupplierQuoteAnalysis:
    def test_prices_are_numbers(self):
        analysis = build_supplier_quote_analysis(_quote("s1", {"1": "9.99"}), quote_id=7)
        assert analysis["id"] == 7
        assert analysis["supplier_id"] == "s1"
        assert analysis["items"][0]["price"] == 9.99
        assert analysis["items"][0]["product"] == "1"
