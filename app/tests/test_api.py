"""
API tests: routing, role checks, supplier scoping and error mapping.
"""
import pytest
from fastapi.testclient import TestClient

from app.core.security import create_access_token
from app.main import app
from app.services.workbook import XLSX_CONTENT_TYPE
from app.tests.helpers import edit_workbook


def _auth(role, sub="1", **claims):
    token = create_access_token({"sub": sub, "role": role, **claims})
    return {"Authorization": f"Bearer {token}"}


BUYER = _auth("buyer")
ACME = _auth("supplier", sub="2", supplier_id="SUP-1")
BETA = _auth("supplier", sub="3", supplier_id="SUP-2")


@pytest.fixture
def client(db):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def rfq(client):
    response = client.post("/api/rfq", headers=BUYER, json={
        "title": "Fasteners",
        "due_date": "2026-11-30T00:00:00Z",
        "items": [{"id": "P-1", "item": "Bolt", "qty": 100, "uom": "pcs"}],
        "suppliers": [
            {"supplier_id": "SUP-1", "name": "Acme Ltd", "email": "quotes@acme.test"},
            {"supplier_id": "SUP-2", "name": "Beta GmbH", "email": "rfq@beta.test"},
        ],
    })
    assert response.status_code == 201
    return response.json()


def _upload(client, rfq_id, supplier_id, data, headers, filename="quote.xlsx"):
    return client.post(
        f"/api/rfq/{rfq_id}/suppliers/{supplier_id}/workbook",
        headers=headers,
        files={"file": (filename, data, XLSX_CONTENT_TYPE)},
    )


class TestRFQRoutes:
    def test_health(self, client):
        assert client.get("/health").json()["status"] == "ok"

    def test_create_and_fetch(self, client, rfq):
        assert rfq["status"] == "draft"
        assert [s["supplier_id"] for s in rfq["suppliers"]] == ["SUP-1", "SUP-2"]

        fetched = client.get(f"/api/rfq/{rfq['id']}", headers=BUYER).json()
        assert fetched["rfq_number"] == rfq["rfq_number"]

    def test_supplier_cannot_manage_rfqs(self, client):
        response = client.post("/api/rfq", headers=ACME, json={"title": "Mine"})
        assert response.status_code == 403

    def test_missing_token(self, client):
        assert client.get("/api/rfq").status_code in (401, 403)

    def test_invalid_token(self, client):
        response = client.get("/api/rfq", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_not_found_maps_to_404(self, client):
        response = client.get("/api/rfq/999", headers=BUYER)
        assert response.status_code == 404
        assert response.json()["detail"] == "RFQ 999 not found"

    def test_invalid_supplier_status_maps_to_400(self, client, rfq):
        response = client.patch(
            f"/api/rfq/{rfq['id']}/suppliers/SUP-1/status", headers=BUYER, json={"status": "archived"},
        )
        assert response.status_code == 400
        assert "archived" in response.json()["detail"]

    def test_send_inline(self, client, rfq):
        response = client.post(f"/api/rfq/{rfq['id']}/send", headers=BUYER)
        assert response.status_code == 200
        assert [r["status"] for r in response.json()] == ["sent", "sent"]
        assert client.get(f"/api/rfq/{rfq['id']}", headers=BUYER).json()["status"] == "sent"


class TestWorkbookRoutes:
    """Suppliers download and upload only their own workbook."""

    def test_round_trip(self, client, rfq):
        download = client.get(f"/api/rfq/{rfq['id']}/suppliers/SUP-1/workbook", headers=ACME)
        assert download.status_code == 200
        assert download.headers["content-type"] == XLSX_CONTENT_TYPE
        assert f"RFQ_{rfq['rfq_number']}_SUP-1.xlsx" in download.headers["content-disposition"]

        edited = edit_workbook(download.content, {"Commercial Table": {"E5": 7.5}})
        response = _upload(client, rfq["id"], "SUP-1", edited, ACME)

        assert response.status_code == 200
        body = response.json()
        assert body["version"] == 1
        assert body["verified"] is True

        history = client.get(f"/api/rfq/{rfq['id']}/suppliers/SUP-1/quotes", headers=ACME).json()
        assert [q["version"] for q in history] == [1]

        analysis = client.get(f"/api/rfq/{rfq['id']}/analysis", headers=BUYER).json()
        assert analysis["lowest_offers"]["items"] == [{"id": "P-1", "baseline": 7.5, "supplier_id": "SUP-1"}]

    def test_stale_workbook_rejected(self, client, rfq):
        first = client.get(f"/api/rfq/{rfq['id']}/suppliers/SUP-1/workbook", headers=ACME).content
        client.get(f"/api/rfq/{rfq['id']}/suppliers/SUP-1/workbook", headers=ACME)

        response = _upload(client, rfq["id"], "SUP-1", first, ACME)

        assert response.status_code == 400
        assert "verification" in response.json()["detail"].lower()
        assert client.get(f"/api/rfq/{rfq['id']}/quotes/latest", headers=BUYER).json() == []

    def test_other_suppliers_workbook_forbidden(self, client, rfq):
        assert client.get(f"/api/rfq/{rfq['id']}/suppliers/SUP-1/workbook", headers=BETA).status_code == 403

    def test_buyer_may_download_any(self, client, rfq):
        assert client.get(f"/api/rfq/{rfq['id']}/suppliers/SUP-2/workbook", headers=BUYER).status_code == 200

    def test_wrong_extension(self, client, rfq):
        response = _upload(client, rfq["id"], "SUP-1", b"data", ACME, filename="quote.csv")
        assert response.status_code == 400

    def test_corrupt_file(self, client, rfq):
        client.get(f"/api/rfq/{rfq['id']}/suppliers/SUP-1/workbook", headers=ACME)
        response = _upload(client, rfq["id"], "SUP-1", b"not a workbook", ACME)
        assert response.status_code == 400


class TestSQRRoutes:
    def test_create_fetch_and_submit(self, client, rfq):
        created = client.post("/api/sqr", headers=BUYER, json={"rfq_id": rfq["id"], "supplier_id": "SUP-1"})
        assert created.status_code == 201
        sqr_id = created.json()["id"]

        again = client.post("/api/sqr", headers=BUYER, json={"rfq_id": rfq["id"], "supplier_id": "SUP-1"})
        assert again.json()["id"] == sqr_id

        assert client.get(f"/api/sqr/{sqr_id}", headers=ACME).status_code == 200
        assert client.get(f"/api/sqr/{sqr_id}", headers=BETA).status_code == 403

        submitted = client.post(f"/api/sqr/{sqr_id}/submit", headers=ACME)
        assert submitted.json()["status"] == "submitted"

    def test_excel_round_trip(self, client, rfq):
        sqr_id = client.post(
            "/api/sqr", headers=BUYER, json={"rfq_id": rfq["id"], "supplier_id": "SUP-2"},
        ).json()["id"]
        data = client.get(f"/api/sqr/{sqr_id}/excel", headers=BETA).content
        edited = edit_workbook(data, {"Commercial Table": {"E5": 11}})

        response = client.post(
            f"/api/sqr/{sqr_id}/excel",
            headers=BETA,
            files={"file": ("quote.xlsx", edited, XLSX_CONTENT_TYPE)},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["sqr"]["status"] == "draft"
        assert body["version"] == 1
