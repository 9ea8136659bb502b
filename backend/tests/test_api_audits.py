"""HTTP tests for stock audit endpoints and the API client."""

from decimal import Decimal

import pytest

from stockledger.client import StockLedgerClient
from stockledger.core.exceptions import InvalidStateError, NotFoundError, VersionConflictError
from stockledger.services.edit_buffer import AuditEditBuffer

API = "/api/v1"


@pytest.fixture
def audit(client, staff_headers, warehouses, items, receive):
    receive(items["flour"], warehouses["main"], 100)
    receive(items["sugar"], warehouses["main"], 40)
    response = client.post(
        f"{API}/stock/audits",
        json={"name": "Month end", "audit_date": "2024-03-31"},
        headers=staff_headers,
    )
    assert response.status_code == 201
    return response.json()


def _items_by_name(client, headers, audit_id):
    body = client.get(f"{API}/stock/audits/{audit_id}", headers=headers).json()
    return {row["item_name"]: row for row in body["items"]}


class TestCreateAndRead:
    def test_create_returns_item_count(self, audit, warehouses):
        assert audit["items_count"] == 3
        assert audit["audit"]["status"] == "in_progress"
        assert audit["audit"]["warehouse_id"] == warehouses["main"].id
        assert audit["audit"]["created_by"] == "staff-1"

    def test_blank_name_is_422(self, client, staff_headers, warehouses):
        response = client.post(
            f"{API}/stock/audits", json={"name": "  ", "audit_date": "2024-03-31"}, headers=staff_headers
        )
        assert response.status_code == 422

    def test_detail_shape(self, client, staff_headers, audit, warehouses):
        audit_id = audit["audit"]["id"]
        response = client.get(
            f"{API}/stock/audits/{audit_id}", params={"page": 1, "pageSize": 2}, headers=staff_headers
        )
        assert response.status_code == 200
        body = response.json()
        assert body["warehouse"] == {"id": warehouses["main"].id, "name": "Main Store"}
        assert [i["item_name"] for i in body["items"]] == ["Flour", "Gastro Tray"]
        assert body["pagination"] == {"page": 1, "page_size": 2, "total": 3, "page_count": 2}
        assert body["stats"]["total"] == 3
        assert body["stats"]["pending"] == 3
        assert body["stats"]["completed"] == 0
        assert Decimal(body["items"][0]["book_quantity"]) == Decimal("100")
        assert body["items"][0]["status"] == "pending"
        assert body["items"][0]["difference"] is None

    def test_detail_filters(self, client, staff_headers, audit):
        audit_id = audit["audit"]["id"]
        body = client.get(
            f"{API}/stock/audits/{audit_id}", params={"itemType": "container"}, headers=staff_headers
        ).json()
        assert [i["item_name"] for i in body["items"]] == ["Gastro Tray"]
        assert body["stats"]["total"] == 3

    def test_list_audits(self, client, staff_headers, audit):
        body = client.get(f"{API}/stock/audits", headers=staff_headers).json()
        assert body["total"] == 1
        body = client.get(f"{API}/stock/audits", params={"status": "completed"}, headers=staff_headers).json()
        assert body["total"] == 0

    def test_unknown_audit_is_404(self, client, staff_headers, warehouses):
        response = client.get(f"{API}/stock/audits/999", headers=staff_headers)
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


class TestCounting:
    def test_batch_update(self, client, staff_headers, audit):
        audit_id = audit["audit"]["id"]
        rows = _items_by_name(client, staff_headers, audit_id)

        response = client.patch(
            f"{API}/stock/audits/{audit_id}/items/batch",
            json={"updates": {
                str(rows["Flour"]["id"]): {"actual_quantity": "92", "version": 1},
                str(rows["Sugar"]["id"]): {"actual_quantity": "40", "notes": "ok"},
            }},
            headers=staff_headers,
        )

        assert response.status_code == 200
        assert response.json() == {"updated_count": 2}
        rows = _items_by_name(client, staff_headers, audit_id)
        assert rows["Flour"]["status"] == "discrepancy"
        assert Decimal(rows["Flour"]["difference"]) == Decimal("-8")
        assert rows["Flour"]["audited_by"] == "staff-1"
        assert rows["Sugar"]["status"] == "counted"

    def test_batch_with_unknown_item_changes_nothing(self, client, staff_headers, audit):
        audit_id = audit["audit"]["id"]
        rows = _items_by_name(client, staff_headers, audit_id)

        response = client.patch(
            f"{API}/stock/audits/{audit_id}/items/batch",
            json={"updates": {
                str(rows["Flour"]["id"]): {"actual_quantity": "92"},
                "987654": {"actual_quantity": "1"},
            }},
            headers=staff_headers,
        )

        assert response.status_code == 404
        assert response.json()["audit_item_ids"] == [987654]
        assert _items_by_name(client, staff_headers, audit_id)["Flour"]["actual_quantity"] is None

    def test_stale_version_is_409(self, client, staff_headers, audit):
        audit_id = audit["audit"]["id"]
        flour_id = _items_by_name(client, staff_headers, audit_id)["Flour"]["id"]
        url = f"{API}/stock/audits/{audit_id}/items/{flour_id}"

        assert client.patch(url, json={"actual_quantity": "95", "version": 1}, headers=staff_headers).status_code == 200
        response = client.patch(url, json={"actual_quantity": "96", "version": 1}, headers=staff_headers)

        assert response.status_code == 409
        assert response.json()["error"] == "version_conflict"

    def test_single_item_negative_is_422(self, client, staff_headers, audit):
        audit_id = audit["audit"]["id"]
        flour_id = _items_by_name(client, staff_headers, audit_id)["Flour"]["id"]
        response = client.patch(
            f"{API}/stock/audits/{audit_id}/items/{flour_id}",
            json={"actual_quantity": "-1"},
            headers=staff_headers,
        )
        assert response.status_code == 422

    def test_get_single_item(self, client, staff_headers, audit):
        audit_id = audit["audit"]["id"]
        flour_id = _items_by_name(client, staff_headers, audit_id)["Flour"]["id"]
        response = client.get(f"{API}/stock/audits/{audit_id}/items/{flour_id}", headers=staff_headers)
        assert response.status_code == 200
        assert response.json()["version"] == 1


class TestCompletion:
    def test_staff_cannot_complete(self, client, staff_headers, audit):
        response = client.patch(
            f"{API}/stock/audits/{audit['audit']['id']}",
            json={"action": "complete"},
            headers=staff_headers,
        )
        assert response.status_code == 403

    def test_complete_with_differences(self, client, staff_headers, manager_headers, audit, items):
        audit_id = audit["audit"]["id"]
        flour_id = _items_by_name(client, staff_headers, audit_id)["Flour"]["id"]
        client.patch(
            f"{API}/stock/audits/{audit_id}/items/batch",
            json={"updates": {str(flour_id): {"actual_quantity": "92"}}},
            headers=staff_headers,
        )

        response = client.patch(
            f"{API}/stock/audits/{audit_id}",
            json={"action": "complete", "apply_differences": True},
            headers=manager_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["applied_count"] == 1
        assert body["audit"]["status"] == "completed"
        assert body["audit"]["completed_by"] == "manager-1"

        history = client.get(
            f"{API}/stock/transactions",
            params={"referenceType": "stock_audit", "referenceId": audit_id},
            headers=staff_headers,
        ).json()
        assert history["total"] == 1
        assert Decimal(history["items"][0]["quantity_delta"]) == Decimal("-8")

        again = client.patch(
            f"{API}/stock/audits/{audit_id}", json={"action": "complete"}, headers=manager_headers
        )
        assert again.status_code == 409
        assert again.json()["error"] == "invalid_state"

    def test_unknown_action_is_422(self, client, manager_headers, audit):
        response = client.patch(
            f"{API}/stock/audits/{audit['audit']['id']}", json={"action": "reopen"}, headers=manager_headers
        )
        assert response.status_code == 422

    def test_delete_rules(self, client, staff_headers, manager_headers, audit):
        audit_id = audit["audit"]["id"]
        assert client.delete(f"{API}/stock/audits/{audit_id}", headers=staff_headers).status_code == 403

        response = client.delete(f"{API}/stock/audits/{audit_id}", headers=manager_headers)
        assert response.status_code == 200
        assert response.json() == {"status": "deleted", "audit_id": audit_id}
        assert client.get(f"{API}/stock/audits/{audit_id}", headers=staff_headers).status_code == 404


class TestStockLedgerClient:
    def test_buffer_commits_through_http(self, client, staff_headers, audit):
        audit_id = audit["audit"]["id"]
        rows = _items_by_name(client, staff_headers, audit_id)
        token = staff_headers["Authorization"].split(" ", 1)[1]
        api = StockLedgerClient(token=token, client=client)

        buffer = AuditEditBuffer(audit_id)
        buffer.stage(rows["Flour"]["id"], "actual_quantity", Decimal("97.5"), base_version=1)
        buffer.stage(rows["Sugar"]["id"], "notes", "shelf two")

        assert buffer.commit(api) == {"updated_count": 2}
        assert not buffer.is_dirty

        detail = api.get_audit(audit_id)
        flour = next(i for i in detail["items"] if i["item_name"] == "Flour")
        assert Decimal(flour["actual_quantity"]) == Decimal("97.5")

    def test_errors_map_back_to_exceptions(self, client, staff_headers, manager_headers, audit):
        audit_id = audit["audit"]["id"]
        flour_id = _items_by_name(client, staff_headers, audit_id)["Flour"]["id"]
        staff = StockLedgerClient(token=staff_headers["Authorization"].split(" ", 1)[1], client=client)
        manager = StockLedgerClient(token=manager_headers["Authorization"].split(" ", 1)[1], client=client)

        buffer = AuditEditBuffer(audit_id)
        buffer.stage(flour_id, "actual_quantity", 90, base_version=5)
        with pytest.raises(VersionConflictError):
            buffer.commit(staff)
        assert buffer.is_dirty

        with pytest.raises(NotFoundError):
            staff.get_audit(424242)

        manager.complete_audit(audit_id)
        with pytest.raises(InvalidStateError):
            manager.complete_audit(audit_id)
