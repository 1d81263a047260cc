"""API integration tests for stored records and agreement balances."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

FINE_ROW = {
    "license_plate": "33333",
    "violation_date": "2024-05-10",
    "fine_amount": "250",
    "violation_number": "V-77",
}


def _import_fine(client, row=FINE_ROW):
    response = client.post("/api/v1/imports/fine/rows", json={"rows": [row]})
    assert response.status_code == 200, response.text
    return response.json()


def _unassigned(client):
    response = client.get(
        "/api/v1/records", params={"assignment_status": "unassigned"}
    )
    assert response.status_code == 200
    return response.json()


def test_list_records_empty(client):
    response = client.get("/api/v1/records")
    assert response.status_code == 200
    assert response.json() == []


def test_unassigned_record_is_listed(client):
    report = _import_fine(client)
    assert report["unassigned_rows"] == 1

    records = _unassigned(client)
    assert len(records) == 1
    assert records[0]["external_ref"] == "V-77"
    assert records[0]["record_type"] == "fine"
    assert records[0]["confidence"] == "none"
    assert records[0]["agreement_id"] is None


def test_list_records_filters(client):
    _import_fine(client)

    by_plate = client.get("/api/v1/records", params={"license_plate": "33 333"})
    assert len(by_plate.json()) == 1
    later = client.get("/api/v1/records", params={"date_from": "2024-06-01"})
    assert later.json() == []
    payments = client.get("/api/v1/records", params={"record_type": "payment"})
    assert payments.json() == []


def test_list_records_bad_status(client):
    response = client.get("/api/v1/records", params={"assignment_status": "maybe"})
    assert response.status_code == 400


def test_manual_assign(client, make_agreement):
    _import_fine(client)
    agreement = make_agreement("AGR-9", "44444", "Sara Ali", date(2024, 1, 1))
    record_id = _unassigned(client)[0]["id"]

    response = client.post(
        f"/api/v1/records/{record_id}/assign",
        json={"agreement_id": str(agreement.id)},
    )

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["confidence"] == "manual"
    assert data["applied"] is True
    assert Decimal(data["balance_after"]) == Decimal("250.00")
    assert _unassigned(client) == []

    balance = client.get(f"/api/v1/agreements/{agreement.id}/balance").json()
    assert Decimal(balance["balance"]) == Decimal("250.00")
    assert [a["external_ref"] for a in balance["applications"]] == ["V-77"]


def test_manual_assign_unknown_record(client, make_agreement):
    agreement = make_agreement("AGR-9", "44444", "Sara Ali", date(2024, 1, 1))

    response = client.post(
        f"/api/v1/records/{uuid.uuid4()}/assign",
        json={"agreement_id": str(agreement.id)},
    )

    assert response.status_code == 404


def test_manual_assign_twice_conflicts(client, make_agreement):
    _import_fine(client)
    first = make_agreement("AGR-9", "44444", "Sara Ali", date(2024, 1, 1))
    second = make_agreement("AGR-10", "55555", "Omar Saleh", date(2024, 1, 1))
    record_id = _unassigned(client)[0]["id"]

    client.post(
        f"/api/v1/records/{record_id}/assign", json={"agreement_id": str(first.id)}
    )
    response = client.post(
        f"/api/v1/records/{record_id}/assign", json={"agreement_id": str(second.id)}
    )

    assert response.status_code == 409


def test_auto_assign(client, make_agreement):
    _import_fine(client)
    make_agreement("AGR-20", "33333", "Sara Ali", date(2024, 5, 1), date(2024, 5, 31))

    response = client.post("/api/v1/records/auto-assign")

    assert response.status_code == 200, response.text
    data = response.json()
    assert (data["examined"], data["assigned"], data["still_unassigned"]) == (1, 1, 0)
    assert _unassigned(client) == []


def test_agreement_balance_not_found(client):
    response = client.get(f"/api/v1/agreements/{uuid.uuid4()}/balance")
    assert response.status_code == 404
