from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from app.auth.dependencies import get_current_user
from app.auth.schemas import CurrentUser
from app.main import app


def iso(days: int, hours: int = 0) -> str:
    return (datetime.now(timezone.utc) + timedelta(days=days, hours=hours)).isoformat()


async def create(client: AsyncClient, school, **overrides) -> dict:
    payload = {
        "student_id": str(school.alice.id),
        "fee_structure_id": str(school.tuition.id),
        "academic_year": "2024-2025",
        "month": "January 2025",
        "due_date": iso(10),
    }
    payload.update(overrides)
    response = await client.post("/api/v1/fee-collections", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_create_and_get(client: AsyncClient, school) -> None:
    created = await create(client, school)
    assert created["status"] == "pending"
    assert created["due_amount"] == "1000.00"
    assert created["warnings"] == []

    response = await client.get(f"/api/v1/fee-collections/{created['id']}")
    assert response.status_code == 200
    assert response.json()["student_name"] == "Alice Kumar"


@pytest.mark.asyncio
async def test_duplicate_period_is_409(client: AsyncClient, school) -> None:
    await create(client, school)
    response = await client.post(
        "/api/v1/fee-collections",
        json={
            "student_id": str(school.alice.id),
            "fee_structure_id": str(school.tuition.id),
            "academic_year": "2024-2025",
            "month": "January 2025",
            "due_date": iso(10),
        },
    )
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "DUPLICATE_PERIOD"


@pytest.mark.asyncio
async def test_payment_flow(client: AsyncClient, school) -> None:
    created = await create(client, school)
    url = f"/api/v1/fee-collections/{created['id']}/payment"

    response = await client.post(url, json={"amount": "400", "payment_method": "online", "transaction_id": "TXN-1"})
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "partial"
    assert body["due_amount"] == "600.00"
    assert body["payments"][0]["transaction_id"] == "TXN-1"

    response = await client.post(url, json={"amount": "600.50"})
    assert response.status_code == 409
    assert response.json()["detail"] == {
        "code": "EXCEEDS_DUE",
        "message": "Payment amount exceeds due amount",
        "due_amount": "600.00",
    }

    response = await client.post(url, json={"amount": "0"})
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "INVALID_AMOUNT"

    response = await client.post(url, json={"amount": "600"})
    assert response.json()["status"] == "paid"


@pytest.mark.asyncio
async def test_cancel_and_delete(client: AsyncClient, school) -> None:
    paid_some = await create(client, school)
    await client.post(f"/api/v1/fee-collections/{paid_some['id']}/payment", json={"amount": "10"})

    response = await client.delete(f"/api/v1/fee-collections/{paid_some['id']}")
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "HAS_PAYMENTS"

    response = await client.put(f"/api/v1/fee-collections/{paid_some['id']}/cancel", json={"reason": "Wrong month"})
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert response.json()["remarks"] == "Cancelled: Wrong month"

    unpaid = await create(client, school, month="February 2025")
    response = await client.delete(f"/api/v1/fee-collections/{unpaid['id']}")
    assert response.status_code == 204
    response = await client.get(f"/api/v1/fee-collections/{unpaid['id']}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_update_and_late_fee(client: AsyncClient, school) -> None:
    created = await create(client, school, fee_structure_id=str(school.transport.id), due_date=iso(-8, hours=1))
    assert created["display_status"] == "overdue"

    response = await client.post(f"/api/v1/fee-collections/{created['id']}/late-fee")
    assert response.status_code == 200
    # 8 days late, 3 days grace, 5.00 per day
    assert response.json()["late_fee_amount"] == "25.00"
    assert response.json()["due_amount"] == "225.00"

    response = await client.put(
        f"/api/v1/fee-collections/{created['id']}",
        json={"late_fee_amount": "0", "due_date": iso(5)},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["due_amount"] == "200.00"
    assert body["display_status"] == "pending"


@pytest.mark.asyncio
async def test_reminder_endpoint(client: AsyncClient, school) -> None:
    created = await create(client, school)
    response = await client.post(f"/api/v1/fee-collections/{created['id']}/reminder", json={"reminder_type": "email"})
    assert response.status_code == 200
    assert response.json()["reminders"][0]["reminder_type"] == "email"


@pytest.mark.asyncio
async def test_reports(client: AsyncClient, school) -> None:
    await create(client, school, month="December 2024", due_date=iso(-45, hours=1))
    await create(client, school, student_id=str(school.bob.id), due_date=iso(-5, hours=1))
    await create(client, school, month="February 2025", due_date=iso(20))

    response = await client.get("/api/v1/fee-collections/due/list", params={"academic_year": "2024-2025"})
    assert response.status_code == 200
    dues = {item["student"]["name"]: item for item in response.json()}
    assert dues["Alice Kumar"]["two_month_due"] == "1000.00"
    assert dues["Alice Kumar"]["one_month_due"] == "1000.00"
    assert dues["Alice Kumar"]["total_due"] == "2000.00"
    assert dues["Bob Mehta"]["student"]["admission_number"] == "R-7"

    response = await client.get("/api/v1/fee-collections/overdue/list")
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "ACADEMIC_YEAR_REQUIRED"
    response = await client.get("/api/v1/fee-collections/due/list")
    assert response.status_code == 400

    response = await client.get("/api/v1/fee-collections/overdue/list", params={"academic_year": "2024-2025"})
    assert response.status_code == 200
    assert [o["days_overdue"] for o in response.json()] == [45, 5]

    response = await client.get("/api/v1/fee-collections/stats")
    assert response.status_code == 200
    assert response.json()["total_collections"] == 3
    assert response.json()["total_due"] == "3000.00"

    response = await client.get(f"/api/v1/fee-collections/student/{school.alice.id}")
    assert response.status_code == 200
    assert [r["month"] for r in response.json()] == ["December 2024", "February 2025"]

    response = await client.get("/api/v1/fee-collections", params={"status": "overdue"})
    assert response.json()["pagination"]["total"] == 2


@pytest.mark.asyncio
async def test_other_school_gets_403(client: AsyncClient, school) -> None:
    created = await create(client, school)

    async def outsider() -> CurrentUser:
        return CurrentUser(id=school.outsider.id, tenant_id=school.other_tenant.id, role="SUPER_ADMIN", permissions={})

    app.dependency_overrides[get_current_user] = outsider
    response = await client.get(f"/api/v1/fee-collections/{created['id']}")
    assert response.status_code == 403
    response = await client.post(f"/api/v1/fee-collections/{created['id']}/payment", json={"amount": "5"})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_permissions_enforced(client: AsyncClient, school) -> None:
    async def accountant() -> CurrentUser:
        return CurrentUser(
            id=school.accountant.id,
            tenant_id=school.tenant.id,
            role="ACCOUNTANT",
            permissions={"fees": {"read": True, "collect": True}},
        )

    app.dependency_overrides[get_current_user] = accountant
    response = await client.post(
        "/api/v1/fee-collections",
        json={
            "student_id": str(school.alice.id),
            "fee_structure_id": str(school.tuition.id),
            "academic_year": "2024-2025",
            "due_date": iso(10),
        },
    )
    assert response.status_code == 403
    response = await client.get("/api/v1/fee-collections")
    assert response.status_code == 200
