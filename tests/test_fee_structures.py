import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_create_fee_structure(client: AsyncClient, school) -> None:
    payload = {
        "name": "Library Fee",
        "category": "library",
        "class_id": str(school.class_9.id),
        "academic_year": "2024-2025",
        "amount": "300",
        "frequency": "annual",
        "discount_enabled": True,
        "discount_type": "fixed",
        "discount_value": "25",
    }
    response = await client.post("/api/v1/fee-structures", json=payload)
    assert response.status_code == 201
    data = response.json()
    assert data["amount"] == "300.00"
    assert data["discount_amount"] == "25.00"
    assert data["status"] == "active"

    response = await client.get(f"/api/v1/fee-structures/{data['id']}")
    assert response.status_code == 200
    assert response.json()["name"] == "Library Fee"


@pytest.mark.asyncio
async def test_create_rejects_invalid_input(client: AsyncClient, school) -> None:
    base = {"name": "Exam Fee", "category": "exam", "academic_year": "2024-2025", "amount": "100"}

    response = await client.post("/api/v1/fee-structures", json={**base, "class_id": str(school.stranger.id)})
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "INVALID_CLASS"

    response = await client.post(
        "/api/v1/fee-structures", json={**base, "discount_type": "percentage", "discount_value": "101"}
    )
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "INVALID_DISCOUNT"

    response = await client.post("/api/v1/fee-structures", json={**base, "frequency": "weekly"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_list_includes_all_class_fees(client: AsyncClient, school) -> None:
    response = await client.get("/api/v1/fee-structures", params={"class_id": str(school.class_9.id)})
    assert response.status_code == 200
    names = [fs["name"] for fs in response.json()]
    assert names == ["Transport Fee", "Tuition Fee"]

    response = await client.get("/api/v1/fee-structures", params={"class_id": str(school.class_10a.id)})
    assert [fs["name"] for fs in response.json()] == ["Lab Fee", "Transport Fee", "Tuition Fee"]


@pytest.mark.asyncio
async def test_missing_structure_is_404(client: AsyncClient, school) -> None:
    response = await client.get(f"/api/v1/fee-structures/{school.alice.id}")
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "FEE_STRUCTURE_NOT_FOUND"
