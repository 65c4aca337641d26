from datetime import date, timedelta
from decimal import Decimal

import pytest
from httpx import AsyncClient

from feedesk.api.v1.students.service import generate_student_code


def _student_body(**overrides) -> dict:
    body = {
        "first_name": "Ravi",
        "last_name": "Shah",
        "class_name": "10",
        "section": "a",
        "roll_number": "7",
        "phone": "+919876543210",
        "gender": "male",
    }
    body.update(overrides)
    return body


def test_generate_student_code() -> None:
    assert generate_student_code("10", "a", "7", today=date(2024, 6, 1)) == "2410A007"
    assert generate_student_code("Nursery", "B", "R12", today=date(2025, 1, 1)) == "25NURSERYBR12"


@pytest.mark.asyncio
async def test_create_student_generates_code(client: AsyncClient, accountant_headers) -> None:
    response = await client.post("/api/v1/students", json=_student_body(), headers=accountant_headers)

    assert response.status_code == 201
    data = response.json()
    assert data["section"] == "A"
    assert data["student_code"].endswith("10A007")
    assert data["full_name"] == "Ravi Shah"
    assert data["status"] == "active"


@pytest.mark.asyncio
async def test_duplicate_roll_number_is_conflict(client: AsyncClient, accountant_headers) -> None:
    first = await client.post("/api/v1/students", json=_student_body(), headers=accountant_headers)
    second = await client.post(
        "/api/v1/students", json=_student_body(first_name="Other", student_code="X1"), headers=accountant_headers
    )

    assert first.status_code == 201
    assert second.status_code == 409


@pytest.mark.asyncio
async def test_invalid_phone_rejected(client: AsyncClient, accountant_headers) -> None:
    response = await client.post(
        "/api/v1/students", json=_student_body(phone="12-34"), headers=accountant_headers
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_parent_link_must_be_parent_account(
    client: AsyncClient, accountant_headers, accountant_user, parent_user
) -> None:
    wrong = await client.post(
        "/api/v1/students", json=_student_body(parent_id=str(accountant_user.id)), headers=accountant_headers
    )
    assert wrong.status_code == 400

    right = await client.post(
        "/api/v1/students", json=_student_body(parent_id=str(parent_user.id)), headers=accountant_headers
    )
    assert right.status_code == 201


@pytest.mark.asyncio
async def test_list_students_search_and_pagination(
    client: AsyncClient, accountant_headers, parent_headers, make_student
) -> None:
    for _ in range(3):
        await make_student(section="A")
    await make_student(section="B")

    page = await client.get(
        "/api/v1/students", params={"section": "a", "page_size": 2}, headers=accountant_headers
    )
    assert page.status_code == 200
    data = page.json()
    assert data["total"] == 3
    assert len(data["items"]) == 2
    assert data["total_pages"] == 2

    search = await client.get("/api/v1/students", params={"search": "student4"}, headers=accountant_headers)
    assert search.json()["total"] == 1

    forbidden = await client.get("/api/v1/students", headers=parent_headers)
    assert forbidden.status_code == 403


@pytest.mark.asyncio
async def test_update_student(client: AsyncClient, accountant_headers, make_student) -> None:
    student = await make_student()

    response = await client.put(
        f"/api/v1/students/{student.id}", json={"status": "graduated", "section": "c"}, headers=accountant_headers
    )

    assert response.status_code == 200
    assert response.json()["status"] == "graduated"
    assert response.json()["section"] == "C"


@pytest.mark.asyncio
async def test_delete_student_with_payments_refused(
    client: AsyncClient, accountant_headers, make_student, make_fee_structure, assign_fee
) -> None:
    student = await make_student()
    fs = await make_fee_structure()
    await assign_fee(student, fs)
    await client.post(
        "/api/v1/payments",
        json={"student_id": str(student.id), "fee_structure_id": str(fs.id), "amount_paid": "10.00"},
        headers=accountant_headers,
    )
    clean = await make_student()

    refused = await client.delete(f"/api/v1/students/{student.id}", headers=accountant_headers)
    assert refused.status_code == 400

    deleted = await client.delete(f"/api/v1/students/{clean.id}", headers=accountant_headers)
    assert deleted.status_code == 204


@pytest.mark.asyncio
async def test_parent_reads_own_child_balance(
    client: AsyncClient,
    accountant_headers,
    parent_user,
    parent_headers,
    other_parent_headers,
    make_student,
    make_fee_structure,
    assign_fee,
) -> None:
    child = await make_student(parent_id=parent_user.id)
    tuition = await make_fee_structure(amount="1000.00", due_date=date.today() - timedelta(days=10))
    transport = await make_fee_structure(amount="500.00", fee_type="transport")
    await assign_fee(child, tuition)
    await assign_fee(child, transport)
    await client.post(
        "/api/v1/payments",
        json={"student_id": str(child.id), "fee_structure_id": str(tuition.id), "amount_paid": "400.00"},
        headers=accountant_headers,
    )

    response = await client.get(f"/api/v1/students/{child.id}/balance", headers=parent_headers)

    assert response.status_code == 200
    data = response.json()
    summary = data["summary"]
    assert summary["total_fees"] == 2
    assert Decimal(summary["total_amount"]) == Decimal("1500.00")
    assert Decimal(summary["total_paid"]) == Decimal("400.00")
    assert Decimal(summary["total_balance"]) == Decimal("1100.00")
    assert summary["overdue_count"] == 1
    overdue = next(b for b in data["balances"] if b["fee_type"] == "tuition")
    assert overdue["days_overdue"] == 10
    assert overdue["assignment_status"] == "assigned"

    fees = await client.get(f"/api/v1/students/{child.id}/fees", headers=parent_headers)
    assert fees.status_code == 200
    assert len(fees.json()) == 2

    payments = await client.get(f"/api/v1/students/{child.id}/payments", headers=parent_headers)
    assert payments.status_code == 200
    assert len(payments.json()) == 1

    denied = await client.get(f"/api/v1/students/{child.id}/balance", headers=other_parent_headers)
    assert denied.status_code == 403


@pytest.mark.asyncio
async def test_student_login_sees_own_record_only(
    client: AsyncClient, admin_headers, make_student
) -> None:
    register = await client.post(
        "/api/v1/auth/register",
        json={
            "full_name": "Ravi Shah",
            "email": "ravi@school.edu",
            "role": "student",
            "password": "StrongPass123",
            "confirm_password": "StrongPass123",
        },
        headers=admin_headers,
    )
    user_id = register.json()["id"]
    own = await make_student()
    other = await make_student()
    linked = await client.put(f"/api/v1/students/{own.id}", json={"user_id": user_id}, headers=admin_headers)
    assert linked.status_code == 200

    login = await client.post("/api/v1/auth/login", json={"email": "ravi@school.edu", "password": "StrongPass123"})
    headers = {"Authorization": f"Bearer {login.json()['access_token']}"}

    assert (await client.get(f"/api/v1/students/{own.id}", headers=headers)).status_code == 200
    assert (await client.get(f"/api/v1/students/{other.id}", headers=headers)).status_code == 403


@pytest.mark.asyncio
async def test_class_roster(client: AsyncClient, accountant_headers, parent_headers, make_student) -> None:
    a = await make_student(section="A")
    b = await make_student(section="B")
    await make_student(class_name="9")

    roster = await client.get("/api/v1/students/class/10", headers=accountant_headers)
    assert roster.status_code == 200
    assert [s["id"] for s in roster.json()] == [str(a.id), str(b.id)]

    section_b = await client.get("/api/v1/students/class/10", params={"section": "b"}, headers=accountant_headers)
    assert [s["id"] for s in section_b.json()] == [str(b.id)]

    forbidden = await client.get("/api/v1/students/class/10", headers=parent_headers)
    assert forbidden.status_code == 403


@pytest.mark.asyncio
async def test_student_stats_ignore_void_payments(
    client: AsyncClient,
    admin_headers,
    accountant_headers,
    parent_user,
    parent_headers,
    other_parent_headers,
    make_student,
    make_fee_structure,
    assign_fee,
) -> None:
    child = await make_student(parent_id=parent_user.id)
    tuition = await make_fee_structure(amount="1000.00", due_date=date.today() - timedelta(days=5))
    transport = await make_fee_structure(amount="500.00", fee_type="transport")
    await assign_fee(child, tuition)
    await assign_fee(child, transport)
    for amount in ("300.00", "200.00"):
        await client.post(
            "/api/v1/payments",
            json={"student_id": str(child.id), "fee_structure_id": str(tuition.id), "amount_paid": amount},
            headers=accountant_headers,
        )
    mistaken = await client.post(
        "/api/v1/payments",
        json={"student_id": str(child.id), "fee_structure_id": str(transport.id), "amount_paid": "50.00"},
        headers=accountant_headers,
    )
    await client.put(
        f"/api/v1/payments/{mistaken.json()['id']}/void", json={"reason": "wrong fee"}, headers=admin_headers
    )

    response = await client.get(f"/api/v1/students/{child.id}/stats", headers=parent_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["total_payments"] == 2
    assert Decimal(data["total_paid"]) == Decimal("500.00")
    assert Decimal(data["total_balance"]) == Decimal("1000.00")
    assert data["overdue_fees"] == 1
    assert data["last_payment"]["fee_type"] == "tuition"

    denied = await client.get(f"/api/v1/students/{child.id}/stats", headers=other_parent_headers)
    assert denied.status_code == 403


@pytest.mark.asyncio
async def test_student_stats_without_payments(client: AsyncClient, accountant_headers, make_student) -> None:
    student = await make_student()

    response = await client.get(f"/api/v1/students/{student.id}/stats", headers=accountant_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["total_payments"] == 0
    assert Decimal(data["total_paid"]) == Decimal("0")
    assert data["last_payment"] is None
