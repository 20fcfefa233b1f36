"""
Payroll Workflow - API Integration Tests

Integration tests for the payroll REST endpoints.
"""

import pytest
from uuid import uuid4

from httpx import AsyncClient


API = "/api/v1/payroll"

WORKED_EXAMPLE = {
    "basic_salary": "500000",
    "allowances": [
        {"name": "Housing", "calculation_method": "percentage", "value": "25"},
        {"name": "Transport", "calculation_method": "fixed", "value": "25000"},
    ],
}


class TestHealthEndpoint:
    """Test health check endpoint."""

    @pytest.mark.asyncio
    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestAuthentication:
    """Bearer token handling."""

    @pytest.mark.asyncio
    async def test_missing_token(self, client: AsyncClient):
        response = await client.post(f"{API}/calculate", json=WORKED_EXAMPLE)

        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_invalid_token(self, client: AsyncClient):
        response = await client.post(
            f"{API}/calculate",
            json=WORKED_EXAMPLE,
            headers={"Authorization": "Bearer not-a-token"},
        )

        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "TOKEN_INVALID"

    @pytest.mark.asyncio
    async def test_unknown_user(self, client: AsyncClient, auth_headers):
        response = await client.post(f"{API}/calculate", json=WORKED_EXAMPLE, headers=auth_headers(uuid4()))

        assert response.status_code == 401


class TestCalculation:
    """Calculation preview."""

    @pytest.mark.asyncio
    async def test_worked_example(self, client: AsyncClient, employee, auth_headers):
        response = await client.post(f"{API}/calculate", json=WORKED_EXAMPLE, headers=auth_headers(employee.id))

        assert response.status_code == 200
        data = response.json()
        assert data["gross_pay"] == "650000.00"
        assert data["statutory_deductions"]["paye"] == "61500.00"
        assert data["statutory_deductions"]["pension"] == "40000.00"
        assert data["statutory_deductions"]["nhf"] == "12500.00"
        assert data["total_deductions"] == "114000.00"
        assert data["net_pay"] == "536000.00"
        assert [line["name"] for line in data["deduction_breakdown"]] == ["PAYE", "Pension", "NHF"]

    @pytest.mark.asyncio
    async def test_rejects_unknown_method(self, client: AsyncClient, employee, auth_headers):
        body = {
            "basic_salary": "500000",
            "allowances": [{"name": "Meal", "calculation_method": "daily", "value": "10"}],
        }
        response = await client.post(f"{API}/calculate", json=body, headers=auth_headers(employee.id))

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"


class TestPayrollRecords:
    """Creating and reading payroll records."""

    @pytest.mark.asyncio
    async def test_create_record(self, client: AsyncClient, approval_chain, employee, auth_headers):
        response = await client.post(
            f"{API}/records",
            json={"employee_id": str(employee.id), "month": 6, "year": 2026},
            headers=auth_headers(approval_chain["department_head"].id),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["record"]["status"] == "DRAFT"
        assert data["record"]["totals"]["net_pay"] == "536000.00"
        assert data["record"]["approval_flow"]["current_level"] == "DRAFT"
        assert data["summary"]["processed"] == 1

    @pytest.mark.asyncio
    async def test_employee_cannot_create(self, client: AsyncClient, approval_chain, employee, auth_headers):
        response = await client.post(
            f"{API}/records",
            json={"employee_id": str(employee.id), "month": 6, "year": 2026},
            headers=auth_headers(employee.id),
        )

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "PERMISSION_DENIED"

    @pytest.mark.asyncio
    async def test_duplicate_is_conflict(self, client: AsyncClient, approval_chain, employee, auth_headers):
        headers = auth_headers(approval_chain["department_head"].id)
        body = {"employee_id": str(employee.id), "month": 6, "year": 2026}
        await client.post(f"{API}/records", json=body, headers=headers)

        response = await client.post(f"{API}/records", json=body, headers=headers)

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "PAYROLL_ALREADY_EXISTS"

    @pytest.mark.asyncio
    async def test_invalid_month(self, client: AsyncClient, approval_chain, employee, auth_headers):
        response = await client.post(
            f"{API}/records",
            json={"employee_id": str(employee.id), "month": 13, "year": 2026},
            headers=auth_headers(approval_chain["department_head"].id),
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_get_missing_record(self, client: AsyncClient, employee, auth_headers):
        response = await client.get(f"{API}/records/{uuid4()}", headers=auth_headers(employee.id))

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "PAYROLL_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_employee_lists_only_own(
        self, client: AsyncClient, approval_chain, employee, second_employee, auth_headers,
    ):
        head_headers = auth_headers(approval_chain["department_head"].id)
        for employee_id in (employee.id, second_employee.id):
            await client.post(
                f"{API}/records",
                json={"employee_id": str(employee_id), "month": 6, "year": 2026},
                headers=head_headers,
            )

        response = await client.get(f"{API}/records", headers=auth_headers(employee.id))
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["employee_id"] == str(employee.id)

        response = await client.get(f"{API}/records", params={"status": "DRAFT"}, headers=head_headers)
        assert response.json()["total"] == 2


class TestApprovalEndpoints:
    """Workflow actions over HTTP."""

    async def _create_and_submit(self, client, approval_chain, employee, auth_headers):
        headers = auth_headers(approval_chain["department_head"].id)
        created = await client.post(
            f"{API}/records",
            json={"employee_id": str(employee.id), "month": 6, "year": 2026},
            headers=headers,
        )
        payroll_id = created.json()["record"]["id"]
        await client.post(f"{API}/records/{payroll_id}/submit", json={"remarks": "June"}, headers=headers)
        return payroll_id

    @pytest.mark.asyncio
    async def test_submit_and_approve(self, client: AsyncClient, approval_chain, employee, auth_headers):
        payroll_id = await self._create_and_submit(client, approval_chain, employee, auth_headers)

        response = await client.post(
            f"{API}/records/{payroll_id}/approve",
            json={"remarks": "Looks good"},
            headers=auth_headers(approval_chain["department_head"].id),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["record"]["status"] == "PENDING"
        assert data["record"]["approval_flow"]["current_level"] == "HR_MANAGER"
        assert data["warnings"] == []

    @pytest.mark.asyncio
    async def test_wrong_level_is_forbidden(self, client: AsyncClient, approval_chain, employee, auth_headers):
        payroll_id = await self._create_and_submit(client, approval_chain, employee, auth_headers)

        response = await client.post(
            f"{API}/records/{payroll_id}/approve",
            json={},
            headers=auth_headers(approval_chain["super_admin"].id),
        )

        assert response.status_code == 403
        assert response.json()["detail"]["details"]["level"] == "DEPARTMENT_HEAD"

    @pytest.mark.asyncio
    async def test_approve_draft_is_conflict(self, client: AsyncClient, approval_chain, employee, auth_headers):
        headers = auth_headers(approval_chain["department_head"].id)
        created = await client.post(
            f"{API}/records",
            json={"employee_id": str(employee.id), "month": 6, "year": 2026},
            headers=headers,
        )
        payroll_id = created.json()["record"]["id"]

        response = await client.post(f"{API}/records/{payroll_id}/approve", json={}, headers=headers)

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "INVALID_STATUS"

    @pytest.mark.asyncio
    async def test_reject_truncates_history(self, client: AsyncClient, approval_chain, employee, auth_headers):
        payroll_id = await self._create_and_submit(client, approval_chain, employee, auth_headers)

        response = await client.post(
            f"{API}/records/{payroll_id}/reject",
            json={"remarks": "Wrong grade"},
            headers=auth_headers(approval_chain["department_head"].id),
        )

        data = response.json()
        assert data["record"]["status"] == "REJECTED"
        assert len(data["record"]["approval_flow"]["history"]) == 1

    @pytest.mark.asyncio
    async def test_department_approve(
        self, client: AsyncClient, approval_chain, engineering, employee, auth_headers,
    ):
        await self._create_and_submit(client, approval_chain, employee, auth_headers)

        response = await client.post(
            f"{API}/departments/{engineering.id}/approve",
            json={"month": 6, "year": 2026},
            headers=auth_headers(approval_chain["department_head"].id),
        )

        assert response.status_code == 200
        assert response.json()["summary"]["processed"] == 1

    @pytest.mark.asyncio
    async def test_department_action_rejects_terminal_level(
        self, client: AsyncClient, approval_chain, engineering, auth_headers,
    ):
        response = await client.post(
            f"{API}/departments/{engineering.id}/approve",
            json={"month": 6, "year": 2026, "level": "COMPLETED"},
            headers=auth_headers(approval_chain["super_admin"].id),
        )

        assert response.status_code == 422


class TestBatchEndpoints:
    """Batch creation over HTTP."""

    @pytest.mark.asyncio
    async def test_batch_summary(
        self, client: AsyncClient, approval_chain, engineering, employee, second_employee, auth_headers,
    ):
        response = await client.post(
            f"{API}/records/batch",
            json={
                "employee_ids": [str(employee.id), str(second_employee.id), str(uuid4())],
                "month": 6,
                "year": 2026,
                "department_id": str(engineering.id),
            },
            headers=auth_headers(approval_chain["department_head"].id),
        )

        assert response.status_code == 200
        summary = response.json()["summary"]
        assert summary["total_attempted"] == 3
        assert summary["processed"] == 2
        assert summary["failed"] == 1
        assert summary["errors"][0]["code"] == "EMPLOYEE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_bulk_submit_needs_target(self, client: AsyncClient, approval_chain, auth_headers):
        response = await client.post(
            f"{API}/records/submit-bulk",
            json={"month": 6},
            headers=auth_headers(approval_chain["department_head"].id),
        )

        assert response.status_code == 422


class TestDeductionEndpoints:
    """Deduction definitions."""

    @pytest.mark.asyncio
    async def test_seed_defaults(self, client: AsyncClient, approval_chain, auth_headers):
        headers = auth_headers(approval_chain["hr_head"].id)
        response = await client.post(f"{API}/deductions/seed-defaults", headers=headers)

        assert response.status_code == 201
        names = [d["name"] for d in response.json()]
        assert {"PAYE", "Pension", "NHF"} <= set(names)

        again = await client.post(f"{API}/deductions/seed-defaults", headers=headers)
        assert again.json() == []

    @pytest.mark.asyncio
    async def test_employee_cannot_seed(self, client: AsyncClient, employee, auth_headers):
        response = await client.post(f"{API}/deductions/seed-defaults", headers=auth_headers(employee.id))

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_voluntary_deduction_changes_net_pay(
        self, client: AsyncClient, approval_chain, employee, auth_headers,
    ):
        hr_headers = auth_headers(approval_chain["hr_head"].id)
        created = await client.post(
            f"{API}/deductions",
            json={"name": "Cooperative", "calculation_method": "fixed", "value": "10000", "scope": "individual"},
            headers=hr_headers,
        )
        assert created.status_code == 201
        deduction_id = created.json()["id"]

        enrolled = await client.post(
            f"{API}/deductions/{deduction_id}/enroll",
            json={"user_id": str(employee.id)},
            headers=auth_headers(employee.id),
        )
        assert enrolled.status_code == 200

        response = await client.post(
            f"{API}/records",
            json={"employee_id": str(employee.id), "month": 6, "year": 2026},
            headers=auth_headers(approval_chain["department_head"].id),
        )
        record = response.json()["record"]
        assert record["totals"]["net_pay"] == "526000.00"
        assert record["deductions"]["breakdown"][-1]["name"] == "Cooperative"


class TestBonusEndpoints:
    """Recording and approving bonuses."""

    @pytest.mark.asyncio
    async def test_preview_with_bonus(self, client: AsyncClient, employee, auth_headers):
        body = dict(WORKED_EXAMPLE, bonuses=[{"name": "performance", "amount": "100000"}])
        response = await client.post(f"{API}/calculate", json=body, headers=auth_headers(employee.id))

        assert response.status_code == 200
        data = response.json()
        assert data["total_bonuses"] == "100000.00"
        assert data["gross_pay"] == "750000.00"
        assert data["net_pay"] == "621000.00"

    @pytest.mark.asyncio
    async def test_employee_cannot_record_bonus(self, client: AsyncClient, employee, auth_headers):
        response = await client.post(
            f"{API}/bonuses",
            json={"employee_id": str(employee.id), "bonus_type": "performance", "amount": "5000", "payment_date": "2026-06-15"},
            headers=auth_headers(employee.id),
        )

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "PERMISSION_DENIED"

    @pytest.mark.asyncio
    async def test_approved_bonus_paid_with_payroll(
        self, client: AsyncClient, approval_chain, employee, auth_headers,
    ):
        created = await client.post(
            f"{API}/bonuses",
            json={"employee_id": str(employee.id), "bonus_type": "performance", "amount": "100000", "payment_date": "2026-06-15"},
            headers=auth_headers(approval_chain["hr_head"].id),
        )
        assert created.status_code == 201
        assert created.json()["approval_status"] == "pending"
        bonus_id = created.json()["id"]

        forbidden = await client.post(
            f"{API}/bonuses/{bonus_id}/decision",
            json={"approved": True},
            headers=auth_headers(approval_chain["hr_head"].id),
        )
        assert forbidden.status_code == 403

        decided = await client.post(
            f"{API}/bonuses/{bonus_id}/decision",
            json={"approved": True},
            headers=auth_headers(approval_chain["finance_director"].id),
        )
        assert decided.status_code == 200
        assert decided.json()["approval_status"] == "approved"

        response = await client.post(
            f"{API}/records",
            json={"employee_id": str(employee.id), "month": 6, "year": 2026},
            headers=auth_headers(approval_chain["department_head"].id),
        )
        record = response.json()["record"]
        assert record["totals"]["gross_pay"] == "750000.00"
        assert record["totals"]["total_bonuses"] == "100000.00"
        assert record["bonuses"][0]["name"] == "performance"
