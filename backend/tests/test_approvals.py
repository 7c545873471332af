# tests/test_approvals.py — Template approval workflow
from datetime import timedelta

import pytest
from httpx import AsyncClient

from approval_workflow import ApprovalWorkflow
from auth import AuthService
from errors import Conflict, Forbidden, NoApproverAvailable, NotFound
from models import ApprovalStatus, TemplateStatus, UserRole
from template_service import TemplateCreate, TemplateService

STRONG_PASSWORD = "Str0ng!Pass"


async def _draft(db_session, creator_id, name="Sales onboarding"):
    return await TemplateService(db_session).create_template(
        TemplateCreate(name=name, category="onboarding", items=[{"title": "Meet the team"}]),
        creator_id,
    )


async def _status(db_session, template_id):
    row = await TemplateService(db_session).get_template_row(template_id)
    await db_session.refresh(row)
    return row


@pytest.mark.asyncio
class TestApprovalScenario:
    async def test_employee_template_approved_by_hr_manager(self, db_session):
        auth = AuthService(db_session)
        a = await auth.register("a@acme-hr.com", STRONG_PASSWORD, "Alice", "Employee", UserRole.EMPLOYEE)
        b = await auth.register("b@acme-hr.com", STRONG_PASSWORD, "Bob", "Manager", UserRole.HR_MANAGER)
        requester = await auth._get_user(a["id"])

        template = await _draft(db_session, a["id"])
        workflow = ApprovalWorkflow(db_session)
        submitted = await workflow.submit_for_approval(template["id"], requester)

        assert submitted["assigned_to"] == b["id"]
        assert (await _status(db_session, template["id"])).status == TemplateStatus.PENDING_APPROVAL

        await workflow.approve(submitted["approval_request_id"], b["id"])
        row = await _status(db_session, template["id"])
        assert row.status == TemplateStatus.APPROVED
        assert row.approved_by == b["id"]
        assert row.approved_at is not None

        history = await workflow.get_template_approval_history(template["id"])
        assert [h["status"] for h in history] == [ApprovalStatus.APPROVED.value]
        assert history[0]["approver_name"] == "Bob Manager"


@pytest.mark.asyncio
class TestSubmit:
    async def test_prefers_admin_over_hr_manager(self, db_session, employee_user, hr_user, admin_user):
        template = await _draft(db_session, employee_user.id)
        result = await ApprovalWorkflow(db_session).submit_for_approval(template["id"], employee_user)
        assert result["assigned_to"] == admin_user.id

    async def test_requester_is_never_the_approver(self, db_session, admin_user, hr_user):
        template = await _draft(db_session, admin_user.id)
        result = await ApprovalWorkflow(db_session).submit_for_approval(template["id"], admin_user)
        assert result["assigned_to"] == hr_user.id

    async def test_earliest_created_approver_wins(self, db_session, employee_user, hr_user):
        auth = AuthService(db_session)
        later = await auth.register("hr-later@acme-hr.com", STRONG_PASSWORD, "Late", "Comer", UserRole.HR_MANAGER)
        row = await auth._get_user(later["id"])
        row.created_at = hr_user.created_at + timedelta(days=1)
        await db_session.commit()

        template = await _draft(db_session, employee_user.id)
        result = await ApprovalWorkflow(db_session).submit_for_approval(template["id"], employee_user)
        assert result["assigned_to"] == hr_user.id

    async def test_no_approver_available(self, db_session, hr_user):
        template = await _draft(db_session, hr_user.id)
        with pytest.raises(NoApproverAvailable):
            await ApprovalWorkflow(db_session).submit_for_approval(template["id"], hr_user)
        assert (await _status(db_session, template["id"])).status == TemplateStatus.DRAFT

    async def test_inactive_approvers_are_skipped(self, db_session, employee_user, hr_user):
        hr_user.is_active = False
        await db_session.commit()
        template = await _draft(db_session, employee_user.id)
        with pytest.raises(NoApproverAvailable):
            await ApprovalWorkflow(db_session).submit_for_approval(template["id"], employee_user)

    async def test_only_creator_or_hr_can_submit(self, db_session, hr_user, admin_user, employee_user):
        template = await _draft(db_session, hr_user.id)
        with pytest.raises(Forbidden):
            await ApprovalWorkflow(db_session).submit_for_approval(template["id"], employee_user)

    async def test_missing_or_non_draft_template(self, db_session, hr_user, admin_user):
        workflow = ApprovalWorkflow(db_session)
        with pytest.raises(NotFound):
            await workflow.submit_for_approval("missing", hr_user)

        template = await _draft(db_session, hr_user.id)
        await workflow.submit_for_approval(template["id"], hr_user)
        # Now pending_approval, so no longer submittable
        with pytest.raises(NotFound):
            await workflow.submit_for_approval(template["id"], hr_user)

    async def test_at_most_one_pending_request(self, db_session, hr_user, admin_user):
        template = await _draft(db_session, hr_user.id)
        workflow = ApprovalWorkflow(db_session)
        await workflow.submit_for_approval(template["id"], hr_user)

        # Force the template back to draft while the request is still pending
        row = await _status(db_session, template["id"])
        row.status = TemplateStatus.DRAFT
        await db_session.commit()

        with pytest.raises(Conflict):
            await workflow.submit_for_approval(template["id"], hr_user)


@pytest.mark.asyncio
class TestResolve:
    async def test_reject_returns_to_draft_and_allows_resubmission(self, db_session, hr_user, admin_user):
        template = await _draft(db_session, hr_user.id)
        workflow = ApprovalWorkflow(db_session)
        first = await workflow.submit_for_approval(template["id"], hr_user, "please review")

        result = await workflow.reject(
            first["approval_request_id"], admin_user.id, "not yet", "add a security step",
        )
        assert result["status"] == "draft"
        assert (await _status(db_session, template["id"])).status == TemplateStatus.DRAFT

        second = await workflow.submit_for_approval(template["id"], hr_user)
        assert second["approval_request_id"] != first["approval_request_id"]

        history = await workflow.get_template_approval_history(template["id"])
        assert len(history) == 2
        rejected = next(h for h in history if h["id"] == first["approval_request_id"])
        assert rejected["status"] == "rejected"
        assert rejected["changes_requested"] == "add a security step"
        assert rejected["responded_at"] is not None

    async def test_resolution_without_comment_stores_default(self, db_session, hr_user, admin_user):
        workflow = ApprovalWorkflow(db_session)
        first = await _draft(db_session, hr_user.id, "Approve me")
        second = await _draft(db_session, hr_user.id, "Reject me")
        approved = await workflow.submit_for_approval(first["id"], hr_user, "please review")
        rejected = await workflow.submit_for_approval(second["id"], hr_user, "please review")

        await workflow.approve(approved["approval_request_id"], admin_user.id)
        await workflow.reject(rejected["approval_request_id"], admin_user.id)

        [approved_row] = await workflow.get_template_approval_history(first["id"])
        [rejected_row] = await workflow.get_template_approval_history(second["id"])
        assert approved_row["comments"] == "Template approved"
        assert rejected_row["comments"] == "Template rejected"

    async def test_only_assignee_can_resolve(self, db_session, employee_user, hr_user, admin_user):
        template = await _draft(db_session, employee_user.id)
        workflow = ApprovalWorkflow(db_session)
        submitted = await workflow.submit_for_approval(template["id"], employee_user)
        assert submitted["assigned_to"] == admin_user.id

        with pytest.raises(NotFound):
            await workflow.approve(submitted["approval_request_id"], hr_user.id)
        with pytest.raises(NotFound):
            await workflow.reject(submitted["approval_request_id"], hr_user.id)

    async def test_request_resolves_only_once(self, db_session, hr_user, admin_user):
        template = await _draft(db_session, hr_user.id)
        workflow = ApprovalWorkflow(db_session)
        submitted = await workflow.submit_for_approval(template["id"], hr_user)
        await workflow.approve(submitted["approval_request_id"], admin_user.id)
        with pytest.raises(NotFound):
            await workflow.reject(submitted["approval_request_id"], admin_user.id)


@pytest.mark.asyncio
class TestDetails:
    async def test_visible_to_requester_assignee_and_hr(self, db_session, employee_user, hr_user, admin_user):
        template = await _draft(db_session, employee_user.id)
        workflow = ApprovalWorkflow(db_session)
        submitted = await workflow.submit_for_approval(template["id"], employee_user, "first pass")
        request_id = submitted["approval_request_id"]

        for viewer in (employee_user, admin_user, hr_user):
            details = await workflow.get_approval_request_details(request_id, viewer)
            assert details["comments"] == "first pass"
            assert details["approver_email"] == admin_user.email
            assert details["template"]["status"] == "pending_approval"

    async def test_hidden_from_unrelated_employee(self, db_session, employee_user, hr_user):
        template = await _draft(db_session, hr_user.id)
        workflow = ApprovalWorkflow(db_session)
        auth = AuthService(db_session)
        admin = await auth.register("boss@acme-hr.com", STRONG_PASSWORD, "Big", "Boss", UserRole.ADMIN)
        submitted = await workflow.submit_for_approval(template["id"], hr_user)
        assert submitted["assigned_to"] == admin["id"]

        with pytest.raises(NotFound):
            await workflow.get_approval_request_details(submitted["approval_request_id"], employee_user)

    async def test_default_comment_and_pending_listing(self, db_session, employee_user, admin_user):
        template = await _draft(db_session, employee_user.id)
        workflow = ApprovalWorkflow(db_session)
        await workflow.submit_for_approval(template["id"], employee_user)

        listing = await workflow.get_approval_requests(admin_user.id)
        assert listing["pagination"]["total"] == 1
        assert listing["requests"][0]["comments"] == "Template submitted for approval"
        assert (await workflow.get_approval_requests(admin_user.id, "approved"))["requests"] == []


@pytest.mark.asyncio
class TestApprovalEndpoints:
    async def test_round_trip_over_http(self, client: AsyncClient, hr_user, admin_user, auth_headers):
        hr_headers = await auth_headers(hr_user)
        admin_headers = await auth_headers(admin_user)

        created = (await client.post("/api/v1/templates", json={
            "name": "Finance onboarding", "category": "compliance",
            "items": [{"title": "Sign confidentiality agreement"}],
        }, headers=hr_headers)).json()["template"]

        res = await client.post(
            f"/api/v1/template-approval/templates/{created['id']}/submit",
            json={"comments": "ready"}, headers=hr_headers,
        )
        assert res.status_code == 200
        request_id = res.json()["approval_request_id"]

        res = await client.get("/api/v1/template-approval/requests", headers=admin_headers)
        assert res.status_code == 200
        listed = res.json()["requests"]
        assert [r["id"] for r in listed] == [request_id]
        assert listed[0]["template_name"] == "Finance onboarding"
        assert listed[0]["category_display_name"] == "Compliance & Training"

        res = await client.get(f"/api/v1/template-approval/requests/{request_id}", headers=admin_headers)
        assert res.status_code == 200
        details = res.json()
        assert details["requester_name"] == "Hugo Tester"
        assert [i["title"] for i in details["template_items"]] == ["Sign confidentiality agreement"]

        res = await client.post(f"/api/v1/template-approval/requests/{request_id}/approve", headers=admin_headers)
        assert res.status_code == 200
        assert res.json()["status"] == "approved"

        res = await client.get(f"/api/v1/templates/{created['id']}", headers=hr_headers)
        assert res.json()["status"] == "approved"
        assert res.json()["approved_by"] == admin_user.id

        res = await client.get(f"/api/v1/template-approval/templates/{created['id']}/history", headers=hr_headers)
        assert [h["status"] for h in res.json()["history"]] == ["approved"]

    async def test_duplicate_submit_is_rejected(self, client: AsyncClient, hr_user, admin_user, auth_headers):
        headers = await auth_headers(hr_user)
        created = (await client.post("/api/v1/templates", json={
            "name": "Twice", "category": "custom",
        }, headers=headers)).json()["template"]
        url = f"/api/v1/template-approval/templates/{created['id']}/submit"
        assert (await client.post(url, headers=headers)).status_code == 200
        assert (await client.post(url, headers=headers)).status_code == 404

    async def test_no_approver_is_400(self, client: AsyncClient, hr_user, auth_headers):
        headers = await auth_headers(hr_user)
        created = (await client.post("/api/v1/templates", json={
            "name": "Lonely", "category": "custom",
        }, headers=headers)).json()["template"]
        res = await client.post(f"/api/v1/template-approval/templates/{created['id']}/submit", headers=headers)
        assert res.status_code == 400
        assert res.json()["kind"] == "no_approver_available"

    async def test_employee_cannot_list_or_approve(self, client: AsyncClient, employee_user, auth_headers):
        headers = await auth_headers(employee_user)
        assert (await client.get("/api/v1/template-approval/requests", headers=headers)).status_code == 403
        res = await client.post("/api/v1/template-approval/requests/anything/approve", headers=headers)
        assert res.status_code == 403
