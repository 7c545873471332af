# routers/approvals.py — Template approval workflow endpoints
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from approval_workflow import ApprovalWorkflow
from auth import CurrentUser, require_permission, require_resource_access
from database import get_db_session
from permissions import ResourceAccess

router = APIRouter(prefix="/api/v1/template-approval", tags=["Template Approval"])

require_hr_plus = require_resource_access("approval_request", ResourceAccess.HR_PLUS)


class SubmitRequest(BaseModel):
    comments: Optional[str] = None


class ApproveRequest(BaseModel):
    comments: Optional[str] = None


class RejectRequest(BaseModel):
    comments: Optional[str] = None
    changes_requested: Optional[str] = None


@router.get("/requests")
async def list_requests(
    user: CurrentUser = Depends(require_hr_plus),
    db: AsyncSession = Depends(get_db_session),
    status: str = "pending",
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
):
    """Approval requests assigned to the caller"""
    return await ApprovalWorkflow(db).get_approval_requests(user.id, status, page, limit)


@router.get("/requests/{request_id}")
async def get_request(
    request_id: str,
    user: CurrentUser = Depends(require_hr_plus),
    db: AsyncSession = Depends(get_db_session),
):
    return await ApprovalWorkflow(db).get_approval_request_details(request_id, user)


@router.post("/templates/{template_id}/submit")
async def submit_template(
    template_id: str,
    body: Optional[SubmitRequest] = None,
    user: CurrentUser = Depends(require_permission("templates:edit")),
    db: AsyncSession = Depends(get_db_session),
):
    """Submit a draft template for approval"""
    result = await ApprovalWorkflow(db).submit_for_approval(
        template_id, user, body.comments if body else None,
    )
    return {"message": "Template submitted for approval successfully", **result}


@router.post("/requests/{request_id}/approve")
async def approve_request(
    request_id: str,
    body: Optional[ApproveRequest] = None,
    user: CurrentUser = Depends(require_permission("templates:approve")),
    db: AsyncSession = Depends(get_db_session),
):
    result = await ApprovalWorkflow(db).approve(request_id, user.id, body.comments if body else None)
    return {"message": "Template approved successfully", **result}


@router.post("/requests/{request_id}/reject")
async def reject_request(
    request_id: str,
    body: Optional[RejectRequest] = None,
    user: CurrentUser = Depends(require_permission("templates:approve")),
    db: AsyncSession = Depends(get_db_session),
):
    body = body or RejectRequest()
    result = await ApprovalWorkflow(db).reject(request_id, user.id, body.comments, body.changes_requested)
    return {"message": "Template rejected and returned to draft", **result}


@router.get("/templates/{template_id}/history")
async def template_history(
    template_id: str,
    user: CurrentUser = Depends(require_permission("templates:view")),
    db: AsyncSession = Depends(get_db_session),
):
    """All approval requests for a template, newest first"""
    return {"history": await ApprovalWorkflow(db).get_template_approval_history(template_id)}
