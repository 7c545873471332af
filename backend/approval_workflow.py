# approval_workflow.py — Template approval state machine
# draft --submit--> pending_approval --approve--> approved
#                                    --reject---> draft
# Each transition writes the approval request and the template together in
# one commit. At most one pending request per template (best effort: two
# concurrent submits can both pass the pending check).
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from errors import Conflict, Forbidden, NoApproverAvailable, NotFound, ValidationFailed
from models import (
    ApprovalRequest, ApprovalStatus, Template, TemplateCategory, TemplateStatus,
    User, UserRole, as_utc, new_uuid, utcnow,
)
from permissions import ResourceAccess, can_access_resource
from telemetry import onboarding_span
from template_service import TemplateService, item_to_dict, template_to_dict

logger = logging.getLogger("hr-onboarding.approvals")

APPROVER_ROLES = (UserRole.ADMIN, UserRole.HR_MANAGER)
DEFAULT_SUBMIT_COMMENT = "Template submitted for approval"
DEFAULT_APPROVE_COMMENT = "Template approved"
DEFAULT_REJECT_COMMENT = "Template rejected"

Requester = aliased(User, name="requester")
Approver = aliased(User, name="approver")


def _iso(value) -> Optional[str]:
    return as_utc(value).isoformat() if value else None


def _full_name(user: Optional[User]) -> Optional[str]:
    if user is None:
        return None
    return f"{user.first_name} {user.last_name}"


def request_to_dict(req: ApprovalRequest) -> Dict[str, Any]:
    return {
        "id": req.id,
        "template_id": req.template_id,
        "requested_by": req.requested_by,
        "assigned_to": req.assigned_to,
        "status": req.status.value if isinstance(req.status, ApprovalStatus) else req.status,
        "comments": req.comments,
        "changes_requested": req.changes_requested,
        "responded_at": _iso(req.responded_at),
        "created_at": _iso(req.created_at),
    }


class ApprovalWorkflow:
    """Submit / approve / reject over an injected database session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    async def _pick_approver(self, requester_id: str) -> Optional[User]:
        result = await self.db.execute(
            select(User)
            .where(
                User.role.in_(APPROVER_ROLES),
                User.is_active == True,  # noqa: E712
                User.id != requester_id,
            )
            .order_by(
                case((User.role == UserRole.ADMIN, 0), else_=1),
                User.created_at.asc(),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _get_pending_for(self, request_id: str, approver_id: str) -> ApprovalRequest:
        result = await self.db.execute(
            select(ApprovalRequest).where(
                ApprovalRequest.id == request_id,
                ApprovalRequest.assigned_to == approver_id,
                ApprovalRequest.status == ApprovalStatus.PENDING,
            )
        )
        request = result.scalar_one_or_none()
        if not request:
            raise NotFound("Approval request not found or not assigned to you")
        return request

    # --- Transitions ---

    async def submit_for_approval(
        self, template_id: str, requester: Any, comments: Optional[str] = None,
    ) -> Dict[str, Any]:
        result = await self.db.execute(
            select(Template).where(Template.id == template_id, Template.status == TemplateStatus.DRAFT)
        )
        template = result.scalar_one_or_none()
        if not template:
            raise NotFound("Template not found or not in draft status")

        if not (
            can_access_resource(requester, "template", template, ResourceAccess.OWNER)
            or can_access_resource(requester, "template", template, ResourceAccess.HR_PLUS)
        ):
            raise Forbidden("Insufficient permissions to submit this template")

        pending = await self.db.execute(
            select(ApprovalRequest.id).where(
                ApprovalRequest.template_id == template_id,
                ApprovalRequest.status == ApprovalStatus.PENDING,
            )
        )
        if pending.first():
            raise Conflict("Template already has a pending approval request")

        approver = await self._pick_approver(requester.id)
        if approver is None:
            raise NoApproverAvailable("No available approvers found")

        approval = ApprovalRequest(
            id=new_uuid(),
            template_id=template_id,
            requested_by=requester.id,
            assigned_to=approver.id,
            status=ApprovalStatus.PENDING,
            comments=comments or DEFAULT_SUBMIT_COMMENT,
        )
        self.db.add(approval)
        template.status = TemplateStatus.PENDING_APPROVAL
        with onboarding_span("approval.submit", template_id=template_id, assigned_to=approver.id):
            await self._commit()

        logger.info(f"Template {template_id} submitted by {requester.id}; assigned to {approver.id}")
        return {
            "approval_request_id": approval.id,
            "template_id": template_id,
            "assigned_to": approver.id,
            "status": TemplateStatus.PENDING_APPROVAL.value,
        }

    async def approve(self, request_id: str, approver_id: str, comments: Optional[str] = None) -> Dict[str, Any]:
        approval = await self._get_pending_for(request_id, approver_id)
        template = await TemplateService(self.db).get_template_row(approval.template_id)

        now = utcnow()
        approval.status = ApprovalStatus.APPROVED
        approval.comments = comments or DEFAULT_APPROVE_COMMENT
        approval.responded_at = now
        template.status = TemplateStatus.APPROVED
        template.approved_by = approver_id
        template.approved_at = now
        with onboarding_span("approval.approve", request_id=request_id, template_id=template.id):
            await self._commit()

        logger.info(f"Approval request {request_id} approved by {approver_id}")
        return {
            "approval_request_id": request_id,
            "template_id": template.id,
            "status": TemplateStatus.APPROVED.value,
        }

    async def reject(
        self,
        request_id: str,
        approver_id: str,
        comments: Optional[str] = None,
        changes_requested: Optional[str] = None,
    ) -> Dict[str, Any]:
        approval = await self._get_pending_for(request_id, approver_id)
        template = await TemplateService(self.db).get_template_row(approval.template_id)

        approval.status = ApprovalStatus.REJECTED
        approval.comments = comments or DEFAULT_REJECT_COMMENT
        approval.changes_requested = changes_requested
        approval.responded_at = utcnow()
        template.status = TemplateStatus.DRAFT
        with onboarding_span("approval.reject", request_id=request_id, template_id=template.id):
            await self._commit()

        logger.info(f"Approval request {request_id} rejected by {approver_id}")
        return {
            "approval_request_id": request_id,
            "template_id": template.id,
            "status": TemplateStatus.DRAFT.value,
        }

    # --- Reads ---

    async def get_approval_requests(
        self, assignee_id: str, status: str = ApprovalStatus.PENDING.value, page: int = 1, limit: int = 10,
    ) -> Dict[str, Any]:
        try:
            status_filter = ApprovalStatus(status)
        except ValueError:
            raise ValidationFailed(f"Invalid status: {status}")

        filters = (
            ApprovalRequest.assigned_to == assignee_id,
            ApprovalRequest.status == status_filter,
        )
        total = (
            await self.db.execute(select(func.count(ApprovalRequest.id)).where(*filters))
        ).scalar() or 0

        result = await self.db.execute(
            select(ApprovalRequest, Template, Requester, TemplateCategory)
            .join(Template, Template.id == ApprovalRequest.template_id)
            .join(Requester, Requester.id == ApprovalRequest.requested_by)
            .outerjoin(TemplateCategory, TemplateCategory.name == Template.category)
            .where(*filters)
            .order_by(ApprovalRequest.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )

        requests = []
        for req, template, requester, category in result.all():
            data = request_to_dict(req)
            data.update({
                "template_name": template.name,
                "template_description": template.description,
                "template_category": template.category,
                "template_version": template.version,
                "requester_name": _full_name(requester),
                "requester_email": requester.email,
                "category_display_name": category.display_name if category else None,
                "category_color": category.color if category else None,
            })
            requests.append(data)

        return {
            "requests": requests,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    async def get_approval_request_details(self, request_id: str, viewer: Any) -> Dict[str, Any]:
        result = await self.db.execute(
            select(ApprovalRequest, Template, Requester, Approver, TemplateCategory)
            .join(Template, Template.id == ApprovalRequest.template_id)
            .join(Requester, Requester.id == ApprovalRequest.requested_by)
            .join(Approver, Approver.id == ApprovalRequest.assigned_to)
            .outerjoin(TemplateCategory, TemplateCategory.name == Template.category)
            .where(ApprovalRequest.id == request_id)
        )
        row = result.first()
        if not row:
            raise NotFound("Approval request not found")

        req, template, requester, approver, category = row
        visible = viewer.id in (req.requested_by, req.assigned_to) or can_access_resource(
            viewer, "approval_request", req, ResourceAccess.HR_PLUS
        )
        if not visible:
            raise NotFound("Approval request not found")

        items = await TemplateService(self.db).get_items(template.id)
        data = request_to_dict(req)
        data.update({
            "template": template_to_dict(template),
            "template_items": [item_to_dict(i) for i in items],
            "requester_name": _full_name(requester),
            "requester_email": requester.email,
            "approver_name": _full_name(approver),
            "approver_email": approver.email,
            "category_display_name": category.display_name if category else None,
            "category_icon": category.icon if category else None,
            "category_color": category.color if category else None,
        })
        return data

    async def get_template_approval_history(self, template_id: str) -> List[Dict[str, Any]]:
        result = await self.db.execute(
            select(ApprovalRequest, Requester, Approver)
            .join(Requester, Requester.id == ApprovalRequest.requested_by)
            .join(Approver, Approver.id == ApprovalRequest.assigned_to)
            .where(ApprovalRequest.template_id == template_id)
            .order_by(ApprovalRequest.created_at.desc())
        )
        history = []
        for req, requester, approver in result.all():
            data = request_to_dict(req)
            data["requester_name"] = _full_name(requester)
            data["approver_name"] = _full_name(approver)
            history.append(data)
        return history
