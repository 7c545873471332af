# template_service.py — Checklist template store
# - CRUD over checklist_templates + template_items
# - Snapshot-then-increment version history on every content update
# - Category catalogue with seeded defaults
# - Clone into a fresh draft
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from errors import Conflict, Forbidden, NotFound, ValidationFailed
from models import (
    ApprovalRequest, ApprovalStatus, Template, TemplateCategory, TemplateItem,
    TemplateStatus, TemplateVersion, UserRole, as_utc, new_uuid,
)
from permissions import ResourceAccess, can_access_resource

logger = logging.getLogger("hr-onboarding.templates")

DEFAULT_CATEGORIES = [
    # name, display_name, description, icon, color
    ("onboarding", "Employee Onboarding", "Templates for new employee onboarding processes", "user-plus", "#10B981"),
    ("offboarding", "Employee Offboarding", "Templates for employee departure processes", "user-minus", "#EF4444"),
    ("compliance", "Compliance & Training", "Regulatory compliance and mandatory training templates", "shield-check", "#F59E0B"),
    ("training", "Skills Training", "Professional development and skills training templates", "academic-cap", "#3B82F6"),
    ("equipment", "Equipment & Access", "IT equipment setup and access provisioning templates", "desktop-computer", "#8B5CF6"),
    ("custom", "Custom Workflows", "Organization-specific custom workflow templates", "cog", "#6B7280"),
]

SORTABLE_FIELDS = {"name", "created_at", "updated_at", "usage_count", "version"}
NULLABLE_FIELDS = {"description"}


# --- Schemas ---

class TemplateItemIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = None
    is_required: bool = True
    estimated_duration_minutes: int = Field(default=30, ge=0)
    sort_order: Optional[int] = None
    dependencies: List[str] = []
    assignee_role: UserRole = UserRole.EMPLOYEE
    due_days_from_start: int = Field(default=1, ge=0)
    instructions: Optional[str] = None
    success_criteria: Optional[str] = None
    attachments_required: bool = False
    approval_required: bool = False


class TemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    category: str
    template_data: Dict[str, Any] = {}
    tags: List[str] = []
    estimated_duration_minutes: int = Field(default=0, ge=0)
    target_roles: List[str] = []
    target_departments: List[str] = []
    compliance_frameworks: List[str] = []
    items: List[TemplateItemIn] = []


class TemplateUpdate(BaseModel):
    """Partial update; only fields the caller sent are applied."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = None
    template_data: Optional[Dict[str, Any]] = None
    tags: Optional[List[str]] = None
    estimated_duration_minutes: Optional[int] = Field(default=None, ge=0)
    target_roles: Optional[List[str]] = None
    target_departments: Optional[List[str]] = None
    compliance_frameworks: Optional[List[str]] = None
    items: Optional[List[TemplateItemIn]] = None
    changes_summary: Optional[str] = None


# --- Serialisation ---

def _iso(value) -> Optional[str]:
    return as_utc(value).isoformat() if value else None


def item_to_dict(item: TemplateItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "title": item.title,
        "description": item.description,
        "category": item.category,
        "is_required": item.is_required,
        "estimated_duration_minutes": item.estimated_duration_minutes,
        "sort_order": item.sort_order,
        "dependencies": item.dependencies or [],
        "assignee_role": item.assignee_role,
        "due_days_from_start": item.due_days_from_start,
        "instructions": item.instructions,
        "success_criteria": item.success_criteria,
        "attachments_required": item.attachments_required,
        "approval_required": item.approval_required,
    }


def template_to_dict(t: Template, items: Optional[List[TemplateItem]] = None) -> Dict[str, Any]:
    data = {
        "id": t.id,
        "name": t.name,
        "description": t.description,
        "category": t.category,
        "version": t.version,
        "status": t.status.value if isinstance(t.status, TemplateStatus) else t.status,
        "created_by": t.created_by,
        "approved_by": t.approved_by,
        "approved_at": _iso(t.approved_at),
        "template_data": t.template_data or {},
        "tags": t.tags or [],
        "estimated_duration_minutes": t.estimated_duration_minutes,
        "target_roles": t.target_roles or [],
        "target_departments": t.target_departments or [],
        "compliance_frameworks": t.compliance_frameworks or [],
        "is_default": t.is_default,
        "is_public": t.is_public,
        "usage_count": t.usage_count,
        "created_at": _iso(t.created_at),
        "updated_at": _iso(t.updated_at),
    }
    if items is not None:
        data["items"] = [item_to_dict(i) for i in items]
    return data


class TemplateService:
    """Template persistence over an injected database session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    async def _require_category(self, name: str) -> None:
        result = await self.db.execute(
            select(TemplateCategory.id).where(
                TemplateCategory.name == name, TemplateCategory.is_active == True  # noqa: E712
            )
        )
        if result.scalar_one_or_none() is None:
            raise ValidationFailed(f"Unknown template category: {name}")

    def _build_items(self, template_id: str, items: List[TemplateItemIn]) -> List[TemplateItem]:
        return [
            TemplateItem(
                id=new_uuid(),
                template_id=template_id,
                sort_order=item.sort_order if item.sort_order is not None else index + 1,
                **item.model_dump(exclude={"sort_order", "assignee_role"}),
                assignee_role=item.assignee_role.value,
            )
            for index, item in enumerate(items)
        ]

    async def get_template_row(self, template_id: str) -> Template:
        result = await self.db.execute(select(Template).where(Template.id == template_id))
        template = result.scalar_one_or_none()
        if not template:
            raise NotFound("Template not found")
        return template

    async def get_items(self, template_id: str) -> List[TemplateItem]:
        result = await self.db.execute(
            select(TemplateItem)
            .where(TemplateItem.template_id == template_id)
            .order_by(TemplateItem.sort_order.asc())
        )
        return list(result.scalars().all())

    # --- Categories ---

    async def ensure_default_categories(self) -> int:
        existing = set((await self.db.execute(select(TemplateCategory.name))).scalars().all())
        created = 0
        for order, (name, display_name, description, icon, color) in enumerate(DEFAULT_CATEGORIES, start=1):
            if name in existing:
                continue
            self.db.add(TemplateCategory(
                name=name, display_name=display_name, description=description,
                icon=icon, color=color, sort_order=order, is_active=True,
            ))
            created += 1
        if created:
            await self._commit()
        return created

    async def list_categories(self) -> List[Dict[str, Any]]:
        counts = (
            select(Template.category, func.count(Template.id).label("template_count"))
            .where(Template.status == TemplateStatus.APPROVED)
            .group_by(Template.category)
            .subquery()
        )
        result = await self.db.execute(
            select(TemplateCategory, func.coalesce(counts.c.template_count, 0))
            .outerjoin(counts, counts.c.category == TemplateCategory.name)
            .where(TemplateCategory.is_active == True)  # noqa: E712
            .order_by(TemplateCategory.sort_order.asc())
        )
        return [
            {
                "id": c.id,
                "name": c.name,
                "display_name": c.display_name,
                "description": c.description,
                "icon": c.icon,
                "color": c.color,
                "sort_order": c.sort_order,
                "template_count": count,
            }
            for c, count in result.all()
        ]

    # --- Queries ---

    async def list_templates(
        self,
        status: Optional[str] = TemplateStatus.APPROVED.value,
        category: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "updated_at",
        sort_order: str = "desc",
    ) -> Dict[str, Any]:
        filters = []
        if status:
            try:
                filters.append(Template.status == TemplateStatus(status))
            except ValueError:
                raise ValidationFailed(f"Invalid status: {status}")
        if category:
            filters.append(Template.category == category)
        if search:
            pattern = f"%{search}%"
            filters.append(or_(Template.name.ilike(pattern), Template.description.ilike(pattern)))

        if sort_by not in SORTABLE_FIELDS:
            raise ValidationFailed(f"Cannot sort by {sort_by}")
        column = getattr(Template, sort_by)
        ordering = column.asc() if sort_order.lower() == "asc" else column.desc()

        total = (await self.db.execute(select(func.count(Template.id)).where(*filters))).scalar() or 0

        item_counts = (
            select(TemplateItem.template_id, func.count(TemplateItem.id).label("item_count"))
            .group_by(TemplateItem.template_id)
            .subquery()
        )
        result = await self.db.execute(
            select(Template, func.coalesce(item_counts.c.item_count, 0))
            .outerjoin(item_counts, item_counts.c.template_id == Template.id)
            .where(*filters)
            .order_by(ordering)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        templates = []
        for t, item_count in result.all():
            data = template_to_dict(t)
            data["item_count"] = item_count
            templates.append(data)

        return {
            "templates": templates,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    async def get_template(self, template_id: str) -> Dict[str, Any]:
        template = await self.get_template_row(template_id)
        return template_to_dict(template, await self.get_items(template_id))

    async def get_version_history(self, template_id: str) -> List[Dict[str, Any]]:
        await self.get_template_row(template_id)
        result = await self.db.execute(
            select(TemplateVersion)
            .where(TemplateVersion.template_id == template_id)
            .order_by(TemplateVersion.version_number.desc())
        )
        return [
            {
                "id": v.id,
                "version_number": v.version_number,
                "name": v.name,
                "description": v.description,
                "template_data": v.template_data or {},
                "changes_summary": v.changes_summary,
                "created_by": v.created_by,
                "created_at": _iso(v.created_at),
            }
            for v in result.scalars().all()
        ]

    # --- Mutations ---

    async def create_template(self, payload: TemplateCreate, creator_id: str) -> Dict[str, Any]:
        await self._require_category(payload.category)

        template = Template(
            id=new_uuid(),
            created_by=creator_id,
            status=TemplateStatus.DRAFT,
            version=1,
            **payload.model_dump(exclude={"items"}),
        )
        items = self._build_items(template.id, payload.items)
        self.db.add(template)
        self.db.add_all(items)
        await self._commit()
        await self.db.refresh(template)
        logger.info(f"Template {template.id} created by {creator_id} ({len(items)} items)")
        return template_to_dict(template, items)

    def _check_owner_or_hr(self, template: Template, actor: Any, action: str) -> None:
        if not (
            can_access_resource(actor, "template", template, ResourceAccess.OWNER)
            or can_access_resource(actor, "template", template, ResourceAccess.HR_PLUS)
        ):
            raise Forbidden(f"Insufficient permissions to {action} this template")

    async def update_template(self, template_id: str, patch: TemplateUpdate, editor: Any) -> Dict[str, Any]:
        template = await self.get_template_row(template_id)
        self._check_owner_or_hr(template, editor, "update")
        if template.status != TemplateStatus.DRAFT:
            raise Conflict(f"Template can only be edited while in draft (current status: {template.status.value})")

        changes = patch.model_dump(exclude_unset=True, exclude={"items", "changes_summary"})
        # Explicit nulls only clear nullable columns
        changes = {k: v for k, v in changes.items() if v is not None or k in NULLABLE_FIELDS}
        if "category" in changes:
            await self._require_category(changes["category"])

        self.db.add(TemplateVersion(
            id=new_uuid(),
            template_id=template.id,
            version_number=template.version,
            name=template.name,
            description=template.description,
            template_data=template.template_data or {},
            changes_summary=patch.changes_summary,
            created_by=editor.id,
        ))

        for field, value in changes.items():
            setattr(template, field, value)
        template.version = template.version + 1

        if patch.items is not None:
            await self.db.execute(delete(TemplateItem).where(TemplateItem.template_id == template.id))
            self.db.add_all(self._build_items(template.id, patch.items))

        await self._commit()
        await self.db.refresh(template)
        logger.info(f"Template {template.id} updated to version {template.version} by {editor.id}")
        return template_to_dict(template, await self.get_items(template.id))

    async def delete_template(self, template_id: str, actor: Any) -> None:
        template = await self.get_template_row(template_id)
        self._check_owner_or_hr(template, actor, "delete")
        if template.usage_count:
            raise Conflict("Cannot delete template that is currently in use")

        pending = await self.db.execute(
            select(ApprovalRequest.id).where(
                ApprovalRequest.template_id == template_id,
                ApprovalRequest.status == ApprovalStatus.PENDING,
            )
        )
        if pending.first():
            raise Conflict("Cannot delete template with a pending approval request")

        for model in (TemplateItem, TemplateVersion, ApprovalRequest):
            await self.db.execute(delete(model).where(model.template_id == template_id))
        await self.db.execute(delete(Template).where(Template.id == template_id))
        await self._commit()
        logger.info(f"Template {template_id} deleted by {actor.id}")

    async def clone_template(self, template_id: str, creator_id: str, name: Optional[str] = None) -> Dict[str, Any]:
        source = await self.get_template_row(template_id)
        source_items = await self.get_items(template_id)

        clone = Template(
            id=new_uuid(),
            name=name or f"{source.name} (Copy)",
            description=source.description,
            category=source.category,
            template_data=dict(source.template_data or {}),
            tags=list(source.tags or []),
            estimated_duration_minutes=source.estimated_duration_minutes,
            target_roles=list(source.target_roles or []),
            target_departments=list(source.target_departments or []),
            compliance_frameworks=list(source.compliance_frameworks or []),
            created_by=creator_id,
            status=TemplateStatus.DRAFT,
            version=1,
        )
        items = []
        for source_item in source_items:
            fields = item_to_dict(source_item)
            fields.pop("id")
            items.append(TemplateItem(id=new_uuid(), template_id=clone.id, **fields))
        self.db.add(clone)
        self.db.add_all(items)
        await self._commit()
        await self.db.refresh(clone)
        logger.info(f"Template {source.id} cloned to {clone.id} by {creator_id}")
        return template_to_dict(clone, items)
