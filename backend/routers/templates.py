# routers/templates.py — Checklist template CRUD, categories, clone and versions
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser, require_permission
from database import get_db_session
from template_service import TemplateCreate, TemplateService, TemplateUpdate

router = APIRouter(prefix="/api/v1/templates", tags=["Templates"])


class CloneRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)


@router.get("")
async def list_templates(
    user: CurrentUser = Depends(require_permission("templates:view")),
    db: AsyncSession = Depends(get_db_session),
    status: Optional[str] = "approved",
    category: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    sort_by: str = "updated_at",
    sort_order: str = "desc",
):
    """List templates with filtering, search and pagination"""
    return await TemplateService(db).list_templates(
        status=status, category=category, search=search,
        page=page, limit=limit, sort_by=sort_by, sort_order=sort_order,
    )


@router.get("/categories")
async def list_categories(
    user: CurrentUser = Depends(require_permission("templates:view")),
    db: AsyncSession = Depends(get_db_session),
):
    """Active categories with their approved-template counts"""
    return {"categories": await TemplateService(db).list_categories()}


@router.get("/{template_id}")
async def get_template(
    template_id: str,
    user: CurrentUser = Depends(require_permission("templates:view")),
    db: AsyncSession = Depends(get_db_session),
):
    return await TemplateService(db).get_template(template_id)


@router.post("", status_code=201)
async def create_template(
    payload: TemplateCreate,
    user: CurrentUser = Depends(require_permission("templates:create")),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a draft template with its items"""
    template = await TemplateService(db).create_template(payload, user.id)
    return {"message": "Template created successfully", "template": template}


@router.put("/{template_id}")
async def update_template(
    template_id: str,
    patch: TemplateUpdate,
    user: CurrentUser = Depends(require_permission("templates:edit")),
    db: AsyncSession = Depends(get_db_session),
):
    """Edit a draft template; the previous state is kept in version history"""
    template = await TemplateService(db).update_template(template_id, patch, user)
    return {"message": "Template updated successfully", "template": template}


@router.delete("/{template_id}")
async def delete_template(
    template_id: str,
    user: CurrentUser = Depends(require_permission("templates:delete")),
    db: AsyncSession = Depends(get_db_session),
):
    await TemplateService(db).delete_template(template_id, user)
    return {"message": "Template deleted successfully"}


@router.post("/{template_id}/clone", status_code=201)
async def clone_template(
    template_id: str,
    body: Optional[CloneRequest] = None,
    user: CurrentUser = Depends(require_permission("templates:create")),
    db: AsyncSession = Depends(get_db_session),
):
    """Copy a template and its items into a new draft"""
    template = await TemplateService(db).clone_template(template_id, user.id, body.name if body else None)
    return {"message": "Template cloned successfully", "template": template}


@router.get("/{template_id}/versions")
async def list_versions(
    template_id: str,
    user: CurrentUser = Depends(require_permission("templates:view")),
    db: AsyncSession = Depends(get_db_session),
):
    """Previous versions of a template, newest first"""
    return {"versions": await TemplateService(db).get_version_history(template_id)}
