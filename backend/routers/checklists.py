# routers/checklists.py — Generated onboarding checklists and share links
from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from checklist_generator import ChecklistGenerator
from database import get_db_session

router = APIRouter(prefix="/api/v1/checklists", tags=["Checklists"])


class GenerateRequest(BaseModel):
    role: str = Field(..., min_length=1, max_length=100)
    department: str = Field(..., min_length=1, max_length=100)


class ShareRequest(BaseModel):
    checklist: List[Dict[str, Any]]
    role: str = Field(..., min_length=1, max_length=100)
    department: str = Field(..., min_length=1, max_length=100)


@router.post("/generate")
async def generate_checklist(request: GenerateRequest):
    """Generate an onboarding checklist for a role and department"""
    return await ChecklistGenerator().generate(request.role, request.department)


@router.post("/share")
async def share_checklist(request: ShareRequest, db: AsyncSession = Depends(get_db_session)):
    """Save a checklist and return its share slug"""
    return await ChecklistGenerator(db).share(request.checklist, request.role, request.department)


@router.get("/c/{slug}")
async def get_shared_checklist(slug: str, db: AsyncSession = Depends(get_db_session)):
    return await ChecklistGenerator(db).get_shared(slug)
