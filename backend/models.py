# models.py — Database models for the HR Onboarding API
# - UUID string primary keys everywhere
# - 3-tier role system (admin, hr_manager, employee)
# - Session store keyed by SHA-256 token hash (raw tokens are never stored)
# - Checklist templates with items, version history and approval requests
# - Shareable generated checklists

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, Integer,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


def as_utc(value):
    """Normalise a stored timestamp to an aware UTC datetime.

    SQLite hands back naive datetimes even for timezone-aware columns.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, PyEnum):
    ADMIN = "admin"
    HR_MANAGER = "hr_manager"
    EMPLOYEE = "employee"


class TemplateStatus(str, PyEnum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    ARCHIVED = "archived"


class ApprovalStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# ============================================================
# USERS
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    email = Column(String, unique=True, nullable=False, index=True)  # always lower-case
    password_hash = Column(String, nullable=False)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    role = Column(SQLEnum(UserRole), default=UserRole.EMPLOYEE, nullable=False, index=True)
    department = Column(String, nullable=True, index=True)
    email_verified = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    login_attempts = Column(Integer, default=0, nullable=False)
    locked_until = Column(DateTime(timezone=True), nullable=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    password_reset_token = Column(String, nullable=True)
    password_reset_expires = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_user_role_active", "role", "is_active"),
    )


# ============================================================
# SESSIONS
# ============================================================

class UserSession(Base):
    __tablename__ = "user_sessions"

    id = Column(String, primary_key=True, default=new_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    token_hash = Column(String(64), nullable=False, index=True)  # sha256 hex
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_session_user_active", "user_id", "is_active"),
    )


# ============================================================
# TEMPLATES
# ============================================================

class TemplateCategory(Base):
    __tablename__ = "template_categories"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, unique=True, nullable=False)
    display_name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    icon = Column(String, nullable=True)
    color = Column(String(7), nullable=True)
    sort_order = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Template(Base):
    __tablename__ = "checklist_templates"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String, nullable=False, index=True)
    version = Column(Integer, default=1, nullable=False)
    status = Column(SQLEnum(TemplateStatus), default=TemplateStatus.DRAFT, nullable=False, index=True)
    created_by = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    approved_by = Column(String, ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    template_data = Column(JSON, nullable=False, default=dict)
    tags = Column(JSON, nullable=False, default=list)
    estimated_duration_minutes = Column(Integer, default=0, nullable=False)
    target_roles = Column(JSON, nullable=False, default=list)
    target_departments = Column(JSON, nullable=False, default=list)
    compliance_frameworks = Column(JSON, nullable=False, default=list)
    is_default = Column(Boolean, default=False, nullable=False)
    is_public = Column(Boolean, default=True, nullable=False)
    usage_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_template_category_status", "category", "status"),
    )


class TemplateItem(Base):
    __tablename__ = "template_items"

    id = Column(String, primary_key=True, default=new_uuid)
    template_id = Column(String, ForeignKey("checklist_templates.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String, nullable=True)
    is_required = Column(Boolean, default=True, nullable=False)
    estimated_duration_minutes = Column(Integer, default=30, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)
    dependencies = Column(JSON, nullable=False, default=list)
    assignee_role = Column(String, default=UserRole.EMPLOYEE.value, nullable=False)
    due_days_from_start = Column(Integer, default=1, nullable=False)
    instructions = Column(Text, nullable=True)
    success_criteria = Column(Text, nullable=True)
    attachments_required = Column(Boolean, default=False, nullable=False)
    approval_required = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_item_template_order", "template_id", "sort_order"),
    )


class TemplateVersion(Base):
    __tablename__ = "template_version_history"

    id = Column(String, primary_key=True, default=new_uuid)
    template_id = Column(String, ForeignKey("checklist_templates.id", ondelete="CASCADE"), nullable=False, index=True)
    version_number = Column(Integer, nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    template_data = Column(JSON, nullable=False, default=dict)
    changes_summary = Column(Text, nullable=True)
    created_by = Column(String, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("template_id", "version_number", name="uq_template_version"),
    )


# ============================================================
# APPROVAL WORKFLOW
# ============================================================

class ApprovalRequest(Base):
    __tablename__ = "template_approval_requests"

    id = Column(String, primary_key=True, default=new_uuid)
    template_id = Column(String, ForeignKey("checklist_templates.id", ondelete="CASCADE"), nullable=False, index=True)
    requested_by = Column(String, ForeignKey("users.id"), nullable=False)
    assigned_to = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(SQLEnum(ApprovalStatus), default=ApprovalStatus.PENDING, nullable=False, index=True)
    comments = Column(Text, nullable=True)
    changes_requested = Column(Text, nullable=True)
    responded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    __table_args__ = (
        Index("idx_approval_template_status", "template_id", "status"),
        Index("idx_approval_assignee_status", "assigned_to", "status"),
    )


# ============================================================
# SHARED CHECKLISTS
# ============================================================

class SharedChecklist(Base):
    __tablename__ = "shared_checklists"

    id = Column(String, primary_key=True, default=new_uuid)
    slug = Column(String(32), unique=True, nullable=False, index=True)
    checklist = Column(JSON, nullable=False, default=list)
    role = Column(String, nullable=False)
    department = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
