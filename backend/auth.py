# auth.py — Session-backed authentication & access control for the HR Onboarding API
# Features:
# - Signed JWT (HS256) with JTI, issuer and audience
# - Server-side sessions keyed by SHA-256 token hash (logout really logs out)
# - Brute force protection: 5 failures lock the account for 15 minutes
# - Password policy enforcement (8+ chars, mixed case, digit, special)
# - FastAPI dependencies for capability, resource and user-level checks

import os
import math
import uuid
import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List

import bcrypt
from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr, field_validator
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from errors import (
    AccountLocked, Conflict, Forbidden, InvalidCredentials, NotFound,
    Unauthorized, ValidationFailed,
)
from models import User, UserSession, UserRole, utcnow, new_uuid, as_utc
from permissions import (
    ResourceAccess, can_access_resource, can_assign_role,
    get_role_permissions, is_role_higher_or_equal,
)

logger = logging.getLogger("hr-onboarding.auth")

# ============================================================
# CONFIGURATION
# ============================================================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY or SECRET_KEY == "change-this-to-a-secure-random-key-in-production":
    SECRET_KEY = secrets.token_urlsafe(64)
    logger.warning(
        "⚠️  JWT_SECRET_KEY not set or insecure. Generated ephemeral key. "
        "Set JWT_SECRET_KEY in production!"
    )

ALGORITHM = "HS256"
TOKEN_ISSUER = "hr-onboarding-api"
TOKEN_AUDIENCE = "hr-onboarding-client"
JWT_EXPIRY = os.getenv("JWT_EXPIRY", "7d")
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
MIN_PASSWORD_LENGTH = 8
PASSWORD_SPECIAL_CHARS = "@$!%*?&"
MAX_LOGIN_ATTEMPTS = int(os.getenv("MAX_LOGIN_ATTEMPTS", "5"))
LOGIN_LOCKOUT_MINUTES = int(os.getenv("LOGIN_LOCKOUT_MINUTES", "15"))

security = HTTPBearer(auto_error=False)

_EXPIRY_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


def parse_expiry(value: str) -> timedelta:
    """Parse "30s" / "15m" / "12h" / "7d". Anything else falls back to 7 days."""
    value = (value or "").strip().lower()
    if len(value) >= 2 and value[-1] in _EXPIRY_UNITS and value[:-1].isdigit():
        return timedelta(**{_EXPIRY_UNITS[value[-1]]: int(value[:-1])})
    return timedelta(days=7)


TOKEN_LIFETIME = parse_expiry(JWT_EXPIRY)


def validate_password_strength(v: str) -> str:
    if len(v) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not any(c.isupper() for c in v):
        raise ValueError("Password must contain at least one uppercase letter")
    if not any(c.islower() for c in v):
        raise ValueError("Password must contain at least one lowercase letter")
    if not any(c.isdigit() for c in v):
        raise ValueError("Password must contain at least one digit")
    if not any(c in PASSWORD_SPECIAL_CHARS for c in v):
        raise ValueError(f"Password must contain at least one special character ({PASSWORD_SPECIAL_CHARS})")
    return v


# ============================================================
# PYDANTIC SCHEMAS
# ============================================================

class UserRegister(BaseModel):
    email: EmailStr
    password: str
    first_name: str
    last_name: str
    role: UserRole = UserRole.EMPLOYEE
    department: Optional[str] = None

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return validate_password_strength(v)

    @field_validator("first_name", "last_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not 2 <= len(v) <= 50:
            raise ValueError("Name must be between 2 and 50 characters")
        return v


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str

    @field_validator("new_password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return validate_password_strength(v)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: str
    expires_in: int
    session_id: str
    user: Dict[str, Any]


class CurrentUser(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    role: str
    department: Optional[str] = None
    is_active: bool
    permissions: List[str] = []
    session_id: Optional[str] = None


@dataclass
class LoginResult:
    user: Dict[str, Any]
    token: str
    session_id: str
    expires_at: datetime


@dataclass
class AuthContext:
    user: Dict[str, Any]
    session: UserSession


def sanitize_user(user: User) -> Dict[str, Any]:
    """Public view of a user row: no hash, reset token or lockout state."""
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "role": user.role.value if isinstance(user.role, UserRole) else user.role,
        "department": user.department,
        "email_verified": bool(user.email_verified),
        "is_active": bool(user.is_active),
        "last_login_at": as_utc(user.last_login_at).isoformat() if user.last_login_at else None,
        "created_at": as_utc(user.created_at).isoformat() if user.created_at else None,
        "updated_at": as_utc(user.updated_at).isoformat() if user.updated_at else None,
    }


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    """Authentication over an injected database session.

    Every mutating operation commits once; on failure the session is rolled
    back and the error propagates.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # --- primitives ---

    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))

    @staticmethod
    def hash_token(token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    @staticmethod
    def create_token(user: Dict[str, Any]) -> tuple:
        """Mint a signed token for a sanitized user. Returns (token, expires_at)."""
        now = utcnow()
        expires_at = now + TOKEN_LIFETIME
        claims = {
            "sub": user["id"],
            "email": user["email"],
            "role": user["role"],
            "first_name": user["first_name"],
            "last_name": user["last_name"],
            "iat": now,
            "exp": expires_at,
            "iss": TOKEN_ISSUER,
            "aud": TOKEN_AUDIENCE,
            "jti": str(uuid.uuid4()),
        }
        return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM), expires_at

    @staticmethod
    def decode_token(token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(
                token, SECRET_KEY, algorithms=[ALGORITHM],
                audience=TOKEN_AUDIENCE, issuer=TOKEN_ISSUER,
            )
        except ExpiredSignatureError:
            raise Unauthorized("Token expired")
        except JWTError:
            raise Unauthorized("Invalid token")

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    async def _get_user(self, user_id: str) -> User:
        result = await self.db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if not user:
            raise NotFound("User not found")
        return user

    # --- registration & login ---

    async def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        role: UserRole = UserRole.EMPLOYEE,
        department: Optional[str] = None,
    ) -> Dict[str, Any]:
        email = email.strip().lower()
        existing = await self.db.execute(select(User.id).where(User.email == email))
        if existing.scalar_one_or_none():
            raise Conflict("User with this email already exists")

        try:
            role = UserRole(role)
        except ValueError:
            raise ValidationFailed(f"Invalid role: {role}")

        user = User(
            id=new_uuid(),
            email=email,
            password_hash=self.hash_password(password),
            first_name=first_name,
            last_name=last_name,
            role=role,
            department=department,
            email_verified=False,
            is_active=True,
            login_attempts=0,
            locked_until=None,
        )
        self.db.add(user)
        await self._commit()
        await self.db.refresh(user)
        logger.info(f"User registered: {user.id} ({role.value})")
        return sanitize_user(user)

    async def login(
        self,
        email: str,
        password: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> LoginResult:
        email = email.strip().lower()
        result = await self.db.execute(
            select(User).where(User.email == email, User.is_active == True)  # noqa: E712
        )
        user = result.scalar_one_or_none()
        if not user:
            raise InvalidCredentials()

        now = utcnow()
        locked_until = as_utc(user.locked_until)
        if locked_until and locked_until > now:
            raise AccountLocked(math.ceil((locked_until - now).total_seconds() / 60))
        if locked_until:
            # Lock has lapsed: start counting afresh
            user.login_attempts = 0
            user.locked_until = None

        if not self.verify_password(password, user.password_hash):
            await self._record_failed_attempt(user, now)

        user.login_attempts = 0
        user.locked_until = None
        user.last_login_at = now

        sanitized = sanitize_user(user)
        token, expires_at = self.create_token(sanitized)
        session = UserSession(
            id=new_uuid(),
            user_id=user.id,
            token_hash=self.hash_token(token),
            ip_address=ip_address,
            user_agent=user_agent,
            expires_at=expires_at,
            is_active=True,
        )
        self.db.add(session)
        await self._commit()
        logger.info(f"Login succeeded for user {user.id} (session {session.id[:8]})")
        return LoginResult(user=sanitized, token=token, session_id=session.id, expires_at=expires_at)

    async def _record_failed_attempt(self, user: User, now: datetime) -> None:
        """Bump the failure counter, lock on the threshold, and raise."""
        attempts = (user.login_attempts or 0) + 1
        user.login_attempts = attempts
        locked = attempts >= MAX_LOGIN_ATTEMPTS
        if locked:
            user.locked_until = now + timedelta(minutes=LOGIN_LOCKOUT_MINUTES)
        await self._commit()

        if locked:
            logger.warning(f"Account {user.id} locked after {attempts} failed login attempts")
            raise AccountLocked(LOGIN_LOCKOUT_MINUTES)
        raise InvalidCredentials()

    async def logout(self, session_id: str) -> None:
        await self.db.execute(
            update(UserSession).where(UserSession.id == session_id).values(is_active=False)
        )
        await self._commit()

    # --- token verification ---

    async def verify_token(self, token: str) -> AuthContext:
        payload = self.decode_token(token)

        stmt = (
            select(UserSession, User)
            .join(User, User.id == UserSession.user_id)
            .where(
                UserSession.token_hash == self.hash_token(token),
                UserSession.user_id == payload.get("sub"),
                UserSession.is_active == True,  # noqa: E712
            )
        )
        row = (await self.db.execute(stmt)).first()
        if not row:
            raise Unauthorized("Invalid or expired session")

        session, user = row
        if as_utc(session.expires_at) <= utcnow() or not user.is_active:
            raise Unauthorized("Invalid or expired session")
        return AuthContext(user=sanitize_user(user), session=session)

    async def refresh_token(self, old_token: str) -> LoginResult:
        ctx = await self.verify_token(old_token)
        token, expires_at = self.create_token(ctx.user)
        ctx.session.token_hash = self.hash_token(token)
        ctx.session.expires_at = expires_at
        await self._commit()
        return LoginResult(user=ctx.user, token=token, session_id=ctx.session.id, expires_at=expires_at)

    # --- password & session management ---

    async def change_password(
        self, user_id: str, current_password: str, new_password: str, current_session_id: Optional[str],
    ) -> None:
        user = await self._get_user(user_id)
        if not self.verify_password(current_password, user.password_hash):
            raise InvalidCredentials("Current password is incorrect")

        user.password_hash = self.hash_password(new_password)
        stmt = update(UserSession).where(
            UserSession.user_id == user_id,
            UserSession.is_active == True,  # noqa: E712
        )
        if current_session_id:
            stmt = stmt.where(UserSession.id != current_session_id)
        await self.db.execute(stmt.values(is_active=False))
        await self._commit()
        logger.info(f"Password changed for user {user_id}; other sessions revoked")

    async def list_sessions(self, user_id: str, current_session_id: Optional[str] = None) -> List[Dict[str, Any]]:
        result = await self.db.execute(
            select(UserSession)
            .where(UserSession.user_id == user_id, UserSession.is_active == True)  # noqa: E712
            .order_by(UserSession.created_at.desc())
        )
        now = utcnow()
        return [
            {
                "id": s.id,
                "ip_address": s.ip_address,
                "user_agent": s.user_agent,
                "created_at": as_utc(s.created_at).isoformat() if s.created_at else None,
                "expires_at": as_utc(s.expires_at).isoformat(),
                "is_current": s.id == current_session_id,
            }
            for s in result.scalars().all()
            if as_utc(s.expires_at) > now
        ]

    async def terminate_session(self, user_id: str, session_id: str) -> None:
        result = await self.db.execute(select(UserSession).where(UserSession.id == session_id))
        session = result.scalar_one_or_none()
        if not session:
            raise NotFound("Session not found")
        if session.user_id != user_id:
            raise Forbidden("Cannot terminate another user's session")
        await self.logout(session_id)

    async def deactivate_user(self, user_id: str) -> Dict[str, Any]:
        user = await self._get_user(user_id)
        user.is_active = False
        await self.db.execute(
            update(UserSession).where(UserSession.user_id == user_id).values(is_active=False)
        )
        await self._commit()
        await self.db.refresh(user)
        logger.info(f"User {user_id} deactivated; all sessions revoked")
        return sanitize_user(user)


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

def _to_current_user(ctx: AuthContext) -> CurrentUser:
    return CurrentUser(
        **{k: ctx.user[k] for k in ("id", "email", "first_name", "last_name", "role", "department", "is_active")},
        permissions=get_role_permissions(ctx.user["role"]),
        session_id=ctx.session.id,
    )


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> CurrentUser:
    if credentials is None:
        raise Unauthorized("Access token required")
    ctx = await AuthService(db).verify_token(credentials.credentials)
    user = _to_current_user(ctx)
    request.state.user = user
    return user


async def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> Optional[CurrentUser]:
    if credentials is None:
        return None
    return await get_current_user(request, credentials, db)


def require_permission(*capabilities: str, require_all: bool = False):
    """Dependency factory: caller needs any (default) or all of the capabilities"""
    async def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        missing = [c for c in capabilities if c not in user.permissions]
        denied = bool(missing) if require_all else len(missing) == len(capabilities)
        if denied:
            raise Forbidden(
                f"Missing required permission: {missing[0]}",
                required=list(capabilities),
                user_role=user.role,
            )
        return user
    return _check


def require_resource_access(resource_type: str, *modes: ResourceAccess, loader=None):
    """Dependency factory: caller must pass at least one access mode.

    ``loader(request, db)`` fetches the resource for owner/department checks.
    """
    async def _check(
        request: Request,
        user: CurrentUser = Depends(get_current_user),
        db: AsyncSession = Depends(get_db_session),
    ) -> CurrentUser:
        resource = await loader(request, db) if loader else None
        if not any(can_access_resource(user, resource_type, resource, m) for m in modes):
            raise Forbidden(f"Access denied to {resource_type}")
        return user
    return _check


def require_user_access(action: str):
    """Dependency factory for /users/{user_id} routes.

    Self-access is allowed for view and edit; everything else needs the
    matching users:* capability.
    """
    capability = {
        "view": "users:read:all",
        "edit": "users:update:all",
        "delete": "users:delete",
        "assign_role": "users:assign_roles",
    }.get(action)
    if capability is None:
        raise ValueError(f"Invalid user access action: {action}")

    async def _check(user_id: str, user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user_id == user.id and action in ("view", "edit"):
            return user
        if capability not in user.permissions:
            raise Forbidden(f"Access denied for {action} action on user", action=action, user_role=user.role)
        return user
    return _check


def check_role_assignment(assigner: CurrentUser, target_role: str) -> None:
    if not can_assign_role(assigner.role, target_role):
        raise Forbidden("Cannot assign this role", assigner_role=assigner.role, target_role=target_role)


def check_higher_or_equal(actor: CurrentUser, target_role: str) -> None:
    if not is_role_higher_or_equal(actor.role, target_role):
        raise Forbidden("Insufficient role level for this user")

