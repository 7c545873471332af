# routers/auth.py — Authentication endpoints backed by server-side sessions
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    AuthService, LoginResult, UserRegister, UserLogin, TokenResponse,
    get_current_user, get_optional_user, require_permission,
    check_role_assignment, CurrentUser,
)
from database import get_db_session
from errors import Forbidden
from models import UserRole, utcnow

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


def _build_token_response(result: LoginResult) -> TokenResponse:
    return TokenResponse(
        access_token=result.token,
        expires_at=result.expires_at.isoformat(),
        expires_in=int((result.expires_at - utcnow()).total_seconds()),
        session_id=result.session_id,
        user=result.user,
    )


def _client_info(request: Request) -> tuple:
    ip = request.client.host if request.client else None
    return ip, request.headers.get("user-agent")


@router.post("/register", status_code=201)
async def register(
    user_data: UserRegister,
    caller: Optional[CurrentUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Register a new user account. Elevated roles need an authorised caller."""
    if user_data.role != UserRole.EMPLOYEE:
        if caller is None:
            raise Forbidden("Only authorised staff can register elevated roles")
        check_role_assignment(caller, user_data.role.value)

    user = await AuthService(db).register(
        email=user_data.email,
        password=user_data.password,
        first_name=user_data.first_name,
        last_name=user_data.last_name,
        role=user_data.role,
        department=user_data.department,
    )
    return {"message": "User registered successfully", "user": user}


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
):
    """Authenticate and open a session"""
    ip, user_agent = _client_info(request)
    result = await AuthService(db).login(credentials.email, credentials.password, ip, user_agent)
    return _build_token_response(result)


@router.post("/logout")
async def logout(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Close the current session"""
    await AuthService(db).logout(user.session_id)
    return {"status": "logged_out", "message": "Session terminated"}


@router.get("/me")
async def get_current_user_info(user: CurrentUser = Depends(get_current_user)):
    """Get current authenticated user and session information"""
    return {
        "user": user.model_dump(exclude={"permissions", "session_id"}),
        "permissions": user.permissions,
        "session": {"id": user.session_id},
    }


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Swap the presented token for a fresh one on the same session"""
    token = request.headers["authorization"].split(" ", 1)[1]
    result = await AuthService(db).refresh_token(token)
    return _build_token_response(result)


@router.get("/sessions")
async def list_sessions(
    user: CurrentUser = Depends(require_permission("sessions:view:own")),
    db: AsyncSession = Depends(get_db_session),
):
    """List the caller's active sessions"""
    sessions = await AuthService(db).list_sessions(user.id, user.session_id)
    return {"sessions": sessions}


@router.delete("/sessions/{session_id}")
async def terminate_session(
    session_id: str,
    user: CurrentUser = Depends(require_permission("sessions:terminate:own")),
    db: AsyncSession = Depends(get_db_session),
):
    """Terminate one of the caller's sessions"""
    await AuthService(db).terminate_session(user.id, session_id)
    return {"message": "Session terminated successfully"}
