# errors.py — Typed error taxonomy with HRO-DOMAIN-NUMBER codes
# Services raise these; main.py renders them as JSON with the mapped status.
from typing import Any, Dict, Optional

# ============================================================
# ERROR CODE CATALOGUE
# HRO-{DOMAIN}-{NUMBER}
# Domains: AUTH, USER, TPL, APPR, REQ
# ============================================================

ERROR_CATALOGUE = {
    # Authentication & Authorisation
    "HRO-AUTH-001": {"message": "Invalid credentials", "severity": "warning", "http_status": 401},
    "HRO-AUTH-002": {"message": "Authentication required", "severity": "info", "http_status": 401},
    "HRO-AUTH-003": {"message": "Insufficient permissions", "severity": "warning", "http_status": 403},
    "HRO-AUTH-004": {"message": "Account locked due to too many failed login attempts", "severity": "warning", "http_status": 423},

    # Resources
    "HRO-REQ-001": {"message": "Resource not found", "severity": "info", "http_status": 404},
    "HRO-REQ-002": {"message": "Resource conflict", "severity": "warning", "http_status": 409},
    "HRO-REQ-003": {"message": "Validation failed", "severity": "warning", "http_status": 400},

    # Approval workflow
    "HRO-APPR-001": {"message": "No approver available", "severity": "error", "http_status": 400},
}


class OnboardingError(Exception):
    """Base class for every error the services raise on purpose."""

    kind = "internal"
    code = "HRO-REQ-003"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        entry = ERROR_CATALOGUE[self.code]
        self.message = message or entry["message"]
        self.http_status: int = entry["http_status"]
        self.severity: str = entry["severity"]
        self.extra: Dict[str, Any] = extra
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.message, "code": self.code, "kind": self.kind}
        body.update(self.extra)
        return body


class InvalidCredentials(OnboardingError):
    kind = "invalid_credentials"
    code = "HRO-AUTH-001"


class Unauthorized(OnboardingError):
    kind = "unauthorized"
    code = "HRO-AUTH-002"


class Forbidden(OnboardingError):
    kind = "forbidden"
    code = "HRO-AUTH-003"


class AccountLocked(OnboardingError):
    kind = "account_locked"
    code = "HRO-AUTH-004"

    def __init__(self, minutes_remaining: int, message: Optional[str] = None):
        self.minutes_remaining = minutes_remaining
        super().__init__(
            message or f"Account is locked. Try again in {minutes_remaining} minutes.",
            lock_time_remaining=minutes_remaining,
        )


class NotFound(OnboardingError):
    kind = "not_found"
    code = "HRO-REQ-001"


class Conflict(OnboardingError):
    kind = "conflict"
    code = "HRO-REQ-002"


class ValidationFailed(OnboardingError):
    kind = "validation_failed"
    code = "HRO-REQ-003"


class NoApproverAvailable(OnboardingError):
    kind = "no_approver_available"
    code = "HRO-APPR-001"
