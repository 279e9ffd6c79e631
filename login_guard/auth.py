"""Login endpoint gated by the attempt limiter."""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field, field_validator

from .config import RateLimitPolicies, Settings
from .credentials import (
    CredentialServiceError,
    CredentialVerifier,
    InvalidCredentialsError,
)
from .rate_limit import RateLimitConfig, RateLimiter

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)

EMAIL_REGEX = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        email = value.strip()
        if not EMAIL_REGEX.match(email):
            raise ValueError("Enter a valid email address.")
        return email.lower()


class LoginResponse(BaseModel):
    user_id: str
    email: str
    access_token: str
    refresh_token: str


class LoginStatus(BaseModel):
    allowed: bool
    remaining_attempts: int
    retry_after_seconds: int


def get_settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Configuration unavailable")
    return settings


def get_policies(request: Request) -> RateLimitPolicies:
    policies = getattr(request.app.state, "policies", None)
    if policies is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Configuration unavailable")
    return policies


def get_rate_limiter(request: Request) -> RateLimiter:
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Rate limiter unavailable")
    return limiter


def get_credential_verifier(request: Request) -> CredentialVerifier:
    verifier = getattr(request.app.state, "credential_verifier", None)
    if verifier is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Authentication unavailable")
    return verifier


def client_identity(request: Request, settings: Settings) -> str:
    """Best-effort client address used to bucket attempts."""

    if settings.trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else "unknown"


def wait_message(wait_ms: float) -> str:
    minutes = max(1, math.ceil(wait_ms / 60000))
    unit = "minute" if minutes == 1 else "minutes"
    return f"Too many login attempts. Please try again in {minutes} {unit}."


def _too_many_attempts(wait_ms: float, policy: RateLimitConfig, detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=detail,
        headers={
            "Retry-After": str(math.ceil(wait_ms / 1000)),
            "X-RateLimit-Limit": str(policy.max_attempts),
            "X-RateLimit-Remaining": "0",
        },
    )


@router.post("/login", response_model=LoginResponse)
def login(
    payload: LoginRequest,
    request: Request,
    settings: Settings = Depends(get_settings),
    policies: RateLimitPolicies = Depends(get_policies),
    limiter: RateLimiter = Depends(get_rate_limiter),
    verifier: CredentialVerifier = Depends(get_credential_verifier),
) -> LoginResponse:
    key = f"login:{client_identity(request, settings)}"
    if not limiter.record_attempt(key, policies.login):
        wait_ms = limiter.get_time_until_unblocked(key)
        raise _too_many_attempts(wait_ms, policies.login, wait_message(wait_ms))

    try:
        session = verifier.verify(payload.email, payload.password)
    except InvalidCredentialsError as exc:
        logger.info("login rejected", extra={"key": key, "email": payload.email})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid login credentials"
        ) from exc
    except CredentialServiceError as exc:
        logger.error("credential check failed", extra={"key": key, "error": str(exc)})
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail="Authentication service unavailable"
        ) from exc

    limiter.reset(key)
    return LoginResponse(
        user_id=session.user_id,
        email=session.email,
        access_token=session.access_token,
        refresh_token=session.refresh_token,
    )


@router.get("/login/status", response_model=LoginStatus)
def login_status(
    request: Request,
    settings: Settings = Depends(get_settings),
    policies: RateLimitPolicies = Depends(get_policies),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> Dict[str, Any]:
    client = client_identity(request, settings)
    api_key = f"api:{client}"
    if not limiter.record_attempt(api_key, policies.api):
        raise _too_many_attempts(
            limiter.get_time_until_unblocked(api_key), policies.api, "Rate limit exceeded"
        )

    key = f"login:{client}"
    wait_ms = limiter.get_time_until_unblocked(key)
    return {
        "allowed": limiter.check_admission(key, policies.login),
        "remaining_attempts": limiter.remaining_attempts(key, policies.login),
        "retry_after_seconds": math.ceil(wait_ms / 1000),
    }
