"""HTTP route definitions for the account authentication service."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable

import jwt
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from ..domain.contracts import GatewayError, RegisterAccountInput, TokenPair
from ..domain.results import ErrorCode, Result
from ..domain.roles import Role
from ..domain.service import UNEXPECTED_MESSAGE, AuthenticationService
from ..security.tokens import JwtTokenIssuer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")

PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]+$")
PASSWORD_RULES = (
    "Password must contain at least one uppercase letter, one lowercase letter, "
    "one number, and one special character."
)
USERNAME_PATTERN = r"^[a-zA-Z0-9_]+$"
ADMIN_ROLES = frozenset({Role.SUPER_ADMIN.value, Role.MANAGER.value})

_STATUS_BY_CODE = {
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.INVALID_CREDENTIAL: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.LOCKED_OUT: status.HTTP_423_LOCKED,
    ErrorCode.USERNAME_ALREADY_EXISTS: status.HTTP_409_CONFLICT,
    ErrorCode.EMAIL_ALREADY_EXISTS: status.HTTP_409_CONFLICT,
    ErrorCode.UNEXPECTED_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _check_password(value: str) -> str:
    if not 8 <= len(value) <= 100:
        raise ValueError("Password must be between 8 and 100 characters.")
    if not PASSWORD_PATTERN.match(value):
        raise ValueError(PASSWORD_RULES)
    return value


class LoginRequest(BaseModel):
    """Credentials submitted to sign in."""

    username: str = Field(..., min_length=1, max_length=50, pattern=USERNAME_PATTERN)
    password: str

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        return _check_password(value)


class RegisterRequest(BaseModel):
    """Payload accepted when an administrator registers a new account."""

    username: str = Field(..., min_length=1, max_length=50, pattern=USERNAME_PATTERN)
    full_name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    phone_number: str = Field(..., pattern=r"^[0-9]{11}$")
    role: Role
    identity_image_url: str = ""

    @field_validator("email")
    @classmethod
    def validate_email_length(cls, value: str) -> str:
        if len(value) > 100:
            raise ValueError("Email must not exceed 100 characters.")
        return value

    @field_validator("role")
    @classmethod
    def validate_role(cls, value: Role) -> Role:
        if value is Role.NONE:
            raise ValueError("Please select a valid role.")
        if value is Role.SUPER_ADMIN:
            raise ValueError("The SuperAdmin role cannot be registered.")
        return value


class RefreshRequest(BaseModel):
    """Refresh token exchange for a new access/refresh pair."""

    account_id: str
    refresh_token: str = Field(..., min_length=1)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str
    confirm_new_password: str

    @field_validator("new_password")
    @classmethod
    def validate_new_password(cls, value: str) -> str:
        return _check_password(value)

    @model_validator(mode="after")
    def check_confirmation(self) -> "ChangePasswordRequest":
        if self.new_password == self.current_password:
            raise ValueError("New password cannot be the same as the current password.")
        if self.confirm_new_password != self.new_password:
            raise ValueError("Confirm new password must match the new password.")
        return self


class ChangeRoleRequest(BaseModel):
    """Role change body; the value is checked by the account itself."""

    role: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"

    @classmethod
    def from_domain(cls, pair: TokenPair) -> "TokenResponse":
        return cls(access_token=pair.access_token, refresh_token=pair.refresh_token)


class Envelope(BaseModel):
    """Uniform response body mirroring a use case result."""

    success: bool
    code: str | None = None
    message: str = ""
    data: Any = None


def get_service(request: Request) -> AuthenticationService:
    """Resolve the `AuthenticationService` stored on the FastAPI application state."""
    service: AuthenticationService = request.app.state.auth_service
    return service


def get_token_issuer(request: Request) -> JwtTokenIssuer:
    issuer: JwtTokenIssuer = request.app.state.token_issuer
    return issuer


def get_current_claims(
    authorization: str | None = Header(default=None),
    service: AuthenticationService = Depends(get_service),
    issuer: JwtTokenIssuer = Depends(get_token_issuer),
) -> dict[str, Any]:
    """Return the verified claims of the bearer token on the request."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise _unauthorized("missing bearer token")
    try:
        claims = issuer.decode(token.strip())
    except jwt.PyJWTError as exc:
        raise _unauthorized("invalid token") from exc
    if service.sessions.is_ended(claims["jti"]):
        raise _unauthorized("session ended")
    return claims


def require_admin(claims: dict[str, Any] = Depends(get_current_claims)) -> dict[str, Any]:
    if claims.get("role") not in ADMIN_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="insufficient role")
    return claims


@router.post("/auth/login", response_model=Envelope)
def login(
    payload: LoginRequest, service: AuthenticationService = Depends(get_service)
) -> JSONResponse:
    """Sign in with username and password."""
    result = service.login(payload.username, payload.password)
    return _respond(result, TokenResponse.from_domain(result.value) if result.ok else None)


@router.post("/auth/refresh", response_model=Envelope)
def refresh(
    payload: RefreshRequest, service: AuthenticationService = Depends(get_service)
) -> JSONResponse:
    """Exchange the outstanding refresh token for a new pair."""
    result = service.refresh_token(payload.account_id, payload.refresh_token)
    return _respond(result, TokenResponse.from_domain(result.value) if result.ok else None)


@router.post("/auth/logout", response_model=Envelope)
def logout(
    claims: dict[str, Any] = Depends(get_current_claims),
    service: AuthenticationService = Depends(get_service),
) -> JSONResponse:
    """Revoke the caller's refresh token and end the current access-token session."""
    result = service.logout(
        claims["sub"],
        session_id=claims["jti"],
        session_expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
    )
    return _respond(result)


@router.post("/auth/change-password", response_model=Envelope)
def change_password(
    payload: ChangePasswordRequest,
    claims: dict[str, Any] = Depends(get_current_claims),
    service: AuthenticationService = Depends(get_service),
) -> JSONResponse:
    result = service.change_password(claims["sub"], payload.current_password, payload.new_password)
    return _respond(result)


@router.get("/auth/username-taken", response_model=Envelope)
def username_taken(
    username: str = Query(..., min_length=1),
    service: AuthenticationService = Depends(get_service),
) -> JSONResponse:
    return _existence(service.is_username_taken, username)


@router.get("/auth/email-taken", response_model=Envelope)
def email_taken(
    email: str = Query(..., min_length=1),
    service: AuthenticationService = Depends(get_service),
) -> JSONResponse:
    return _existence(service.is_email_taken, email)


@router.post("/accounts", response_model=Envelope, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterRequest,
    claims: dict[str, Any] = Depends(require_admin),
    service: AuthenticationService = Depends(get_service),
) -> JSONResponse:
    """Register an account that must change the system initial password on first use."""
    result = service.register(
        RegisterAccountInput(
            username=payload.username,
            full_name=payload.full_name,
            email=payload.email,
            phone_number=payload.phone_number,
            role=payload.role,
            identity_image_url=payload.identity_image_url,
        )
    )
    logger.info("registration requested by %s: %s", claims["sub"], result.message)
    data = {"account_id": result.value} if result.ok else None
    return _respond(result, data, success_status=status.HTTP_201_CREATED)


@router.delete("/accounts/{account_id}", response_model=Envelope)
def delete_account(
    account_id: str,
    _: dict[str, Any] = Depends(require_admin),
    service: AuthenticationService = Depends(get_service),
) -> JSONResponse:
    return _respond(service.delete_user(account_id))


@router.post("/accounts/{account_id}/restore", response_model=Envelope)
def restore_account(
    account_id: str,
    _: dict[str, Any] = Depends(require_admin),
    service: AuthenticationService = Depends(get_service),
) -> JSONResponse:
    return _respond(service.restore_user(account_id))


@router.put("/accounts/{account_id}/role", response_model=Envelope)
def change_role(
    account_id: str,
    payload: ChangeRoleRequest,
    _: dict[str, Any] = Depends(require_admin),
    service: AuthenticationService = Depends(get_service),
) -> JSONResponse:
    return _respond(service.change_user_role(account_id, payload.role))


def _respond(
    result: Result, data: Any = None, *, success_status: int = status.HTTP_200_OK
) -> JSONResponse:
    """Serialise ``result`` into the envelope with a status derived from its error code."""
    if isinstance(data, BaseModel):
        data = data.model_dump()
    body = Envelope(
        success=result.ok,
        code=result.code.value if result.code else None,
        message=result.message,
        data=data,
    )
    status_code = success_status if result.ok else _STATUS_BY_CODE.get(
        result.code, status.HTTP_400_BAD_REQUEST
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


def _existence(check: Callable[[str], bool], value: str) -> JSONResponse:
    try:
        taken = check(value)
    except GatewayError:
        logger.exception("existence check failed")
        return _respond(Result.failure(ErrorCode.UNEXPECTED_ERROR, UNEXPECTED_MESSAGE))
    return _respond(Result.success(), {"taken": taken})


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    """Render a fault that escaped a route as the ``UNEXPECTED_ERROR`` envelope."""
    logger.error("unhandled fault on %s %s", request.method, request.url.path, exc_info=exc)
    return _respond(Result.failure(ErrorCode.UNEXPECTED_ERROR, UNEXPECTED_MESSAGE))
