"""Outcome values returned by the account state machine and service."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorCode(str, Enum):
    """Machine-readable failure codes surfaced to callers."""

    NOT_FOUND = "NOT_FOUND"
    LOCKED_OUT = "LOCKED_OUT"
    INVALID_CREDENTIAL = "INVALID_CREDENTIAL"
    INVALID_OPERATION = "INVALID_OPERATION"
    INVALID_ROLE = "INVALID_ROLE"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    USERNAME_ALREADY_EXISTS = "USERNAME_ALREADY_EXISTS"
    EMAIL_ALREADY_EXISTS = "EMAIL_ALREADY_EXISTS"
    INVALID_DATA = "INVALID_DATA"
    INVALID_REFRESH_TOKEN = "INVALID_REFRESH_TOKEN"
    PASSWORD_CHANGE_FAILED = "PASSWORD_CHANGE_FAILED"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


class ViolationKind(str, Enum):
    INVALID_OPERATION = "INVALID_OPERATION"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"


@dataclass(frozen=True, slots=True)
class GuardViolation:
    """A rejected account transition. The account is left unchanged."""

    kind: ViolationKind
    message: str

    @classmethod
    def invalid_operation(cls, message: str) -> "GuardViolation":
        return cls(ViolationKind.INVALID_OPERATION, message)

    @classmethod
    def invalid_argument(cls, message: str) -> "GuardViolation":
        return cls(ViolationKind.INVALID_ARGUMENT, message)


@dataclass(frozen=True, slots=True)
class Result(Generic[T]):
    """Tagged success/failure value returned by every authentication use case."""

    ok: bool
    value: Optional[T] = None
    code: Optional[ErrorCode] = None
    message: str = ""

    @classmethod
    def success(cls, value: Optional[T] = None, message: str = "") -> "Result[T]":
        return cls(ok=True, value=value, message=message)

    @classmethod
    def failure(cls, code: ErrorCode, message: str) -> "Result[T]":
        return cls(ok=False, code=code, message=message)
