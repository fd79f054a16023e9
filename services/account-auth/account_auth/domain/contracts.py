"""Domain-level request contracts and the collaborator interfaces the service consumes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping, Protocol

from .account import Account
from .roles import Role


class GatewayError(Exception):
    """Raised by a collaborator when durable state could not be read or written."""


@dataclass(slots=True)
class RegisterAccountInput:
    """Validated inputs required to register a new account."""

    username: str
    full_name: str
    email: str
    phone_number: str
    role: Role | str
    identity_image_url: str = ""


@dataclass(frozen=True, slots=True)
class TokenPair:
    """Access/refresh token pair returned after a login or rotation."""

    access_token: str
    refresh_token: str


class AccountGateway(Protocol):
    """Durable storage for accounts. Lookups exclude soft-deleted rows unless asked."""

    def find_by_username(self, username: str, *, include_deleted: bool = False) -> Account | None: ...

    def find_by_id(self, account_id: str) -> Account | None: ...

    def find_by_email(self, email: str, *, include_deleted: bool = False) -> Account | None: ...

    def find_by_id_including_deleted(self, account_id: str) -> Account | None: ...

    def add(self, account: Account, password_hash: str, roles: Iterable[Role]) -> None:
        """Store a new account with its password hash and role grants in one transaction."""
        ...

    def save(self, account: Account) -> None: ...

    def replace_role_grants(self, account_id: str, roles: Iterable[Role]) -> None: ...


class CredentialVerifier(Protocol):
    """Checks secrets against stored credentials and tracks failed attempts."""

    def verify_secret(self, account: Account, secret: str) -> bool: ...

    def is_locked_out(self, account: Account) -> bool: ...

    def record_failed_attempt(self, account: Account) -> None: ...

    def change_secret(self, account: Account, current: str, new: str) -> list[str]: ...

    def validate_secret(self, secret: str) -> list[str]: ...

    def hash_secret(self, secret: str) -> str: ...


class TokenIssuer(Protocol):
    def sign(self, claims: Mapping[str, Any], expires_in: int) -> str: ...

    def random_token(self, byte_length: int = 32) -> str: ...

    def hash_refresh_token(self, token: str) -> str: ...


class SessionStore(Protocol):
    """Tracks access-token sessions that were ended before their natural expiry."""

    def end_session(self, session_id: str, expires_at: datetime) -> None: ...

    def is_ended(self, session_id: str) -> bool: ...
