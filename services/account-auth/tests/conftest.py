from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable

import pytest

from account_auth.config import Settings
from account_auth.domain.account import Account
from account_auth.domain.contracts import GatewayError
from account_auth.domain.roles import Role
from account_auth.domain.service import AuthenticationService
from account_auth.security.credentials import PasswordCredentialVerifier
from account_auth.security.lockout import LockoutTracker
from account_auth.security.sessions import InMemorySessionStore
from account_auth.security.tokens import JwtTokenIssuer

INITIAL_PASSWORD = "Welcome123@"


def snapshot(account: Account) -> Account:
    """Copy an account the way a round trip through storage would."""
    return Account.rehydrate(
        account_id=account.account_id,
        username=account.username,
        full_name=account.full_name,
        email=account.email,
        phone_number=account.phone_number,
        identity_image_url=account.identity_image_url,
        role=account.role,
        created_at=account.created_at,
        last_login_at=account.last_login_at,
        deleted_at=account.deleted_at,
        must_change_password=account.must_change_password,
        refresh_token=account.refresh_token,
        refresh_token_expires_at=account.refresh_token_expires_at,
    )


class FakeRepository:
    """In-memory gateway mimicking the Postgres repository's behaviours."""

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._password_hashes: dict[str, str] = {}
        self.role_grants: dict[str, set[Role]] = {}
        self.saves: list[str] = []

    def _visible(self, include_deleted: bool) -> Iterable[Account]:
        for account in self._accounts.values():
            if include_deleted or not account.is_deleted:
                yield account

    def find_by_username(self, username: str, *, include_deleted: bool = False):
        for account in self._visible(include_deleted):
            if account.username.lower() == username.lower():
                return snapshot(account)
        return None

    def find_by_email(self, email: str, *, include_deleted: bool = False):
        for account in self._visible(include_deleted):
            if account.email.lower() == email.lower():
                return snapshot(account)
        return None

    def find_by_id(self, account_id: str):
        account = self._accounts.get(account_id)
        if account is None or account.is_deleted:
            return None
        return snapshot(account)

    def find_by_id_including_deleted(self, account_id: str):
        account = self._accounts.get(account_id)
        return snapshot(account) if account is not None else None

    def add(self, account: Account, password_hash: str, roles: Iterable[Role]) -> None:
        self.saves.append(account.account_id)
        self._accounts[account.account_id] = snapshot(account)
        self._password_hashes[account.account_id] = password_hash
        self.role_grants[account.account_id] = set(roles)

    def save(self, account: Account) -> None:
        self.saves.append(account.account_id)
        self._accounts[account.account_id] = snapshot(account)

    def replace_role_grants(self, account_id: str, roles: Iterable[Role]) -> None:
        self.role_grants[account_id] = set(roles)

    def get_password_hash(self, account_id: str) -> str | None:
        return self._password_hashes.get(account_id)

    def set_password_hash(self, account_id: str, password_hash: str) -> None:
        if account_id not in self._accounts:
            raise GatewayError(f"no stored account {account_id}")
        self._password_hashes[account_id] = password_hash

    def stored(self, account_id: str) -> Account:
        return snapshot(self._accounts[account_id])


class FailingRepository(FakeRepository):
    """Gateway whose writes always fail."""

    def save(self, account: Account) -> None:
        raise GatewayError("connection reset by peer")

    def add(self, account: Account, password_hash: str, roles: Iterable[Role]) -> None:
        raise GatewayError("connection reset by peer")


class UnreachableRepository(FakeRepository):
    """Gateway whose lookups always fail."""

    def find_by_username(self, username: str, *, include_deleted: bool = False):
        raise GatewayError("db down")

    def find_by_email(self, email: str, *, include_deleted: bool = False):
        raise GatewayError("db down")


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


@pytest.fixture()
def settings() -> Settings:
    return Settings(bcrypt_rounds=4, lockout_max_attempts=3, initial_password=INITIAL_PASSWORD)


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc))


@pytest.fixture()
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture()
def lockout(settings: Settings) -> LockoutTracker:
    return LockoutTracker(
        max_attempts=settings.lockout_max_attempts,
        lockout_seconds=settings.lockout_seconds,
    )


@pytest.fixture()
def token_issuer(settings: Settings) -> JwtTokenIssuer:
    return JwtTokenIssuer(settings)


@pytest.fixture()
def service(repository, lockout, token_issuer, settings, clock) -> AuthenticationService:
    credentials = PasswordCredentialVerifier(
        repository, lockout, bcrypt_rounds=settings.bcrypt_rounds
    )
    return AuthenticationService(
        repository,
        credentials,
        token_issuer,
        InMemorySessionStore(clock=lambda: clock().timestamp()),
        clock=clock,
        settings=settings,
    )
