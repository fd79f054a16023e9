from __future__ import annotations

from datetime import timedelta

import pytest

from account_auth.domain.account import Account
from account_auth.domain.contracts import GatewayError, RegisterAccountInput
from account_auth.domain.results import ErrorCode
from account_auth.domain.roles import Role
from account_auth.domain.service import AuthenticationService
from account_auth.security.credentials import PasswordCredentialVerifier
from account_auth.security.lockout import LockoutTracker
from account_auth.security.sessions import InMemorySessionStore
from account_auth.security.tokens import hash_refresh_token

from conftest import INITIAL_PASSWORD, FailingRepository, FakeRepository

NEW_PASSWORD = "Changed456!"


def alice(**overrides) -> RegisterAccountInput:
    fields = dict(
        username="alice",
        full_name="Alice A",
        email="alice@x.com",
        phone_number="01000000000",
        role=Role.CASHIER,
    )
    fields.update(overrides)
    return RegisterAccountInput(**fields)


@pytest.fixture()
def alice_id(service: AuthenticationService) -> str:
    result = service.register(alice())
    assert result.ok
    return result.value


def test_account_lifecycle_scenario(service, repository, token_issuer, clock):
    registered = service.register(alice())
    assert registered.ok
    account_id = registered.value
    stored = repository.stored(account_id)
    assert stored.must_change_password
    assert stored.refresh_token is None

    login = service.login("alice", INITIAL_PASSWORD)
    assert login.ok
    assert login.value.access_token
    assert login.value.refresh_token
    assert repository.stored(account_id).last_login_at == clock.now

    refreshed = service.refresh_token(account_id)
    assert refreshed.ok
    assert refreshed.value.refresh_token != login.value.refresh_token

    assert service.delete_user(account_id).ok
    denied = service.login("alice", INITIAL_PASSWORD)
    assert not denied.ok
    assert denied.code is ErrorCode.INVALID_OPERATION

    assert service.restore_user(account_id).ok
    restored = repository.stored(account_id)
    assert not restored.is_deleted
    assert restored.refresh_token is None

    again = service.login("alice", INITIAL_PASSWORD)
    assert again.ok
    claims = token_issuer.decode(again.value.access_token)
    assert claims["sub"] == account_id
    assert claims["unique_name"] == "alice"
    assert claims["email"] == "alice@x.com"
    assert claims["role"] == "Cashier"


def test_register_grants_requested_role(service, repository, alice_id):
    assert repository.role_grants[alice_id] == {Role.CASHIER}


@pytest.mark.parametrize(
    "overrides, code",
    [
        ({"email": "other@x.com"}, ErrorCode.USERNAME_ALREADY_EXISTS),
        ({"username": "alice2"}, ErrorCode.EMAIL_ALREADY_EXISTS),
        ({"username": "ALICE", "email": "other@x.com"}, ErrorCode.USERNAME_ALREADY_EXISTS),
    ],
)
def test_register_conflicts_return_without_creating(service, repository, alice_id, overrides, code):
    saves_before = len(repository.saves)

    result = service.register(alice(**overrides))

    assert not result.ok
    assert result.code is code
    assert len(repository.saves) == saves_before


def test_register_conflicts_with_soft_deleted_account(service, alice_id):
    service.delete_user(alice_id)

    result = service.register(alice(email="other@x.com"))

    assert result.code is ErrorCode.USERNAME_ALREADY_EXISTS


@pytest.mark.parametrize(
    "overrides",
    [{"full_name": " "}, {"phone_number": ""}, {"role": Role.NONE}, {"role": "Janitor"}],
)
def test_register_invalid_data(service, repository, overrides):
    result = service.register(alice(**overrides))

    assert result.code is ErrorCode.INVALID_DATA
    assert repository.saves == []


def test_register_surfaces_persistence_failure_generically(lockout, token_issuer, settings, clock):
    repository = FailingRepository()
    service = AuthenticationService(
        repository,
        PasswordCredentialVerifier(repository, lockout, bcrypt_rounds=settings.bcrypt_rounds),
        token_issuer,
        InMemorySessionStore(),
        clock=clock,
        settings=settings,
    )

    result = service.register(alice())

    assert result.code is ErrorCode.UNEXPECTED_ERROR
    assert "connection" not in result.message


@pytest.mark.parametrize("role", [Role.SUPER_ADMIN, "SuperAdmin"])
def test_register_refuses_super_admin(service, repository, role):
    result = service.register(alice(role=role))

    assert result.code is ErrorCode.INVALID_OPERATION
    assert repository.saves == []
    assert not service.is_username_taken("alice")


class FlakyRepository(FakeRepository):
    """Gateway whose first account insert fails."""

    def __init__(self) -> None:
        super().__init__()
        self.failures = 1

    def add(self, account, password_hash, roles) -> None:
        if self.failures:
            self.failures -= 1
            raise GatewayError("deadlock detected")
        super().add(account, password_hash, roles)


def test_failed_registration_leaves_nothing_behind(lockout, token_issuer, settings, clock):
    repository = FlakyRepository()
    service = AuthenticationService(
        repository,
        PasswordCredentialVerifier(repository, lockout, bcrypt_rounds=settings.bcrypt_rounds),
        token_issuer,
        InMemorySessionStore(),
        clock=clock,
        settings=settings,
    )

    failed = service.register(alice())
    assert failed.code is ErrorCode.UNEXPECTED_ERROR
    assert not service.is_username_taken("alice")
    assert repository.role_grants == {}

    retried = service.register(alice())
    assert retried.ok
    assert repository.role_grants[retried.value] == {Role.CASHIER}
    assert service.login("alice", INITIAL_PASSWORD).ok


def test_register_stores_password_hash_with_account(service, repository, alice_id):
    stored_hash = repository.get_password_hash(alice_id)

    assert stored_hash is not None
    assert stored_hash != INITIAL_PASSWORD


def test_login_unknown_user(service):
    result = service.login("nobody", INITIAL_PASSWORD)

    assert result.code is ErrorCode.NOT_FOUND


def test_login_wrong_password_does_not_mutate(service, repository, alice_id):
    saves_before = len(repository.saves)

    result = service.login("alice", "Wrong123@")

    assert result.code is ErrorCode.INVALID_CREDENTIAL
    assert len(repository.saves) == saves_before
    assert repository.stored(alice_id).last_login_at is None


def test_login_persists_exactly_once(service, repository, alice_id):
    saves_before = len(repository.saves)

    assert service.login("alice", INITIAL_PASSWORD).ok

    assert repository.saves[saves_before:] == [alice_id]
    stored = repository.stored(alice_id)
    assert stored.refresh_token is not None
    assert stored.refresh_token_expires_at == stored.last_login_at + timedelta(days=7)


def test_only_the_refresh_token_digest_is_stored(service, repository, alice_id):
    pair = service.login("alice", INITIAL_PASSWORD).value

    stored = repository.stored(alice_id).refresh_token

    assert stored != pair.refresh_token
    assert stored == hash_refresh_token(pair.refresh_token)


def test_repeated_failures_lock_the_account(service, settings, alice_id):
    for _ in range(settings.lockout_max_attempts):
        assert service.login("alice", "Wrong123@").code is ErrorCode.INVALID_CREDENTIAL

    locked = service.login("alice", INITIAL_PASSWORD)

    assert locked.code is ErrorCode.LOCKED_OUT


def test_successful_login_resets_failure_count(service, settings, alice_id):
    for _ in range(settings.lockout_max_attempts - 1):
        service.login("alice", "Wrong123@")
    assert service.login("alice", INITIAL_PASSWORD).ok

    for _ in range(settings.lockout_max_attempts - 1):
        service.login("alice", "Wrong123@")

    assert service.login("alice", INITIAL_PASSWORD).ok


def test_login_on_deleted_account_keeps_last_login(service, repository, alice_id):
    service.delete_user(alice_id)

    result = service.login("alice", INITIAL_PASSWORD)

    assert result.code is ErrorCode.INVALID_OPERATION
    assert repository.stored(alice_id).last_login_at is None


def test_refresh_requires_an_outstanding_token(service, alice_id):
    result = service.refresh_token(alice_id)

    assert result.code is ErrorCode.INVALID_REFRESH_TOKEN


def test_refresh_unknown_account(service):
    assert service.refresh_token("missing").code is ErrorCode.NOT_FOUND


def test_refresh_rotation_is_single_use(service, repository, alice_id):
    first = service.login("alice", INITIAL_PASSWORD).value

    second = service.refresh_token(alice_id, first.refresh_token)
    assert second.ok
    second_digest = hash_refresh_token(second.value.refresh_token)
    assert repository.stored(alice_id).refresh_token == second_digest

    replay = service.refresh_token(alice_id, first.refresh_token)
    assert replay.code is ErrorCode.INVALID_REFRESH_TOKEN
    assert repository.stored(alice_id).refresh_token == second_digest

    third = service.refresh_token(alice_id, second.value.refresh_token)
    assert third.ok
    assert third.value.refresh_token not in {first.refresh_token, second.value.refresh_token}


def test_expired_refresh_token_is_revoked_on_use(service, repository, clock, alice_id):
    service.login("alice", INITIAL_PASSWORD)
    clock.advance(days=7)

    result = service.refresh_token(alice_id)

    assert result.code is ErrorCode.INVALID_REFRESH_TOKEN
    assert repository.stored(alice_id).refresh_token is None


def test_logout_revokes_refresh_token_and_ends_session(service, repository, clock, alice_id):
    service.login("alice", INITIAL_PASSWORD)

    result = service.logout(
        alice_id, session_id="jti-1", session_expires_at=clock.now + timedelta(hours=1)
    )

    assert result.ok
    assert repository.stored(alice_id).refresh_token is None
    assert service.sessions.is_ended("jti-1")


def test_logout_of_unknown_account_still_ends_session(service):
    result = service.logout("missing", session_id="jti-2")

    assert result.ok
    assert service.sessions.is_ended("jti-2")


def test_logout_survives_storage_failure(lockout, token_issuer, settings, clock):
    repository = FailingRepository()
    service = AuthenticationService(
        repository,
        PasswordCredentialVerifier(repository, lockout),
        token_issuer,
        InMemorySessionStore(clock=lambda: clock().timestamp()),
        clock=clock,
        settings=settings,
    )
    account = Account("bob", "Bob B", "bob@x.com", "01000000001", Role.CASHIER)
    FakeRepository.save(repository, account)

    result = service.logout(
        account.account_id, session_id="jti-3", session_expires_at=clock.now + timedelta(hours=1)
    )

    assert result.ok
    assert service.sessions.is_ended("jti-3")


def test_delete_unknown_or_already_deleted_account(service, alice_id):
    assert service.delete_user("missing").code is ErrorCode.NOT_FOUND
    assert service.delete_user(alice_id).ok
    assert service.delete_user(alice_id).code is ErrorCode.NOT_FOUND


def test_delete_revokes_refresh_token(service, repository, clock, alice_id):
    service.login("alice", INITIAL_PASSWORD)

    service.delete_user(alice_id)

    stored = repository.stored(alice_id)
    assert stored.is_deleted
    assert stored.deleted_at == clock.now
    assert stored.refresh_token is None
    assert service.refresh_token(alice_id).code is ErrorCode.NOT_FOUND


def test_restore_unknown_account(service):
    assert service.restore_user("missing").code is ErrorCode.NOT_FOUND


def test_change_role_replaces_grants(service, repository, alice_id):
    result = service.change_user_role(alice_id, Role.MANAGER)

    assert result.ok
    assert repository.stored(alice_id).role is Role.MANAGER
    assert repository.role_grants[alice_id] == {Role.MANAGER}


@pytest.mark.parametrize("deleted", [False, True])
def test_change_role_to_super_admin_is_invalid_operation(service, repository, alice_id, deleted):
    if deleted:
        service.delete_user(alice_id)

    result = service.change_user_role(alice_id, Role.SUPER_ADMIN)

    assert result.code is ErrorCode.INVALID_OPERATION
    assert repository.stored(alice_id).role is Role.CASHIER
    assert repository.role_grants[alice_id] == {Role.CASHIER}


@pytest.mark.parametrize("role", ["Janitor", Role.NONE])
def test_change_role_outside_role_set_is_invalid_role(service, alice_id, role):
    result = service.change_user_role(alice_id, role)

    assert result.code is ErrorCode.INVALID_ROLE


def test_change_role_unknown_account(service):
    assert service.change_user_role("missing", Role.MANAGER).code is ErrorCode.NOT_FOUND


def test_change_password_clears_flag(service, repository, alice_id):
    result = service.change_password(alice_id, INITIAL_PASSWORD, NEW_PASSWORD)

    assert result.ok
    assert not repository.stored(alice_id).must_change_password
    assert service.login("alice", NEW_PASSWORD).ok
    assert service.login("alice", INITIAL_PASSWORD).code is ErrorCode.INVALID_CREDENTIAL


def test_change_password_with_wrong_current(service, repository, alice_id):
    result = service.change_password(alice_id, "Wrong123@", NEW_PASSWORD)

    assert result.code is ErrorCode.PASSWORD_CHANGE_FAILED
    assert result.message == "Incorrect password."
    assert repository.stored(alice_id).must_change_password


def test_change_password_reports_policy_failures(service, alice_id):
    result = service.change_password(alice_id, INITIAL_PASSWORD, "short")

    assert result.code is ErrorCode.PASSWORD_CHANGE_FAILED
    assert "at least 6 characters" in result.message
    assert "uppercase" in result.message


def test_change_password_unknown_account(service):
    assert service.change_password("missing", "a", "b").code is ErrorCode.NOT_FOUND


def test_existence_checks(service, alice_id):
    assert service.is_username_taken("alice")
    assert service.is_username_taken("Alice")
    assert not service.is_username_taken("bob")
    assert service.is_email_taken("alice@x.com")
    assert not service.is_email_taken("bob@x.com")


def test_locked_out_flag_comes_from_verifier(repository, token_issuer, settings, clock):
    lockout = LockoutTracker(max_attempts=1, lockout_seconds=60)
    service = AuthenticationService(
        repository,
        PasswordCredentialVerifier(repository, lockout, bcrypt_rounds=settings.bcrypt_rounds),
        token_issuer,
        InMemorySessionStore(),
        clock=clock,
        settings=settings,
    )
    account_id = service.register(alice()).value
    lockout.record_failure(account_id)

    assert service.login("alice", INITIAL_PASSWORD).code is ErrorCode.LOCKED_OUT
