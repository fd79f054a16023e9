"""Authentication service orchestrating accounts, credentials, and token issuance."""

from __future__ import annotations

import functools
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from .account import Account, AccountValidationError
from .contracts import (
    AccountGateway,
    CredentialVerifier,
    GatewayError,
    RegisterAccountInput,
    SessionStore,
    TokenIssuer,
    TokenPair,
)
from .results import ErrorCode, Result, ViolationKind
from .roles import Role
from ..config import Settings, get_settings
from ..metrics import record_outcome

logger = logging.getLogger(__name__)

USER_NOT_FOUND = "User not found"
UNEXPECTED_MESSAGE = "An unexpected error occurred."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _use_case(operation: str) -> Callable:
    """Convert collaborator faults into ``UNEXPECTED_ERROR`` results and count outcomes."""

    def decorator(func: Callable[..., Result]) -> Callable[..., Result]:
        @functools.wraps(func)
        def wrapper(self: "AuthenticationService", *args: Any, **kwargs: Any) -> Result:
            try:
                result = func(self, *args, **kwargs)
            except GatewayError:
                logger.exception("%s aborted by a collaborator fault", operation)
                result = Result.failure(ErrorCode.UNEXPECTED_ERROR, UNEXPECTED_MESSAGE)
            record_outcome(operation, result)
            return result

        return wrapper

    return decorator


class AuthenticationService:
    """Account authentication and lifecycle workflows.

    Every use case is one unit of work: load the account, mutate it in memory,
    save it once. There is no locking between load and save, so two concurrent
    refreshes of the same account can both rotate from the same stored token
    and the later save wins.
    """

    def __init__(
        self,
        accounts: AccountGateway,
        credentials: CredentialVerifier,
        tokens: TokenIssuer,
        sessions: SessionStore,
        *,
        clock: Callable[[], datetime] | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Store collaborators used to load, verify, mutate, and persist accounts."""
        self._accounts = accounts
        self._credentials = credentials
        self._tokens = tokens
        self._sessions = sessions
        self._clock = clock or _utcnow
        self._settings = settings or get_settings()

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    @_use_case("login")
    def login(self, username: str, secret: str) -> Result[TokenPair]:
        """Verify credentials and issue an access/refresh token pair.

        The credential check happens before any state change, and the account
        is saved exactly once after every mutation has been applied.
        """
        account = self._accounts.find_by_username(username, include_deleted=True)
        if account is None:
            return Result.failure(ErrorCode.NOT_FOUND, USER_NOT_FOUND)

        if self._credentials.is_locked_out(account):
            logger.warning("sign-in refused for locked out account %s", account.account_id)
            return Result.failure(ErrorCode.LOCKED_OUT, "User is locked out.")

        if not self._credentials.verify_secret(account, secret):
            self._credentials.record_failed_attempt(account)
            return Result.failure(ErrorCode.INVALID_CREDENTIAL, "Invalid username or password.")

        now = self._clock()
        violation = account.login(now)
        if violation is not None:
            logger.warning("sign-in rejected for %s: %s", account.account_id, violation.message)
            return Result.failure(ErrorCode.INVALID_OPERATION, violation.message)

        issued = self._issue_pair(account, now)
        if not issued.ok:
            return issued
        self._accounts.save(account)
        logger.info("account %s signed in", account.account_id)
        return Result.success(issued.value, "User signed in successfully!")

    @_use_case("register")
    def register(self, request: RegisterAccountInput) -> Result[str]:
        """Create an account with the system initial password; no token is issued.

        The account, its password hash and its role grant are stored together,
        so a failed registration leaves nothing behind.
        """
        if request.role == Role.SUPER_ADMIN:
            logger.warning("registration of %r as SuperAdmin refused", request.username)
            return Result.failure(
                ErrorCode.INVALID_OPERATION, "The SuperAdmin role cannot be registered."
            )
        if self._accounts.find_by_username(request.username, include_deleted=True) is not None:
            return Result.failure(ErrorCode.USERNAME_ALREADY_EXISTS, "Username already exists.")
        if self._accounts.find_by_email(request.email, include_deleted=True) is not None:
            return Result.failure(ErrorCode.EMAIL_ALREADY_EXISTS, "Email already exists.")

        try:
            account = Account(
                request.username,
                request.full_name,
                request.email,
                request.phone_number,
                request.role,
                identity_image_url=request.identity_image_url,
                created_at=self._clock(),
            )
        except AccountValidationError as exc:
            logger.warning("registration of %r rejected: %s", request.username, exc)
            return Result.failure(ErrorCode.INVALID_DATA, str(exc))

        initial_password = self._settings.initial_password
        errors = self._credentials.validate_secret(initial_password)
        if errors:
            logger.error("configured initial password rejected: %s", ", ".join(errors))
            return Result.failure(ErrorCode.UNEXPECTED_ERROR, UNEXPECTED_MESSAGE)
        self._accounts.add(
            account, self._credentials.hash_secret(initial_password), [account.role]
        )

        logger.info("registered account %s with role %s", account.account_id, account.role.value)
        return Result.success(account.account_id, "User registered successfully.")

    @_use_case("refresh_token")
    def refresh_token(
        self, account_id: str, presented_token: str | None = None
    ) -> Result[TokenPair]:
        """Rotate the account's refresh token: revoke the stored one, then issue a new pair.

        Parameters
        ----------
        account_id:
            Account whose outstanding refresh token is being exchanged.
        presented_token:
            Refresh token held by the caller. When given its digest must match the
            stored digest, so a token that was already rotated away cannot be
            replayed.
        """
        account = self._accounts.find_by_id(account_id)
        if account is None:
            return Result.failure(ErrorCode.NOT_FOUND, USER_NOT_FOUND)

        stored = account.refresh_token
        if stored is None:
            return self._invalid_refresh_token()
        if presented_token is not None and not hmac.compare_digest(
            self._tokens.hash_refresh_token(presented_token), stored
        ):
            logger.warning("refresh token mismatch for account %s", account_id)
            return self._invalid_refresh_token()

        now = self._clock()
        if account.refresh_token_expired(now):
            account.revoke_refresh_token()
            self._accounts.save(account)
            return self._invalid_refresh_token()

        account.revoke_refresh_token()
        issued = self._issue_pair(account, now)
        if not issued.ok:
            return issued
        self._accounts.save(account)
        return Result.success(issued.value, "Token refreshed successfully.")

    def logout(
        self,
        account_id: str,
        session_id: str | None = None,
        session_expires_at: datetime | None = None,
    ) -> Result[None]:
        """Revoke the refresh token if the account exists and always end the caller's session."""
        try:
            account = self._accounts.find_by_id(account_id)
            if account is not None:
                account.revoke_refresh_token()
                self._accounts.save(account)
        except GatewayError:
            logger.exception("refresh token revocation failed during logout of %s", account_id)
        finally:
            if session_id is not None:
                expires_at = session_expires_at or self._clock() + timedelta(
                    seconds=self._settings.jwt_ttl_seconds
                )
                self._sessions.end_session(session_id, expires_at)

        result: Result[None] = Result.success(message="User logged out.")
        record_outcome("logout", result)
        return result

    @_use_case("delete_user")
    def delete_user(self, account_id: str) -> Result[None]:
        account = self._accounts.find_by_id(account_id)
        if account is None:
            return Result.failure(ErrorCode.NOT_FOUND, USER_NOT_FOUND)
        account.mark_deleted(self._clock())
        self._accounts.save(account)
        logger.info("account %s soft-deleted", account_id)
        return Result.success(message="User deleted successfully.")

    @_use_case("restore_user")
    def restore_user(self, account_id: str) -> Result[None]:
        account = self._accounts.find_by_id_including_deleted(account_id)
        if account is None:
            return Result.failure(ErrorCode.NOT_FOUND, USER_NOT_FOUND)
        account.restore()
        self._accounts.save(account)
        logger.info("account %s restored", account_id)
        return Result.success(message="User restored successfully.")

    @_use_case("change_user_role")
    def change_user_role(self, account_id: str, new_role: Role | str) -> Result[None]:
        """Change the role and replace the account's role grants with exactly that role."""
        account = self._accounts.find_by_id_including_deleted(account_id)
        if account is None:
            return Result.failure(ErrorCode.NOT_FOUND, USER_NOT_FOUND)

        violation = account.change_role(new_role)
        if violation is not None:
            logger.warning("role change for %s rejected: %s", account_id, violation.message)
            code = (
                ErrorCode.INVALID_ROLE
                if violation.kind is ViolationKind.INVALID_ARGUMENT
                else ErrorCode.INVALID_OPERATION
            )
            return Result.failure(code, violation.message)

        self._accounts.save(account)
        self._accounts.replace_role_grants(account_id, [account.role])
        logger.info("account %s now has role %s", account_id, account.role.value)
        return Result.success(message="User role updated successfully.")

    @_use_case("change_password")
    def change_password(self, account_id: str, current: str, new: str) -> Result[None]:
        account = self._accounts.find_by_id(account_id)
        if account is None:
            return Result.failure(ErrorCode.NOT_FOUND, USER_NOT_FOUND)

        errors = self._credentials.change_secret(account, current, new)
        if errors:
            return Result.failure(ErrorCode.PASSWORD_CHANGE_FAILED, ", ".join(errors))

        account.password_changed()
        self._accounts.save(account)
        return Result.success(message="Password changed successfully.")

    def is_username_taken(self, username: str) -> bool:
        return self._accounts.find_by_username(username, include_deleted=True) is not None

    def is_email_taken(self, email: str) -> bool:
        return self._accounts.find_by_email(email, include_deleted=True) is not None

    def _issue_pair(self, account: Account, now: datetime) -> Result[TokenPair]:
        """Mint a token pair and store the new refresh token's digest on ``account``."""
        access_token = self._tokens.sign(self._claims(account), self._settings.jwt_ttl_seconds)
        refresh_token = self._tokens.random_token(self._settings.refresh_token_bytes)
        expires_at = now + timedelta(seconds=self._settings.refresh_ttl_seconds)
        violation = account.set_refresh_token(
            self._tokens.hash_refresh_token(refresh_token), expires_at
        )
        if violation is not None:
            return Result.failure(ErrorCode.INVALID_OPERATION, violation.message)
        return Result.success(TokenPair(access_token=access_token, refresh_token=refresh_token))

    @staticmethod
    def _claims(account: Account) -> dict[str, Any]:
        return {
            "sub": account.account_id,
            "unique_name": account.username,
            "email": account.email,
            "role": account.role.value,
        }

    @staticmethod
    def _invalid_refresh_token() -> Result[TokenPair]:
        return Result.failure(ErrorCode.INVALID_REFRESH_TOKEN, "Invalid or expired refresh token.")
