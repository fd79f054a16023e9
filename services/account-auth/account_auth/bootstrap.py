"""One-time provisioning of the SuperAdmin account at startup."""

from __future__ import annotations

import logging

from .config import Settings
from .domain.account import Account
from .domain.contracts import AccountGateway, CredentialVerifier
from .domain.roles import Role

logger = logging.getLogger(__name__)


def seed_super_admin(
    accounts: AccountGateway, credentials: CredentialVerifier, settings: Settings
) -> Account | None:
    """Create the SuperAdmin account unless its username or email is already taken.

    Returns the new account, or ``None`` when nothing was provisioned. Safe to
    run on every start.

    Raises
    ------
    ValueError
        When the configured password does not satisfy the password policy.
    """

    if not settings.superadmin_password:
        logger.info("super admin seeding disabled")
        return None
    if (
        accounts.find_by_username(settings.superadmin_username, include_deleted=True) is not None
        or accounts.find_by_email(settings.superadmin_email, include_deleted=True) is not None
    ):
        logger.info("super admin %s already provisioned", settings.superadmin_username)
        return None

    errors = credentials.validate_secret(settings.superadmin_password)
    if errors:
        raise ValueError(f"configured super admin password rejected: {', '.join(errors)}")

    account = Account(
        settings.superadmin_username,
        settings.superadmin_full_name,
        settings.superadmin_email,
        settings.superadmin_phone_number,
        Role.SUPER_ADMIN,
    )
    accounts.add(account, credentials.hash_secret(settings.superadmin_password), [Role.SUPER_ADMIN])
    logger.info("provisioned super admin account %s", account.account_id)
    return account
