"""Database repository for accounts, role grants, and password hashes."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterable, Iterator

import psycopg
from psycopg import Cursor
from psycopg.rows import tuple_row
from psycopg_pool import ConnectionPool

from .domain.account import Account
from .domain.contracts import GatewayError
from .domain.roles import Role

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS accounts (
    account_id TEXT PRIMARY KEY,
    username TEXT NOT NULL,
    full_name TEXT NOT NULL,
    email TEXT NOT NULL,
    phone_number TEXT NOT NULL,
    identity_image_url TEXT NOT NULL DEFAULT '',
    role TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    last_login_at TIMESTAMPTZ,
    deleted_at TIMESTAMPTZ,
    must_change_password BOOLEAN NOT NULL DEFAULT TRUE,
    refresh_token_hash TEXT,
    refresh_token_expires_at TIMESTAMPTZ,
    password_hash TEXT,
    CHECK ((refresh_token_hash IS NULL) = (refresh_token_expires_at IS NULL))
);
CREATE UNIQUE INDEX IF NOT EXISTS ux_accounts_username_lower ON accounts (lower(username));
CREATE UNIQUE INDEX IF NOT EXISTS ux_accounts_email_lower ON accounts (lower(email));
CREATE TABLE IF NOT EXISTS account_roles (
    account_id TEXT NOT NULL REFERENCES accounts (account_id),
    role TEXT NOT NULL,
    PRIMARY KEY (account_id, role)
);
"""

_COLUMNS = """
    account_id, username, full_name, email, phone_number, identity_image_url, role,
    created_at, last_login_at, deleted_at, must_change_password,
    refresh_token_hash, refresh_token_expires_at
"""


class AccountRepository:
    """Postgres-backed account persistence.

    Lookups hide soft-deleted accounts unless ``include_deleted`` is requested.
    Driver failures are re-raised as :class:`GatewayError`.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    @contextmanager
    def _cursor(self) -> Iterator[Cursor]:
        """Yield a cursor inside a transaction committed when the block succeeds."""
        try:
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    yield cur
                conn.commit()
        except psycopg.Error as exc:
            raise GatewayError(f"account storage failure: {exc}") from exc

    def ensure_schema(self) -> None:
        """Create the tables this repository relies on when they are missing."""
        with self._cursor() as cur:
            cur.execute(SCHEMA_SQL)

    def find_by_username(self, username: str, *, include_deleted: bool = False) -> Account | None:
        return self._find_one("lower(username) = lower(%s)", username, include_deleted)

    def find_by_email(self, email: str, *, include_deleted: bool = False) -> Account | None:
        return self._find_one("lower(email) = lower(%s)", email, include_deleted)

    def find_by_id(self, account_id: str) -> Account | None:
        return self._find_one("account_id = %s", account_id, include_deleted=False)

    def find_by_id_including_deleted(self, account_id: str) -> Account | None:
        return self._find_one("account_id = %s", account_id, include_deleted=True)

    def _find_one(self, predicate: str, value: str, include_deleted: bool) -> Account | None:
        query = f"SELECT {_COLUMNS} FROM accounts WHERE {predicate}"
        if not include_deleted:
            query += " AND deleted_at IS NULL"
        with self._cursor() as cur:
            cur.execute(query, (value,))
            row = cur.fetchone()
        if not row:
            return None
        return self._map_record(row)

    def add(self, account: Account, password_hash: str, roles: Iterable[Role]) -> None:
        """Insert a new account, its password hash and its role grants in one transaction."""
        with self._cursor() as cur:
            self._upsert(cur, account)
            cur.execute(
                "UPDATE accounts SET password_hash = %s WHERE account_id = %s",
                (password_hash, account.account_id),
            )
            self._write_role_grants(cur, account.account_id, roles)

    def save(self, account: Account) -> None:
        """Insert or update every lifecycle column of ``account``."""
        with self._cursor() as cur:
            self._upsert(cur, account)

    def replace_role_grants(self, account_id: str, roles: Iterable[Role]) -> None:
        """Make ``roles`` the complete set of role grants held by the account."""
        with self._cursor() as cur:
            self._write_role_grants(cur, account_id, roles)

    @staticmethod
    def _upsert(cur: Cursor, account: Account) -> None:
        cur.execute(
            """
            INSERT INTO accounts (
                account_id, username, full_name, email, phone_number, identity_image_url,
                role, created_at, last_login_at, deleted_at, must_change_password,
                refresh_token_hash, refresh_token_expires_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (account_id) DO UPDATE SET
                role = EXCLUDED.role,
                last_login_at = EXCLUDED.last_login_at,
                deleted_at = EXCLUDED.deleted_at,
                must_change_password = EXCLUDED.must_change_password,
                refresh_token_hash = EXCLUDED.refresh_token_hash,
                refresh_token_expires_at = EXCLUDED.refresh_token_expires_at
            """,
            (
                account.account_id,
                account.username,
                account.full_name,
                account.email,
                account.phone_number,
                account.identity_image_url,
                account.role.value,
                account.created_at,
                account.last_login_at,
                account.deleted_at,
                account.must_change_password,
                account.refresh_token,
                account.refresh_token_expires_at,
            ),
        )

    @staticmethod
    def _write_role_grants(cur: Cursor, account_id: str, roles: Iterable[Role]) -> None:
        cur.execute("DELETE FROM account_roles WHERE account_id = %s", (account_id,))
        cur.executemany(
            "INSERT INTO account_roles (account_id, role) VALUES (%s, %s)",
            [(account_id, role.value) for role in roles],
        )

    def get_password_hash(self, account_id: str) -> str | None:
        with self._cursor() as cur:
            cur.execute("SELECT password_hash FROM accounts WHERE account_id = %s", (account_id,))
            row = cur.fetchone()
        return row[0] if row else None

    def set_password_hash(self, account_id: str, password_hash: str) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE accounts SET password_hash = %s WHERE account_id = %s",
                (password_hash, account_id),
            )
            if cur.rowcount != 1:
                raise GatewayError(f"no stored account {account_id} to attach a password to")

    def _map_record(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account``."""
        return Account.rehydrate(
            account_id=row[0],
            username=row[1],
            full_name=row[2],
            email=row[3],
            phone_number=row[4],
            identity_image_url=row[5],
            role=row[6],
            created_at=row[7],
            last_login_at=row[8],
            deleted_at=row[9],
            must_change_password=row[10],
            refresh_token=row[11],
            refresh_token_expires_at=row[12],
        )
