"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts and security tokens.

Pattern: Repository + Data Mapper.
AuthStore is the repository; _row_to_account / _row_to_token are the mappers.
Service and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Token consumption is a compare-and-set: the UPDATE that flips `used` is
  guarded by `used = 0 AND expires_at > now` and the caller checks rowcount.
  Two requests racing on the same token value cannot both see rowcount 1,
  regardless of what either of them read beforehand.

  consume_token() runs the conditional flip and any dependent account
  mutations in one transaction (engine.begin()). If the flip loses, nothing
  else is written.

Timestamps are timezone-aware UTC in Python. SQLite stores DateTime without
zone information, so the mappers re-attach UTC on the way out.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import Account, Role, SecurityToken, TokenKind

logger = logging.getLogger("storefront.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("phone", String(30)),
    Column("avatar", Text),
    Column("role", String(20), nullable=False, server_default=Role.CUSTOMER.value),
    Column("email_verified", Boolean, nullable=False, server_default="0"),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("last_login", DateTime),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)

_tokens = Table(
    "security_tokens",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("account_id", String(36), ForeignKey("accounts.id"), nullable=False),
    Column("value", Text, nullable=False, unique=True),
    Column("kind", String(30), nullable=False),
    Column("expires_at", DateTime, nullable=False),
    Column("used", Boolean, nullable=False, server_default="0"),
    Column("created_at", DateTime, nullable=False),
    Index("ix_security_tokens_owner_kind", "account_id", "kind", "used"),
)

# Columns update_account() accepts. Anything else is a programming error.
_ACCOUNT_MUTABLE = {
    "email_verified",
    "is_active",
    "password_hash",
    "last_login",
    "first_name",
    "last_name",
    "phone",
    "avatar",
    "role",
}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _to_db(value: datetime | None) -> datetime | None:
    """Normalise to naive UTC so SQLite string comparisons stay ordered."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for Account and SecurityToken entities.

    Usage:
        store = AuthStore("sqlite:///:memory:")
        account = store.create_account(Account(email="a@x.com", password_hash=h, first_name="A", last_name="B"))
        token = store.create_token(account.id, TokenKind.PASSWORD_RESET, value, expires_at)
        store.mark_token_used(token.id)
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(self, account: Account) -> Account:
        """Insert a new account and return it with id and timestamps filled in.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        The service maps that to ConflictError -- it is the backstop for two
        concurrent registrations that both passed the pre-check.
        """
        now = _now()
        values = {
            "id": _new_id(),
            "email": account.email,
            "password_hash": account.password_hash,
            "first_name": account.first_name,
            "last_name": account.last_name,
            "phone": account.phone,
            "avatar": account.avatar,
            "role": Role(account.role).value,
            "email_verified": account.email_verified,
            "is_active": account.is_active,
            "created_at": _to_db(now),
            "updated_at": _to_db(now),
        }
        with self.engine.begin() as conn:
            conn.execute(_accounts.insert().values(**values))
            row = conn.execute(_accounts.select().where(_accounts.c.id == values["id"])).fetchone()
        return _row_to_account(row)

    def find_account_by_email(self, email: str) -> Account | None:
        """Look up an account by exact email (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == email)).fetchone()
        return _row_to_account(row) if row is not None else None

    def find_account_by_id(self, account_id: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def update_account(self, account_id: str, **fields) -> Account | None:
        """Apply `fields` to an account, stamp updated_at, and return the fresh record.

        Returns None if account_id does not exist. Unknown field names raise
        ValueError rather than being silently ignored.
        """
        with self.engine.begin() as conn:
            if not self._update_account(conn, account_id, fields):
                return None
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row)

    def _update_account(self, conn: Connection, account_id: str, fields: dict) -> bool:
        unknown = set(fields) - _ACCOUNT_MUTABLE
        if unknown:
            raise ValueError(f"Unknown account fields: {unknown!r}")
        values = {k: _to_db(v) if isinstance(v, datetime) else v for k, v in fields.items()}
        if "role" in values:
            values["role"] = Role(values["role"]).value
        values["updated_at"] = _to_db(_now())
        result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**values))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Security tokens
    # ------------------------------------------------------------------

    def create_token(self, account_id: str, kind: TokenKind, value: str, expires_at: datetime) -> SecurityToken:
        """Insert an unused token record.

        Raises sqlalchemy.exc.IntegrityError if `value` already exists.
        """
        token = SecurityToken(
            id=_new_id(),
            account_id=account_id,
            kind=TokenKind(kind),
            value=value,
            expires_at=expires_at,
            used=False,
            created_at=_now(),
        )
        with self.engine.begin() as conn:
            conn.execute(
                _tokens.insert().values(
                    id=token.id,
                    account_id=token.account_id,
                    kind=token.kind.value,
                    value=token.value,
                    expires_at=_to_db(token.expires_at),
                    used=False,
                    created_at=_to_db(token.created_at),
                )
            )
        return token

    def find_active_token(self, value: str, kind: TokenKind, account_id: str | None = None) -> SecurityToken | None:
        """Return the unused, unexpired token of `kind` with this value, or None.

        When account_id is given the token must also belong to that account.
        """
        query = _tokens.select().where(
            (_tokens.c.value == value)
            & (_tokens.c.kind == TokenKind(kind).value)
            & (_tokens.c.used.is_(False))
            & (_tokens.c.expires_at > _to_db(_now()))
        )
        if account_id is not None:
            query = query.where(_tokens.c.account_id == account_id)
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_token(row) if row is not None else None

    def mark_token_used(self, token_id: str) -> bool:
        """Flip one token from unused to used.

        Returns False if the token was already used, has expired, or does not
        exist -- i.e. if this caller did not win the consumption.
        """
        with self.engine.begin() as conn:
            return self._claim(conn, token_id)

    def mark_all_tokens_used(self, account_id: str, kind: TokenKind) -> int:
        """Mark every unused token of `kind` owned by account_id as used. Returns the count."""
        with self.engine.begin() as conn:
            return self._revoke_all(conn, account_id, kind)

    def consume_token(
        self,
        token_id: str,
        *,
        account_id: str | None = None,
        account_fields: dict | None = None,
        revoke_kind: TokenKind | None = None,
    ) -> bool:
        """Consume a token and apply its side effects atomically.

        In one transaction:
          1. conditional flip of token_id (see mark_token_used);
          2. if it won and account_fields is given, update account_id;
          3. if it won and revoke_kind is given, mark all of account_id's
             unused tokens of that kind as used.

        Returns False (and writes nothing) when the flip loses.
        """
        with self.engine.begin() as conn:
            if not self._claim(conn, token_id):
                return False
            if account_id is not None and account_fields:
                self._update_account(conn, account_id, account_fields)
            if account_id is not None and revoke_kind is not None:
                revoked = self._revoke_all(conn, account_id, revoke_kind)
                logger.info("Revoked %d %s token(s) for account %s", revoked, TokenKind(revoke_kind).value, account_id)
        return True

    def purge_expired_tokens(self, before: datetime | None = None) -> int:
        """Delete token records that expired before `before` (default: now).

        Expired records can never validate again, so removing them does not
        change any lifecycle outcome. Returns the number of rows removed.
        """
        cutoff = _to_db(before or _now())
        with self.engine.begin() as conn:
            result = conn.execute(_tokens.delete().where(_tokens.c.expires_at <= cutoff))
        return result.rowcount

    def _claim(self, conn: Connection, token_id: str) -> bool:
        result = conn.execute(
            _tokens.update()
            .where(
                (_tokens.c.id == token_id)
                & (_tokens.c.used.is_(False))
                & (_tokens.c.expires_at > _to_db(_now()))
            )
            .values(used=True)
        )
        return result.rowcount == 1

    def _revoke_all(self, conn: Connection, account_id: str, kind: TokenKind) -> int:
        result = conn.execute(
            _tokens.update()
            .where(
                (_tokens.c.account_id == account_id)
                & (_tokens.c.kind == TokenKind(kind).value)
                & (_tokens.c.used.is_(False))
            )
            .values(used=True)
        )
        return result.rowcount

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Auth database health check failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        first_name=row.first_name,
        last_name=row.last_name,
        phone=row.phone,
        avatar=row.avatar,
        role=Role(row.role),
        email_verified=bool(row.email_verified),
        is_active=bool(row.is_active),
        last_login=_as_utc(row.last_login),
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
    )


def _row_to_token(row) -> SecurityToken:
    return SecurityToken(
        id=row.id,
        account_id=row.account_id,
        kind=TokenKind(row.kind),
        value=row.value,
        expires_at=_as_utc(row.expires_at),
        used=bool(row.used),
        created_at=_as_utc(row.created_at),
    )
