"""
Shop Accounts and Sessions

Email/password accounts with bcrypt hashing, stored in the ``accounts``
collection keyed by lowercased email, and cookie-token sessions with a
sliding timeout and per-IP lockout after repeated failed logins.

Registering an account also creates the customer's Client profile. Emails
listed in ``auth.bootstrap_admin_emails`` start with the mechanic role;
every other account starts as a customer.

No FastAPI dependency. The dashboard server wires these into its routes.

Usage:
    from security.auth import AccountStore, SessionManager

    accounts = AccountStore(store, clients, bootstrap_admin_emails=["admin@mechanic.com"])
    accounts.register("ivan@example.com", "secret1", display_name="Ivan Petrov")

    sm = SessionManager(accounts, session_timeout=3600)
    token = sm.login("ivan@example.com", "secret1", client_ip="192.168.1.5")
    account = sm.get_account(token)     # None when expired or unknown
    sm.destroy_session(token)
"""

import logging
import re
import secrets
import time
from dataclasses import dataclass, field
from typing import Any

import bcrypt

from core.document_store import DocumentStore, server_timestamp
from core.errors import ConflictError, NotFoundError, ValidationError
from core.event_logger import EventLogger
from security.permissions import ROLE_CUSTOMER, ROLE_MECHANIC, validate_role
from security.permissions import is_admin as account_is_admin
from tools.shop.clients import ClientStore
from tools.shop.records import Timestamp

logger = logging.getLogger("shop.auth")

COLLECTION = "accounts"

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def hash_password(plain: str, rounds: int = 12) -> str:
    """Hash a plaintext password with bcrypt. Returns the hash string."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds)).decode("utf-8")


def check_password(plain: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError as e:
        logger.warning("Password check error: %s", e)
        return False


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------

@dataclass
class Account:
    """A login identity. The password hash never leaves this module."""
    email: str
    display_name: str = ""
    password_hash: str = field(default="", repr=False)
    role: str = ROLE_CUSTOMER
    created_at: Timestamp | None = None

    @property
    def is_admin(self) -> bool:
        return account_is_admin(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "email": self.email,
            "displayName": self.display_name,
            "role": self.role,
            "isAdmin": self.is_admin,
        }

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> "Account":
        return cls(
            email=str(doc.get("email") or doc.get("id") or ""),
            display_name=str(doc.get("displayName") or ""),
            password_hash=str(doc.get("passwordHash") or ""),
            role=str(doc.get("role") or ROLE_CUSTOMER),
            created_at=Timestamp.from_value(doc.get("createdAt")),
        )


class AccountStore:
    """Registration, credential checks and role grants.

    Args:
        store:                  Shared document store.
        clients:                Client store for the auto-created profile.
        events:                 Audit trail.
        bootstrap_admin_emails: Emails that register as mechanics.
        min_password_length:    Shortest accepted password.
        bcrypt_rounds:          bcrypt cost factor.
    """

    def __init__(
        self,
        store: DocumentStore,
        clients: ClientStore,
        events: EventLogger | None = None,
        bootstrap_admin_emails: list[str] | None = None,
        min_password_length: int = 6,
        bcrypt_rounds: int = 12,
    ):
        self._store = store
        self._clients = clients
        self._events = events
        self._bootstrap = {normalize_email(e) for e in (bootstrap_admin_emails or [])}
        self.min_password_length = min_password_length
        self._rounds = bcrypt_rounds

    def _audit(self, message: str, **details) -> None:
        if self._events is not None:
            self._events.info("auth", message, **details)

    def register(
        self,
        email: str,
        password: str,
        display_name: str = "",
        confirm_password: str | None = None,
    ) -> Account:
        """Create an account and its linked client profile."""
        email = normalize_email(email)
        if not _EMAIL_RE.match(email):
            raise ValidationError("A valid email address is required", field="email")
        if len(password or "") < self.min_password_length:
            raise ValidationError(
                f"Password must be at least {self.min_password_length} characters",
                field="password",
            )
        if confirm_password is not None and confirm_password != password:
            raise ValidationError("Passwords do not match", field="confirm_password")
        if self._store.get(COLLECTION, email) is not None:
            raise ConflictError(f"An account for '{email}' already exists")

        role = ROLE_MECHANIC if email in self._bootstrap else ROLE_CUSTOMER
        doc = {
            "email": email,
            "displayName": (display_name or "").strip(),
            "passwordHash": hash_password(password, self._rounds),
            "role": role,
            "createdAt": server_timestamp(),
        }
        self._store.set(COLLECTION, email, doc)

        if self._clients.find_by_email(email) is None:
            self._clients.create_from_account(email, display_name)

        logger.info("Account registered: %s (role=%s)", email, role)
        self._audit("Account registered", email=email, role=role)
        return Account.from_doc(doc)

    def get_account(self, email: str) -> Account | None:
        doc = self._store.get(COLLECTION, normalize_email(email))
        return Account.from_doc(doc) if doc else None

    def authenticate(self, email: str, password: str) -> Account | None:
        """Return the account if the password is right, else None."""
        account = self.get_account(email)
        if account is None or not check_password(password or "", account.password_hash):
            return None
        return account

    def grant_role(self, email: str, role: str) -> Account:
        """Set the role of an existing account."""
        validate_role(role)
        email = normalize_email(email)
        try:
            doc = self._store.update(COLLECTION, email, {"role": role})
        except NotFoundError:
            raise NotFoundError(COLLECTION, email) from None
        logger.info("Role granted: %s -> %s", email, role)
        self._audit("Role granted", email=email, role=role)
        return Account.from_doc(doc)

    def list_accounts(self, role: str | None = None) -> list[Account]:
        where = {"role": role} if role else None
        docs = self._store.query(COLLECTION, where=where, order_by="createdAt")
        return [Account.from_doc(d) for d in docs]


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

@dataclass
class Session:
    """A single authenticated browser session."""
    token: str
    email: str
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)

    def touch(self):
        """Sliding timeout."""
        self.last_activity = time.time()


@dataclass
class _LoginAttempts:
    count: int = 0
    first_attempt: float = field(default_factory=time.time)
    locked_until: float = 0.0


class SessionManager:
    """In-memory sessions for logged-in accounts.

    Args:
        accounts:           Where credentials are checked.
        session_timeout:    Seconds of inactivity before a session expires.
        max_login_attempts: Failed attempts from one IP before lockout.
        lockout_duration:   Seconds of lockout after max failures.
    """

    def __init__(
        self,
        accounts: AccountStore,
        session_timeout: int = 3600,
        max_login_attempts: int = 5,
        lockout_duration: int = 300,
    ):
        self.accounts = accounts
        self.session_timeout = session_timeout
        self.max_login_attempts = max_login_attempts
        self.lockout_duration = lockout_duration

        # token -> Session
        self._sessions: dict[str, Session] = {}
        # IP -> _LoginAttempts
        self._attempts: dict[str, _LoginAttempts] = {}

    def _is_locked_out(self, client_ip: str) -> tuple[bool, int]:
        attempts = self._attempts.get(client_ip)
        if not attempts:
            return False, 0
        if attempts.locked_until > time.time():
            return True, int(attempts.locked_until - time.time()) + 1
        return False, 0

    def _record_failure(self, client_ip: str) -> None:
        attempts = self._attempts.setdefault(client_ip, _LoginAttempts())
        attempts.count += 1
        logger.warning(
            "Failed login attempt from %s (attempt %d/%d)",
            client_ip, attempts.count, self.max_login_attempts,
        )
        if attempts.count >= self.max_login_attempts:
            attempts.locked_until = time.time() + self.lockout_duration
            logger.warning(
                "IP %s locked out for %ds after %d failed attempts",
                client_ip, self.lockout_duration, attempts.count,
            )

    def login(self, email: str, password: str, client_ip: str = "unknown") -> str | None:
        """Return a session token on success, None on bad credentials or lockout."""
        locked, remaining = self._is_locked_out(client_ip)
        if locked:
            logger.warning("Login attempt from locked-out IP %s (%ds remaining)", client_ip, remaining)
            return None

        account = self.accounts.authenticate(email, password)
        if account is None:
            self._record_failure(client_ip)
            return None

        self._attempts.pop(client_ip, None)
        token = secrets.token_urlsafe(32)
        self._sessions[token] = Session(token=token, email=account.email)
        logger.info("Login successful for '%s' from %s", account.email, client_ip)
        return token

    def validate_session(self, token: str | None) -> bool:
        """True if the token is live. Touches the session."""
        if not token:
            return False
        session = self._sessions.get(token)
        if not session:
            return False
        if time.time() - session.last_activity > self.session_timeout:
            del self._sessions[token]
            logger.info("Session expired for '%s'", session.email)
            return False
        session.touch()
        return True

    def get_account(self, token: str | None) -> Account | None:
        """The account behind a live session token.

        The account is re-read on every call so role grants take effect
        without logging out.
        """
        if not self.validate_session(token):
            return None
        return self.accounts.get_account(self._sessions[token].email)

    def destroy_session(self, token: str | None):
        if token and token in self._sessions:
            session = self._sessions.pop(token)
            logger.info("Session destroyed for '%s'", session.email)

    def cleanup_expired(self) -> int:
        """Drop expired sessions and stale lockouts. Returns sessions removed."""
        now = time.time()
        expired = [
            tok for tok, sess in self._sessions.items()
            if now - sess.last_activity > self.session_timeout
        ]
        for tok in expired:
            del self._sessions[tok]
        if expired:
            logger.info("Cleaned up %d expired session(s)", len(expired))

        stale_ips = [
            ip for ip, att in self._attempts.items()
            if att.locked_until and att.locked_until < now
        ]
        for ip in stale_ips:
            del self._attempts[ip]
        return len(expired)

    def get_lockout_remaining(self, client_ip: str) -> int:
        _, remaining = self._is_locked_out(client_ip)
        return remaining

    @property
    def active_session_count(self) -> int:
        return len(self._sessions)
