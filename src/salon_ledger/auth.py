"""Password verification and session tokens.

Credentials form one JSON blob::

    {"admin": <secret>, "stores": {<store>: <secret> | {<staff>: <secret>}}}

A store may carry a single store-wide secret or one secret per staff member.
Secrets are stored as ``pwdlib`` hashes. Entries written before hashing was
introduced are plain text; they are compared in constant time and replaced by
a hash the first time they match. When no secret is configured for the
requested role and scope, verification succeeds: an unconfigured page is
open by default.

Sessions live in a sheet so every process sharing the workbook sees them.
Only the SHA-256 digest of a token is stored. Expired sessions are removed
when they are looked up, on explicit logout, or by :meth:`SessionStore.purge_expired`.
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from pwdlib import PasswordHash
from pwdlib.exceptions import UnknownHashError

from . import log
from .config_store import ConfigStore
from .constants import DEFAULT_SESSION_HOURS, DEFAULT_SESSION_PURGE_INTERVAL, ConfigKey, Role
from .data_manager import TabularSource
from .errors import AuthenticationError, SessionError
from .records import normalize_staff, normalize_store
from .schema import SESSION_HEADER, SheetSchema


password_hash = PasswordHash.recommended()

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------

def hash_password(raw_password: str) -> str:
    return password_hash.hash(raw_password)


def is_password_hash(value: str) -> bool:
    return any(hasher.identify(value) for hasher in password_hash.hashers)


def check_password(raw_password: str, stored: str) -> Tuple[bool, Optional[str]]:
    """Compare ``raw_password`` with a stored secret.

    Returns:
        tuple[bool, str | None]: Whether it matched, and a replacement hash
            when the stored value should be upgraded (legacy plain text, or a
            hash made with outdated parameters).
    """

    try:
        return password_hash.verify_and_update(raw_password, stored)
    except UnknownHashError:
        matched = secrets.compare_digest(raw_password.encode("utf-8"), stored.encode("utf-8"))
        return matched, (hash_password(raw_password) if matched else None)


def secret_path(role: Role, store: str, staff: str, credentials: Mapping[str, Any]) -> Optional[Tuple[str, ...]]:
    """Locate the configured secret for a role and scope inside ``credentials``.

    A store entry is either one store-wide secret or a per-staff mapping.
    """

    if role is Role.ADMIN:
        value = credentials.get("admin")
        return ("admin",) if isinstance(value, str) and value else None

    stores = credentials.get("stores")
    if not isinstance(stores, Mapping):
        return None
    scoped = stores.get(store)
    if isinstance(scoped, str):
        return ("stores", store) if scoped else None
    if isinstance(scoped, Mapping):
        value = scoped.get(staff)
        if isinstance(value, str) and value:
            return ("stores", store, staff)
    return None


def _get_path(data: Mapping[str, Any], path: Tuple[str, ...]) -> Any:
    current: Any = data
    for key in path:
        current = current[key]
    return current


def _set_path(data: Dict[str, Any], path: Tuple[str, ...], value: Any) -> None:
    current = data
    for key in path[:-1]:
        current = current.setdefault(key, {})
    current[path[-1]] = value


def prepare_credentials(incoming: Any, existing: Any, _path: Tuple[str, ...] = ()) -> Any:
    """Turn a submitted credential set into the stored form.

    Plain-text leaves are hashed, leaves that already hold a hash are kept,
    ``true`` keeps whatever is stored at that position (the masked form
    returned by :func:`mask_credentials`), and blank leaves are dropped,
    which reopens that page.
    """

    if isinstance(incoming, Mapping):
        prepared: Dict[str, Any] = {}
        for key, value in incoming.items():
            result = prepare_credentials(value, existing, _path + (str(key),))
            if result is not None and result != {}:
                prepared[str(key)] = result
        return prepared
    if incoming is True:
        try:
            kept = _get_path(existing, _path)
        except (KeyError, TypeError):
            return None
        return kept if isinstance(kept, str) and kept else None
    if isinstance(incoming, str) and incoming:
        return incoming if is_password_hash(incoming) else hash_password(incoming)
    return None


def mask_credentials(credentials: Any) -> Any:
    """Replace every configured secret with ``True``."""

    if isinstance(credentials, Mapping):
        return {str(key): mask_credentials(value) for key, value in credentials.items()}
    return bool(credentials)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class Session:
    """An authenticated, time-bounded grant."""

    token_hash: str
    role: Role
    store: str
    staff: str
    expires_at: datetime
    created_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def allows(self, role: Role) -> bool:
        """Admin sessions open every page; staff sessions only staff pages."""

        return self.role is Role.ADMIN or self.role is role

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role.value,
            "store": self.store,
            "staff": self.staff,
            "expiresAt": self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class SessionGrant:
    """What a successful login hands back: the plain token and its session."""

    token: str
    session: Session

    def to_dict(self) -> Dict[str, Any]:
        return {"token": self.token, **self.session.to_dict()}


def _parse_instant(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        moment = value
    else:
        try:
            moment = datetime.fromisoformat(str(value))
        except ValueError:
            return None
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=UTC)


class SessionStore:
    """Sessions persisted one per row in the schema's sessions sheet.

    Expired rows are deleted when looked up, and every ``purge_every``-th
    :meth:`create` also sweeps the rows nobody looks up again. ``0`` turns the
    sweep off.
    """

    def __init__(
        self,
        source: TabularSource,
        schema: SheetSchema,
        *,
        clock: Clock = utcnow,
        session_hours: int = DEFAULT_SESSION_HOURS,
        purge_every: int = DEFAULT_SESSION_PURGE_INTERVAL,
    ) -> None:
        self.source = source
        self.sheet = schema.sessions_sheet
        self.clock = clock
        self.lifetime = timedelta(hours=session_hours)
        self.purge_every = purge_every
        self._created = 0

    def _ensure_sheet(self) -> None:
        if not self.source.has_sheet(self.sheet):
            self.source.create_sheet(self.sheet, SESSION_HEADER)

    def _rows(self) -> List[Tuple[int, Optional[Session]]]:
        if not self.source.has_sheet(self.sheet):
            return []
        parsed: List[Tuple[int, Optional[Session]]] = []
        for row_number, row in enumerate(self.source.read_rows(self.sheet), start=1):
            if row_number == 1:
                continue
            parsed.append((row_number, self._parse_row(row)))
        return parsed

    @staticmethod
    def _parse_row(row: List[Any]) -> Optional[Session]:
        cells = list(row) + [None] * (len(SESSION_HEADER) - len(row))
        token_hash, role, store, staff, expires_at, created_at = cells[: len(SESSION_HEADER)]
        expires = _parse_instant(expires_at)
        if not token_hash or expires is None:
            return None
        try:
            parsed_role = Role(str(role))
        except ValueError:
            return None
        return Session(
            token_hash=str(token_hash),
            role=parsed_role,
            store=str(store or ""),
            staff=str(staff or ""),
            expires_at=expires,
            created_at=_parse_instant(created_at) or expires,
        )

    def create(self, role: Role, store: str = "", staff: str = "") -> SessionGrant:
        """Issue a new token valid for the configured lifetime."""

        self._ensure_sheet()
        self._created += 1
        if self.purge_every and self._created % self.purge_every == 0:
            self.purge_expired()
        token = secrets.token_urlsafe(32)
        now = self.clock()
        session = Session(
            token_hash=hash_token(token),
            role=role,
            store=store,
            staff=staff,
            expires_at=now + self.lifetime,
            created_at=now,
        )
        self.source.append_row(
            self.sheet,
            [
                session.token_hash,
                session.role.value,
                session.store,
                session.staff,
                session.expires_at.isoformat(),
                session.created_at.isoformat(),
            ],
        )
        log.info("Issued %s session (store=%s staff=%s)", role.value, store or "-", staff or "-")
        return SessionGrant(token=token, session=session)

    def get(self, token: str) -> Optional[Session]:
        """Return the live session for ``token``; expired ones are deleted."""

        if not token:
            return None
        wanted = hash_token(token)
        for row_number, session in self._rows():
            if session is None or session.token_hash != wanted:
                continue
            if session.is_expired(self.clock()):
                self.source.delete_row(self.sheet, row_number)
                log.info("Evicted expired %s session", session.role.value)
                return None
            return session
        return None

    def revoke(self, token: str) -> bool:
        """Delete the session for ``token``; return whether one existed."""

        if not token:
            return False
        wanted = hash_token(token)
        for row_number, session in self._rows():
            if session is not None and session.token_hash == wanted:
                self.source.delete_row(self.sheet, row_number)
                log.info("Revoked %s session", session.role.value)
                return True
        return False

    def purge_expired(self) -> int:
        """Delete every expired or unreadable session row; return the count."""

        now = self.clock()
        doomed = [row for row, session in self._rows() if session is None or session.is_expired(now)]
        # Bottom-up so earlier deletions do not shift later row numbers.
        for row_number in reversed(doomed):
            self.source.delete_row(self.sheet, row_number)
        if doomed:
            log.info("Purged %d expired sessions", len(doomed))
        return len(doomed)


# ---------------------------------------------------------------------------
# Authenticator
# ---------------------------------------------------------------------------

def parse_role(value: Any) -> Role:
    try:
        return Role(str(value or "").strip().lower())
    except ValueError as exc:
        raise AuthenticationError(f"Unknown page type: {value}") from exc


class Authenticator:
    """Ties the credential blob to the session store."""

    def __init__(self, config_store: ConfigStore, sessions: SessionStore, schema: SheetSchema) -> None:
        self.config_store = config_store
        self.sessions = sessions
        self.schema = schema

    def verify_password(self, role: Any, store: Any, staff: Any, candidate: Optional[str]) -> SessionGrant:
        """Check ``candidate`` for the page and open a session on success.

        Raises:
            AuthenticationError: On a wrong password or unknown page type.
        """

        page = parse_role(role)
        store_id = normalize_store(store, self.schema.store_aliases) if page is Role.STAFF else ""
        staff_id = normalize_staff(staff) if page is Role.STAFF else ""

        credentials = self.config_store.load_json(ConfigKey.PASSWORDS, {})
        if not isinstance(credentials, dict):
            credentials = {}
        path = secret_path(page, store_id, staff_id, credentials)

        if path is None:
            log.warning(
                "No password configured for %s page (store=%s staff=%s); allowing access",
                page.value,
                store_id or "-",
                staff_id or "-",
            )
        else:
            matched, replacement = check_password(candidate or "", _get_path(credentials, path))
            if not matched:
                log.warning("Password rejected for %s page (store=%s staff=%s)", page.value, store_id or "-", staff_id or "-")
                raise AuthenticationError("Incorrect password")
            if replacement is not None:
                _set_path(credentials, path, replacement)
                self.config_store.save_json(ConfigKey.PASSWORDS, credentials)
                log.info("Upgraded stored secret at %s", "/".join(path))

        return self.sessions.create(page, store_id, staff_id)

    def verify_session(self, token: Optional[str], role: Any) -> Session:
        """Return the session for ``token`` if it is live and allows ``role``.

        Raises:
            SessionError: For unknown, expired, or insufficient sessions.
        """

        page = parse_role(role) if role else Role.STAFF
        session = self.sessions.get(token or "")
        if session is None or not session.allows(page):
            raise SessionError("Session is invalid or has expired")
        return session

    def logout(self, token: Optional[str]) -> bool:
        return self.sessions.revoke(token or "")
