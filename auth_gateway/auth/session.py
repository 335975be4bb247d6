"""
Session Management Module
=========================

Owns the per-browser session state of the gateway.

The browser only carries an opaque session id inside the signed session
cookie (Starlette ``SessionMiddleware``). The session record itself lives in
a pluggable ``SessionStore`` keyed by that id and is written as a whole:
``establish`` and ``clear`` are the only mutations.

States:
    Anonymous -> (authorization in flight) -> Authenticated -> Anonymous
"""

import asyncio
import logging
import secrets
import time
import weakref
from datetime import timedelta
from typing import Dict, MutableMapping, Optional, Protocol, Tuple

from fastapi import Depends, HTTPException, Request, status
from pydantic import ValidationError as PydanticValidationError

from auth_gateway.models import Principal, Session, utcnow

logger = logging.getLogger(__name__)


# Key of the session id inside the signed cookie
SESSION_ID_KEY = "sid"


# =============================================================================
# Session Store
# =============================================================================

class SessionStore(Protocol):
    """Storage capability for serialized session records."""

    async def get(self, session_id: str) -> Optional[str]:
        ...

    async def set(self, session_id: str, data: str, ttl_seconds: int) -> None:
        ...

    async def delete(self, session_id: str) -> None:
        ...


class InMemorySessionStore:
    """
    In-memory TTL store for session records.

    Suitable for a single process; use a shared store (e.g. Redis) when
    running several workers.
    """

    def __init__(self):
        self._records: Dict[str, Tuple[str, float]] = {}
        self._lock = asyncio.Lock()

    async def get(self, session_id: str) -> Optional[str]:
        async with self._lock:
            record = self._records.get(session_id)
            if record is None:
                return None

            data, expires_at = record
            if time.monotonic() >= expires_at:
                del self._records[session_id]
                logger.debug("Removed expired session record")
                return None

            return data

    async def set(self, session_id: str, data: str, ttl_seconds: int) -> None:
        async with self._lock:
            self._records[session_id] = (data, time.monotonic() + ttl_seconds)

    async def delete(self, session_id: str) -> None:
        async with self._lock:
            self._records.pop(session_id, None)

    async def purge_expired(self) -> int:
        """Drop expired records and return how many were removed."""
        async with self._lock:
            now = time.monotonic()
            expired = [key for key, (_, expires_at) in self._records.items() if now >= expires_at]
            for key in expired:
                del self._records[key]
            return len(expired)

    def __len__(self) -> int:
        return len(self._records)


async def purge_sessions_periodically(store: InMemorySessionStore, interval_seconds: float) -> None:
    """
    Purge expired records every ``interval_seconds`` until cancelled.

    Records of browsers that never come back are otherwise only dropped when
    their id is read again.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            removed = await store.purge_expired()
        except Exception as e:
            logger.error(f"Session purge failed: {e}", exc_info=True)
            continue

        if removed:
            logger.debug(f"Purged {removed} expired session record(s)")


# =============================================================================
# Session Manager
# =============================================================================

class SessionManager:
    """
    Establishes, clears and reads authenticated sessions.

    Every method takes the browser's cookie-backed session mapping
    (``request.session``); only the opaque session id is kept in it.

    Args:
        store: Backing store for session records
        lifetime: How long a session stays valid after the last login
    """

    def __init__(self, store: SessionStore, lifetime: timedelta = timedelta(minutes=60)):
        self.store = store
        self.lifetime = lifetime
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    async def establish(self, cookie: MutableMapping, principal: Principal) -> Session:
        """
        Attach a principal to the browser session.

        Replaces any principal already present; nothing is merged. The
        session id is kept only when the same principal logs in again;
        otherwise the old record is dropped and a fresh id is issued.

        Returns:
            The stored session record
        """
        if principal is None:
            raise ValueError("Cannot establish a session without a principal")

        current_id = cookie.get(SESSION_ID_KEY)
        if not current_id:
            current_id = secrets.token_urlsafe(32)

        async with self._lock_for(current_id):
            existing = await self._load(current_id)
            now = utcnow()

            if existing is not None and _same_principal(existing.principal, principal):
                session_id = current_id
                created_at = existing.created_at
            else:
                session_id = secrets.token_urlsafe(32)
                created_at = now
                await self.store.delete(current_id)

            session = Session(
                id=session_id,
                principal=principal,
                created_at=created_at,
                last_seen_at=now,
            )
            await self.store.set(session_id, session.model_dump_json(), self._ttl_seconds)
            cookie[SESSION_ID_KEY] = session_id

        logger.info(
            "Session established",
            extra={
                "provider_user_id": principal.id,
                "rotated": session_id != current_id,
                "replaced": bool(existing and existing.principal),
            }
        )

        return session

    async def clear(self, cookie: MutableMapping) -> None:
        """Remove the principal and destroy the session record."""
        session_id = cookie.pop(SESSION_ID_KEY, None)
        if not session_id:
            return

        async with self._lock_for(session_id):
            await self.store.delete(session_id)

        logger.info("Session cleared")

    async def current_principal(self, cookie: MutableMapping) -> Optional[Principal]:
        """
        Return the authenticated principal, or None when anonymous.

        Never raises: unreadable or expired sessions read as anonymous.
        """
        session = await self.get_session(cookie)
        return session.principal if session else None

    async def get_session(self, cookie: MutableMapping) -> Optional[Session]:
        session_id = cookie.get(SESSION_ID_KEY)
        if not session_id:
            return None

        try:
            return await self._load(session_id)
        except Exception as e:
            logger.error(f"Failed to read session: {e}", exc_info=True)
            return None

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @property
    def _ttl_seconds(self) -> int:
        return int(self.lifetime.total_seconds())

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def _load(self, session_id: str) -> Optional[Session]:
        data = await self.store.get(session_id)
        if data is None:
            return None

        try:
            session = Session.model_validate_json(data)
        except PydanticValidationError:
            logger.warning("Discarding unreadable session record")
            return None

        if utcnow() - session.last_seen_at >= self.lifetime:
            logger.debug("Session expired")
            return None

        return session


def _same_principal(stored: Optional[Principal], principal: Principal) -> bool:
    if stored is None:
        return False
    return (stored.provider, stored.id) == (principal.provider, principal.id)


# =============================================================================
# FastAPI Dependencies
# =============================================================================

def get_session_manager(request: Request) -> SessionManager:
    manager = getattr(request.app.state, "session_manager", None)
    if manager is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session manager not initialized"
        )
    return manager


async def get_current_principal(
    request: Request,
    manager: SessionManager = Depends(get_session_manager),
) -> Optional[Principal]:
    """
    FastAPI dependency for optional authentication.

    Usage:
        @app.get("/optional-auth")
        async def route(principal = Depends(get_current_principal)):
            ...
    """
    return await manager.current_principal(request.session)


async def require_principal(
    principal: Optional[Principal] = Depends(get_current_principal),
) -> Principal:
    """
    FastAPI dependency for routes that need an authenticated session.

    Raises:
        HTTPException: 401 if the session is anonymous
    """
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return principal


__all__ = [
    "SESSION_ID_KEY",
    "SessionStore",
    "InMemorySessionStore",
    "SessionManager",
    "purge_sessions_periodically",
    "get_session_manager",
    "get_current_principal",
    "require_principal",
]
