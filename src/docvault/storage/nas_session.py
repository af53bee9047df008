"""
Session handling for the NAS FileStation API.

A ``NasSessionManager`` owns the login credentials and, when caching is
enabled, a single cached session shared by concurrent operations until it
expires. The cache slot is guarded by an ``asyncio.Lock`` so a release that
clears the slot cannot interleave with an acquire reading it.

Typical use is the ``session()`` context, which guarantees exactly one
release per acquire::

    async with manager.session() as session:
        await storage.upload(session, request)

A failure inside the context that carries one of the DSM session-invalid
codes evicts the session instead of keeping it cached.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Optional

from loguru import logger

from docvault.errors import AuthError, DocVaultError
from docvault.storage.filestation import SESSION_INVALID_CODES, FileStationClient

AUTH_API = "SYNO.API.Auth"
AUTH_VERSION = 6
SESSION_NAME = "FileStation"


@dataclass(eq=False)
class NasSession:
    token: str = field(repr=False)
    issued_at: float
    expires_at: Optional[float] = None
    cache_eligible: bool = False
    released: bool = False

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class NasSessionManager:
    def __init__(
        self,
        client: FileStationClient,
        username: str,
        password: str,
        cache_enabled: bool = False,
        cache_ttl: float = 900.0,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.username = username
        self._password = password
        self.cache_enabled = cache_enabled
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._cached: Optional[NasSession] = None
        self._live: set[NasSession] = set()
        self._lock = asyncio.Lock()

    @property
    def cached_session(self) -> Optional[NasSession]:
        return self._cached

    async def acquire(self) -> NasSession:
        if not self.cache_enabled:
            return await self._login(cache_eligible=False)

        async with self._lock:
            now = self._clock()
            cached = self._cached
            if cached is not None and not cached.is_expired(now):
                logger.debug("Reusing cached NAS session")
                return cached

            if cached is not None:
                logger.debug("Cached NAS session expired, logging in again")
                self._cached = None
                await self._logout(cached)

            session = await self._login(cache_eligible=True)
            self._cached = session
            return session

    async def release(self, session: NasSession, clear_cache: bool = False) -> None:
        if session.released or session not in self._live:
            logger.warning("Release requested for an unknown or already released NAS session")
            return

        if session.cache_eligible:
            async with self._lock:
                if self._cached is session:
                    if not clear_cache:
                        logger.debug("Keeping cached NAS session alive for reuse")
                        return
                    self._cached = None
                await self._logout(session)
            return

        await self._logout(session)

    @asynccontextmanager
    async def session(self, clear_cache: bool = False) -> AsyncIterator[NasSession]:
        session = await self.acquire()
        try:
            yield session
        except DocVaultError as e:
            if e.code in SESSION_INVALID_CODES:
                logger.warning(f"NAS rejected the session (code {e.code}), evicting it")
                clear_cache = True
            raise
        finally:
            await self.release(session, clear_cache=clear_cache)

    async def close(self) -> None:
        async with self._lock:
            cached = self._cached
            self._cached = None
        if cached is not None and not cached.released:
            await self._logout(cached)
        await self.client.close()

    async def _login(self, cache_eligible: bool) -> NasSession:
        params = {
            "api": AUTH_API,
            "version": AUTH_VERSION,
            "method": "login",
            "account": self.username,
            "passwd": self._password,
            "session": SESSION_NAME,
            "format": "sid",
        }
        logger.debug(f"Authenticating with NAS as {self.username}")
        data = await self.client.call(params, AuthError, cgi="auth.cgi")

        token = data.get("sid")
        if not token:
            raise AuthError("NAS login returned no session id")

        issued_at = self._clock()
        expires_at = issued_at + self.cache_ttl if cache_eligible else None
        session = NasSession(
            token=token,
            issued_at=issued_at,
            expires_at=expires_at,
            cache_eligible=cache_eligible,
        )
        self._live.add(session)
        logger.info("Authenticated with NAS")
        return session

    async def _logout(self, session: NasSession) -> None:
        session.released = True
        self._live.discard(session)
        params = {
            "api": AUTH_API,
            "version": AUTH_VERSION,
            "method": "logout",
            "session": SESSION_NAME,
            "_sid": session.token,
        }
        try:
            await self.client.call(params, AuthError, cgi="auth.cgi")
            logger.debug("Logged out NAS session")
        except DocVaultError as e:
            logger.warning(f"NAS logout failed: {e}")
