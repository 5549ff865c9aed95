"""
Tuya access token handling
Owns the single shared session, the token exchange and the 2-hour refresher
"""

import asyncio
import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Optional

import requests

from errors import AuthError
from tuya_signer import sign_request

logger = logging.getLogger(__name__)

TOKEN_PATH = "/v1.0/token?grant_type=1"
REQUEST_TIMEOUT = 10
REFRESH_INTERVAL = 2 * 60 * 60  # 2 hours


@dataclass
class TuyaSession:
    token: Optional[str] = None
    obtained_at: Optional[float] = None

    @property
    def is_stale(self) -> bool:
        if self.token is None or self.obtained_at is None:
            return True
        return time.time() - self.obtained_at >= REFRESH_INTERVAL


class SessionManager:
    """
    Token exchange and storage.

    The session is written only by ensure_token() and refresh_token(). When
    several threads find no token at once they wait on the same pending
    exchange instead of each issuing one.
    """

    def __init__(self, host, access_key, secret_key, http=None):
        self.host = host.rstrip("/")
        self.access_key = access_key
        self.secret_key = secret_key
        self.http = http or requests.Session()
        self.session = TuyaSession()
        self._lock = threading.Lock()
        self._pending: Optional[Future] = None

    @property
    def has_token(self) -> bool:
        return bool(self.session.token)

    def ensure_token(self) -> str:
        """Return the held token, exchanging for one only when none is held"""
        with self._lock:
            if self.session.token:
                return self.session.token
            if self._pending is not None:
                pending, leader = self._pending, False
            else:
                pending = self._pending = Future()
                leader = True

        if not leader:
            return pending.result()

        try:
            token = self._exchange()
        except Exception as exc:
            pending.set_exception(exc)
            raise
        else:
            pending.set_result(token)
            return token
        finally:
            with self._lock:
                self._pending = None

    def refresh_token(self) -> str:
        """Always run one exchange and replace the held token"""
        return self._exchange()

    def _exchange(self) -> str:
        signed = sign_request(self.access_key, self.secret_key, "GET", TOKEN_PATH)

        try:
            response = self.http.request(
                "GET",
                self.host + signed.path,
                headers=signed.headers(),
                timeout=REQUEST_TIMEOUT,
            )
            response.raise_for_status()
            login = response.json()
        except requests.RequestException as exc:
            logger.error(f"[TOKEN] Token request failed: {exc}")
            raise AuthError(f"fetch failed: {exc}") from exc
        except ValueError as exc:
            logger.error("[TOKEN] Token response was not JSON")
            raise AuthError("fetch failed: invalid JSON response") from exc

        if not login or not login.get("success"):
            msg = (login or {}).get("msg")
            logger.error(f"[TOKEN] Token exchange rejected: {msg}")
            raise AuthError(f"fetch failed: {msg}", code=(login or {}).get("code"))

        token = (login.get("result") or {}).get("access_token")
        if not token:
            raise AuthError("fetch failed: response carried no access_token")

        with self._lock:
            self.session.token = token
            self.session.obtained_at = time.time()
        logger.info("[TOKEN] Access token obtained")
        return token


class TokenRefresher:
    """Background task that refreshes the token on a fixed period until stopped"""

    def __init__(self, manager: SessionManager, interval: float = REFRESH_INTERVAL):
        self.manager = manager
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"[TOKEN] Automatic refresh every {self.interval:g}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("[TOKEN] Automatic refresh stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await asyncio.to_thread(self.manager.refresh_token)
                logger.info("[TOKEN] Token refreshed automatically")
            except AuthError as exc:
                # Keep the old token until the next tick or a manual refresh.
                logger.error(f"[TOKEN] Automatic refresh failed: {exc}")
