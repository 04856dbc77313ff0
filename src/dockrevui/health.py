"""
Supervisor health monitoring.

The supervisor is the separate helper process that upgrades Dockrev itself.
The self-upgrade action is only offered while the monitor is in the "ok"
state.

State machine:
  idle     --check()--> checking
  checking --success--> ok        (ok keeps the previous ok time as last_ok_at)
  checking --failure--> offline   (timeouts count as failures)
  ok       --check()--> checking  (carries last_ok_at)
  offline  --check()--> checking  (carries last_ok_at, last_error_at, last_error)

check() probes GET <base>/self-upgrade, an authenticated endpoint, so a
supervisor that would answer 401 is not reported as healthy. The probe is
cancelled after the timeout (1.2s by default). Failures become an offline
state with a readable reason; check() never raises for network problems.

Overlapping check() calls are allowed. Only the most recently started probe
may settle the state; older probes finish silently.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Union
from urllib.parse import urljoin, urlsplit

import httpx

from .backend import ApiError
from .config import normalize_base_url

logger = logging.getLogger(__name__)

PROBE_PATH = "self-upgrade"
PROBE_TIMEOUT = 1.2  # seconds
UNAUTHENTICATED_MESSAGE = "needs authentication (forward header)"


@dataclass(frozen=True)
class HealthIdle:
    status = "idle"


@dataclass(frozen=True)
class HealthChecking:
    last_ok_at: Optional[str] = None
    last_error_at: Optional[str] = None
    last_error: Optional[str] = None
    status = "checking"


@dataclass(frozen=True)
class HealthOk:
    ok_at: str
    last_ok_at: Optional[str] = None
    status = "ok"


@dataclass(frozen=True)
class HealthOffline:
    error_at: str
    error: str
    last_ok_at: Optional[str] = None
    status = "offline"


HealthState = Union[HealthIdle, HealthChecking, HealthOk, HealthOffline]


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Automatic supervisor check failed", exc_info=exc)


def checking_from(prev: HealthState) -> HealthChecking:
    if isinstance(prev, HealthOk):
        return HealthChecking(last_ok_at=prev.ok_at)
    if isinstance(prev, HealthOffline):
        return HealthChecking(last_ok_at=prev.last_ok_at, last_error_at=prev.error_at,
                              last_error=prev.error)
    if isinstance(prev, HealthChecking):
        return prev
    return HealthChecking()


def last_ok_of(state: HealthState) -> Optional[str]:
    if isinstance(state, HealthOk):
        return state.ok_at
    if isinstance(state, (HealthChecking, HealthOffline)):
        return state.last_ok_at
    return None


class SupervisorHealthMonitor:
    """Probes the supervisor and exposes one HealthState."""

    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None,
                 origin: Optional[str] = None, timeout: float = PROBE_TIMEOUT,
                 clock: Optional[Callable[[], str]] = None):
        self.base_url = normalize_base_url(base_url)
        self.origin = origin
        self.timeout = timeout
        self._client = client
        self._clock = clock or _utc_now_iso
        self._state: HealthState = HealthIdle()
        self._generation = 0
        self._listeners: set = set()
        self._mount_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> HealthState:
        return self._state

    @property
    def allows_self_upgrade(self) -> bool:
        return isinstance(self._state, HealthOk)

    @property
    def probe_url(self) -> str:
        base = urljoin(self.origin, self.base_url) if self.origin else self.base_url
        return urljoin(base, PROBE_PATH)

    def subscribe(self, listener: Callable[[HealthState], None]) -> Callable[[], None]:
        self._listeners.add(listener)
        return lambda: self._listeners.discard(listener)

    def _set_state(self, state: HealthState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Health listener failed")

    def mount(self) -> asyncio.Task:
        """Schedule the single automatic check; later calls return the same task."""
        if self._mount_task is None:
            self._mount_task = asyncio.get_running_loop().create_task(self.check())
            self._mount_task.add_done_callback(_log_task_failure)
        return self._mount_task

    def close(self) -> None:
        self._listeners.clear()

    async def check(self) -> HealthState:
        self._generation += 1
        generation = self._generation
        self._set_state(checking_from(self._state))

        error = await self._probe()

        if generation != self._generation:
            logger.debug("Discarding result of a superseded supervisor probe")
            return self._state

        prev_ok = last_ok_of(self._state)
        if error is None:
            self._set_state(HealthOk(ok_at=self._clock(), last_ok_at=prev_ok))
        else:
            logger.warning(f"Supervisor at {self.base_url} offline: {error}")
            self._set_state(HealthOffline(error_at=self._clock(), error=error, last_ok_at=prev_ok))
        return self._state

    async def _probe(self) -> Optional[str]:
        """GET the self-upgrade endpoint; None when healthy, else a readable reason."""
        try:
            url = self.probe_url
            scheme = urlsplit(url).scheme
        except ValueError as e:
            return f"self-upgrade URL is invalid: {e}"
        if scheme not in ("http", "https"):
            return f"self-upgrade URL is invalid: {url} is not an absolute http(s) URL"
        try:
            if self._client is not None:
                resp = await asyncio.wait_for(self._client.get(url), self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await asyncio.wait_for(client.get(url), self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return f"timed out after {self.timeout:g}s"
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            return f"self-upgrade URL is invalid: {e}"
        except httpx.HTTPError as e:
            return ApiError.from_transport(e).message

        if resp.status_code == 401:
            return UNAUTHENTICATED_MESSAGE
        if not resp.is_success:
            return ApiError.from_response(resp).message
        return None
