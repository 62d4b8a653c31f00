"""Resilient HTTP request layer for the remote node service.

Every outbound call goes through :meth:`ResilientRequestClient.execute`,
which never raises for ordinary HTTP-level failures.  It returns a
:class:`RequestOutcome` whose :class:`OutcomeKind` the caller must switch
on.

Status dispatch (checked before the generic retry path):

* ``429`` -- wait ``rate_limit_cooldown_seconds`` and retry without
  taking the backoff path.
* ``404`` -- ``NOT_FOUND`` immediately (wallet unknown to the service).
* ``405`` -- ``ALREADY_DONE`` immediately (action already performed
  today); callers treat it as success.
* anything else (network errors, 5xx, other 4xx, unparsable bodies) --
  linear backoff ``retry_delay * attempt`` until the attempt ceiling,
  then ``EXHAUSTED_RETRIES``.

A realised success is followed by a short cooldown so the next call from
the same caller does not hammer the service.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, Optional

import aiohttp
from aiohttp_socks import ProxyConnector, ProxyError
from faker import Faker

from core.config import NodeSettings
from core.exceptions import TransientNetworkError
from core.proxy_manager import ProxyRoute
from core.utils import StopSignal, interruptible_sleep

logger = logging.getLogger(__name__)

_faker = Faker()


class OutcomeKind(Enum):
    """Discriminator for :class:`RequestOutcome`."""
    SUCCESS = "success"
    NOT_FOUND = "not_found"  # 404 - wallet not known to the service yet
    ALREADY_DONE = "already_done"  # 405 - action already performed today
    RATE_LIMITED = "rate_limited"  # 429 on the final permitted attempt
    TRANSIENT_FAILURE = "transient_failure"  # one failed attempt
    EXHAUSTED_RETRIES = "exhausted_retries"


@dataclass(frozen=True)
class RequestOutcome:
    """Result of one logical request (possibly several HTTP attempts).

    Attributes:
        kind: Which outcome this is.
        payload: Decoded JSON body (``SUCCESS`` only).
        status: Last HTTP status seen, if any.
        reason: Failure description for logging.
        attempts: Number of HTTP attempts made.
    """

    kind: OutcomeKind
    payload: Any = None
    status: Optional[int] = None
    reason: Optional[str] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        """``True`` for ``SUCCESS`` and the idempotent ``ALREADY_DONE``."""
        return self.kind in (OutcomeKind.SUCCESS, OutcomeKind.ALREADY_DONE)

    @classmethod
    def success(cls, payload: Any, status: int = 200) -> "RequestOutcome":
        return cls(OutcomeKind.SUCCESS, payload=payload, status=status)

    @classmethod
    def not_found(cls) -> "RequestOutcome":
        return cls(OutcomeKind.NOT_FOUND, status=404, reason="not registered yet")

    @classmethod
    def already_done(cls) -> "RequestOutcome":
        return cls(OutcomeKind.ALREADY_DONE, status=405, reason="already done today")

    @classmethod
    def rate_limited(cls) -> "RequestOutcome":
        return cls(OutcomeKind.RATE_LIMITED, status=429, reason="rate limited")

    @classmethod
    def transient(cls, reason: str, status: Optional[int] = None) -> "RequestOutcome":
        return cls(OutcomeKind.TRANSIENT_FAILURE, status=status, reason=reason)

    @classmethod
    def exhausted(cls, reason: Optional[str], attempts: int,
                  status: Optional[int] = None) -> "RequestOutcome":
        return cls(OutcomeKind.EXHAUSTED_RETRIES, status=status,
                   reason=reason, attempts=attempts)


def random_user_agent() -> str:
    """Plausible desktop Chrome or Firefox user-agent string."""
    platform = random.choice([
        _faker.windows_platform_token,
        _faker.mac_platform_token,
        _faker.linux_platform_token,
    ])()
    if random.random() < 0.7:
        major = _faker.random_int(120, 131)
        return (
            f"Mozilla/5.0 ({platform}) AppleWebKit/537.36 "
            f"(KHTML, like Gecko) Chrome/{major}.0.0.0 Safari/537.36"
        )
    major = _faker.random_int(120, 133)
    return f"Mozilla/5.0 ({platform}; rv:{major}.0) Gecko/20100101 Firefox/{major}.0"


class ResilientRequestClient:
    """Issue JSON requests with timeout, proxy routing and retry policy.

    One client per wallet session.  The attempt counter is local to each
    :meth:`execute` call; there is no shared rate-limit state.
    """

    def __init__(
        self,
        settings: NodeSettings,
        proxy: Optional[ProxyRoute] = None,
        session: Optional[aiohttp.ClientSession] = None,
        stop_signal: Optional[StopSignal] = None,
        user_agent_factory: Callable[[], str] = random_user_agent,
    ) -> None:
        """
        Args:
            settings: Global configuration (timeouts, retry policy).
            proxy: Optional outbound route.
            session: Injected transport.  When given, the client never
                creates or closes sessions itself.
            stop_signal: Shutdown flag; interrupts cooldowns and backoff.
            user_agent_factory: Returns a fresh user agent per attempt.
        """
        self.timeout = settings.request_timeout_seconds
        self.max_retries = settings.request_max_retries
        self.retry_delay = settings.request_retry_delay_seconds
        self.rate_limit_cooldown = settings.rate_limit_cooldown_seconds
        self.success_cooldown = settings.success_cooldown_seconds
        self.origin = settings.dashboard_origin
        self.stop_signal = stop_signal
        self.user_agent_factory = user_agent_factory

        self._proxy = proxy
        self._session = session
        self._owns_session = session is None

    @property
    def proxy(self) -> Optional[ProxyRoute]:
        return self._proxy

    async def set_proxy(self, route: Optional[ProxyRoute]) -> None:
        """Switch the outbound route, recycling the owned session."""
        if route == self._proxy:
            return
        self._proxy = route
        if self._owns_session:
            await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if not self._owns_session:
            return self._session
        if self._session is None or self._session.closed:
            connector = None
            if self._proxy is not None and self._proxy.is_socks:
                connector = ProxyConnector.from_url(self._proxy.to_url())
            self._session = aiohttp.ClientSession(connector=connector)
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        if self._owns_session:
            self._session = None

    def build_headers(self) -> Dict[str, str]:
        """Fresh non-identifying headers for one attempt."""
        return {
            "Accept": "application/json, text/plain, */*",
            "Accept-Language": "en-US,en;q=0.9",
            "Origin": self.origin,
            "Referer": f"{self.origin}/",
            "User-Agent": self.user_agent_factory(),
        }

    def backoff_delay(self, attempt: int) -> float:
        """Delay after failed attempt number *attempt* (1-based)."""
        return self.retry_delay * attempt

    async def _attempt(self, method: str, url: str, body: Optional[Dict[str, Any]]) -> RequestOutcome:
        """Perform one HTTP attempt and classify it."""
        session = await self._get_session()
        kwargs: Dict[str, Any] = {
            "headers": self.build_headers(),
            "timeout": aiohttp.ClientTimeout(total=self.timeout),
        }
        if body is not None:
            kwargs["json"] = body
        if self._proxy is not None and not self._proxy.is_socks:
            kwargs["proxy"] = self._proxy.to_url()

        try:
            async with session.request(method, url, **kwargs) as response:
                status = response.status
                if status == 429:
                    return RequestOutcome.rate_limited()
                if status == 404:
                    return RequestOutcome.not_found()
                if status == 405:
                    return RequestOutcome.already_done()
                if status >= 400:
                    text = await response.text()
                    return RequestOutcome.transient(f"HTTP {status}: {text[:200]}", status)
                try:
                    payload = await response.json(content_type=None)
                except ValueError as exc:
                    return RequestOutcome.transient(f"Invalid JSON body: {exc}", status)
                return RequestOutcome.success(payload, status)
        except (aiohttp.ClientError, asyncio.TimeoutError, ProxyError, OSError) as exc:
            return RequestOutcome.transient(f"{type(exc).__name__}: {exc}")

    async def execute(
        self,
        method: str,
        url: str,
        body: Optional[Dict[str, Any]] = None,
        *,
        raise_on_exhausted: bool = False,
        max_attempts: Optional[int] = None,
    ) -> RequestOutcome:
        """Run the request under the retry policy.

        Args:
            method: HTTP method (``GET`` / ``POST``).
            url: Absolute URL.
            body: Optional JSON body.
            raise_on_exhausted: Raise :class:`TransientNetworkError`
                instead of returning ``EXHAUSTED_RETRIES``.
            max_attempts: Attempt ceiling for this call only (defaults to
                ``request_max_retries``).

        Returns:
            The final :class:`RequestOutcome`.
        """
        method = method.upper()
        limit = max_attempts or self.max_retries
        last: Optional[RequestOutcome] = None
        attempt = 0
        interrupted = False

        for attempt in range(1, limit + 1):
            outcome = await self._attempt(method, url, body)

            if outcome.kind is OutcomeKind.SUCCESS:
                await interruptible_sleep(self.success_cooldown, self.stop_signal)
                return replace(outcome, attempts=attempt)

            if outcome.kind in (OutcomeKind.NOT_FOUND, OutcomeKind.ALREADY_DONE):
                if outcome.kind is OutcomeKind.NOT_FOUND:
                    logger.debug("%s %s -> 404, wallet not registered yet", method, url)
                return replace(outcome, attempts=attempt)

            last = outcome
            if attempt == limit:
                break

            if outcome.kind is OutcomeKind.RATE_LIMITED:
                logger.debug("Rate limited on %s, cooling down %.0fs", url, self.rate_limit_cooldown)
                delay = self.rate_limit_cooldown
            else:
                delay = self.backoff_delay(attempt)
                logger.debug(
                    "Request failed: %s => retrying in %.0fs (%d/%d)",
                    outcome.reason, delay, attempt, limit,
                )

            if await interruptible_sleep(delay, self.stop_signal):
                interrupted = True
                break

        if last is not None and last.kind is OutcomeKind.RATE_LIMITED and not interrupted:
            logger.warning("%s %s still rate limited after %d attempts", method, url, attempt)
            return replace(last, attempts=attempt)

        reason = "shutdown requested" if interrupted else (last.reason if last else "no attempts made")
        logger.warning("Max retries reached - %s %s failed: %s", method, url, reason)
        if self._proxy is not None and not interrupted:
            logger.warning("Failed proxy: %s", self._proxy.masked())

        if raise_on_exhausted:
            raise TransientNetworkError(url, reason)
        return RequestOutcome.exhausted(reason, attempt, last.status if last else None)

    async def get(self, url: str, **kwargs: Any) -> RequestOutcome:
        return await self.execute("GET", url, **kwargs)

    async def post(self, url: str, body: Optional[Dict[str, Any]] = None, **kwargs: Any) -> RequestOutcome:
        return await self.execute("POST", url, body, **kwargs)
