# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Gchat Contributors

"""Outbound packet transport through the local SOCKS proxy.

Two long-lived ``httpx.AsyncClient`` instances, one per traffic class,
share the proxy endpoint but keep separate pools so large media transfers
never queue small control packets behind them.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from ..core.exceptions import RetryExhausted
from .policy import DEFAULT_POLICIES, TrafficClass, TrafficPolicy

logger = logging.getLogger(__name__)

PACKET_PATH = "/gchat/packet"
HEALTH_PATH = "/gchat/health"


@dataclass(frozen=True)
class SendResult:
    """Outcome of a completed (or deliberately abandoned) exchange."""

    ok: bool
    status: int | None
    attempts: int
    aborted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "status": self.status,
            "attempts": self.attempts,
            "aborted": self.aborted,
        }


@dataclass
class TransportClients:
    """The two pooled clients, created once at startup and closed on shutdown."""

    control: httpx.AsyncClient
    bulk: httpx.AsyncClient

    @classmethod
    def create(
        cls,
        proxy_url: str,
        policies: dict[TrafficClass, TrafficPolicy] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> TransportClients:
        """Build both clients.

        Args:
            proxy_url: ``socks5://host:port`` of the daemon's SOCKS listener.
            policies: Per-class policies (defaults to the standard ones).
            transport: Replacement transport, used instead of the proxy (tests).
        """
        policies = policies or DEFAULT_POLICIES
        return cls(
            control=cls._client(proxy_url, policies[TrafficClass.CONTROL], transport),
            bulk=cls._client(proxy_url, policies[TrafficClass.BULK], transport),
        )

    @staticmethod
    def _client(
        proxy_url: str,
        policy: TrafficPolicy,
        transport: httpx.AsyncBaseTransport | None,
    ) -> httpx.AsyncClient:
        kwargs: dict[str, Any] = {
            "timeout": httpx.Timeout(policy.timeout),
            "limits": httpx.Limits(keepalive_expiry=policy.idle_expiry),
            "headers": {"Connection": "keep-alive"},
        }
        if transport is not None:
            kwargs["transport"] = transport
        else:
            kwargs["proxy"] = proxy_url
        return httpx.AsyncClient(**kwargs)

    def for_class(self, traffic: TrafficClass) -> httpx.AsyncClient:
        return self.bulk if traffic == TrafficClass.BULK else self.control

    async def aclose(self) -> None:
        await self.control.aclose()
        await self.bulk.aclose()


def peer_url(target: str, path: str) -> str:
    """``http://<address>.onion<path>`` for a bare or suffixed address."""
    host = target.strip().removeprefix("http://").rstrip("/")
    if "." not in host:
        host = f"{host}.onion"
    if not path.startswith("/"):
        path = f"/{path}"
    return f"http://{host}{path}"


class PacketTransport:
    """Sends requests to peers with per-class retry policy."""

    def __init__(
        self,
        clients: TransportClients,
        is_shutting_down: Callable[[], bool] | None = None,
        policies: dict[TrafficClass, TrafficPolicy] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        rand: Callable[[], float] = random.random,
    ):
        self.clients = clients
        self.policies = policies or DEFAULT_POLICIES
        self._is_shutting_down = is_shutting_down or (lambda: False)
        self._sleep = sleep or asyncio.sleep
        self._rand = rand

        # Stats
        self.requests_sent = 0
        self.retries = 0
        self.failures = 0

    async def send(
        self,
        target: str,
        path: str,
        payload: Any = None,
        traffic: TrafficClass = TrafficClass.CONTROL,
        method: str = "POST",
        max_attempts: int | None = None,
    ) -> SendResult:
        """Send one request to ``target``.

        Any HTTP status counts as a completed exchange. Each attempt, body
        included, must finish within the class timeout. Transport errors and
        timeouts are retried per the class policy, unless shutdown has begun, in which
        case the call gives up quietly with ``aborted=True``.

        Args:
            max_attempts: Cap below the class policy (fan-out sends use 1).

        Raises:
            RetryExhausted: The last permitted attempt failed.
        """
        policy = self.policies[traffic]
        client = self.clients.for_class(traffic)
        url = peer_url(target, path)
        attempts = policy.attempts if max_attempts is None else max(1, min(max_attempts, policy.attempts))

        for attempt in range(attempts):
            if attempt > 0 and self._is_shutting_down():
                return SendResult(ok=False, status=None, attempts=attempt, aborted=True)

            try:
                self.requests_sent += 1
                async with asyncio.timeout(policy.timeout):
                    if method.upper() == "GET":
                        response = await client.get(url)
                    else:
                        response = await client.request(method, url, json=payload)
                return SendResult(
                    ok=200 <= response.status_code < 300,
                    status=response.status_code,
                    attempts=attempt + 1,
                )
            except (httpx.TransportError, TimeoutError) as e:
                if self._is_shutting_down():
                    return SendResult(ok=False, status=None, attempts=attempt + 1, aborted=True)
                if attempt == attempts - 1:
                    self.failures += 1
                    raise RetryExhausted(url, attempts, cause=e) from e

                self.retries += 1
                delay = policy.backoff(attempt, self._rand)
                if policy.log_retries:
                    logger.warning(f"Retry {attempt + 1}/{attempts} for {url}. Error: {e!r}")
                await self._sleep(delay)

        # attempts < 1 is a misconfigured policy
        raise RetryExhausted(url, 0)

    async def send_packet(
        self,
        target: str,
        payload: dict[str, Any],
        traffic: TrafficClass = TrafficClass.CONTROL,
        max_attempts: int | None = None,
    ) -> SendResult:
        return await self.send(target, PACKET_PATH, payload, traffic, max_attempts=max_attempts)

    async def ping(self, target: str) -> SendResult:
        """Single-attempt liveness check over the bulk client."""
        return await self.send(target, HEALTH_PATH, traffic=TrafficClass.BULK, method="GET")

    def get_stats(self) -> dict[str, int]:
        return {
            "requests_sent": self.requests_sent,
            "retries": self.retries,
            "failures": self.failures,
        }
