"""Probe client: fetches and classifies the metrics of one target."""

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from typing import Any

import aiohttp

from fleettop.models import (
    ConnectionFailure,
    DiskUsage,
    ParseFailure,
    ProbeOutcome,
    SiteUp,
    Success,
    Target,
    Timeout,
)

logger = logging.getLogger(__name__)

DEFAULT_METRICS_PATH = "/usage"

ProbeFunc = Callable[[Target], Awaitable[ProbeOutcome]]


def build_url(address: str, path: str = DEFAULT_METRICS_PATH) -> str:
    """Build the metrics URL for an address; full URLs are used as given."""
    if address.startswith(("http://", "https://")):
        return address
    if not path.startswith("/"):
        path = "/" + path
    return f"http://{address.rstrip('/')}{path}"


def _number(data: dict[str, Any], key: str, where: str = "") -> float:
    value = data.get(key)
    # bool is an int subclass but never a valid reading
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{where}{key!r} missing or not a number")
    # json accepts NaN and Infinity literals
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"{where}{key!r} is not finite")
    if value < 0:
        raise ValueError(f"{where}{key!r} is negative")
    return value


def parse_metrics(payload: Any) -> Success:
    """
    Interpret an agent's JSON body as metrics.

    Raises:
        ValueError: If a required field is missing, not numeric, negative,
            not finite, or a used amount exceeds its total.
    """
    if not isinstance(payload, dict):
        raise ValueError("metrics body is not a JSON object")

    cpu_percent = float(_number(payload, "cpu_usage"))
    mem_total = int(_number(payload, "total_memory"))
    mem_used = int(_number(payload, "used_memory"))
    if mem_used > mem_total:
        raise ValueError("used_memory exceeds total_memory")

    raw_disks = payload.get("disk_usage")
    if not isinstance(raw_disks, list):
        raise ValueError("'disk_usage' missing or not a list")

    disks: list[DiskUsage] = []
    for index, raw in enumerate(raw_disks):
        if not isinstance(raw, dict):
            raise ValueError(f"disk_usage[{index}] is not an object")
        where = f"disk_usage[{index}]."
        total = int(_number(raw, "total", where))
        used = int(_number(raw, "used", where))
        if used > total:
            raise ValueError(f"{where}used exceeds total")
        disks.append(
            DiskUsage(mount_point=str(raw.get("mount_point", "")), total=total, used=used)
        )

    return Success(
        disk_used=sum(d.used for d in disks),
        disk_total=sum(d.total for d in disks),
        cpu_percent=cpu_percent,
        mem_used=mem_used,
        mem_total=mem_total,
        disks=tuple(disks),
    )


class HttpProbe:
    """
    Issues one GET per probe to a target and classifies the result.

    Servers are asked for their agent's metrics at ``path``; websites are
    fetched at their own address and only the status code is checked.

    Never raises for a per-target failure: timeouts, connection errors and
    unusable responses all come back as ProbeOutcome variants. No retries;
    the next poll round is the retry.
    """

    def __init__(
        self,
        timeout: float = 3.0,
        path: str = DEFAULT_METRICS_PATH,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """
        Initialize the HttpProbe.

        Args:
            timeout: Total time allowed for one request, in seconds.
            path: Metrics path appended to bare host[:port] addresses.
            session: Optional session to use. If omitted, one is created on
                first use inside the running event loop and owned by the probe.
        """
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._path = path
        self._session = session
        self._owns_session = session is None

    @property
    def timeout(self) -> float:
        return self._timeout.total

    async def __call__(self, target: Target) -> ProbeOutcome:
        return await self.probe(target)

    async def probe(self, target: Target) -> ProbeOutcome:
        """Probe one target once."""
        if target.kind == "website":
            url = build_url(target.address, "")
        else:
            url = build_url(target.address, self._path)
        session = self._get_session()
        try:
            async with session.get(url, timeout=self._timeout) as resp:
                if not 200 <= resp.status < 300:
                    return self._invalid(target, f"HTTP {resp.status}")
                if target.kind == "website":
                    return SiteUp(status_code=resp.status)
                try:
                    payload = await resp.json(content_type=None)
                except ValueError as e:
                    return self._invalid(target, f"body is not JSON: {e}")
        except asyncio.TimeoutError:
            logger.warning("Probe of %s (%s) timed out", target.name, url)
            return Timeout()
        except aiohttp.ClientError as e:
            logger.warning("Error contacting %s (%s): %s", target.name, url, e)
            return ConnectionFailure(reason=str(e) or type(e).__name__)

        try:
            return parse_metrics(payload)
        except (ValueError, OverflowError) as e:
            return self._invalid(target, str(e))

    def _invalid(self, target: Target, reason: str) -> ParseFailure:
        logger.warning("Invalid metrics from %s: %s", target.name, reason)
        return ParseFailure(reason=reason)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": "fleettop"},
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the session if this probe created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
