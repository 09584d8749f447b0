"""Host agent: serves this machine's metrics for the fleet poller."""

import logging
from typing import Any

import psutil
from aiohttp import web

from fleettop.config import get_settings
from fleettop.logging_config import setup_logging

logger = logging.getLogger(__name__)


def collect_metrics() -> dict[str, Any]:
    """
    Collect disk, CPU and memory usage of the local host.

    Partitions that cannot be read (permissions, vanished mounts) are skipped.
    """
    disks = []
    for part in psutil.disk_partitions(all=False):
        try:
            usage = psutil.disk_usage(part.mountpoint)
        except (PermissionError, OSError):
            continue
        disks.append(
            {
                "mount_point": part.mountpoint,
                "total": usage.total,
                "used": usage.used,
                "used_percent": usage.percent,
            }
        )

    # Non-blocking: compares against the previous call
    per_core = psutil.cpu_percent(percpu=True)
    try:
        freqs = psutil.cpu_freq(percpu=True) or []
    except (NotImplementedError, OSError):
        freqs = []
    cpus = []
    for i, usage in enumerate(per_core):
        freq = freqs[i].current if i < len(freqs) else 0.0
        cpus.append({"name": f"cpu{i}", "cpu_usage": usage, "frequency": int(freq)})

    mem = psutil.virtual_memory()
    return {
        "disk_usage": disks,
        "cpu_usage": sum(per_core) / len(per_core) if per_core else 0.0,
        "cpus": cpus,
        "total_memory": mem.total,
        "used_memory": mem.used,
        "memory_percent": mem.percent,
    }


async def handle_usage(request: web.Request) -> web.Response:
    return web.json_response(collect_metrics())


def create_app() -> web.Application:
    """Build the agent's web application."""
    # Prime the CPU counters so the first request has a real reading
    psutil.cpu_percent(percpu=True)
    app = web.Application()
    app.router.add_get("/usage", handle_usage)
    return app


def main() -> None:
    """Entry point for the fleettop host agent."""
    settings = get_settings()
    setup_logging("agent", level=settings.LOG_LEVEL)
    logger.info("Agent serving metrics on http://%s:%d/usage", settings.AGENT_HOST, settings.AGENT_PORT)
    web.run_app(create_app(), host=settings.AGENT_HOST, port=settings.AGENT_PORT, print=None)


if __name__ == "__main__":
    main()
