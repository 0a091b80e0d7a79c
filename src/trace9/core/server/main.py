"""Trace-9 server entry point: ``python -m trace9.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from trace9.core.config.settings import get_settings
from trace9.core.server.app import create_app


def _is_loopback_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def run() -> None:
    """Start the Trace-9 MCP server with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(level=getattr(logging, settings.trace9_log_level.upper(), logging.INFO))

    logger = logging.getLogger(__name__)
    if not settings.trace9_allow_insecure_bind and not _is_loopback_host(settings.trace9_host):
        raise RuntimeError(
            "Refusing to bind Trace-9 to a non-loopback host without an auth layer. "
            "Set TRACE9_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )
    logger.info("Starting Trace-9 server on %s:%d", settings.trace9_host, settings.trace9_port)

    mcp = create_app()
    mcp.run(
        transport="streamable-http",
        host=settings.trace9_host,
        port=settings.trace9_port,
    )


if __name__ == "__main__":
    run()
