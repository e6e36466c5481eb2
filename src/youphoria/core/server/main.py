"""Youphoria server entry point: ``python -m youphoria.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from youphoria.core.config.settings import get_settings
from youphoria.core.server.app import create_app
from youphoria.core.server.middleware import build_middleware


def _is_loopback_host(host: str) -> bool:
    if host in {"localhost"}:
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def run() -> None:
    """Start the MCP endpoint and the JSON API on one Streamable HTTP server."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.youphoria_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger = logging.getLogger(__name__)
    if not settings.youphoria_allow_insecure_bind and not _is_loopback_host(settings.youphoria_host):
        raise RuntimeError(
            "Refusing to bind the Youphoria server to a non-loopback host: the API trusts "
            "X-User-Id and has no auth layer. Set YOUPHORIA_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )
    logger.info(
        "Starting Youphoria Health server on %s:%d",
        settings.youphoria_host,
        settings.youphoria_port,
    )

    mcp = create_app(settings=settings)
    mcp.run(
        transport="streamable-http",
        host=settings.youphoria_host,
        port=settings.youphoria_port,
        middleware=build_middleware(settings),
    )


if __name__ == "__main__":
    run()
