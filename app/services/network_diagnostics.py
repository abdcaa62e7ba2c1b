"""
Startup connectivity diagnostics.

Corporate hosts often sit behind proxies or split DNS, which makes Graph
failures look like application bugs. These checks log what the process can
actually reach. They never raise.
"""

import asyncio
import os
import socket

import httpx

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

PROBE_TIMEOUT = 5  # seconds
PROXY_ENV_VARS = ("HTTP_PROXY", "HTTPS_PROXY", "NO_PROXY", "http_proxy", "https_proxy", "no_proxy")
DIAGNOSTIC_HOSTS = ("login.microsoftonline.com", "graph.microsoft.com")


def log_proxy_environment() -> dict[str, str]:
    """Log which proxy variables are set; values are logged as-is minus credentials."""
    found = {}
    for name in PROXY_ENV_VARS:
        value = os.environ.get(name)
        if value:
            found[name] = value.split("@")[-1]
    logger.info("Proxy environment", proxies=found or None)
    return found


async def resolve_host(host: str) -> list[str]:
    """DNS lookup through the event loop resolver; empty list on failure."""
    loop = asyncio.get_running_loop()
    try:
        infos = await asyncio.wait_for(
            loop.getaddrinfo(host, 443, type=socket.SOCK_STREAM), timeout=PROBE_TIMEOUT
        )
    except (OSError, TimeoutError) as e:
        logger.error("DNS lookup failed", host=host, error=str(e))
        return []

    addresses = sorted({info[4][0] for info in infos})
    logger.info("DNS lookup succeeded", host=host, addresses=addresses)
    return addresses


async def probe_https(host: str, client: httpx.AsyncClient | None = None) -> bool:
    """Any HTTP response counts as reachable; only transport errors fail."""
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=httpx.Timeout(PROBE_TIMEOUT))
    try:
        response = await client.get(f"https://{host}/")
        logger.info("HTTPS probe succeeded", host=host, status_code=response.status_code)
        return True
    except httpx.HTTPError as e:
        logger.error("HTTPS probe failed", host=host, error=str(e), error_type=type(e).__name__)
        return False
    finally:
        if owns_client:
            await client.aclose()


async def run_network_diagnostics(
    hosts: tuple[str, ...] = DIAGNOSTIC_HOSTS, client: httpx.AsyncClient | None = None
) -> dict[str, dict]:
    """Run proxy, DNS and HTTPS checks for each host and return a summary."""
    log_proxy_environment()

    results = {}
    for host in hosts:
        addresses = await resolve_host(host)
        reachable = await probe_https(host, client=client)
        results[host] = {"dns": addresses, "https": reachable}

    logger.info("Network diagnostics complete", results=results)
    return results
