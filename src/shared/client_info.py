"""Client connection details used for rate limiting and session records."""

import ipaddress
import logging

from fastapi import Request

from src.config.settings import settings

logger = logging.getLogger(__name__)


def _valid_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        return False


def get_client_ip(request: Request, trust_proxy_headers: bool | None = None) -> str:
    """Best-effort client IP address.

    Proxy headers (X-Real-IP, then the first X-Forwarded-For entry) are only
    honored when ``trust_proxy_headers`` is enabled; otherwise a client could
    pick its own rate-limit identity.

    Args:
        request: Incoming request
        trust_proxy_headers: Override for ``settings.trust_proxy_headers``

    Returns:
        IP address string, or "unknown" when the transport does not expose one

    """
    if trust_proxy_headers is None:
        trust_proxy_headers = settings.trust_proxy_headers

    if trust_proxy_headers:
        real_ip = request.headers.get("x-real-ip", "").strip()
        if real_ip and _valid_ip(real_ip):
            return real_ip

        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # X-Forwarded-For may contain a list: client, proxy1, proxy2
            candidate = forwarded.split(",")[0].strip()
            if _valid_ip(candidate):
                return candidate
            logger.warning(f"Ignoring invalid X-Forwarded-For header: {forwarded}")

    if request.client:
        return request.client.host
    return "unknown"


def get_user_agent(request: Request) -> str | None:
    return request.headers.get("user-agent")
