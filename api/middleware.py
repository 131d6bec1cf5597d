"""Request middleware: tenant resolution and access logging.

The tenant (a Geeta Stores storefront) comes from the X-Tenant-ID header or
the first subdomain. It is stored in a ContextVar so repositories, the rule
store and the rule cache registry can call get_current_tenant() without
explicit parameter passing.
"""

import logging
import re
import time
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("geeta.access")

DEFAULT_TENANT = "default"
_TENANT_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

# ---------------------------------------------------------------------------
# Context variable: task-safe tenant state
# ---------------------------------------------------------------------------

_current_tenant: ContextVar[str] = ContextVar("current_tenant", default=DEFAULT_TENANT)


def get_current_tenant() -> str:
    """Return the tenant ID for the current request.

    Safe to call from any async context within the request lifecycle::

        tenant = get_current_tenant()
        cache = registry.get(tenant)
    """
    return _current_tenant.get()


def resolve_tenant(header_value: str | None, host: str) -> str:
    """Pick the tenant: explicit header, then subdomain, then the default.

    Values that are not a plain slug fall back to the default tenant.
    """
    candidate = header_value
    if not candidate:
        parts = host.split(":")[0].split(".")
        if len(parts) > 2:
            candidate = parts[0]
    if candidate and _TENANT_PATTERN.match(candidate):
        return candidate
    return DEFAULT_TENANT


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

class TenantMiddleware(BaseHTTPMiddleware):
    """Bind the request's tenant for the duration of the request."""

    async def dispatch(self, request: Request, call_next) -> Response:
        tenant_id = resolve_tenant(
            request.headers.get("X-Tenant-ID"),
            request.headers.get("host", ""),
        )
        token = _current_tenant.set(tenant_id)
        try:
            response = await call_next(request)
            return response
        finally:
            _current_tenant.reset(token)


class AccessLogMiddleware(BaseHTTPMiddleware):
    """One log line per request: method, path, status, duration, tenant.

    A request whose handler raises is logged with status 500.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration_ms = int((time.perf_counter() - start) * 1000)
            logger.info(
                "%s %s -> %d (%dms, tenant=%s)",
                request.method,
                request.url.path,
                status_code,
                duration_ms,
                resolve_tenant(
                    request.headers.get("X-Tenant-ID"), request.headers.get("host", "")
                ),
            )
