# Redis-backed fixed-window rate limiter used as a FastAPI dependency.
# Counters are per client IP and scope; the limiter fails open if Redis is unavailable.
import logging
from typing import Callable, Dict, Literal

from fastapi import Request, HTTPException, status

from .config import env_int
from .redis_client import get_redis

logger = logging.getLogger("nestrent.rate_limit")

Scope = Literal["login", "signup", "write", "message"]

# Per-window caps; each may be overridden by RATE_LIMIT_<SCOPE>_PER_WINDOW
_DEFAULT_LIMITS: Dict[str, int] = {"login": 10, "signup": 5, "write": 30, "message": 60}


def _window_seconds() -> int:
    return env_int("RATE_LIMIT_WINDOW_SECONDS", 60)


def _limit_for_scope(scope: Scope) -> int:
    return env_int(f"RATE_LIMIT_{scope.upper()}_PER_WINDOW", _DEFAULT_LIMITS[scope])


def _client_ip(request: Request) -> str:
    # Connection address only; X-Forwarded-For is not trusted here
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def rate_limit(scope: Scope) -> Callable[[Request], None]:
    """
    Fixed-window limiter keyed by rl:v1:ip:{ip}:{scope}.

    The first hit in a window sets the TTL; later hits share it. Over the cap the request
    gets 429 with a retry_after hint.
    """
    window = _window_seconds()
    limit = _limit_for_scope(scope)

    def _dependency(request: Request) -> None:
        r = get_redis()
        if r is None:
            return

        ip = _client_ip(request)
        key = f"rl:v1:ip:{ip}:{scope}"
        try:
            current = r.incr(key, amount=1)
            if current == 1:
                r.expire(key, window)
            if current > limit:
                ttl = r.ttl(key)
                retry_after = ttl if isinstance(ttl, int) and ttl > 0 else window
                raise HTTPException(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    detail={"error": "rate_limited", "scope": scope, "limit": limit, "retry_after": retry_after},
                )
        except HTTPException:
            raise
        except Exception as exc:
            logger.warning("Rate limit fail-open (scope=%s, ip=%s): %s", scope, ip, exc)

    return _dependency
