"""
Redis-backed rate limiting for the integration endpoints.

Fixed-window counter per (scope, client IP). When Redis cannot be reached
the limiter fails open so that inventory lookups keep working.
"""
import logging
from functools import wraps

import redis
from django.conf import settings
from rest_framework import status
from rest_framework.response import Response

logger = logging.getLogger(__name__)

_redis_client = None


def get_redis_client():
    """Return a connected Redis client, or None if Redis is unreachable."""
    global _redis_client
    if _redis_client is None:
        try:
            client = redis.Redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=2,
            )
            client.ping()
        except (redis.ConnectionError, redis.TimeoutError) as e:
            logger.warning(f"Redis connection failed: {e}. Rate limiting is disabled.")
            return None
        _redis_client = client
    return _redis_client


def get_client_ip(request):
    """Extract client IP address, honouring X-Forwarded-For."""
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR', 'unknown')


def _limit_headers(max_requests, remaining, ttl):
    return {
        'X-RateLimit-Limit': str(max_requests),
        'X-RateLimit-Remaining': str(max(0, remaining)),
        'X-RateLimit-Reset': str(ttl),
    }


def rate_limit(max_requests: int = 30, window_seconds: int = 60, scope: str = None):
    """
    Rate limiting decorator for DRF view methods.

    Usage:
        @rate_limit(30, 60, scope='product-search')
        def get(self, request):
            ...
    """
    def decorator(view_func):
        key_scope = scope or view_func.__qualname__

        @wraps(view_func)
        def wrapper(self, request, *args, **kwargs):
            if not getattr(settings, 'RATE_LIMIT_ENABLED', True):
                return view_func(self, request, *args, **kwargs)

            client = get_redis_client()
            if client is None:
                return view_func(self, request, *args, **kwargs)

            key = f"rate_limit:{key_scope}:{get_client_ip(request)}"
            try:
                pipe = client.pipeline()
                pipe.incr(key)
                pipe.expire(key, window_seconds, nx=True)
                pipe.ttl(key)
                current_count, _, ttl = pipe.execute()
            except redis.RedisError as e:
                logger.error(f"Redis error in rate limiting: {e}")
                return view_func(self, request, *args, **kwargs)

            if current_count > max_requests:
                headers = _limit_headers(max_requests, 0, ttl)
                headers['Retry-After'] = str(ttl)
                return Response(
                    {
                        'success': False,
                        'error': 'Rate limit exceeded',
                        'detail': f'Maximum {max_requests} requests per {window_seconds} seconds allowed.',
                        'retry_after': ttl,
                    },
                    status=status.HTTP_429_TOO_MANY_REQUESTS,
                    headers=headers,
                )

            response = view_func(self, request, *args, **kwargs)
            for header, value in _limit_headers(max_requests, max_requests - current_count, ttl).items():
                response[header] = value
            return response

        return wrapper
    return decorator
