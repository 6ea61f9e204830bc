"""
Helper functions for common infrastructure operations.

This module provides domain-agnostic utility functions for:
- Stable hashing of strings and JSON payloads
- Lenient UUID parsing (for ids read back from processor metadata)
- HTTP request helpers (client IP extraction)

Usage:
    from core.helpers import get_client_ip, parse_uuid, stable_digest

    purchase_id = parse_uuid(metadata.get("purchase_id"))
    digest = stable_digest({"b": 1, "a": 2})
    ip = get_client_ip(request)
"""

from __future__ import annotations

import hashlib
import json
import uuid
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from django.http import HttpRequest


def hash_string(value: str, algorithm: str = "sha256") -> str:
    """
    Hash a string using the specified algorithm.

    Args:
        value: String to hash
        algorithm: Hash algorithm (sha256, sha512, md5, etc.)

    Returns:
        Hexadecimal hash string
    """
    hasher = hashlib.new(algorithm)
    hasher.update(value.encode("utf-8"))
    return hasher.hexdigest()


def stable_digest(payload: Any, length: int = 12) -> str:
    """
    Short sha256 digest of a JSON-serializable payload.

    Keys are sorted, so two dicts with the same content always produce
    the same digest.

    Example:
        stable_digest({"uncategorized_text": "..."})  # 'a3f9c21b0d4e'
    """
    return hash_string(json.dumps(payload, sort_keys=True, default=str))[:length]


def parse_uuid(value: Any) -> uuid.UUID | None:
    """
    Parse a UUID, returning None for empty or malformed input.

    Example:
        parse_uuid("550e8400-e29b-41d4-a716-446655440000")  # UUID(...)
        parse_uuid("not-a-uuid")  # None
    """
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        return None


def get_client_ip(request: HttpRequest) -> str:
    """
    Extract client IP from request, handling proxies.

    Checks X-Forwarded-For header for proxy chains.

    Args:
        request: Django HTTP request

    Returns:
        Client IP address string
    """
    x_forwarded_for = request.META.get("HTTP_X_FORWARDED_FOR")
    if x_forwarded_for:
        # Take the first IP in the chain (original client)
        ip = x_forwarded_for.split(",")[0].strip()
    else:
        ip = request.META.get("REMOTE_ADDR", "")
    return ip
