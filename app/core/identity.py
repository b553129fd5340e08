"""
Client identity — the (IP, user-agent) pair that keys the behavioral cache.

IP precedence (first present wins):
  1. cf-connecting-ip   (set by the CDN edge, can't be spoofed through it)
  2. true-client-ip     (same role on other CDNs)
  3. x-forwarded-for    (leftmost entry = original client)
  4. socket peer address
  5. "unknown"

x-forwarded-for is client-controlled when nothing sits in front of us,
so the CDN headers must win whenever they are present.
"""

import hashlib
from collections.abc import Mapping
from dataclasses import dataclass

UNKNOWN_IP = "unknown"

TRUSTED_EDGE_HEADERS = ("cf-connecting-ip", "true-client-ip")


@dataclass(frozen=True)
class ClientIdentity:
    ip: str
    user_agent_hash: str

    def __str__(self) -> str:
        return f"{self.ip}:{self.user_agent_hash}"


def hash_user_agent(user_agent: str | None) -> str:
    """SHA-256 of the raw UA, truncated to 16 hex chars."""
    return hashlib.sha256((user_agent or "").encode()).hexdigest()[:16]


def resolve_client_ip(headers: Mapping[str, str], peer: str | None = None) -> str:
    """Resolve the client IP from lower-cased request headers. Never raises."""
    for name in TRUSTED_EDGE_HEADERS:
        value = (headers.get(name) or "").strip()
        if value:
            return value

    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        for ip in forwarded.split(","):
            ip = ip.strip()
            if ip:
                return ip

    if peer:
        return peer
    return UNKNOWN_IP


def build_identity(ip: str, user_agent: str | None) -> ClientIdentity:
    return ClientIdentity(ip=ip or UNKNOWN_IP, user_agent_hash=hash_user_agent(user_agent))
