from __future__ import annotations
import os
from typing import Optional, Tuple

# ========================================
#           INPUT VALIDATION HELPERS
# ========================================
"""
Helpers used by the CLI and the configuration loader to turn user supplied
strings (``--proxy host:port``, ``WSCLIENT_PROXY``) into typed values.
"""

def parse_hostport(s: str) -> Optional[Tuple[str, int]]:
    """
    Split 'host:port' into (host, port), or return None when malformed.
    Brackets around IPv6 literals are stripped.
    """
    try:
        if ':' not in s:
            return None
        host, port_s = s.rsplit(':', 1)
        if host.startswith('[') and host.endswith(']'):
            host = host[1:-1]
        if not host:
            return None
        port = int(port_s)
        if not 0 < port <= 65535:
            return None
        return host, port
    except ValueError:
        return None


# ========================================
#           RANDOMNESS
# ========================================

def random_bytes(n: int) -> bytes:
    """Cryptographically strong random bytes for nonces, masks and pings."""
    return os.urandom(n)

def describe_error(e: BaseException) -> str:
    """str(e), falling back to the class name for exceptions with no message (timeouts)."""
    return str(e) or type(e).__name__
