# vaultgate/services/event_ids.py
"""
Identifiers handed out by the funnel.

event ids dedupe conversion events downstream (pixel + server side), so one is
minted per funnel session and reused for every event of that session.
"""
from __future__ import annotations

import secrets
import string
import time

_ALPHABET = string.digits + string.ascii_lowercase


def _base36(n: int) -> str:
    if n == 0:
        return "0"
    out = []
    while n:
        n, r = divmod(n, 36)
        out.append(_ALPHABET[r])
    return "".join(reversed(out))


def _random_suffix(length: int = 8) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def generate_event_id() -> str:
    """wm_{ms timestamp base36}_{8 random chars}"""
    return f"wm_{_base36(int(time.time() * 1000))}_{_random_suffix()}"


def generate_browsing_session_id() -> str:
    return f"sess_{_base36(int(time.time() * 1000))}_{_random_suffix()}"


def generate_visitor_id() -> str:
    return f"vid_{secrets.token_hex(12)}"

