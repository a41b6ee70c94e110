from __future__ import annotations

import time
import threading
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional

from vaultgate.core.config import CONTEXT_IDLE_TTL_SECONDS, CONTEXT_SWEEP_INTERVAL_SECONDS
from vaultgate.services.funnel import VaultFunnel
from vaultgate.services.session_store import SessionStore

logger = logging.getLogger("vaultgate.session_service")

StoreFactory = Callable[[str], SessionStore]


@dataclass
class FunnelContext:
    """One browsing context: its funnel plus the lock serializing its requests."""
    visitor_id: str
    funnel: Optional[VaultFunnel] = None
    lock: threading.RLock = field(default_factory=threading.RLock)
    updated_at: float = field(default_factory=lambda: time.time())

    def to_dict(self) -> Dict:
        state = self.funnel.state if self.funnel else None
        return {
            "visitor_id": self.visitor_id,
            "step": state.current_step.value if state else None,
            "lead_id": state.lead_id if state else None,
            "updated_at": self.updated_at,
        }


_CONTEXTS: Dict[str, FunnelContext] = {}
_LOCK = threading.Lock()
_LAST_SWEEP = {"at": 0.0}


def _evict_idle(now: float, force: bool = False) -> int:
    """Drop contexts idle past the TTL. Caller holds _LOCK."""
    if not force and now - _LAST_SWEEP["at"] < CONTEXT_SWEEP_INTERVAL_SECONDS:
        return 0
    _LAST_SWEEP["at"] = now
    evicted = 0
    for visitor_id, ctx in list(_CONTEXTS.items()):
        if now - ctx.updated_at <= CONTEXT_IDLE_TTL_SECONDS:
            continue
        # a context some request still holds stays
        if not ctx.lock.acquire(blocking=False):
            continue
        try:
            del _CONTEXTS[visitor_id]
            evicted += 1
        finally:
            ctx.lock.release()
    if evicted:
        logger.info("evicted %d idle contexts, %d left", evicted, len(_CONTEXTS))
    return evicted


def _ensure(visitor_id: str) -> FunnelContext:
    if not visitor_id:
        raise ValueError("visitor_id is required")
    with _LOCK:
        now = time.time()
        _evict_idle(now)
        ctx = _CONTEXTS.get(visitor_id)
        if ctx is None:
            ctx = FunnelContext(visitor_id=visitor_id)
            _CONTEXTS[visitor_id] = ctx
            logger.debug("context created visitor=%s", visitor_id)
        ctx.updated_at = now
        return ctx


@contextmanager
def locked(visitor_id: str) -> Iterator[FunnelContext]:
    """Hold the visitor's lock: one mutation in flight per session record."""
    ctx = _ensure(visitor_id)
    with ctx.lock:
        yield ctx
        ctx.updated_at = time.time()


def open_funnel(ctx: FunnelContext, store_factory: StoreFactory) -> VaultFunnel:
    """(Re)load the durable session and build a funnel on it. Caller holds ctx.lock."""
    store = store_factory(ctx.visitor_id)
    store.load()
    ctx.funnel = VaultFunnel(store)
    logger.info(
        "funnel opened visitor=%s step=%s can_resume=%s",
        ctx.visitor_id, ctx.funnel.state.current_step.value, ctx.funnel.can_resume,
    )
    return ctx.funnel


def get_funnel(ctx: FunnelContext, store_factory: StoreFactory) -> VaultFunnel:
    """Funnel already open for this context, loading it on first use."""
    if ctx.funnel is None:
        return open_funnel(ctx, store_factory)
    return ctx.funnel


def list_active() -> List[FunnelContext]:
    with _LOCK:
        _evict_idle(time.time(), force=True)
        lst = list(_CONTEXTS.values())
    logger.debug("list_active count=%d", len(lst))
    return lst


def clear_all() -> None:
    """Utility for tests."""
    with _LOCK:
        _CONTEXTS.clear()
        _LAST_SWEEP["at"] = 0.0
