import threading

from vaultgate.services import session_service


def _visitor_ids():
    return sorted(c.visitor_id for c in session_service.list_active())


def test_idle_contexts_are_evicted(monkeypatch):
    monkeypatch.setattr(session_service, "CONTEXT_IDLE_TTL_SECONDS", 60)

    with session_service.locked("vid_old") as old:
        pass
    with session_service.locked("vid_new"):
        pass
    old.updated_at -= 120

    assert _visitor_ids() == ["vid_new"]


def test_recent_contexts_are_kept(monkeypatch):
    monkeypatch.setattr(session_service, "CONTEXT_IDLE_TTL_SECONDS", 60)

    with session_service.locked("vid_a") as a:
        pass
    a.updated_at -= 30

    assert _visitor_ids() == ["vid_a"]


def test_context_in_use_is_not_evicted(monkeypatch):
    monkeypatch.setattr(session_service, "CONTEXT_IDLE_TTL_SECONDS", 60)
    holding, release = threading.Event(), threading.Event()

    def hold():
        with session_service.locked("vid_busy") as ctx:
            ctx.updated_at -= 120
            holding.set()
            release.wait(5)

    t = threading.Thread(target=hold)
    t.start()
    try:
        assert holding.wait(5)
        assert _visitor_ids() == ["vid_busy"]
    finally:
        release.set()
        t.join(5)


def test_requests_sweep_on_interval(monkeypatch):
    monkeypatch.setattr(session_service, "CONTEXT_IDLE_TTL_SECONDS", 60)
    monkeypatch.setattr(session_service, "CONTEXT_SWEEP_INTERVAL_SECONDS", 0)

    with session_service.locked("vid_stale") as stale:
        pass
    stale.updated_at -= 120
    with session_service.locked("vid_fresh"):
        pass

    assert "vid_stale" not in session_service._CONTEXTS
    assert "vid_fresh" in session_service._CONTEXTS
