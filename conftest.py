import os
import tempfile

# Must point at a throwaway database before vaultgate.core.db builds its engine
_DB_DIR = tempfile.mkdtemp(prefix="vaultgate-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'vault_test.db')}"

from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402

from vaultgate.core.db import create_all  # noqa: E402
from vaultgate.services import session_service  # noqa: E402
from vaultgate.services.storage import MemoryStorage  # noqa: E402

create_all()


class FakeValidator:
    """Lead check stub: answers from a fixed set, or raises like a dead network."""

    def __init__(self, existing=(), error: Exception = None):
        self.existing = {str(x) for x in existing}
        self.error = error
        self.calls = []

    def exists(self, lead_id) -> bool:
        self.calls.append(lead_id)
        if self.error is not None:
            raise self.error
        return str(lead_id) in self.existing


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc))


@pytest.fixture(autouse=True)
def _fresh_contexts():
    session_service.clear_all()
    yield
    session_service.clear_all()


@pytest.fixture
def make_validator():
    return FakeValidator
