import asyncio
import inspect
import os
import sys
from pathlib import Path

# Environment must be in place before anything imports clinicauth.config
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key-for-testing-only")
os.environ.setdefault("HASH_SECRET", "test-hash-secret-for-testing-only")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.pop("MEMORY_STORE_PATH", None)

import pytest  # noqa: E402
from argon2 import PasswordHasher  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from clinicauth.service.runtime import reset_runtime_for_tests  # noqa: E402


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def fast_hasher() -> PasswordHasher:
    """Argon2id with minimal cost so unit tests don't spend seconds hashing."""
    return PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)


class FakeClock:
    """Settable clock usable as both a float (epoch seconds) and datetime source."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def time(self) -> float:
        return self.now

    def utc(self):
        from datetime import datetime, timezone

        return datetime.fromtimestamp(self.now, tz=timezone.utc)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
