import asyncio
import inspect
import os
import sys
from pathlib import Path

# Environment must be in place before correlauth modules read settings
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from correlauth.service.auth import RequestAuthenticator  # noqa: E402
from correlauth.service.correlation import CorrelationLifecycle  # noqa: E402
from correlauth.service.runtime import reset_runtime_for_tests  # noqa: E402
from correlauth.service.tokens import SharedSecret, TokenCodec  # noqa: E402
from correlauth.storage.memory import MemoryStore  # noqa: E402

TEST_SECRET = "Test-Secret-Key_for-Automation-Only-987654321!"


class RecordingSink:
    """Response sink that remembers everything written to it."""

    def __init__(self):
        self.tokens = []
        self.correlation_ids = []
        self.diagnostics = []

    def set_token(self, token):
        self.tokens.append(token)

    def set_correlation_id(self, correlation_id):
        self.correlation_ids.append(correlation_id)

    def clear_correlation_id(self):
        self.correlation_ids.append(None)

    def add_diagnostic(self, detail):
        self.diagnostics.append(detail)


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def codec():
    return TokenCodec(SharedSecret(TEST_SECRET))


@pytest.fixture
def lifecycle(memory_store):
    return CorrelationLifecycle(memory_store)


@pytest.fixture
def authenticator(codec, lifecycle):
    return RequestAuthenticator(codec, lifecycle)


@pytest.fixture
def sink():
    return RecordingSink()


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
