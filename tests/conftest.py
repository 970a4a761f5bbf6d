import asyncio
import inspect
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from sensors2mqtt.lifecycle import RunContext  # noqa: E402
from tests.fakes import FakeClient  # noqa: E402


@pytest.fixture()
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture()
def run_context() -> RunContext:
    return RunContext()


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: run test in asyncio event loop")


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        funcargs = pyfuncitem.funcargs
        params = inspect.signature(pyfuncitem.obj).parameters
        testargs = {arg: funcargs[arg] for arg in params if arg in funcargs}
        asyncio.run(pyfuncitem.obj(**testargs))
        return True
    return None
