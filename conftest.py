import shutil
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from backend import services
from backend.routes import router
from gm_director.llm import Narration, ProviderError

TEST_DATA_DIR = Path("data-tests")


async def no_sleep(_delay: float) -> None:
    return None


class StubLLM:
    """Provider returning canned replies in order; the last one repeats.

    A reply that is an exception instance is raised instead of returned.
    """

    def __init__(self, *replies) -> None:
        self._replies = list(replies) or ["ok"]
        self.prompts: list[str] = []

    async def __call__(self, stage: str, prompt: str) -> Narration:
        self.prompts.append(prompt)
        reply = self._replies[min(len(self.prompts), len(self._replies)) - 1]
        if isinstance(reply, Exception):
            raise reply
        return Narration(text=reply, usage={"total_tokens": len(prompt.split())}, model="stub")

    @property
    def calls(self) -> int:
        return len(self.prompts)


@pytest.fixture(autouse=True)
def clean_test_data():
    """Wipe and re-init data-tests/ before every test."""
    if TEST_DATA_DIR.exists():
        shutil.rmtree(TEST_DATA_DIR)
    services.init_services(TEST_DATA_DIR, providers={}, sleep=no_sleep)
    yield
    # leave data-tests around after tests for inspection; CI can ignore it


@pytest.fixture
def stub_llm():
    return StubLLM


@pytest.fixture
def failing():
    """Factory for a ProviderError with the given reason."""
    def make(reason: str = "unreachable") -> ProviderError:
        return ProviderError(f"stub failure: {reason}", reason=reason)
    return make


@pytest.fixture
def use_providers():
    """Re-init services with the given {name: provider} mapping."""
    def install(providers) -> services.Services:
        return services.init_services(TEST_DATA_DIR, providers=providers, sleep=no_sleep)
    return install


@pytest.fixture
def client():
    app = FastAPI()
    app.include_router(router, prefix="/api")
    with TestClient(app) as c:
        yield c
