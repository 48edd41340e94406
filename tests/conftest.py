from collections.abc import Callable, Iterator

import httpx
import pytest
from fastapi.testclient import TestClient

from atelier.config import Settings, get_settings
from atelier.main import app, get_http_client


class ProviderStub:
    """Stands in for the remote inference APIs behind an httpx.MockTransport."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.handler: Callable[[httpx.Request], httpx.Response] = lambda request: httpx.Response(
            500, text="no handler configured"
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def respond(self, *args, **kwargs) -> None:
        self.handler = lambda request: httpx.Response(*args, **kwargs)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        use_mock_data=False,
        together_api_key="together-test-key",
        huggingface_api_key="hf-test-key",
        public_dir=tmp_path / "public",
    )


@pytest.fixture()
def provider_stub() -> ProviderStub:
    return ProviderStub()


@pytest.fixture()
def client(settings, provider_stub) -> Iterator[TestClient]:
    async def _http_client():
        async with provider_stub.client() as http_client:
            yield http_client

    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_http_client] = _http_client
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
