import pytest
from fastapi.testclient import TestClient

from inference_gateway.config.settings import clear_settings_cache, get_settings
from inference_gateway.main import create_app
from inference_gateway.metrics import reset_metrics
from inference_gateway.quota.ledger import InMemoryQuotaLedger
from tests.helpers import FakeGemini


@pytest.fixture(autouse=True)
def _clean_metrics() -> None:
    reset_metrics()


@pytest.fixture
def fake_gemini() -> FakeGemini:
    return FakeGemini()


@pytest.fixture
def ledger() -> InMemoryQuotaLedger:
    return InMemoryQuotaLedger(default_limit=None, profiles={"user-1": (0, 100)})


@pytest.fixture
def client(
    monkeypatch: pytest.MonkeyPatch, fake_gemini: FakeGemini, ledger: InMemoryQuotaLedger
) -> TestClient:
    monkeypatch.setenv("IGW_STATIC_TOKENS", "test-token:user-1,orphan-token:user-404")
    monkeypatch.setenv("IGW_GEMINI_API_KEY", "gemini-test-key")
    monkeypatch.setenv("IGW_GEMINI_BASE_URL", "https://gemini.test")
    clear_settings_cache()
    app = create_app(
        get_settings(),
        quota_ledger=ledger,
        upstream_transport=fake_gemini.transport(),
    )
    return TestClient(app)


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": "Bearer test-token"}


@pytest.fixture
def chat_body() -> dict[str, object]:
    return {"messages": [{"role": "user", "content": "hello"}]}
