from fastapi.testclient import TestClient

from inference_gateway.config.settings import Settings
from inference_gateway.main import create_app
from inference_gateway.metrics import counter_value
from inference_gateway.quota.ledger import InMemoryQuotaLedger


def test_missing_bearer_token_returns_401(client, chat_body, fake_gemini, ledger) -> None:
    response = client.post("/v1/chat", json=chat_body)

    assert response.status_code == 401
    body = response.json()
    assert body["code"] == "auth_missing"
    assert body["error"] == "Missing Authorization header"
    assert response.headers["x-request-id"] == body["request_id"]
    assert fake_gemini.call_count == 0
    assert ledger._profiles["user-1"].usage_count == 0


def test_invalid_bearer_token_returns_401(client, chat_body, fake_gemini) -> None:
    response = client.post(
        "/v1/chat", headers={"Authorization": "Bearer wrong"}, json=chat_body
    )

    assert response.status_code == 401
    assert response.json()["code"] == "auth_invalid"
    assert fake_gemini.call_count == 0


def test_malformed_authorization_header_returns_401(client, chat_body) -> None:
    response = client.post("/v1/chat", headers={"Authorization": "Basic abc"}, json=chat_body)

    assert response.status_code == 401
    assert response.json()["code"] == "auth_malformed"


def test_auth_runs_before_body_validation(client) -> None:
    response = client.post("/v1/chat", content=b"not json")

    assert response.status_code == 401


def test_quota_exhausted_returns_403_without_upstream_call(
    client, auth_headers, chat_body, fake_gemini, ledger
) -> None:
    ledger.set_profile("user-1", usage_count=100, usage_limit=100)

    response = client.post("/v1/chat", headers=auth_headers, json=chat_body)

    assert response.status_code == 403
    body = response.json()
    assert body["code"] == "quota_exceeded"
    assert body["error"] == "Usage limit exceeded. Please upgrade your plan."
    assert "[DONE]" not in response.text
    assert fake_gemini.call_count == 0
    assert ledger._profiles["user-1"].usage_count == 100
    assert (
        counter_value("igw_requests_total", {"outcome": "quota_exceeded", "status_code": "403"})
        == 1.0
    )


def test_unknown_profile_returns_500(client, chat_body, fake_gemini) -> None:
    response = client.post(
        "/v1/chat", headers={"Authorization": "Bearer orphan-token"}, json=chat_body
    )

    assert response.status_code == 500
    body = response.json()
    assert body["code"] == "profile_not_found"
    assert body["error"] == "Profile not found"
    assert fake_gemini.call_count == 0


def test_unsupported_content_part_returns_500(
    client, auth_headers, fake_gemini, ledger
) -> None:
    response = client.post(
        "/v1/chat",
        headers=auth_headers,
        json={"messages": [{"role": "user", "content": [{"type": "audio", "data": "AAAA"}]}]},
    )

    assert response.status_code == 500
    assert response.json()["code"] == "unsupported_content_part"
    assert fake_gemini.call_count == 0
    assert ledger._profiles["user-1"].usage_count == 0


def test_malformed_body_returns_500(client, auth_headers, fake_gemini) -> None:
    response = client.post("/v1/chat", headers=auth_headers, json={"messages": []})

    assert response.status_code == 500
    assert response.json()["code"] == "invalid_request_body"
    assert fake_gemini.call_count == 0


def test_upstream_rejection_returns_502_without_charging(
    client, auth_headers, chat_body, fake_gemini, ledger
) -> None:
    fake_gemini.status_code = 400
    fake_gemini.error_body = {"error": {"code": 400, "message": "API key not valid"}}

    response = client.post("/v1/chat", headers=auth_headers, json=chat_body)

    assert response.status_code == 502
    body = response.json()
    assert body["code"] == "upstream_rejected"
    assert "API key not valid" in body["error"]
    assert fake_gemini.call_count == 1
    assert ledger._profiles["user-1"].usage_count == 0


def test_upstream_rate_limit_maps_to_502(client, auth_headers, chat_body, fake_gemini) -> None:
    fake_gemini.status_code = 429

    response = client.post("/v1/chat", headers=auth_headers, json=chat_body)

    assert response.status_code == 502
    assert response.json()["code"] == "upstream_rate_limited"


def test_missing_upstream_key_returns_500(chat_body) -> None:
    ledger = InMemoryQuotaLedger(profiles={"user-1": (0, 5)})
    settings = Settings(static_tokens="test-token:user-1", gemini_api_key=None)
    client = TestClient(create_app(settings, quota_ledger=ledger))

    response = client.post(
        "/v1/chat", headers={"Authorization": "Bearer test-token"}, json=chat_body
    )

    assert response.status_code == 500
    assert response.json()["code"] == "configuration_error"
    assert ledger._profiles["user-1"].usage_count == 0


def test_cors_preflight(client) -> None:
    response = client.options(
        "/v1/chat",
        headers={
            "Origin": "https://app.example.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "authorization, content-type",
        },
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] in {"*", "https://app.example.com"}


def test_request_validation_error_uses_error_envelope(client) -> None:
    def echo(n: int) -> dict[str, int]:
        return {"n": n}

    client.app.add_api_route("/echo/{n}", echo)

    response = client.get("/echo/not-a-number", headers={"x-request-id": "req-v"})

    assert response.status_code == 500
    body = response.json()
    assert body["code"] == "invalid_request_body"
    assert body["request_id"] == "req-v"
    assert response.headers["x-request-id"] == "req-v"
