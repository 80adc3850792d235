import base64
import json
from typing import Any
import pytest
import requests
from common import SetupError
from roxClient import RoxApiError, RoxClient, normalize_address


class FakeResponse:
    def __init__(self, status_code: int, body: Any = None) -> None:
        self.status_code = status_code
        self.text = "" if body is None else json.dumps(body)
        self.content = self.text.encode()

    def json(self) -> Any:
        return json.loads(self.text)


class Recorder:
    def __init__(self, *responses: FakeResponse) -> None:
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def __call__(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        return self.responses.pop(0)


def _client(monkeypatch: pytest.MonkeyPatch, *responses: FakeResponse, **kwargs: Any) -> tuple[RoxClient, Recorder]:
    client = RoxClient("central.example.com:443", **kwargs)
    rec = Recorder(*responses)
    monkeypatch.setattr(client.session, "request", rec)
    return client, rec


def test_normalize_address() -> None:
    assert normalize_address("central.example.com") == "https://central.example.com"
    assert normalize_address("central.example.com:443") == "https://central.example.com:443"
    assert normalize_address("https://central.example.com/") == "https://central.example.com"


def test_bearer_token(monkeypatch: pytest.MonkeyPatch) -> None:
    client, rec = _client(monkeypatch, FakeResponse(200, {"clusters": [{"id": "c1", "name": "local-cluster"}]}), token="tok")
    assert client.list_clusters() == [{"id": "c1", "name": "local-cluster"}]
    call = rec.calls[0]
    assert call["method"] == "GET"
    assert call["url"] == "https://central.example.com:443/v1/clusters"
    assert call["headers"]["Authorization"] == "Bearer tok"


def test_token_generation_uses_basic_auth(monkeypatch: pytest.MonkeyPatch) -> None:
    client, rec = _client(monkeypatch, FakeResponse(200, {"token": "new-token"}), token="old", username="admin", password="pw")
    assert client.generate_api_token("setup", "Admin") == "new-token"
    expected = base64.b64encode(b"admin:pw").decode()
    assert rec.calls[0]["headers"]["Authorization"] == f"Basic {expected}"
    assert rec.calls[0]["json"] == {"name": "setup", "roles": ["Admin"]}


def test_no_credentials() -> None:
    with pytest.raises(SetupError):
        RoxClient("central").request("GET", "/v1/config")


def test_error_status(monkeypatch: pytest.MonkeyPatch) -> None:
    client, _ = _client(monkeypatch, FakeResponse(403, {"message": "forbidden"}), token="tok")
    with pytest.raises(RoxApiError) as e:
        client.get_config()
    assert e.value.status == 403
    assert e.value.path == "/v1/config"
    assert "forbidden" in str(e.value)


def test_accepted_status_and_empty_body(monkeypatch: pytest.MonkeyPatch) -> None:
    client, _ = _client(monkeypatch, FakeResponse(409), token="tok")
    assert client.request("POST", "/v1/something", {}, ok=(409,)) == {}


def test_create_init_bundle(monkeypatch: pytest.MonkeyPatch) -> None:
    body = {
        "kubectlBundle": base64.b64encode(b"kind: Secret\n").decode(),
        "helmValuesBundle": base64.b64encode(b"ca: {}\n").decode(),
    }
    client, _ = _client(monkeypatch, FakeResponse(200, body), token="tok")
    assert client.create_init_bundle("local-cluster") == ("kind: Secret\n", "ca: {}\n")


def test_create_init_bundle_without_secrets(monkeypatch: pytest.MonkeyPatch) -> None:
    client, _ = _client(monkeypatch, FakeResponse(200, {"meta": {}}), token="tok")
    with pytest.raises(SetupError):
        client.create_init_bundle("local-cluster")


def test_connection_errors_are_retried(monkeypatch: pytest.MonkeyPatch) -> None:
    client = RoxClient("central", token="tok")
    attempts: list[int] = []

    def flaky(method: str, url: str, **kwargs: Any) -> FakeResponse:
        attempts.append(1)
        if len(attempts) < 2:
            raise requests.exceptions.ConnectionError("reset")
        return FakeResponse(200, {"items": []})

    monkeypatch.setattr(client.session, "request", flaky)
    assert client.list_init_bundles() == []
    assert len(attempts) == 2
