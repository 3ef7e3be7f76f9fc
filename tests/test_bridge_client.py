import requests

from bridge.client import BridgeClient


class FakeResponse:
    def __init__(self, payload=None, status_code=200, json_error=False):
        self.payload = payload
        self.status_code = status_code
        self.json_error = json_error

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if self.json_error:
            raise ValueError("not json")
        return self.payload


def _client_returning(monkeypatch, response=None, error=None):
    client = BridgeClient("http://localhost:4567/")
    calls = []

    def fake_get(url, timeout):
        calls.append(url)
        if error is not None:
            raise error
        return response

    monkeypatch.setattr(client.session, "get", fake_get)
    return client, calls


def test_health_check_healthy(monkeypatch):
    client, calls = _client_returning(monkeypatch, FakeResponse({"status": "healthy"}))
    assert client.health_check() is True
    assert calls == ["http://localhost:4567/api/health"]


def test_health_check_unreachable(monkeypatch):
    client, _ = _client_returning(monkeypatch, error=requests.ConnectionError("refused"))
    assert client.health_check() is False


def test_health_check_non_json(monkeypatch):
    client, _ = _client_returning(monkeypatch, FakeResponse(json_error=True))
    assert client.health_check() is False


def test_get_stats(monkeypatch):
    stats = {"connections_total": 2, "cycles": {"steer": 10}}
    client, calls = _client_returning(monkeypatch, FakeResponse(stats))
    assert client.get_stats() == stats
    assert calls == ["http://localhost:4567/api/stats"]


def test_get_stats_http_error(monkeypatch):
    client, _ = _client_returning(monkeypatch, FakeResponse(status_code=500))
    assert client.get_stats() is None


def test_get_stats_timeout(monkeypatch):
    client, _ = _client_returning(monkeypatch, error=requests.Timeout("slow"))
    assert client.get_stats() is None
