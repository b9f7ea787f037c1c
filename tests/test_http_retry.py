import httpx
import pytest

from proxenrich.config.settings import RetrySettings
from proxenrich.core.http import get_json_with_retry, parse_retry_after_seconds


def _status_error(url: str, status: int, headers=None):
    request = httpx.Request("GET", url)
    response = httpx.Response(status, request=request, headers=headers or {})
    return httpx.HTTPStatusError(str(status), request=request, response=response)


def test_retry_after_lengthens_the_backoff(monkeypatch):
    attempts = {"n": 0}
    sleeps: list[float] = []

    def fake_get_json(url, *, params=None, timeout_seconds=15):  # noqa: ARG001
        attempts["n"] += 1
        if attempts["n"] == 1:
            raise _status_error(url, 503, headers={"Retry-After": "7"})
        return {"ok": True}

    monkeypatch.setattr("proxenrich.core.http.get_json", fake_get_json)
    monkeypatch.setattr("proxenrich.core.http.time.sleep", lambda s: sleeps.append(s))

    retry = RetrySettings(max_attempts=1, base_delay_seconds=1.0, max_delay_seconds=30.0)
    assert get_json_with_retry("https://example.test", params={}, retry=retry) == {"ok": True}
    assert sleeps == [7.0]


def test_transport_errors_are_retried_with_exponential_backoff(monkeypatch):
    sleeps: list[float] = []

    def fake_get_json(url, **_kwargs):
        raise httpx.ConnectError("down", request=httpx.Request("GET", url))

    monkeypatch.setattr("proxenrich.core.http.get_json", fake_get_json)
    monkeypatch.setattr("proxenrich.core.http.time.sleep", lambda s: sleeps.append(s))

    retry = RetrySettings(max_attempts=3, base_delay_seconds=1.0, max_delay_seconds=3.0)
    with pytest.raises(httpx.ConnectError):
        get_json_with_retry("https://example.test", params={}, retry=retry)
    assert sleeps == [1.0, 2.0, 3.0]


def test_client_errors_are_not_retried(monkeypatch):
    attempts = {"n": 0}

    def fake_get_json(url, **_kwargs):
        attempts["n"] += 1
        raise _status_error(url, 401)

    monkeypatch.setattr("proxenrich.core.http.get_json", fake_get_json)

    with pytest.raises(httpx.HTTPStatusError):
        get_json_with_retry("https://example.test", params={}, retry=RetrySettings(max_attempts=3))
    assert attempts["n"] == 1


@pytest.mark.parametrize("value,expected", [("2.5", 2.5), ("-1", None), ("soon", None), (None, None)])
def test_parse_retry_after_seconds(value, expected):
    assert parse_retry_after_seconds(value) == expected
