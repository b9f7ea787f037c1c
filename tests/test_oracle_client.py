import httpx
import pytest

from proxenrich.config.settings import get_settings
from proxenrich.ingestion.oracle_client import HttpDistanceOracle, OracleError, parse_route_length_km


def _settings(max_attempts: int = 0, api_key: str | None = "test"):
    settings = get_settings()
    retry = settings.oracle.retry.model_copy(
        update={"max_attempts": max_attempts, "base_delay_seconds": 0.0, "max_delay_seconds": 0.0}
    )
    oracle = settings.oracle.model_copy(update={"api_key": api_key, "retry": retry})
    return settings.model_copy(update={"oracle": oracle})


def _route(*lengths_m):
    return {"routes": [{"sections": [{"summary": {"length": m, "duration": 60}} for m in lengths_m]}]}


def _status_error(url: str, status: int, headers=None):
    request = httpx.Request("GET", url)
    response = httpx.Response(status, request=request, headers=headers or {})
    return httpx.HTTPStatusError(str(status), request=request, response=response)


def test_parse_route_length_sums_sections_in_km():
    assert parse_route_length_km(_route(1200, 800)) == pytest.approx(2.0)


@pytest.mark.parametrize(
    "payload",
    [
        {"routes": []},
        {"notices": [{"title": "Route calculation failed"}]},
        {"routes": [{"sections": []}]},
        {"routes": [{"sections": [{"summary": {}}]}]},
        [],
    ],
)
def test_parse_route_length_rejects_missing_routes(payload):
    with pytest.raises(OracleError):
        parse_route_length_km(payload)


def test_fetch_travel_distance_sends_coordinates_and_mode(monkeypatch):
    seen = {}

    def fake_get_json(url, *, params=None, timeout_seconds=15):  # noqa: ARG001
        seen["url"] = url
        seen["params"] = params
        return _route(4000)

    monkeypatch.setattr("proxenrich.core.http.get_json", fake_get_json)

    km = HttpDistanceOracle(_settings()).fetch_travel_distance(10.8, 106.7, 10.81, 106.71)

    assert km == pytest.approx(4.0)
    assert seen["params"]["origin"] == "10.800000,106.700000"
    assert seen["params"]["destination"] == "10.810000,106.710000"
    assert seen["params"]["transportMode"] == "car"
    assert seen["params"]["return"] == "summary"
    assert seen["params"]["apikey"] == "test"


def test_http_errors_become_oracle_errors(monkeypatch):
    def fake_get_json(url, **_kwargs):
        raise _status_error(url, 400)

    monkeypatch.setattr("proxenrich.core.http.get_json", fake_get_json)

    with pytest.raises(OracleError, match="HTTP 400"):
        HttpDistanceOracle(_settings()).fetch_travel_distance(10.8, 106.7, 10.81, 106.71)


def test_transport_errors_become_oracle_errors(monkeypatch):
    def fake_get_json(url, **_kwargs):
        raise httpx.ConnectError("boom", request=httpx.Request("GET", url))

    monkeypatch.setattr("proxenrich.core.http.get_json", fake_get_json)

    with pytest.raises(OracleError):
        HttpDistanceOracle(_settings()).fetch_travel_distance(10.8, 106.7, 10.81, 106.71)


def test_retries_on_429_when_enabled(monkeypatch):
    calls = {"n": 0}

    def fake_get_json(url, **_kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise _status_error(url, 429, headers={"Retry-After": "0"})
        return _route(2500)

    monkeypatch.setattr("proxenrich.core.http.get_json", fake_get_json)
    monkeypatch.setattr("proxenrich.core.http.time.sleep", lambda *_args, **_kwargs: None)

    km = HttpDistanceOracle(_settings(max_attempts=2)).fetch_travel_distance(10.8, 106.7, 10.81, 106.71)

    assert km == pytest.approx(2.5)
    assert calls["n"] == 2


def test_no_retry_by_default(monkeypatch):
    calls = {"n": 0}

    def fake_get_json(url, **_kwargs):
        calls["n"] += 1
        raise _status_error(url, 503)

    monkeypatch.setattr("proxenrich.core.http.get_json", fake_get_json)

    with pytest.raises(OracleError):
        HttpDistanceOracle(_settings()).fetch_travel_distance(10.8, 106.7, 10.81, 106.71)
    assert calls["n"] == 1


def test_missing_api_key_is_a_configuration_error():
    with pytest.raises(RuntimeError, match="PROXENRICH_ORACLE_API_KEY") as excinfo:
        HttpDistanceOracle(_settings(api_key=None)).fetch_travel_distance(10.8, 106.7, 10.81, 106.71)
    assert not isinstance(excinfo.value, OracleError)
