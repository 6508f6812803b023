from __future__ import annotations

from typing import Any, Callable, Dict, List

import httpx
import pytest

from kcal.core.config import UpstreamConfig
from kcal.core.errors import MissingCredentialError, TransientNetworkError, UpstreamRejectionError
from kcal.upstream.kasi import KasiClient, KasiEnvelope

BASE = "http://kasi.test/LrsrCldInfoService"

ITEM_2024_01_01: Dict[str, Any] = {
    "lunYear": "2023",
    "lunMonth": "11",
    "lunDay": "20",
    "lunLeapmonth": "평",
    "lunNday": 30,
    "lunSecha": "계묘(癸卯)",
    "lunWolgeon": "갑자(甲子)",
    "lunIljin": "갑자(甲子)",
    "solYear": "2024",
    "solMonth": "01",
    "solDay": "01",
    "solWeek": "월",
    "solJd": 2460311,
}


def envelope(item: Any, code: str = "00", msg: str = "NORMAL SERVICE.") -> Dict[str, Any]:
    return {
        "response": {
            "header": {"resultCode": code, "resultMsg": msg},
            "body": {"items": item, "numOfRows": 10, "pageNo": 1, "totalCount": 1},
        }
    }


class Recorder:
    def __init__(self, respond: Callable[[httpx.Request], httpx.Response]) -> None:
        self.respond = respond
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)


def make_client(handler, mono, **overrides) -> KasiClient:
    cfg = dict(base_url=BASE, service_key="test-key")
    cfg.update(overrides)
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return KasiClient(UpstreamConfig(**cfg), http_client=http, sleep=mono.sleep, clock=mono)


def test_solar_to_lunar_request_and_single_item_object(mono):
    rec = Recorder(lambda r: httpx.Response(200, json=envelope({"item": ITEM_2024_01_01})))
    client = make_client(rec, mono)

    item = client.fetch_solar_to_lunar(2024, 1, 1)

    assert (item.lun_year, item.lun_month, item.lun_day) == (2023, 11, 20)
    assert not item.is_leap_month
    assert item.lun_secha == "계묘(癸卯)"
    assert item.sol_jd == 2460311

    req = rec.requests[0]
    assert req.url.path.endswith("/getLunCalInfo")
    params = dict(req.url.params)
    assert params["solYear"] == "2024"
    assert params["solMonth"] == "01"
    assert params["solDay"] == "01"
    assert params["serviceKey"] == "test-key"
    assert params["_type"] == "json"


def test_lunar_to_solar_leap_param_and_item_list(mono):
    leap_item = dict(ITEM_2024_01_01, lunYear="2025", lunMonth="06", lunDay="01", lunLeapmonth="윤",
                     solYear="2025", solMonth="07", solDay="25")
    rec = Recorder(lambda r: httpx.Response(200, json=envelope({"item": [leap_item, ITEM_2024_01_01]})))
    client = make_client(rec, mono)

    item = client.fetch_lunar_to_solar(2025, 6, 1, True)

    assert (item.sol_year, item.sol_month, item.sol_day) == (2025, 7, 25)
    assert item.is_leap_month
    params = dict(rec.requests[0].url.params)
    assert rec.requests[0].url.path.endswith("/getSolCalInfo")
    assert params["leapMonth"] == "윤"
    assert params["lunMonth"] == "06"

    client.fetch_lunar_to_solar(2025, 6, 1)
    assert dict(rec.requests[1].url.params)["leapMonth"] == "평"


def test_missing_credential(mono):
    rec = Recorder(lambda r: httpx.Response(200, json=envelope({"item": ITEM_2024_01_01})))
    client = make_client(rec, mono, service_key=None)
    with pytest.raises(MissingCredentialError):
        client.fetch_solar_to_lunar(2024, 1, 1)
    assert rec.requests == []


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="Internal Server Error"),
        httpx.Response(200, text="<OpenAPI_ServiceResponse>SERVICE_KEY_IS_NOT_REGISTERED_ERROR</OpenAPI_ServiceResponse>"),
        httpx.Response(200, json={"unexpected": True}),
        httpx.Response(200, json=envelope("")),
        httpx.Response(200, json=envelope({"item": []})),
    ],
)
def test_rejections_are_not_retried(mono, response):
    rec = Recorder(lambda r: response)
    client = make_client(rec, mono)
    with pytest.raises(UpstreamRejectionError):
        client.fetch_solar_to_lunar(2024, 1, 1)
    assert len(rec.requests) == 1
    assert mono.sleeps == []


def test_result_code_is_reported(mono):
    rec = Recorder(lambda r: httpx.Response(200, json=envelope({"item": ITEM_2024_01_01}, code="99", msg="LIMITED")))
    client = make_client(rec, mono)
    with pytest.raises(UpstreamRejectionError) as ei:
        client.fetch_solar_to_lunar(2024, 1, 1)
    assert ei.value.result_code == "99"
    assert "LIMITED" in str(ei.value)


def test_undecodable_body_is_a_rejection(mono):
    def garbled(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"Content-Encoding": "gzip"}, content=b"not gzip at all")

    rec = Recorder(garbled)
    client = make_client(rec, mono)
    with pytest.raises(UpstreamRejectionError) as ei:
        client.fetch_solar_to_lunar(2024, 1, 1)
    assert isinstance(ei.value.__cause__, httpx.DecodingError)
    assert len(rec.requests) == 1
    assert mono.sleeps == []


def test_other_request_errors_become_network_errors(mono):
    def redirect_loop(request: httpx.Request) -> httpx.Response:
        raise httpx.TooManyRedirects("Exceeded maximum allowed redirects.", request=request)

    rec = Recorder(redirect_loop)
    client = make_client(rec, mono)
    with pytest.raises(TransientNetworkError) as ei:
        client.fetch_solar_to_lunar(2024, 1, 1)
    assert isinstance(ei.value.__cause__, httpx.TooManyRedirects)
    assert len(rec.requests) == 1


def test_timeouts_are_retried_with_exponential_backoff(mono):
    def boom(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    rec = Recorder(boom)
    client = make_client(rec, mono)
    with pytest.raises(TransientNetworkError) as ei:
        client.fetch_solar_to_lunar(2024, 1, 1)
    assert len(rec.requests) == 3
    assert mono.sleeps == [1.0, 2.0]
    assert isinstance(ei.value.__cause__, httpx.ReadTimeout)


def test_connection_error_then_success(mono):
    calls = {"n": 0}

    def flaky(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, json=envelope({"item": ITEM_2024_01_01}))

    client = make_client(flaky, mono)
    item = client.fetch_solar_to_lunar(2024, 1, 1)
    assert item.lun_day == 20
    assert mono.sleeps == [1.0]


def test_deadline_clips_attempt_timeout_and_stops_retries(mono):
    def boom(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    rec = Recorder(boom)
    client = make_client(rec, mono)
    with pytest.raises(TransientNetworkError):
        client.fetch_solar_to_lunar(2024, 1, 1, deadline=mono() + 2.5)

    # attempt 1, sleep 1s, attempt 2; a 2s backoff would pass the deadline
    assert len(rec.requests) == 2
    assert mono.sleeps == [1.0]
    assert rec.requests[0].extensions["timeout"]["read"] == pytest.approx(2.5)
    assert rec.requests[1].extensions["timeout"]["read"] == pytest.approx(1.5)


def test_expired_deadline_sends_nothing(mono):
    rec = Recorder(lambda r: httpx.Response(200, json=envelope({"item": ITEM_2024_01_01})))
    client = make_client(rec, mono)
    with pytest.raises(TransientNetworkError):
        client.fetch_solar_to_lunar(2024, 1, 1, deadline=mono() - 1)
    assert rec.requests == []


def test_envelope_normalizes_item_shapes():
    one = KasiEnvelope.model_validate(envelope({"item": ITEM_2024_01_01}))
    many = KasiEnvelope.model_validate(envelope({"item": [ITEM_2024_01_01]}))
    empty = KasiEnvelope.model_validate(envelope(""))
    assert one.response.body.items.item == many.response.body.items.item
    assert empty.response.body.items.item == []


def test_client_context_manager_closes_owned_client():
    with KasiClient(UpstreamConfig(service_key="k")) as c:
        http = c._http
    assert http.is_closed
