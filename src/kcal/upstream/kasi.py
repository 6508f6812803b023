# src/kcal/upstream/kasi.py
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from kcal.core.config import UpstreamConfig
from kcal.core.errors import MissingCredentialError, TransientNetworkError, UpstreamRejectionError
from kcal.features.terms import is_leap_label, leap_label

log = logging.getLogger(__name__)

SOLAR_TO_LUNAR_OPERATION = "getLunCalInfo"
LUNAR_TO_SOLAR_OPERATION = "getSolCalInfo"
RESULT_OK = "00"


# ============================================================
# Payload models
# ============================================================
class KasiItem(BaseModel):
    """One day of LrsrCldInfoService output (both directions share the shape)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    lun_year: int = Field(alias="lunYear")
    lun_month: int = Field(alias="lunMonth")
    lun_day: int = Field(alias="lunDay")
    lun_leapmonth: str = Field(default="평", alias="lunLeapmonth")
    lun_nday: Optional[int] = Field(default=None, alias="lunNday")
    lun_secha: Optional[str] = Field(default=None, alias="lunSecha")
    lun_wolgeon: Optional[str] = Field(default=None, alias="lunWolgeon")
    lun_iljin: Optional[str] = Field(default=None, alias="lunIljin")
    sol_year: int = Field(alias="solYear")
    sol_month: int = Field(alias="solMonth")
    sol_day: int = Field(alias="solDay")
    sol_week: Optional[str] = Field(default=None, alias="solWeek")
    sol_jd: Optional[int] = Field(default=None, alias="solJd")

    @property
    def is_leap_month(self) -> bool:
        return is_leap_label(self.lun_leapmonth)


class KasiItems(BaseModel):
    item: List[KasiItem] = Field(default_factory=list)

    @field_validator("item", mode="before")
    @classmethod
    def _one_or_many(cls, v: Any) -> Any:
        # a single result comes back as an object, not a one-element list
        if v is None or v == "":
            return []
        if isinstance(v, dict):
            return [v]
        return v


class KasiHeader(BaseModel):
    result_code: str = Field(alias="resultCode")
    result_msg: str = Field(default="", alias="resultMsg")


class KasiBody(BaseModel):
    items: KasiItems = Field(default_factory=KasiItems)
    num_of_rows: Optional[int] = Field(default=None, alias="numOfRows")
    page_no: Optional[int] = Field(default=None, alias="pageNo")
    total_count: Optional[int] = Field(default=None, alias="totalCount")

    @field_validator("items", mode="before")
    @classmethod
    def _empty_items(cls, v: Any) -> Any:
        # zero results are serialized as "items": ""
        if v is None or v == "":
            return {}
        return v


class KasiResponse(BaseModel):
    header: KasiHeader
    body: Optional[KasiBody] = None


class KasiEnvelope(BaseModel):
    response: KasiResponse


# ============================================================
# Client
# ============================================================
class KasiClient:
    """
    Synchronous client for the KASI lunar/solar conversion service.

    Transport failures (timeouts, connection errors) are retried up to
    max_attempts with exponential backoff; anything the server actually
    answered is final. `deadline` is an absolute value of `clock` bounding
    all attempts and backoff sleeps together.
    """

    def __init__(
        self,
        config: UpstreamConfig = UpstreamConfig(),
        *,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self._owns_client = http_client is None
        self._http = http_client if http_client is not None else httpx.Client()
        self._sleep = sleep
        self._clock = clock

    # ---- lifecycle ----
    def close(self) -> None:
        if self._owns_client:
            self._http.close()

    def __enter__(self) -> "KasiClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ---- operations ----
    def fetch_solar_to_lunar(self, year: int, month: int, day: int, deadline: Optional[float] = None) -> KasiItem:
        params = {
            "solYear": f"{int(year):04d}",
            "solMonth": f"{int(month):02d}",
            "solDay": f"{int(day):02d}",
        }
        return self._request(SOLAR_TO_LUNAR_OPERATION, params, deadline)

    def fetch_lunar_to_solar(
        self,
        year: int,
        month: int,
        day: int,
        is_leap_month: bool = False,
        deadline: Optional[float] = None,
    ) -> KasiItem:
        params = {
            "lunYear": f"{int(year):04d}",
            "lunMonth": f"{int(month):02d}",
            "lunDay": f"{int(day):02d}",
            "leapMonth": leap_label(is_leap_month),
        }
        return self._request(LUNAR_TO_SOLAR_OPERATION, params, deadline)

    # ---- internals ----
    def _url(self, operation: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{operation}"

    def _attempt_timeout(self, deadline: Optional[float]) -> float:
        timeout = self.config.timeout_seconds
        if deadline is None:
            return timeout
        remaining = deadline - self._clock()
        if remaining <= 0:
            raise TransientNetworkError("deadline exceeded before the request could be sent")
        return min(timeout, remaining)

    def _request(self, operation: str, params: Dict[str, str], deadline: Optional[float]) -> KasiItem:
        key = self.config.service_key
        if not key:
            raise MissingCredentialError(
                "KASI_API_KEY is not set (issue one at https://www.data.go.kr/data/15012679/openapi.do)"
            )

        query = {"serviceKey": key, **params, "_type": "json"}
        url = self._url(operation)
        attempts = self.config.max_attempts
        last_exc: Optional[Exception] = None
        attempt = 0

        for attempt in range(1, attempts + 1):
            timeout = self._attempt_timeout(deadline)
            try:
                resp = self._http.get(url, params=query, timeout=timeout)
            except httpx.TimeoutException as e:
                last_exc = e
                log.warning("KASI %s attempt %d/%d timed out after %.1fs", operation, attempt, attempts, timeout)
            except httpx.TransportError as e:
                last_exc = e
                log.warning("KASI %s attempt %d/%d failed: %s", operation, attempt, attempts, e)
            except httpx.DecodingError as e:
                raise UpstreamRejectionError(f"KASI {operation}: undecodable response body: {e}") from e
            except httpx.HTTPError as e:
                # redirect loops and other request errors a retry will not fix
                raise TransientNetworkError(f"KASI {operation} request failed: {e!r}") from e
            else:
                return self._parse(operation, resp)

            if attempt < attempts:
                delay = self.config.backoff_base_seconds * 2 ** (attempt - 1)
                if deadline is not None and self._clock() + delay >= deadline:
                    log.warning("KASI %s: deadline leaves no room for another attempt", operation)
                    break
                self._sleep(delay)

        raise TransientNetworkError(
            f"KASI {operation} failed after {attempt} attempt(s): {last_exc!r}"
        ) from last_exc

    def _parse(self, operation: str, resp: httpx.Response) -> KasiItem:
        if resp.status_code >= 400:
            raise UpstreamRejectionError(f"KASI {operation}: HTTP {resp.status_code} {resp.reason_phrase}")

        try:
            payload = resp.json()
        except ValueError as e:
            raise UpstreamRejectionError(f"KASI {operation}: response is not JSON") from e

        try:
            env = KasiEnvelope.model_validate(payload)
        except ValidationError as e:
            raise UpstreamRejectionError(
                f"KASI {operation}: unexpected payload ({e.error_count()} validation errors)"
            ) from e

        header = env.response.header
        if header.result_code != RESULT_OK:
            raise UpstreamRejectionError(
                f"KASI {operation}: API error {header.result_code}: {header.result_msg}",
                result_code=header.result_code,
            )

        items = env.response.body.items.item if env.response.body is not None else []
        if not items:
            raise UpstreamRejectionError(f"KASI {operation}: no results", result_code=header.result_code)
        return items[0]
