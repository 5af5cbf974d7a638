"""Amazon Ads API client with retry, throttling and request-id logging."""

from __future__ import annotations

import asyncio
import logging
import os
import random
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, ClassVar, Union

import httpx

from adsentry.utils.rate_limit import RateLimiter
from adsentry.utils.retry import MAX_RETRIES, RETRY_EXCEPTIONS, send_with_retry

logger = logging.getLogger(__name__)

API_ENDPOINTS = {
    "NA": "https://advertising-api.amazon.com",
    "EU": "https://advertising-api-eu.amazon.com",
    "FE": "https://advertising-api-fe.amazon.com",
}
DEFAULT_REGION = "EU"
NA_MARKETPLACES = {"ATVPDKIKX0DER", "A2EUQ1WTGCTBG2", "A1AM78C64UM0Y8", "A2Q3Y263D00KWC"}
FE_MARKETPLACES = {"A1VC38T7YXB528", "A39IBJ37TRP1C6", "A19VAU5U5O7RUS"}

REQUEST_SPACING = float(os.environ.get("AMAZON_REQUEST_SPACING_SECONDS", 0.1))
HTTP_TIMEOUT = float(os.environ.get("AMAZON_HTTP_TIMEOUT_SECONDS", 30))
REQUEST_ID_HEADERS = ("x-amzn-RequestId", "x-amz-request-id")
ENDPOINT_RE = re.compile(r"^advertising-api(?:[-.]([a-z]+))?\.amazon\.com$", re.IGNORECASE)


class AmazonApiError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None, request_id: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.request_id = request_id


class AmazonAuthError(AmazonApiError):
    """401/403 from the API: never retried."""


@dataclass(slots=True)
class ApiSuccess:
    ok: ClassVar[bool] = True

    data: Any
    status_code: int
    request_id: str | None = None


@dataclass(slots=True)
class ApiFailure:
    ok: ClassVar[bool] = False

    error: str
    status_code: int | None = None
    request_id: str | None = None

    def to_exception(self) -> AmazonApiError:
        cls = AmazonAuthError if self.status_code in (401, 403) else AmazonApiError
        status = self.status_code if self.status_code is not None else "transport"
        return cls(f"HTTP {status}: {self.error}", status_code=self.status_code, request_id=self.request_id)


ApiResult = Union[ApiSuccess, ApiFailure]


def region_for_marketplace(marketplace_id: str | None) -> str:
    if marketplace_id in NA_MARKETPLACES:
        return "NA"
    if marketplace_id in FE_MARKETPLACES:
        return "FE"
    return DEFAULT_REGION


def resolve_base_url(*, endpoint: str | None = None, marketplace_id: str | None = None) -> str:
    """Base URL from a stored endpoint host, else from the marketplace's region."""
    if endpoint:
        host = re.sub(r"^https?://", "", endpoint.strip()).rstrip("/")
        match = ENDPOINT_RE.match(host)
        if match:
            region = (match.group(1) or "").lower()
            return f"https://advertising-api-{region}.amazon.com" if region else API_ENDPOINTS["NA"]
        logger.warning("Unrecognised API endpoint %r; falling back to marketplace region", endpoint)
    return API_ENDPOINTS[region_for_marketplace(marketplace_id)]


class AmazonAdsClient:
    def __init__(
        self,
        *,
        profile_id: str,
        client_id: str,
        access_token: str,
        base_url: str = API_ENDPOINTS["NA"],
        session: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        request_spacing: float = REQUEST_SPACING,
        rand: Callable[[], float] = random.random,
    ) -> None:
        self.profile_id = profile_id
        self.client_id = client_id
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.session = session or httpx.AsyncClient(timeout=HTTP_TIMEOUT)
        self.rate_limiter = rate_limiter or RateLimiter(sleep=sleep)
        self._sleep = sleep
        self._request_spacing = request_spacing
        self._rand = rand

    async def close(self) -> None:
        await self.session.aclose()

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Amazon-Advertising-API-ClientId": self.client_id,
            "Amazon-Advertising-API-Scope": self.profile_id,
            "Accept": "application/json",
        }

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        body: Any = None,
    ) -> ApiResult:
        url = f"{self.base_url}{path}"
        label = f"{method} {path}"

        async def send(attempt: int) -> httpx.Response:
            await self.rate_limiter.acquire()
            response = await self.session.request(
                method, url, params=params, json=body, headers=self._headers()
            )
            self.rate_limiter.update_from_response(response.headers)
            logger.info(
                "[Amazon API] %s attempt %s/%s -> %s (request_id=%s)",
                label, attempt + 1, MAX_RETRIES + 1, response.status_code, _request_id(response),
            )
            return response

        try:
            response = await send_with_retry(send, label=label, sleep=self._sleep, rand=self._rand)
        except RETRY_EXCEPTIONS as exc:
            logger.error("[Amazon API] %s gave up after transport failures: %s", label, exc)
            return ApiFailure(error=f"{exc.__class__.__name__}: {exc}")

        request_id = _request_id(response)
        if response.status_code >= 400:
            error = _parse_error(response)
            logger.error(
                "[Amazon API] %s failed with %s (request_id=%s): %s",
                label, response.status_code, request_id, error,
            )
            return ApiFailure(error=error, status_code=response.status_code, request_id=request_id)

        if self._request_spacing > 0:
            await self._sleep(self._request_spacing)
        return ApiSuccess(data=_body(response), status_code=response.status_code, request_id=request_id)


def _request_id(response: httpx.Response) -> str | None:
    for header in REQUEST_ID_HEADERS:
        value = response.headers.get(header)
        if value:
            return value
    return None


def _body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    if "json" in response.headers.get("content-type", ""):
        return response.json()
    try:
        return response.json()
    except ValueError:
        return response.text


def _parse_error(response: httpx.Response) -> str:
    data = _body(response)
    if isinstance(data, str):
        return data or response.reason_phrase
    if isinstance(data, dict):
        if data.get("message"):
            return str(data["message"])
        if data.get("details"):
            return f"{data.get('code', 'ERROR')}: {data['details']}"
        errors = data.get("errors")
        if isinstance(errors, list) and errors:
            return "; ".join(str(e.get("message") or e.get("errorType")) for e in errors if isinstance(e, dict))
        if data.get("code"):
            return str(data["code"])
    return response.reason_phrase or f"HTTP {response.status_code}"
