"""
HTTP/JSON OTA Connector

Generic connector for OTA partner APIs that speak JSON over HTTPS:
- Auth via api key header or HTTP basic (username/password)
- Structured error mapping from HTTP status
- Per-record results parsed from the response body

Endpoints (relative to the channel's api_endpoint):
    GET  /properties/{property_id}                -> handshake
    POST /properties/{property_id}/rates          {"values": [...]}
    POST /properties/{property_id}/availability   {"values": [...]}
    GET  /properties/{property_id}/bookings?since=ISO-8601

Retries live in the orchestrator; this class classifies failures and
raises once.
"""

import time
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from ...config import settings
from ...errors import ConnectorError, ConnectorTransientError, ConnectorAuthError
from .base import BaseConnector, PushRecord, RecordResult, SyncResult, VerifyResult

logger = logging.getLogger(__name__)


@dataclass
class ConnectorErrorInfo:
    """Structured error for an HTTP status"""
    code: str
    message: str
    status_code: int
    retryable: bool = False
    auth: bool = False


# Error mapping for OTA responses
ERROR_MAP = {
    401: ConnectorErrorInfo("unauthorized", "Invalid or missing credentials", 401, False, True),
    403: ConnectorErrorInfo("forbidden", "Access denied to this property", 403, False, True),
    404: ConnectorErrorInfo("not_found", "Resource not found", 404, False),
    422: ConnectorErrorInfo("validation_error", "Invalid request data", 422, False),
    429: ConnectorErrorInfo("rate_limited", "Too many requests", 429, True),
    500: ConnectorErrorInfo("server_error", "OTA server error", 500, True),
    502: ConnectorErrorInfo("bad_gateway", "OTA gateway error", 502, True),
    503: ConnectorErrorInfo("service_unavailable", "OTA service unavailable", 503, True),
    504: ConnectorErrorInfo("gateway_timeout", "OTA gateway timeout", 504, True),
}


def map_status(status_code: int, response_data: Optional[Dict] = None) -> ConnectorErrorInfo:
    """Map HTTP status code to structured error"""
    if status_code in ERROR_MAP:
        error = ERROR_MAP[status_code]
        if response_data:
            err = response_data.get("error")
            msg = (err.get("message") if isinstance(err, dict) else err) or response_data.get("message")
            if msg:
                return ConnectorErrorInfo(error.code, str(msg), status_code, error.retryable, error.auth)
        return error

    if status_code >= 500:
        return ConnectorErrorInfo("server_error", f"Server error: {status_code}", status_code, True)

    return ConnectorErrorInfo("unknown", f"Unknown error: {status_code}", status_code, False)


class HttpConnector(BaseConnector):
    """
    JSON-over-HTTPS connector for one channel.

    `transport` lets tests plug in httpx.MockTransport.
    """

    name = "http"

    def __init__(
        self,
        api_endpoint: str,
        property_id: str,
        credentials: Optional[Dict[str, Any]] = None,
        channel_name: str = "ota",
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        if not api_endpoint:
            raise ConnectorError("Channel has no api_endpoint configured")

        self.api_endpoint = api_endpoint.rstrip("/")
        self.property_id = property_id
        self.credentials = credentials or {}
        self.channel_name = channel_name
        self.timeout = timeout or settings.connector_timeout_seconds

        auth = None
        if self.credentials.get("username") and self.credentials.get("password"):
            auth = httpx.BasicAuth(self.credentials["username"], self.credentials["password"])

        self._client = httpx.Client(
            base_url=self.api_endpoint,
            timeout=self.timeout,
            headers=self._get_headers(),
            auth=auth,
            transport=transport,
        )

    def _get_headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "EaseInn-ChannelManager/1.0",
        }
        api_key = self.credentials.get("api_key") or self.credentials.get("apiKey")
        if api_key:
            headers["X-Api-Key"] = api_key
        return headers

    def _request(
        self,
        method: str,
        endpoint: str,
        payload: Optional[Dict] = None,
        params: Optional[Dict] = None
    ) -> Dict[str, Any]:
        """
        Make one HTTP request and classify the outcome.

        Returns the decoded body for 2xx and 422 (422 carries per-record
        errors); raises ConnectorAuthError / ConnectorTransientError /
        ConnectorError otherwise.
        """
        start_time = time.time()
        try:
            response = self._client.request(method, endpoint, json=payload, params=params)
        except httpx.TimeoutException as e:
            raise ConnectorTransientError(f"Timeout calling {self.channel_name}: {e}")
        except httpx.TransportError as e:
            raise ConnectorTransientError(f"Network error calling {self.channel_name}: {e}")

        duration_ms = int((time.time() - start_time) * 1000)
        status_code = response.status_code

        try:
            data = response.json()
        except ValueError:
            data = {"raw": response.text[:1000]}

        logger.debug(f"{self.channel_name} {method} {endpoint} -> {status_code} ({duration_ms}ms)")

        if 200 <= status_code < 300:
            return data if isinstance(data, dict) else {"data": data}

        error = map_status(status_code, data if isinstance(data, dict) else None)

        if error.auth:
            raise ConnectorAuthError(error.message, status_code)
        if error.retryable:
            raise ConnectorTransientError(error.message, status_code)
        if status_code == 422 and isinstance(data, dict) and "results" in data:
            return data
        raise ConnectorError(error.message, status_code)

    def _parse_results(self, records: List[PushRecord], data: Dict[str, Any]) -> SyncResult:
        """
        Per-record results: {"results": [{"key": ..., "success": bool, "error": ...}]}.
        A body without "results" acknowledges the whole batch.
        """
        if "results" not in data:
            return SyncResult.all_ok(records, raw_response=data)

        returned = {}
        for item in data.get("results") or []:
            key = str(item.get("key"))
            returned[key] = RecordResult(
                key=key,
                success=bool(item.get("success")),
                error=item.get("error")
            )

        results = []
        for record in records:
            results.append(returned.get(
                record.key,
                RecordResult(key=record.key, success=False, error="No result returned for record")
            ))
        return SyncResult(results=results, raw_response=data)

    # ==================
    # Contract
    # ==================

    def verify(self) -> VerifyResult:
        try:
            data = self._request("GET", f"/properties/{self.property_id}")
        except ConnectorError as e:
            return VerifyResult(success=False, error=e.message)

        attrs = data.get("data", {}) if isinstance(data.get("data"), dict) else data
        name = attrs.get("name") or attrs.get("title")
        return VerifyResult(success=True, property_name=name)

    def push_rates(self, property_id: str, records: List[PushRecord]) -> SyncResult:
        payload = {"values": [r.rate_payload() for r in records]}
        data = self._request("POST", f"/properties/{property_id}/rates", payload)
        return self._parse_results(records, data)

    def push_availability(self, property_id: str, records: List[PushRecord]) -> SyncResult:
        payload = {"values": [r.availability_payload() for r in records]}
        data = self._request("POST", f"/properties/{property_id}/availability", payload)
        return self._parse_results(records, data)

    def pull_bookings(self, property_id: str, since: Optional[datetime]) -> List[Dict[str, Any]]:
        params = {}
        if since:
            # Stored timestamps are naive UTC; send an explicit offset
            if since.tzinfo is None:
                since = since.replace(tzinfo=timezone.utc)
            params["since"] = since.astimezone(timezone.utc).isoformat()
        data = self._request("GET", f"/properties/{property_id}/bookings", params=params)
        bookings = data.get("bookings")
        if bookings is None:
            bookings = data.get("data", [])
        return list(bookings or [])

    def close(self) -> None:
        self._client.close()
