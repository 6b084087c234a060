"""Outbound HTTP for `api` nodes."""

import json
from typing import Any, Dict, Optional, Protocol

import httpx

from ..config import AppConfig, ApiNodeMode
from ..core.exceptions import CapabilityError
from ..core.logging import get_logger


logger = get_logger(__name__)

_BODYLESS_METHODS = {"GET", "HEAD", "DELETE", "OPTIONS"}


class ApiCaller(Protocol):
    def call(self, url: str, method: str, body: Any, input_data: Any,
             headers: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        ...


class SimulatedApiCaller:
    """Echoes the request without any network I/O."""

    def call(self, url: str, method: str, body: Any, input_data: Any,
             headers: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return {
            "status": 200,
            "data": {
                "message": "API call simulated",
                "processed_input": input_data,
            },
            "url": url,
            "method": method,
            "body": body,
        }


class HttpxApiCaller:
    """Performs the request. Transport failures raise CapabilityError."""

    def __init__(self, timeout: float = 30.0, transport: Optional[httpx.BaseTransport] = None):
        self.timeout = timeout
        self._transport = transport

    def call(self, url: str, method: str, body: Any, input_data: Any,
             headers: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        method = (method or "GET").upper()
        request_kwargs: Dict[str, Any] = {
            "headers": {key: str(value) for key, value in (headers or {}).items()}
        }

        if method not in _BODYLESS_METHODS and body not in (None, ""):
            if isinstance(body, (dict, list)):
                request_kwargs["json"] = body
            else:
                try:
                    request_kwargs["json"] = json.loads(body)
                except (TypeError, ValueError):
                    request_kwargs["content"] = str(body)

        logger.info(f"api node request: {method} {url}")

        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport,
                              follow_redirects=True) as client:
                response = client.request(method, url, **request_kwargs)
        except httpx.HTTPError as e:
            raise CapabilityError(
                f"Request to {url} failed: {str(e) or type(e).__name__}",
                capability="http"
            ) from e

        try:
            data = response.json()
        except ValueError:
            data = response.text

        return {
            "status": response.status_code,
            "data": data,
            "url": url,
            "method": method,
            "body": body,
        }


def build_api_caller(config: AppConfig) -> ApiCaller:
    if config.api_node_mode == ApiNodeMode.LIVE:
        return HttpxApiCaller(timeout=config.api_node_timeout)
    return SimulatedApiCaller()
