from dataclasses import dataclass
from typing import Any, Optional

import httpx
import structlog

from orderpay.errors import GatewayError, GatewayTimeoutError

logger = structlog.get_logger(__name__)


@dataclass
class GatewayReply:
    status_code: int
    data: Any

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def get(self, key: str, default=None):
        return self.data.get(key, default) if isinstance(self.data, dict) else default


class GatewayHTTP:
    """JSON-over-HTTPS transport shared by the provider clients.

    Every exchange is logged with endpoint, request and response. Transport
    failures become ``GatewayError``; timeouts become ``GatewayTimeoutError``
    because the provider-side outcome is unknown.
    """

    def __init__(self, gateway: str, base_url: str, api_key: str, timeout: float = 20.0,
                 transport: Optional[httpx.BaseTransport] = None):
        self.gateway = gateway
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    def headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def url_for(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def request(self, method: str, endpoint: str, payload: Optional[dict] = None) -> GatewayReply:
        url = self.url_for(endpoint)
        body = payload if method.upper() != "GET" else None
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                resp = client.request(method.upper(), url, json=body, headers=self.headers())
        except httpx.TimeoutException as exc:
            logger.error("gateway_timeout", gateway=self.gateway, endpoint=endpoint, request=payload, error=str(exc))
            raise GatewayTimeoutError(self.gateway, endpoint) from exc
        except httpx.RequestError as exc:
            logger.error("gateway_unreachable", gateway=self.gateway, endpoint=endpoint, request=payload, error=str(exc))
            raise GatewayError(self.gateway, f"Gateway unavailable: {exc}") from exc

        try:
            data = resp.json()
        except ValueError:
            data = resp.text
        reply = GatewayReply(resp.status_code, data)
        logger.info("gateway_request", gateway=self.gateway, method=method.upper(), endpoint=endpoint,
                    status_code=resp.status_code, request=payload, response=data)
        return reply

    def post(self, endpoint: str, payload: Optional[dict] = None) -> GatewayReply:
        return self.request("POST", endpoint, payload or {})

    def get(self, endpoint: str) -> GatewayReply:
        return self.request("GET", endpoint)

    def fail(self, endpoint: str, payload: Optional[dict], reply: Optional[GatewayReply], message: str,
             error_cls: type[GatewayError] = GatewayError) -> GatewayError:
        """Log a provider-side failure with full context and build the exception to raise."""
        logger.error("gateway_error", gateway=self.gateway, endpoint=endpoint, request=payload,
                     status_code=reply.status_code if reply else None,
                     response=reply.data if reply else None, message=message)
        return error_cls(self.gateway, message)
