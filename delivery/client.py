"""
Delivery Client — one outbound POST per call, classified as success or failure.

Request:
    POST {endpoint_url}
    Content-Type: application/json
    Accept: application/json
    Authorization: Bearer {api_token}
    Idempotency-Key: {idempotency_key}

    {"id": 789, "name": "Advanced Demo Product", "price": 99.99, "stock": 3}

Classification:
    transport error (connect, timeout, protocol)  → failure, error text
    HTTP status >= 400                            → failure, "HTTP <code> body=<first 200 chars>"
    anything else                                 → success

No retries happen here; the worker and the retry policy own that.
"""
from __future__ import annotations

import json
import structlog
from typing import Optional

import httpx

from config.settings import DeliveryConfig
from models.schemas import DeliveryResult, ProductPayload

logger = structlog.get_logger()

_ERROR_BODY_LIMIT = 200


def encode_payload(payload: ProductPayload) -> bytes:
    # ensure_ascii=False keeps unicode names readable; json never escapes "/"
    return json.dumps(payload.model_dump(), ensure_ascii=False).encode("utf-8")


class DeliveryClient:
    """
    Thin wrapper over httpx.AsyncClient.

    Usage:
        async with DeliveryClient(settings.delivery) as client:
            result = await client.deliver(payload, key)
    """

    def __init__(self, config: DeliveryConfig = None, transport: httpx.AsyncBaseTransport = None):
        self.config = config or DeliveryConfig()
        self._transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            self.client = httpx.AsyncClient(
                headers={
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                    "Authorization": f"Bearer {self.config.api_token}",
                },
                timeout=self.config.timeout_seconds,
                transport=self._transport,
            )
        return self.client

    async def deliver(self, payload: ProductPayload, idempotency_key: str) -> DeliveryResult:
        client = self._get_client()
        try:
            response = await client.post(
                self.config.endpoint_url,
                content=encode_payload(payload),
                headers={"Idempotency-Key": idempotency_key},
            )
        except httpx.HTTPError as e:
            return DeliveryResult.failure(str(e) or type(e).__name__)

        if response.status_code >= 400:
            body = response.text[:_ERROR_BODY_LIMIT]
            return DeliveryResult.failure(
                f"HTTP {response.status_code} body={body}",
                status_code=response.status_code,
            )
        return DeliveryResult.success(response.status_code)

    async def close(self):
        if self.client:
            await self.client.aclose()

    async def __aenter__(self) -> DeliveryClient:
        return self

    async def __aexit__(self, *exc_info):
        await self.close()
