"""Flutterwave v3 adapter.

Bearer-token JSON API. Non-2xx responses carry a ``message`` that is
surfaced as the ProviderError text so it lands verbatim in the record's
error log.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

import httpx

from settlement_engine.recon.errors import ProviderAuthError, ProviderError
from settlement_engine.recon.providers.base import (
    ProviderResult,
    RefundRequest,
    TransferRequest,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.flutterwave.com/v3"


def _json_amount(amount: Decimal) -> int | float:
    """Render a major-unit Decimal as a JSON number."""
    if amount == amount.to_integral_value():
        return int(amount)
    return float(amount)


class FlutterwaveProvider:
    """PaymentProvider backed by the Flutterwave REST API."""

    provider_name = "flutterwave"

    def __init__(
        self,
        *,
        secret_key: str | None,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._secret_key = secret_key
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            headers={
                "Authorization": f"Bearer {secret_key or ''}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, path: str, json: dict[str, Any] | None = None) -> dict[str, Any]:
        """Perform a request and return the ``data`` object of the body."""
        data = await self._request(method, path, json=json)
        if not isinstance(data, dict):
            raise ProviderError(f"Malformed Flutterwave response for {method} {path}")
        return data

    async def _list(self, path: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """GET a list endpoint and return its ``data`` array."""
        data = await self._request("GET", path, params=params)
        if not isinstance(data, list):
            raise ProviderError(f"Malformed Flutterwave response for GET {path}")
        return [item for item in data if isinstance(item, dict)]

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        if not self._secret_key:
            raise ProviderAuthError("Flutterwave secret key is not configured")
        try:
            response = await self._client.request(method, path, json=json, params=params)
        except httpx.TransportError as e:
            raise ProviderError(f"No response received from Flutterwave API: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.is_error:
            message = body.get("message") if isinstance(body, dict) else None
            message = message or f"Flutterwave API error ({response.status_code})"
            if response.status_code in (401, 403):
                raise ProviderAuthError(message, status_code=response.status_code)
            raise ProviderError(message, status_code=response.status_code)

        return body.get("data") if isinstance(body, dict) else None

    @staticmethod
    def _result(data: dict[str, Any]) -> ProviderResult:
        if data.get("id") is None or data.get("status") is None:
            raise ProviderError("Flutterwave response is missing id or status")
        return ProviderResult(id=str(data["id"]), status=str(data["status"]), raw=data)

    async def get_balance(self, currency: str) -> Decimal:
        data = await self._call("GET", f"/balances/{currency}")
        return Decimal(str(data.get("available_balance", 0)))

    async def create_transfer(self, request: TransferRequest) -> ProviderResult:
        payload: dict[str, Any] = {
            "account_bank": request.destination.account_bank,
            "account_number": request.destination.account_number,
            "amount": _json_amount(request.amount),
            "currency": request.currency,
            "debit_currency": request.currency,
            "narration": request.narration,
            "reference": request.reference,
        }
        if request.callback_url:
            payload["callback_url"] = request.callback_url
        return self._result(await self._call("POST", "/transfers", json=payload))

    async def retry_transfer(self, external_id: str) -> ProviderResult:
        return self._result(await self._call("POST", f"/transfers/{external_id}/retries", json={}))

    async def get_transfer(self, external_id: str) -> ProviderResult:
        return self._result(await self._call("GET", f"/transfers/{external_id}"))

    async def create_refund(self, request: RefundRequest) -> ProviderResult:
        payload = {
            "amount": _json_amount(request.amount),
            "comment": request.comment,
        }
        return self._result(
            await self._call("POST", f"/transactions/{request.source_charge_id}/refund", json=payload)
        )

    async def retry_refund(self, external_id: str) -> ProviderResult:
        """Re-submit a failed refund against the charge it was raised for.

        Flutterwave has no refund retry endpoint, so the original refund is
        read back for its charge id and amount.
        """
        original = await self._call("GET", f"/refunds/{external_id}")
        charge_id = original.get("tx_id") or original.get("transaction_id")
        if not charge_id:
            raise ProviderError(f"Refund {external_id} has no source transaction")
        amount = original.get("amount_refunded")
        if amount is None:
            raise ProviderError(f"Refund {external_id} has no refunded amount")
        payload = {
            "amount": amount,
            "comment": original.get("comments") or f"Retry of refund {external_id}",
        }
        logger.info("Re-submitting failed refund %s against charge %s", external_id, charge_id)
        result = self._result(await self._call("POST", f"/transactions/{charge_id}/refund", json=payload))
        logger.info("Refund %s re-submitted as %s, status: %s", external_id, result.id, result.status)
        return result

    async def find_transfer(self, reference: str) -> ProviderResult | None:
        for item in await self._list("/transfers", params={"reference": reference}):
            if item.get("reference") == reference:
                return self._result(item)
        return None

    async def find_refund(self, reference: str, source_charge_id: str) -> ProviderResult | None:
        """Latest refund raised against ``source_charge_id``.

        Refunds carry no client reference here, so the match is on the
        charge alone.
        """
        matches = [
            item
            for item in await self._list("/refunds")
            if str(item.get("tx_id") or item.get("transaction_id") or "") == str(source_charge_id)
        ]
        if not matches:
            return None
        latest = max(matches, key=lambda item: str(item.get("created_at") or ""))
        return self._result(latest)
