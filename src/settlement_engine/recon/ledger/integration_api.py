"""Ledger client for a marketplace Integration API over HTTP.

Speaks the JSON flavour of the API: client-credentials auth, a
``transactions/query`` endpoint that can include the provider user, and
``update_metadata`` / ``transition`` commands.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

import httpx
from pydantic import ValidationError

from settlement_engine.recon.errors import LedgerWriteError, QueryError
from settlement_engine.recon.ledger.base import LedgerPage, LedgerTransaction

logger = logging.getLogger(__name__)


def _entity_id(entity: Mapping[str, Any]) -> str:
    raw = entity.get("id")
    if isinstance(raw, Mapping):
        return str(raw.get("uuid"))
    return str(raw)


def _denormalise(body: Mapping[str, Any]) -> list[dict[str, Any]]:
    """Flatten JSON:API style transactions, inlining the included provider."""
    included = {
        (item.get("type"), _entity_id(item)): item
        for item in body.get("included", [])
    }
    transactions = []
    for entity in body.get("data", []):
        attributes = dict(entity.get("attributes") or {})
        provider_ref = (
            ((entity.get("relationships") or {}).get("provider") or {}).get("data") or {}
        )
        provider = included.get(("user", _entity_id(provider_ref))) if provider_ref else None
        private_data = {}
        if provider:
            profile = (provider.get("attributes") or {}).get("profile") or {}
            private_data = profile.get("privateData") or {}
        transactions.append(
            {
                **attributes,
                "id": _entity_id(entity),
                "state": attributes.get("state", ""),
                "providerPrivateData": private_data,
            }
        )
    return transactions


class IntegrationApiLedger:
    """LedgerClient over the marketplace Integration API."""

    def __init__(
        self,
        *,
        base_url: str,
        client_id: str,
        client_secret: str,
        timeout_seconds: float = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            headers={"Accept": "application/json"},
            transport=transport,
        )
        self._access_token: str | None = None

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _authenticate(self) -> str:
        response = await self._client.post(
            "/v1/auth/token",
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "client_credentials",
                "scope": "integ",
            },
        )
        response.raise_for_status()
        self._access_token = response.json()["access_token"]
        return self._access_token

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        token = self._access_token or await self._authenticate()
        response = await self._client.request(
            method, path, headers={"Authorization": f"Bearer {token}"}, **kwargs
        )
        if response.status_code == 401:
            # Token expired; fetch a new one and try once more
            logger.info("Ledger access token rejected, re-authenticating")
            token = await self._authenticate()
            response = await self._client.request(
                method, path, headers={"Authorization": f"Bearer {token}"}, **kwargs
            )
        response.raise_for_status()
        return response

    async def list_transactions(
        self,
        *,
        states: Sequence[str],
        created_at_start: datetime | None,
        page: int,
        per_page: int,
        metadata_flags: Mapping[str, bool] | None = None,
    ) -> LedgerPage:
        params: dict[str, Any] = {
            "states": ",".join(states),
            "page": page,
            "perPage": per_page,
            "include": "provider",
        }
        if created_at_start is not None:
            params["createdAtStart"] = created_at_start.isoformat()
        for key, value in (metadata_flags or {}).items():
            params[f"meta_{key}"] = "true" if value else "false"

        try:
            response = await self._request(
                "GET", "/v1/integration_api/transactions/query", params=params
            )
            body = response.json()
            return LedgerPage(
                transactions=[
                    LedgerTransaction.model_validate(tx) for tx in _denormalise(body)
                ],
                total_pages=int(body.get("meta", {}).get("totalPages", 0)),
            )
        except (httpx.HTTPError, ValueError, KeyError, ValidationError) as e:
            raise QueryError(f"Ledger query failed: {e}", page=page) from e

    async def update_metadata(self, transaction_id: str, metadata: Mapping[str, Any]) -> None:
        try:
            await self._request(
                "POST",
                "/v1/integration_api/transactions/update_metadata",
                json={"id": transaction_id, "metadata": dict(metadata)},
            )
        except (httpx.HTTPError, KeyError) as e:
            raise LedgerWriteError(f"Metadata update failed for {transaction_id}: {e}") from e

    async def transition(
        self,
        transaction_id: str,
        transition: str,
        params: Mapping[str, Any] | None = None,
    ) -> LedgerTransaction:
        try:
            response = await self._request(
                "POST",
                "/v1/integration_api/transactions/transition",
                params={"expand": "true", "include": "provider"},
                json={"id": transaction_id, "transition": transition, "params": dict(params or {})},
            )
            body = response.json()
            data = body["data"]
            return LedgerTransaction.model_validate(
                _denormalise({"data": [data], "included": body.get("included", [])})[0]
            )
        except (httpx.HTTPError, ValueError, KeyError, ValidationError) as e:
            raise LedgerWriteError(f"Transition failed for {transaction_id}: {e}") from e
