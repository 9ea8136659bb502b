"""HTTP client for the stock ledger API.

Used by back-office tools that stage audit counts locally and push them in
one request. Error responses come back as the same exception types the
services raise.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Mapping

import httpx

from stockledger.core import exceptions

logger = logging.getLogger(__name__)

_ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (
        exceptions.ValidationError,
        exceptions.NotFoundError,
        exceptions.InvalidStateError,
        exceptions.StaleSnapshotError,
        exceptions.VersionConflictError,
    )
}


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    return value


class StockLedgerClient:
    """Thin synchronous wrapper around the audit endpoints.

    Pass ``client`` to reuse an existing ``httpx.Client`` (for example a
    FastAPI ``TestClient``); otherwise one is created for ``base_url``.
    """

    def __init__(
        self,
        base_url: str = "",
        token: str | None = None,
        *,
        api_prefix: str = "/api/v1",
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ):
        self._owns_client = client is None
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)
        self._prefix = api_prefix.rstrip("/")
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "StockLedgerClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = self._client.request(
                method, f"{self._prefix}{path}", headers=self._headers, **kwargs
            )
        except httpx.RequestError as e:
            logger.error("Stock ledger request %s %s failed: %s", method, path, e)
            raise

        if response.is_success:
            return response.json() if response.content else None

        try:
            body = response.json()
        except ValueError:
            body = {"detail": response.text}
        if not isinstance(body, dict):
            body = {"detail": body}
        detail = body.get("detail")
        error_cls = _ERRORS_BY_CODE.get(body.get("error"))
        if error_cls is None:
            response.raise_for_status()
        extra = {k: v for k, v in body.items() if k not in ("detail", "error")}
        raise error_cls(str(detail), **extra)

    def commit_batch(self, audit_id: int, updates: Mapping[int, Mapping[str, Any]]) -> dict:
        payload = {
            "updates": {
                str(item_id): {k: _jsonable(v) for k, v in update.items()}
                for item_id, update in updates.items()
            }
        }
        return self._request("PATCH", f"/stock/audits/{audit_id}/items/batch", json=payload)

    def get_audit(self, audit_id: int, **params) -> dict:
        return self._request("GET", f"/stock/audits/{audit_id}", params=params)

    def complete_audit(self, audit_id: int, apply_differences: bool = False) -> dict:
        return self._request(
            "PATCH",
            f"/stock/audits/{audit_id}",
            json={"action": "complete", "apply_differences": apply_differences},
        )
