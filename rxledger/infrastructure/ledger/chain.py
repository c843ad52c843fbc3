"""
Chain Core adapter

Talks to a Chain Core 1.x node over its JSON HTTP API. Batch endpoints take a
list and answer with a list whose items are either results or Chain error
objects (``{"code": "CH...", "message": ...}``). List endpoints are paged
through the ``next`` cursor until ``last_page``.
"""

from typing import Any, Dict, Iterator, List, Optional, Tuple
import logging
import re
import uuid

import httpx

from rxledger.core.config import Settings
from rxledger.core.exceptions import (
    InsufficientBalance,
    LedgerRejected,
    LedgerUnavailable,
    ValidationError,
    handle_ledger_transport_error,
)
from rxledger.infrastructure.ledger.base import (
    Asset,
    AssetFilter,
    Balance,
    BalanceFilter,
    SigningKey,
    Transaction,
    TransactionBuilder,
    TransactionFilter,
    TransactionTemplate,
)

logger = logging.getLogger(__name__)

# Chain error codes meaning the spending account does not hold enough units
INSUFFICIENT_FUNDS_CODES = {"CH760"}

_FIELD_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def render_asset_filter(filter: AssetFilter) -> Tuple[str, List[Any]]:
    clauses: List[str] = []
    params: List[Any] = []
    if filter.asset_id is not None:
        params.append(filter.asset_id)
        clauses.append(f"id=${len(params)}")
    for key, value in filter.definition.items():
        if not _FIELD_NAME.match(key):
            raise ValidationError(
                message=f"Invalid definition field name {key!r}",
                details={"field": key},
            )
        params.append(value)
        clauses.append(f"definition.{key}=${len(params)}")
    return " AND ".join(clauses), params


def render_transaction_filter(filter: TransactionFilter) -> Tuple[str, List[Any]]:
    clauses: List[str] = []
    params: List[Any] = []
    if filter.input_asset_id is not None:
        params.append(filter.input_asset_id)
        clauses.append(f"inputs(asset_id=${len(params)})")
    if filter.output_type is not None:
        params.append(filter.output_type)
        clauses.append(f"outputs(type=${len(params)})")
    return " AND ".join(clauses), params


def render_balance_filter(filter: BalanceFilter) -> Tuple[str, List[Any]]:
    clauses: List[str] = []
    params: List[Any] = []
    if filter.account_alias is not None:
        params.append(filter.account_alias)
        clauses.append(f"account_alias=${len(params)}")
    if filter.asset_id is not None:
        params.append(filter.asset_id)
        clauses.append(f"asset_id=${len(params)}")
    return " AND ".join(clauses), params


def _is_chain_error(item: Any) -> bool:
    return isinstance(item, dict) and "code" in item and "message" in item


def _rejection(error: Dict[str, Any], operation: str) -> LedgerRejected:
    code = error.get("code")
    details = {
        "operation": operation,
        "chain_code": code,
        "detail": error.get("detail"),
    }
    message = error.get("message") or "Ledger rejected the request"
    if code in INSUFFICIENT_FUNDS_CODES:
        return InsufficientBalance(message=message, details=details)
    return LedgerRejected(message=message, details=details)


class ChainLedger:
    """LedgerService backed by a Chain Core node"""

    def __init__(
        self,
        base_url: str,
        access_token: Optional[str] = None,
        hsm_url: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        base_url = base_url.rstrip("/")
        auth = tuple(access_token.split(":", 1)) if access_token else None
        self.hsm_url = (hsm_url or f"{base_url}/mockhsm").rstrip("/")
        self.client = httpx.Client(
            base_url=base_url,
            auth=auth,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChainLedger":
        return cls(
            base_url=settings.CHAIN_URL,
            access_token=settings.CHAIN_ACCESS_TOKEN,
            hsm_url=settings.CHAIN_HSM_URL,
            timeout=settings.CHAIN_TIMEOUT,
        )

    def close(self) -> None:
        self.client.close()

    def _post(self, url: str, body: Any, operation: str) -> Any:
        try:
            response = self.client.post(url, json=body)
        except httpx.HTTPError as e:
            raise handle_ledger_transport_error(e, operation) from e

        if response.status_code >= 500:
            logger.error(f"Chain Core returned {response.status_code} during {operation}")
            raise LedgerUnavailable(
                message=f"Ledger returned HTTP {response.status_code}",
                details={"operation": operation, "status": response.status_code},
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise LedgerUnavailable(
                message="Ledger returned a malformed response",
                details={"operation": operation, "original_error": str(e)},
            ) from e

        if response.status_code >= 400:
            raise _rejection(payload if isinstance(payload, dict) else {}, operation)
        return payload

    def _post_single(self, url: str, item: Dict[str, Any], operation: str, key: Optional[str] = None) -> Dict[str, Any]:
        body = {key: [item]} if key else [item]
        payload = self._post(url, body, operation)
        if not isinstance(payload, list) or len(payload) != 1:
            raise LedgerUnavailable(
                message="Ledger returned an unexpected batch response",
                details={"operation": operation},
            )
        result = payload[0]
        if _is_chain_error(result):
            raise _rejection(result, operation)
        return result

    def _list(self, path: str, query: Dict[str, Any], operation: str) -> Iterator[Dict[str, Any]]:
        page = query
        while True:
            payload = self._post(path, page, operation)
            yield from payload.get("items") or []
            if payload.get("last_page", True) or not payload.get("next"):
                return
            page = payload["next"]

    # Writes

    def create_asset(
        self, definition: Dict[str, Any], root_xpubs: List[str], quorum: int = 1
    ) -> Asset:
        result = self._post_single(
            "/create-asset",
            {
                "root_xpubs": list(root_xpubs),
                "quorum": quorum,
                "definition": dict(definition),
                "client_token": str(uuid.uuid4()),
            },
            "create asset",
        )
        return Asset.model_validate(result)

    def build_transaction(self, builder: TransactionBuilder) -> TransactionTemplate:
        result = self._post_single(
            "/build-transaction",
            {"actions": [dict(action) for action in builder.actions]},
            "build transaction",
        )
        return TransactionTemplate(actions=[dict(a) for a in builder.actions], raw=result)

    def sign(self, template: TransactionTemplate, credential: SigningKey) -> TransactionTemplate:
        payload = self._post(
            f"{self.hsm_url}/sign-transaction",
            {"transactions": [template.raw], "xpubs": [credential.xpub]},
            "sign transaction",
        )
        if not isinstance(payload, list) or len(payload) != 1:
            raise LedgerUnavailable(
                message="Signer returned an unexpected response",
                details={"operation": "sign transaction"},
            )
        if _is_chain_error(payload[0]):
            raise _rejection(payload[0], "sign transaction")

        return template.model_copy(update={
            "raw": payload[0],
            "signatures": [*template.signatures, credential.xpub],
        })

    def submit_transaction(self, template: TransactionTemplate) -> str:
        result = self._post_single(
            "/submit-transaction", template.raw, "submit transaction", key="transactions"
        )
        return result["id"]

    # Reads

    def query_assets(self, filter: AssetFilter) -> Iterator[Asset]:
        expression, params = render_asset_filter(filter)
        query = {"filter": expression, "filter_params": params}
        for item in self._list("/list-assets", query, "query assets"):
            yield Asset.model_validate(item)

    def query_transactions(self, filter: TransactionFilter) -> Iterator[Transaction]:
        expression, params = render_transaction_filter(filter)
        query = {"filter": expression, "filter_params": params}
        for item in self._list("/list-transactions", query, "query transactions"):
            yield Transaction.model_validate(item)

    def query_balances(self, filter: BalanceFilter) -> Iterator[Balance]:
        expression, params = render_balance_filter(filter)
        query = {"filter": expression, "filter_params": params, "sum_by": list(filter.sum_by)}
        for item in self._list("/list-balances", query, "query balances"):
            yield Balance.model_validate(item)
