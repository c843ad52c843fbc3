"""
Ledger collaborator interface

The ledger is an external, append-only asset ledger (Chain Core style):
- assets are created once with an immutable definition and root keys
- transactions are built from actions, signed, then submitted atomically
- assets, transactions and balances are read back through filtered queries

Nothing here holds ledger state. Adapters live in ``chain`` and ``local``.
"""

from typing import Any, Dict, Iterator, List, Optional, Protocol, runtime_checkable
from pydantic import BaseModel, ConfigDict, Field


# Action types understood by build-transaction
ACTION_ISSUE = "issue"
ACTION_CONTROL_ACCOUNT = "control_account"
ACTION_SPEND_ACCOUNT = "spend_account"
ACTION_RETIRE = "retire"

# Input/output types recorded on committed transactions
INPUT_ISSUE = "issue"
INPUT_SPEND = "spend"
OUTPUT_CONTROL = "control"
OUTPUT_RETIRE = "retire"


class SigningKey(BaseModel):
    """Credential handed to the signer; the private half never leaves the HSM"""
    model_config = ConfigDict(frozen=True)

    xpub: str = Field(..., min_length=1)


class Asset(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    alias: Optional[str] = None
    definition: Dict[str, Any] = {}
    keys: List[Dict[str, Any]] = []
    quorum: int = 1


class TransactionEntry(BaseModel):
    """One input or output of a committed transaction"""
    model_config = ConfigDict(frozen=True, extra="ignore")

    type: str
    asset_id: str
    amount: int
    account_alias: Optional[str] = None


class Transaction(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    timestamp: Optional[str] = None
    inputs: List[TransactionEntry] = []
    outputs: List[TransactionEntry] = []


class Balance(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    amount: int
    sum_by: Dict[str, str] = {}

    @property
    def asset_id(self) -> Optional[str]:
        return self.sum_by.get("asset_id")


class TransactionTemplate(BaseModel):
    """A built, not yet submitted, transaction.

    ``raw`` keeps whatever the ledger returned from build-transaction so the
    adapter can hand it back verbatim for signing and submission.
    """
    actions: List[Dict[str, Any]] = []
    signatures: List[str] = []
    raw: Dict[str, Any] = {}


class AssetFilter(BaseModel):
    model_config = ConfigDict(frozen=True)

    asset_id: Optional[str] = None
    definition: Dict[str, Any] = {}


class TransactionFilter(BaseModel):
    model_config = ConfigDict(frozen=True)

    input_asset_id: Optional[str] = None
    output_type: Optional[str] = None


class BalanceFilter(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_alias: Optional[str] = None
    asset_id: Optional[str] = None
    sum_by: List[str] = ["asset_id"]


class TransactionBuilder:
    """Accumulates actions for a single atomic transaction"""

    def __init__(self):
        self.actions: List[Dict[str, Any]] = []

    def issue(self, asset_id: str, amount: int) -> "TransactionBuilder":
        self.actions.append({"type": ACTION_ISSUE, "asset_id": asset_id, "amount": amount})
        return self

    def control_with_account(self, account_alias: str, asset_id: str, amount: int) -> "TransactionBuilder":
        self.actions.append({
            "type": ACTION_CONTROL_ACCOUNT,
            "account_alias": account_alias,
            "asset_id": asset_id,
            "amount": amount,
        })
        return self

    def spend_from_account(self, account_alias: str, asset_id: str, amount: int) -> "TransactionBuilder":
        self.actions.append({
            "type": ACTION_SPEND_ACCOUNT,
            "account_alias": account_alias,
            "asset_id": asset_id,
            "amount": amount,
        })
        return self

    def retire(self, asset_id: str, amount: int) -> "TransactionBuilder":
        self.actions.append({"type": ACTION_RETIRE, "asset_id": asset_id, "amount": amount})
        return self


@runtime_checkable
class LedgerService(Protocol):
    def create_asset(
        self, definition: Dict[str, Any], root_xpubs: List[str], quorum: int = 1
    ) -> Asset: ...

    def build_transaction(self, builder: TransactionBuilder) -> TransactionTemplate: ...

    def sign(self, template: TransactionTemplate, credential: SigningKey) -> TransactionTemplate: ...

    def submit_transaction(self, template: TransactionTemplate) -> str: ...

    def query_assets(self, filter: AssetFilter) -> Iterator[Asset]: ...

    def query_transactions(self, filter: TransactionFilter) -> Iterator[Transaction]: ...

    def query_balances(self, filter: BalanceFilter) -> Iterator[Balance]: ...

    def close(self) -> None: ...
