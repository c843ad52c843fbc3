from typing import Iterator, List, Optional
from rxledger.infrastructure.ledger.base import (
    OUTPUT_RETIRE,
    Asset,
    AssetFilter,
    Balance,
    BalanceFilter,
    LedgerService,
    SigningKey,
    TransactionBuilder,
    TransactionFilter,
)


class PrescriptionLedgerRepository:
    """Ledger reads and writes for prescription assets"""

    def __init__(self, ledger: LedgerService):
        self.ledger = ledger

    def create_asset(self, definition: dict, issuer: SigningKey) -> Asset:
        return self.ledger.create_asset(definition, root_xpubs=[issuer.xpub], quorum=1)

    def submit(self, builder: TransactionBuilder, credential: Optional[SigningKey] = None) -> str:
        """Build, optionally sign, and submit one atomic transaction"""
        template = self.ledger.build_transaction(builder)
        if credential is not None:
            template = self.ledger.sign(template, credential)
        return self.ledger.submit_transaction(template)

    def assets_for_patient(self, patient_id: str) -> Iterator[Asset]:
        return self.ledger.query_assets(AssetFilter(definition={"patient_id": patient_id}))

    def get_asset(self, asset_id: str) -> Optional[Asset]:
        return next(iter(self.ledger.query_assets(AssetFilter(asset_id=asset_id))), None)

    def retired_amounts(self, asset_id: str) -> List[int]:
        """Amounts retired from this asset, one per retire output, in ledger order.

        Control outputs on the same transactions are change going back to
        the holder and are not fills.
        """
        amounts = []
        transactions = self.ledger.query_transactions(
            TransactionFilter(input_asset_id=asset_id, output_type=OUTPUT_RETIRE)
        )
        for tx in transactions:
            for output in tx.outputs:
                if output.type == OUTPUT_RETIRE and output.asset_id == asset_id:
                    amounts.append(output.amount)
        return amounts

    def balances_for_asset(self, asset_id: str) -> List[Balance]:
        return list(self.ledger.query_balances(BalanceFilter(asset_id=asset_id)))

    def balances_for_holder(self, holder: str) -> Iterator[Balance]:
        return self.ledger.query_balances(BalanceFilter(account_alias=holder))
