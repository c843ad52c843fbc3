# Ledger collaborator: interface and adapters
import logging

from rxledger.core.config import Settings
from rxledger.infrastructure.ledger.base import (
    Asset,
    AssetFilter,
    Balance,
    BalanceFilter,
    LedgerService,
    SigningKey,
    Transaction,
    TransactionBuilder,
    TransactionEntry,
    TransactionFilter,
    TransactionTemplate,
)

logger = logging.getLogger(__name__)


def create_ledger(settings: Settings) -> LedgerService:
    """Build the ledger adapter selected by LEDGER_BACKEND"""
    if settings.LEDGER_BACKEND == "chain":
        from rxledger.infrastructure.ledger.chain import ChainLedger

        logger.info(f"Using Chain Core ledger at {settings.CHAIN_URL}")
        return ChainLedger.from_settings(settings)

    from rxledger.infrastructure.ledger.local import LocalLedger

    logger.info("Using local ledger store")
    return LocalLedger.from_url(settings.LEDGER_DATABASE_URL, echo=settings.DEBUG)


__all__ = [
    "Asset",
    "AssetFilter",
    "Balance",
    "BalanceFilter",
    "LedgerService",
    "SigningKey",
    "Transaction",
    "TransactionBuilder",
    "TransactionEntry",
    "TransactionFilter",
    "TransactionTemplate",
    "create_ledger",
]
