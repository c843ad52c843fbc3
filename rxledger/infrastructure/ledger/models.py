"""
Local Ledger Store Models

Append-only tables backing LocalLedger:
- assets with their immutable definition and root keys
- committed transactions
- transaction entries (inputs and outputs)

Rows are inserted once and never updated or deleted; balances are derived
from the entries.
"""

from sqlalchemy import (
    Column, String, Integer, DateTime, ForeignKey, JSON, CheckConstraint, Index
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from rxledger.infrastructure.database import Base
import uuid


def gen_id():
    return uuid.uuid4().hex


class LedgerAsset(Base):
    __tablename__ = "ledger_assets"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), nullable=False, unique=True, default=gen_id)
    definition = Column(JSON, nullable=False, default=dict)
    root_xpubs = Column(JSON, nullable=False, default=list)
    quorum = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class LedgerTransaction(Base):
    __tablename__ = "ledger_transactions"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), nullable=False, unique=True, default=gen_id)
    template_id = Column(String(64), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    entries = relationship(
        "LedgerEntry",
        back_populates="transaction",
        order_by="LedgerEntry.seq",
    )


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ledger_entries_amount_positive"),
        CheckConstraint("direction IN ('input', 'output')", name="ck_ledger_entries_direction"),
        Index("ix_ledger_entries_account_asset", "account_alias", "asset_id"),
    )

    seq = Column(Integer, primary_key=True, autoincrement=True)
    transaction_id = Column(String(64), ForeignKey("ledger_transactions.id"), nullable=False, index=True)
    direction = Column(String(8), nullable=False)
    type = Column(String(16), nullable=False)
    asset_id = Column(String(64), ForeignKey("ledger_assets.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    account_alias = Column(String(255), nullable=True)

    transaction = relationship("LedgerTransaction", back_populates="entries")
