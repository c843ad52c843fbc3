"""
In-process ledger on SQLAlchemy

Implements the LedgerService interface over the append-only tables in
``models``. Used for development and tests, and as a single-node ledger
where a Chain Core network is not available.
"""

from collections import defaultdict
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
import logging
import threading

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, selectinload, sessionmaker

from rxledger.core.exceptions import (
    InsufficientBalance,
    LedgerError,
    LedgerRejected,
    LedgerUnavailable,
)
from rxledger.infrastructure.database import (
    WRITE_LOCK,
    build_engine,
    build_session_factory,
    close_db,
    init_db,
)
from rxledger.infrastructure.ledger.base import (
    ACTION_CONTROL_ACCOUNT,
    ACTION_ISSUE,
    ACTION_RETIRE,
    ACTION_SPEND_ACCOUNT,
    INPUT_ISSUE,
    INPUT_SPEND,
    OUTPUT_CONTROL,
    OUTPUT_RETIRE,
    Asset,
    AssetFilter,
    Balance,
    BalanceFilter,
    SigningKey,
    Transaction,
    TransactionBuilder,
    TransactionEntry,
    TransactionFilter,
    TransactionTemplate,
)
from rxledger.infrastructure.ledger.models import (
    LedgerAsset,
    LedgerEntry,
    LedgerTransaction,
    gen_id,
)

logger = logging.getLogger(__name__)

PAGE_SIZE = 100

SUMMABLE_FIELDS = {
    "asset_id": LedgerEntry.asset_id,
    "account_alias": LedgerEntry.account_alias,
}


def _to_asset(row: LedgerAsset) -> Asset:
    return Asset(
        id=row.id,
        definition=dict(row.definition or {}),
        keys=[{"root_xpub": xpub} for xpub in row.root_xpubs or []],
        quorum=row.quorum,
    )


def _to_transaction(row: LedgerTransaction) -> Transaction:
    inputs = []
    outputs = []
    for entry in row.entries:
        item = TransactionEntry(
            type=entry.type,
            asset_id=entry.asset_id,
            amount=entry.amount,
            account_alias=entry.account_alias,
        )
        (inputs if entry.direction == "input" else outputs).append(item)

    return Transaction(
        id=row.id,
        timestamp=row.created_at.isoformat() if row.created_at else None,
        inputs=inputs,
        outputs=outputs,
    )


def _definition_clause(key: str, value: Any):
    field = LedgerAsset.definition[key]
    if isinstance(value, bool):
        return field.as_boolean() == value
    if isinstance(value, int):
        return field.as_integer() == value
    if isinstance(value, float):
        return field.as_float() == value
    if isinstance(value, str):
        return field.as_string() == value
    raise LedgerRejected(
        message=f"Cannot filter on definition field {key!r} of type {type(value).__name__}",
        details={"field": key},
    )


class LocalLedger:
    """Append-only ledger stored through SQLAlchemy"""

    def __init__(self, session_factory: sessionmaker, engine: Optional[Engine] = None):
        self.session_factory = session_factory
        self._engine = engine
        self._submit_lock = threading.Lock()

    @classmethod
    def from_url(cls, database_url: str, echo: bool = False) -> "LocalLedger":
        engine = build_engine(database_url, echo=echo)
        init_db(engine)
        return cls(build_session_factory(engine), engine=engine)

    def close(self) -> None:
        if self._engine is not None:
            close_db(self._engine)

    # Writes

    def create_asset(
        self, definition: Dict[str, Any], root_xpubs: List[str], quorum: int = 1
    ) -> Asset:
        if not root_xpubs:
            raise LedgerRejected(
                message="Asset requires at least one root key",
                error_code="ASSET_KEYS_REQUIRED",
            )
        if quorum < 1 or quorum > len(root_xpubs):
            raise LedgerRejected(
                message="Quorum must be between 1 and the number of root keys",
                details={"quorum": quorum, "keys": len(root_xpubs)},
            )

        try:
            with self.session_factory() as db:
                row = LedgerAsset(
                    definition=dict(definition),
                    root_xpubs=list(root_xpubs),
                    quorum=quorum,
                )
                db.add(row)
                db.commit()
                db.refresh(row)
                return _to_asset(row)
        except SQLAlchemyError as e:
            raise self._store_error(e, "create asset") from e

    def build_transaction(self, builder: TransactionBuilder) -> TransactionTemplate:
        if not builder.actions:
            raise LedgerRejected(message="Transaction has no actions")
        return TransactionTemplate(
            actions=[dict(action) for action in builder.actions],
            raw={"id": gen_id()},
        )

    def sign(self, template: TransactionTemplate, credential: SigningKey) -> TransactionTemplate:
        if credential.xpub in template.signatures:
            return template
        return template.model_copy(
            update={"signatures": [*template.signatures, credential.xpub]}
        )

    def submit_transaction(self, template: TransactionTemplate) -> str:
        template_id = template.raw.get("id")
        if not template_id:
            raise LedgerRejected(message="Transaction template was not built by this ledger")

        with self._submit_lock:
            try:
                with self.session_factory() as db:
                    # Conflicting spends from other handles wait here until this one commits
                    db.connection(execution_options={WRITE_LOCK: True})
                    try:
                        tx_id = self._commit(db, template_id, template)
                    except LedgerError as e:
                        db.rollback()
                        logger.info(f"Rejected transaction {template_id}: {e.message}")
                        raise
            except SQLAlchemyError as e:
                raise self._store_error(e, "submit transaction") from e

        return tx_id

    def _commit(self, db: Session, template_id: str, template: TransactionTemplate) -> str:
        already = db.scalar(
            select(LedgerTransaction.id).where(LedgerTransaction.template_id == template_id)
        )
        if already is not None:
            raise LedgerRejected(
                message="Transaction template already submitted",
                details={"transaction_id": already},
                error_code="DUPLICATE_SUBMISSION",
            )

        entries = self._validate(db, template)

        tx = LedgerTransaction(id=gen_id(), template_id=template_id)
        db.add(tx)
        for entry in entries:
            entry.transaction = tx
            db.add(entry)
        db.commit()
        return tx.id

    def _validate(self, db: Session, template: TransactionTemplate) -> List[LedgerEntry]:
        assets: Dict[str, LedgerAsset] = {}
        issued: Dict[str, int] = defaultdict(int)
        consumed: Dict[str, int] = defaultdict(int)
        spends: Dict[Tuple[str, str], int] = defaultdict(int)
        entries: List[LedgerEntry] = []

        for action in template.actions:
            kind = action.get("type")
            asset_id = action.get("asset_id")
            amount = action.get("amount")
            account = action.get("account_alias")

            if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
                raise LedgerRejected(
                    message="Action amount must be a positive integer",
                    details={"action": action},
                )

            if asset_id not in assets:
                row = db.scalar(
                    select(LedgerAsset).where(LedgerAsset.id == asset_id).with_for_update()
                )
                if row is None:
                    raise LedgerRejected(
                        message=f"Unknown asset {asset_id}",
                        details={"asset_id": asset_id},
                        error_code="UNKNOWN_ASSET",
                    )
                assets[asset_id] = row
            asset = assets[asset_id]

            if kind in (ACTION_SPEND_ACCOUNT, ACTION_CONTROL_ACCOUNT) and not account:
                raise LedgerRejected(
                    message=f"{kind} requires an account alias",
                    details={"action": action},
                )

            if kind == ACTION_ISSUE:
                signers = set(asset.root_xpubs) & set(template.signatures)
                if len(signers) < asset.quorum:
                    raise LedgerRejected(
                        message="Issuance is not signed by the asset's root keys",
                        details={"asset_id": asset_id},
                        error_code="AUTHORITY_MISMATCH",
                    )
                entries.append(LedgerEntry(direction="input", type=INPUT_ISSUE, asset_id=asset_id, amount=amount))
                issued[asset_id] += amount
            elif kind == ACTION_SPEND_ACCOUNT:
                entries.append(LedgerEntry(
                    direction="input", type=INPUT_SPEND, asset_id=asset_id,
                    amount=amount, account_alias=account,
                ))
                issued[asset_id] += amount
                spends[(account, asset_id)] += amount
            elif kind == ACTION_CONTROL_ACCOUNT:
                entries.append(LedgerEntry(
                    direction="output", type=OUTPUT_CONTROL, asset_id=asset_id,
                    amount=amount, account_alias=account,
                ))
                consumed[asset_id] += amount
            elif kind == ACTION_RETIRE:
                entries.append(LedgerEntry(direction="output", type=OUTPUT_RETIRE, asset_id=asset_id, amount=amount))
                consumed[asset_id] += amount
            else:
                raise LedgerRejected(
                    message=f"Unsupported action type {kind!r}",
                    details={"action": action},
                )

        for asset_id in set(issued) | set(consumed):
            if issued[asset_id] != consumed[asset_id]:
                raise LedgerRejected(
                    message="Transaction inputs and outputs do not balance",
                    details={
                        "asset_id": asset_id,
                        "inputs": issued[asset_id],
                        "outputs": consumed[asset_id],
                    },
                    error_code="UNBALANCED_TRANSACTION",
                )

        for (account, asset_id), amount in spends.items():
            available = self._balance(db, account, asset_id)
            if available < amount:
                raise InsufficientBalance(
                    message=f"Account {account} holds {available} units of {asset_id}, {amount} requested",
                    details={
                        "account_alias": account,
                        "asset_id": asset_id,
                        "requested": amount,
                        "available": available,
                    },
                )

        return entries

    def _balance(self, db: Session, account: str, asset_id: str) -> int:
        received = db.scalar(
            select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(
                LedgerEntry.direction == "output",
                LedgerEntry.type == OUTPUT_CONTROL,
                LedgerEntry.account_alias == account,
                LedgerEntry.asset_id == asset_id,
            )
        )
        spent = db.scalar(
            select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(
                LedgerEntry.direction == "input",
                LedgerEntry.type == INPUT_SPEND,
                LedgerEntry.account_alias == account,
                LedgerEntry.asset_id == asset_id,
            )
        )
        return int(received) - int(spent)

    # Reads

    def query_assets(self, filter: AssetFilter) -> Iterator[Asset]:
        stmt = select(LedgerAsset)
        if filter.asset_id is not None:
            stmt = stmt.where(LedgerAsset.id == filter.asset_id)
        for key, value in filter.definition.items():
            stmt = stmt.where(_definition_clause(key, value))

        yield from self._paged(stmt, LedgerAsset.seq, _to_asset, "query assets")

    def query_transactions(self, filter: TransactionFilter) -> Iterator[Transaction]:
        stmt = select(LedgerTransaction).options(selectinload(LedgerTransaction.entries))
        if filter.input_asset_id is not None:
            stmt = stmt.where(LedgerTransaction.entries.any(and_(
                LedgerEntry.direction == "input",
                LedgerEntry.asset_id == filter.input_asset_id,
            )))
        if filter.output_type is not None:
            stmt = stmt.where(LedgerTransaction.entries.any(and_(
                LedgerEntry.direction == "output",
                LedgerEntry.type == filter.output_type,
            )))

        yield from self._paged(stmt, LedgerTransaction.seq, _to_transaction, "query transactions")

    def query_balances(self, filter: BalanceFilter) -> Iterator[Balance]:
        unknown = [key for key in filter.sum_by if key not in SUMMABLE_FIELDS]
        if unknown or not filter.sum_by:
            raise LedgerRejected(
                message="Balances can only be summed by asset_id and account_alias",
                details={"sum_by": list(filter.sum_by)},
            )

        received = and_(LedgerEntry.direction == "output", LedgerEntry.type == OUTPUT_CONTROL)
        spent = and_(LedgerEntry.direction == "input", LedgerEntry.type == INPUT_SPEND)
        signed = case((received, LedgerEntry.amount), else_=-LedgerEntry.amount)
        columns = [SUMMABLE_FIELDS[key] for key in filter.sum_by]

        stmt = (
            select(*columns, func.sum(signed).label("amount"))
            .where(or_(received, spent))
            .group_by(*columns)
            .having(func.sum(signed) > 0)
            .order_by(func.min(LedgerEntry.seq))
        )
        if filter.account_alias is not None:
            stmt = stmt.where(LedgerEntry.account_alias == filter.account_alias)
        if filter.asset_id is not None:
            stmt = stmt.where(LedgerEntry.asset_id == filter.asset_id)

        try:
            with self.session_factory() as db:
                rows = db.execute(stmt).all()
        except SQLAlchemyError as e:
            raise self._store_error(e, "query balances") from e

        for row in rows:
            yield Balance(
                amount=int(row.amount),
                sum_by={key: row[i] for i, key in enumerate(filter.sum_by)},
            )

    def _paged(self, stmt, seq_column, convert: Callable, operation: str) -> Iterator[Any]:
        after = 0
        while True:
            try:
                with self.session_factory() as db:
                    rows = db.scalars(
                        stmt.where(seq_column > after).order_by(seq_column).limit(PAGE_SIZE)
                    ).all()
                    page = [convert(row) for row in rows]
                    last_seq = rows[-1].seq if rows else after
            except SQLAlchemyError as e:
                raise self._store_error(e, operation) from e

            yield from page
            if len(rows) < PAGE_SIZE:
                return
            after = last_seq

    @staticmethod
    def _store_error(error: Exception, operation: str) -> LedgerUnavailable:
        logger.error(f"Ledger store error during {operation}: {error}")
        return LedgerUnavailable(
            message="Ledger store failure",
            details={"operation": operation, "original_error": str(error)},
        )
