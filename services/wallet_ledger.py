"""
Wallet ledger primitive: atomic balance reads and append-with-balance-update.

Every append locks the (user_id, wallet_type) account row, derives the new
closing balance from the previous one, inserts the ledger row and moves the
account balance in a single database transaction.
"""

import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import text
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import (
    WalletAccount, WalletLedgerEntry, WalletType, LedgerTxType, LedgerEntryStatus
)
from utils.errors import LedgerPostingError, LedgerTimeoutError, ValidationError

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')

# PostgreSQL SQLSTATEs for statement_timeout and lock_timeout cancellations
TIMEOUT_SQLSTATES = {'57014', '55P03'}

UPSERT_DIALECTS = {
    'postgresql': postgresql_insert,
    'sqlite': sqlite_insert,
}


@dataclass
class LedgerPosting:
    """Arguments of one AppendEntry call"""
    user_id: uuid.UUID
    user_role: str
    wallet_type: WalletType
    fund_category: str
    service_type: str
    tx_type: LedgerTxType
    credit: Decimal
    debit: Decimal
    reference_id: str
    transaction_id: Optional[uuid.UUID] = None
    status: LedgerEntryStatus = LedgerEntryStatus.COMPLETED
    remarks: Optional[str] = None


class WalletLedger:
    """SQLAlchemy backed ledger; the session is injected per application"""

    def __init__(self, session, timeout_ms=5000):
        self.session = session
        self.timeout_ms = timeout_ms

    # =========================================================================
    # READS
    # =========================================================================

    def get_balance(self, user_id, wallet_type) -> Decimal:
        """Point-in-time balance; zero for an account that has no entries yet"""
        wallet_type = WalletType(wallet_type)
        try:
            with self._deadline('get_balance'):
                account = self.session.query(WalletAccount).filter_by(
                    user_id=user_id, wallet_type=wallet_type
                ).first()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise self._translate(exc, 'get_balance') from exc
        return account.balance if account else ZERO

    def entries(self, user_id, wallet_type):
        return self.session.query(WalletLedgerEntry).filter_by(
            user_id=user_id, wallet_type=WalletType(wallet_type)
        ).order_by(WalletLedgerEntry.sequence.asc()).all()

    def find_by_reference(self, reference_id):
        return self.session.query(WalletLedgerEntry).filter_by(reference_id=reference_id).first()

    def find_by_transaction(self, transaction_id, tx_type=None):
        query = self.session.query(WalletLedgerEntry).filter_by(
            transaction_id=transaction_id, status=LedgerEntryStatus.COMPLETED
        )
        if tx_type is not None:
            query = query.filter_by(tx_type=tx_type)
        return query.order_by(WalletLedgerEntry.created_at.asc()).first()

    # =========================================================================
    # APPEND
    # =========================================================================

    def append_entry(self, posting: LedgerPosting) -> uuid.UUID:
        """Append one entry and commit; returns the new entry id"""
        credit, debit = self._validate(posting)
        entry_id = uuid.uuid4()

        try:
            with self._deadline('append_entry'):
                account = self._lock_account(posting)

                if account.is_frozen and debit > 0:
                    raise LedgerPostingError('Wallet is frozen', user_id=str(posting.user_id))

                opening = account.balance or ZERO
                closing = opening + credit - debit
                if closing < 0:
                    raise LedgerPostingError(
                        'Insufficient wallet balance',
                        user_id=str(posting.user_id), balance=str(opening), debit=str(debit)
                    )

                sequence = (account.last_sequence or 0) + 1
                self.session.add(WalletLedgerEntry(
                    id=entry_id,
                    user_id=posting.user_id,
                    user_role=posting.user_role,
                    wallet_type=posting.wallet_type,
                    sequence=sequence,
                    fund_category=posting.fund_category,
                    service_type=posting.service_type,
                    tx_type=posting.tx_type,
                    credit=credit,
                    debit=debit,
                    opening_balance=opening,
                    closing_balance=closing,
                    reference_id=posting.reference_id,
                    transaction_id=posting.transaction_id,
                    status=posting.status,
                    remarks=posting.remarks,
                ))
                if posting.status == LedgerEntryStatus.COMPLETED:
                    account.balance = closing
                account.last_sequence = sequence
                self.session.flush()

            self.session.commit()
        except LedgerPostingError:
            self.session.rollback()
            raise
        except IntegrityError as exc:
            self.session.rollback()
            logger.error(f"Ledger append rejected for reference {posting.reference_id}: {exc.orig}")
            raise LedgerPostingError(
                f'Duplicate or conflicting ledger entry: {posting.reference_id}',
                reference_id=posting.reference_id
            ) from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise self._translate(exc, 'append_entry') from exc

        logger.info(
            f"Ledger entry {entry_id} {posting.tx_type.value} user={posting.user_id} "
            f"wallet={posting.wallet_type.value} credit={credit} debit={debit} ref={posting.reference_id}"
        )
        return entry_id

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _validate(self, posting):
        try:
            credit = Decimal(str(posting.credit or 0)).quantize(Decimal('0.01'))
            debit = Decimal(str(posting.debit or 0)).quantize(Decimal('0.01'))
        except ArithmeticError:
            raise ValidationError('Ledger amounts must be numeric')

        if credit < 0 or debit < 0:
            raise ValidationError('Ledger amounts cannot be negative')
        if (credit > 0) == (debit > 0):
            raise ValidationError('Exactly one of credit or debit must be positive')
        if not posting.reference_id:
            raise ValidationError('reference_id is required')
        return credit, debit

    def _lock_account(self, posting):
        query = self.session.query(WalletAccount).filter_by(
            user_id=posting.user_id, wallet_type=posting.wallet_type
        )
        account = query.with_for_update().first()
        if account is not None:
            return account

        values = dict(
            id=uuid.uuid4(),
            user_id=posting.user_id,
            user_role=posting.user_role,
            wallet_type=posting.wallet_type,
            balance=ZERO,
            last_sequence=0,
            is_frozen=False,
        )
        dialect = self.session.get_bind().dialect.name
        if dialect in UPSERT_DIALECTS:
            # A concurrent writer may create the same account first
            stmt = UPSERT_DIALECTS[dialect](WalletAccount.__table__).values(**values)
            self.session.execute(stmt.on_conflict_do_nothing(index_elements=['user_id', 'wallet_type']))
        else:
            self.session.add(WalletAccount(**values))
            self.session.flush()
        return query.with_for_update().one()

    @contextmanager
    def _deadline(self, operation):
        if self.session.get_bind().dialect.name == 'postgresql':
            timeout = int(self.timeout_ms)
            self.session.execute(text(f"SET LOCAL statement_timeout = {timeout}"))
            self.session.execute(text(f"SET LOCAL lock_timeout = {timeout}"))

        started = time.monotonic()
        yield
        elapsed_ms = (time.monotonic() - started) * 1000
        if elapsed_ms > self.timeout_ms:
            logger.warning(f"Ledger {operation} exceeded deadline: {elapsed_ms:.0f}ms > {self.timeout_ms}ms")
            raise LedgerTimeoutError(f'Ledger {operation} exceeded its deadline', elapsed_ms=elapsed_ms)

    def _translate(self, exc, operation):
        orig = getattr(exc, 'orig', None)
        sqlstate = getattr(orig, 'sqlstate', None) or getattr(orig, 'pgcode', None)
        if sqlstate in TIMEOUT_SQLSTATES:
            logger.error(f"Ledger {operation} cancelled by deadline: {orig}")
            return LedgerTimeoutError(f'Ledger {operation} exceeded its deadline')
        logger.error(f"Ledger {operation} failed: {exc}")
        return LedgerPostingError(f'Ledger {operation} failed')
