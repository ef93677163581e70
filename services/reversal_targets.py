"""
Reversal targets and the per-variant policy table.

A ReversalTarget knows how to read one kind of business transaction and
flip it to ``reversed``; a ReversalPolicy holds everything that differs
between the reversal endpoints (extra preconditions, reference prefix,
remarks, audit action, response message).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Tuple
import uuid

from sqlalchemy import update

from models import (
    BBPSTransaction, AEPSTransaction, Settlement, POSTransaction,
    BusinessTransactionStatus, ReversalTransactionType, WalletType,
    LedgerTxType, AuditActionType
)
from utils.errors import ConflictError, ValidationError


@dataclass
class TargetSnapshot:
    transaction_id: uuid.UUID
    user_id: uuid.UUID
    user_role: str
    amount: Decimal
    wallet_type: WalletType
    ledger_id: Optional[uuid.UUID]
    status: BusinessTransactionStatus


# =============================================================================
# TARGETS
# =============================================================================

class ReversalTarget(ABC):
    """Capability the reversal machine needs from a transaction table"""

    transaction_type: ReversalTransactionType
    wallet_type = WalletType.PRIMARY
    fund_category = None
    # Ledger effect of undoing the transaction
    credit_owner = True
    ledger_tx_type = LedgerTxType.REFUND
    not_found_message = 'Transaction not found'
    already_reversed_message = 'Transaction already reversed'

    def __init__(self, session):
        self.session = session

    @abstractmethod
    def lookup(self, transaction_id) -> Optional[TargetSnapshot]:
        pass

    @abstractmethod
    def mark_reversed(self, transaction_id) -> bool:
        """Compare-and-swap the transaction to reversed; False if it already was"""
        pass


class TableReversalTarget(ReversalTarget):
    """Target backed by one business transaction model"""

    model = None
    owner_column = 'user_id'
    role_column = 'user_role'
    fixed_role = None
    amount_column = 'amount'
    ledger_column = 'wallet_debit_id'

    def lookup(self, transaction_id):
        row = self.session.get(self.model, transaction_id, populate_existing=True)
        if row is None:
            return None
        return TargetSnapshot(
            transaction_id=row.id,
            user_id=getattr(row, self.owner_column),
            user_role=self.fixed_role or getattr(row, self.role_column),
            amount=Decimal(str(getattr(row, self.amount_column) or 0)),
            wallet_type=self.wallet_type,
            ledger_id=getattr(row, self.ledger_column),
            status=row.status,
        )

    def mark_reversed(self, transaction_id):
        result = self.session.execute(
            update(self.model)
            .where(self.model.id == transaction_id,
                   self.model.status != BusinessTransactionStatus.REVERSED)
            .values(status=BusinessTransactionStatus.REVERSED, updated_at=datetime.utcnow())
        )
        return result.rowcount == 1


class BBPSReversalTarget(TableReversalTarget):
    transaction_type = ReversalTransactionType.BBPS
    model = BBPSTransaction
    fund_category = 'bbps'
    owner_column = 'retailer_id'
    fixed_role = 'retailer'
    amount_column = 'bill_amount'
    not_found_message = 'BBPS transaction not found'


class AEPSReversalTarget(TableReversalTarget):
    transaction_type = ReversalTransactionType.AEPS
    model = AEPSTransaction
    wallet_type = WalletType.AEPS
    fund_category = 'aeps'
    not_found_message = 'AEPS transaction not found'


class SettlementReversalTarget(TableReversalTarget):
    transaction_type = ReversalTransactionType.SETTLEMENT
    model = Settlement
    fund_category = 'settlement'
    ledger_column = 'ledger_entry_id'
    not_found_message = 'Settlement not found'
    already_reversed_message = 'Settlement already reversed'


class POSReversalTarget(TableReversalTarget):
    """POS collections credited the retailer; reversing claws the credit back"""
    transaction_type = ReversalTransactionType.POS
    model = POSTransaction
    fund_category = 'pos'
    owner_column = 'retailer_id'
    fixed_role = 'retailer'
    amount_column = 'net_amount'
    ledger_column = 'wallet_credit_id'
    credit_owner = False
    ledger_tx_type = LedgerTxType.ADJUSTMENT
    not_found_message = 'POS transaction not found'


TARGETS = {
    ReversalTransactionType.BBPS: BBPSReversalTarget,
    ReversalTransactionType.AEPS: AEPSReversalTarget,
    ReversalTransactionType.SETTLEMENT: SettlementReversalTarget,
    ReversalTransactionType.POS: POSReversalTarget,
}


def target_for(transaction_type, session):
    try:
        kind = ReversalTransactionType(transaction_type)
    except ValueError:
        raise ValidationError('Invalid transaction_type')
    if kind not in TARGETS:
        raise ValidationError('Unsupported transaction type for reversal')
    return TARGETS[kind](session)


# =============================================================================
# PRECONDITIONS
# =============================================================================

def reject_successful(snapshot):
    if snapshot.status == BusinessTransactionStatus.SUCCESS:
        raise ConflictError('Cannot reverse successful transaction. Use general reversal endpoint.')


def reject_zero_amount(snapshot):
    if snapshot.amount <= 0:
        raise ConflictError('Transaction amount is zero; nothing to reverse')


# =============================================================================
# POLICY TABLE
# =============================================================================

@dataclass(frozen=True)
class ReversalPolicy:
    variant: str
    transaction_type: ReversalTransactionType
    reference_prefix: str
    default_remarks: str
    ledger_remarks: str
    audit_action: AuditActionType
    audit_remarks: str
    success_message: str
    preconditions: Tuple[Callable, ...] = (reject_zero_amount,)
    metadata_fields: Tuple[str, ...] = ()


def _generic(transaction_type):
    return ReversalPolicy(
        variant='generic',
        transaction_type=transaction_type,
        reference_prefix='REVERSAL',
        default_remarks='Reversal by admin - {reason}',
        ledger_remarks='Reversal - {reason} - {remarks}',
        audit_action=AuditActionType.TRANSACTION_REVERSE,
        audit_remarks='Transaction reversal - Type: {transaction_type}, Reason: {reason}',
        success_message='Transaction reversed successfully',
    )


GENERIC_POLICIES = {kind: _generic(kind) for kind in TARGETS}

VARIANT_POLICIES = {
    'bbps_failure': ReversalPolicy(
        variant='bbps_failure',
        transaction_type=ReversalTransactionType.BBPS,
        reference_prefix='BBPS_REVERSAL',
        default_remarks='BBPS failure reversal - {reason}',
        ledger_remarks='BBPS failure reversal - {reason} - {remarks}',
        audit_action=AuditActionType.BBPS_FAILURE_REVERSAL,
        audit_remarks='BBPS failure reversal - Reason: {reason}',
        success_message='BBPS transaction reversed successfully',
        preconditions=(reject_successful, reject_zero_amount),
    ),
    'settlement_failure': ReversalPolicy(
        variant='settlement_failure',
        transaction_type=ReversalTransactionType.SETTLEMENT,
        reference_prefix='SETTLEMENT_REVERSAL',
        default_remarks='Settlement failure reversal - {reason}',
        ledger_remarks='Settlement failure reversal - {reason} - {remarks}',
        audit_action=AuditActionType.SETTLEMENT_FAILURE_REVERSAL,
        audit_remarks='Settlement failure reversal - Reason: {reason}',
        success_message='Settlement reversed successfully',
    ),
    'aeps_post_reconciliation': ReversalPolicy(
        variant='aeps_post_reconciliation',
        transaction_type=ReversalTransactionType.AEPS,
        reference_prefix='AEPS_REVERSAL',
        default_remarks='AEPS failure reversal (post reconciliation) - {reason}',
        ledger_remarks='AEPS failure reversal (post reconciliation) - {reason} - {remarks}',
        audit_action=AuditActionType.AEPS_FAILURE_REVERSAL,
        audit_remarks='AEPS failure reversal (post reconciliation) - Reason: {reason}',
        success_message='AEPS transaction reversed successfully (post reconciliation)',
        metadata_fields=('reconciliation_date',),
    ),
}


def policy_for(variant, transaction_type=None):
    """Generic reversals are keyed by transaction type, named variants by name"""
    if variant == 'generic':
        try:
            kind = ReversalTransactionType(transaction_type)
        except ValueError:
            raise ValidationError('Invalid transaction_type')
        if kind not in GENERIC_POLICIES:
            raise ValidationError('Unsupported transaction type for reversal')
        return GENERIC_POLICIES[kind]
    try:
        return VARIANT_POLICIES[variant]
    except KeyError:
        raise ValidationError(f'Unknown reversal variant: {variant}')
