"""
Reversal state machine.

    (none) -> PROCESSING -> COMPLETED | FAILED

One machine serves every reversal endpoint; the differences between them
live in the policy table (services.reversal_targets). Each step commits on
its own and appends its outcome to ``Reversal.steps`` so an interrupted
reversal can be resolved later by the reconciler.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import Reversal, ReversalStatus, BusinessTransactionStatus
from services.reversal_targets import target_for
from services.wallet_ledger import LedgerPosting
from utils.errors import (
    LedgerServiceError, LedgerPostingError, ValidationError, NotFoundError, ConflictError
)

logger = logging.getLogger(__name__)


@dataclass
class ReversalRequest:
    transaction_id: uuid.UUID
    reason: str
    remarks: Optional[str] = None
    metadata: dict = field(default_factory=dict)


@dataclass
class ReversalActor:
    admin_id: uuid.UUID
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class ReversalOutcome:
    reversal_id: uuid.UUID
    message: str
    before_balance: Decimal
    after_balance: Optional[Decimal]
    amount: Decimal

    def to_response(self):
        return {
            'success': True,
            'message': self.message,
            'reversal_id': str(self.reversal_id),
            'before_balance': float(self.before_balance),
            'after_balance': float(self.after_balance) if self.after_balance is not None else None,
            'amount': float(self.amount),
        }


class ReversalService:
    """Undoes a business transaction's wallet effect exactly once"""

    def __init__(self, session, ledger, audit_writer):
        self.session = session
        self.ledger = ledger
        self.audit = audit_writer

    def reverse(self, policy, request: ReversalRequest, actor: ReversalActor) -> ReversalOutcome:
        target = target_for(policy.transaction_type, self.session)
        snapshot = self._validate(policy, target, request)

        before_balance = self.ledger.get_balance(snapshot.user_id, snapshot.wallet_type)
        reversal = self._record_intent(policy, snapshot, request, actor)
        reversal_id = reversal.id

        try:
            entry_id = self._post_refund(policy, target, snapshot, reversal_id, request)
        except LedgerServiceError as exc:
            self._fail(reversal, exc)
            raise

        try:
            after_balance = self.ledger.get_balance(snapshot.user_id, snapshot.wallet_type)
        except LedgerPostingError as exc:
            logger.warning(f"Reversal {reversal_id}: after balance unavailable: {exc.message}")
            after_balance = None

        self._complete(reversal, target, snapshot, entry_id)
        self._audit(policy, snapshot, reversal, request, actor, before_balance, after_balance)

        return ReversalOutcome(
            reversal_id=reversal_id,
            message=policy.success_message,
            before_balance=before_balance,
            after_balance=after_balance,
            amount=snapshot.amount,
        )

    def get(self, reversal_id):
        reversal = self.session.get(Reversal, reversal_id)
        if reversal is None:
            raise NotFoundError('Reversal not found')
        return reversal

    # =========================================================================
    # STEPS
    # =========================================================================

    def _validate(self, policy, target, request):
        if not request.reason or not request.reason.strip():
            raise ValidationError('reason is required')

        snapshot = target.lookup(request.transaction_id)
        if snapshot is None:
            raise NotFoundError(target.not_found_message)
        if snapshot.status == BusinessTransactionStatus.REVERSED:
            raise ConflictError(target.already_reversed_message)

        for check in policy.preconditions:
            check(snapshot)

        in_flight = self.session.query(Reversal.id).filter(
            Reversal.transaction_type == policy.transaction_type,
            Reversal.original_transaction_id == snapshot.transaction_id,
            Reversal.status.in_([ReversalStatus.PROCESSING, ReversalStatus.COMPLETED]),
        ).first()
        if in_flight is not None:
            raise ConflictError('Reversal already in progress for this transaction')
        return snapshot

    def _record_intent(self, policy, snapshot, request, actor):
        reason = request.reason.strip()
        reversal = Reversal(
            original_transaction_id=snapshot.transaction_id,
            transaction_type=policy.transaction_type,
            variant=policy.variant,
            user_id=snapshot.user_id,
            user_role=snapshot.user_role,
            wallet_type=snapshot.wallet_type,
            original_amount=snapshot.amount,
            reversal_amount=snapshot.amount,
            reason=reason,
            status=ReversalStatus.PROCESSING,
            original_ledger_id=snapshot.ledger_id,
            admin_id=actor.admin_id,
            ip_address=actor.ip_address,
            user_agent=actor.user_agent,
            remarks=request.remarks or policy.default_remarks.format(reason=reason),
            meta_data={name: request.metadata.get(name) for name in policy.metadata_fields},
            steps=[],
        )
        reversal.record_step('intent_recorded', 'ok')
        self.session.add(reversal)

        try:
            self.session.commit()
        except IntegrityError as exc:
            # Another request recorded an active reversal between our check and insert
            self.session.rollback()
            logger.warning(f"Concurrent reversal rejected for {snapshot.transaction_id}: {exc.orig}")
            raise ConflictError('Reversal already in progress for this transaction') from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(f"Error creating reversal for {snapshot.transaction_id}: {exc}")
            raise LedgerServiceError('Failed to create reversal') from exc

        logger.info(
            f"Reversal {reversal.id} PROCESSING: {policy.variant} {policy.transaction_type.value} "
            f"{snapshot.transaction_id} amount={snapshot.amount}"
        )
        return reversal

    def _post_refund(self, policy, target, snapshot, reversal_id, request):
        reference_id = f"{policy.reference_prefix}_{snapshot.transaction_id}_{int(time.time() * 1000)}"
        amount = snapshot.amount
        return self.ledger.append_entry(LedgerPosting(
            user_id=snapshot.user_id,
            user_role=snapshot.user_role,
            wallet_type=snapshot.wallet_type,
            fund_category=target.fund_category,
            service_type=policy.transaction_type.value,
            tx_type=target.ledger_tx_type,
            credit=amount if target.credit_owner else Decimal('0'),
            debit=Decimal('0') if target.credit_owner else amount,
            reference_id=reference_id,
            transaction_id=reversal_id,
            remarks=policy.ledger_remarks.format(reason=request.reason.strip(), remarks=request.remarks or ''),
        ))

    def _fail(self, reversal, exc):
        reversal.status = ReversalStatus.FAILED
        reversal.failure_reason = exc.message
        reversal.record_step('refund_failed', 'failed', error=exc.message)
        try:
            self.session.commit()
        except SQLAlchemyError as db_exc:
            self.session.rollback()
            logger.error(f"Reversal {reversal.id} could not be marked FAILED, left for reconciler: {db_exc}")
            return
        logger.error(f"Reversal {reversal.id} FAILED: {exc.message}")

    def _complete(self, reversal, target, snapshot, entry_id):
        reversal.reversal_ledger_id = entry_id
        reversal.status = ReversalStatus.COMPLETED
        reversal.completed_at = datetime.utcnow()
        reversal.record_step('refund_posted', 'ok', ledger_entry_id=str(entry_id))

        marked = target.mark_reversed(snapshot.transaction_id)
        reversal.record_step('original_marked', 'ok' if marked else 'already_reversed')
        if not marked:
            logger.error(f"Reversal {reversal.id}: original {snapshot.transaction_id} was already reversed")

        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(f"Reversal {reversal.id} refund posted ({entry_id}) but not finalised: {exc}")
            raise LedgerServiceError(
                'Refund posted but the reversal could not be finalised; it will be reconciled'
            ) from exc

        logger.info(f"Reversal {reversal.id} COMPLETED with ledger entry {entry_id}")

    def _audit(self, policy, snapshot, reversal, request, actor, before_balance, after_balance):
        metadata = {
            'transaction_id': str(snapshot.transaction_id),
            'transaction_type': policy.transaction_type.value,
            'reversal_id': str(reversal.id),
        }
        for name in policy.metadata_fields:
            metadata[name] = request.metadata.get(name)

        entry = self.audit.record(
            admin_id=actor.admin_id,
            action_type=policy.audit_action,
            target_user_id=snapshot.user_id,
            target_user_role=snapshot.user_role,
            wallet_type=snapshot.wallet_type,
            amount=snapshot.amount,
            before_balance=before_balance,
            after_balance=after_balance,
            ip_address=actor.ip_address,
            user_agent=actor.user_agent,
            remarks=policy.audit_remarks.format(
                transaction_type=policy.transaction_type.value, reason=request.reason.strip()
            ),
            metadata=metadata,
        )

        reversal.record_step('audit_written' if entry else 'audit_failed', 'ok' if entry else 'failed')
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(f"Reversal {reversal.id}: could not record audit step: {exc}")
