"""
Reconciler for reversals stuck in PROCESSING.

A reversal stays in PROCESSING only when the process died (or the database
failed) between recording intent and finalising. The ledger is the source
of truth: if a refund entry tagged with the reversal id exists the reversal
is completed, otherwise it is failed and the original stays reversible.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict

from sqlalchemy.exc import SQLAlchemyError

from models import Reversal, ReversalStatus, AuditActionType
from services.reversal_targets import target_for

logger = logging.getLogger(__name__)


class ReversalReconciler:

    def __init__(self, session, ledger, audit_writer, stuck_after_minutes=15):
        self.session = session
        self.ledger = ledger
        self.audit = audit_writer
        self.stuck_after = timedelta(minutes=stuck_after_minutes)

    def stuck_reversals(self, now=None):
        cutoff = (now or datetime.utcnow()) - self.stuck_after
        return self.session.query(Reversal).filter(
            Reversal.status == ReversalStatus.PROCESSING,
            Reversal.created_at <= cutoff,
        ).order_by(Reversal.created_at.asc()).all()

    def run(self, now=None) -> Dict[str, Any]:
        """Resolve every stuck reversal; returns a summary of what was done"""
        results = {
            'scanned': 0,
            'completed': 0,
            'failed': 0,
            'errors': [],
            'reversals': [],
        }

        stuck = self.stuck_reversals(now)
        results['scanned'] = len(stuck)
        if not stuck:
            return results

        logger.info(f"Reversal reconciler: {len(stuck)} reversals stuck in PROCESSING")

        for reversal in stuck:
            reversal_id = reversal.id
            try:
                outcome = self.resolve(reversal)
            except SQLAlchemyError as exc:
                self.session.rollback()
                logger.error(f"Reversal reconciler could not resolve {reversal_id}: {exc}")
                results['errors'].append({'reversal_id': str(reversal_id), 'error': str(exc)})
                continue

            results[outcome] += 1
            results['reversals'].append({'reversal_id': str(reversal_id), 'outcome': outcome})

        logger.info(
            f"Reversal reconciler finished: {results['completed']} completed, "
            f"{results['failed']} failed, {len(results['errors'])} errors"
        )
        return results

    def resolve(self, reversal):
        """Finalise one PROCESSING reversal from the ledger's point of view"""
        target = target_for(reversal.transaction_type, self.session)
        entry = self.ledger.find_by_transaction(reversal.id, tx_type=target.ledger_tx_type)

        if entry is None:
            reversal.status = ReversalStatus.FAILED
            reversal.failure_reason = 'Reconciled: no refund posted'
            reversal.record_step('reconciled', 'failed')
            self.session.commit()
            logger.warning(f"Reversal {reversal.id} reconciled to FAILED: no refund entry in ledger")
            return 'failed'

        reversal.status = ReversalStatus.COMPLETED
        reversal.reversal_ledger_id = entry.id
        reversal.completed_at = datetime.utcnow()
        reversal.record_step('reconciled', 'completed', ledger_entry_id=str(entry.id))
        marked = target.mark_reversed(reversal.original_transaction_id)
        reversal.record_step('original_marked', 'ok' if marked else 'already_reversed')
        self.session.commit()
        logger.info(f"Reversal {reversal.id} reconciled to COMPLETED with ledger entry {entry.id}")

        self.audit.record(
            admin_id=reversal.admin_id,
            action_type=AuditActionType.REVERSAL_RECONCILED,
            target_user_id=reversal.user_id,
            target_user_role=reversal.user_role,
            wallet_type=reversal.wallet_type,
            amount=reversal.reversal_amount,
            after_balance=entry.closing_balance,
            remarks=f'Reversal reconciled - Reason: {reversal.reason}',
            metadata={
                'transaction_id': str(reversal.original_transaction_id),
                'transaction_type': reversal.transaction_type.value,
                'reversal_id': str(reversal.id),
            },
        )
        return 'completed'
