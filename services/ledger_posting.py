"""
Ledger fan-out: posts a commission breakdown across the partner hierarchy.

Every non-zero component becomes one independent ledger append. The fan-out
is not atomic across accounts; each component is tracked in a FanoutPosting
row so a failure partway through is left as a visible reconciliation case.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import List

from sqlalchemy.exc import SQLAlchemyError

from models import (
    FanoutPosting, FanoutStatus, FanoutDirection, WalletType, LedgerTxType
)
from services.wallet_ledger import LedgerPosting
from utils.errors import LedgerPostingError

logger = logging.getLogger(__name__)

COMPANY_ROLE = 'company'


@dataclass
class FanoutResult:
    transaction_id: str
    postings: List[dict] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def complete(self):
        return all(p['status'] == FanoutStatus.POSTED.value for p in self.postings)

    def to_dict(self):
        return {
            'transaction_id': self.transaction_id,
            'complete': self.complete,
            'postings': self.postings,
            'skipped': self.skipped,
        }


class LedgerFanout:
    """Posts charges and commissions for one transaction"""

    def __init__(self, session, ledger, company_account_id):
        self.session = session
        self.ledger = ledger
        self.company_account_id = uuid.UUID(str(company_account_id))

    def post(self, transaction_id, transaction_type, owner, breakdown,
             charge_separately=True, wallet_type=WalletType.PRIMARY) -> FanoutResult:
        """Post every non-zero component of ``breakdown`` for ``owner``'s transaction

        Safe to call again after a partial failure: components already posted
        are skipped and failed ones are retried.
        """
        result = FanoutResult(transaction_id=str(transaction_id))
        rows = self._plan(transaction_id, transaction_type, owner, breakdown,
                          charge_separately, wallet_type, result)

        for row in rows:
            if row.status == FanoutStatus.POSTED:
                result.postings.append(self._describe(row))
                continue
            self._post_row(row, transaction_type, result)
            result.postings.append(self._describe(row))

        logger.info(
            f"Fan-out for {transaction_type} {transaction_id}: "
            f"{len(result.postings)} postings, {len(result.skipped)} skipped"
        )
        return result

    def pending_cases(self):
        """Components that failed or never ran; each needs operator follow-up"""
        return self.session.query(FanoutPosting).filter(
            FanoutPosting.status.in_([FanoutStatus.PENDING, FanoutStatus.FAILED])
        ).order_by(FanoutPosting.created_at.asc()).all()

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _recipients(self, owner, charge_separately, wallet_type):
        distributor, master = owner.upline()
        plan = []
        if charge_separately:
            plan.append(('retailer_charge', owner, FanoutDirection.DEBIT, wallet_type))
        plan.append(('retailer_commission', owner, FanoutDirection.CREDIT, wallet_type))
        plan.append(('distributor_commission', distributor, FanoutDirection.CREDIT, WalletType.PRIMARY))
        plan.append(('md_commission', master, FanoutDirection.CREDIT, WalletType.PRIMARY))
        plan.append(('company_charge', None, FanoutDirection.CREDIT, WalletType.REVENUE))
        return plan

    def _plan(self, transaction_id, transaction_type, owner, breakdown,
              charge_separately, wallet_type, result):
        existing = {
            row.component: row for row in self.session.query(FanoutPosting).filter_by(
                transaction_id=transaction_id
            ).all()
        }
        rows = []
        for component, recipient, direction, target_wallet in self._recipients(
                owner, charge_separately, wallet_type):
            amount = breakdown.amount(component)
            if amount == 0:
                continue
            if component in existing:
                rows.append(existing[component])
                continue

            if component == 'company_charge':
                user_id, user_role = self.company_account_id, COMPANY_ROLE
            elif recipient is None:
                logger.warning(f"No upline account for {component} on {transaction_type} {transaction_id}; skipped")
                result.skipped.append(component)
                continue
            else:
                user_id, user_role = recipient.id, recipient.ledger_role

            row = FanoutPosting(
                transaction_id=transaction_id,
                transaction_type=transaction_type,
                component=component,
                user_id=user_id,
                user_role=user_role,
                wallet_type=target_wallet,
                direction=direction,
                amount=amount,
                status=FanoutStatus.PENDING,
            )
            self.session.add(row)
            rows.append(row)

        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(f"Could not record fan-out plan for {transaction_id}: {exc}")
            raise LedgerPostingError('Failed to record commission fan-out') from exc
        return rows

    def _post_row(self, row, transaction_type, result):
        reference_id = f"FANOUT_{transaction_type.upper()}_{row.component.upper()}_{row.transaction_id}"
        already = self.ledger.find_by_reference(reference_id)
        if already is not None:
            entry_id = already.id
        else:
            credit = row.amount if row.direction == FanoutDirection.CREDIT else 0
            debit = row.amount if row.direction == FanoutDirection.DEBIT else 0
            tx_type = LedgerTxType.CHARGE if row.direction == FanoutDirection.DEBIT else LedgerTxType.COMMISSION
            try:
                entry_id = self.ledger.append_entry(LedgerPosting(
                    user_id=row.user_id,
                    user_role=row.user_role,
                    wallet_type=row.wallet_type,
                    fund_category=transaction_type,
                    service_type=transaction_type,
                    tx_type=tx_type,
                    credit=credit,
                    debit=debit,
                    reference_id=reference_id,
                    transaction_id=row.transaction_id,
                    remarks=f"{row.component.replace('_', ' ').title()} - {transaction_type.upper()}",
                ))
            except LedgerPostingError as exc:
                row.status = FanoutStatus.FAILED
                row.error = exc.message
                self.session.commit()
                logger.error(
                    f"Reconciliation case: fan-out {row.component} for {transaction_type} "
                    f"{row.transaction_id} failed: {exc.message}"
                )
                result.postings.append(self._describe(row))
                raise LedgerPostingError(
                    f'Commission fan-out stopped at {row.component}: {exc.message}',
                    partial=result,
                ) from exc

        row.status = FanoutStatus.POSTED
        row.ledger_entry_id = entry_id
        row.error = None
        self.session.commit()

    @staticmethod
    def _describe(row):
        return {
            'component': row.component,
            'user_id': str(row.user_id),
            'wallet_type': row.wallet_type.value,
            'direction': row.direction.value,
            'amount': float(row.amount),
            'status': row.status.value,
            'ledger_entry_id': str(row.ledger_entry_id) if row.ledger_entry_id else None,
        }
