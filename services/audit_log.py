"""
Admin audit log writer.

Best effort: a failed audit insert is rolled back and logged, and the
caller's primary operation still succeeds. The gap is visible only in the
application log and in the caller's own records (reversals note it in their
step log).
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from models import AdminAuditLog, AuditActionType
from utils.errors import AuditLogError

logger = logging.getLogger(__name__)


class AuditLogWriter:

    def __init__(self, session):
        self.session = session

    def record(self, admin_id, action_type, target_user_id=None, target_user_role=None,
               wallet_type=None, amount=None, before_balance=None, after_balance=None,
               ip_address=None, user_agent=None, remarks=None, metadata=None):
        """Insert one audit row in its own commit; returns the row or None on failure"""
        try:
            entry = self._write(
                admin_id=admin_id,
                action_type=action_type,
                target_user_id=target_user_id,
                target_user_role=target_user_role,
                wallet_type=getattr(wallet_type, 'value', wallet_type),
                amount=amount,
                before_balance=before_balance,
                after_balance=after_balance,
                ip_address=ip_address,
                user_agent=user_agent,
                remarks=remarks,
                meta_data=metadata or {},
            )
        except AuditLogError as exc:
            logger.error(
                f"Error logging admin action {action_type} by {admin_id} "
                f"on {target_user_id}: {exc.message}"
            )
            return None

        logger.info(f"Audit {entry.action_type.value} by {admin_id} on {target_user_id}")
        return entry

    def _write(self, **fields):
        try:
            fields['action_type'] = AuditActionType(fields['action_type'])
            entry = AdminAuditLog(**fields)
            self.session.add(entry)
            self.session.commit()
            return entry
        except (SQLAlchemyError, ValueError, TypeError) as exc:
            self.session.rollback()
            raise AuditLogError(str(exc)) from exc
