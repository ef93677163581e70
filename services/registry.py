"""
Wiring of the ledger services onto a storage session.

``init_services(app)`` registers a factory in ``app.extensions``; request
handlers call ``get_services()`` for a per-request set bound to
``db.session``. The CLI and tests can build a set directly with
``LedgerServices(session, app.config)``.
"""

from functools import cached_property

from flask import current_app, g

from models import db
from services.audit_log import AuditLogWriter
from services.ledger_posting import LedgerFanout
from services.reversal import ReversalService
from services.reversal_reconciler import ReversalReconciler
from services.scheme_management import SchemeService
from services.scheme_resolution import SchemeResolver
from services.wallet_ledger import WalletLedger

EXTENSION_KEY = 'ledger_services'


class LedgerServices:

    def __init__(self, session, config):
        self.session = session
        self.config = config

    @cached_property
    def ledger(self):
        return WalletLedger(self.session, timeout_ms=self.config['LEDGER_CALL_TIMEOUT_MS'])

    @cached_property
    def audit(self):
        return AuditLogWriter(self.session)

    @cached_property
    def resolver(self):
        return SchemeResolver(self.session, t0_markup=self.config['T0_MDR_MARKUP'])

    @cached_property
    def schemes(self):
        return SchemeService(
            self.session, self.resolver, self.audit,
            default_priorities=self.config['SCHEME_DEFAULT_PRIORITY'],
            mapping_priority=self.config['MAPPING_DEFAULT_PRIORITY'],
        )

    @cached_property
    def fanout(self):
        return LedgerFanout(self.session, self.ledger, self.config['COMPANY_ACCOUNT_ID'])

    @cached_property
    def reversals(self):
        return ReversalService(self.session, self.ledger, self.audit)

    @cached_property
    def reconciler(self):
        return ReversalReconciler(
            self.session, self.ledger, self.audit,
            stuck_after_minutes=self.config['REVERSAL_STUCK_AFTER_MINUTES'],
        )


def init_services(app):
    app.extensions[EXTENSION_KEY] = LedgerServices


def get_services():
    """Service set for the current request"""
    if EXTENSION_KEY not in g:
        factory = current_app.extensions[EXTENSION_KEY]
        setattr(g, EXTENSION_KEY, factory(db.session, current_app.config))
    return getattr(g, EXTENSION_KEY)
