"""
Pytest configuration and fixtures for the wallet ledger tests.

Every test gets a fresh application on in-memory SQLite with the schema
created, plus a factory for partners, wallets, transactions and schemes.
"""
from decimal import Decimal
import itertools

import pytest

from app import create_app
from models import (
    db as _db, User, UserRoleType, WalletType, LedgerTxType,
    BBPSTransaction, AEPSTransaction, Settlement, POSTransaction,
    BusinessTransactionStatus, Scheme, SchemeType, ServiceScope, SchemeMapping,
    SchemeBBPSCommission, SchemePayoutCharge, SchemeMDRRate, ChargeType,
    RecordStatus, MappingEntityRole
)
from services.registry import LedgerServices
from services.wallet_ledger import LedgerPosting


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def session(app):
    return _db.session


@pytest.fixture
def services(app):
    return LedgerServices(_db.session, app.config)


@pytest.fixture
def factory(session, services):
    return Factory(session, services)


@pytest.fixture
def admin(factory):
    return factory.user(UserRoleType.ADMIN, api_key=True)


@pytest.fixture
def admin_headers(admin):
    return {'X-API-Key': admin.api_key, 'User-Agent': 'pytest-agent'}


@pytest.fixture
def chain(factory):
    """(master_distributor, distributor, retailer)"""
    return factory.chain()


class Factory:
    """Builds committed rows for tests"""

    _codes = itertools.count(1)

    def __init__(self, session, services):
        self.session = session
        self.services = services

    def _save(self, obj):
        self.session.add(obj)
        self.session.commit()
        return obj

    # -- partners ------------------------------------------------------------

    def user(self, role, parent=None, api_key=False, is_active=True):
        user = User(
            user_code=f'{role.value[:3]}{next(self._codes):04d}',
            full_name=f'{role.value.title()} User',
            role=role,
            parent_id=parent.id if parent is not None else None,
            is_active=is_active,
        )
        if api_key:
            user.generate_api_key()
        return self._save(user)

    def chain(self):
        master = self.user(UserRoleType.MASTER_DISTRIBUTOR)
        distributor = self.user(UserRoleType.DISTRIBUTOR, parent=master)
        retailer = self.user(UserRoleType.RETAILER, parent=distributor)
        return master, distributor, retailer

    def fund(self, user, amount, wallet_type=WalletType.PRIMARY):
        return self.services.ledger.append_entry(LedgerPosting(
            user_id=user.id,
            user_role=user.ledger_role,
            wallet_type=wallet_type,
            fund_category='topup',
            service_type='topup',
            tx_type=LedgerTxType.TRANSFER,
            credit=Decimal(str(amount)),
            debit=Decimal('0'),
            reference_id=f'TOPUP_{user.id}_{next(self._codes)}',
        ))

    # -- business transactions ----------------------------------------------

    def bbps(self, retailer, amount='500.00', status=BusinessTransactionStatus.SUCCESS, **kwargs):
        return self._save(BBPSTransaction(
            retailer_id=retailer.id,
            biller_id='BILLER01',
            biller_name='State Electricity Board',
            category=kwargs.pop('category', 'Electricity'),
            consumer_number='1234567890',
            bill_amount=Decimal(amount),
            status=status,
            **kwargs
        ))

    def aeps(self, user, amount='1000.00', status=BusinessTransactionStatus.FAILED):
        return self._save(AEPSTransaction(
            user_id=user.id,
            user_role=user.ledger_role,
            aeps_type='cash_withdrawal',
            amount=Decimal(amount),
            status=status,
        ))

    def settlement(self, user, amount='2000.00', status=BusinessTransactionStatus.FAILED):
        return self._save(Settlement(
            user_id=user.id,
            user_role=user.ledger_role,
            amount=Decimal(amount),
            charge=Decimal('10.00'),
            settlement_mode='IMPS',
            status=status,
        ))

    def pos(self, retailer, amount='1000.00', net_amount='985.00',
            status=BusinessTransactionStatus.SUCCESS):
        return self._save(POSTransaction(
            retailer_id=retailer.id,
            amount=Decimal(amount),
            mode='CARD',
            card_type='CREDIT',
            brand_type='VISA',
            settlement_type='T1',
            mdr_amount=Decimal(amount) - Decimal(net_amount),
            net_amount=Decimal(net_amount),
            status=status,
        ))

    # -- schemes -------------------------------------------------------------

    def scheme(self, name='Global Scheme', scheme_type=SchemeType.GLOBAL,
               service_scope=ServiceScope.ALL, priority=None, **kwargs):
        defaults = {SchemeType.GLOBAL: 1000, SchemeType.GOLDEN: 500, SchemeType.CUSTOM: 100}
        return self._save(Scheme(
            name=name,
            scheme_type=scheme_type,
            service_scope=service_scope,
            priority=priority if priority is not None else defaults[scheme_type],
            status=kwargs.pop('status', RecordStatus.ACTIVE),
            **kwargs
        ))

    def bbps_slab(self, scheme, category=None, min_amount='0', max_amount='999999999', **components):
        return self._save(SchemeBBPSCommission(
            scheme_id=scheme.id,
            category=category,
            min_amount=Decimal(min_amount),
            max_amount=Decimal(max_amount),
            **_components(components)
        ))

    def payout_slab(self, scheme, transfer_mode=None, min_amount='0', max_amount='999999999', **components):
        return self._save(SchemePayoutCharge(
            scheme_id=scheme.id,
            transfer_mode=transfer_mode,
            min_amount=Decimal(min_amount),
            max_amount=Decimal(max_amount),
            **_components(components)
        ))

    def mdr_rate(self, scheme, mode='CARD', card_type=None, brand_type=None, **rates):
        return self._save(SchemeMDRRate(
            scheme_id=scheme.id,
            mode=mode,
            card_type=card_type,
            brand_type=brand_type,
            **{name: Decimal(str(value)) for name, value in rates.items()}
        ))

    def mapping(self, scheme, user, role, service_type='all', priority=100):
        return self._save(SchemeMapping(
            scheme_id=scheme.id,
            entity_id=user.id,
            entity_role=MappingEntityRole(role),
            service_type=service_type,
            priority=priority,
            status=RecordStatus.ACTIVE,
        ))


def _components(components):
    """retailer_charge=('5', 'flat') style keyword arguments to column values"""
    values = {}
    for name, spec in components.items():
        amount, charge_type = spec if isinstance(spec, tuple) else (spec, 'flat')
        values[name] = Decimal(str(amount))
        values[f'{name}_type'] = ChargeType(charge_type)
    return values

