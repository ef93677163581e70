import itertools
from decimal import Decimal

import pytest

from models import WalletAccount, WalletLedgerEntry, WalletType, LedgerTxType, UserRoleType
from services.wallet_ledger import LedgerPosting, WalletLedger
from utils.errors import LedgerPostingError, LedgerTimeoutError, ValidationError


def posting(user, reference_id, credit='0', debit='0', wallet_type=WalletType.PRIMARY,
            tx_type=LedgerTxType.PAYMENT):
    return LedgerPosting(
        user_id=user.id,
        user_role=user.ledger_role,
        wallet_type=wallet_type,
        fund_category='bbps',
        service_type='bbps',
        tx_type=tx_type,
        credit=Decimal(credit),
        debit=Decimal(debit),
        reference_id=reference_id,
    )


def test_balance_of_unknown_account_is_zero(services, chain):
    _, _, retailer = chain
    assert services.ledger.get_balance(retailer.id, WalletType.PRIMARY) == Decimal('0')


def test_append_maintains_running_balance(services, factory, chain):
    _, _, retailer = chain
    ledger = services.ledger

    factory.fund(retailer, '1000.00')
    ledger.append_entry(posting(retailer, 'PAY-1', debit='250.50'))
    ledger.append_entry(posting(retailer, 'REF-1', credit='100.25', tx_type=LedgerTxType.REFUND))

    entries = ledger.entries(retailer.id, WalletType.PRIMARY)
    assert [entry.sequence for entry in entries] == [1, 2, 3]

    previous = Decimal('0')
    for entry in entries:
        assert entry.opening_balance == previous
        assert entry.closing_balance == entry.opening_balance + entry.credit - entry.debit
        previous = entry.closing_balance

    assert ledger.get_balance(retailer.id, WalletType.PRIMARY) == Decimal('849.75')


def test_wallets_are_independent_per_type(services, factory, chain):
    _, _, retailer = chain
    factory.fund(retailer, '300.00')
    factory.fund(retailer, '40.00', wallet_type=WalletType.AEPS)

    assert services.ledger.get_balance(retailer.id, WalletType.PRIMARY) == Decimal('300.00')
    assert services.ledger.get_balance(retailer.id, WalletType.AEPS) == Decimal('40.00')


def test_insufficient_balance_is_rejected_without_entry(services, factory, chain, session):
    _, _, retailer = chain
    factory.fund(retailer, '100.00')

    with pytest.raises(LedgerPostingError, match='Insufficient wallet balance'):
        services.ledger.append_entry(posting(retailer, 'PAY-BIG', debit='100.01'))

    assert session.query(WalletLedgerEntry).filter_by(reference_id='PAY-BIG').count() == 0
    assert services.ledger.get_balance(retailer.id, WalletType.PRIMARY) == Decimal('100.00')


def test_duplicate_reference_is_rejected(services, factory, chain):
    _, _, retailer = chain
    services.ledger.append_entry(posting(retailer, 'DUP-1', credit='10.00'))

    with pytest.raises(LedgerPostingError, match='Duplicate'):
        services.ledger.append_entry(posting(retailer, 'DUP-1', credit='10.00'))

    assert services.ledger.get_balance(retailer.id, WalletType.PRIMARY) == Decimal('10.00')


@pytest.mark.parametrize('credit,debit', [('0', '0'), ('5', '5'), ('-5', '0')])
def test_exactly_one_side_must_be_positive(services, chain, credit, debit):
    _, _, retailer = chain
    with pytest.raises(ValidationError):
        services.ledger.append_entry(posting(retailer, 'BAD-1', credit=credit, debit=debit))


def test_frozen_wallet_refuses_debits_but_accepts_credits(services, factory, chain, session):
    _, _, retailer = chain
    factory.fund(retailer, '50.00')
    account = session.query(WalletAccount).filter_by(user_id=retailer.id).one()
    account.is_frozen = True
    session.commit()

    with pytest.raises(LedgerPostingError, match='frozen'):
        services.ledger.append_entry(posting(retailer, 'PAY-F', debit='10.00'))

    services.ledger.append_entry(posting(retailer, 'REF-F', credit='10.00', tx_type=LedgerTxType.REFUND))
    assert services.ledger.get_balance(retailer.id, WalletType.PRIMARY) == Decimal('60.00')


def test_account_balance_mirrors_latest_entry(services, factory, chain, session):
    _, _, retailer = chain
    factory.fund(retailer, '75.00')
    services.ledger.append_entry(posting(retailer, 'PAY-M', debit='25.00'))

    account = session.query(WalletAccount).filter_by(user_id=retailer.id).one()
    latest = services.ledger.entries(retailer.id, WalletType.PRIMARY)[-1]
    assert account.balance == latest.closing_balance == Decimal('50.00')
    assert account.last_sequence == latest.sequence


def test_slow_call_raises_timeout_and_rolls_back(session, factory, chain, monkeypatch):
    _, _, retailer = chain
    ledger = WalletLedger(session, timeout_ms=0)
    ticks = itertools.count()
    monkeypatch.setattr('services.wallet_ledger.time.monotonic', lambda: float(next(ticks)))

    with pytest.raises(LedgerTimeoutError):
        ledger.append_entry(posting(retailer, 'SLOW-1', credit='5.00'))

    assert session.query(WalletLedgerEntry).filter_by(reference_id='SLOW-1').count() == 0


def test_find_by_transaction_returns_completed_entry(services, chain):
    _, _, retailer = chain
    entry_posting = posting(retailer, 'TX-LINK', credit='12.00', tx_type=LedgerTxType.REFUND)
    entry_posting.transaction_id = retailer.id
    entry_id = services.ledger.append_entry(entry_posting)

    found = services.ledger.find_by_transaction(retailer.id, tx_type=LedgerTxType.REFUND)
    assert found.id == entry_id
    assert services.ledger.find_by_transaction(retailer.id, tx_type=LedgerTxType.COMMISSION) is None


def test_company_revenue_account_is_created_on_first_credit(services, factory):
    company = factory.user(UserRoleType.ADMIN)
    services.ledger.append_entry(posting(company, 'REV-1', credit='3.00', wallet_type=WalletType.REVENUE))
    assert services.ledger.get_balance(company.id, WalletType.REVENUE) == Decimal('3.00')
