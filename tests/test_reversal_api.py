import uuid
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from models import (
    AdminAuditLog, AuditActionType, BBPSTransaction, BusinessTransactionStatus, LedgerTxType,
    POSTransaction, Reversal, ReversalStatus, ReversalTransactionType, Settlement,
    AEPSTransaction, UserRoleType, WalletLedgerEntry, WalletType
)
from services.audit_log import AuditLogWriter
from services.reversal import ReversalService
from services.wallet_ledger import WalletLedger
from utils.errors import AuditLogError, LedgerPostingError


def post(client, path, headers, **body):
    return client.post(f'/reversal/{path}', json=body, headers=headers)


def ledger_count(session):
    return session.query(WalletLedgerEntry).count()


def failing_append(self, posting):
    raise LedgerPostingError('Ledger append_entry failed')


def processing_reversal(tx, retailer, admin):
    return Reversal(
        original_transaction_id=tx.id,
        transaction_type=ReversalTransactionType.BBPS,
        variant='generic',
        user_id=retailer.id,
        user_role='retailer',
        wallet_type=WalletType.PRIMARY,
        original_amount=Decimal('500.00'),
        reversal_amount=Decimal('500.00'),
        reason='race',
        status=ReversalStatus.PROCESSING,
        admin_id=admin.id,
        steps=[],
    )


class TestGenericReversal:

    def test_bbps_reversal_credits_owner_and_marks_original(self, client, admin_headers, factory,
                                                            chain, services, session):
        _, _, retailer = chain
        tx = factory.bbps(retailer, '500.00')

        response = post(client, 'create', admin_headers, transaction_id=str(tx.id),
                        transaction_type='bbps', reason='duplicate payment')

        assert response.status_code == 200
        body = response.get_json()
        assert body['success'] is True
        assert body['amount'] == 500.0
        assert body['before_balance'] == 0.0
        assert body['after_balance'] == body['before_balance'] + 500.0

        reversal = session.get(Reversal, uuid.UUID(body['reversal_id']))
        assert reversal.status == ReversalStatus.COMPLETED
        assert reversal.reversal_amount == Decimal('500.00')
        assert reversal.completed_at is not None
        assert [step['step'] for step in reversal.steps] == [
            'intent_recorded', 'refund_posted', 'original_marked', 'audit_written',
        ]

        entry = session.get(WalletLedgerEntry, reversal.reversal_ledger_id)
        assert entry.tx_type == LedgerTxType.REFUND
        assert entry.credit == Decimal('500.00')
        assert entry.user_id == retailer.id
        assert entry.transaction_id == reversal.id

        assert session.get(BBPSTransaction, tx.id).status == BusinessTransactionStatus.REVERSED
        assert services.ledger.get_balance(retailer.id, WalletType.PRIMARY) == Decimal('500.00')

    def test_audit_row_captures_balances_and_request(self, client, admin_headers, admin, factory,
                                                     chain, session):
        _, _, retailer = chain
        factory.fund(retailer, '40.00')
        tx = factory.bbps(retailer, '60.00')

        body = post(client, 'create', admin_headers, transaction_id=str(tx.id),
                    transaction_type='bbps', reason='customer complaint').get_json()

        audit = session.query(AdminAuditLog).filter_by(
            action_type=AuditActionType.TRANSACTION_REVERSE).one()
        assert audit.admin_id == admin.id
        assert audit.target_user_id == retailer.id
        assert audit.before_balance == Decimal('40.00')
        assert audit.after_balance == Decimal('100.00')
        assert audit.user_agent == 'pytest-agent'
        assert audit.ip_address == '127.0.0.1'
        assert audit.meta_data == {
            'transaction_id': str(tx.id),
            'transaction_type': 'bbps',
            'reversal_id': body['reversal_id'],
        }

    def test_second_reversal_is_rejected_without_ledger_change(self, client, admin_headers, factory,
                                                               chain, services, session):
        _, _, retailer = chain
        tx = factory.bbps(retailer, '500.00')
        post(client, 'create', admin_headers, transaction_id=str(tx.id),
             transaction_type='bbps', reason='duplicate payment')
        entries = ledger_count(session)

        response = post(client, 'create', admin_headers, transaction_id=str(tx.id),
                        transaction_type='bbps', reason='duplicate payment')

        assert response.status_code == 400
        assert response.get_json() == {'success': False, 'error': 'Transaction already reversed'}
        assert ledger_count(session) == entries
        assert services.ledger.get_balance(retailer.id, WalletType.PRIMARY) == Decimal('500.00')
        assert session.query(Reversal).count() == 1

    def test_unknown_transaction_is_404_and_writes_nothing(self, client, admin_headers, session):
        response = post(client, 'create', admin_headers, transaction_id=str(uuid.uuid4()),
                        transaction_type='bbps', reason='typo')

        assert response.status_code == 404
        assert response.get_json()['error'] == 'BBPS transaction not found'
        assert session.query(Reversal).count() == 0
        assert ledger_count(session) == 0
        assert session.query(AdminAuditLog).count() == 0

    def test_ledger_failure_marks_reversal_failed(self, client, admin_headers, factory, chain,
                                                  services, session, monkeypatch):
        _, _, retailer = chain
        factory.fund(retailer, '25.00')
        tx = factory.bbps(retailer, '500.00')

        monkeypatch.setattr(WalletLedger, 'append_entry', failing_append)
        response = post(client, 'create', admin_headers, transaction_id=str(tx.id),
                        transaction_type='bbps', reason='duplicate payment')

        assert response.status_code == 500
        assert response.get_json()['success'] is False

        reversal = session.query(Reversal).one()
        assert reversal.status == ReversalStatus.FAILED
        assert reversal.failure_reason == 'Ledger append_entry failed'
        assert reversal.steps[-1]['step'] == 'refund_failed'
        assert session.get(BBPSTransaction, tx.id).status == BusinessTransactionStatus.SUCCESS
        assert services.ledger.get_balance(retailer.id, WalletType.PRIMARY) == Decimal('25.00')

    def test_failed_reversal_can_be_retried(self, client, admin_headers, factory, chain, session,
                                            monkeypatch):
        _, _, retailer = chain
        tx = factory.bbps(retailer, '80.00')

        with monkeypatch.context() as patch:
            patch.setattr(WalletLedger, 'append_entry', failing_append)
            assert post(client, 'create', admin_headers, transaction_id=str(tx.id),
                        transaction_type='bbps', reason='retry me').status_code == 500

        response = post(client, 'create', admin_headers, transaction_id=str(tx.id),
                        transaction_type='bbps', reason='retry me')

        assert response.status_code == 200
        statuses = sorted(r.status.value for r in session.query(Reversal).all())
        assert statuses == ['completed', 'failed']

    def test_audit_failure_does_not_fail_reversal(self, client, admin_headers, factory, chain,
                                                  session, monkeypatch):
        _, _, retailer = chain
        tx = factory.bbps(retailer, '500.00')

        def broken_write(self, **fields):
            raise AuditLogError('audit table unavailable')

        monkeypatch.setattr(AuditLogWriter, '_write', broken_write)
        response = post(client, 'create', admin_headers, transaction_id=str(tx.id),
                        transaction_type='bbps', reason='duplicate payment')

        assert response.status_code == 200
        reversal = session.query(Reversal).one()
        assert reversal.status == ReversalStatus.COMPLETED
        assert reversal.steps[-1]['step'] == 'audit_failed'
        assert reversal.steps[-1]['outcome'] == 'failed'
        assert session.query(AdminAuditLog).count() == 0

    def test_pos_reversal_claws_back_net_credit(self, client, admin_headers, factory, chain,
                                                services, session):
        _, _, retailer = chain
        factory.fund(retailer, '985.00')
        tx = factory.pos(retailer, amount='1000.00', net_amount='985.00')

        response = post(client, 'create', admin_headers, transaction_id=str(tx.id),
                        transaction_type='pos', reason='chargeback')

        assert response.status_code == 200
        assert response.get_json()['amount'] == 985.0
        assert services.ledger.get_balance(retailer.id, WalletType.PRIMARY) == Decimal('0.00')
        assert session.get(POSTransaction, tx.id).status == BusinessTransactionStatus.REVERSED

        reversal = session.query(Reversal).one()
        entry = session.get(WalletLedgerEntry, reversal.reversal_ledger_id)
        assert entry.tx_type == LedgerTxType.ADJUSTMENT
        assert entry.debit == Decimal('985.00')

    def test_zero_amount_transaction_is_rejected(self, client, admin_headers, factory, chain, session):
        _, _, retailer = chain
        tx = factory.aeps(retailer, amount='0')

        response = post(client, 'create', admin_headers, transaction_id=str(tx.id),
                        transaction_type='aeps', reason='balance enquiry')

        assert response.status_code == 400
        assert session.query(Reversal).count() == 0


class TestRequestValidation:

    @pytest.mark.parametrize('body', [
        {'transaction_type': 'bbps', 'reason': 'x'},
        {'transaction_id': str(uuid.uuid4()), 'reason': 'x'},
        {'transaction_id': str(uuid.uuid4()), 'transaction_type': 'bbps', 'reason': '  '},
    ])
    def test_missing_fields(self, client, admin_headers, body):
        response = client.post('/reversal/create', json=body, headers=admin_headers)

        assert response.status_code == 400
        assert response.get_json()['error'] == 'transaction_id, transaction_type, and reason are required'

    def test_invalid_transaction_type(self, client, admin_headers):
        response = post(client, 'create', admin_headers, transaction_id=str(uuid.uuid4()),
                        transaction_type='recharge', reason='x')

        assert response.status_code == 400
        assert response.get_json()['error'] == 'Invalid transaction_type'

    def test_admin_type_is_accepted_but_unsupported(self, client, admin_headers):
        response = post(client, 'create', admin_headers, transaction_id=str(uuid.uuid4()),
                        transaction_type='admin', reason='x')

        assert response.status_code == 400
        assert response.get_json()['error'] == 'Unsupported transaction type for reversal'

    def test_malformed_transaction_id(self, client, admin_headers):
        response = post(client, 'create', admin_headers, transaction_id='tx-1',
                        transaction_type='bbps', reason='x')

        assert response.status_code == 400
        assert response.get_json()['error'] == 'Invalid transaction_id format'

    def test_non_object_body(self, client, admin_headers):
        response = client.post('/reversal/create', json=['bbps'], headers=admin_headers)

        assert response.status_code == 400
        assert response.get_json()['error'] == 'Request body must be a JSON object'


class TestAuthentication:

    def test_missing_api_key(self, client, factory, chain):
        _, _, retailer = chain
        tx = factory.bbps(retailer)

        response = client.post('/reversal/create', json={
            'transaction_id': str(tx.id), 'transaction_type': 'bbps', 'reason': 'x'})

        assert response.status_code == 401
        assert response.get_json()['error'] == 'Unauthorized: Admin access required'

    def test_partner_key_is_not_admin(self, client, factory, chain, session):
        _, distributor, retailer = chain
        distributor.generate_api_key()
        session.commit()
        tx = factory.bbps(retailer)

        response = post(client, 'create', {'X-API-Key': distributor.api_key},
                        transaction_id=str(tx.id), transaction_type='bbps', reason='x')

        assert response.status_code == 401
        assert session.get(BBPSTransaction, tx.id).status == BusinessTransactionStatus.SUCCESS

    def test_inactive_admin_is_rejected(self, client, factory):
        inactive = factory.user(UserRoleType.ADMIN, api_key=True, is_active=False)

        response = post(client, 'create', {'X-API-Key': inactive.api_key},
                        transaction_id=str(uuid.uuid4()), transaction_type='bbps', reason='x')

        assert response.status_code == 401


class TestVariants:

    def test_bbps_failure_reversal_refunds_failed_payment(self, client, admin_headers, factory,
                                                          chain, session):
        _, _, retailer = chain
        tx = factory.bbps(retailer, '250.00', status=BusinessTransactionStatus.FAILED)

        response = post(client, 'bbps-failure-reversal', admin_headers,
                        transaction_id=str(tx.id), reason='biller timeout')

        assert response.status_code == 200
        assert response.get_json()['message'] == 'BBPS transaction reversed successfully'
        reversal = session.query(Reversal).one()
        assert reversal.variant == 'bbps_failure'
        assert session.query(AdminAuditLog).filter_by(
            action_type=AuditActionType.BBPS_FAILURE_REVERSAL).count() == 1

    def test_bbps_failure_reversal_refuses_successful_payment(self, client, admin_headers, factory,
                                                              chain, session):
        _, _, retailer = chain
        tx = factory.bbps(retailer, '250.00', status=BusinessTransactionStatus.SUCCESS)

        response = post(client, 'bbps-failure-reversal', admin_headers,
                        transaction_id=str(tx.id), reason='biller timeout')

        assert response.status_code == 400
        assert response.get_json()['error'] == (
            'Cannot reverse successful transaction. Use general reversal endpoint.'
        )
        assert session.query(Reversal).count() == 0
        assert ledger_count(session) == 0

    def test_settlement_failure_reversal(self, client, admin_headers, factory, chain, services,
                                         session):
        _, distributor, _ = chain
        settlement = factory.settlement(distributor, '2000.00')

        response = post(client, 'settlement-failure-reversal', admin_headers,
                        settlement_id=str(settlement.id), reason='bank rejected')

        assert response.status_code == 200
        assert services.ledger.get_balance(distributor.id, WalletType.PRIMARY) == Decimal('2000.00')
        assert session.get(Settlement, settlement.id).status == BusinessTransactionStatus.REVERSED

        second = post(client, 'settlement-failure-reversal', admin_headers,
                      settlement_id=str(settlement.id), reason='bank rejected')
        assert second.status_code == 400
        assert second.get_json()['error'] == 'Settlement already reversed'

    def test_settlement_failure_reversal_requires_settlement_id(self, client, admin_headers):
        response = post(client, 'settlement-failure-reversal', admin_headers,
                        transaction_id=str(uuid.uuid4()), reason='bank rejected')

        assert response.status_code == 400
        assert response.get_json()['error'] == 'settlement_id and reason are required'

    def test_aeps_reversal_credits_aeps_wallet(self, client, admin_headers, factory, chain,
                                               services, session):
        _, _, retailer = chain
        tx = factory.aeps(retailer, '1000.00')

        response = post(client, 'aeps-post-reconciliation-reversal', admin_headers,
                        transaction_id=str(tx.id), reason='NPCI reconciliation',
                        reconciliation_date='2024-05-01T00:00:00Z')

        assert response.status_code == 200
        assert services.ledger.get_balance(retailer.id, WalletType.AEPS) == Decimal('1000.00')
        assert services.ledger.get_balance(retailer.id, WalletType.PRIMARY) == Decimal('0')
        assert session.get(AEPSTransaction, tx.id).status == BusinessTransactionStatus.REVERSED

        reversal = session.query(Reversal).one()
        assert reversal.wallet_type == WalletType.AEPS
        assert reversal.meta_data == {'reconciliation_date': '2024-05-01T00:00:00Z'}
        audit = session.query(AdminAuditLog).one()
        assert audit.meta_data['reconciliation_date'] == '2024-05-01T00:00:00Z'

    def test_aeps_reversal_rejects_bad_reconciliation_date(self, client, admin_headers, factory, chain):
        _, _, retailer = chain
        tx = factory.aeps(retailer)

        response = post(client, 'aeps-post-reconciliation-reversal', admin_headers,
                        transaction_id=str(tx.id), reason='NPCI reconciliation',
                        reconciliation_date='yesterday')

        assert response.status_code == 400


class TestReversalRecord:

    def test_get_reversal(self, client, admin_headers, factory, chain):
        _, _, retailer = chain
        tx = factory.bbps(retailer, '120.00')
        created = post(client, 'create', admin_headers, transaction_id=str(tx.id),
                       transaction_type='bbps', reason='duplicate').get_json()

        response = client.get(f"/reversal/{created['reversal_id']}", headers=admin_headers)

        assert response.status_code == 200
        reversal = response.get_json()['reversal']
        assert reversal['id'] == created['reversal_id']
        assert reversal['status'] == 'completed'
        assert reversal['original_transaction_id'] == str(tx.id)
        assert reversal['reversal_amount'] == 120.0

    def test_get_unknown_reversal(self, client, admin_headers):
        response = client.get(f'/reversal/{uuid.uuid4()}', headers=admin_headers)
        assert response.status_code == 404

    def test_only_one_active_reversal_per_transaction(self, factory, chain, admin, session):
        _, _, retailer = chain
        tx = factory.bbps(retailer)

        def processing():
            return processing_reversal(tx, retailer, admin)

        session.add(processing())
        session.commit()
        session.add(processing())
        with pytest.raises(IntegrityError):
            session.commit()
        session.rollback()

        failed = processing()
        failed.status = ReversalStatus.FAILED
        session.add(failed)
        session.commit()
        assert session.query(Reversal).count() == 2

    def test_reversal_losing_the_race_is_a_conflict(self, client, admin_headers, admin, factory,
                                                    chain, session, monkeypatch):
        _, _, retailer = chain
        tx = factory.bbps(retailer)
        validate = ReversalService._validate

        def validate_then_compete(self, policy, target, request):
            snapshot = validate(self, policy, target, request)
            session.add(processing_reversal(tx, retailer, admin))
            session.commit()
            return snapshot

        monkeypatch.setattr(ReversalService, '_validate', validate_then_compete)

        response = post(client, 'create', admin_headers, transaction_id=str(tx.id),
                        transaction_type='bbps', reason='duplicate payment')

        assert response.status_code == 400
        assert response.get_json()['error'] == 'Reversal already in progress for this transaction'
        assert ledger_count(session) == 0
        assert session.query(AdminAuditLog).count() == 0
        assert session.query(Reversal).one().reason == 'race'
        assert session.get(BBPSTransaction, tx.id).status == BusinessTransactionStatus.SUCCESS
