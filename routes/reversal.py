from flask import Blueprint, request, jsonify
from flask_login import current_user

from services.registry import get_services
from services.reversal import ReversalRequest, ReversalActor
from services.reversal_targets import policy_for
from utils.permissions import admin_required, request_actor
from utils.validation import (
    validate_payload, parse_uuid, ReversalForm, BBPSFailureReversalForm,
    SettlementFailureReversalForm, AEPSReconciliationReversalForm
)

reversal_bp = Blueprint('reversal', __name__, url_prefix='/reversal')

# ============================================================================
# HELPERS
# ============================================================================

def _reverse(policy, transaction_id, data, metadata=None):
    """Run one reversal for the calling admin and render the outcome"""
    ip_address, user_agent = request_actor()
    outcome = get_services().reversals.reverse(
        policy,
        ReversalRequest(
            transaction_id=parse_uuid(transaction_id, 'transaction_id'),
            reason=data['reason'],
            remarks=data.get('remarks'),
            metadata=metadata or {},
        ),
        ReversalActor(
            admin_id=current_user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        ),
    )
    return jsonify(outcome.to_response())

# ============================================================================
# REVERSAL ENDPOINTS
# ============================================================================

@reversal_bp.route('/create', methods=['POST'])
@admin_required
def create_reversal():
    """Reverse a BBPS, AEPS, settlement or POS transaction"""
    data = validate_payload(ReversalForm, request.get_json(silent=True)).cleaned()
    policy = policy_for('generic', data['transaction_type'])
    return _reverse(policy, data['transaction_id'], data)


@reversal_bp.route('/bbps-failure-reversal', methods=['POST'])
@admin_required
def bbps_failure_reversal():
    """Refund a BBPS payment that failed or never completed"""
    data = validate_payload(BBPSFailureReversalForm, request.get_json(silent=True)).cleaned()
    return _reverse(policy_for('bbps_failure'), data['transaction_id'], data)


@reversal_bp.route('/settlement-failure-reversal', methods=['POST'])
@admin_required
def settlement_failure_reversal():
    data = validate_payload(SettlementFailureReversalForm, request.get_json(silent=True)).cleaned()
    return _reverse(policy_for('settlement_failure'), data['settlement_id'], data)


@reversal_bp.route('/aeps-post-reconciliation-reversal', methods=['POST'])
@admin_required
def aeps_post_reconciliation_reversal():
    """Refund an AEPS transaction found failed during bank reconciliation"""
    data = validate_payload(AEPSReconciliationReversalForm, request.get_json(silent=True)).cleaned()
    metadata = {'reconciliation_date': data.get('reconciliation_date')}
    return _reverse(policy_for('aeps_post_reconciliation'), data['transaction_id'], data, metadata)


@reversal_bp.route('/<reversal_id>', methods=['GET'])
@admin_required
def get_reversal(reversal_id):
    reversal = get_services().reversals.get(parse_uuid(reversal_id, 'reversal_id'))
    return jsonify({
        'success': True,
        'reversal': reversal.to_dict(),
    })
