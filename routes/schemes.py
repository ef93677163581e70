from flask import Blueprint, request, jsonify
from flask_login import current_user

from services.registry import get_services
from services.scheme_management import SchemeActor
from utils.permissions import admin_required, login_required, request_actor
from utils.validation import (
    validate_payload, SchemeForm, SchemeUpdateForm, SchemeMappingForm,
    BBPSCommissionForm, PayoutChargeForm, MDRRateForm, ResolveChargesForm
)

schemes_bp = Blueprint('schemes', __name__, url_prefix='/schemes')


def _actor():
    """The calling admin and request origin, as recorded on audit rows"""
    ip_address, user_agent = request_actor()
    return SchemeActor.from_user(current_user, ip_address, user_agent)


# ============================================================================
# SCHEMES
# ============================================================================

@schemes_bp.route('', methods=['GET'])
@admin_required
def list_schemes():
    schemes = get_services().schemes.list_schemes(
        scheme_type=request.args.get('scheme_type'),
        service_scope=request.args.get('service_scope'),
        status=request.args.get('status'),
    )
    return jsonify({
        'success': True,
        'schemes': [scheme.to_dict() for scheme in schemes],
        'total': len(schemes),
    })


@schemes_bp.route('', methods=['POST'])
@admin_required
def create_scheme():
    data = validate_payload(SchemeForm, request.get_json(silent=True)).cleaned()
    scheme = get_services().schemes.create_scheme(data, actor=_actor())
    return jsonify({
        'success': True,
        'message': 'Scheme created successfully',
        'scheme': scheme.to_dict(),
    }), 201


@schemes_bp.route('/<scheme_id>', methods=['GET'])
@admin_required
def get_scheme(scheme_id):
    """Scheme with its slabs and active mapping count"""
    service = get_services().schemes
    scheme = service.get_scheme(scheme_id)
    return jsonify({
        'success': True,
        'scheme': service.describe(scheme),
    })


@schemes_bp.route('/<scheme_id>', methods=['PUT'])
@admin_required
def update_scheme(scheme_id):
    data = validate_payload(SchemeUpdateForm, request.get_json(silent=True)).cleaned()
    scheme = get_services().schemes.update_scheme(scheme_id, data, actor=_actor())
    return jsonify({
        'success': True,
        'message': 'Scheme updated successfully',
        'scheme': scheme.to_dict(),
    })


@schemes_bp.route('/<scheme_id>', methods=['DELETE'])
@admin_required
def delete_scheme(scheme_id):
    get_services().schemes.delete_scheme(scheme_id, actor=_actor())
    return jsonify({
        'success': True,
        'message': 'Scheme deleted successfully',
    })

# ============================================================================
# RATE SLABS
# ============================================================================

def _slab_response(slab, created):
    return jsonify({
        'success': True,
        'message': 'Slab created successfully' if created else 'Slab updated successfully',
        'slab': slab.to_dict(),
    }), 201 if created else 200


@schemes_bp.route('/<scheme_id>/bbps-commissions', methods=['POST'])
@admin_required
def upsert_bbps_commission(scheme_id):
    """Create a BBPS commission slab, or update the one named by ``id``"""
    payload = request.get_json(silent=True)
    data = validate_payload(BBPSCommissionForm, payload).cleaned()
    slab_id = payload.get('id')
    slab = get_services().schemes.upsert_bbps_commission(scheme_id, data, slab_id=slab_id, actor=_actor())
    return _slab_response(slab, created=not slab_id)


@schemes_bp.route('/<scheme_id>/payout-charges', methods=['POST'])
@admin_required
def upsert_payout_charge(scheme_id):
    payload = request.get_json(silent=True)
    data = validate_payload(PayoutChargeForm, payload).cleaned()
    slab_id = payload.get('id')
    slab = get_services().schemes.upsert_payout_charge(scheme_id, data, slab_id=slab_id, actor=_actor())
    return _slab_response(slab, created=not slab_id)


@schemes_bp.route('/<scheme_id>/mdr-rates', methods=['POST'])
@admin_required
def upsert_mdr_rate(scheme_id):
    payload = request.get_json(silent=True)
    data = validate_payload(MDRRateForm, payload).cleaned()
    rate_id = payload.get('id')
    rate = get_services().schemes.upsert_mdr_rate(scheme_id, data, rate_id=rate_id, actor=_actor())
    return _slab_response(rate, created=not rate_id)


@schemes_bp.route('/slabs/<kind>/<slab_id>', methods=['DELETE'])
@admin_required
def delete_slab(kind, slab_id):
    get_services().schemes.delete_slab(kind, slab_id, actor=_actor())
    return jsonify({
        'success': True,
        'message': 'Slab deleted successfully',
    })

# ============================================================================
# MAPPINGS
# ============================================================================

@schemes_bp.route('/mappings', methods=['GET'])
@admin_required
def list_mappings():
    mappings = get_services().schemes.list_mappings(
        entity_id=request.args.get('entity_id'),
        entity_role=request.args.get('entity_role'),
        scheme_id=request.args.get('scheme_id'),
        status=request.args.get('status'),
    )
    return jsonify({
        'success': True,
        'mappings': [mapping.to_dict() for mapping in mappings],
        'total': len(mappings),
    })


@schemes_bp.route('/mappings', methods=['POST'])
@admin_required
def assign_mapping():
    """Assign a scheme to a partner; the partner's current mapping is deactivated"""
    data = validate_payload(SchemeMappingForm, request.get_json(silent=True)).cleaned()
    mapping = get_services().schemes.assign_mapping(data, actor=_actor())
    return jsonify({
        'success': True,
        'message': 'Scheme assigned successfully',
        'mapping': mapping.to_dict(),
    }), 201


@schemes_bp.route('/mappings/<mapping_id>', methods=['DELETE'])
@admin_required
def delete_mapping(mapping_id):
    get_services().schemes.delete_mapping(mapping_id, actor=_actor())
    return jsonify({
        'success': True,
        'message': 'Scheme mapping deactivated successfully',
    })

# ============================================================================
# CHARGE CALCULATOR
# ============================================================================

@schemes_bp.route('/resolve-charges', methods=['GET'])
@login_required
def resolve_charges():
    """Resolve the effective scheme for a partner and price one transaction"""
    data = validate_payload(ResolveChargesForm, request.args.to_dict()).cleaned()
    service = get_services().schemes

    if data['service_type'] == 'bbps':
        result = service.calculate_bbps_charges(data['user_id'], data['amount'], data.get('category'))
    elif data['service_type'] == 'payout':
        result = service.calculate_payout_charges(data['user_id'], data['amount'], data['transfer_mode'])
    else:
        result = service.calculate_mdr(
            data['user_id'],
            data.get('amount'),
            data['mode'],
            card_type=data.get('card_type'),
            brand_type=data.get('brand_type'),
            settlement_type=data.get('settlement_type', 'T1'),
            card_classification=data.get('card_classification'),
        )

    result['success'] = True
    result['service_type'] = data['service_type']
    return jsonify(result)
