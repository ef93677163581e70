# utils/validation.py
"""
Request Validation Utilities
============================

WTForms based request DTOs for the reversal and scheme APIs. JSON bodies and
query strings are wrapped in a MultiDict and validated exactly like posted
form data; the first failure is raised as a service ValidationError (400).
"""

import uuid
from datetime import datetime
from decimal import Decimal

from werkzeug.datastructures import MultiDict
from wtforms import Form, StringField, DecimalField, IntegerField
from wtforms import validators
from wtforms.validators import ValidationError

from utils import errors

TRANSACTION_TYPES = ['bbps', 'aeps', 'settlement', 'admin', 'pos']
SCHEME_TYPES = ['global', 'golden', 'custom']
SERVICE_SCOPES = ['all', 'bbps', 'payout', 'mdr']
CHARGE_TYPES = ['flat', 'percentage']
ENTITY_ROLES = ['master_distributor', 'distributor', 'retailer']
RECORD_STATUSES = ['active', 'inactive']
SETTLEMENT_TYPES = ['T+1', 'T+0', 'T1', 'T0']

# =============================================================================
# CUSTOM VALIDATORS
# =============================================================================

class UUIDValidator:
    """Validator for UUID identifiers"""

    def __init__(self, message=None):
        self.message = message

    def __call__(self, form, field):
        if not field.data:
            return
        try:
            uuid.UUID(str(field.data))
        except (ValueError, TypeError):
            raise ValidationError(self.message or f'Invalid {field.name} format')


class IsoDateTimeValidator:
    """Validator for ISO-8601 timestamps"""

    def __call__(self, form, field):
        if not field.data:
            return
        try:
            datetime.fromisoformat(str(field.data).replace('Z', '+00:00'))
        except ValueError:
            raise ValidationError(f'{field.name} must be an ISO-8601 timestamp')


def parse_uuid(value, field_name='id'):
    """Parse a UUID or raise a 400"""
    try:
        return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        raise errors.ValidationError(f'Invalid {field_name} format')


def parse_datetime(value):
    if not value:
        return None
    parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    # Stored as naive UTC
    if parsed.tzinfo is not None:
        parsed = (parsed - parsed.utcoffset()).replace(tzinfo=None)
    return parsed

# =============================================================================
# FORMS
# =============================================================================

class RequestForm(Form):
    """Base form; subclasses name their required fields and the combined message"""
    required_fields = ()
    required_message = None

    def cleaned(self):
        """Submitted values only, with blank strings dropped"""
        result = {}
        for name, field in self._fields.items():
            if field.data is None or field.data == '':
                continue
            result[name] = field.data.strip() if isinstance(field.data, str) else field.data
        return result


class ReversalForm(RequestForm):
    required_fields = ('transaction_id', 'transaction_type', 'reason')
    required_message = 'transaction_id, transaction_type, and reason are required'

    transaction_id = StringField('transaction_id', [UUIDValidator('Invalid transaction_id format')])
    transaction_type = StringField('transaction_type', [
        validators.AnyOf(TRANSACTION_TYPES, message='Invalid transaction_type')
    ])
    reason = StringField('reason', [validators.Length(max=500)])
    remarks = StringField('remarks', [validators.Optional(), validators.Length(max=1000)])


class BBPSFailureReversalForm(RequestForm):
    required_fields = ('transaction_id', 'reason')
    required_message = 'transaction_id and reason are required'

    transaction_id = StringField('transaction_id', [UUIDValidator('Invalid transaction_id format')])
    reason = StringField('reason', [validators.Length(max=500)])
    remarks = StringField('remarks', [validators.Optional(), validators.Length(max=1000)])


class SettlementFailureReversalForm(RequestForm):
    required_fields = ('settlement_id', 'reason')
    required_message = 'settlement_id and reason are required'

    settlement_id = StringField('settlement_id', [UUIDValidator('Invalid settlement_id format')])
    reason = StringField('reason', [validators.Length(max=500)])
    remarks = StringField('remarks', [validators.Optional(), validators.Length(max=1000)])


class AEPSReconciliationReversalForm(RequestForm):
    required_fields = ('transaction_id', 'reason')
    required_message = 'transaction_id and reason are required'

    transaction_id = StringField('transaction_id', [UUIDValidator('Invalid transaction_id format')])
    reason = StringField('reason', [validators.Length(max=500)])
    remarks = StringField('remarks', [validators.Optional(), validators.Length(max=1000)])
    reconciliation_date = StringField('reconciliation_date', [validators.Optional(), IsoDateTimeValidator()])


class SchemeForm(RequestForm):
    required_fields = ('name', 'scheme_type')
    required_message = 'name and scheme_type are required'

    name = StringField('name', [validators.Length(min=1, max=255)])
    description = StringField('description', [validators.Optional(), validators.Length(max=2000)])
    scheme_type = StringField('scheme_type', [validators.AnyOf(SCHEME_TYPES, message='Invalid scheme_type')])
    service_scope = StringField('service_scope', [
        validators.Optional(), validators.AnyOf(SERVICE_SCOPES, message='Invalid service_scope')
    ])
    priority = IntegerField('priority', [validators.Optional(), validators.NumberRange(min=0)])
    status = StringField('status', [validators.Optional(), validators.AnyOf(RECORD_STATUSES)])
    effective_from = StringField('effective_from', [validators.Optional(), IsoDateTimeValidator()])
    effective_to = StringField('effective_to', [validators.Optional(), IsoDateTimeValidator()])


class SchemeUpdateForm(SchemeForm):
    required_fields = ()

    name = StringField('name', [validators.Optional(), validators.Length(min=1, max=255)])
    scheme_type = StringField('scheme_type', [
        validators.Optional(), validators.AnyOf(SCHEME_TYPES, message='Invalid scheme_type')
    ])


class SchemeMappingForm(RequestForm):
    required_fields = ('scheme_id', 'entity_id', 'entity_role')
    required_message = 'scheme_id, entity_id and entity_role are required'

    scheme_id = StringField('scheme_id', [UUIDValidator()])
    entity_id = StringField('entity_id', [UUIDValidator()])
    entity_role = StringField('entity_role', [validators.AnyOf(ENTITY_ROLES, message='Invalid entity_role')])
    service_type = StringField('service_type', [validators.Optional(), validators.AnyOf(SERVICE_SCOPES)])
    priority = IntegerField('priority', [validators.Optional(), validators.NumberRange(min=0)])
    effective_from = StringField('effective_from', [validators.Optional(), IsoDateTimeValidator()])
    effective_to = StringField('effective_to', [validators.Optional(), IsoDateTimeValidator()])


def _amount_field(label):
    return DecimalField(label, [validators.Optional(), validators.NumberRange(min=0)])


def _type_field(label):
    return StringField(label, [validators.Optional(), validators.AnyOf(CHARGE_TYPES, message=f'Invalid {label}')])


class SlabForm(RequestForm):
    """Amount range and the five priced components"""
    required_fields = ('min_amount', 'max_amount')
    required_message = 'min_amount and max_amount are required'

    min_amount = _amount_field('min_amount')
    max_amount = _amount_field('max_amount')
    retailer_charge = _amount_field('retailer_charge')
    retailer_charge_type = _type_field('retailer_charge_type')
    retailer_commission = _amount_field('retailer_commission')
    retailer_commission_type = _type_field('retailer_commission_type')
    distributor_commission = _amount_field('distributor_commission')
    distributor_commission_type = _type_field('distributor_commission_type')
    md_commission = _amount_field('md_commission')
    md_commission_type = _type_field('md_commission_type')
    company_charge = _amount_field('company_charge')
    company_charge_type = _type_field('company_charge_type')
    status = StringField('status', [validators.Optional(), validators.AnyOf(RECORD_STATUSES)])

    def validate_max_amount(self, field):
        if field.data is not None and self.min_amount.data is not None and field.data < self.min_amount.data:
            raise ValidationError('max_amount must be greater than or equal to min_amount')


class BBPSCommissionForm(SlabForm):
    category = StringField('category', [validators.Optional(), validators.Length(max=100)])


class PayoutChargeForm(SlabForm):
    transfer_mode = StringField('transfer_mode', [validators.Optional(), validators.Length(max=20)])


class MDRRateForm(RequestForm):
    required_fields = ('mode',)
    required_message = 'mode is required'

    mode = StringField('mode', [validators.AnyOf(['CARD', 'UPI', 'card', 'upi'], message='mode must be CARD or UPI')])
    card_type = StringField('card_type', [validators.Optional(), validators.Length(max=20)])
    brand_type = StringField('brand_type', [validators.Optional(), validators.Length(max=50)])
    card_classification = StringField('card_classification', [validators.Optional(), validators.Length(max=50)])
    retailer_mdr_t1 = _amount_field('retailer_mdr_t1')
    retailer_mdr_t0 = _amount_field('retailer_mdr_t0')
    distributor_mdr_t1 = _amount_field('distributor_mdr_t1')
    distributor_mdr_t0 = _amount_field('distributor_mdr_t0')
    md_mdr_t1 = _amount_field('md_mdr_t1')
    md_mdr_t0 = _amount_field('md_mdr_t0')
    status = StringField('status', [validators.Optional(), validators.AnyOf(RECORD_STATUSES)])


class ResolveChargesForm(RequestForm):
    required_fields = ('service_type', 'user_id')
    required_message = 'service_type and user_id are required'

    service_type = StringField('service_type', [
        validators.AnyOf(['bbps', 'payout', 'mdr'], message='Invalid service_type')
    ])
    user_id = StringField('user_id', [UUIDValidator('Invalid user_id format')])
    amount = DecimalField('amount', [validators.Optional(), validators.NumberRange(min=Decimal('0.01'))])
    category = StringField('category', [validators.Optional()])
    transfer_mode = StringField('transfer_mode', [validators.Optional()])
    mode = StringField('mode', [validators.Optional()])
    card_type = StringField('card_type', [validators.Optional()])
    brand_type = StringField('brand_type', [validators.Optional()])
    card_classification = StringField('card_classification', [validators.Optional()])
    settlement_type = StringField('settlement_type', [
        validators.Optional(), validators.AnyOf(SETTLEMENT_TYPES, message='Invalid settlement_type')
    ])

    CONDITIONAL_FIELDS = {
        'bbps': ('amount',),
        'payout': ('amount', 'transfer_mode'),
        'mdr': ('mode',),
    }

    def validate(self, extra_validators=None):
        """Adds the per-service required fields"""
        if not super().validate(extra_validators):
            return False
        service = self.service_type.data
        for name in self.CONDITIONAL_FIELDS.get(service, ()):
            field = self._fields[name]
            if field.data is None or field.data == '':
                field.errors.append(f'{name} is required for {service}')
                return False
        return True

# =============================================================================
# ENTRY POINT
# =============================================================================

def validate_payload(form_class, payload):
    """Validate a JSON body or query dict; returns the bound form or raises a 400"""
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise errors.ValidationError('Request body must be a JSON object')

    missing = [name for name in form_class.required_fields
               if payload.get(name) is None or str(payload.get(name)).strip() == '']
    if missing:
        raise errors.ValidationError(form_class.required_message)

    formdata = MultiDict({
        key: str(value) for key, value in payload.items()
        if value is not None and not isinstance(value, (dict, list))
    })
    form = form_class(formdata=formdata)
    if not form.validate():
        name, messages = next(iter(form.errors.items()))
        message = messages[0] if messages else f'Invalid {name}'
        raise errors.ValidationError(message if name in message else f'{name}: {message}')
    return form
