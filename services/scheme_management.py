"""
Scheme management: scheme CRUD, rate slabs, partner mappings and the
charge calculators that combine resolution with commission computation.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import (
    User, Scheme, SchemeMapping, SchemeBBPSCommission, SchemePayoutCharge,
    SchemeMDRRate, SchemeType, ServiceScope, RecordStatus, ChargeType,
    MappingEntityRole, AuditActionType
)
from services.commission import compute_breakdown, compute_mdr_breakdown, to_decimal
from services.scheme_resolution import entity_role_for, normalize_brand_type
from utils.errors import (
    LedgerServiceError, ValidationError, NotFoundError, ConflictError
)
from utils.validation import parse_uuid, parse_datetime

logger = logging.getLogger(__name__)

SLAB_MODELS = {
    'bbps': SchemeBBPSCommission,
    'payout': SchemePayoutCharge,
    'mdr': SchemeMDRRate,
}

DATE_FIELDS = ('effective_from', 'effective_to')


@dataclass
class SchemeActor:
    """Admin performing a scheme change, with the request origin for the audit row"""
    id: uuid.UUID
    ledger_role: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_user(cls, user, ip_address=None, user_agent=None):
        return cls(user.id, user.ledger_role, ip_address, user_agent)


class SchemeService:

    def __init__(self, session, resolver, audit_writer=None,
                 default_priorities=None, mapping_priority=100):
        self.session = session
        self.resolver = resolver
        self.audit = audit_writer
        self.default_priorities = default_priorities or {}
        self.mapping_priority = mapping_priority

    # =========================================================================
    # SCHEMES
    # =========================================================================

    def list_schemes(self, scheme_type=None, service_scope=None, status=None):
        query = self.session.query(Scheme)
        if scheme_type:
            query = query.filter(Scheme.scheme_type == _enum(SchemeType, scheme_type, 'scheme_type'))
        if service_scope:
            query = query.filter(Scheme.service_scope == _enum(ServiceScope, service_scope, 'service_scope'))
        if status:
            query = query.filter(Scheme.status == _enum(RecordStatus, status, 'status'))
        return query.order_by(Scheme.priority.asc(), Scheme.created_at.desc()).all()

    def get_scheme(self, scheme_id):
        scheme = self.session.get(Scheme, parse_uuid(scheme_id, 'scheme_id'))
        if scheme is None:
            raise NotFoundError('Scheme not found')
        return scheme

    def describe(self, scheme):
        """Scheme with its slabs and active mapping count"""
        result = scheme.to_dict()
        result['bbps_commissions'] = [row.to_dict() for row in scheme.bbps_commissions]
        result['payout_charges'] = [row.to_dict() for row in scheme.payout_charges]
        result['mdr_rates'] = [row.to_dict() for row in scheme.mdr_rates]
        result['mapping_count'] = scheme.mappings.filter_by(status=RecordStatus.ACTIVE).count()
        return result

    def create_scheme(self, data, actor=None):
        scheme_type = _enum(SchemeType, data['scheme_type'], 'scheme_type')
        fields = self._scheme_fields(data)
        fields['scheme_type'] = scheme_type
        fields.setdefault('priority', self.default_priorities.get(scheme_type.value, 100))

        scheme = Scheme(**fields)
        if actor is not None:
            scheme.created_by_id = actor.id
            scheme.created_by_role = actor.ledger_role
        self.session.add(scheme)
        self._commit('create scheme')

        logger.info(f"Scheme {scheme.id} '{scheme.name}' created ({scheme_type.value})")
        self._audit(actor, AuditActionType.SCHEME_CREATE, scheme, f'Scheme created: {scheme.name}')
        return scheme

    def update_scheme(self, scheme_id, data, actor=None):
        scheme = self.get_scheme(scheme_id)
        fields = self._scheme_fields(data)
        if 'scheme_type' in data:
            fields['scheme_type'] = _enum(SchemeType, data['scheme_type'], 'scheme_type')
        scheme.update_from_dict(fields)
        self._check_window(scheme.effective_from, scheme.effective_to)
        self._commit('update scheme')

        logger.info(f"Scheme {scheme.id} updated: {sorted(fields)}")
        self._audit(actor, AuditActionType.SCHEME_UPDATE, scheme, f'Scheme updated: {scheme.name}')
        return scheme

    def delete_scheme(self, scheme_id, actor=None):
        scheme = self.get_scheme(scheme_id)
        active = scheme.mappings.filter_by(status=RecordStatus.ACTIVE).count()
        if active:
            raise ConflictError(f'Cannot delete scheme that has {active} active mappings')

        name = scheme.name
        self.session.delete(scheme)
        self._commit('delete scheme')

        logger.info(f"Scheme {scheme_id} '{name}' deleted")
        self._audit(actor, AuditActionType.SCHEME_DELETE, None, f'Scheme deleted: {name}',
                    {'scheme_id': str(scheme_id)})

    def _scheme_fields(self, data):
        fields = {}
        for name in ('name', 'description', 'priority'):
            if name in data:
                fields[name] = data[name]
        if 'service_scope' in data:
            fields['service_scope'] = _enum(ServiceScope, data['service_scope'], 'service_scope')
        if 'status' in data:
            fields['status'] = _enum(RecordStatus, data['status'], 'status')
        for name in DATE_FIELDS:
            if name in data:
                fields[name] = parse_datetime(data[name])
        self._check_window(fields.get('effective_from'), fields.get('effective_to'))
        return fields

    @staticmethod
    def _check_window(effective_from, effective_to):
        if effective_from and effective_to and effective_to <= effective_from:
            raise ValidationError('effective_to must be after effective_from')

    # =========================================================================
    # SLABS
    # =========================================================================

    def upsert_bbps_commission(self, scheme_id, data, slab_id=None, actor=None):
        return self._upsert_slab('bbps', scheme_id, data, slab_id, actor)

    def upsert_payout_charge(self, scheme_id, data, slab_id=None, actor=None):
        return self._upsert_slab('payout', scheme_id, data, slab_id, actor)

    def upsert_mdr_rate(self, scheme_id, data, rate_id=None, actor=None):
        rates = {}
        for party in SchemeMDRRate.PARTIES:
            for tier in ('t1', 't0'):
                name = f'{party}_mdr_{tier}'
                rates[name] = to_decimal(data.get(name))
                if rates[name] < 0:
                    raise ValidationError(f'{name} cannot be negative')

        for tier in ('t1', 't0'):
            if rates[f'retailer_mdr_{tier}'] < rates[f'distributor_mdr_{tier}']:
                raise ValidationError(
                    f'Retailer MDR ({tier.upper()}) must be greater than or equal to Distributor MDR'
                )

        fields = dict(rates)
        fields['mode'] = data['mode'].upper()
        for name in ('card_type', 'card_classification'):
            value = data.get(name)
            fields[name] = value.upper() if value else None
        fields['brand_type'] = normalize_brand_type(data.get('brand_type'))
        if 'status' in data:
            fields['status'] = _enum(RecordStatus, data['status'], 'status')
        return self._save_slab('mdr', scheme_id, fields, rate_id, actor)

    def _upsert_slab(self, kind, scheme_id, data, slab_id, actor):
        min_amount = to_decimal(data.get('min_amount'))
        max_amount = to_decimal(data.get('max_amount'))
        if min_amount < 0 or max_amount < 0:
            raise ValidationError('Slab amounts cannot be negative')
        if min_amount > max_amount:
            raise ValidationError('max_amount must be greater than or equal to min_amount')

        fields = {'min_amount': min_amount, 'max_amount': max_amount}
        for name in SchemeBBPSCommission.COMPONENTS:
            value = to_decimal(data.get(name))
            if value < 0:
                raise ValidationError(f'{name} cannot be negative')
            fields[name] = value
            fields[f'{name}_type'] = _enum(ChargeType, data.get(f'{name}_type') or 'flat', f'{name}_type')
        if 'status' in data:
            fields['status'] = _enum(RecordStatus, data['status'], 'status')

        if kind == 'bbps':
            fields['category'] = data.get('category') or None
        else:
            mode = data.get('transfer_mode')
            fields['transfer_mode'] = mode.upper() if mode else None
        return self._save_slab(kind, scheme_id, fields, slab_id, actor)

    def _save_slab(self, kind, scheme_id, fields, slab_id, actor):
        scheme = self.get_scheme(scheme_id)
        model = SLAB_MODELS[kind]
        previous_status = None

        if slab_id:
            slab = self.session.get(model, parse_uuid(slab_id, 'slab_id'))
            if slab is None or slab.scheme_id != scheme.id:
                raise NotFoundError('Slab not found')
            previous_status = slab.status
            slab.update_from_dict(fields)
        else:
            slab = model(scheme_id=scheme.id, **fields)
            self.session.add(slab)

        self._commit(f'save {kind} slab')
        logger.info(f"{kind.upper()} slab {slab.id} saved on scheme {scheme.id}")

        action = AuditActionType.SCHEME_SLAB_SAVE
        new_status = fields.get('status')
        if kind == 'bbps' and previous_status is not None and new_status not in (None, previous_status):
            action = (AuditActionType.BBPS_SLAB_ENABLE if new_status == RecordStatus.ACTIVE
                      else AuditActionType.BBPS_SLAB_DISABLE)
        self._audit(
            actor, action, scheme,
            f'{kind.upper()} slab {"updated" if slab_id else "created"} on scheme {scheme.name}',
            {'slab_kind': kind, 'slab_id': str(slab.id)},
        )
        return slab

    def delete_slab(self, kind, slab_id, actor=None):
        model = SLAB_MODELS.get(kind)
        if model is None:
            raise ValidationError(f'Invalid slab kind: {kind}')
        slab = self.session.get(model, parse_uuid(slab_id, 'slab_id'))
        if slab is None:
            raise NotFoundError('Slab not found')
        scheme_id = slab.scheme_id
        self.session.delete(slab)
        self._commit(f'delete {kind} slab')
        logger.info(f"{kind.upper()} slab {slab_id} deleted")

        self._audit(
            actor, AuditActionType.SCHEME_SLAB_DELETE, None,
            f'{kind.upper()} slab deleted',
            {'scheme_id': str(scheme_id), 'slab_kind': kind, 'slab_id': str(slab_id)},
        )

    # =========================================================================
    # MAPPINGS
    # =========================================================================

    def list_mappings(self, entity_id=None, entity_role=None, scheme_id=None, status=None):
        query = self.session.query(SchemeMapping)
        if entity_id:
            query = query.filter(SchemeMapping.entity_id == parse_uuid(entity_id, 'entity_id'))
        if entity_role:
            query = query.filter(SchemeMapping.entity_role == _enum(MappingEntityRole, entity_role, 'entity_role'))
        if scheme_id:
            query = query.filter(SchemeMapping.scheme_id == parse_uuid(scheme_id, 'scheme_id'))
        if status:
            query = query.filter(SchemeMapping.status == _enum(RecordStatus, status, 'status'))
        return query.order_by(SchemeMapping.created_at.desc()).all()

    def assign_mapping(self, data, actor=None):
        """Map a scheme to a partner, deactivating the partner's current mapping"""
        scheme = self.get_scheme(data['scheme_id'])
        if scheme.status != RecordStatus.ACTIVE:
            raise ValidationError('Cannot assign an inactive scheme')

        entity_id = parse_uuid(data['entity_id'], 'entity_id')
        entity_role = _enum(MappingEntityRole, data['entity_role'], 'entity_role')
        entity = self.session.get(User, entity_id)
        if entity is None:
            raise NotFoundError('User not found')
        if entity_role_for(entity) != entity_role.value:
            raise ValidationError(f'User is not a {entity_role.value}')

        effective_from = parse_datetime(data.get('effective_from')) or datetime.utcnow()
        effective_to = parse_datetime(data.get('effective_to'))
        self._check_window(effective_from, effective_to)

        replaced_ids = self._deactivate_active_mappings(entity_id)

        mapping = SchemeMapping(
            scheme_id=scheme.id,
            entity_id=entity_id,
            entity_role=entity_role,
            service_type=data.get('service_type') or ServiceScope.ALL.value,
            assigned_by_id=actor.id if actor is not None else None,
            assigned_by_role=actor.ledger_role if actor is not None else None,
            status=RecordStatus.ACTIVE,
            priority=data.get('priority', self.mapping_priority),
            effective_from=effective_from,
            effective_to=effective_to,
        )
        try:
            # Deactivations flush before the insert so the active-entity index sees them
            self.session.flush()
            self.session.add(mapping)
            self.session.commit()
        except IntegrityError as exc:
            # A concurrent assignment activated a mapping for this entity first
            self.session.rollback()
            logger.warning(f"Concurrent scheme assignment rejected for {entity_id}: {exc.orig}")
            raise ConflictError('Another scheme assignment for this user is in progress') from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(f"Failed to assign scheme mapping: {exc}")
            raise LedgerServiceError('Failed to assign scheme mapping') from exc

        logger.info(
            f"Scheme {scheme.id} mapped to {entity_role.value} {entity_id} "
            f"({len(replaced_ids)} previous mapping(s) deactivated)"
        )
        self._audit(
            actor, AuditActionType.SCHEME_MAPPING_ASSIGN, scheme,
            f'Scheme {scheme.name} assigned to {entity_role.value}',
            {'entity_id': str(entity_id), 'mapping_id': str(mapping.id),
             'replaced': replaced_ids},
            target=entity,
        )
        return mapping

    def _deactivate_active_mappings(self, entity_id):
        replaced = self.session.query(SchemeMapping).filter(
            SchemeMapping.entity_id == entity_id,
            SchemeMapping.status == RecordStatus.ACTIVE,
        ).all()
        for previous in replaced:
            previous.status = RecordStatus.INACTIVE
            previous.effective_to = previous.effective_to or datetime.utcnow()
        return [str(previous.id) for previous in replaced]

    def delete_mapping(self, mapping_id, actor=None):
        """Deactivate a mapping; the row is kept as assignment history"""
        mapping = self.session.get(SchemeMapping, parse_uuid(mapping_id, 'mapping_id'))
        if mapping is None:
            raise NotFoundError('Scheme mapping not found')
        if mapping.status == RecordStatus.INACTIVE:
            raise ConflictError('Scheme mapping is already inactive')

        mapping.status = RecordStatus.INACTIVE
        mapping.effective_to = datetime.utcnow()
        self._commit('delete scheme mapping')
        logger.info(f"Scheme mapping {mapping.id} deactivated for {mapping.entity_id}")

        entity = self.session.get(User, mapping.entity_id)
        self._audit(
            actor, AuditActionType.SCHEME_MAPPING_REMOVE, mapping.scheme,
            f'Scheme mapping removed from {mapping.entity_role.value}',
            {'entity_id': str(mapping.entity_id), 'mapping_id': str(mapping.id)},
            target=entity,
        )

    # =========================================================================
    # CHARGE CALCULATION
    # =========================================================================

    def _partner(self, user_id):
        user = self.session.get(User, parse_uuid(user_id, 'user_id'))
        if user is None:
            raise NotFoundError('User not found')
        return user, entity_role_for(user)

    def calculate_bbps_charges(self, user_id, amount, category=None):
        user, role = self._partner(user_id)
        resolved = self.resolver.resolve_scheme(user.id, role, 'bbps')
        slab = self.resolver.resolve_bbps_slab(resolved.scheme_id, amount, category)
        breakdown = compute_breakdown(slab, amount)
        return {
            'scheme': resolved.to_dict(),
            'category': category,
            'charges': breakdown.to_dict(),
        }

    def calculate_payout_charges(self, user_id, amount, transfer_mode):
        user, role = self._partner(user_id)
        resolved = self.resolver.resolve_scheme(user.id, role, 'payout')
        slab = self.resolver.resolve_payout_slab(resolved.scheme_id, amount, transfer_mode)
        breakdown = compute_breakdown(slab, amount)
        return {
            'scheme': resolved.to_dict(),
            'transfer_mode': transfer_mode,
            'charges': breakdown.to_dict(),
        }

    def calculate_mdr(self, user_id, amount, mode, card_type=None, brand_type=None,
                      settlement_type='T1', card_classification=None):
        user, role = self._partner(user_id)
        resolved = self.resolver.resolve_scheme(user.id, role, 'mdr')
        rates = self.resolver.resolve_mdr_rate(
            resolved.scheme_id, mode, card_type, brand_type, card_classification
        )
        result = {'scheme': resolved.to_dict(), 'rates': rates.to_dict()}
        if amount is not None:
            result['charges'] = compute_mdr_breakdown(rates, amount, settlement_type).to_dict()
        return result

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _commit(self, operation):
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(f"Failed to {operation}: {exc}")
            raise LedgerServiceError(f'Failed to {operation}') from exc

    def _audit(self, actor, action, scheme, remarks, metadata=None, target=None):
        if self.audit is None or actor is None:
            return
        metadata = dict(metadata or {})
        if scheme is not None:
            metadata.setdefault('scheme_id', str(scheme.id))
        self.audit.record(
            admin_id=actor.id,
            action_type=action,
            target_user_id=target.id if target is not None else None,
            target_user_role=target.ledger_role if target is not None else None,
            ip_address=actor.ip_address,
            user_agent=actor.user_agent,
            remarks=remarks,
            metadata=metadata,
        )


def _enum(enum_class, value, field_name):
    if isinstance(value, enum_class):
        return value
    try:
        return enum_class(str(value).lower())
    except ValueError:
        raise ValidationError(f'Invalid {field_name}: {value}')
