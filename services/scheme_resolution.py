"""
Scheme resolution engine.

Picks the effective commission scheme for a partner (retailer mapping ->
distributor mapping -> master distributor mapping -> global scheme) and the
most specific rate slab inside it:

* exact dimension match beats wildcard
* narrower [min_amount, max_amount] range beats wider
* most recently created row breaks remaining ties (row id last, so the
  choice is deterministic)
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import or_

from models import (
    User, Scheme, SchemeMapping, SchemeBBPSCommission, SchemePayoutCharge,
    SchemeMDRRate, SchemeType, ServiceScope, RecordStatus, MappingEntityRole,
    UserRoleType
)
from services.commission import to_decimal
from utils.errors import SchemeResolutionError, ValidationError
from utils.validation import parse_uuid

logger = logging.getLogger(__name__)

WILDCARD_VALUES = {'', 'all', 'all categories'}

BRAND_ALIASES = {
    'MASTERCARD': 'MASTERCARD',
    'MASTER': 'MASTERCARD',
    'MC': 'MASTERCARD',
    'VISA': 'VISA',
    'AMEX': 'AMEX',
    'AMERICANEXPRESS': 'AMEX',
    'RUPAY': 'RUPAY',
    'DINERS': 'DINERS',
    'DINERSCLUB': 'DINERS',
    'MAESTRO': 'MAESTRO',
}

# =============================================================================
# NORMALISATION
# =============================================================================

def is_wildcard(value):
    return value is None or str(value).strip().lower() in WILDCARD_VALUES


def normalize_payment_mode(method):
    if not method:
        raise ValidationError('mode is required')
    upper = method.upper()
    if 'CARD' in upper:
        return 'CARD'
    return 'UPI'


def normalize_card_type(card_type):
    if not card_type:
        return None
    upper = card_type.upper()
    return upper if upper in ('CREDIT', 'DEBIT', 'PREPAID') else None


def normalize_brand_type(brand):
    if not brand:
        return None
    normalized = re.sub(r'[\s_-]+', '', brand.upper())
    return BRAND_ALIASES.get(normalized, normalized)


def apply_t0_fallback(t1, t0, markup=Decimal('1.0')):
    """A zero t0 rate paired with a non-zero t1 rate means t1 + markup"""
    t1 = to_decimal(t1)
    t0 = to_decimal(t0)
    if t0 == 0 and t1 != 0:
        return t1 + to_decimal(markup), True
    return t0, False

# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass
class ResolvedScheme:
    scheme_id: str
    scheme_name: str
    scheme_type: str
    resolved_via: str

    def to_dict(self):
        return dict(self.__dict__)


@dataclass
class ResolvedMDRRate:
    scheme_id: str
    rate_id: str
    mode: str
    card_type: Optional[str]
    brand_type: Optional[str]
    card_classification: Optional[str]
    rates: Dict[Tuple[str, str], Decimal] = field(default_factory=dict)
    t0_fallback: List[str] = field(default_factory=list)

    def effective_rate(self, party, tier):
        return self.rates[(party, tier)]

    def to_dict(self):
        result = {
            'scheme_id': self.scheme_id,
            'rate_id': self.rate_id,
            'mode': self.mode,
            'card_type': self.card_type,
            'brand_type': self.brand_type,
            'card_classification': self.card_classification,
            't0_fallback': list(self.t0_fallback),
        }
        for (party, tier), value in self.rates.items():
            result[f'{party}_mdr_{tier}'] = float(value)
        return result


def _created_key(row):
    created = row.created_at or datetime.min
    return -created.timestamp() if created != datetime.min else 0.0


def pick_most_specific(candidates):
    """candidates: iterable of (specificity, row); returns the winning row or None"""
    ranked = sorted(
        candidates,
        key=lambda item: (
            -item[0],
            to_decimal(getattr(item[1], 'max_amount', 0)) - to_decimal(getattr(item[1], 'min_amount', 0)),
            _created_key(item[1]),
            str(item[1].id),
        )
    )
    return ranked[0][1] if ranked else None

# =============================================================================
# RESOLVER
# =============================================================================

class SchemeResolver:
    """Read-only view over schemes, mappings and slabs"""

    RESOLUTION_ORDER = (
        (MappingEntityRole.RETAILER, 'retailer_mapping'),
        (MappingEntityRole.DISTRIBUTOR, 'distributor_mapping'),
        (MappingEntityRole.MASTER_DISTRIBUTOR, 'md_mapping'),
    )

    def __init__(self, session, t0_markup=Decimal('1.0')):
        self.session = session
        self.t0_markup = t0_markup

    # -------------------------------------------------------------------------
    # Scheme
    # -------------------------------------------------------------------------

    def resolve_scheme(self, entity_id, entity_role, service_type,
                       distributor_id=None, md_id=None, at=None) -> ResolvedScheme:
        at = at or datetime.utcnow()
        service_type = self._service(service_type)
        chain = self._hierarchy(entity_id, entity_role, distributor_id, md_id)

        for role, resolved_via in self.RESOLUTION_ORDER:
            candidate_id = chain.get(role)
            if not candidate_id:
                continue
            resolved = self._find_mapping(candidate_id, role, service_type, resolved_via, at)
            if resolved:
                return resolved

        resolved = self._find_global(service_type, at)
        if resolved:
            return resolved

        raise SchemeResolutionError(f'No active scheme found for service {service_type}')

    def _service(self, service_type):
        try:
            scope = ServiceScope((service_type or '').lower())
        except ValueError:
            raise ValidationError(f'Invalid service_type: {service_type}')
        if scope == ServiceScope.ALL:
            raise ValidationError('service_type must be bbps, payout or mdr')
        return scope.value

    def _hierarchy(self, entity_id, entity_role, distributor_id, md_id):
        try:
            role = MappingEntityRole(entity_role)
        except ValueError:
            raise ValidationError(f'Invalid entity_role: {entity_role}')

        entity_id = parse_uuid(entity_id, 'entity_id')
        chain = {role: entity_id}
        if role == MappingEntityRole.MASTER_DISTRIBUTOR:
            return chain

        if distributor_id is None and md_id is None:
            user = self.session.get(User, entity_id)
            if user is not None:
                distributor, master = user.upline()
                if role == MappingEntityRole.RETAILER and distributor is not None:
                    distributor_id = distributor.id
                if master is not None:
                    md_id = master.id

        if role == MappingEntityRole.RETAILER and distributor_id:
            chain[MappingEntityRole.DISTRIBUTOR] = distributor_id
        if md_id:
            chain[MappingEntityRole.MASTER_DISTRIBUTOR] = md_id
        return chain

    def _find_mapping(self, entity_id, role, service_type, resolved_via, at):
        mappings = self.session.query(SchemeMapping).filter(
            SchemeMapping.entity_id == entity_id,
            SchemeMapping.entity_role == role,
            SchemeMapping.status == RecordStatus.ACTIVE,
            SchemeMapping.effective_from <= at,
            or_(SchemeMapping.effective_to.is_(None), SchemeMapping.effective_to > at),
        ).order_by(
            SchemeMapping.priority.asc(),
            SchemeMapping.created_at.desc(),
            SchemeMapping.id.asc(),
        ).all()

        for mapping in mappings:
            if mapping.service_type and mapping.service_type not in ('all', service_type):
                continue
            scheme = mapping.scheme
            if scheme is None or not scheme.is_effective(at):
                continue
            logger.debug(f"Scheme {scheme.id} resolved for {entity_id} via {resolved_via}")
            return ResolvedScheme(
                scheme_id=str(scheme.id),
                scheme_name=scheme.name,
                scheme_type=scheme.scheme_type.value,
                resolved_via=resolved_via,
            )
        return None

    def _find_global(self, service_type, at):
        scheme = self.session.query(Scheme).filter(
            Scheme.scheme_type == SchemeType.GLOBAL,
            Scheme.status == RecordStatus.ACTIVE,
            Scheme.service_scope.in_([ServiceScope(service_type), ServiceScope.ALL]),
            Scheme.effective_from <= at,
            or_(Scheme.effective_to.is_(None), Scheme.effective_to > at),
        ).order_by(
            Scheme.priority.asc(),
            Scheme.created_at.desc(),
            Scheme.id.asc(),
        ).first()

        if scheme is None:
            return None
        return ResolvedScheme(
            scheme_id=str(scheme.id),
            scheme_name=scheme.name,
            scheme_type=scheme.scheme_type.value,
            resolved_via='global',
        )

    # -------------------------------------------------------------------------
    # Slabs
    # -------------------------------------------------------------------------

    def _slabs_in_range(self, model, scheme_id, amount):
        return self.session.query(model).filter(
            model.scheme_id == scheme_id,
            model.status == RecordStatus.ACTIVE,
            model.min_amount <= amount,
            model.max_amount >= amount,
        ).all()

    def resolve_bbps_slab(self, scheme_id, amount, category=None):
        amount = to_decimal(amount)
        wanted = (category or '').strip().lower()
        candidates = []
        for slab in self._slabs_in_range(SchemeBBPSCommission, scheme_id, amount):
            if is_wildcard(slab.category):
                candidates.append((0, slab))
            elif wanted and slab.category.strip().lower() == wanted:
                candidates.append((1, slab))

        slab = pick_most_specific(candidates)
        if slab is None:
            raise SchemeResolutionError(
                f'No BBPS commission slab for category {category or "all"} and amount {amount}'
            )
        return slab

    def resolve_payout_slab(self, scheme_id, amount, transfer_mode):
        amount = to_decimal(amount)
        wanted = (transfer_mode or '').strip().upper()
        candidates = []
        for slab in self._slabs_in_range(SchemePayoutCharge, scheme_id, amount):
            if is_wildcard(slab.transfer_mode):
                candidates.append((0, slab))
            elif wanted and slab.transfer_mode.strip().upper() == wanted:
                candidates.append((1, slab))

        slab = pick_most_specific(candidates)
        if slab is None:
            raise SchemeResolutionError(
                f'No payout charge slab for transfer mode {transfer_mode or "all"} and amount {amount}'
            )
        return slab

    def resolve_mdr_rate(self, scheme_id, mode, card_type=None, brand_type=None,
                         card_classification=None) -> ResolvedMDRRate:
        mode = normalize_payment_mode(mode)
        wanted = {
            'card_type': normalize_card_type(card_type),
            'brand_type': normalize_brand_type(brand_type),
            'card_classification': (card_classification or '').strip().upper() or None,
        }

        rows = self.session.query(SchemeMDRRate).filter(
            SchemeMDRRate.scheme_id == scheme_id,
            SchemeMDRRate.status == RecordStatus.ACTIVE,
        ).all()

        candidates = []
        for row in rows:
            if (row.mode or '').upper() != mode:
                continue
            specificity = 0
            for name, value in wanted.items():
                stored = getattr(row, name)
                if is_wildcard(stored):
                    continue
                if name == 'brand_type':
                    stored = normalize_brand_type(stored)
                if value is None or stored.strip().upper() != value:
                    break
                specificity += 1
            else:
                candidates.append((specificity, row))

        row = pick_most_specific(candidates)
        if row is None:
            raise SchemeResolutionError(
                f"No active MDR rate for mode: {mode}, card_type: {wanted['card_type'] or 'N/A'}, "
                f"brand_type: {wanted['brand_type'] or 'N/A'}"
            )
        return self.effective_mdr(row)

    def effective_mdr(self, row) -> ResolvedMDRRate:
        resolved = ResolvedMDRRate(
            scheme_id=str(row.scheme_id),
            rate_id=str(row.id),
            mode=row.mode,
            card_type=row.card_type,
            brand_type=row.brand_type,
            card_classification=row.card_classification,
        )
        for party in SchemeMDRRate.PARTIES:
            t1 = to_decimal(getattr(row, f'{party}_mdr_t1'))
            t0, fallback = apply_t0_fallback(t1, getattr(row, f'{party}_mdr_t0'), self.t0_markup)
            resolved.rates[(party, 't1')] = t1
            resolved.rates[(party, 't0')] = t0
            if fallback:
                resolved.t0_fallback.append(party)
        return resolved


def entity_role_for(user):
    """Mapping entity role of a partner user"""
    roles = {
        UserRoleType.RETAILER: MappingEntityRole.RETAILER,
        UserRoleType.DISTRIBUTOR: MappingEntityRole.DISTRIBUTOR,
        UserRoleType.MASTER_DISTRIBUTOR: MappingEntityRole.MASTER_DISTRIBUTOR,
    }
    try:
        return roles[user.role].value
    except KeyError:
        raise ValidationError(f'Schemes do not apply to role {user.role.value}')
