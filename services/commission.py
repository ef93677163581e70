"""
Commission computation: resolved slab + base amount -> typed fee breakdown.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, Optional

from models import ChargeType
from utils.errors import SchemeResolutionError, ValidationError

TWO_PLACES = Decimal('0.01')
HUNDRED = Decimal('100')

# Slab components in posting order
COMPONENTS = (
    'retailer_charge', 'retailer_commission', 'distributor_commission',
    'md_commission', 'company_charge',
)


def to_decimal(value, default=Decimal('0')):
    """Convert a stored or user supplied figure to Decimal"""
    if value is None or value == '':
        return default
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f'Invalid numeric value: {value}')


def round_money(value):
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def percentage_of(base_amount, rate):
    """round(base * rate / 100, 2)"""
    return round_money(to_decimal(base_amount) * to_decimal(rate) / HUNDRED)


def apply_rate(base_amount, value, charge_type):
    """Flat values are taken as stored; percentages apply to the base amount"""
    if ChargeType(charge_type) == ChargeType.PERCENTAGE:
        return percentage_of(base_amount, value)
    return round_money(value)


@dataclass
class ChargeComponent:
    name: str
    amount: Decimal
    charge_type: ChargeType
    rate: Decimal

    def to_dict(self):
        return {
            'amount': float(self.amount),
            'type': self.charge_type.value,
            'rate': float(self.rate),
        }


@dataclass
class CommissionBreakdown:
    """Independent charge and commission figures for one transaction"""
    base_amount: Decimal
    components: Dict[str, ChargeComponent] = field(default_factory=dict)
    scheme_id: Optional[str] = None
    slab_id: Optional[str] = None

    def amount(self, name):
        component = self.components.get(name)
        return component.amount if component else Decimal('0.00')

    @property
    def retailer_charge(self):
        return self.amount('retailer_charge')

    @property
    def retailer_commission(self):
        return self.amount('retailer_commission')

    @property
    def distributor_commission(self):
        return self.amount('distributor_commission')

    @property
    def md_commission(self):
        return self.amount('md_commission')

    @property
    def company_charge(self):
        return self.amount('company_charge')

    def non_zero(self):
        return [self.components[name] for name in COMPONENTS
                if name in self.components and self.components[name].amount != 0]

    def to_dict(self):
        result = {name: float(self.amount(name)) for name in COMPONENTS}
        result['company_earning'] = result['company_charge']
        result['base_amount'] = float(self.base_amount)
        result['components'] = {name: c.to_dict() for name, c in self.components.items()}
        return result


def compute_breakdown(slab, base_amount) -> CommissionBreakdown:
    """Price every component of a BBPS or payout slab against base_amount"""
    base_amount = round_money(base_amount)
    breakdown = CommissionBreakdown(
        base_amount=base_amount,
        scheme_id=str(slab.scheme_id) if slab.scheme_id else None,
        slab_id=str(slab.id) if slab.id else None,
    )
    for name in COMPONENTS:
        rate = to_decimal(getattr(slab, name))
        charge_type = ChargeType(getattr(slab, f'{name}_type') or ChargeType.FLAT)
        breakdown.components[name] = ChargeComponent(
            name=name,
            amount=apply_rate(base_amount, rate, charge_type),
            charge_type=charge_type,
            rate=rate,
        )
    return breakdown

# =============================================================================
# MDR
# =============================================================================

SETTLEMENT_TIERS = {
    'T0': 't0', 'T+0': 't0', 't0': 't0',
    'T1': 't1', 'T+1': 't1', 't1': 't1',
}


def settlement_tier(settlement_type):
    if not settlement_type:
        return 't1'
    try:
        return SETTLEMENT_TIERS[str(settlement_type).strip()]
    except KeyError:
        raise ValidationError(f'Invalid settlement_type: {settlement_type}')


@dataclass
class MDRBreakdown:
    amount: Decimal
    settlement_type: str
    retailer_mdr: Decimal
    distributor_mdr: Decimal
    md_mdr: Decimal
    retailer_fee: Decimal
    distributor_fee: Decimal
    md_fee: Decimal
    distributor_margin: Decimal
    md_margin: Decimal
    company_earning: Decimal
    retailer_settlement_amount: Decimal
    scheme_id: Optional[str] = None

    def to_dict(self):
        result = {}
        for key, value in self.__dict__.items():
            result[key] = float(value) if isinstance(value, Decimal) else value
        return result


def compute_mdr_breakdown(rates, amount, settlement_type='T1') -> MDRBreakdown:
    """Split an MDR fee across retailer, distributor, md and company

    ``rates`` is a resolved MDR rate exposing ``effective_rate(party, tier)``
    with the T0 fallback already applied.
    """
    amount = round_money(amount)
    tier = settlement_tier(settlement_type)

    retailer_mdr = rates.effective_rate('retailer', tier)
    distributor_mdr = rates.effective_rate('distributor', tier)
    md_mdr = rates.effective_rate('md', tier)

    if retailer_mdr < distributor_mdr:
        raise SchemeResolutionError(
            'Distributor margin cannot be negative. Retailer MDR must be >= Distributor MDR'
        )
    if md_mdr > 0 and distributor_mdr < md_mdr:
        raise SchemeResolutionError(
            'MD margin cannot be negative. Distributor MDR must be >= MD MDR'
        )

    retailer_fee = percentage_of(amount, retailer_mdr)
    distributor_fee = percentage_of(amount, distributor_mdr)
    md_fee = percentage_of(amount, md_mdr)

    if md_mdr > 0:
        md_margin = distributor_fee - md_fee
        company_earning = md_fee
    else:
        md_margin = Decimal('0.00')
        company_earning = distributor_fee

    return MDRBreakdown(
        amount=amount,
        settlement_type=tier.upper(),
        retailer_mdr=retailer_mdr,
        distributor_mdr=distributor_mdr,
        md_mdr=md_mdr,
        retailer_fee=retailer_fee,
        distributor_fee=distributor_fee,
        md_fee=md_fee,
        distributor_margin=retailer_fee - distributor_fee,
        md_margin=md_margin,
        company_earning=company_earning,
        retailer_settlement_amount=amount - retailer_fee,
        scheme_id=getattr(rates, 'scheme_id', None),
    )
