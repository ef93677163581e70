from decimal import Decimal

import pytest

from models import ChargeType, SchemeBBPSCommission
from services.commission import (
    apply_rate, compute_breakdown, compute_mdr_breakdown, percentage_of, round_money,
    settlement_tier
)
from services.scheme_resolution import ResolvedMDRRate
from utils.errors import SchemeResolutionError, ValidationError


def mdr_rates(retailer, distributor, md, tier='t1'):
    rates = ResolvedMDRRate(
        scheme_id='scheme-1', rate_id='rate-1', mode='CARD',
        card_type=None, brand_type=None, card_classification=None,
    )
    for party, value in (('retailer', retailer), ('distributor', distributor), ('md', md)):
        rates.rates[(party, 't1')] = Decimal(value)
        rates.rates[(party, 't0')] = Decimal(value)
    return rates


class TestFeeMath:

    def test_percentage_fee_rounds_to_two_places(self):
        assert percentage_of(Decimal('500'), Decimal('2')) == Decimal('10.00')
        assert percentage_of(Decimal('333.33'), Decimal('1.5')) == Decimal('5.00')

    def test_rounding_is_half_up(self):
        assert round_money(Decimal('0.125')) == Decimal('0.13')
        assert round_money(Decimal('2.675')) == Decimal('2.68')

    def test_flat_fee_ignores_base_amount(self):
        assert apply_rate(Decimal('100'), Decimal('5'), ChargeType.FLAT) == Decimal('5.00')
        assert apply_rate(Decimal('100000'), Decimal('5'), 'flat') == Decimal('5.00')

    def test_percentage_fee_scales_with_base_amount(self):
        assert apply_rate(Decimal('1000'), Decimal('0.5'), ChargeType.PERCENTAGE) == Decimal('5.00')
        assert apply_rate(Decimal('2000'), Decimal('0.5'), 'percentage') == Decimal('10.00')


class TestSlabBreakdown:

    def test_each_component_is_priced_independently(self):
        slab = SchemeBBPSCommission(
            retailer_charge=Decimal('5'), retailer_charge_type=ChargeType.FLAT,
            retailer_commission=Decimal('1'), retailer_commission_type=ChargeType.PERCENTAGE,
            distributor_commission=Decimal('0.5'), distributor_commission_type=ChargeType.PERCENTAGE,
            md_commission=Decimal('2'), md_commission_type=ChargeType.FLAT,
            company_charge=Decimal('0.25'), company_charge_type=ChargeType.PERCENTAGE,
        )

        breakdown = compute_breakdown(slab, '800')

        assert breakdown.retailer_charge == Decimal('5.00')
        assert breakdown.retailer_commission == Decimal('8.00')
        assert breakdown.distributor_commission == Decimal('4.00')
        assert breakdown.md_commission == Decimal('2.00')
        assert breakdown.company_charge == Decimal('2.00')

    def test_unset_components_are_zero_and_not_posted(self):
        slab = SchemeBBPSCommission(retailer_charge=Decimal('3'))

        breakdown = compute_breakdown(slab, '100')

        assert breakdown.retailer_commission == Decimal('0.00')
        assert [c.name for c in breakdown.non_zero()] == ['retailer_charge']

    def test_to_dict_reports_company_earning(self):
        slab = SchemeBBPSCommission(company_charge=Decimal('1.5'))
        result = compute_breakdown(slab, '100').to_dict()

        assert result['company_earning'] == result['company_charge'] == 1.5
        assert result['components']['company_charge']['type'] == 'flat'


class TestMDRBreakdown:

    def test_margins_with_md_tier(self):
        breakdown = compute_mdr_breakdown(mdr_rates('2.0', '1.5', '1.0'), '1000')

        assert breakdown.retailer_fee == Decimal('20.00')
        assert breakdown.distributor_fee == Decimal('15.00')
        assert breakdown.md_fee == Decimal('10.00')
        assert breakdown.distributor_margin == Decimal('5.00')
        assert breakdown.md_margin == Decimal('5.00')
        assert breakdown.company_earning == Decimal('10.00')
        assert breakdown.retailer_settlement_amount == Decimal('980.00')

    def test_without_md_rate_company_earns_distributor_fee(self):
        breakdown = compute_mdr_breakdown(mdr_rates('2.0', '1.5', '0'), '1000')

        assert breakdown.md_margin == Decimal('0.00')
        assert breakdown.company_earning == Decimal('15.00')

    def test_negative_distributor_margin_is_rejected(self):
        with pytest.raises(SchemeResolutionError, match='Distributor margin cannot be negative'):
            compute_mdr_breakdown(mdr_rates('1.0', '1.5', '0'), '1000')

    def test_negative_md_margin_is_rejected(self):
        with pytest.raises(SchemeResolutionError, match='MD margin cannot be negative'):
            compute_mdr_breakdown(mdr_rates('2.0', '1.0', '1.5'), '1000')

    @pytest.mark.parametrize('value,tier', [
        (None, 't1'), ('T1', 't1'), ('T+1', 't1'), ('T0', 't0'), ('T+0', 't0'),
    ])
    def test_settlement_tier_aliases(self, value, tier):
        assert settlement_tier(value) == tier

    def test_unknown_settlement_tier_is_rejected(self):
        with pytest.raises(ValidationError):
            settlement_tier('T2')
