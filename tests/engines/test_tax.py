"""
Tests for the Tax Rule Engine.

Covers:
- Intra-region dual split (CGST + SGST) and inter-region single tax (IGST)
- Flat single-component jurisdictions
- Zero taxable amount emits nothing
- Remainder allocation keeps components summing to the group tax
- Grouping by rate across a voucher
"""

from decimal import Decimal

import pytest

from voucher_engines.tax import TaxRuleEngine, component_rates, compute_tax_split
from voucher_kernel.domain.jurisdiction import (
    JurisdictionRule,
    RegionPair,
    TaxComponentDef,
    TaxFlow,
)
from voucher_kernel.domain.values import Currency
from voucher_kernel.exceptions import InvalidTaxRateError, InvalidTaxTableError

INTRA = RegionPair("MH", "MH")
INTER = RegionPair("MH", "GJ")


class TestDualSplit:
    """India-style dual rule from the bundled table."""

    def test_intra_region_sale(self, india_rule):
        entries = compute_tax_split([Decimal("500")], INTRA, Decimal("18"), india_rule)
        assert [(e.kind, e.rate, e.amount) for e in entries] == [
            ("CGST", Decimal("9"), Decimal("45.00")),
            ("SGST", Decimal("9"), Decimal("45.00")),
        ]

    def test_inter_region_sale(self, india_rule):
        entries = compute_tax_split([Decimal("500")], INTER, Decimal("18"), india_rule)
        assert [(e.kind, e.rate, e.amount) for e in entries] == [
            ("IGST", Decimal("18"), Decimal("90.00")),
        ]

    def test_unset_supply_region_is_intra(self, india_rule):
        entries = compute_tax_split(
            [Decimal("500")], RegionPair("MH", None), Decimal("18"), india_rule
        )
        assert [e.kind for e in entries] == ["CGST", "SGST"]

    def test_region_comparison_ignores_case(self, india_rule):
        entries = compute_tax_split(
            [Decimal("500")], RegionPair("mh", " MH "), Decimal("18"), india_rule
        )
        assert len(entries) == 2

    def test_component_rates_follow_line_rate(self, india_rule):
        """A 5% line splits into 2.5 + 2.5, not the table's 9 + 9."""
        entries = compute_tax_split([Decimal("1000")], INTRA, Decimal("5"), india_rule)
        assert [e.rate for e in entries] == [Decimal("2.5"), Decimal("2.5")]
        assert [e.amount for e in entries] == [Decimal("25.00"), Decimal("25.00")]

    def test_output_ledgers(self, india_rule):
        entries = compute_tax_split([Decimal("500")], INTRA, Decimal("18"), india_rule)
        assert [e.ledger_name for e in entries] == ["Output CGST", "Output SGST"]

    def test_input_ledgers(self, india_rule):
        entries = compute_tax_split(
            [Decimal("500")], INTER, Decimal("18"), india_rule, TaxFlow.INPUT
        )
        assert [e.ledger_name for e in entries] == ["Input IGST"]

    def test_odd_cent_goes_to_last_component(self, india_rule):
        # 0.05 x 18% = 0.009 -> group tax 0.01; CGST 0.0045 -> 0.00; SGST takes 0.01
        entries = compute_tax_split([Decimal("0.05")], INTRA, Decimal("18"), india_rule)
        assert sum(e.amount for e in entries) == Decimal("0.01")

    def test_multiple_lines_summed_before_rounding(self, india_rule):
        entries = compute_tax_split(
            [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")],
            INTRA,
            Decimal("18"),
            india_rule,
        )
        assert sum(e.amount for e in entries) == Decimal("18.00")


class TestFlatRule:

    def test_flat_vat(self, gb_rule):
        entries = compute_tax_split([Decimal("200")], INTER, Decimal("20"), gb_rule)
        assert [(e.kind, e.amount, e.ledger_name) for e in entries] == [
            ("VAT", Decimal("40.00"), "VAT Output"),
        ]

    def test_flat_ignores_regions(self, gb_rule):
        intra = compute_tax_split([Decimal("200")], INTRA, Decimal("20"), gb_rule)
        inter = compute_tax_split([Decimal("200")], INTER, Decimal("20"), gb_rule)
        assert intra == inter


class TestZeroAndErrors:

    def test_zero_taxable_amount_emits_nothing(self, india_rule):
        assert compute_tax_split([Decimal("0")], INTRA, Decimal("18"), india_rule) == ()

    def test_no_lines_emits_nothing(self, india_rule):
        assert compute_tax_split([], INTRA, Decimal("18"), india_rule) == ()

    def test_zero_rate_emits_nothing(self, india_rule):
        assert compute_tax_split([Decimal("500")], INTRA, Decimal("0"), india_rule) == ()

    def test_negative_rate_rejected(self, india_rule):
        with pytest.raises(InvalidTaxRateError):
            compute_tax_split([Decimal("500")], INTRA, Decimal("-1"), india_rule)

    def test_rule_without_components(self):
        rule = JurisdictionRule(code="XX", currency=Currency("USD"))
        with pytest.raises(InvalidTaxTableError):
            compute_tax_split([Decimal("100")], INTRA, Decimal("10"), rule)

    def test_zero_share_total(self):
        components = (TaxComponentDef("A", Decimal("0")),)
        with pytest.raises(InvalidTaxTableError):
            component_rates(components, Decimal("10"), "XX")


class TestVoucherTaxes:
    """TaxRuleEngine groups lines by rate and splits each group."""

    def test_groups_by_rate_ascending(self, india_rule):
        engine = TaxRuleEngine(india_rule)
        entries = engine.compute_voucher_taxes(
            [
                (Decimal("1000"), Decimal("18")),
                (Decimal("200"), Decimal("5")),
                (Decimal("500"), Decimal("18")),
            ],
            INTRA,
        )
        assert [(e.kind, e.rate, e.amount) for e in entries] == [
            ("CGST", Decimal("2.5"), Decimal("5.00")),
            ("SGST", Decimal("2.5"), Decimal("5.00")),
            ("CGST", Decimal("9"), Decimal("135.00")),
            ("SGST", Decimal("9"), Decimal("135.00")),
        ]

    def test_exempt_group_skipped(self, india_rule):
        engine = TaxRuleEngine(india_rule)
        entries = engine.compute_voucher_taxes(
            [(Decimal("100"), Decimal("0")), (Decimal("100"), Decimal("18"))], INTER
        )
        assert [e.kind for e in entries] == ["IGST"]

    def test_default_rate(self, india_rule):
        assert TaxRuleEngine(india_rule).default_rate == Decimal("18")

    def test_engine_trace_logged(self, india_rule, captured_logs):
        TaxRuleEngine(india_rule).compute_tax_split([Decimal("500")], INTRA, Decimal("18"))
        traces = [r for r in captured_logs() if r["message"] == "VOUCHER_ENGINE_TRACE"]
        assert traces and traces[0]["engine_name"] == "tax_split"
        assert len(traces[0]["input_fingerprint"]) == 16
