"""
Catalog loading and rule validation.
"""
import pytest

from quote_engine.config.settings import Settings
from quote_engine.engine.errors import CatalogError
from quote_engine.engine.models import (
    ADD_ON, DISCOUNT, MONTHLY, ONE_TIME_FEE, PER_UNIT, SIMPLE, PricingRule,
)
from quote_engine.services.catalog_service import (
    CatalogService, parse_bool, parse_currency, parse_percentage, validate_rule,
)


def write_catalog(tmp_path, rules_csv, services_csv="service_id,title\n"):
    (tmp_path / "pricing_rules.csv").write_text(rules_csv, encoding="utf-8")
    (tmp_path / "services.csv").write_text(services_csv, encoding="utf-8")
    return CatalogService(Settings.load(tmp_path))


@pytest.mark.parametrize("value, expected", [
    ("$1,250.00", 1250.0),
    ("150", 150.0),
    ("", 0.0),
    ("n/a", 0.0),
])
def test_parse_currency(value, expected):
    assert parse_currency(value) == expected


@pytest.mark.parametrize("value, expected", [
    ("50%", 0.5),
    ("0.25", 0.25),
    ("", 0.0),
    ("half", 0.0),
])
def test_parse_percentage(value, expected):
    assert parse_percentage(value) == expected


def test_parse_bool():
    assert parse_bool("TRUE")
    assert parse_bool("checked")
    assert not parse_bool("no")
    assert parse_bool("", default=True)


class TestPackagedCatalog:

    def test_rules_keep_file_order(self, catalog):
        rules, _ = catalog
        ids = [r.rule_id for r in rules]
        assert ids[0] == "bookkeeping-transactions"
        assert ids.index("bookkeeping-catchup") < ids.index("bookkeeping-catchup-rush")
        assert len(ids) == len(set(ids))

    def test_rule_columns_are_parsed(self, catalog):
        rules, _ = catalog
        by_id = {r.rule_id: r for r in rules}

        bank = by_id["bookkeeping-bank-accounts"]
        assert bank.calculation_method == PER_UNIT
        assert bank.base_price == 25
        assert bank.unit_price == 25
        assert bank.discount_eligible
        assert bank.discount_percentage == 0.5
        assert bank.pricing_type == ADD_ON
        assert bank.billing_frequency == MONTHLY

        catchup = by_id["bookkeeping-catchup"]
        assert catchup.minimum_value == 300
        assert catchup.maximum_value is None
        assert catchup.comparison_logic == "greaterThan"
        assert catchup.billing_frequency == ONE_TIME_FEE

        retainer = by_id["advisory-retainer"]
        assert retainer.calculation_method == SIMPLE
        assert retainer.base_price == 2500

        credit = by_id["advisory-tax-credit"]
        assert credit.pricing_type == DISCOUNT
        assert credit.maximum_value == 0
        assert "{{individualTaxTotal}}" in credit.expression

    def test_services_are_ordered_and_parsed(self, catalog):
        _, services = catalog
        assert [s.service_order for s in services] == sorted(s.service_order for s in services)

        monthly = next(s for s in services if s.total_variable_name == "monthlyBookkeepingTotal")
        assert monthly.billing_frequency == MONTHLY
        assert monthly.aggregation_rules.minimum_fee == 250

        advisory = next(s for s in services if s.service_id == "advisory")
        assert DISCOUNT in advisory.aggregation_rules.include_types

        tax = next(s for s in services if s.service_id == "individual-tax")
        assert tax.aggregation_rules is None

    def test_every_packaged_rule_is_valid(self, catalog, settings):
        rules, _ = catalog
        service = CatalogService(settings)
        earlier = set()
        for rule in rules:
            result = service.validate_rule(rule, earlier)
            assert result.valid, (rule.rule_id, result.errors)
            assert not any("not evaluated before" in w for w in result.warnings)
            earlier.add(rule.rule_id)


class TestLoadErrors:

    def test_missing_file(self, tmp_path):
        with pytest.raises(CatalogError):
            CatalogService(Settings.load(tmp_path)).load_rules()

    def test_missing_rule_id_column(self, tmp_path):
        service = write_catalog(tmp_path, "name,expression\nFoo,1\n")
        with pytest.raises(CatalogError, match="rule_id"):
            service.load_rules()

    def test_bad_bound(self, tmp_path):
        service = write_catalog(tmp_path, "rule_id,expression,minimum_value\nr1,1,lots\n")
        with pytest.raises(CatalogError, match="Line 2"):
            service.load_rules()

    def test_bad_aggregation_json(self, tmp_path):
        service = write_catalog(
            tmp_path, "rule_id\nr1\n",
            'service_id,aggregation_rules\nS,"{not json"\n'
        )
        with pytest.raises(CatalogError, match="aggregation_rules"):
            service.load_services()

    @pytest.mark.parametrize("cell", [
        '"{""includeTypes"": ""Base Service""}"',
        '"[""Base Service""]"',
    ])
    def test_aggregation_rules_must_hold_lists(self, tmp_path, cell):
        service = write_catalog(tmp_path, "rule_id\nr1\n", f"service_id,aggregation_rules\nS,{cell}\n")
        with pytest.raises(CatalogError, match="Line 2: service 'S'"):
            service.load_services()

    def test_blank_rows_and_defaults(self, tmp_path):
        service = write_catalog(tmp_path, "rule_id,expression,active\nr1, 1 + 1 ,\n,,\n")
        rules = service.load_rules()
        assert len(rules) == 1
        assert rules[0].expression == "1 + 1"
        assert rules[0].active
        assert rules[0].name == "r1"


class TestValidateRule:

    def test_valid_formula(self):
        result = validate_rule(PricingRule(rule_id="r", expression="max({{a}}, {{b.c}}) * 2"))
        assert result.valid
        assert result.placeholders == ["a", "b.c"]

    def test_invalid_formula(self):
        result = validate_rule(PricingRule(rule_id="r", expression="{{a}} +* foo"))
        assert not result.valid
        assert result.errors[0].startswith("Invalid expression")

    def test_unknown_method(self):
        result = validate_rule(PricingRule(rule_id="r", calculation_method="tiered"))
        assert not result.valid

    def test_unknown_comparison(self):
        rule = PricingRule(rule_id="r", expression="1", trigger_field="x", comparison_logic="like")
        assert not validate_rule(rule).valid

    def test_forward_reference_warning(self):
        rule = PricingRule(rule_id="r", expression="{{pricingRule.later}} + 1", service_id="S")
        result = validate_rule(rule, earlier_rule_ids={"first"})
        assert result.valid
        assert any("pricingRule.later" in w for w in result.warnings)

    def test_empty_expression_warns(self):
        result = validate_rule(PricingRule(rule_id="r", service_id="S"))
        assert result.valid
        assert result.warnings

    def test_overlong_formula_is_reported(self):
        rule = PricingRule(rule_id="r", expression=" + ".join(["{{a}}"] * 300))
        result = validate_rule(rule)
        assert not result.valid
        assert "longer than 500 tokens" in result.errors[0]

    def test_per_unit_without_unit_price_warns(self):
        rule = PricingRule(rule_id="r", calculation_method=PER_UNIT, unit_price=0,
                           quantity_source_field="tax.states", base_price=25)
        result = validate_rule(rule)
        assert result.valid
        assert any("base_price" in w for w in result.warnings)
