import os
import sys

import pytest

# Ensure src/ is importable when tests run from repo root
sys.path.insert(0, os.path.abspath("src"))

from labelcheck.domain import constants as C
from labelcheck.preflight.request import ProductFields
from labelcheck.preflight.rules import RuleContext, RuleEngine


@pytest.fixture(scope="module")
def engine():
    return RuleEngine()


def _ctx(text, **fields):
    return RuleContext.build(ProductFields(**fields), [text])


@pytest.mark.parametrize(
    "text",
    [
        "Ingredienti: zucchero, pistacchio 60%, olio di girasole",
        "Ingredients: 60% pistachio, sugar, sunflower oil",
    ],
)
def test_quid_percentage_before_or_after_ingredient(engine, text):
    check = engine.quid(_ctx(text, product_name="Pistachio Cream"))
    assert check.status == C.STATUS_OK
    assert check.severity == C.SEVERITY_LOW


def test_quid_without_percentage_is_high_issue(engine):
    check = engine.quid(_ctx("Ingredients: pistachio, sugar", product_name="Pistachio Cream"))
    assert (check.status, check.severity) == (C.STATUS_ISSUE, C.SEVERITY_HIGH)
    assert check.fix


def test_quid_needs_a_product_name(engine):
    check = engine.quid(_ctx("Ingredients: sugar 40%"))
    assert (check.status, check.severity) == (C.STATUS_ISSUE, C.SEVERITY_HIGH)


def test_name_stem_skips_stopwords(engine):
    assert engine.name_stem("Organic Hazelnut Spread") == "hazel"
    assert engine.name_stem("the of") is None


def test_language_accepted_for_country(engine):
    check = engine.language_compliance(_ctx("", country_of_sale="Italy", languages_provided=("it",)))
    assert check.status == C.STATUS_OK


def test_language_alias_is_normalized(engine):
    check = engine.language_compliance(_ctx("", country_of_sale="Italia", languages_provided=("Italiano",)))
    assert check.status == C.STATUS_OK


def test_language_mismatch_is_medium_issue(engine):
    check = engine.language_compliance(
        _ctx("Ingredients: sugar", country_of_sale="Italy", languages_provided=("en",))
    )
    assert (check.status, check.severity) == (C.STATUS_ISSUE, C.SEVERITY_MEDIUM)
    assert "it" in check.fix


def test_language_missing_when_nothing_declared_or_detected(engine):
    check = engine.language_compliance(_ctx("", country_of_sale="Italy"))
    assert check.status == C.STATUS_MISSING


def test_net_quantity_ignores_reference_amounts(engine):
    check = engine.net_quantity(_ctx("Nutrition per 100 g: energy 2200 kJ / 530 kcal"))
    assert (check.status, check.severity) == (C.STATUS_MISSING, C.SEVERITY_MEDIUM)


def test_net_quantity_found_next_to_reference_amount(engine):
    check = engine.net_quantity(_ctx("Valori nutrizionali per 100 g\nPeso netto: 250 g"))
    assert check.status == C.STATUS_OK
    assert "250 g" in check.detail


def test_net_quantity_estimated_sign(engine):
    check = engine.net_quantity(_ctx("200g ℮"))
    assert check.status == C.STATUS_OK


def test_business_address_with_company_form_and_street(engine):
    check = engine.business_address(_ctx("Produced by Dolci Srl, Via Roma 12, 20100 Milano"))
    assert check.status == C.STATUS_OK


def test_business_name_without_address(engine):
    check = engine.business_address(_ctx("Distributed by Dolci Srl"))
    assert (check.status, check.severity) == (C.STATUS_ISSUE, C.SEVERITY_LOW)


def test_storage_phrase_is_not_an_address(engine):
    check = engine.business_address(_ctx("Store in a cool, dry place. Made for Dolci Srl."))
    assert (check.status, check.severity) == (C.STATUS_ISSUE, C.SEVERITY_LOW)


@pytest.mark.parametrize(
    "text",
    [
        "Packed by Acme Ltd, 12 Market Place, Leeds",
        "Dolci SARL, Route de Lyon 4, Grenoble",
    ],
)
def test_everyday_street_words_count_with_house_number(engine, text):
    assert engine.business_address(_ctx(text)).status == C.STATUS_OK


def test_business_address_missing(engine):
    check = engine.business_address(_ctx("Ingredients: sugar"))
    assert check.status == C.STATUS_MISSING


@pytest.mark.parametrize(
    "text",
    [
        "Ingredients: sugar, **milk** powder, cocoa",
        "Ingredients: sugar, MILK powder, cocoa",
        "Ingredients: sugar, <b>skimmed milk</b>, cocoa",
    ],
)
def test_allergen_emphasis_cues(engine, text):
    assert engine.allergen_emphasis(_ctx(text)).status == C.STATUS_OK


def test_allergen_without_emphasis_is_medium_issue(engine):
    check = engine.allergen_emphasis(_ctx("Ingredients: sugar, milk powder, hazelnuts"))
    assert (check.status, check.severity) == (C.STATUS_ISSUE, C.SEVERITY_MEDIUM)
    assert "milk" in check.detail


def test_allergen_emphasis_without_any_evidence(engine):
    check = engine.allergen_emphasis(_ctx(""))
    assert check.status == C.STATUS_MISSING


def test_claims_are_flagged(engine):
    check = engine.claims(_ctx("High protein snack. Ingredients: peas"))
    assert check.status == C.STATUS_ISSUE


def test_evaluate_covers_every_canonical_check_in_order(engine):
    results = engine.evaluate(_ctx("Ingredients: sugar", product_name="Sugar"))
    assert tuple(results) == C.CANONICAL_IDS
    assert all(c.sources for c in results.values())
