import pytest
from retina_core.credit_risk import compute_credit_risk_score, raw_score, risk_level
from retina_core.data_structures import Option, Partner
from retina_core.errors import ConfigurationError


def make_option(oid, *pairs):
    return Option(
        id=oid,
        label=oid.upper(),
        partners=[Partner(f"{oid}_p{i}", e, d) for i, (e, d) in enumerate(pairs)],
    )


def test_no_partners_is_low():
    for partners in (None, []):
        res = compute_credit_risk_score(partners, [])
        assert res.score == 0
        assert res.level == "Low"
        assert res.total_exposure == 0.0
        assert res.average_dependency == 0.0


def test_riskiest_set_scores_100():
    a = make_option("a", (1_000_000.0, 0.8), (500_000.0, 0.4))
    b = make_option("b", (200_000.0, 0.5))
    res = compute_credit_risk_score(a.partners, [a, b])
    assert res.score == 100
    assert res.level == "High"
    assert res.total_exposure == 1_500_000.0
    assert res.average_dependency == pytest.approx(0.6)


def test_half_of_max_is_medium():
    a = make_option("a", (100.0, 1.0))
    b = make_option("b", (50.0, 1.0))
    res = compute_credit_risk_score(b.partners, [a, b])
    assert res.score == 50
    assert res.level == "Medium"


def test_score_rounds_half_up():
    a = make_option("a", (200.0, 1.0))
    b = make_option("b", (1.0, 1.0))  # 0.5 of 100
    assert compute_credit_risk_score(b.partners, [a, b]).score == 1


def test_tier_uses_unrounded_score():
    # 32.9 rounds to 33 but stays Low; 66.6 rounds to 67 but stays Medium
    top = make_option("top", (1000.0, 1.0))
    low = make_option("low", (329.0, 1.0))
    mid = make_option("mid", (666.0, 1.0))

    res = compute_credit_risk_score(low.partners, [top])
    assert res.score == 33
    assert res.level == "Low"

    res = compute_credit_risk_score(mid.partners, [top])
    assert res.score == 67
    assert res.level == "Medium"


def test_risk_level_boundaries():
    assert risk_level(0.0) == "Low"
    assert risk_level(32.999) == "Low"
    assert risk_level(33.0) == "Medium"
    assert risk_level(66.999) == "Medium"
    assert risk_level(67.0) == "High"
    assert risk_level(100.0) == "High"


def test_zero_dependency_everywhere():
    a = make_option("a", (500.0, 0.0))
    res = compute_credit_risk_score(a.partners, [a])
    assert res.score == 0
    assert res.level == "Low"
    assert res.total_exposure == 500.0


def test_comparison_set_may_be_dicts():
    a = make_option("a", (100.0, 0.5))
    others = [{"partners": [Partner("x", 200.0, 0.5)]}, {"id": "none"}]
    assert compute_credit_risk_score(a.partners, others).score == 50


def test_raw_score():
    assert raw_score(None) == 0.0
    assert raw_score([Partner("p", 10.0, 0.5), Partner("q", 4.0, 0.25)]) == 6.0


INVALID_PARTNERS = [
    Partner("p", -1.0, 0.5),
    Partner("p", 10.0, 1.5),
    Partner("p", 10.0, -0.1),
    Partner("p", float("nan"), 0.5),
    Partner("p", float("inf"), 0.5),
    Partner("p", 10.0, float("nan")),
]


@pytest.mark.parametrize("partner", INVALID_PARTNERS)
def test_invalid_partner_raises(partner):
    with pytest.raises(ConfigurationError):
        compute_credit_risk_score([partner], [])


@pytest.mark.parametrize("partner", INVALID_PARTNERS)
def test_invalid_partner_in_comparison_set_raises(partner):
    ours = make_option("ours", (100.0, 0.5))
    other = Option("other", "Other", partners=[partner])
    with pytest.raises(ConfigurationError):
        compute_credit_risk_score(ours.partners, [ours, other])
    with pytest.raises(ConfigurationError):
        compute_credit_risk_score(ours.partners, [{"partners": [partner]}])
