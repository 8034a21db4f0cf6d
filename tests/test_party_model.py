import numpy as np
import pytest

from src.models.party_model import (
    INTERCEPT,
    MissingInterceptError,
    PartyModel,
    age_term,
    load_models,
    save_models,
)
from tests.conftest import make_model


class TestDistrictOffset:
    """Random intercept lookup and the unsampled-district fallback policies."""

    def setup_method(self):
        self.model = make_model("Liberal", random_intercepts={"A": 0.4, "B": -0.2})

    def test_sampled_district(self):
        assert self.model.district_offset("A") == (0.4, False)

    def test_population_fallback_is_zero_offset(self):
        assert self.model.district_offset("Z", "population") == (0.0, True)

    def test_sample_mean_fallback(self):
        offset, used = self.model.district_offset("Z", "sample_mean")
        assert used
        assert offset == pytest.approx(0.1)

    def test_refuse_raises(self):
        with pytest.raises(MissingInterceptError, match="district Z"):
            self.model.district_offset("Z", "refuse")

    def test_sample_mean_without_any_intercept_raises(self):
        model = make_model("Green")
        with pytest.raises(MissingInterceptError):
            model.district_offset("Z", "sample_mean")

    def test_unknown_policy(self):
        with pytest.raises(ValueError, match="Unknown fallback policy"):
            self.model.district_offset("A", "zero")


class TestPrediction:
    """Cell-level log-odds and probabilities."""

    def test_linear_predictor_sums_terms(self):
        model = make_model(
            "NDP", intercept=-1.0, random_intercepts={"A": 0.5}, age_effects={"30 to 34": 0.25}, male=-0.3
        )
        log_odds, used = model.linear_predictor(
            np.array(["18 to 19", "30 to 34", "30 to 34"]), np.array([0.0, 0.0, 1.0]), "A"
        )
        assert not used
        np.testing.assert_allclose(log_odds, [-0.5, -0.25, -0.55])

    def test_probability_is_logistic_transform(self):
        model = make_model("Bloc", intercept=0.7)
        probs, _ = model.predict_proba(np.array(["18 to 19"]), np.array([0.0]), "A")
        assert probs[0] == pytest.approx(np.exp(0.7) / (1 + np.exp(0.7)))

    def test_extreme_log_odds_do_not_overflow(self):
        model = make_model("Bloc", intercept=800.0)
        probs, _ = model.predict_proba(np.array(["18 to 19"]), np.array([0.0]), "A")
        assert probs[0] == pytest.approx(1.0)
        assert not np.isnan(probs).any()

    def test_missing_age_coefficient(self):
        model = PartyModel(
            party="Green",
            coefficients={INTERCEPT: 0.0},
            std_errors={},
            random_intercepts={},
            random_intercept_sd=0.0,
        )
        assert model.age_offset("20 to 24") == 0.0
        probs, _ = model.predict_proba(np.array(["20 to 24", "95 to 99"]), np.array([1.0, 0.0]), "A")
        np.testing.assert_allclose(probs, [0.5, 0.5])


class TestModelObject:
    """Read-only behaviour and serialization."""

    def test_coefficients_are_read_only(self):
        model = make_model("Liberal")
        with pytest.raises(TypeError):
            model.coefficients[INTERCEPT] = 5.0
        with pytest.raises(AttributeError):
            model.party = "Other"

    def test_intercept_required(self):
        with pytest.raises(ValueError, match="Intercept"):
            PartyModel(party="X", coefficients={}, std_errors={}, random_intercepts={}, random_intercept_sd=0.0)

    def test_save_and_load_preserve_order_and_values(self, tmp_path):
        models = {
            "Liberal": make_model("Liberal", intercept=0.3, random_intercepts={"35001": 0.1}),
            "Conservative": make_model("Conservative", intercept=-0.2, male=0.4),
        }
        path = tmp_path / "models.json"
        save_models(models, str(path))
        loaded = load_models(str(path))

        assert list(loaded) == ["Liberal", "Conservative"]
        assert loaded["Liberal"].random_intercepts["35001"] == 0.1
        assert loaded["Conservative"].coefficients[age_term("40 to 44")] == 0.0
        assert loaded["Conservative"].to_dict() == models["Conservative"].to_dict()
