import random
from collections import Counter
import pytest
from core.errors import ConfigurationError, ExhaustedPoolError
from core.scheduler_impl import WeightedRandomChoice, check_weight


def pick_n(pool, n, excluded=()):
    """Count the keys picked over n draws."""
    return Counter(pool.pick(excluded) for _ in range(n))


class TestWeightedRandomChoiceBuild:
    def test_empty_entries(self):
        with pytest.raises(ConfigurationError):
            WeightedRandomChoice({})

    def test_zero_weight(self):
        with pytest.raises(ConfigurationError):
            WeightedRandomChoice({"A": 10, "B": 0})

    def test_negative_weight(self):
        with pytest.raises(ConfigurationError):
            WeightedRandomChoice({"A": -1})

    def test_non_integer_weight(self):
        with pytest.raises(ConfigurationError):
            WeightedRandomChoice({"A": 1.5})

    def test_keys(self):
        pool = WeightedRandomChoice({"b2": 1, "b1": 2})
        assert sorted(pool.keys) == ["b1", "b2"]
        assert len(pool) == 2


class TestWeightedRandomChoicePick:
    def test_single_entry(self):
        pool = WeightedRandomChoice({"b1": 5})
        assert pool.pick() == "b1"

    def test_only_known_keys(self):
        pool = WeightedRandomChoice({"b1": 1, "b2": 2, "b3": 3}, rng=random.Random(1))
        assert set(pick_n(pool, 500)) <= {"b1", "b2", "b3"}

    def test_frequency_follows_weight(self):
        pool = WeightedRandomChoice({"b1": 1, "b2": 3}, rng=random.Random(42))
        counts = pick_n(pool, 20000)
        assert 0.72 < counts["b2"] / 20000 < 0.78

    def test_equal_weights_uniform(self):
        pool = WeightedRandomChoice({"b1": 2, "b2": 2, "b3": 2}, rng=random.Random(7))
        counts = pick_n(pool, 30000)
        for key in ("b1", "b2", "b3"):
            assert 0.30 < counts[key] / 30000 < 0.37

    def test_excluded_never_picked(self):
        pool = WeightedRandomChoice({"b1": 100, "b2": 1, "b3": 1}, rng=random.Random(3))
        counts = pick_n(pool, 1000, excluded={"b1"})
        assert "b1" not in counts
        assert set(counts) == {"b2", "b3"}

    def test_single_entry_excluded(self):
        pool = WeightedRandomChoice({"b1": 1})
        with pytest.raises(ExhaustedPoolError) as exc_info:
            pool.pick({"b1"})
        assert exc_info.value.excluded == {"b1"}

    def test_all_excluded(self):
        pool = WeightedRandomChoice({"b1": 1, "b2": 4, "b3": 2})
        with pytest.raises(ExhaustedPoolError):
            pool.pick(["b1", "b2", "b3", "unknown"])

    def test_pool_reusable_after_exclusion(self):
        pool = WeightedRandomChoice({"b1": 1, "b2": 1}, rng=random.Random(0))
        assert pool.pick({"b1"}) == "b2"
        assert set(pick_n(pool, 200)) == {"b1", "b2"}

    def test_deterministic_for_seed(self):
        first = WeightedRandomChoice({"b1": 1, "b2": 2}, rng=random.Random(5))
        second = WeightedRandomChoice({"b2": 2, "b1": 1}, rng=random.Random(5))
        assert [first.pick() for _ in range(20)] == [second.pick() for _ in range(20)]


class TestCheckWeight:
    @pytest.mark.parametrize("weight", [1, 7])
    def test_valid(self, weight):
        check_weight("b1", weight)

    @pytest.mark.parametrize("weight", [0, -1, "3", 1.5, True, None])
    def test_invalid(self, weight):
        with pytest.raises(ConfigurationError, match="b1"):
            check_weight("b1", weight)
