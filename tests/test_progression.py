import pytest

from errors import ValidationError
from logic.progression import PERFECT_SCORE, calculate_progression, level_for_xp


class TestCalculateProgression:

    def test_perfect_round(self):
        result = calculate_progression(10, 10, current_xp=200, level_threshold=300)
        assert result.xp_gained == 150
        assert result.new_xp == 350
        assert result.new_level == 1
        assert result.achievements == [PERFECT_SCORE]

    def test_no_correct_answers_still_gets_completion_bonus(self):
        result = calculate_progression(0, 10, current_xp=0, bonus_requires_perfect=False)
        assert result.base_xp == 0
        assert result.bonus_xp == 50
        assert result.xp_gained == 50
        assert result.achievements == []

    def test_partial_score(self):
        result = calculate_progression(7, 10, current_xp=0, bonus_requires_perfect=False)
        assert result.xp_gained == 120
        assert result.achievements == []

    def test_nothing_attempted_gains_nothing(self):
        result = calculate_progression(0, 0, current_xp=40)
        assert result.xp_gained == 0
        assert result.new_xp == 40
        assert result.achievements == []

    def test_bonus_only_on_perfect_when_configured(self):
        partial = calculate_progression(9, 10, bonus_requires_perfect=True)
        perfect = calculate_progression(10, 10, bonus_requires_perfect=True)
        assert partial.bonus_xp == 0
        assert partial.xp_gained == 90
        assert perfect.bonus_xp == 50

    @pytest.mark.parametrize("correct,total", [(0, 1), (3, 5), (5, 5), (12, 20)])
    def test_xp_formula_holds(self, correct, total):
        result = calculate_progression(correct, total, bonus_requires_perfect=False)
        assert result.xp_gained == correct * 10 + 50
        assert result.xp_gained >= 0

    @pytest.mark.parametrize(
        "correct,total,current",
        [(-1, 5, 0), (1, -5, 0), (6, 5, 0), (1, 1, -10)],
    )
    def test_rejects_invalid_input(self, correct, total, current):
        with pytest.raises(ValidationError):
            calculate_progression(correct, total, current_xp=current)


class TestLevelForXp:

    def test_levels_floor(self):
        assert level_for_xp(0, 300) == 0
        assert level_for_xp(299, 300) == 0
        assert level_for_xp(300, 300) == 1
        assert level_for_xp(905, 300) == 3

    def test_default_threshold(self):
        assert level_for_xp(600) == 2

    def test_rejects_zero_threshold(self):
        with pytest.raises(ValidationError):
            level_for_xp(100, 0)
