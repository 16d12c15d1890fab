"""
Property-based tests for the dice engine using hypothesis.

To run these tests, you need to install hypothesis:
pip install hypothesis
"""

import random
import unittest

from hypothesis import given, strategies as st, assume, settings

from dicebot.dicebot_core import (
    DiceRangeError,
    RollLimits,
    RollOptions,
    parse_options,
    roll_dice,
    roll_expressions,
    evaluate_to_string,
)

SMALL_LIMITS = RollLimits(max_rolled_dice=30, max_dice_sides=50)

counts = st.integers(min_value=1, max_value=SMALL_LIMITS.max_rolled_dice - 1)
sides = st.integers(min_value=2, max_value=SMALL_LIMITS.max_dice_sides - 1)
seeds = st.integers(min_value=0, max_value=2 ** 32)


class TestRollProperties(unittest.TestCase):
    """Shape of rolled terms."""

    @given(counts, sides, seeds)
    def test_plain_and_compounding_roll_one_entry_per_die(self, count, dice_sides, seed):
        for suffix in ["", "!!"]:
            options = parse_options(f"{count}d{dice_sides}{suffix}", SMALL_LIMITS)
            result = roll_dice(options, random.Random(seed), SMALL_LIMITS)
            self.assertEqual(len(result.rolls), count)

    @given(counts, sides, seeds)
    def test_standard_explosion_never_loses_dice(self, count, dice_sides, seed):
        options = parse_options(f"{count}d{dice_sides}!", SMALL_LIMITS)
        result = roll_dice(options, random.Random(seed), SMALL_LIMITS)
        self.assertGreaterEqual(len(result.rolls), count)
        # Every die past the first wave was paid for by a maxed die
        maxed = sum(1 for value in result.rolls if value == dice_sides)
        self.assertEqual(len(result.rolls), count + maxed)

    @given(counts, sides, seeds)
    def test_plain_rolls_land_on_faces(self, count, dice_sides, seed):
        options = parse_options(f"{count}d{dice_sides}", SMALL_LIMITS)
        result = roll_dice(options, random.Random(seed), SMALL_LIMITS)
        self.assertTrue(all(1 <= value <= dice_sides for value in result.rolls))

    @given(counts, sides)
    def test_out_of_range_rejected(self, count, dice_sides):
        with self.assertRaises(DiceRangeError):
            parse_options(f"{count + SMALL_LIMITS.max_rolled_dice}d{dice_sides}", SMALL_LIMITS)
        with self.assertRaises(DiceRangeError):
            parse_options(f"{count}d{dice_sides + SMALL_LIMITS.max_dice_sides}", SMALL_LIMITS)


class TestFilterProperties(unittest.TestCase):
    """Loosening a bound never drops a kept value."""

    @given(st.integers(-100, 100), st.integers(-100, 100), st.integers(0, 50))
    def test_lowering_minimum_keeps_values(self, value, minimum, loosen):
        strict = RollOptions(1, (1,), minimum=minimum)
        loose = RollOptions(1, (1,), minimum=minimum - loosen)
        if strict.keep(value):
            self.assertTrue(loose.keep(value))

    @given(st.integers(-100, 100), st.integers(-100, 100), st.integers(0, 50))
    def test_raising_maximum_keeps_values(self, value, maximum, loosen):
        strict = RollOptions(1, (1,), maximum=maximum)
        loose = RollOptions(1, (1,), maximum=maximum + loosen)
        if strict.keep(value):
            self.assertTrue(loose.keep(value))

    @given(st.integers(-100, 100), st.integers(-100, 100))
    def test_bounds_are_exclusive(self, value, bound):
        self.assertEqual(RollOptions(1, (1,), minimum=bound).keep(value), value > bound)
        self.assertEqual(RollOptions(1, (1,), maximum=bound).keep(value), value < bound)


class TestExpressionProperties(unittest.TestCase):
    """Display and value renderings agree."""

    @given(counts, sides, seeds)
    def test_unfiltered_value_is_sum_of_rolls(self, count, dice_sides, seed):
        rolls, display, value = roll_expressions(f"{count}d{dice_sides}", random.Random(seed), SMALL_LIMITS)
        self.assertEqual(int(value), sum(rolls[0].rolls))
        self.assertEqual(display, f"[{', '.join(str(v) for v in rolls[0].rolls)}]")

    @given(counts, sides, seeds, st.sampled_from(["", "!", "!!", "<5", ">3!"]))
    @settings(max_examples=50)
    def test_same_seed_same_result(self, count, dice_sides, seed, suffix):
        expression = f"({count}d{dice_sides}{suffix} + 2) * 1d6"
        first = roll_expressions(expression, random.Random(seed), SMALL_LIMITS)
        second = roll_expressions(expression, random.Random(seed), SMALL_LIMITS)
        self.assertEqual(first[1:], second[1:])

    @given(counts, sides, seeds)
    @settings(max_examples=50, deadline=None)
    def test_formatted_result_mentions_breakdown(self, count, dice_sides, seed):
        assume(count > 1)
        _, display, _ = roll_expressions(f"{count}d{dice_sides}", random.Random(seed), SMALL_LIMITS)
        result = evaluate_to_string(f"{count}d{dice_sides}", random.Random(seed), SMALL_LIMITS)
        self.assertTrue(result.startswith(f"{display} => **"))


if __name__ == "__main__":
    unittest.main()
