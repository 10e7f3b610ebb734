import unittest

from allocation_survey.core.exceptions import AllocationNotTouchedError, ControlsLockedError
from allocation_survey.services.allocation import (
    AllocationState,
    amount_in_a,
    amount_in_b,
    calc_outcomes,
)


class OutcomeTests(unittest.TestCase):
    def test_all_in_safe_option(self):
        out = calc_outcomes(100000, 0, 2, 5, -1)
        self.assertAlmostEqual(out.up_amount, 2000)
        self.assertAlmostEqual(out.down_amount, 2000)
        self.assertAlmostEqual(out.expected_amount, 2000)

    def test_all_in_risky_option(self):
        out = calc_outcomes(100000, 100, 2, 5, -1)
        self.assertAlmostEqual(out.up_amount, 5000)
        self.assertAlmostEqual(out.down_amount, -1000)
        self.assertAlmostEqual(out.expected_amount, 2000)
        self.assertAlmostEqual(out.expected_pct, 2.0)

    def test_even_split(self):
        out = calc_outcomes(100000, 50, 2, 5, -1)
        self.assertAlmostEqual(out.up_pct, 3.5)
        self.assertAlmostEqual(out.down_pct, 0.5)

    def test_value_is_clamped(self):
        self.assertEqual(calc_outcomes(1000, 250, 2, 5, -1), calc_outcomes(1000, 100, 2, 5, -1))
        self.assertEqual(calc_outcomes(1000, "junk", 2, 5, -1), calc_outcomes(1000, 0, 2, 5, -1))

    def test_amount_split(self):
        self.assertEqual(amount_in_a(100000, 30), 70000)
        self.assertEqual(amount_in_b(100000, 30), 30000)


class AllocationStateTests(unittest.TestCase):
    def setUp(self):
        self.state = AllocationState(default_value=50)

    def test_starts_locked(self):
        self.assertTrue(self.state.controls_locked)
        self.assertTrue(self.state.confirm_disabled)
        with self.assertRaises(ControlsLockedError):
            self.state.set_value(20)

    def test_confirm_requires_touch(self):
        self.state.unlock()
        self.assertFalse(self.state.controls_locked)
        self.assertTrue(self.state.confirm_disabled)
        with self.assertRaises(AllocationNotTouchedError):
            self.state.confirm()

    def test_input_modes_share_one_value(self):
        self.state.unlock()
        self.assertEqual(self.state.set_option_a_percent(30), 70)
        self.assertEqual(self.state.option_b_percent, 70)
        self.assertEqual(self.state.option_a_percent, 30)
        self.assertEqual(self.state.drag_to(0.25), 75)
        self.assertEqual(self.state.set_option_b_percent(120), 100)

    def test_keyboard(self):
        self.state.unlock()
        self.assertEqual(self.state.press_key("ArrowRight"), 51)
        self.assertEqual(self.state.press_key("ArrowLeft", shift=True), 41)
        self.assertEqual(self.state.press_key("Home"), 100)
        self.assertEqual(self.state.press_key("End"), 0)
        self.assertEqual(self.state.press_key("ArrowLeft"), 0)
        self.assertTrue(self.state.has_touched)

    def test_confirm_locks_screen(self):
        self.state.unlock()
        self.state.set_value(64)
        self.assertEqual(self.state.confirm(), 64)
        self.assertTrue(self.state.controls_locked)
        with self.assertRaises(ControlsLockedError):
            self.state.set_value(10)
        with self.assertRaises(ControlsLockedError):
            self.state.unlock()

    def test_reset_shows_stored_answer_when_confirmed(self):
        self.state.reset(confirmed=True, stored_value=80)
        self.assertEqual(self.state.value, 80)
        self.assertFalse(self.state.can_unlock)
        self.state.reset()
        self.assertEqual(self.state.value, 50)
        self.assertTrue(self.state.can_unlock)

    def test_past_screen_is_read_only(self):
        self.state.reset(viewing_past=True)
        with self.assertRaises(ControlsLockedError):
            self.state.unlock()

    def test_elapsed_uses_clock(self):
        ticks = iter([10.0, 12.5])
        state = AllocationState(clock=lambda: next(ticks))
        self.assertEqual(state.elapsed_ms(), 2500)


if __name__ == "__main__":
    unittest.main()
