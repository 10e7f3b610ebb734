"""Per-screen allocation state: unlock gate, touch tracking, and derived outcomes."""
import time
from dataclasses import dataclass

from allocation_survey.core.exceptions import AllocationNotTouchedError, ControlsLockedError


def clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def _to_number(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


@dataclass(frozen=True)
class Outcomes:
    up_pct: float
    down_pct: float
    up_amount: float
    down_amount: float
    expected_pct: float
    expected_amount: float


def calc_outcomes(
    amount: float,
    value: float,
    safe: float,
    up: float,
    down: float,
    probability: float = 0.5,
) -> Outcomes:
    """Blend safe and risky returns by the share in option B (``value`` percent)."""
    b = clamp(_to_number(value), 0, 100) / 100
    a = 1 - b
    up_pct = a * safe + b * up
    down_pct = a * safe + b * down
    up_amount = amount * up_pct / 100
    down_amount = amount * down_pct / 100
    return Outcomes(
        up_pct=up_pct,
        down_pct=down_pct,
        up_amount=up_amount,
        down_amount=down_amount,
        expected_pct=probability * up_pct + (1 - probability) * down_pct,
        expected_amount=probability * up_amount + (1 - probability) * down_amount,
    )


def amount_in_a(amount: float, value: float) -> float:
    return amount * (100 - clamp(_to_number(value), 0, 100)) / 100


def amount_in_b(amount: float, value: float) -> float:
    return amount * clamp(_to_number(value), 0, 100) / 100


class AllocationState:
    """Slider + numeric inputs projected onto one ``value`` (percent in option B)."""

    def __init__(self, default_value: int = 50, snap: int = 1, clock=time.monotonic):
        self.default_value = int(clamp(default_value, 0, 100))
        self.snap = snap
        self._clock = clock
        self.value = self.default_value
        self.panel_unlocked = False
        self.has_touched = False
        self.confirmed = False
        self.viewing_past = False
        self.shown_at = clock()

    def _snapped(self, v) -> int:
        return int(clamp(round(_to_number(v) / self.snap) * self.snap, 0, 100))

    def reset(self, *, confirmed: bool = False, viewing_past: bool = False, stored_value=None) -> None:
        """Called on every scenario change; a confirmed screen shows its stored answer."""
        self.panel_unlocked = False
        self.has_touched = False
        self.confirmed = confirmed
        self.viewing_past = viewing_past
        if confirmed and stored_value is not None:
            self.value = self._snapped(stored_value)
        else:
            self.value = self.default_value
        self.shown_at = self._clock()

    # ---------- gating ----------

    @property
    def controls_locked(self) -> bool:
        return self.confirmed or self.viewing_past or not self.panel_unlocked

    @property
    def confirm_disabled(self) -> bool:
        return self.controls_locked or not self.has_touched

    @property
    def can_unlock(self) -> bool:
        return not (self.panel_unlocked or self.confirmed or self.viewing_past)

    def unlock(self) -> None:
        if self.confirmed or self.viewing_past:
            raise ControlsLockedError("This screen is read-only")
        self.panel_unlocked = True

    def _require_unlocked(self) -> None:
        if self.controls_locked:
            raise ControlsLockedError("Allocation controls are locked")

    # ---------- input modalities ----------

    def set_value(self, v) -> int:
        self._require_unlocked()
        self.has_touched = True
        self.value = self._snapped(v)
        return self.value

    def set_option_a_percent(self, pct) -> int:
        return self.set_value(100 - self._snapped(pct))

    def set_option_b_percent(self, pct) -> int:
        return self.set_value(pct)

    def drag_to(self, fraction) -> int:
        """Pointer position along the bar (0 = left edge); the bar measures option A."""
        pct_a = round(clamp(_to_number(fraction), 0, 1) * 100)
        return self.set_value(100 - pct_a)

    def press_key(self, key: str, shift: bool = False) -> int:
        self._require_unlocked()
        self.has_touched = True
        step = 10 * self.snap if shift else self.snap
        if key == "ArrowLeft":
            return self.set_value(self.value - step)
        if key == "ArrowRight":
            return self.set_value(self.value + step)
        if key == "Home":
            return self.set_value(100)
        if key == "End":
            return self.set_value(0)
        return self.value

    @property
    def option_a_percent(self) -> int:
        return 100 - self.value

    @property
    def option_b_percent(self) -> int:
        return self.value

    # ---------- confirm ----------

    def elapsed_ms(self) -> int:
        return int((self._clock() - self.shown_at) * 1000)

    def confirm(self) -> int:
        """Lock the screen and return the confirmed value."""
        self._require_unlocked()
        if not self.has_touched:
            raise AllocationNotTouchedError("Move the allocation control before confirming")
        self.confirmed = True
        return self.value
