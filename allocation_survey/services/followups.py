"""Follow-up state machine: which question must be answered before the respondent advances.

On confirm the pending follow-ups for the screen open one at a time, in the
order reason -> sanity -> mid-survey check-in -> final reflection. Answers are
merged into the screen's row by scenario order. The mid-survey check-in is
followed by a break screen before linear advancement resumes.
"""
import enum
import logging
import math
from dataclasses import dataclass
from typing import Any

from allocation_survey.core.exceptions import FollowupValidationError
from allocation_survey.services.flow import ScenarioInstance
from allocation_survey.services.pool import BASELINE
from allocation_survey.services.rng import MASK32, coerce_seed, mulberry32, shuffle_in_place
from allocation_survey.services.rows import AnswerRow, RowStore
from allocation_survey.services.storage import load_json, save_json

logger = logging.getLogger(__name__)

OPTION_SHUFFLE_SALT = 0x9E3779B9


class FollowupState(str, enum.Enum):
    NONE = "NONE"
    REASON = "REASON"
    SANITY = "SANITY"
    MID_SANITY = "MID_SANITY"
    FINAL = "FINAL"
    BREAK = "BREAK"  # attention reset after the mid-survey check-in; carries no answers


# Fixed option set for "what best explains your decision" prompts; "other" stays last
SANITY_OPTIONS: tuple[tuple[str, str], ...] = (
    ("balance", "I wanted to diversify (strike a balance between the two options)."),
    ("dominance", "I saw that one option was better in every possible outcome."),
    ("guaranteed", "I focused on securing a guaranteed amount before taking risk."),
    ("risk_dislike", "I wanted to avoid losses or low returns."),
    ("higher_return", "I aimed for a higher potential return."),
    ("consistency", "I tried to stay consistent with my earlier answers."),
    ("intuitive", "I relied on intuition or instinct."),
    ("other", "Other (please specify)."),
)
SANITY_OPTION_KEYS = frozenset(k for k, _ in SANITY_OPTIONS)

# Final battery: every factor rated 0-5
FINAL_FACTORS: tuple[str, ...] = (
    "Safe Return from A",
    "Upside Return from B",
    "Downside Return from B",
    "Average Return of B",
    "Spread (Dispersion) of B",
    "Inflation",
    "Attitude toward risk",
    "Securing some guaranteed return",
    "Balancing Investments",
    "Personal Strategy",
)
RATING_MIN = 0
RATING_MAX = 5
FINAL_TEXT_MIN_LENGTH = 5

GENERIC_CHANGE_TEXT = "Exactly one aspect changed compared with the first question."


def sanity_options(pool_seed, order: int, shuffled: bool = True) -> list[tuple[str, str]]:
    """Option list for a sanity prompt; shuffled reproducibly per (pool seed, order)."""
    if not shuffled:
        return list(SANITY_OPTIONS)
    body = [o for o in SANITY_OPTIONS if o[0] != "other"]
    seed = (coerce_seed(pool_seed) ^ (int(order) & MASK32) ^ OPTION_SHUFFLE_SALT) & MASK32
    shuffle_in_place(body, mulberry32(seed))
    body.append(SANITY_OPTIONS[-1])
    return body


def _differs(a: float, b: float, eps: float = 1e-9) -> bool:
    return abs(a - b) > eps


def describe_single_change(before, after) -> str | None:
    """Name the one aspect that differs between two scenarios.

    Both arguments need ``safe``, ``up``, ``down`` and ``probability``. Returns
    None when nothing or more than one aspect changed.
    """
    values = (after.safe, after.up, after.down)
    if not all(isinstance(v, (int, float)) and math.isfinite(v) for v in values):
        return None
    p0, p1 = before.probability, after.probability
    mean0 = p0 * before.up + (1 - p0) * before.down
    mean1 = p1 * after.up + (1 - p1) * after.down
    changed = {
        "The safe return.": _differs(after.safe, before.safe),
        "Option B's average return.": _differs(mean1, mean0),
        "Option B's spread (risk).": _differs(abs(after.up - after.down), abs(before.up - before.down)),
    }
    hits = [label for label, hit in changed.items() if hit]
    return hits[0] if len(hits) == 1 else None


@dataclass(frozen=True)
class AllocationComparison:
    first_pct_b: int | None
    last_pct_b: int | None
    delta_points: int
    delta_amount: float
    toward: str | None  # "A", "B", or None when unchanged / unknown

    @property
    def can_compare(self) -> bool:
        return self.first_pct_b is not None and self.last_pct_b is not None

    @property
    def changed(self) -> bool:
        return self.can_compare and self.delta_points != 0

    def prompt(self, currency: str = "USD") -> str:
        if not self.can_compare:
            return "Briefly explain why you chose your final portfolio."
        if not self.changed:
            return (
                "Your answers remained the same across both scenarios. "
                "Briefly explain why your preferred portfolio didn't change."
            )
        return (
            f"You invested {currency} {self.delta_amount:,.0f} more in Option {self.toward}. "
            "What factor led you to change your preferred portfolio?"
        )


def compare_allocations(
    first_row: AnswerRow | None, last_row: AnswerRow | None, amount: float
) -> AllocationComparison:
    first = first_row.allocation_to_risky if first_row is not None else None
    last = last_row.allocation_to_risky if last_row is not None else None
    if first is None or last is None:
        return AllocationComparison(first, last, 0, 0.0, None)
    delta = last - first
    toward = "B" if delta > 0 else "A" if delta < 0 else None
    return AllocationComparison(first, last, delta, abs(delta) / 100 * amount, toward)


# ---------- answer validation ----------

def validate_reason(text: str | None, min_length: int = 5) -> dict[str, Any]:
    txt = (text or "").strip()
    if len(txt) < min_length:
        raise FollowupValidationError(f"Please enter at least {min_length} characters")
    return {"reason_text": txt}


def validate_sanity(
    primary: str | None,
    secondary: list[str] | None,
    other_text: str | None,
    options: list[tuple[str, str]],
    prefix: str = "sanity",
) -> dict[str, Any]:
    if not primary:
        raise FollowupValidationError("Choose the reason that best explains your decision")
    if primary not in SANITY_OPTION_KEYS:
        raise FollowupValidationError(f"Unknown option: {primary}")
    picked: list[str] = []
    for key in secondary or []:
        if key not in SANITY_OPTION_KEYS:
            raise FollowupValidationError(f"Unknown option: {key}")
        if key not in picked:
            picked.append(key)
    return {
        f"{prefix}_primary": primary,
        f"{prefix}_secondary": picked,
        f"{prefix}_other_text": (other_text or "").strip() or None,
        f"{prefix}_opts_order": [k for k, _ in options],
    }


def validate_ratings(ratings: dict[str, Any] | None) -> dict[str, int]:
    ratings = ratings or {}
    unknown = set(ratings) - set(FINAL_FACTORS)
    if unknown:
        raise FollowupValidationError(f"Unknown factors: {sorted(unknown)}")
    out: dict[str, int] = {}
    for factor in FINAL_FACTORS:
        raw = ratings.get(factor)
        if raw is None or raw == "":
            raise FollowupValidationError(f"Please rate: {factor}")
        try:
            score = int(raw)
        except (TypeError, ValueError):
            raise FollowupValidationError(f"Rating for {factor} must be a number") from None
        if not RATING_MIN <= score <= RATING_MAX:
            raise FollowupValidationError(f"Rating for {factor} must be {RATING_MIN}-{RATING_MAX}")
        out[factor] = score
    return out


def validate_final(
    text: str | None,
    ratings: dict[str, Any] | None,
    inflation_effect: str | None = None,
    other_factors: str | None = None,
) -> dict[str, Any]:
    txt = (text or "").strip()
    if len(txt) < FINAL_TEXT_MIN_LENGTH:
        raise FollowupValidationError(f"Please enter at least {FINAL_TEXT_MIN_LENGTH} characters")
    return {
        "follow_text": txt,
        "follow_change": validate_ratings(ratings),
        "follow_inflation_effect": (inflation_effect or "").strip() or None,
        "follow_other_factors": (other_factors or "").strip() or None,
    }


# ---------- orchestrator ----------

_ANSWER_FIELD = {
    FollowupState.REASON: "reason_text",
    FollowupState.SANITY: "sanity_primary",
    FollowupState.MID_SANITY: "mid_sanity_primary",
    FollowupState.FINAL: "follow_change",
}


class FollowupOrchestrator:
    """Decides, per confirmed screen, which follow-up blocks advancement."""

    def __init__(
        self,
        rows: RowStore,
        pool_seed=0,
        reason_tags=("BASE",),
        mid_index: int = 14,
        reason_min_length: int = 5,
        amount: float = 100000,
    ):
        self.rows = rows
        self.pool_seed = pool_seed
        self.reason_tags = frozenset(reason_tags)
        self.mid_index = mid_index
        self.reason_min_length = reason_min_length
        self.amount = amount
        self.state = FollowupState.NONE
        self.scenario: ScenarioInstance | None = None
        self.index: int | None = None
        self._satisfied: set[FollowupState] = set()

    # ---------- queries ----------

    @property
    def is_open(self) -> bool:
        return self.state is not FollowupState.NONE

    def needs_reason(self, scenario: ScenarioInstance) -> bool:
        return scenario.tag in self.reason_tags

    def required(self, scenario: ScenarioInstance, index: int) -> list[FollowupState]:
        out = []
        if self.needs_reason(scenario):
            out.append(FollowupState.REASON)
        if scenario.is_sanity:
            out.append(FollowupState.SANITY)
        if index == self.mid_index:
            out.append(FollowupState.MID_SANITY)
        if scenario.is_final_pair:
            out.append(FollowupState.FINAL)
        return out

    def _is_satisfied(self, state: FollowupState, row: AnswerRow | None) -> bool:
        if state in self._satisfied:
            return True
        return row is not None and bool(getattr(row, _ANSWER_FIELD[state]))

    def pending(self) -> list[FollowupState]:
        if self.scenario is None or self.index is None:
            return []
        row = self.rows.get(self.scenario.order)
        return [s for s in self.required(self.scenario, self.index) if not self._is_satisfied(s, row)]

    @property
    def _break_key(self) -> str:
        return f"{self.rows.name}_break"

    def _break_pending(self) -> bool:
        if self.rows.store is None or self.scenario is None:
            return False
        return load_json(self.rows.store, self._break_key) == self.scenario.order

    def _set_break(self, order: int | None) -> None:
        if self.rows.store is not None:
            save_json(self.rows.store, self._break_key, order)

    def options(self) -> list[tuple[str, str]]:
        """Options for the open sanity-style prompt."""
        if self.scenario is None:
            return list(SANITY_OPTIONS)
        if self.state is FollowupState.MID_SANITY:
            return sanity_options(self.pool_seed, self.scenario.order, shuffled=False)
        return sanity_options(self.pool_seed, self.scenario.order, shuffled=self.scenario.is_sanity)

    def change_label(self) -> str | None:
        if self.scenario is None:
            return None
        return describe_single_change(BASELINE, self.scenario.spec)

    def comparison(self) -> AllocationComparison:
        return compare_allocations(self.rows.first_baseline(), self.rows.last_scenario(), self.amount)

    # ---------- transitions ----------

    def enter(self, scenario: ScenarioInstance | None, index: int, confirmed: bool) -> FollowupState:
        """Reset on screen change; a confirmed screen reopens whatever is still unanswered."""
        self.scenario = scenario
        self.index = index
        self._satisfied = set()
        self.state = FollowupState.NONE
        if scenario is not None and confirmed:
            self._open_next()
            if self.state is FollowupState.NONE and self._break_pending():
                self.state = FollowupState.BREAK
        return self.state

    def on_confirm(self) -> FollowupState:
        """Called after the allocation row is stored; NONE means advance now."""
        return self._open_next()

    def _open_next(self) -> FollowupState:
        todo = self.pending()
        self.state = todo[0] if todo else FollowupState.NONE
        if self.state is not FollowupState.NONE:
            logger.debug("Follow-up %s opened for order %s", self.state.value, self.scenario.order)
        return self.state

    def _require(self, state: FollowupState) -> None:
        if self.state is not state:
            raise FollowupValidationError(
                f"No {state.value.lower()} follow-up is open (current: {self.state.value})"
            )

    def _complete(self, state: FollowupState, patch: dict[str, Any]) -> None:
        self.rows.write_back(self.scenario.order, patch)
        self._satisfied.add(state)

    def submit_reason(self, text: str | None) -> FollowupState:
        self._require(FollowupState.REASON)
        self._complete(FollowupState.REASON, validate_reason(text, self.reason_min_length))
        return self._open_next()

    def submit_sanity(self, primary, secondary=None, other_text=None) -> FollowupState:
        self._require(FollowupState.SANITY)
        patch = validate_sanity(primary, secondary, other_text, self.options(), prefix="sanity")
        self._complete(FollowupState.SANITY, patch)
        return self._open_next()

    def submit_mid_sanity(self, primary, secondary=None, other_text=None) -> FollowupState:
        self._require(FollowupState.MID_SANITY)
        patch = validate_sanity(primary, secondary, other_text, self.options(), prefix="mid_sanity")
        self._complete(FollowupState.MID_SANITY, patch)
        self.state = FollowupState.BREAK
        self._set_break(self.scenario.order)
        return self.state

    def continue_from_break(self) -> FollowupState:
        self._require(FollowupState.BREAK)
        self._set_break(None)
        return self._open_next()

    def submit_final(self, text, ratings, inflation_effect=None, other_factors=None) -> FollowupState:
        self._require(FollowupState.FINAL)
        patch = validate_final(text, ratings, inflation_effect, other_factors)
        comparison = self.comparison()
        patch.update(
            follow_diff_label=self.change_label(),
            baseline_pct_b=comparison.first_pct_b,
            last_pct_b=comparison.last_pct_b,
        )
        self._complete(FollowupState.FINAL, patch)
        return self._open_next()
