"""Pydantic schemas for the respondent survey API."""
from typing import Literal

from pydantic import BaseModel, Field, model_validator


class ScenarioOutSchema(BaseModel):
    id: str
    order: int
    tag: str
    block: int
    inflation: int
    safe: int
    up: int
    down: int
    probability: float
    pool_tag: str | None = None
    is_baseline: bool
    is_sanity: bool
    is_last: bool
    is_mirror: bool

    class Config:
        from_attributes = True


class OutcomesSchema(BaseModel):
    up_pct: float
    down_pct: float
    up_amount: float
    down_amount: float
    expected_pct: float
    expected_amount: float

    class Config:
        from_attributes = True


class OptionSchema(BaseModel):
    key: str
    label: str


class FollowupOutSchema(BaseModel):
    state: str
    options: list[OptionSchema] = []
    change_label: str | None = None
    prompt: str | None = None
    factors: list[str] = []


class SurveyStateSchema(BaseModel):
    session_id: str
    index: int
    length: int
    furthest_visited_index: int
    percent_done: int
    is_viewing_past: bool
    is_complete: bool
    scenario: ScenarioOutSchema | None = None
    allocation: int
    option_a_percent: int
    option_b_percent: int
    amount_in_a: float
    amount_in_b: float
    panel_unlocked: bool
    can_unlock: bool
    has_touched: bool
    confirmed: bool
    controls_locked: bool
    confirm_disabled: bool
    outcomes: OutcomesSchema | None = None
    followup: FollowupOutSchema
    currency: str
    amount: float
    ghost: bool = False
    finished: bool = False
    completion_code: str | None = None


class StartSessionSchema(BaseModel):
    seed: int | str | None = None
    group_key: Literal["A", "B", "C"] | None = None
    block_order: list[int] | None = None
    completion_code: str | None = None

    @model_validator(mode="after")
    def check_block_order(self):
        if self.block_order is not None and sorted(self.block_order) != [0, 6]:
            raise ValueError("block_order must be [0, 6] or [6, 0]")
        return self


class AllocationInSchema(BaseModel):
    """Exactly one of the input modes is used, in this priority order."""

    option_b: float | None = Field(default=None, ge=0, le=100)
    option_a: float | None = Field(default=None, ge=0, le=100)
    drag: float | None = None
    key: Literal["ArrowLeft", "ArrowRight", "Home", "End"] | None = None
    shift: bool = False

    @model_validator(mode="after")
    def check_one_input(self):
        if all(v is None for v in (self.option_b, self.option_a, self.drag, self.key)):
            raise ValueError("Provide option_b, option_a, drag or key")
        return self


class ReasonSubmitSchema(BaseModel):
    text: str = ""


class SanitySubmitSchema(BaseModel):
    primary: str | None = None
    secondary: list[str] = []
    other_text: str | None = None


class FinalSubmitSchema(BaseModel):
    text: str = ""
    ratings: dict[str, int | None] = {}
    inflation_effect: str | None = None
    other_factors: str | None = None


class AdminCommandSchema(BaseModel):
    type: Literal["prev", "next", "jump", "finish", "ghost"]
    to: int | None = None
    value: bool | None = None

    @model_validator(mode="after")
    def check_payload(self):
        if self.type == "jump" and self.to is None:
            raise ValueError("jump needs 'to'")
        if self.type == "ghost" and self.value is None:
            raise ValueError("ghost needs 'value'")
        return self
