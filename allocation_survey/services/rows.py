"""Answer rows keyed by scenario order + tag, persisted as one JSON list."""
import logging
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any

from allocation_survey.services.storage import KeyValueStore, load_json, save_json

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnswerRow:
    order: int
    scenario_id: str
    tag: str
    safe: float
    up: float
    down: float
    probability: float
    allocation_to_risky: int
    inflation: int
    is_baseline: bool = False
    is_sanity: bool = False
    is_last: bool = False
    is_mirror: bool = False
    pool_tag: str | None = None
    ts: int = 0  # epoch ms
    user_agent: str = ""
    ms_spent: int | None = None

    # follow-up fields, merged in by write_back
    reason_text: str | None = None
    sanity_primary: str | None = None
    sanity_secondary: list[str] = field(default_factory=list)
    sanity_other_text: str | None = None
    sanity_opts_order: list[str] = field(default_factory=list)
    mid_sanity_primary: str | None = None
    mid_sanity_secondary: list[str] = field(default_factory=list)
    mid_sanity_other_text: str | None = None
    mid_sanity_opts_order: list[str] = field(default_factory=list)
    follow_text: str | None = None
    follow_change: dict[str, int] | None = None
    follow_inflation_effect: str | None = None
    follow_other_factors: str | None = None
    follow_diff_label: str | None = None
    baseline_pct_b: int | None = None
    last_pct_b: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AnswerRow":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


PATCHABLE = frozenset(
    f.name for f in fields(AnswerRow)
    if f.name.startswith(("reason_", "sanity_", "mid_sanity_", "follow_"))
    or f.name in ("baseline_pct_b", "last_pct_b")
)


class RowStore:
    """Ordered rows with insert-if-absent and merge-by-order write-backs."""

    def __init__(self, store: KeyValueStore | None = None, name: str = "resp_followups_v1"):
        self.store = store
        self.name = name
        self._rows: list[AnswerRow] = self._load()

    def _load(self) -> list[AnswerRow]:
        if self.store is None:
            return []
        saved = load_json(self.store, self.name, [])
        if not isinstance(saved, list):
            return []
        try:
            return [AnswerRow.from_dict(r) for r in saved]
        except TypeError:
            logger.warning("Stored rows under %s are incompatible; starting empty", self.name)
            return []

    def _persist(self) -> None:
        if self.store is not None:
            save_json(self.store, self.name, [r.to_dict() for r in self._rows])

    def insert_if_absent(self, row: AnswerRow) -> bool:
        if any(r.order == row.order and r.tag == row.tag for r in self._rows):
            return False
        self._rows.append(row)
        self._persist()
        return True

    def write_back(self, order: int, patch: dict[str, Any]) -> bool:
        """Merge follow-up fields into the row for ``order``; no row means no-op."""
        unknown = set(patch) - PATCHABLE
        if unknown:
            raise ValueError(f"Not follow-up fields: {sorted(unknown)}")
        for i, r in enumerate(self._rows):
            if r.order == order:
                self._rows[i] = replace(r, **patch)
                self._persist()
                return True
        return False

    def get(self, order: int) -> AnswerRow | None:
        return next((r for r in self._rows if r.order == order), None)

    def all(self) -> list[AnswerRow]:
        return sorted(self._rows, key=lambda r: r.order)

    def __len__(self) -> int:
        return len(self._rows)

    def first_baseline(self) -> AnswerRow | None:
        rows = self.all()
        baselines = [r for r in rows if r.is_baseline]
        if baselines:
            return baselines[0]
        return rows[0] if rows else None

    def last_scenario(self) -> AnswerRow | None:
        rows = self.all()
        mirrors = [r for r in rows if r.is_last and r.is_mirror]
        if mirrors:
            return mirrors[-1]
        lasts = [r for r in rows if r.is_last]
        if lasts:
            return lasts[-1]
        return rows[-1] if rows else None
