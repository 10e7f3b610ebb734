"""Scenario grid, fixed A/B/C grouping, and the reserved baseline/sanity/final items."""
import logging
import threading
from dataclasses import dataclass
from itertools import product

from allocation_survey.core.exceptions import ScenarioBuildError
from allocation_survey.services.rng import mulberry32, shuffle_in_place

logger = logging.getLogger(__name__)

SAFE_SET = (-4, -2, 0, 2, 4)
RP_SET = (0, 2, 4)
SD_SET = (3, 5, 7)

GROUP_KEYS = ("A", "B", "C")
GROUP_SIZE = 13
MASTER_SEED_FOR_GROUPS = 20240901


@dataclass(frozen=True)
class ScenarioSpec:
    """Safe return vs a 50/50 risky pair, all in percent."""

    safe: int
    risk_premium: int
    spread: int
    probability: float = 0.5

    @property
    def mean(self) -> int:
        return self.safe + self.risk_premium

    @property
    def up(self) -> int:
        return self.mean + self.spread

    @property
    def down(self) -> int:
        return self.mean - self.spread

    def key(self) -> tuple[int, int, int]:
        return (self.safe, self.risk_premium, self.spread)


# Canonical reference: safe +2% vs risky +5% / -1%
BASELINE = ScenarioSpec(safe=2, risk_premium=0, spread=3)

# Dominance items (rp=4, sd=3): the risky option beats the safe one in every outcome
SANITY_BANK = (
    ScenarioSpec(safe=4, risk_premium=4, spread=3),
    ScenarioSpec(safe=0, risk_premium=4, spread=3),
    ScenarioSpec(safe=2, risk_premium=4, spread=3),
    ScenarioSpec(safe=-2, risk_premium=4, spread=3),
)

# One aspect changed from the baseline per group
FINAL_BY_GROUP = {
    "A": ScenarioSpec(safe=-2, risk_premium=0, spread=3),  # safe shift
    "B": ScenarioSpec(safe=2, risk_premium=2, spread=3),  # risk-premium shift
    "C": ScenarioSpec(safe=2, risk_premium=0, spread=5),  # spread shift
}


def is_dominance(spec: ScenarioSpec) -> bool:
    return spec.risk_premium == 4 and spec.spread == 3


def full_grid() -> list[ScenarioSpec]:
    """All 5 x 3 x 3 = 45 grid points."""
    return [ScenarioSpec(s, rp, sd) for s, rp, sd in product(SAFE_SET, RP_SET, SD_SET)]


def core_pool() -> list[ScenarioSpec]:
    """Grid minus the baseline and the dominance points: 39 pool-eligible specs."""
    return [c for c in full_grid() if c != BASELINE and not is_dominance(c)]


def _check_partition(groups: dict[str, list[ScenarioSpec]], specs: list[ScenarioSpec]) -> None:
    sizes = {k: len(v) for k, v in groups.items()}
    if any(size != GROUP_SIZE for size in sizes.values()):
        raise ScenarioBuildError(f"Unbalanced groups: {sizes}")
    assigned = [c for v in groups.values() for c in v]
    if len(set(assigned)) != len(assigned) or set(assigned) != set(specs):
        raise ScenarioBuildError("Groups must partition the pool exactly")


def _partition_shuffle(specs: list[ScenarioSpec], seed: int) -> dict[str, list[ScenarioSpec]]:
    # single global shuffle, then 13/13/13 split
    items = shuffle_in_place(list(specs), mulberry32(seed))
    return {
        key: items[i * GROUP_SIZE:(i + 1) * GROUP_SIZE]
        for i, key in enumerate(GROUP_KEYS)
    }


def _partition_stratified(specs: list[ScenarioSpec], seed: int) -> dict[str, list[ScenarioSpec]]:
    rand = mulberry32(seed)
    buckets: dict[tuple[int, int], list[ScenarioSpec]] = {}
    for c in specs:
        buckets.setdefault((c.risk_premium, c.spread), []).append(c)
    for bucket in buckets.values():
        shuffle_in_place(bucket, rand)

    groups: dict[str, list[ScenarioSpec]] = {key: [] for key in GROUP_KEYS}
    dealt = 0
    for bucket in buckets.values():
        for c in bucket:
            groups[GROUP_KEYS[dealt % len(GROUP_KEYS)]].append(c)
            dealt += 1

    # Top-up: move surplus items (last dealt first) into short groups
    for short in GROUP_KEYS:
        while len(groups[short]) < GROUP_SIZE:
            donor = max(GROUP_KEYS, key=lambda k: len(groups[k]))
            if len(groups[donor]) <= GROUP_SIZE:
                break
            groups[short].append(groups[donor].pop())
    return groups


PARTITION_STRATEGIES = {
    "shuffle": _partition_shuffle,
    "stratified": _partition_stratified,
}


def partition_groups(
    specs: list[ScenarioSpec] | None = None,
    seed: int = MASTER_SEED_FOR_GROUPS,
    strategy: str = "shuffle",
) -> dict[str, tuple[ScenarioSpec, ...]]:
    """Split the pool into three balanced groups, deterministically for a given seed."""
    specs = core_pool() if specs is None else list(specs)
    try:
        partition = PARTITION_STRATEGIES[strategy]
    except KeyError:
        raise ScenarioBuildError(f"Unknown partition strategy: {strategy}") from None
    groups = partition(specs, seed)
    _check_partition(groups, specs)
    return {key: tuple(groups[key]) for key in GROUP_KEYS}


_CACHED_GROUPS: dict[str, tuple[ScenarioSpec, ...]] | None = None
_GROUPS_LOCK = threading.Lock()


def get_fixed_groups() -> dict[str, tuple[ScenarioSpec, ...]]:
    """Process-wide A/B/C partition; identical for every respondent."""
    global _CACHED_GROUPS
    if _CACHED_GROUPS is None:
        with _GROUPS_LOCK:
            if _CACHED_GROUPS is None:
                _CACHED_GROUPS = partition_groups(seed=MASTER_SEED_FOR_GROUPS)
                logger.info("Scenario groups computed (master seed %s)", MASTER_SEED_FOR_GROUPS)
    return _CACHED_GROUPS
