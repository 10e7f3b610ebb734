"""Respondent flow builder: 32 allocation screens in two inflation blocks.

Block 1 (inflation = order[0]):  BASE -> 6 pool -> SANITY -> 7 pool          (15)
Block 2 (inflation = order[1]):  BASE -> 6 pool -> SANITY -> 7 pool          (15)
Finals:                          LAST (order[1]) -> MIRROR (order[0])          (2)

Both blocks use the same 13 group items, each block in its own shuffled order.
"""
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field

from allocation_survey.core.exceptions import ScenarioBuildError
from allocation_survey.services.pool import (
    BASELINE,
    FINAL_BY_GROUP,
    GROUP_KEYS,
    GROUP_SIZE,
    SANITY_BANK,
    ScenarioSpec,
    get_fixed_groups,
)
from allocation_survey.services.rng import Rng

logger = logging.getLogger(__name__)

TAG_BASE = "BASE"
TAG_POOL = "POOL"
TAG_SANITY = "SANITY"
TAG_LAST = "LAST"
TAG_MIRROR = "MIRROR"

BLOCK_ORDERS = ((0, 6), (6, 0))
FIRST_SUBBLOCK = 6
FLOW_LENGTH = 2 * (1 + GROUP_SIZE + 1) + 2  # 32


@dataclass(frozen=True)
class ScenarioInstance:
    id: str
    order: int
    tag: str
    block: int
    inflation: int
    spec: ScenarioSpec
    pool_tag: str | None = None
    is_baseline: bool = False
    is_sanity: bool = False
    is_last: bool = False
    is_mirror: bool = False

    @property
    def safe(self) -> int:
        return self.spec.safe

    @property
    def up(self) -> int:
        return self.spec.up

    @property
    def down(self) -> int:
        return self.spec.down

    @property
    def probability(self) -> float:
        return self.spec.probability

    @property
    def is_final_pair(self) -> bool:
        return self.is_last and self.is_mirror


@dataclass(frozen=True)
class Flow:
    seed: int | str
    group_key: str | None
    block_order: tuple[int, int]
    pool_tag: str | None
    scenarios: tuple[ScenarioInstance, ...] = field(default_factory=tuple)
    is_fallback: bool = False

    def __len__(self) -> int:
        return len(self.scenarios)

    def __iter__(self) -> Iterator[ScenarioInstance]:
        return iter(self.scenarios)

    def __getitem__(self, index: int) -> ScenarioInstance:
        return self.scenarios[index]

    def order_vector(self) -> list[str]:
        return [s.id for s in self.scenarios]


def _resolve_group(rng: Rng, group_key: str | None) -> str:
    if group_key in GROUP_KEYS:
        return group_key
    return rng.derive("group").pick_one(GROUP_KEYS)


def _resolve_block_order(rng: Rng, block_order) -> tuple[int, int]:
    if block_order is not None:
        candidate = tuple(int(x) for x in block_order)
        if candidate in BLOCK_ORDERS:
            return candidate
        logger.warning("Ignoring invalid block order %s", block_order)
    return rng.derive("block-order").pick_one(BLOCK_ORDERS)


def build_respondent_flow(
    seed=12345,
    group_key: str | None = None,
    block_order=None,
    pool_tag: str | None = "ALT",
) -> Flow:
    """Build one respondent's ordered list of scenario screens."""
    rng = Rng(seed)
    groups = get_fixed_groups()

    gk = _resolve_group(rng, group_key)
    core = list(groups.get(gk, ()))
    if len(core) != GROUP_SIZE:
        raise ScenarioBuildError(f"Group {gk} must have {GROUP_SIZE} items, got {len(core)}")

    pi1, pi2 = _resolve_block_order(rng, block_order)
    b1_items = rng.derive("B1.order").shuffle(core)
    b2_items = rng.derive("B2.order").shuffle(core)
    san1, san2 = rng.derive("sanity").shuffle(SANITY_BANK)[:2]

    items: list[dict] = []

    def add(spec: ScenarioSpec, inflation: int, tag: str, block: int, **flags) -> None:
        items.append(dict(spec=spec, inflation=inflation, tag=tag, block=block, **flags))

    for block, (pi, ordered, sanity) in enumerate(
        ((pi1, b1_items, san1), (pi2, b2_items, san2)), start=1
    ):
        add(BASELINE, pi, TAG_BASE, block, is_baseline=True)
        for c in ordered[:FIRST_SUBBLOCK]:
            add(c, pi, TAG_POOL, block, pool_tag=pool_tag)
        add(sanity, pi, TAG_SANITY, block, is_sanity=True)
        for c in ordered[FIRST_SUBBLOCK:]:
            add(c, pi, TAG_POOL, block, pool_tag=pool_tag)

    final = FINAL_BY_GROUP[gk]
    add(final, pi2, TAG_LAST, 2, is_last=True)
    add(final, pi1, TAG_MIRROR, 2, is_last=True, is_mirror=True)

    scenarios = tuple(
        ScenarioInstance(id=f"SCN_{i:03d}", order=i, **item)
        for i, item in enumerate(items, start=1)
    )
    return Flow(
        seed=seed,
        group_key=gk,
        block_order=(pi1, pi2),
        pool_tag=pool_tag,
        scenarios=scenarios,
    )


def fallback_flow(seed=None) -> Flow:
    """Single synthetic baseline screen used when flow construction fails."""
    base = ScenarioInstance(
        id="FALLBACK_BASE",
        order=1,
        tag=TAG_BASE,
        block=1,
        inflation=0,
        spec=BASELINE,
        is_baseline=True,
    )
    return Flow(
        seed=seed,
        group_key=None,
        block_order=(0, 6),
        pool_tag=None,
        scenarios=(base,),
        is_fallback=True,
    )


def build_flow_or_fallback(seed=12345, group_key=None, block_order=None, pool_tag="ALT") -> Flow:
    """Build scenarios with a safe fallback to a single baseline."""
    try:
        flow = build_respondent_flow(seed, group_key, block_order, pool_tag)
        validate_flow(flow)
        return flow
    except ScenarioBuildError:
        logger.exception("Flow construction failed; falling back to baseline (seed=%s)", seed)
        return fallback_flow(seed)


def validate_flow(flow: Flow) -> bool:
    """Check block structure and the final/mirror pair; raise ScenarioBuildError on violation."""
    scenarios = list(flow)
    if len(scenarios) != FLOW_LENGTH:
        raise ScenarioBuildError(f"Expected {FLOW_LENGTH} screens, got {len(scenarios)}")
    if [s.order for s in scenarios] != list(range(1, FLOW_LENGTH + 1)):
        raise ScenarioBuildError("Orders must run 1..N")

    pi1, pi2 = flow.block_order
    for block, pi in ((1, pi1), (2, pi2)):
        members = [s for s in scenarios if s.block == block and not s.is_last]
        if members[0].tag != TAG_BASE or members[0].inflation != pi:
            raise ScenarioBuildError(f"Block {block} must start with BASE under {pi}%")
        if sum(s.is_baseline for s in members) != 1 or sum(s.is_sanity for s in members) != 1:
            raise ScenarioBuildError(f"Block {block} needs exactly one BASE and one SANITY")
        if any(s.inflation != pi for s in members):
            raise ScenarioBuildError(f"Block {block} mixes inflation assumptions")

    pool1 = {s.spec for s in scenarios if s.block == 1 and s.tag == TAG_POOL}
    pool2 = {s.spec for s in scenarios if s.block == 2 and s.tag == TAG_POOL}
    if pool1 != pool2 or len(pool1) != GROUP_SIZE:
        raise ScenarioBuildError("Both blocks must hold the same 13 pool items")

    last = [s for s in scenarios if s.is_last and not s.is_mirror]
    mirror = [s for s in scenarios if s.is_final_pair]
    if len(last) != 1 or len(mirror) != 1:
        raise ScenarioBuildError("Exactly one LAST and one MIRROR required")
    a, b = last[0], mirror[0]
    if (a.safe, a.up, a.down) != (b.safe, b.up, b.down) or a.inflation == b.inflation:
        raise ScenarioBuildError("LAST and MIRROR must share parameters under different inflation")
    return True
