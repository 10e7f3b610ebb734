"""Flatten one respondent's rows into the fixed wide CSV row.

Every scenario a flow can contain maps to a stable slug, so column order never
depends on a respondent's randomized screen order.
"""
import re
from typing import Any

from allocation_survey.services.flow import FINAL_BY_GROUP, ScenarioInstance
from allocation_survey.services.followups import FINAL_FACTORS
from allocation_survey.services.pool import BASELINE, SANITY_BANK, core_pool
from allocation_survey.services.rows import AnswerRow

SCHEMA_VERSION = "v1"
INFLATIONS = (0, 6)
FINAL_PREFIX = "FIN_"
FOLLOWUP_SLOTS = 6


def _sgn(n: float) -> str:
    # m04 for -4, p06 for +6
    return f"{'m' if n < 0 else 'p'}{abs(int(n)):02d}"


def scenario_slug(safe: float, up: float, down: float, inflation: float) -> str:
    return f"S{_sgn(safe)}_U{_sgn(up)}_D{_sgn(down)}_I{_sgn(inflation)}"


def slug_for(item: ScenarioInstance | AnswerRow) -> str:
    slug = scenario_slug(item.safe, item.up, item.down, item.inflation)
    return FINAL_PREFIX + slug if item.is_last else slug


def _all_slugs() -> list[str]:
    slugs = []
    for pi in INFLATIONS:
        slugs.append(scenario_slug(BASELINE.safe, BASELINE.up, BASELINE.down, pi))
    for pi in INFLATIONS:
        slugs.extend(scenario_slug(c.safe, c.up, c.down, pi) for c in SANITY_BANK)
    for pi in INFLATIONS:
        slugs.extend(scenario_slug(c.safe, c.up, c.down, pi) for c in core_pool())
    for pi in INFLATIONS:
        slugs.extend(
            FINAL_PREFIX + scenario_slug(c.safe, c.up, c.down, pi) for c in FINAL_BY_GROUP.values()
        )
    return slugs


ALL_SCENARIO_SLUGS = _all_slugs()
ALLOC_COLUMNS = [f"allocB__{slug}" for slug in ALL_SCENARIO_SLUGS]
TIME_COLUMNS = [f"ms__{slug}" for slug in ALL_SCENARIO_SLUGS]

DEMO_COLUMNS = [
    "resp_id",
    "yob",
    "gender",
    "gender_other",
    "education_level",
    "education_status",
    "activity",
    "activity_other",
    "risk_scale",
]

META_COLUMNS = [
    "started_inflation",
    "order_vector",
    "pool_group",
    "pool_seed",
    "block_order",
    "ua",
    "time_total_ms",
    "completion_code",
    "schema_version",
]

FOLLOWUP_COLUMNS = [
    f"fup{k}__{part}"
    for k in range(1, FOLLOWUP_SLOTS + 1)
    for part in ("for_slug", "kind", "primary", "secondary", "text")
]


def _factor_column(factor: str) -> str:
    return "final__rate__" + re.sub(r"[^a-z0-9]+", "_", factor.lower()).strip("_")


FINAL_COLUMNS = [_factor_column(f) for f in FINAL_FACTORS] + [
    "final__text",
    "final__inflation_effect",
    "final__other_factors",
    "final__diff_label",
    "final__baseline_pct_b",
    "final__last_pct_b",
]

CSV_HEADERS = [
    *DEMO_COLUMNS,
    *META_COLUMNS,
    *ALLOC_COLUMNS,
    *TIME_COLUMNS,
    *FOLLOWUP_COLUMNS,
    *FINAL_COLUMNS,
]


def _followups(row: AnswerRow) -> list[dict[str, str]]:
    """Follow-up answers carried by one row, in the order they were asked."""
    slug = slug_for(row)
    out = []
    if row.reason_text:
        out.append({"for_slug": slug, "kind": "reason", "primary": "", "secondary": "", "text": row.reason_text})
    if row.sanity_primary:
        out.append({
            "for_slug": slug,
            "kind": "sanity",
            "primary": row.sanity_primary,
            "secondary": "|".join(row.sanity_secondary),
            "text": row.sanity_other_text or "",
        })
    if row.mid_sanity_primary:
        out.append({
            "for_slug": slug,
            "kind": "mid_sanity",
            "primary": row.mid_sanity_primary,
            "secondary": "|".join(row.mid_sanity_secondary),
            "text": row.mid_sanity_other_text or "",
        })
    if row.follow_change:
        out.append({
            "for_slug": slug,
            "kind": "final",
            "primary": "",
            "secondary": "",
            "text": row.follow_text or "",
        })
    return out


def build_wide_row(rows: list[AnswerRow], demo: dict[str, Any], meta: dict[str, Any]) -> dict[str, Any]:
    """Return a dict whose keys are exactly ``CSV_HEADERS``."""
    out: dict[str, Any] = {h: "" for h in CSV_HEADERS}

    for k in DEMO_COLUMNS:
        if demo.get(k) is not None:
            out[k] = demo[k]

    out["started_inflation"] = str(meta.get("started_inflation", ""))
    order_vector = meta.get("order_vector")
    out["order_vector"] = "|".join(order_vector) if isinstance(order_vector, list) else (order_vector or "")
    out["pool_group"] = meta.get("pool_group") or ""
    out["pool_seed"] = str(meta.get("pool_seed", ""))
    block_order = meta.get("block_order")
    out["block_order"] = ",".join(str(x) for x in block_order) if block_order else ""
    out["ua"] = meta.get("ua") or ""
    out["completion_code"] = meta.get("completion_code") or ""
    out["schema_version"] = SCHEMA_VERSION

    total_ms = 0
    slots: list[dict[str, str]] = []
    for row in sorted(rows, key=lambda r: r.order):
        slug = slug_for(row)
        if f"allocB__{slug}" not in out:
            continue  # unknown scenario; never invent columns
        out[f"allocB__{slug}"] = row.allocation_to_risky
        if row.ms_spent is not None:
            out[f"ms__{slug}"] = row.ms_spent
            total_ms += row.ms_spent
        slots.extend(_followups(row))

        if row.follow_change:
            for factor, score in row.follow_change.items():
                out[_factor_column(factor)] = score
            out["final__text"] = row.follow_text or ""
            out["final__inflation_effect"] = row.follow_inflation_effect or ""
            out["final__other_factors"] = row.follow_other_factors or ""
            out["final__diff_label"] = row.follow_diff_label or ""
            out["final__baseline_pct_b"] = "" if row.baseline_pct_b is None else row.baseline_pct_b
            out["final__last_pct_b"] = "" if row.last_pct_b is None else row.last_pct_b

    out["time_total_ms"] = total_ms

    for i, slot in enumerate(slots[:FOLLOWUP_SLOTS], start=1):
        for part, value in slot.items():
            out[f"fup{i}__{part}"] = value

    return out
