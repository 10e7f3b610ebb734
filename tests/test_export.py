import unittest

from allocation_survey.services.export import (
    ALL_SCENARIO_SLUGS,
    ALLOC_COLUMNS,
    CSV_HEADERS,
    DEMO_COLUMNS,
    FINAL_COLUMNS,
    build_wide_row,
    scenario_slug,
    slug_for,
)
from allocation_survey.services.flow import build_respondent_flow
from allocation_survey.services.rows import AnswerRow


def row_for(scenario, value, **extra):
    return AnswerRow(
        order=scenario.order,
        scenario_id=scenario.id,
        tag=scenario.tag,
        safe=scenario.safe,
        up=scenario.up,
        down=scenario.down,
        probability=scenario.probability,
        allocation_to_risky=value,
        inflation=scenario.inflation,
        is_baseline=scenario.is_baseline,
        is_sanity=scenario.is_sanity,
        is_last=scenario.is_last,
        is_mirror=scenario.is_mirror,
        ms_spent=1000,
        **extra,
    )


class SlugTests(unittest.TestCase):
    def test_slug_format(self):
        self.assertEqual(scenario_slug(2, 5, -1, 0), "Sp02_Up05_Dm01_Ip00")
        self.assertEqual(scenario_slug(-4, 1, -11, 6), "Sm04_Up01_Dm11_Ip06")

    def test_every_slug_is_unique(self):
        self.assertEqual(len(ALL_SCENARIO_SLUGS), 94)
        self.assertEqual(len(set(ALL_SCENARIO_SLUGS)), 94)
        self.assertEqual(len(set(CSV_HEADERS)), len(CSV_HEADERS))

    def test_every_flow_screen_has_a_column(self):
        for seed in (1, 2, 12345):
            flow = build_respondent_flow(seed=seed)
            slugs = {slug_for(s) for s in flow}
            self.assertEqual(len(slugs), 32)
            for slug in slugs:
                self.assertIn(f"allocB__{slug}", ALLOC_COLUMNS)

    def test_finals_are_prefixed(self):
        flow = build_respondent_flow(seed=1, group_key="A", block_order=(0, 6))
        self.assertTrue(slug_for(flow[30]).startswith("FIN_"))
        self.assertFalse(slug_for(flow[0]).startswith("FIN_"))


class WideRowTests(unittest.TestCase):
    def test_row_has_exactly_the_header_keys(self):
        flow = build_respondent_flow(seed=1, group_key="C", block_order=(6, 0))
        rows = [row_for(flow[0], 25, reason_text="less risk"), row_for(flow[1], 75)]
        out = build_wide_row(
            rows,
            {"resp_id": "P9", "yob": "1985", "unexpected": "dropped"},
            {"order_vector": flow.order_vector(), "pool_group": "C", "pool_seed": 1, "block_order": [6, 0]},
        )
        self.assertEqual(list(out), CSV_HEADERS)
        self.assertEqual(out["resp_id"], "P9")
        self.assertEqual(out["block_order"], "6,0")
        self.assertTrue(out["order_vector"].startswith("SCN_001|SCN_002"))
        self.assertEqual(out["allocB__Sp02_Up05_Dm01_Ip06"], 25)
        self.assertEqual(out["time_total_ms"], 2000)
        self.assertEqual(out["fup1__kind"], "reason")
        self.assertEqual(out["fup1__text"], "less risk")
        self.assertEqual(out["fup2__kind"], "")
        self.assertNotIn("unexpected", out)

    def test_final_battery_columns(self):
        flow = build_respondent_flow(seed=1, group_key="B", block_order=(0, 6))
        mirror = row_for(
            flow[31],
            55,
            follow_text="average went up",
            follow_change={"Inflation": 4},
            follow_diff_label="Option B's average return.",
            baseline_pct_b=40,
            last_pct_b=55,
        )
        out = build_wide_row([mirror], {}, {})
        self.assertEqual(out["final__rate__inflation"], 4)
        self.assertEqual(out["final__diff_label"], "Option B's average return.")
        self.assertEqual(out["final__baseline_pct_b"], 40)
        self.assertIn("final__rate__spread_dispersion_of_b", FINAL_COLUMNS)
        self.assertEqual(out["fup1__kind"], "final")

    def test_demographic_columns(self):
        self.assertEqual(CSV_HEADERS[: len(DEMO_COLUMNS)], DEMO_COLUMNS)


if __name__ == "__main__":
    unittest.main()
