import unittest

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from allocation_survey.db.base import Base
from allocation_survey.services.rows import AnswerRow, RowStore
from allocation_survey.services.storage import (
    MemoryStore,
    ScopedStore,
    SqlKeyValueStore,
    load_json,
    save_json,
)


def make_row(order, tag="POOL", value=50, **extra):
    return AnswerRow(
        order=order,
        scenario_id=f"SCN_{order:03d}",
        tag=tag,
        safe=2,
        up=5,
        down=-1,
        probability=0.5,
        allocation_to_risky=value,
        inflation=0,
        **extra,
    )


class SqlStoreTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(bind=self.engine)
        self.store = SqlKeyValueStore(sessionmaker(bind=self.engine, expire_on_commit=False))

    def tearDown(self):
        self.engine.dispose()

    def test_set_get_overwrite_delete(self):
        self.assertIsNone(self.store.get("k"))
        self.store.set("k", "1")
        self.store.set("k", "2")
        self.assertEqual(self.store.get("k"), "2")
        self.store.delete("k")
        self.assertIsNone(self.store.get("k"))
        self.store.delete("missing")

    def test_keys_by_prefix(self):
        self.store.set("s1:a", "1")
        self.store.set("s1:b", "1")
        self.store.set("s2:a", "1")
        self.assertEqual(self.store.keys("s1:"), ["s1:a", "s1:b"])

    def test_json_helpers(self):
        self.assertTrue(save_json(self.store, "rows", [{"order": 1}]))
        self.assertEqual(load_json(self.store, "rows"), [{"order": 1}])


class ScopedStoreTests(unittest.TestCase):
    def test_namespaces_do_not_collide(self):
        base = MemoryStore()
        a = ScopedStore(base, "sid-a")
        b = ScopedStore(base, "sid-b")
        save_json(a, "progress_idx_v1", 3)
        save_json(b, "progress_idx_v1", 7)
        self.assertEqual(load_json(a, "progress_idx_v1"), 3)
        self.assertEqual(load_json(b, "progress_idx_v1"), 7)
        self.assertEqual(a.keys(), ["progress_idx_v1"])
        self.assertEqual(base.get("sid-a:progress_idx_v1"), "3")


class BestEffortTests(unittest.TestCase):
    def test_write_failure_is_swallowed(self):
        class BrokenStore(MemoryStore):
            def set(self, key, value):
                raise OSError("disk full")

        with self.assertLogs("allocation_survey.services.storage", level="WARNING"):
            self.assertFalse(save_json(BrokenStore(), "k", 1))

    def test_unserializable_value_is_swallowed(self):
        with self.assertLogs("allocation_survey.services.storage", level="WARNING"):
            self.assertFalse(save_json(MemoryStore(), "k", object()))

    def test_bad_json_reads_default(self):
        store = MemoryStore({"k": "{broken"})
        with self.assertLogs("allocation_survey.services.storage", level="WARNING"):
            self.assertEqual(load_json(store, "k", []), [])


class RowStoreTests(unittest.TestCase):
    def test_insert_is_idempotent_per_order_and_tag(self):
        rows = RowStore()
        self.assertTrue(rows.insert_if_absent(make_row(1, "BASE")))
        self.assertFalse(rows.insert_if_absent(make_row(1, "BASE", value=90)))
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows.get(1).allocation_to_risky, 50)

    def test_write_back_merges_follow_up_fields(self):
        rows = RowStore()
        rows.insert_if_absent(make_row(1, "BASE"))
        self.assertTrue(rows.write_back(1, {"reason_text": "safer"}))
        self.assertEqual(rows.get(1).reason_text, "safer")
        self.assertEqual(rows.get(1).allocation_to_risky, 50)
        self.assertFalse(rows.write_back(2, {"reason_text": "no row"}))

    def test_write_back_rejects_answer_fields(self):
        rows = RowStore()
        rows.insert_if_absent(make_row(1))
        with self.assertRaises(ValueError):
            rows.write_back(1, {"allocation_to_risky": 0})

    def test_rows_persist_and_reload(self):
        store = MemoryStore()
        rows = RowStore(store, name="resp_32")
        rows.insert_if_absent(make_row(2))
        rows.insert_if_absent(make_row(1, "BASE", is_baseline=True))
        rows.write_back(1, {"sanity_secondary": ["balance"]})
        reloaded = RowStore(store, name="resp_32")
        self.assertEqual([r.order for r in reloaded.all()], [1, 2])
        self.assertEqual(reloaded.get(1).sanity_secondary, ["balance"])

    def test_first_baseline_and_last_scenario(self):
        rows = RowStore()
        rows.insert_if_absent(make_row(1, "BASE", value=40, is_baseline=True))
        rows.insert_if_absent(make_row(31, "LAST", value=60, is_last=True))
        rows.insert_if_absent(make_row(32, "MIRROR", value=70, is_last=True, is_mirror=True))
        self.assertEqual(rows.first_baseline().allocation_to_risky, 40)
        self.assertEqual(rows.last_scenario().allocation_to_risky, 70)

    def test_incompatible_stored_rows_start_empty(self):
        store = MemoryStore()
        save_json(store, "resp", [{"order": 1}])
        with self.assertLogs("allocation_survey.services.rows", level="WARNING"):
            rows = RowStore(store, name="resp")
        self.assertEqual(len(rows), 0)


if __name__ == "__main__":
    unittest.main()
