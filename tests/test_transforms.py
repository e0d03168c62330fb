# ========================
# tests/test_transforms.py
# ========================

import unittest
import tempfile
import os
import sys

# Add src to Python path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src'))

from taxiflow.pipeline.schema import Schema, categorical, numeric, text
from taxiflow.pipeline.transforms import (
    AddColumn, DropColumns, FillNulls, Identity, LookupColumn, LookupTable, MapColumn,
    PredictColumn, RenameColumn, TransformContext, all_of, column_between, column_greater_than,
    column_in, compose, not_null,
)

SCHEMA = Schema((numeric("amount"), categorical("day", ["Mon", "Tue"])))


class FakeModel:
    """Predicts twice the amount."""

    def predict(self, rows):
        return [row["amount"] * 2 for row in rows]


class TestTransforms(unittest.TestCase):

    def setUp(self):
        self.rows = [{"amount": 1, "day": "Mon"}, {"amount": 2, "day": "Tue"}]
        self.context = TransformContext()

    def test_add_column_does_not_modify_input(self):
        transform = AddColumn(numeric("doubled"), lambda row, ctx: row["amount"] * 2)

        result = transform.apply(self.rows, self.context)

        self.assertEqual([r["doubled"] for r in result], [2, 4])
        self.assertNotIn("doubled", self.rows[0])
        self.assertEqual(transform.output_schema(SCHEMA).names, ["amount", "day", "doubled"])

    def test_add_column_is_idempotent(self):
        transform = AddColumn(numeric("doubled"), lambda row, ctx: row["amount"] * 2)
        once = transform.apply(self.rows, self.context)
        twice = transform.apply(once, self.context)
        self.assertEqual(once, twice)
        self.assertEqual(transform.output_schema(transform.output_schema(SCHEMA)).names,
                         ["amount", "day", "doubled"])

    def test_map_column(self):
        transform = MapColumn("amount", lambda v: v * 10)
        self.assertEqual([r["amount"] for r in transform.apply(self.rows, self.context)], [10, 20])
        with self.assertRaises(KeyError):
            MapColumn("missing", str).output_schema(SCHEMA)

    def test_map_column_with_new_type(self):
        transform = MapColumn("amount", str, column=text("amount"))
        self.assertEqual(transform.output_schema(SCHEMA).column("amount").type.value, "text")

    def test_drop_and_rename(self):
        dropped = DropColumns(["day"])
        self.assertEqual(dropped.apply(self.rows, self.context), [{"amount": 1}, {"amount": 2}])
        self.assertEqual(dropped.output_schema(SCHEMA).names, ["amount"])

        renamed = RenameColumn("day", "weekday")
        self.assertEqual(renamed.apply(self.rows, self.context)[0], {"amount": 1, "weekday": "Mon"})
        self.assertEqual(renamed.output_schema(SCHEMA).names, ["amount", "weekday"])

    def test_fill_nulls(self):
        rows = [{"amount": None, "day": None}, {"amount": 3, "day": "Tue"}]
        transform = FillNulls({"amount": 0, "day": "Mon"})

        result = transform.apply(rows, self.context)

        self.assertEqual(result, [{"amount": 0, "day": "Mon"}, {"amount": 3, "day": "Tue"}])
        self.assertIsNone(rows[0]["amount"])
        self.assertEqual(transform.output_schema(SCHEMA), SCHEMA)

    def test_fill_nulls_sentinel_must_fit_type(self):
        with self.assertRaises(ValueError):
            FillNulls({"day": "Unknown"}).output_schema(SCHEMA)

    def test_compose_applies_left_to_right(self):
        transform = compose(
            AddColumn(numeric("doubled"), lambda row, ctx: row["amount"] * 2),
            RenameColumn("doubled", "twice"),
            DropColumns(["day"]),
        )
        self.assertEqual(transform.apply(self.rows, self.context), [{"amount": 1, "twice": 2},
                                                                     {"amount": 2, "twice": 4}])
        self.assertEqual(transform.output_schema(SCHEMA).names, ["amount", "twice"])

    def test_rshift_flattens(self):
        transform = Identity() >> DropColumns(["day"]) >> Identity()
        self.assertEqual(len(transform.transforms), 3)

    def test_empty_compose_copies_rows(self):
        result = compose().apply(self.rows, self.context)
        self.assertEqual(result, self.rows)
        self.assertIsNot(result[0], self.rows[0])

    def test_context_is_read_only(self):
        context = TransformContext({"zones": LookupTable({1: "Manhattan"})})
        with self.assertRaises(TypeError):
            context["zones"] = None
        with self.assertRaises(KeyError):
            context["missing"]

    def test_lookup_column(self):
        context = TransformContext(days=LookupTable({"Mon": "weekday", "Tue": "weekday"}))
        rows = self.rows + [{"amount": 3, "day": None}]
        transform = LookupColumn(text("kind"), lambda row: row["day"], "days", default="unknown")

        result = transform.apply(rows, context)

        self.assertEqual([r["kind"] for r in result], ["weekday", "weekday", "unknown"])

    def test_lookup_table_from_csv(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, "zones.csv")
            with open(path, 'w') as f:
                f.write("LocationID,Borough\n1,EWR\n4,Manhattan\n")
            table = LookupTable.from_csv(path, "LocationID", "Borough", key_type=int)
        self.assertEqual(len(table), 2)
        self.assertEqual(table.lookup(4), "Manhattan")
        self.assertIsNone(table.lookup(99))

    def test_predict_column(self):
        transform = PredictColumn(numeric("predicted"), "model")
        result = transform.apply(self.rows, TransformContext(model=FakeModel()))
        self.assertEqual([r["predicted"] for r in result], [2, 4])
        self.assertEqual(transform.output_schema(SCHEMA).names, ["amount", "day", "predicted"])

    def test_predict_column_length_mismatch(self):
        class ShortModel:
            def predict(self, rows):
                return [0]

        with self.assertRaises(ValueError):
            PredictColumn(numeric("predicted"), "model").apply(self.rows, TransformContext(model=ShortModel()))


class TestPredicates(unittest.TestCase):

    def test_predicates_are_null_safe(self):
        row = {"amount": None, "day": "Mon"}
        self.assertFalse(not_null("amount")(row))
        self.assertFalse(column_greater_than("amount", 0)(row))
        self.assertFalse(column_between("amount", 0, 10)(row))

    def test_column_between_is_inclusive(self):
        predicate = column_between("amount", 1, 2)
        self.assertTrue(predicate({"amount": 1}))
        self.assertTrue(predicate({"amount": 2}))
        self.assertFalse(predicate({"amount": 2.01}))

    def test_combinators(self):
        predicate = all_of(column_greater_than("amount", 0), column_in("day", ["Tue"]))
        self.assertTrue(predicate({"amount": 1, "day": "Tue"}))
        self.assertFalse(predicate({"amount": 1, "day": "Mon"}))


if __name__ == '__main__':
    unittest.main()
