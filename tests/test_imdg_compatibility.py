import itertools
import unittest

from services import imdg_compatibility
from services.models import ProductLine


class AreCompatibleTests(unittest.TestCase):
    def test_absent_class_is_compatible_with_anything(self):
        for imdg_class in imdg_compatibility.IMDG_CLASSES + ("Classe 42",):
            self.assertTrue(imdg_compatibility.are_compatible(None, imdg_class))
            self.assertTrue(imdg_compatibility.are_compatible("", imdg_class))
            self.assertTrue(imdg_compatibility.are_compatible(imdg_class, None))
            self.assertTrue(imdg_compatibility.are_compatible(imdg_class, "  "))

    def test_self_compatibility_follows_incompatible_set(self):
        for imdg_class in imdg_compatibility.IMDG_CLASSES:
            expected = imdg_class not in imdg_compatibility.incompatible_classes_for(imdg_class)
            self.assertEqual(imdg_compatibility.are_compatible(imdg_class, imdg_class), expected)

    def test_lookup_is_symmetric_for_every_pair(self):
        for class_a, class_b in itertools.product(imdg_compatibility.IMDG_CLASSES, repeat=2):
            self.assertEqual(
                imdg_compatibility.are_compatible(class_a, class_b),
                imdg_compatibility.are_compatible(class_b, class_a),
                f"{class_a} / {class_b}",
            )

    def test_one_sided_entry_still_blocks_both_directions(self):
        # Classe 4.2 lists Classe 3; Classe 3 does not list Classe 4.2.
        self.assertNotIn("Classe 4.2", imdg_compatibility.incompatible_classes_for("Classe 3"))
        self.assertFalse(imdg_compatibility.are_compatible("Classe 3", "Classe 4.2"))
        self.assertFalse(imdg_compatibility.are_compatible("Classe 4.2", "Classe 3"))

    def test_unknown_class_is_compatible_unless_strict(self):
        self.assertTrue(imdg_compatibility.are_compatible("Classe 1", "Classe 10"))
        self.assertFalse(imdg_compatibility.are_compatible("Classe 1", "Classe 10", strict=True))
        self.assertTrue(imdg_compatibility.are_compatible(None, "Classe 10", strict=True))

    def test_compatible_pair(self):
        self.assertTrue(imdg_compatibility.are_compatible("Classe 3", "Classe 9"))
        self.assertTrue(imdg_compatibility.are_compatible("Classe 2.2", "Classe 8"))

    def test_incompatible_classes_for_unknown_class_is_empty(self):
        self.assertEqual(imdg_compatibility.incompatible_classes_for("Classe 42"), frozenset())
        self.assertEqual(imdg_compatibility.incompatible_classes_for(None), frozenset())


class AsymmetryProbeTests(unittest.TestCase):
    def test_reports_known_one_sided_entries(self):
        pairs = imdg_compatibility.find_asymmetric_pairs()
        # Known data issue: these entries are listed on one side only.
        self.assertIn(("Classe 1", "Classe 2.2"), pairs)
        self.assertIn(("Classe 4.2", "Classe 3"), pairs)
        self.assertIn(("Classe 6.2", "Classe 9"), pairs)

    def test_every_reported_pair_is_listed_on_exactly_one_side(self):
        for listed_by, listed_class in imdg_compatibility.find_asymmetric_pairs():
            self.assertIn(listed_class, imdg_compatibility.incompatible_classes_for(listed_by))
            self.assertNotIn(listed_by, imdg_compatibility.incompatible_classes_for(listed_class))


class GroupCompatibilityTests(unittest.TestCase):
    def test_explosives_with_flammable_liquids(self):
        result = imdg_compatibility.check_group_compatibility(["Classe 1", "Classe 3"])

        self.assertFalse(result["compatible"])
        self.assertEqual(len(result["conflicts"]), 1)
        conflict = result["conflicts"][0]
        self.assertEqual(conflict["class_a"], "Classe 1")
        self.assertEqual(conflict["class_b"], "Classe 3")
        self.assertEqual(
            conflict["description"],
            "Explosifs - Incompatibles avec toutes les autres classes "
            "incompatible avec Liquides inflammables",
        )

    def test_exactly_one_conflicting_pair_reports_one_conflict(self):
        result = imdg_compatibility.check_group_compatibility(["Classe 2.2", "Classe 3", "Classe 8"])

        self.assertFalse(result["compatible"])
        self.assertEqual(
            [(c["class_a"], c["class_b"]) for c in result["conflicts"]],
            [("Classe 3", "Classe 8")],
        )

    def test_reports_every_conflict(self):
        result = imdg_compatibility.check_group_compatibility(["Classe 1", "Classe 3", "Classe 8"])

        self.assertEqual(len(result["conflicts"]), 3)

    def test_absent_entries_are_ignored(self):
        result = imdg_compatibility.check_group_compatibility([None, "", "Classe 3", None, "Classe 9"])

        self.assertEqual(result, {"compatible": True, "conflicts": []})

    def test_empty_list_is_compatible(self):
        self.assertTrue(imdg_compatibility.check_group_compatibility([])["compatible"])
        self.assertTrue(imdg_compatibility.check_group_compatibility(None)["compatible"])

    def test_unknown_class_description_falls_back_to_identifier(self):
        result = imdg_compatibility.check_group_compatibility(["Classe 3", "Classe 10"], strict=True)

        self.assertEqual(
            result["conflicts"][0]["description"],
            "Liquides inflammables incompatible avec Classe 10",
        )


class HazardClassExtractionTests(unittest.TestCase):
    def test_collects_classes_from_lines_carrying_one(self):
        lines = [
            ProductLine(product_id=1, name="Acétone", dangerous=True, imdg_class="Classe 3"),
            ProductLine(product_id=2, name="Cartons vides"),
            ProductLine(product_id=3, name="Batteries", dangerous=True, imdg_class="Classe 9"),
        ]

        self.assertEqual(
            imdg_compatibility.hazard_classes_for_products(lines),
            ["Classe 3", "Classe 9"],
        )

    def test_rule_to_dict_keeps_table_order(self):
        payload = imdg_compatibility.rule_to_dict(imdg_compatibility.get_rule("Classe 7"))

        self.assertEqual(payload["class"], "Classe 7")
        self.assertEqual(payload["incompatible_with"], ["Classe 1", "Classe 2.1", "Classe 6.2"])


if __name__ == "__main__":
    unittest.main()
