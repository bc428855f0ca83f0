"""
Unit tests for drug-resistance mutation annotation.
"""

import unittest

from aacaller import drm
from aacaller.models import DRMRule, TargetGene


class TestParseMutation(unittest.TestCase):
    """Test resistance notation parsing."""

    def test_single_variant(self):
        """Test a single substitution."""
        self.assertEqual(drm.parse_mutation("K103N"), [("K", 103, "N")])

    def test_multiple_variants(self):
        """Test several variant amino acids at one position."""
        self.assertEqual(
            drm.parse_mutation("M46IL"),
            [("M", 46, "I"), ("M", 46, "L")],
        )

    def test_case_and_whitespace(self):
        """Test lowercase input with surrounding spaces."""
        self.assertEqual(drm.parse_mutation(" y181c "), [("Y", 181, "C")])

    def test_malformed(self):
        """Test malformed strings raise ValueError."""
        for bad in ["", "K", "103N", "KN", "K103", "K-103N"]:
            with self.assertRaises(ValueError):
                drm.parse_mutation(bad)

    def test_build_rule(self):
        """Test a rule collects all triples of its mutations."""
        rule = drm.build_rule("NNRTI", ["K103NS", "Y181C"])
        self.assertEqual(rule.name, "NNRTI")
        self.assertEqual(
            rule.mutations,
            frozenset({("K", 103, "N"), ("K", 103, "S"), ("Y", 181, "C")}),
        )


class TestFindDRMs(unittest.TestCase):
    """Test rule lookup."""

    def setUp(self):
        self.genes = [
            TargetGene(2550, 4230, "RT", drms=(
                drm.build_rule("NNRTI", ["K103N", "Y181C"]),
                drm.build_rule("Cross", ["K103N"]),
            )),
            TargetGene(2253, 2550, "PR", drms=(
                drm.build_rule("PI major", ["K103N"]),
            )),
        ]

    def test_single_match(self):
        """Test a triple matched by one rule."""
        self.assertEqual(drm.find_drms("RT", self.genes, "Y", 181, "C"), "NNRTI")

    def test_all_matching_rules_joined(self):
        """Test every matching rule of the gene is listed in order."""
        self.assertEqual(drm.find_drms("RT", self.genes, "K", 103, "N"), "NNRTI + Cross")

    def test_other_gene_rules_ignored(self):
        """Test rules of other genes never match."""
        self.assertEqual(drm.find_drms("PR", self.genes, "K", 103, "N"), "PI major")
        self.assertEqual(drm.find_drms("IN", self.genes, "K", 103, "N"), "")

    def test_no_match(self):
        """Test the exact triple is required."""
        self.assertEqual(drm.find_drms("RT", self.genes, "K", 103, "S"), "")
        self.assertEqual(drm.find_drms("RT", self.genes, "R", 103, "N"), "")

    def test_rule_matches(self):
        """Test DRMRule membership."""
        rule = DRMRule("r", frozenset({("M", 46, "I")}))
        self.assertTrue(rule.matches("M", 46, "I"))
        self.assertFalse(rule.matches("M", 46, "L"))


if __name__ == '__main__':
    unittest.main()
