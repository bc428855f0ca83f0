"""
Unit tests for the alignment views.

Tests cover:
- Row access by absolute position, uncovered and gap markers
- Terminal gap masking and base normalization
- Name index behaviour with duplicated read names
- Column tallies and most frequent base
- Loading alignments and references from FASTA
"""

import unittest
import tempfile
import shutil
from pathlib import Path

from aacaller import msa
from aacaller.models import HaplotypeFlag


class TestMSARow(unittest.TestCase):
    """Test single-row access."""

    def setUp(self):
        self.row = msa.MSARow(read_name="r1", begin_pos=10, bases="ACG-T")

    def test_base_at_inside_row(self):
        """Test bases are addressed by absolute position."""
        self.assertEqual(self.row.base_at(10), "A")
        self.assertEqual(self.row.base_at(13), "-")
        self.assertEqual(self.row.end_pos, 15)

    def test_base_at_outside_row_is_uncovered(self):
        """Test positions the read does not reach are uncovered."""
        self.assertEqual(self.row.base_at(9), msa.UNCOVERED)
        self.assertEqual(self.row.base_at(15), msa.UNCOVERED)

    def test_codon_at_partially_covered(self):
        """Test a codon running off the end of the read."""
        self.assertEqual(self.row.codon_at(10), "ACG")
        self.assertEqual(self.row.codon_at(13), "-T ")

    def test_default_flags(self):
        """Test rows carry no flags unless given."""
        self.assertEqual(self.row.flags, HaplotypeFlag.NONE)


class TestMSAByRow(unittest.TestCase):
    """Test the row view."""

    def test_from_sequences_masks_terminal_gaps(self):
        """Test leading and trailing gap runs become uncovered."""
        alignment = msa.MSAByRow.from_sequences([("r1", "--ACG-T--")])
        self.assertEqual(alignment.rows[0].bases, "  ACG-T  ")
        self.assertEqual(alignment.begin_pos, 1)
        self.assertEqual(alignment.end_pos, 10)

    def test_from_sequences_keeps_gaps_when_asked(self):
        """Test masking can be switched off."""
        alignment = msa.MSAByRow.from_sequences(
            [("r1", "--ACG")], mask_terminal_gaps=False
        )
        self.assertEqual(alignment.rows[0].bases, "--ACG")

    def test_normalization(self):
        """Test lowercase and RNA bases are normalized."""
        alignment = msa.MSAByRow.from_sequences([("r1", "acgu")], begin_pos=5)
        self.assertEqual(alignment.rows[0].bases, "ACGT")
        self.assertEqual(alignment.rows[0].begin_pos, 5)

    def test_name_index(self):
        """Test reads are looked up by name."""
        alignment = msa.MSAByRow.from_sequences([("r1", "AAA"), ("r2", "CCC")])
        self.assertEqual(alignment.row("r2").bases, "CCC")
        self.assertIsNone(alignment.row("missing"))
        self.assertEqual(alignment.index, {"r1": 0, "r2": 1})

    def test_duplicated_names_first_wins(self):
        """Test the index keeps the first row of a duplicated name."""
        alignment = msa.MSAByRow.from_sequences([("r1", "AAA"), ("r1", "CCC")])
        self.assertEqual(len(alignment), 2)
        self.assertEqual(alignment.row("r1").bases, "AAA")

    def test_empty_alignment(self):
        """Test an alignment without rows has an empty window."""
        alignment = msa.MSAByRow([])
        self.assertEqual(len(alignment), 0)
        self.assertEqual(alignment.begin_pos, alignment.end_pos)


class TestMSAByColumn(unittest.TestCase):
    """Test column tallies."""

    def setUp(self):
        rows = [
            msa.MSARow("r1", 1, "ACGT"),
            msa.MSARow("r2", 1, "ACGA"),
            msa.MSARow("r3", 1, "AR- "),
            msa.MSARow("r4", 3, "GN"),
        ]
        self.columns = msa.MSAByColumn(msa.MSAByRow(rows))

    def test_counts(self):
        """Test per-position counts of each base."""
        counts = self.columns.counts(1)
        self.assertEqual(counts.A, 3)
        self.assertEqual(counts.C, 0)

        counts = self.columns.counts(3)
        self.assertEqual(counts.G, 3)
        self.assertEqual(counts.gap, 1)

    def test_ambiguous_bases_count_as_n(self):
        """Test IUPAC codes other than N are tallied as N."""
        self.assertEqual(self.columns.counts(2).N, 1)
        self.assertEqual(self.columns.counts(4).N, 1)

    def test_uncovered_not_counted(self):
        """Test uncovered positions do not add to depth."""
        self.assertEqual(self.columns.depth(4), 3)

    def test_most_frequent_base(self):
        """Test the majority base of a column."""
        self.assertEqual(self.columns.most_frequent_base(1), "A")
        self.assertEqual(self.columns.most_frequent_base(3), "G")

    def test_outside_window(self):
        """Test positions outside the window are empty."""
        self.assertEqual(self.columns.counts(100), msa.BaseCounts())
        self.assertEqual(self.columns.most_frequent_base(100), "N")

    def test_as_dict_uses_gap_character(self):
        """Test the dictionary form keys the gap count by '-'."""
        self.assertEqual(self.columns.counts(3).as_dict()["-"], 1)


class TestLoading(unittest.TestCase):
    """Test reading alignments and references."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_load_msa(self):
        """Test an aligned FASTA becomes a row view at the given offset."""
        path = self.temp_dir / "reads.fasta"
        path.write_text(">r1\nATGAAA\n>r2\n--GAAA\n>r3\nATGA--\n")

        alignment = msa.load_msa(path, begin_pos=100)

        self.assertEqual(len(alignment), 3)
        self.assertEqual(alignment.begin_pos, 100)
        self.assertEqual(alignment.end_pos, 106)
        self.assertEqual(alignment.row("r2").base_at(100), msa.UNCOVERED)
        self.assertEqual(alignment.row("r3").codon_at(103), "A  ")

    def test_load_msa_missing_file(self):
        """Test a missing alignment raises FileNotFoundError."""
        with self.assertRaises(FileNotFoundError):
            msa.load_msa(self.temp_dir / "missing.fasta")

    def test_load_msa_empty_file(self):
        """Test an empty alignment raises MSAError."""
        path = self.temp_dir / "empty.fasta"
        path.write_text("")
        with self.assertRaises(msa.MSAError):
            msa.load_msa(path)

    def test_load_msa_unequal_lengths(self):
        """Test rows of different width raise MSAError."""
        path = self.temp_dir / "ragged.fasta"
        path.write_text(">r1\nATGAAA\n>r2\nATG\n")
        with self.assertRaises(msa.MSAError):
            msa.load_msa(path)

    def test_load_reference(self):
        """Test a reference is read and uppercased."""
        path = self.temp_dir / "ref.fasta"
        path.write_text(">HXB2\natgaaa\n")
        self.assertEqual(msa.load_reference(path), "ATGAAA")


if __name__ == '__main__':
    unittest.main()
