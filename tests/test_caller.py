"""
Unit tests for the amino-acid caller.

Tests cover:
- Two-haplotype calling without a reference or target genes
- External references, alternate references and non-coding references
- Validation against expected minors
- DRM-only, debug and multi-process modes
- Soft-collapse of noisy reads
- Complete runs from an alignment file
"""

import unittest
import tempfile
import shutil
from pathlib import Path

from aacaller import caller, drm
from aacaller.config import CallerConfig, ErrorModel, TargetConfig, get_default_config
from aacaller.models import MinorVariant, TargetGene
from aacaller.msa import MSAByRow


def make_msa(sequences, begin_pos=1):
    return MSAByRow.from_sequences(
        [(f"read{i}", seq) for i, seq in enumerate(sequences)],
        begin_pos=begin_pos,
    )


def two_haplotype_reads():
    return ["ATGTGG"] * 70 + ["CTGTGC"] * 30


class TestTwoHaplotypes(unittest.TestCase):
    """Test calling on a 70/30 mixture of two haplotypes."""

    def setUp(self):
        self.alignment = make_msa(two_haplotype_reads())
        self.aa_caller = caller.AminoAcidCaller(self.alignment)

    def test_default_gene(self):
        """Test the whole window is called as one gene named 'unknown'."""
        genes = self.aa_caller.variant_genes
        self.assertEqual([g.gene_name for g in genes], [caller.DEFAULT_GENE_NAME])
        self.assertEqual(genes[0].gene_offset, 1)

    def test_number_of_tests(self):
        """Test distinct codons are counted at both positions."""
        self.assertEqual(self.aa_caller.number_of_tests, 4)

    def test_variant_calls(self):
        """Test both minority codons are called."""
        gene = self.aa_caller.variant_genes[0]
        self.assertEqual(sorted(gene.positions), [1, 2])

        first = gene.positions[1]
        self.assertEqual(first.ref_codon, "ATG")
        self.assertEqual(first.ref_amino_acid, "M")
        self.assertEqual(first.coverage, 100)
        self.assertEqual(list(first.amino_acid_to_codons), ["L"])
        ctg = first.amino_acid_to_codons["L"][0]
        self.assertEqual(ctg.codon, "CTG")
        self.assertAlmostEqual(ctg.frequency, 0.3)
        self.assertLess(ctg.p_value, 0.01)

        second = gene.positions[2]
        self.assertEqual(second.ref_codon, "TGG")
        self.assertEqual(second.amino_acid_to_codons["C"][0].codon, "TGC")

    def test_context_attached_to_variant_positions(self):
        """Test variant positions carry their base tallies."""
        position = self.aa_caller.variant_genes[0].positions[1]
        self.assertEqual([c["rel_pos"] for c in position.msa], [0, 1, 2, 3, 4, 5])
        self.assertEqual(position.msa[0]["A"], 70)
        self.assertEqual(position.msa[0]["C"], 30)

    def test_haplotypes(self):
        """Test two generators with their frequencies."""
        haplotypes = self.aa_caller.haplotypes
        self.assertEqual([h.name for h in haplotypes], ["A", "B"])
        self.assertEqual([h.size for h in haplotypes], [70, 30])
        self.assertAlmostEqual(haplotypes[0].global_frequency, 0.7)
        self.assertEqual(haplotypes[0].codons, ("ATG", "TGG"))
        self.assertEqual(self.aa_caller.filtered_haplotypes, [])
        self.assertEqual(self.aa_caller.summary.reported, 100)

    def test_hit_matrix(self):
        """Test the variant codons are carried by haplotype B only."""
        gene = self.aa_caller.variant_genes[0]
        self.assertEqual(gene.positions[1].amino_acid_to_codons["L"][0].haplotype_hit, [False, True])
        self.assertEqual(gene.positions[2].amino_acid_to_codons["C"][0].haplotype_hit, [False, True])

    def test_no_performance_without_minors(self):
        """Test validation is only reported with expected minors."""
        self.assertIsNone(self.aa_caller.performance)
        self.assertNotIn("performance", self.aa_caller.to_json())


class TestCallProperties(unittest.TestCase):
    """Test properties that hold for any run."""

    def setUp(self):
        reads = (
            ["ATGTGGAAA"] * 40 + ["CTGTGCAAA"] * 25 + ["ATGTGCAAG"] * 15
            + ["GTGTGGAAA"] * 12 + ["ATGTG-AAA"] * 3 + ["ATGTGG"] * 5
        )
        self.alignment = make_msa(reads)
        self.aa_caller = caller.AminoAcidCaller(
            self.alignment,
            caller_config=CallerConfig(merge_outliers=True),
        )

    def test_reference_never_reported(self):
        """Test no variant codon equals the reference or alternate reference."""
        for gene in self.aa_caller.variant_genes:
            for position in gene.positions.values():
                for vc in position.variant_codons():
                    self.assertNotEqual(vc.codon, position.ref_codon)
                    self.assertNotEqual(vc.codon, position.alt_ref_codon)

    def test_coverage_bounds_reported_reads(self):
        """Test variant frequencies never exceed the position's coverage."""
        for gene in self.aa_caller.variant_genes:
            for position in gene.positions.values():
                total = sum(round(vc.frequency * position.coverage) for vc in position.variant_codons())
                self.assertLessEqual(total, position.coverage)

    def test_every_read_in_one_cluster(self):
        """Test cluster sizes sum to the number of reads."""
        clusters = self.aa_caller.haplotypes + self.aa_caller.filtered_haplotypes
        self.assertEqual(sum(h.size for h in clusters), len(self.alignment))

    def test_ranking_monotone(self):
        """Test haplotype sizes never increase with rank."""
        sizes = [h.size for h in self.aa_caller.haplotypes]
        self.assertEqual(sizes, sorted(sizes, reverse=True))
        self.assertAlmostEqual(sum(h.global_frequency for h in self.aa_caller.haplotypes), 1.0)

    def test_hit_lists_match_haplotypes(self):
        """Test every variant codon has one hit flag per haplotype."""
        n = len(self.aa_caller.haplotypes)
        for position in self.aa_caller.variant_positions:
            for vc in position.variant_codons():
                self.assertEqual(len(vc.haplotype_hit), n)

    def test_json_stable(self):
        """Test the JSON document does not change between calls."""
        self.assertEqual(self.aa_caller.to_json(), self.aa_caller.to_json())


class TestReferenceHandling(unittest.TestCase):
    """Test external reference sequences."""

    def setUp(self):
        self.alignment = make_msa(two_haplotype_reads())

    def test_alternate_reference_suppresses_majority(self):
        """Test a dominant disagreeing codon is excluded from testing."""
        target = TargetConfig(reference_sequence="CTGTGC")
        aa_caller = caller.AminoAcidCaller(
            self.alignment,
            target_config=target,
            caller_config=CallerConfig(max_perc=60),
        )
        # ATG/TGG become alternate references; nothing else is left to test
        self.assertEqual(aa_caller.variant_genes, [])
        self.assertEqual(aa_caller.haplotypes, [])

    def test_reference_codon_is_tested_against(self):
        """Test majority reads are called when the reference disagrees."""
        target = TargetConfig(reference_sequence="CTGTGC")
        aa_caller = caller.AminoAcidCaller(self.alignment, target_config=target)
        gene = aa_caller.variant_genes[0]
        first = gene.positions[1]
        self.assertEqual(first.ref_codon, "CTG")
        self.assertIsNone(first.alt_ref_codon)
        self.assertEqual(first.amino_acid_to_codons["M"][0].codon, "ATG")

    def test_non_coding_reference_skips_position(self):
        """Test a stop codon in the reference removes the position."""
        target = TargetConfig(reference_sequence="TAATGC")
        aa_caller = caller.AminoAcidCaller(self.alignment, target_config=target)
        gene = aa_caller.variant_genes[0]
        self.assertEqual(list(gene.positions), [2])
        self.assertEqual(gene.positions[2].amino_acid_to_codons["W"][0].codon, "TGG")


class TestExpectedMinors(unittest.TestCase):
    """Test validation against ground truth."""

    def test_performance(self):
        """Test one true and one false positive."""
        gene = TargetGene(1, 7, "g", minors=(MinorVariant(1, "L", "CTG"),))
        aa_caller = caller.AminoAcidCaller(
            make_msa(two_haplotype_reads()),
            target_config=TargetConfig(genes=(gene,)),
        )
        report = aa_caller.performance
        self.assertIsNotNone(report)
        self.assertEqual(report.true_positives, 1)
        self.assertEqual(report.false_positives, 1)
        self.assertEqual(report.false_negatives, 0)
        self.assertEqual(report.true_negatives, 0)
        self.assertEqual(report.true_positive_rate, 1.0)
        self.assertAlmostEqual(report.false_positive_rate, 1 / 3)
        self.assertEqual(report.accuracy, 0.5)
        self.assertEqual(report.number_of_tests, 4)
        self.assertIn("performance", aa_caller.to_json())


class TestCallingModes(unittest.TestCase):
    """Test DRM-only, debug, multi-process and soft-collapse runs."""

    def setUp(self):
        self.alignment = make_msa(two_haplotype_reads())

    def test_drm_only(self):
        """Test only resistance mutations are reported."""
        gene = TargetGene(1, 7, "g", drms=(drm.build_rule("test rule", ["M1L"]),))
        aa_caller = caller.AminoAcidCaller(
            self.alignment,
            target_config=TargetConfig(genes=(gene,)),
            caller_config=CallerConfig(drm_only=True),
        )
        positions = aa_caller.variant_genes[0].variant_positions()
        self.assertEqual([p.codon_position for p in positions], [1])
        self.assertEqual(positions[0].amino_acid_to_codons["L"][0].known_drm, "test rule")

    def test_debug_min_perc(self):
        """Test debug mode reports by percentage only."""
        aa_caller = caller.AminoAcidCaller(
            self.alignment,
            caller_config=CallerConfig(debug=True, min_perc=50),
        )
        self.assertEqual(aa_caller.variant_genes, [])

        aa_caller = caller.AminoAcidCaller(
            self.alignment,
            caller_config=CallerConfig(debug=True, min_perc=25),
        )
        self.assertEqual(len(aa_caller.variant_genes[0].variant_positions()), 2)

    def test_debug_scenario_p_value(self):
        """Test 2 of 10 reads are reported in debug mode with their p-value."""
        alignment = make_msa(["AAA"] * 8 + ["AAG"] * 2)
        aa_caller = caller.AminoAcidCaller(alignment, caller_config=CallerConfig(debug=True))

        position = aa_caller.variant_genes[0].positions[1]
        self.assertEqual(position.ref_codon, "AAA")
        self.assertEqual(position.coverage, 10)
        aag = position.amino_acid_to_codons["K"][0]
        self.assertEqual(aag.codon, "AAG")
        self.assertAlmostEqual(aag.frequency, 0.2)
        self.assertAlmostEqual(aag.p_value, 2 * 45 / 190, places=6)

    def test_small_excess_not_reported(self):
        """Test the same reads are not significant without debug mode."""
        alignment = make_msa(["AAA"] * 8 + ["AAG"] * 2)
        aa_caller = caller.AminoAcidCaller(alignment)
        self.assertEqual(aa_caller.variant_genes, [])

    def test_threads_match_serial(self):
        """Test a process pool gives the same result as a serial run."""
        serial = caller.AminoAcidCaller(self.alignment)
        pooled = caller.AminoAcidCaller(self.alignment, caller_config=CallerConfig(n_threads=2))
        self.assertEqual(serial.to_json(), pooled.to_json())

    def test_merge_outliers(self):
        """Test a small cluster is soft-collapsed into the generators."""
        alignment = make_msa(two_haplotype_reads() + ["ATGTGC"] * 3)
        aa_caller = caller.AminoAcidCaller(
            alignment,
            error_model=ErrorModel(),
            caller_config=CallerConfig(merge_outliers=True),
        )
        self.assertEqual([h.size for h in aa_caller.haplotypes], [70, 30])
        self.assertEqual(len(aa_caller.filtered_haplotypes), 1)
        self.assertEqual(aa_caller.summary.low_coverage, 3)
        distributed = sum(h.soft_collapses for h in aa_caller.haplotypes)
        self.assertAlmostEqual(distributed, 3.0)


class TestResolveGenes(unittest.TestCase):
    """Test the gene list of a run."""

    def test_configured_genes_kept(self):
        gene = TargetGene(1, 7, "g")
        msa = make_msa(["ATG"])
        self.assertEqual(caller.resolve_genes(msa, TargetConfig(genes=(gene,))), (gene,))

    def test_empty_alignment(self):
        self.assertEqual(caller.resolve_genes(MSAByRow([]), TargetConfig()), ())


class TestRunCaller(unittest.TestCase):
    """Test a complete run from a FASTA file."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.alignment_path = self.temp_dir / "reads.fasta"
        with open(self.alignment_path, 'w') as f:
            for i, seq in enumerate(two_haplotype_reads()):
                f.write(f">read{i}\n{seq}\n")

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_run_writes_reports(self):
        """Test the reports are written with the configured prefix."""
        config = get_default_config().update(output_prefix="sample")
        out_dir = self.temp_dir / "out"

        result = caller.run_caller(self.alignment_path, config, output_dir=out_dir)

        self.assertEqual(len(result.haplotypes), 2)
        self.assertTrue((out_dir / "sample.json").exists())
        self.assertTrue((out_dir / "sample_variants.tsv").exists())
        self.assertTrue((out_dir / "sample_haplotypes.tsv").exists())

    def test_begin_position_shifts_coordinates(self):
        """Test absolute positions follow the first alignment column."""
        result = caller.run_caller(
            self.alignment_path,
            get_default_config(),
            begin_pos=101,
            output_dir=self.temp_dir / "out",
        )
        gene = result.genes[0]
        self.assertEqual(gene.gene_offset, 101)
        self.assertEqual(gene.positions[1].ref_position, 101)
        self.assertEqual(gene.positions[2].ref_position, 104)


if __name__ == '__main__':
    unittest.main()
