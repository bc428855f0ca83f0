"""
Amino-Acid Variant Calling

Orchestrates a calling run over an alignment of reads:

1. Census: codon counts at every codon position of every target gene
2. Number of tests: distinct valid codons summed over all positions
3. Calling: reference resolution, Fisher exact test with Bonferroni
   correction, acceptance gating and DRM annotation for every codon
4. Phasing: haplotype reconstruction over the called variant positions

Positions are independent during census and calling, so both steps map a
module-level worker over positions, in a process pool when more than one
thread is configured. Per-position validation counts are returned and summed.

Example Usage:
    >>> from aacaller.caller import AminoAcidCaller
    >>> from aacaller.config import get_default_config, get_target_preset
    >>> from aacaller.msa import load_msa
    >>>
    >>> config = get_default_config().update(target=get_target_preset("HIV"))
    >>> msa = load_msa("reads_aligned.fasta", begin_pos=2253)
    >>> caller = AminoAcidCaller(msa, config.error_model, config.target, config.caller)
    >>> for haplotype in caller.haplotypes:
    ...     print(haplotype.name, haplotype.size, haplotype.global_frequency)

Author: Steph Smith (steph.smith@unc.edu)
"""

from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
import logging
import multiprocessing as mp

from .codons import CodonCensus, codon_census, msa_context, resolve_reference, translate
from .config import CallerConfig, ErrorModel, PipelineConfig, TargetConfig, get_default_config
from .drm import find_drms
from .models import (
    CallerResult,
    Haplotype,
    HaplotypeSummary,
    PerformanceReport,
    TargetGene,
    VariantCodon,
    VariantGene,
    VariantPosition,
)
from .msa import MSAByColumn, MSAByRow, load_msa
from .phasing import phase_variants
from .reports import to_json, write_reports
from .statistics import (
    PerformanceCounts,
    accept_call,
    bonferroni,
    classify_call,
    codon_probability,
    count_number_of_tests,
    fisher_excess_pvalue,
    is_variable_site,
    matches_expected_minor,
    performance_report,
    sum_counts,
)

logger = logging.getLogger(__name__)

DEFAULT_GENE_NAME = "unknown"


@dataclass(frozen=True)
class PositionTask:
    """One codon position of one gene."""
    gene_index: int
    ref_position: int


@dataclass(frozen=True)
class CallingContext:
    """Read-only inputs shared by every position of a run."""
    msa: MSAByRow
    columns: MSAByColumn
    genes: Tuple[TargetGene, ...]
    error_model: ErrorModel
    caller_config: CallerConfig
    reference_sequence: Optional[str] = None
    number_of_tests: int = 0

    @property
    def has_expected_minors(self) -> bool:
        return any(g.minors for g in self.genes)


@dataclass
class PositionCall:
    """Result of calling one position."""
    gene_index: int
    position: Optional[VariantPosition]
    performance: PerformanceCounts = field(default_factory=PerformanceCounts)


@dataclass
class VariantCalls:
    """Result of the calling phase, before phasing."""
    genes: List[VariantGene] = field(default_factory=list)
    number_of_tests: int = 0
    performance: Optional[PerformanceReport] = None


# ============================================================================
# Per-position workers
# ============================================================================

def _census_worker(task: PositionTask, msa: MSAByRow) -> CodonCensus:
    return codon_census(msa, task.ref_position)


def call_position(
    task: PositionTask,
    census: CodonCensus,
    context: CallingContext,
) -> PositionCall:
    """
    Test every codon of one position.

    Parameters
    ----------
    task : PositionTask
        Gene and absolute codon start
    census : CodonCensus
        Codon counts at the position
    context : CallingContext
        Run inputs

    Returns
    -------
    PositionCall
        The VariantPosition (None when the reference cannot be resolved) and
        the validation counts contributed by this position
    """
    gene = context.genes[task.gene_index]
    cfg = context.caller_config
    pos = task.ref_position
    codon_position = gene.codon_position(pos)

    reference = resolve_reference(census, pos, context.reference_sequence, cfg.max_perc)
    if reference is None:
        return PositionCall(gene_index=task.gene_index, position=None)

    variant_position = VariantPosition(
        ref_position=pos,
        codon_position=codon_position,
        ref_codon=reference.codon,
        ref_amino_acid=reference.amino_acid,
        gene_name=gene.name,
        coverage=census.coverage,
        alt_ref_codon=reference.alt_codon,
        alt_ref_amino_acid=reference.alt_amino_acid,
    )

    performance = PerformanceCounts()
    has_expected_minors = context.has_expected_minors

    for codon, count in census.counts.items():
        if reference.excludes(codon):
            continue

        amino_acid = translate(codon)
        expected = census.coverage * codon_probability(reference.codon, codon, context.error_model)
        p_value = bonferroni(
            fisher_excess_pvalue(count, census.coverage, expected),
            context.number_of_tests,
        )
        frequency = count / census.coverage
        variable_site = is_variable_site(count, census.coverage)
        predicted_minor = matches_expected_minor(gene, codon_position, codon)
        known_drm = find_drms(
            gene.name, context.genes, reference.amino_acid, codon_position, amino_acid
        )

        if has_expected_minors:
            performance = performance + classify_call(
                p_value < cfg.alpha, predicted_minor, variable_site
            )

        accepted = accept_call(
            p_value,
            frequency,
            cfg.alpha,
            debug=cfg.debug,
            min_perc=cfg.min_perc,
            drm_only=cfg.drm_only,
            has_expected_minors=has_expected_minors,
            predicted_minor=predicted_minor,
            known_drm=bool(known_drm),
            variable_site=variable_site,
        )
        if not accepted:
            continue

        variant_position.add_codon(
            amino_acid,
            VariantCodon(codon=codon, frequency=frequency, p_value=p_value, known_drm=known_drm),
        )
        log = logger.info if cfg.verbose else logger.debug
        log(
            f"{gene.name} {reference.amino_acid}{codon_position}{amino_acid} "
            f"{reference.codon}->{codon} freq={frequency:.4f} p={p_value:.3g}"
            + (f" DRM: {known_drm}" if known_drm else "")
        )

    if variant_position.is_variant:
        variant_position.msa = msa_context(
            context.msa, context.columns, pos, context.reference_sequence
        )

    return PositionCall(
        gene_index=task.gene_index,
        position=variant_position,
        performance=performance,
    )


def _call_worker(item: Tuple[PositionTask, CodonCensus], context: CallingContext) -> PositionCall:
    task, census = item
    return call_position(task, census, context)


def _map(worker, items: Sequence[Any], n_threads: int) -> List[Any]:
    if n_threads > 1:
        with mp.Pool(processes=n_threads) as pool:
            return pool.map(worker, items)
    return list(map(worker, items))


# ============================================================================
# Calling phase
# ============================================================================

def resolve_genes(msa: MSAByRow, target_config: TargetConfig) -> Tuple[TargetGene, ...]:
    """Configured genes, or the whole alignment window as one 'unknown' gene."""
    if target_config.genes:
        return target_config.genes
    if msa.end_pos <= msa.begin_pos:
        return ()
    return (TargetGene(begin=msa.begin_pos, end=msa.end_pos, name=DEFAULT_GENE_NAME),)


def call_variants(
    msa: MSAByRow,
    error_model: ErrorModel,
    target_config: TargetConfig,
    caller_config: CallerConfig,
    columns: Optional[MSAByColumn] = None,
) -> VariantCalls:
    """
    Call amino-acid variants at every codon position of every gene.

    Parameters
    ----------
    msa : MSAByRow
        Aligned reads
    error_model : ErrorModel
        Sequencing error model
    target_config : TargetConfig
        Genes and optional reference sequence
    caller_config : CallerConfig
        Thresholds and run flags
    columns : MSAByColumn, optional
        Column view of ``msa``; built when not given

    Returns
    -------
    VariantCalls
        Genes holding at least one variant position, in configuration order,
        the number of tests and, with expected minors, the validation report
    """
    genes = resolve_genes(msa, target_config)
    if columns is None:
        columns = MSAByColumn(msa)

    tasks = [
        PositionTask(gene_index=i, ref_position=pos)
        for i, gene in enumerate(genes)
        for pos in gene.codon_starts()
    ]
    n_threads = caller_config.n_threads
    logger.info(f"Calling {len(tasks)} codon positions in {len(genes)} genes")

    censuses = _map(partial(_census_worker, msa=msa), tasks, n_threads)
    number_of_tests = count_number_of_tests(censuses)
    logger.info(f"Number of tests for multiple-testing correction: {number_of_tests}")

    context = CallingContext(
        msa=msa,
        columns=columns,
        genes=genes,
        error_model=error_model,
        caller_config=caller_config,
        reference_sequence=target_config.reference_sequence,
        number_of_tests=number_of_tests,
    )
    calls = _map(partial(_call_worker, context=context), list(zip(tasks, censuses)), n_threads)

    variant_genes = [
        VariantGene(gene_name=gene.name, gene_offset=gene.begin) for gene in genes
    ]
    for call in calls:
        if call.position is not None:
            variant_genes[call.gene_index].positions[call.position.codon_position] = call.position

    performance = None
    if context.has_expected_minors:
        counts = sum_counts(call.performance for call in calls)
        performance = performance_report(
            counts,
            number_of_tests,
            target_config.number_of_expected_minors,
        )
        log = logger.info if caller_config.verbose else logger.debug
        log(
            f"Performance: TPR={performance.true_positive_rate:.4f} "
            f"FPR={performance.false_positive_rate:.4f} "
            f"ACC={performance.accuracy:.4f} FP={counts.false_positives}"
        )

    kept = [g for g in variant_genes if g.has_variants]
    n_variant_positions = sum(len(g.variant_positions()) for g in kept)
    logger.info(f"Called {n_variant_positions} variant positions in {len(kept)} genes")

    return VariantCalls(genes=kept, number_of_tests=number_of_tests, performance=performance)


# ============================================================================
# Caller
# ============================================================================

class AminoAcidCaller:
    """
    Variant calling followed by haplotype phasing.

    Parameters
    ----------
    msa : MSAByRow
        Aligned reads
    error_model : ErrorModel
        Sequencing error model
    target_config : TargetConfig
        Genes and optional reference sequence
    caller_config : CallerConfig
        Thresholds and run flags

    Attributes
    ----------
    variant_genes : List[VariantGene]
    haplotypes : List[Haplotype]
        Ranked generator haplotypes
    filtered_haplotypes : List[Haplotype]
    summary : HaplotypeSummary
    performance : Optional[PerformanceReport]
    number_of_tests : int
    """

    def __init__(
        self,
        msa: MSAByRow,
        error_model: Optional[ErrorModel] = None,
        target_config: Optional[TargetConfig] = None,
        caller_config: Optional[CallerConfig] = None,
    ):
        self.msa = msa
        self.error_model = error_model or ErrorModel()
        self.target_config = target_config or TargetConfig()
        self.caller_config = caller_config or CallerConfig()
        self.columns = MSAByColumn(msa)

        calls = call_variants(
            msa, self.error_model, self.target_config, self.caller_config, self.columns
        )
        self.variant_genes: List[VariantGene] = calls.genes
        self.number_of_tests: int = calls.number_of_tests
        self.performance: Optional[PerformanceReport] = calls.performance

        phasing = phase_variants(
            msa,
            self.variant_genes,
            low_coverage=self.caller_config.low_coverage,
            merge_outliers=self.caller_config.merge_outliers,
            error_model=self.error_model,
        )
        self.haplotypes: List[Haplotype] = phasing.haplotypes
        self.filtered_haplotypes: List[Haplotype] = phasing.filtered
        self.summary: HaplotypeSummary = phasing.summary
        self.variant_positions: List[VariantPosition] = phasing.positions

    def result(self) -> CallerResult:
        return CallerResult(
            genes=self.variant_genes,
            haplotypes=self.haplotypes,
            filtered_haplotypes=self.filtered_haplotypes,
            variant_positions=self.variant_positions,
            summary=self.summary,
            number_of_tests=self.number_of_tests,
            performance=self.performance,
        )

    def to_json(self) -> Dict[str, Any]:
        return to_json(self.result())


def run_caller(
    alignment_path: Union[str, Path],
    config: Optional[PipelineConfig] = None,
    begin_pos: int = 1,
    output_dir: Optional[Union[str, Path]] = None,
) -> CallerResult:
    """
    Run the complete calling workflow from an aligned FASTA.

    Parameters
    ----------
    alignment_path : Union[str, Path]
        Aligned reads
    config : PipelineConfig, optional
        Run configuration (default: get_default_config())
    begin_pos : int
        Absolute position of the first alignment column (default: 1)
    output_dir : Union[str, Path], optional
        Where to write reports (default: config.output_dir)

    Returns
    -------
    CallerResult
        Calls, haplotypes and summaries of the run
    """
    config = config or get_default_config()

    logger.info("=" * 70)
    logger.info("AACaller: amino-acid variant calling")
    logger.info("=" * 70)

    logger.info(f"Step 1/3: Loading alignment from {alignment_path}")
    msa = load_msa(alignment_path, begin_pos=begin_pos)

    logger.info("Step 2/3: Calling variants and phasing haplotypes")
    caller = AminoAcidCaller(msa, config.error_model, config.target, config.caller)
    result = caller.result()

    logger.info(
        f"Reported {len(result.haplotypes)} haplotypes from "
        f"{result.summary.reported} of {len(msa)} reads"
    )

    out_dir = Path(output_dir) if output_dir is not None else config.output_dir
    logger.info(f"Step 3/3: Writing reports to {out_dir}")
    write_reports(result, out_dir, config.output_prefix)

    logger.info("=" * 70)
    logger.info("AACaller run complete")
    logger.info("=" * 70)
    return result
