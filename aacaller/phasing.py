"""
Haplotype Phasing

Groups reads into haplotypes using the codons they carry at every called
variant position, then separates real haplotypes from noise.

Pipeline Steps:
1. Discovery: every variant position of every gene, ordered by position
2. Clustering: reads with identical codons at identical slots share a cluster
3. Classification: clusters with quality flags (or too few reads) are filtered;
   flag-free clusters are generators
4. Soft-collapse (optional): each filtered cluster's reads are spread over the
   generators as fractional mass, weighted by generator size and by how likely
   the generator's codons turn into the filtered codons
5. Ranking & naming: generators sorted by size, named A, B, ..., with global
   frequencies and the per-haplotype hit matrix of every variant codon

Reads that do not span every variant position are flagged PARTIAL and only
ever cluster with reads spanning the same slots.

Author: Steph Smith (steph.smith@unc.edu)
"""

from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Dict, List, Optional, Sequence, Tuple
import logging

from .models import (
    Haplotype,
    HaplotypeFlag,
    HaplotypeSummary,
    VariantGene,
    VariantPosition,
)
from .msa import MSAByRow, MSARow, GAP, UNCOVERED
from .statistics import codon_probability

logger = logging.getLogger(__name__)

# Transition probability from a generator codon to an observed codon
TransitionFunction = Callable[[str, str], float]


@dataclass
class PhasingResult:
    """Output of phase_variants."""
    haplotypes: List[Haplotype] = field(default_factory=list)
    filtered: List[Haplotype] = field(default_factory=list)
    summary: HaplotypeSummary = field(default_factory=HaplotypeSummary)
    positions: List[VariantPosition] = field(default_factory=list)


def discover_variant_positions(genes: Sequence[VariantGene]) -> List[VariantPosition]:
    """Variant positions of all genes, ordered by absolute position."""
    positions = [vp for gene in genes for vp in gene.positions.values() if vp.is_variant]
    return sorted(positions, key=lambda vp: vp.ref_position)


def extract_haplotype(
    row: MSARow,
    positions: Sequence[VariantPosition],
) -> Tuple[Tuple[str, ...], Tuple[int, ...], HaplotypeFlag]:
    """
    Codons of one read at every variant slot.

    Parameters
    ----------
    row : MSARow
        Aligned read
    positions : Sequence[VariantPosition]
        Ordered variant slots

    Returns
    -------
    Tuple[Tuple[str, ...], Tuple[int, ...], HaplotypeFlag]
        Observed codons, the slot index of each codon, and the read's flags.
        Uncovered slots are left out and flag the read PARTIAL.
    """
    codons = []
    slots = []
    flags = HaplotypeFlag(row.flags)

    for slot, position in enumerate(positions):
        codon = row.codon_at(position.ref_position)
        if UNCOVERED in codon:
            flags |= HaplotypeFlag.PARTIAL
            continue

        if GAP in codon:
            flags |= HaplotypeFlag.WITH_GAP
        if not (position.is_reference(codon) or position.is_hit(codon)):
            flags |= HaplotypeFlag.OFFTARGET

        codons.append(codon)
        slots.append(slot)

    return tuple(codons), tuple(slots), flags


def cluster_reads(msa: MSAByRow, positions: Sequence[VariantPosition]) -> List[Haplotype]:
    """
    Assign every read to exactly one cluster.

    Clusters are returned in order of first appearance.
    """
    clusters: Dict[Tuple[Tuple[int, ...], Tuple[str, ...]], Haplotype] = {}

    for row in msa:
        codons, slots, flags = extract_haplotype(row, positions)
        key = (slots, codons)
        haplotype = clusters.get(key)
        if haplotype is None:
            haplotype = Haplotype(codons=codons, slots=slots)
            clusters[key] = haplotype
        haplotype.read_names.append(row.read_name)
        haplotype.add_flag(flags)

    logger.debug(f"Clustered {len(msa)} reads into {len(clusters)} haplotypes")
    return list(clusters.values())


def classify_haplotypes(
    haplotypes: Sequence[Haplotype],
    low_coverage: int = 10,
) -> Tuple[List[Haplotype], List[Haplotype]]:
    """
    Split clusters into generators and filtered clusters.

    Clusters with fewer than ``low_coverage`` reads are flagged LOW_COV.
    Clusters without any flag are generators.
    """
    generators = []
    filtered = []
    for haplotype in haplotypes:
        if haplotype.size < low_coverage:
            haplotype.add_flag(HaplotypeFlag.LOW_COV)
        if haplotype.is_generator:
            generators.append(haplotype)
        else:
            filtered.append(haplotype)
    return generators, filtered


def _joint_transition(
    generator: Haplotype,
    observed: Haplotype,
    transition: TransitionFunction,
) -> float:
    generator_codons = dict(zip(generator.slots, generator.codons))
    p = 1.0
    for slot, codon in zip(observed.slots, observed.codons):
        generator_codon = generator_codons.get(slot)
        if generator_codon is None:
            continue
        t = transition(generator_codon, codon)
        # Zero transitions are left out of the product
        if t > 0:
            p *= t
    return p


def soft_collapse(
    generators: Sequence[Haplotype],
    filtered: Sequence[Haplotype],
    transition: TransitionFunction,
) -> None:
    """
    Spread each filtered cluster's reads over the generators.

    For one filtered cluster, the joint transition probability from each
    generator is normalized into relative likelihoods, multiplied by the
    generator's share of all generator reads and normalized again. The
    cluster's read count times that weight is added to each generator's
    ``soft_collapses``. Reads never move between clusters.

    Parameters
    ----------
    generators : Sequence[Haplotype]
        Generator haplotypes; updated in place
    filtered : Sequence[Haplotype]
        Filtered clusters; left unchanged
    transition : TransitionFunction
        Probability that a generator codon is observed as another codon
    """
    if not generators:
        return

    total_size = sum(g.size for g in generators)
    if total_size == 0:
        return

    for observed in filtered:
        probabilities = [_joint_transition(g, observed, transition) for g in generators]
        total = sum(probabilities)
        if total <= 0:
            continue
        likelihoods = [p / total for p in probabilities]

        weights = [lk * g.size / total_size for lk, g in zip(likelihoods, generators)]
        weight_sum = sum(weights)
        if weight_sum <= 0:
            continue

        for generator, weight in zip(generators, weights):
            generator.soft_collapses += observed.size * weight / weight_sum


def haplotype_name(rank: int) -> str:
    """
    Base-26 name of a rank: an upper-case leading letter, lower-case after.

    A..Z for the first 26 ranks, 'Ba'..'Zz' up to rank 675, then 'Baa' for
    rank 676 and so on, so names never run out of letters.
    """
    if rank < 0:
        raise ValueError(f"Haplotype rank must be >= 0, got {rank}")
    letters = []
    while rank >= 26:
        rank, digit = divmod(rank, 26)
        letters.append(chr(ord('a') + digit))
    letters.append(chr(ord('A') + rank))
    return ''.join(reversed(letters))


def rank_and_name(
    generators: Sequence[Haplotype],
    positions: Sequence[VariantPosition],
) -> List[Haplotype]:
    """
    Sort generators by read count, name them and fill the hit matrix.

    The sort is stable, so equally sized generators keep discovery order.
    Every variant codon receives one hit flag per generator, in rank order.
    """
    ranked = sorted(generators, key=lambda h: h.size, reverse=True)
    total_size = sum(h.size for h in ranked)

    for rank, haplotype in enumerate(ranked):
        haplotype.name = haplotype_name(rank)
        haplotype.global_frequency = haplotype.size / total_size if total_size else 0.0

        observed = dict(zip(haplotype.slots, haplotype.codons))
        for slot, position in enumerate(positions):
            codon = observed.get(slot)
            for variant_codon in position.variant_codons():
                variant_codon.haplotype_hit.append(variant_codon.codon == codon)

    return ranked


def summarize_flags(
    generators: Sequence[Haplotype],
    filtered: Sequence[Haplotype],
) -> HaplotypeSummary:
    """Read counts per category; a filtered read counts once per flag it carries."""
    summary = HaplotypeSummary(reported=sum(g.size for g in generators))
    for haplotype in filtered:
        if haplotype.has_flag(HaplotypeFlag.LOW_COV):
            summary.low_coverage += haplotype.size
        if haplotype.has_flag(HaplotypeFlag.OFFTARGET):
            summary.off_target += haplotype.size
        if haplotype.has_flag(HaplotypeFlag.WITH_GAP):
            summary.with_gap += haplotype.size
        if haplotype.has_flag(HaplotypeFlag.WITH_HETERODUPLEX):
            summary.with_heteroduplex += haplotype.size
        if haplotype.has_flag(HaplotypeFlag.PARTIAL):
            summary.partial += haplotype.size
    return summary


def phase_variants(
    msa: MSAByRow,
    genes: Sequence[VariantGene],
    low_coverage: int = 10,
    merge_outliers: bool = False,
    error_model=None,
    transition: Optional[TransitionFunction] = None,
) -> PhasingResult:
    """
    Reconstruct haplotypes from called variant positions.

    Parameters
    ----------
    msa : MSAByRow
        Aligned reads
    genes : Sequence[VariantGene]
        Calling results; variant codons receive their hit flags here
    low_coverage : int
        Minimum cluster size of a generator (default: 10)
    merge_outliers : bool
        Run soft-collapse (default: False)
    error_model : ErrorModel, optional
        Used for the default transition function
    transition : TransitionFunction, optional
        Overrides the error-model transition probabilities

    Returns
    -------
    PhasingResult
        Ranked generators, filtered clusters and read-count summary
    """
    positions = discover_variant_positions(genes)
    if not positions:
        logger.info("No variant positions; skipping haplotype phasing")
        return PhasingResult()

    logger.info(f"Phasing {len(msa)} reads over {len(positions)} variant positions")

    clusters = cluster_reads(msa, positions)
    generators, filtered = classify_haplotypes(clusters, low_coverage)
    logger.info(f"Found {len(generators)} generator haplotypes and {len(filtered)} filtered clusters")

    if merge_outliers:
        if transition is None:
            if error_model is None:
                raise ValueError("merge_outliers needs an error model or a transition function")
            transition = partial(codon_probability, error_model=error_model)
        soft_collapse(generators, filtered, transition)

    ranked = rank_and_name(generators, positions)
    summary = summarize_flags(ranked, filtered)

    return PhasingResult(
        haplotypes=ranked,
        filtered=filtered,
        summary=summary,
        positions=positions,
    )
