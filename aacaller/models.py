"""
Data Models for Amino-Acid Variant Calling and Haplotype Phasing

This module defines the data structures shared by the caller, the phaser and
the report writers:

- Target configuration records: MinorVariant, DRMRule, TargetGene
- Variant calls: VariantCodon, VariantPosition, VariantGene
- Haplotypes: HaplotypeFlag, Haplotype, HaplotypeSummary
- Run-level results: PerformanceReport, CallerResult

Coordinates are 1-based absolute reference positions. Codon positions are
1-based and relative to the start of their gene.

Author: Steph Smith (steph.smith@unc.edu)
"""

from dataclasses import dataclass, field
from enum import IntFlag
from typing import Dict, FrozenSet, Iterator, List, Optional, Tuple, Any


# ============================================================================
# Target configuration records
# ============================================================================

@dataclass(frozen=True)
class MinorVariant:
    """
    An expected (ground-truth) minor variant at a codon position.

    Attributes
    ----------
    position : int
        1-based codon position relative to the gene start
    amino_acid : str
        One-letter amino acid encoded by ``codon``
    codon : str
        Expected codon (uppercase DNA triplet)
    """
    position: int
    amino_acid: str
    codon: str


@dataclass(frozen=True)
class DRMRule:
    """
    A named set of drug-resistance mutations.

    Attributes
    ----------
    name : str
        Rule set name reported with matching calls (e.g. "PI major")
    mutations : FrozenSet[Tuple[str, int, str]]
        (reference amino acid, codon position, variant amino acid) triples
    """
    name: str
    mutations: FrozenSet[Tuple[str, int, str]] = frozenset()

    def matches(self, ref_amino_acid: str, position: int, variant_amino_acid: str) -> bool:
        return (ref_amino_acid, position, variant_amino_acid) in self.mutations


@dataclass(frozen=True)
class TargetGene:
    """
    A gene region to call variants in.

    Attributes
    ----------
    begin : int
        1-based absolute position of the first base of the first codon
    end : int
        Exclusive 1-based absolute end of the region
    name : str
        Gene name
    minors : Tuple[MinorVariant, ...]
        Expected minor variants, used for predictor gating and validation
    drms : Tuple[DRMRule, ...]
        Drug-resistance rule sets for this gene
    """
    begin: int
    end: int
    name: str
    minors: Tuple[MinorVariant, ...] = ()
    drms: Tuple[DRMRule, ...] = ()

    def __post_init__(self):
        if self.end <= self.begin:
            raise ValueError(
                f"Gene '{self.name}' must end after it begins "
                f"(begin={self.begin}, end={self.end})"
            )
        object.__setattr__(self, 'minors', tuple(self.minors))
        object.__setattr__(self, 'drms', tuple(self.drms))

    def codon_starts(self) -> range:
        """Absolute positions of every codon that fits inside the region."""
        return range(self.begin, self.end - 2, 3)

    def codon_position(self, pos: int) -> int:
        return 1 + (pos - self.begin) // 3


# ============================================================================
# Variant calls
# ============================================================================

@dataclass
class VariantCodon:
    """
    A statistically supported codon at a variant position.

    ``haplotype_hit`` is filled during phasing with one entry per ranked
    generator haplotype; every other field is fixed at creation.
    """
    codon: str
    frequency: float
    p_value: float
    known_drm: str = ""
    haplotype_hit: List[bool] = field(default_factory=list)


@dataclass
class VariantPosition:
    """
    Calling result for one codon-aligned position.

    Attributes
    ----------
    ref_position : int
        Absolute position of the first base of the codon
    codon_position : int
        1-based codon position relative to the gene start
    ref_codon, ref_amino_acid : str
        Reference codon and its translation
    gene_name : str
        Name of the gene the position belongs to
    coverage : int
        Reads spanning the codon with a valid, ungapped triplet
    alt_ref_codon, alt_ref_amino_acid : Optional[str]
        Majority codon that disagrees with an external reference
    amino_acid_to_codons : Dict[str, List[VariantCodon]]
        Accepted variant codons grouped by amino acid
    msa : List[Dict[str, Any]]
        Per-base tallies around the codon, filled for variant positions
    """
    ref_position: int
    codon_position: int
    ref_codon: str
    ref_amino_acid: str
    gene_name: str = ""
    coverage: int = 0
    alt_ref_codon: Optional[str] = None
    alt_ref_amino_acid: Optional[str] = None
    amino_acid_to_codons: Dict[str, List[VariantCodon]] = field(default_factory=dict)
    msa: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def is_variant(self) -> bool:
        return any(self.amino_acid_to_codons.values())

    def add_codon(self, amino_acid: str, variant_codon: VariantCodon) -> None:
        self.amino_acid_to_codons.setdefault(amino_acid, []).append(variant_codon)

    def variant_codons(self) -> Iterator[VariantCodon]:
        for codons in self.amino_acid_to_codons.values():
            yield from codons

    def is_hit(self, codon: str) -> bool:
        return any(vc.codon == codon for vc in self.variant_codons())

    def is_reference(self, codon: str) -> bool:
        return codon == self.ref_codon or codon == self.alt_ref_codon


@dataclass
class VariantGene:
    """Calling results of one gene, keyed by codon position in gene order."""
    gene_name: str
    gene_offset: int
    positions: Dict[int, VariantPosition] = field(default_factory=dict)

    def variant_positions(self) -> List[VariantPosition]:
        return [vp for vp in self.positions.values() if vp.is_variant]

    @property
    def has_variants(self) -> bool:
        return any(vp.is_variant for vp in self.positions.values())


# ============================================================================
# Haplotypes
# ============================================================================

class HaplotypeFlag(IntFlag):
    """Quality issues that keep a read cluster from being a generator."""
    NONE = 0
    OFFTARGET = 1
    LOW_COV = 2
    WITH_GAP = 4
    WITH_HETERODUPLEX = 8
    PARTIAL = 16


@dataclass
class Haplotype:
    """
    A cluster of reads sharing the same codons at every variant slot.

    ``codons[k]`` is the codon observed at variant slot ``slots[k]``. Reads
    that do not span every slot have fewer entries than full-length clusters.
    Flags can only be added; there is no way to clear one.
    """
    codons: Tuple[str, ...]
    slots: Tuple[int, ...]
    read_names: List[str] = field(default_factory=list)
    soft_collapses: float = 0.0
    name: str = ""
    global_frequency: float = 0.0
    _flags: HaplotypeFlag = field(default=HaplotypeFlag.NONE, init=False, repr=False)

    @property
    def flags(self) -> HaplotypeFlag:
        return self._flags

    def add_flag(self, flag: HaplotypeFlag) -> None:
        self._flags = HaplotypeFlag(self._flags | flag)

    def has_flag(self, flag: HaplotypeFlag) -> bool:
        return bool(self._flags & flag)

    @property
    def size(self) -> int:
        return len(self.read_names)

    @property
    def is_generator(self) -> bool:
        return self._flags == HaplotypeFlag.NONE


@dataclass
class HaplotypeSummary:
    """Run-level read counts by haplotype category."""
    reported: int = 0
    low_coverage: int = 0
    off_target: int = 0
    with_gap: int = 0
    with_heteroduplex: int = 0
    partial: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "reported": self.reported,
            "low_coverage": self.low_coverage,
            "off_target": self.off_target,
            "with_gap": self.with_gap,
            "with_heteroduplex": self.with_heteroduplex,
            "partial": self.partial,
        }


# ============================================================================
# Run-level results
# ============================================================================

@dataclass(frozen=True)
class PerformanceReport:
    """
    Validation metrics against configured expected minors.

    Only produced when ground truth is configured. Rates with a zero
    denominator are reported as 0.0.
    """
    true_positive_rate: float
    false_positive_rate: float
    accuracy: float
    number_of_tests: int
    true_positives: int
    false_positives: int
    false_negatives: int
    true_negatives: int

    def to_dict(self) -> Dict[str, float]:
        return {
            "true_positive_rate": self.true_positive_rate,
            "false_positive_rate": self.false_positive_rate,
            "number_of_tests": self.number_of_tests,
            "accuracy": self.accuracy,
            "true_positives": self.true_positives,
            "false_positives": self.false_positives,
            "false_negatives": self.false_negatives,
            "true_negatives": self.true_negatives,
        }


@dataclass
class CallerResult:
    """
    Everything one calling run produces.

    Attributes
    ----------
    genes : List[VariantGene]
        Genes with at least one variant position, in configuration order
    haplotypes : List[Haplotype]
        Ranked and named generator haplotypes
    filtered_haplotypes : List[Haplotype]
        Clusters explained as noise, in discovery order
    variant_positions : List[VariantPosition]
        The ordered haplotype slots
    summary : HaplotypeSummary
        Read counts by haplotype category
    number_of_tests : int
        Multiple-testing divisor used for every p-value of the run
    performance : Optional[PerformanceReport]
        Validation metrics when expected minors are configured
    """
    genes: List[VariantGene] = field(default_factory=list)
    haplotypes: List[Haplotype] = field(default_factory=list)
    filtered_haplotypes: List[Haplotype] = field(default_factory=list)
    variant_positions: List[VariantPosition] = field(default_factory=list)
    summary: HaplotypeSummary = field(default_factory=HaplotypeSummary)
    number_of_tests: int = 0
    performance: Optional[PerformanceReport] = None
