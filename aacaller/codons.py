"""
Codon Census and Reference Resolution

Tabulates the codons observed at a codon-aligned position across all reads
and chooses the reference codon the variant test compares against.

Census rules:
- A read counts toward a position only if all three bases are covered,
  none is a gap, and the triplet is a sense codon of the standard code
- Stop codons and triplets with ambiguous bases are discarded
- Coverage is the number of reads that pass these checks

Reference rules:
- With an external reference sequence, the reference codon is read from it;
  a non-coding reference codon skips the position
- A majority codon that disagrees with the external reference and exceeds
  ``max_perc`` percent of coverage is recorded as an alternate reference
- Without a reference sequence, the majority codon is the reference

Author: Steph Smith (steph.smith@unc.edu)
"""

from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import logging

from Bio.Data import CodonTable

from .msa import MSAByColumn, MSAByRow, GAP, UNCOVERED

logger = logging.getLogger(__name__)

# Sense codons only; stops are absent from the forward table
CODON_TO_AMINO_ACID: Dict[str, str] = dict(CodonTable.standard_dna_table.forward_table)

# Offsets of the MSA context window relative to a codon start
CONTEXT_OFFSETS = range(-3, 6)


def is_coding(codon: Optional[str]) -> bool:
    return codon is not None and codon in CODON_TO_AMINO_ACID


def translate(codon: str) -> str:
    """One-letter amino acid for a sense codon."""
    return CODON_TO_AMINO_ACID[codon]


@dataclass(frozen=True)
class CodonCensus:
    """
    Codon counts at one position.

    Attributes
    ----------
    counts : Dict[str, int]
        Valid codon -> number of reads, ordered by codon string
    coverage : int
        Number of reads with a valid codon (sum of counts)
    """
    counts: Dict[str, int]
    coverage: int

    def majority(self) -> Optional[str]:
        """Most frequent codon; ties go to the first codon in sort order."""
        best = None
        best_count = 0
        for codon, count in self.counts.items():
            if count > best_count:
                best, best_count = codon, count
        return best


@dataclass(frozen=True)
class ReferenceCall:
    """Reference (and optional alternate reference) chosen for a position."""
    codon: str
    amino_acid: str
    alt_codon: Optional[str] = None
    alt_amino_acid: Optional[str] = None

    def excludes(self, codon: str) -> bool:
        return codon == self.codon or codon == self.alt_codon


def codon_census(msa: MSAByRow, pos: int) -> CodonCensus:
    """
    Count valid codons starting at absolute position ``pos``.

    Parameters
    ----------
    msa : MSAByRow
        Aligned reads
    pos : int
        Absolute 1-based position of the codon's first base

    Returns
    -------
    CodonCensus
        Counts of sense codons and the resulting coverage
    """
    counter: Counter = Counter()
    for row in msa:
        codon = row.codon_at(pos)
        if UNCOVERED in codon or GAP in codon:
            continue
        if not is_coding(codon):
            continue
        counter[codon] += 1

    counts = {codon: counter[codon] for codon in sorted(counter)}
    return CodonCensus(counts=counts, coverage=sum(counts.values()))


def resolve_reference(
    census: CodonCensus,
    pos: int,
    reference_sequence: Optional[str] = None,
    max_perc: float = 100.0,
) -> Optional[ReferenceCall]:
    """
    Choose the reference codon for a position.

    Parameters
    ----------
    census : CodonCensus
        Codon counts at ``pos``
    pos : int
        Absolute 1-based codon start
    reference_sequence : str, optional
        External reference; indexed so that ``reference_sequence[pos - 1]``
        is the base at ``pos``
    max_perc : float
        Percentage of coverage above which a disagreeing majority codon is
        recorded as alternate reference (default: 100.0, never)

    Returns
    -------
    Optional[ReferenceCall]
        None when the position has to be skipped
    """
    majority = census.majority()

    if reference_sequence:
        ref_codon = reference_sequence[pos - 1:pos + 2]
        if not is_coding(ref_codon):
            logger.debug(f"Position {pos}: non-coding reference codon '{ref_codon}', skipped")
            return None

        call = ReferenceCall(codon=ref_codon, amino_acid=translate(ref_codon))
        if majority is not None and majority != ref_codon and census.coverage > 0:
            share = 100.0 * census.counts[majority] / census.coverage
            if share > max_perc:
                call = ReferenceCall(
                    codon=ref_codon,
                    amino_acid=call.amino_acid,
                    alt_codon=majority,
                    alt_amino_acid=translate(majority),
                )
        return call

    if census.coverage == 0 or not is_coding(majority):
        logger.debug(f"Position {pos}: no majority codon, skipped")
        return None
    return ReferenceCall(codon=majority, amino_acid=translate(majority))


def msa_context(
    msa: MSAByRow,
    columns: MSAByColumn,
    pos: int,
    reference_sequence: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Base tallies around a codon for reporting.

    Covers offsets -3..+5 from the codon start that fall inside the alignment
    window. ``wt`` is the reference base, or the column's most frequent base
    when no reference sequence is configured.
    """
    context = []
    for rel_pos in CONTEXT_OFFSETS:
        abs_pos = pos + rel_pos
        if abs_pos < msa.begin_pos or abs_pos >= msa.end_pos:
            continue

        if reference_sequence and 0 < abs_pos <= len(reference_sequence):
            wt = reference_sequence[abs_pos - 1]
        else:
            wt = columns.most_frequent_base(abs_pos)

        entry: Dict[str, Any] = {"rel_pos": rel_pos, "abs_pos": abs_pos}
        entry.update(columns.counts(abs_pos).as_dict())
        entry["wt"] = wt
        context.append(entry)
    return context
