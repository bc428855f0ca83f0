"""
Statistical Testing of Codon Calls

Decides whether a codon observed at a position is more frequent than
sequencing noise would explain, and scores calls against configured expected
minor variants.

Test:
    Under a position-independent single-base error model, the chance that a
    read of the reference codon shows a given codon is the product of per-base
    match, substitution or deletion probabilities. The expected count is that
    probability times coverage. A one-sided Fisher exact test compares the
    observed count with the rounded expected count, and the p-value is
    Bonferroni-corrected by the number of tests of the whole run.

Validation:
    When expected minors are configured, each tested codon at a variable site
    (relative coverage below 80%) is classified as TP, FP, FN or TN.
    Per-position counts are returned as PerformanceCounts values and summed.

Author: Steph Smith (steph.smith@unc.edu)
"""

from typing import Iterable, NamedTuple
import logging
import math

from scipy.stats import fisher_exact

from .codons import CodonCensus
from .models import PerformanceReport, TargetGene
from .msa import GAP

logger = logging.getLogger(__name__)

VARIABLE_SITE_THRESHOLD = 0.8


def codon_probability(codon_a: str, codon_b: str, error_model) -> float:
    """
    Probability that ``codon_a`` is read as ``codon_b``.

    Parameters
    ----------
    codon_a, codon_b : str
        Triplets; '-' marks a deleted base
    error_model : ErrorModel
        Per-base match, substitution and deletion probabilities

    Returns
    -------
    float
        Product of the three per-base probabilities
    """
    p = 1.0
    for a, b in zip(codon_a, codon_b):
        if a == GAP or b == GAP:
            p *= error_model.deletion
        elif a == b:
            p *= error_model.match
        else:
            p *= error_model.substitution
    return p


def fisher_excess_pvalue(observed: int, coverage: int, expected: float) -> float:
    """
    One-sided Fisher exact p-value that ``observed`` exceeds ``expected``.

    The expected count is rounded half up and clamped to [0, coverage].
    """
    if coverage <= 0:
        return 1.0
    expected_count = min(max(int(math.floor(expected + 0.5)), 0), coverage)
    table = [
        [observed, coverage - observed],
        [expected_count, coverage - expected_count],
    ]
    _, p_value = fisher_exact(table, alternative="greater")
    return float(p_value)


def bonferroni(p_value: float, number_of_tests: int) -> float:
    return min(1.0, p_value * max(number_of_tests, 1))


def count_number_of_tests(censuses: Iterable[CodonCensus]) -> int:
    """
    Total number of tests of a run.

    Sum over the censuses of every codon position of every gene of the number
    of distinct valid codons. Reference and alternate-reference codons are
    counted too.
    """
    return sum(len(census.counts) for census in censuses)


def is_variable_site(count: int, coverage: int) -> bool:
    """True when the codon covers less than 80% of the reads."""
    if coverage <= 0:
        return False
    return count / coverage < VARIABLE_SITE_THRESHOLD


def matches_expected_minor(gene: TargetGene, codon_position: int, codon: str) -> bool:
    return any(m.position == codon_position and m.codon == codon for m in gene.minors)


def accept_call(
    p_value: float,
    frequency: float,
    alpha: float,
    *,
    debug: bool = False,
    min_perc: float = 0.0,
    drm_only: bool = False,
    has_expected_minors: bool = False,
    predicted_minor: bool = False,
    known_drm: bool = False,
    variable_site: bool = False,
) -> bool:
    """
    Whether a tested codon is reported.

    In debug mode every codon at or above ``min_perc`` percent is reported.
    Otherwise the corrected p-value must be below ``alpha`` and one of the
    following must hold: the codon is a predicted minor; DRM-only mode is on
    and the codon is a known DRM; DRM-only mode is off and no expected minors
    are configured; DRM-only mode is off and the site is variable.
    """
    if debug:
        return frequency * 100.0 >= min_perc

    if p_value >= alpha:
        return False
    if predicted_minor:
        return True
    if drm_only:
        return known_drm
    if not has_expected_minors:
        return True
    return variable_site


# ============================================================================
# Performance tracking
# ============================================================================

class PerformanceCounts(NamedTuple):
    """Confusion-matrix counts; combine with ``+`` or ``sum``."""
    true_positives: int = 0
    false_positives: int = 0
    false_negatives: int = 0
    true_negatives: int = 0

    def __add__(self, other):
        if not isinstance(other, PerformanceCounts):
            return NotImplemented
        return PerformanceCounts(*(a + b for a, b in zip(self, other)))

    def __radd__(self, other):
        # sum() starts from 0
        if other == 0:
            return self
        return NotImplemented

    @property
    def total(self) -> int:
        return sum(self)


def classify_call(significant: bool, expected: bool, variable_site: bool) -> PerformanceCounts:
    """Counts contributed by one tested codon; only variable sites are classified."""
    if not variable_site:
        return PerformanceCounts()
    if significant and expected:
        return PerformanceCounts(true_positives=1)
    if significant:
        return PerformanceCounts(false_positives=1)
    if expected:
        return PerformanceCounts(false_negatives=1)
    return PerformanceCounts(true_negatives=1)


def _rate(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator > 0 else 0.0


def performance_report(
    counts: PerformanceCounts,
    number_of_tests: int,
    number_of_expected_minors: int,
) -> PerformanceReport:
    """
    Summarize validation counts.

    Parameters
    ----------
    counts : PerformanceCounts
        Folded counts of the run
    number_of_tests : int
        Multiple-testing divisor of the run
    number_of_expected_minors : int
        Expected minors configured over all genes

    Returns
    -------
    PerformanceReport
        Rates with zero denominators reported as 0.0
    """
    return PerformanceReport(
        true_positive_rate=_rate(counts.true_positives, number_of_expected_minors),
        false_positive_rate=_rate(
            counts.false_positives, number_of_tests - number_of_expected_minors
        ),
        accuracy=_rate(counts.true_positives + counts.true_negatives, counts.total),
        number_of_tests=number_of_tests,
        true_positives=counts.true_positives,
        false_positives=counts.false_positives,
        false_negatives=counts.false_negatives,
        true_negatives=counts.true_negatives,
    )


def sum_counts(parts: Iterable[PerformanceCounts]) -> PerformanceCounts:
    return sum(parts, PerformanceCounts())
