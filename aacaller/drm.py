"""
Drug-Resistance Mutation Annotation

Looks up configured DRM rule sets for a (reference amino acid, codon
position, variant amino acid) triple. Rule sets are small, so lookup is a
linear scan over the genes and their rules.

Rules are usually written in the standard resistance notation, e.g.
"M46IL" for M46I and M46L; ``parse_mutation`` expands such strings.

Author: Steph Smith (steph.smith@unc.edu)
"""

from typing import Iterable, List, Sequence, Tuple
import re

from .models import DRMRule, TargetGene

DRM_SEPARATOR = " + "

_MUTATION_PATTERN = re.compile(r"^([A-Z*])(\d+)([A-Z*]+)$")


def parse_mutation(mutation: str) -> List[Tuple[str, int, str]]:
    """
    Expand a mutation string into (ref, position, variant) triples.

    Parameters
    ----------
    mutation : str
        Reference amino acid, codon position and one or more variant amino
        acids, e.g. "K103N" or "M46IL"

    Returns
    -------
    List[Tuple[str, int, str]]
        One triple per variant amino acid

    Raises
    ------
    ValueError
        If the string does not follow the notation

    Examples
    --------
    >>> parse_mutation("M46IL")
    [('M', 46, 'I'), ('M', 46, 'L')]
    """
    match = _MUTATION_PATTERN.match(mutation.strip().upper())
    if not match:
        raise ValueError(f"Malformed mutation '{mutation}', expected e.g. 'K103N'")
    ref, position, variants = match.groups()
    return [(ref, int(position), variant) for variant in variants]


def build_rule(name: str, mutations: Iterable[str]) -> DRMRule:
    triples = set()
    for mutation in mutations:
        triples.update(parse_mutation(mutation))
    return DRMRule(name=name, mutations=frozenset(triples))


def find_drms(
    gene_name: str,
    genes: Sequence[TargetGene],
    ref_amino_acid: str,
    codon_position: int,
    variant_amino_acid: str,
) -> str:
    """Names of every rule of ``gene_name`` matching the triple, joined by ' + '."""
    names = []
    for gene in genes:
        if gene.name != gene_name:
            continue
        for rule in gene.drms:
            if rule.matches(ref_amino_acid, codon_position, variant_amino_acid):
                names.append(rule.name)
    return DRM_SEPARATOR.join(names)
