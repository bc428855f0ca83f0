"""
Result Reports

Turns a CallerResult into its JSON document and into tab-separated tables:

- <prefix>.json: genes, variant positions and codons, haplotypes, read
  counts per haplotype category and, with expected minors, performance
- <prefix>_variants.tsv: one row per reported variant codon
- <prefix>_haplotypes.tsv: one row per generator haplotype

Author: Steph Smith (steph.smith@unc.edu)
"""

import logging
import json
from pathlib import Path
from typing import Any, Dict, List, Union
import pandas as pd

from .models import CallerResult, Haplotype, VariantGene, VariantPosition

logger = logging.getLogger(__name__)

VARIANT_COLUMNS = [
    'gene', 'ref_position', 'codon_position', 'ref_codon', 'ref_amino_acid',
    'alt_ref_codon', 'alt_ref_amino_acid', 'coverage', 'amino_acid', 'codon',
    'frequency', 'p_value', 'known_drm', 'haplotypes',
]

HAPLOTYPE_COLUMNS = ['name', 'reads', 'frequency', 'soft_collapses', 'codons']


def _position_to_json(position: VariantPosition) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "ref_position": position.ref_position,
        "codon_position": position.codon_position,
        "ref_codon": position.ref_codon,
        "ref_amino_acid": position.ref_amino_acid,
    }
    if position.alt_ref_codon is not None:
        entry["alt_ref_codon"] = position.alt_ref_codon
        entry["alt_ref_amino_acid"] = position.alt_ref_amino_acid
    entry["coverage"] = position.coverage
    entry["variant_amino_acids"] = [
        {
            "amino_acid": amino_acid,
            "variant_codons": [
                {
                    "codon": vc.codon,
                    "frequency": vc.frequency,
                    "p_value": vc.p_value,
                    "known_drm": vc.known_drm,
                    "haplotype_hit": list(vc.haplotype_hit),
                }
                for vc in codons
            ],
        }
        for amino_acid, codons in position.amino_acid_to_codons.items()
        if codons
    ]
    entry["msa"] = [dict(counts) for counts in position.msa]
    return entry


def _gene_to_json(gene: VariantGene) -> Dict[str, Any]:
    return {
        "name": gene.gene_name,
        "offset": gene.gene_offset,
        "variant_positions": [_position_to_json(vp) for vp in gene.variant_positions()],
    }


def _haplotype_to_json(haplotype: Haplotype) -> Dict[str, Any]:
    return {
        "name": haplotype.name,
        "codons": list(haplotype.codons),
        "reads": haplotype.size,
        "frequency": haplotype.global_frequency,
        "soft_collapses": haplotype.soft_collapses,
    }


def to_json(result: CallerResult) -> Dict[str, Any]:
    """
    JSON document of a calling run.

    Genes without variant positions are left out. ``performance`` is only
    present when the run was validated against expected minors.
    """
    document: Dict[str, Any] = {
        "genes": [_gene_to_json(g) for g in result.genes if g.has_variants],
        "haplotypes": [_haplotype_to_json(h) for h in result.haplotypes],
        "haplotype_read_counts": result.summary.to_dict(),
    }
    if result.performance is not None:
        document["performance"] = result.performance.to_dict()
    return document


def variants_to_dataframe(result: CallerResult) -> pd.DataFrame:
    """
    One row per reported variant codon.

    The ``haplotypes`` column lists the names of the generator haplotypes
    carrying the codon, comma separated.
    """
    names = [h.name for h in result.haplotypes]
    records: List[Dict[str, Any]] = []

    for gene in result.genes:
        for position in gene.variant_positions():
            for amino_acid, codons in position.amino_acid_to_codons.items():
                for vc in codons:
                    carriers = [n for n, hit in zip(names, vc.haplotype_hit) if hit]
                    records.append({
                        'gene': gene.gene_name,
                        'ref_position': position.ref_position,
                        'codon_position': position.codon_position,
                        'ref_codon': position.ref_codon,
                        'ref_amino_acid': position.ref_amino_acid,
                        'alt_ref_codon': position.alt_ref_codon,
                        'alt_ref_amino_acid': position.alt_ref_amino_acid,
                        'coverage': position.coverage,
                        'amino_acid': amino_acid,
                        'codon': vc.codon,
                        'frequency': vc.frequency,
                        'p_value': vc.p_value,
                        'known_drm': vc.known_drm,
                        'haplotypes': ','.join(carriers),
                    })

    return pd.DataFrame(records, columns=VARIANT_COLUMNS)


def haplotypes_to_dataframe(result: CallerResult) -> pd.DataFrame:
    """One row per generator haplotype, in rank order."""
    records = [
        {
            'name': h.name,
            'reads': h.size,
            'frequency': h.global_frequency,
            'soft_collapses': h.soft_collapses,
            'codons': ' '.join(h.codons),
        }
        for h in result.haplotypes
    ]
    return pd.DataFrame(records, columns=HAPLOTYPE_COLUMNS)


def write_reports(
    result: CallerResult,
    output_dir: Union[str, Path],
    prefix: str = "aacaller",
) -> Dict[str, Path]:
    """
    Write the JSON report and both tables.

    Parameters
    ----------
    result : CallerResult
        Result of a calling run
    output_dir : Union[str, Path]
        Output directory, created if missing
    prefix : str
        File name prefix (default: "aacaller")

    Returns
    -------
    Dict[str, Path]
        Written files keyed by 'json', 'variants' and 'haplotypes'
    """
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    paths = {
        'json': out / f"{prefix}.json",
        'variants': out / f"{prefix}_variants.tsv",
        'haplotypes': out / f"{prefix}_haplotypes.tsv",
    }

    with open(paths['json'], 'w') as f:
        json.dump(to_json(result), f, indent=2)
    logger.info(f"JSON report saved: {paths['json']}")

    variants = variants_to_dataframe(result)
    variants.to_csv(paths['variants'], sep='\t', index=False)
    logger.info(f"Variant table saved: {paths['variants']} ({len(variants)} codons)")

    haplotypes = haplotypes_to_dataframe(result)
    haplotypes.to_csv(paths['haplotypes'], sep='\t', index=False)
    logger.info(f"Haplotype table saved: {paths['haplotypes']} ({len(haplotypes)} haplotypes)")

    return paths
