"""
AACaller: Minor Amino-Acid Variant Calling and Haplotype Phasing

AACaller calls minor amino-acid variants from a multiple sequence alignment
of sequencing reads over one or more target genes. Real variation is
separated from sequencing noise by per-codon statistical testing, known
drug-resistance mutations are annotated, and reads are grouped into ranked
haplotypes with frequencies.

Core functionality includes:
- Per-codon census and reference resolution
- One-sided Fisher exact testing with Bonferroni correction
- Drug-resistance mutation annotation
- Haplotype clustering, filtering, soft-collapse and ranking
- JSON and tab-separated reports

Author: Steph Smith (steph.smith@unc.edu)
Institution: University of North Carolina, Institute of Marine Sciences
"""

__version__ = "0.1.0"
__author__ = "Steph Smith"
__email__ = "steph.smith@unc.edu"

# Import main modules for easy access
from . import msa
from . import codons
from . import statistics
from . import drm
from . import phasing
from . import caller
from . import reports
from . import config
from . import utils

from .caller import AminoAcidCaller, run_caller

__all__ = [
    "msa",
    "codons",
    "statistics",
    "drm",
    "phasing",
    "caller",
    "reports",
    "config",
    "utils",
    "AminoAcidCaller",
    "run_caller",
]
