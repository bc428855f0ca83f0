"""
Multiple Sequence Alignment Views

Read-level (row) and position-level (column) views over an alignment of
sequencing reads to a common reference coordinate system.

Row conventions:
- Each row holds one read's aligned bases starting at an absolute 1-based
  reference position (``begin_pos``)
- '-' marks a deletion inside the read
- ' ' marks a position the read does not reach (uncovered)

The column view tallies A, C, G, T, gap and N for every absolute position.
Any other IUPAC character is counted as N; uncovered positions are not counted.

Alignments are usually loaded from FASTA, where reads are padded to the full
alignment width with '-'. Those leading and trailing gap runs are converted
to uncovered markers on load because they mean "no data", not "deletion".

Example Usage:
    >>> from aacaller.msa import load_msa, MSAByColumn
    >>> msa = load_msa("reads_aligned.fasta", begin_pos=2253)
    >>> columns = MSAByColumn(msa)
    >>> columns.most_frequent_base(2253)
    'C'

Author: Steph Smith (steph.smith@unc.edu)
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, Optional, Sequence, Tuple, Union
import logging
import re

import numpy as np
from Bio import AlignIO, SeqIO

from .models import HaplotypeFlag

logger = logging.getLogger(__name__)

GAP = '-'
UNCOVERED = ' '

# Column order of the per-position tally
COLUMN_BASES = "ACGT-N"
_BASE_INDEX = {base: i for i, base in enumerate(COLUMN_BASES)}

_LEADING_GAPS = re.compile(r"^-+")
_TRAILING_GAPS = re.compile(r"-+$")


class MSAError(Exception):
    """Error loading or building an alignment."""
    pass


@dataclass(frozen=True)
class MSARow:
    """
    One read's aligned bases.

    Attributes
    ----------
    read_name : str
        Read identifier
    begin_pos : int
        Absolute 1-based position of ``bases[0]``
    bases : str
        Aligned bases; '-' for deletions, ' ' for uncovered positions
    flags : HaplotypeFlag
        Upstream per-read annotations (e.g. WITH_HETERODUPLEX)
    """
    read_name: str
    begin_pos: int
    bases: str
    flags: HaplotypeFlag = HaplotypeFlag.NONE

    @property
    def end_pos(self) -> int:
        return self.begin_pos + len(self.bases)

    def base_at(self, pos: int) -> str:
        offset = pos - self.begin_pos
        if offset < 0 or offset >= len(self.bases):
            return UNCOVERED
        return self.bases[offset]

    def codon_at(self, pos: int) -> str:
        """Three bases starting at ``pos``; uncovered bases come back as ' '."""
        return self.base_at(pos) + self.base_at(pos + 1) + self.base_at(pos + 2)


class MSAByRow:
    """
    Ordered collection of MSA rows.

    The alignment owns its rows. ``index`` maps read names to row indices
    and is only a lookup table; the first occurrence of a duplicated read
    name wins.

    Parameters
    ----------
    rows : Sequence[MSARow]
        Aligned reads
    begin_pos, end_pos : int, optional
        Window bounds (end exclusive). Default to the span of all rows.
    """

    def __init__(
        self,
        rows: Sequence[MSARow],
        begin_pos: Optional[int] = None,
        end_pos: Optional[int] = None,
    ):
        self._rows: Tuple[MSARow, ...] = tuple(rows)

        if begin_pos is None:
            begin_pos = min((r.begin_pos for r in self._rows), default=1)
        if end_pos is None:
            end_pos = max((r.end_pos for r in self._rows), default=begin_pos)
        self.begin_pos = begin_pos
        self.end_pos = end_pos

        self.index: Dict[str, int] = {}
        duplicates = 0
        for i, row in enumerate(self._rows):
            if row.read_name in self.index:
                duplicates += 1
                continue
            self.index[row.read_name] = i
        if duplicates:
            logger.warning(f"{duplicates} duplicated read names in alignment")

    @property
    def rows(self) -> Tuple[MSARow, ...]:
        return self._rows

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[MSARow]:
        return iter(self._rows)

    def row(self, read_name: str) -> Optional[MSARow]:
        i = self.index.get(read_name)
        return None if i is None else self._rows[i]

    @classmethod
    def from_sequences(
        cls,
        records: Iterable[Tuple[str, str]],
        begin_pos: int = 1,
        mask_terminal_gaps: bool = True,
    ) -> "MSAByRow":
        """
        Build rows from (name, aligned sequence) pairs.

        All sequences start at ``begin_pos``. With ``mask_terminal_gaps``,
        leading and trailing '-' runs become uncovered positions.
        """
        rows = []
        width = 0
        for name, sequence in records:
            bases = normalize_bases(sequence)
            if mask_terminal_gaps:
                bases = mask_terminal_gap_runs(bases)
            width = max(width, len(bases))
            rows.append(MSARow(read_name=name, begin_pos=begin_pos, bases=bases))
        return cls(rows, begin_pos=begin_pos, end_pos=begin_pos + width)

    @classmethod
    def from_alignment(cls, alignment, begin_pos: int = 1) -> "MSAByRow":
        """Build rows from a Biopython MultipleSeqAlignment."""
        return cls.from_sequences(
            ((record.id, str(record.seq)) for record in alignment),
            begin_pos=begin_pos,
        )


@dataclass(frozen=True)
class BaseCounts:
    """Per-position base tally."""
    A: int = 0
    C: int = 0
    G: int = 0
    T: int = 0
    gap: int = 0
    N: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {"A": self.A, "C": self.C, "G": self.G, "T": self.T, "-": self.gap, "N": self.N}


class MSAByColumn:
    """
    Column view: base tallies for every absolute position of the window.

    Backed by an (n_positions x 6) integer matrix in COLUMN_BASES order.
    Positions outside the window have empty tallies.
    """

    def __init__(self, msa: MSAByRow):
        self.begin_pos = msa.begin_pos
        self.end_pos = msa.end_pos
        n_positions = max(0, self.end_pos - self.begin_pos)
        self._counts = np.zeros((n_positions, len(COLUMN_BASES)), dtype=np.int64)

        for row in msa:
            for offset, base in enumerate(row.bases):
                if base == UNCOVERED:
                    continue
                column = row.begin_pos + offset - self.begin_pos
                if column < 0 or column >= n_positions:
                    continue
                self._counts[column, _BASE_INDEX.get(base, _BASE_INDEX['N'])] += 1

        logger.debug(
            f"Tallied {len(msa)} rows over {n_positions} columns "
            f"({self.begin_pos}-{self.end_pos - 1})"
        )

    def __contains__(self, pos: int) -> bool:
        return self.begin_pos <= pos < self.end_pos

    def counts(self, pos: int) -> BaseCounts:
        if pos not in self:
            return BaseCounts()
        return BaseCounts(*(int(c) for c in self._counts[pos - self.begin_pos]))

    def depth(self, pos: int) -> int:
        if pos not in self:
            return 0
        return int(self._counts[pos - self.begin_pos].sum())

    def most_frequent_base(self, pos: int) -> str:
        """Most frequent of A/C/G/T/-/N; first in that order on ties, 'N' if empty."""
        if self.depth(pos) == 0:
            return 'N'
        return COLUMN_BASES[int(np.argmax(self._counts[pos - self.begin_pos]))]


# ============================================================================
# Helpers and loading
# ============================================================================

def normalize_bases(sequence: str) -> str:
    """Uppercase, RNA to DNA, and '.' to '-'."""
    return sequence.upper().replace('U', 'T').replace('.', GAP)


def mask_terminal_gap_runs(bases: str) -> str:
    """Replace leading and trailing '-' runs with uncovered markers."""
    bases = _LEADING_GAPS.sub(lambda m: UNCOVERED * len(m.group(0)), bases)
    return _TRAILING_GAPS.sub(lambda m: UNCOVERED * len(m.group(0)), bases)


def load_msa(
    alignment_path: Union[str, Path],
    begin_pos: int = 1,
    format: str = "fasta",
) -> MSAByRow:
    """
    Load an alignment of reads.

    Parameters
    ----------
    alignment_path : Union[str, Path]
        Aligned reads, all the same width
    begin_pos : int
        Absolute reference position of the first alignment column (default: 1)
    format : str
        Any Bio.AlignIO format name (default: "fasta")

    Returns
    -------
    MSAByRow
        Row view with terminal gaps masked as uncovered

    Raises
    ------
    FileNotFoundError
        If the alignment file does not exist
    MSAError
        If the file cannot be parsed or holds no reads
    """
    path = Path(alignment_path)
    if not path.exists():
        raise FileNotFoundError(f"Alignment file not found: {path}")

    try:
        alignment = AlignIO.read(str(path), format)
    except Exception as e:
        raise MSAError(f"Failed to parse alignment {path}: {e}") from e

    if len(alignment) == 0:
        raise MSAError(f"No reads found in alignment: {path}")

    msa = MSAByRow.from_alignment(alignment, begin_pos=begin_pos)
    logger.info(
        f"Loaded {len(msa)} reads from {path} "
        f"(positions {msa.begin_pos}-{msa.end_pos - 1})"
    )
    return msa


def load_reference(reference_path: Union[str, Path], format: str = "fasta") -> str:
    """Read a single reference sequence, uppercased."""
    path = Path(reference_path)
    if not path.exists():
        raise FileNotFoundError(f"Reference file not found: {path}")

    try:
        record = SeqIO.read(str(path), format)
    except Exception as e:
        raise MSAError(f"Failed to read reference {path}: {e}") from e

    logger.info(f"Loaded reference {record.id} ({len(record.seq)} bp)")
    return normalize_bases(str(record.seq))
