"""
Run Helpers

Logging setup, output locations and small formatting helpers shared by the
command line and ``run_caller``.

Every module logs through ``logging.getLogger(__name__)``, so all records
end up under the ``aacaller`` package logger configured here. A run logs to
the console and, from the CLI, to ``<sample>_aacaller.log`` inside the output
directory.

Example Usage:
    >>> from aacaller.utils import setup_logging, sample_name_from_path
    >>> sample = sample_name_from_path("patient 12_aligned.fasta")
    >>> sample
    'patient_12_aligned'
    >>> logger = setup_logging("DEBUG", log_file=f"{sample}_aacaller.log")

Author: Steph Smith (steph.smith@unc.edu)
"""

from typing import List, Optional, Union
from pathlib import Path
import logging
import re
import sys

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "aacaller"
LOG_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Extensions stripped from alignment file names, outermost first
ALIGNMENT_SUFFIXES = ('.gz', '.fasta', '.fa', '.fna', '.aln', '.sto', '.msa')


# ============================================================================
# Logging
# ============================================================================

def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    format_string: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the ``aacaller`` package logger.

    Replaces any handlers from an earlier call, so repeated runs in one
    process do not log twice.

    Parameters
    ----------
    log_level : str
        DEBUG, INFO, WARNING, ERROR or CRITICAL (default: INFO)
    log_file : str, optional
        Also append records to this file; parent directories are created
    format_string : str, optional
        Record format (default: LOG_FORMAT)

    Returns
    -------
    logging.Logger
        The package logger

    Notes
    -----
    Records look like:
    [2025-11-03 10:30:45] INFO: Step 2/3: Calling variants and phasing haplotypes
    """
    level = getattr(logging, log_level.upper())
    formatter = logging.Formatter(format_string or LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file is not None:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, mode='a', encoding='utf-8'))

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)

    if log_file is not None:
        package_logger.info(f"Logging to file: {log_file}")
    return package_logger


# ============================================================================
# Output locations
# ============================================================================

def create_output_directory(output_dir: Union[str, Path]) -> Path:
    """
    Create the report directory, including parents.

    Raises
    ------
    OSError
        If the directory cannot be created
    """
    path = Path(output_dir)
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Cannot create output directory {path}: {e}")
        raise
    logger.debug(f"Output directory: {path}")
    return path


def sanitize_filename(filename: str) -> str:
    """
    Make a string safe to use in file names.

    Examples
    --------
    >>> sanitize_filename("Patient 7 (2025)")
    'Patient_7_2025'
    """
    return re.sub(r'[^\w\-.]+', '_', filename).strip('_')


def sample_name_from_path(file_path: Union[str, Path]) -> str:
    """File name without its alignment extension(s), sanitized for use as a report prefix."""
    name = Path(file_path).name
    for suffix in ALIGNMENT_SUFFIXES:
        if name.lower().endswith(suffix):
            name = name[:-len(suffix)]
    return sanitize_filename(name) or PACKAGE_LOGGER


# ============================================================================
# Formatting
# ============================================================================

def format_elapsed_time(seconds: float) -> str:
    """
    Short elapsed time for the end-of-run summary.

    Examples
    --------
    >>> format_elapsed_time(45)
    '45s'
    >>> format_elapsed_time(90)
    '1.5m'
    >>> format_elapsed_time(3900)
    '1h 5m'
    """
    if seconds < 60:
        return f"{seconds:.0f}s"
    if seconds < 3600:
        return f"{seconds / 60:.1f}m"
    hours, remainder = divmod(int(seconds), 3600)
    return f"{hours}h {remainder // 60}m"
