#!/usr/bin/env python3
"""
AACaller Command-Line Interface

Calls minor amino-acid variants and haplotypes from an alignment of reads
and writes JSON and tab-separated reports.

Author: Steph Smith (steph.smith@unc.edu)
"""

import argparse
import sys
import time
import logging
from pathlib import Path
from typing import List, Optional

from . import __version__, config, utils
from .caller import run_caller
from .msa import load_reference

logger = logging.getLogger(__name__)


def main_init_config(argv: Optional[List[str]] = None) -> int:
    """Write a configuration template."""
    parser = argparse.ArgumentParser(
        prog="aacaller init-config",
        description="Write a configuration template to edit for a run",
    )
    parser.add_argument(
        'output',
        type=Path,
        help='Template path (.yaml, .yml or .json)'
    )
    parser.add_argument(
        '--preset',
        type=str,
        default=None,
        help='Fill the target section from a preset (available: HIV)'
    )
    args = parser.parse_args(argv)

    fmt = "json" if args.output.suffix.lower() == ".json" else "yaml"
    try:
        config.create_config_template(args.output, format=fmt, preset=args.preset)
    except (config.ConfigurationError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"Configuration template written to {args.output}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='AACaller: minor amino-acid variant calling and haplotype phasing',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Whole alignment as one gene, majority codon as reference
  aacaller reads_aligned.fasta

  # HIV protease/RT/integrase with resistance annotation; the alignment
  # starts at HXB2 position 2253
  aacaller reads_aligned.fasta --preset HIV --begin 2253 --reference hxb2.fasta

  # Report only drug-resistance mutations and soft-collapse noisy reads
  aacaller reads_aligned.fasta --preset HIV --begin 2253 --drm-only --merge-outliers

  # Run from a configuration file
  aacaller init-config run.yaml --preset HIV
  aacaller reads_aligned.fasta --config run.yaml

Notes:
  - Settings are applied in order: config file or preset, AACALLER_*
    environment variables, command-line options
  - Reports: <prefix>.json, <prefix>_variants.tsv, <prefix>_haplotypes.tsv
        """
    )

    parser.add_argument(
        'alignment',
        type=Path,
        help='Aligned reads in FASTA format, all rows the same width'
    )

    parser.add_argument(
        '--begin',
        type=int,
        default=1,
        help='Absolute reference position of the first alignment column (default: 1)'
    )

    target = parser.add_mutually_exclusive_group()
    target.add_argument(
        '--config',
        type=Path,
        default=None,
        help='YAML or JSON configuration file'
    )
    target.add_argument(
        '--preset',
        type=str,
        default=None,
        help='Target preset with gene coordinates and DRM rules (available: HIV)'
    )

    parser.add_argument(
        '--reference',
        type=Path,
        default=None,
        help='Reference FASTA in alignment coordinates (default: majority codon)'
    )

    error = parser.add_argument_group('error model')
    error.add_argument('--match', type=float, default=None,
                       help='Per-base match probability (default: 0.99)')
    error.add_argument('--substitution', type=float, default=None,
                       help='Per-base substitution probability (default: 0.005)')
    error.add_argument('--deletion', type=float, default=None,
                       help='Per-base deletion probability (default: 0.005)')

    calling = parser.add_argument_group('calling')
    calling.add_argument('--alpha', type=float, default=None,
                         help='Significance threshold of corrected p-values (default: 0.01)')
    calling.add_argument('--min-perc', type=float, default=None,
                         help='Minimal percentage reported in debug mode (default: 0)')
    calling.add_argument('--max-perc', type=float, default=None,
                         help='Majority percentage recorded as alternate reference (default: 100)')
    calling.add_argument('--low-coverage', type=int, default=None,
                         help='Minimum reads of a reported haplotype (default: 10)')
    calling.add_argument('--merge-outliers', action='store_true',
                         help='Soft-collapse filtered reads into reported haplotypes')
    calling.add_argument('--debug', action='store_true',
                         help='Report all codons above --min-perc without testing')
    calling.add_argument('--drm-only', action='store_true',
                         help='Report only calls matching a DRM rule')
    calling.add_argument('--threads', type=int, default=None,
                         help='Worker processes for calling (default: 1)')

    parser.add_argument(
        '--output', '--output-dir',
        dest='output_dir',
        type=Path,
        default=None,
        help='Output directory (default: {alignment name}_output)'
    )
    parser.add_argument(
        '--prefix',
        type=str,
        default=None,
        help='Report file prefix (default: alignment file name)'
    )
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default=None,
        help='Logging verbosity (default: INFO)'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Log every accepted call'
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'AACaller {__version__}'
    )
    return parser


def build_config(args: argparse.Namespace) -> config.PipelineConfig:
    """Configuration from file or preset, environment, then command-line options."""
    if args.config is not None:
        cfg = config.load_config_from_file(args.config)
    else:
        cfg = config.get_default_config()
        if args.preset:
            cfg = cfg.update(target=config.get_target_preset(args.preset))

    env_overrides = config.load_config_from_env()
    if env_overrides:
        cfg = cfg.update(**env_overrides)

    overrides = {
        'error_model__match': args.match,
        'error_model__substitution': args.substitution,
        'error_model__deletion': args.deletion,
        'caller__alpha': args.alpha,
        'caller__min_perc': args.min_perc,
        'caller__max_perc': args.max_perc,
        'caller__low_coverage': args.low_coverage,
        'caller__n_threads': args.threads,
        'log_level': args.log_level,
        'output_prefix': args.prefix,
    }
    # Flags only ever switch a setting on
    for flag, key in [
        ('merge_outliers', 'caller__merge_outliers'),
        ('debug', 'caller__debug'),
        ('drm_only', 'caller__drm_only'),
        ('verbose', 'caller__verbose'),
    ]:
        if getattr(args, flag):
            overrides[key] = True

    if args.reference is not None:
        overrides['target__reference_sequence'] = load_reference(args.reference)

    return cfg.update(**{k: v for k, v in overrides.items() if v is not None})


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] == "init-config":
        return main_init_config(argv[1:])

    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.alignment.exists():
        print(f"Error: Alignment file not found: {args.alignment}", file=sys.stderr)
        return 1

    sample = utils.sample_name_from_path(args.alignment)
    output_dir = args.output_dir if args.output_dir else Path(f"{sample}_output")
    output_dir = utils.create_output_directory(output_dir.resolve())
    log_file = output_dir / f"{sample}_aacaller.log"

    try:
        cfg = build_config(args)
    except (config.ConfigurationError, TypeError, ValueError, OSError) as e:
        print(f"Error: Invalid configuration: {e}", file=sys.stderr)
        return 1

    if args.prefix is None and cfg.output_prefix == config.PipelineConfig.output_prefix:
        cfg = cfg.update(output_prefix=sample)
    cfg = cfg.update(output_dir=output_dir)

    utils.setup_logging(log_level=cfg.log_level, log_file=str(log_file))

    for warning in config.validate_config(cfg):
        logger.warning(warning)

    print("=" * 80)
    print("AACaller")
    print("=" * 80)
    print(f"Input: {args.alignment} (first column at position {args.begin})")
    print(f"Output: {output_dir}")
    print()
    print("Parameters:")
    print(f"  Genes: {', '.join(g.name for g in cfg.target.genes) or 'whole alignment'}")
    print(f"  Reference: {'configured' if cfg.target.has_reference else 'majority codon'}")
    print(f"  Error model: match={cfg.error_model.match} "
          f"substitution={cfg.error_model.substitution} deletion={cfg.error_model.deletion}")
    print(f"  Alpha: {cfg.caller.alpha}")
    print(f"  Merge outliers: {cfg.caller.merge_outliers}")
    print(f"  DRM only: {cfg.caller.drm_only}")
    print(f"  Threads: {cfg.caller.n_threads}")
    print("=" * 80)
    print()

    start = time.time()
    try:
        result = run_caller(args.alignment, cfg, begin_pos=args.begin, output_dir=output_dir)
    except KeyboardInterrupt:
        print("\n\nRun interrupted by user", file=sys.stderr)
        return 130
    except Exception as e:
        logger.error(f"Calling failed with error: {e}", exc_info=True)
        print(f"\nError: Calling failed. Check log file: {log_file}", file=sys.stderr)
        return 1

    n_variants = sum(len(g.variant_positions()) for g in result.genes)
    logger.info(
        f"{n_variants} variant positions, {len(result.haplotypes)} haplotypes "
        f"in {utils.format_elapsed_time(time.time() - start)}"
    )
    return 0


if __name__ == '__main__':
    sys.exit(main())
