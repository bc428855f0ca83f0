"""
Configuration Management for AACaller

This module provides the configuration system for amino-acid variant calling,
built from frozen dataclasses. The configuration system supports:

1. Default parameter values for amplicon minor-variant calling
2. Loading configuration from YAML/JSON files
3. Environment variable overrides
4. Validation and type checking
5. Target presets (gene coordinates and drug-resistance rules)

Configuration Structure:
- ErrorModel: Per-base sequencing error probabilities
- CallerConfig: Significance testing, reporting and phasing parameters
- TargetConfig: Target genes, expected minors, DRM rules, reference sequence
- PipelineConfig: Master configuration combining all components

Target genes are written in configuration files as plain mappings:

    target:
      preset: HIV            # optional, start from a preset
      genes:
        - name: PR
          begin: 2253
          end: 2550
          minors:
            - {position: 46, codon: ATA}
          drms:
            - name: PI major
              mutations: [M46IL, I84V]

Example Usage:
    >>> from aacaller.config import get_default_config, load_config_from_file
    >>>
    >>> # Use defaults
    >>> config = get_default_config()
    >>> print(config.caller.alpha)
    0.01
    >>>
    >>> # Load from file
    >>> config = load_config_from_file("hiv_run.yaml")
    >>>
    >>> # Update specific parameters
    >>> custom_config = config.update(
    ...     caller__merge_outliers=True,
    ...     error_model__substitution=0.001
    ... )

Author: Steph Smith (steph.smith@unc.edu)
"""

from dataclasses import dataclass, field, asdict, replace
from pathlib import Path
from typing import Optional, List, Dict, Any, Tuple, Union
import os
import json
import logging

import yaml

from .codons import CODON_TO_AMINO_ACID, translate
from .drm import build_rule
from .models import DRMRule, MinorVariant, TargetGene

logger = logging.getLogger(__name__)

ENV_PREFIX = "AACALLER_"


class ConfigurationError(ValueError):
    """Configuration file, preset or target definition could not be used."""
    pass


# ============================================================================
# Error Model
# ============================================================================

@dataclass(frozen=True)
class ErrorModel:
    """
    Position-independent single-base sequencing error model.

    Attributes
    ----------
    match : float
        Probability that a base is read correctly (default: 0.99)

    substitution : float
        Probability that a base is read as one specific other base
        (default: 0.005)

    deletion : float
        Probability that a base is missing from the read (default: 0.005)

    Notes
    -----
    The model is a fixed input; it is not estimated from the data.
    """
    match: float = 0.99
    substitution: float = 0.005
    deletion: float = 0.005

    def __post_init__(self):
        """Validate probabilities."""
        if not 0 < self.match <= 1:
            raise ValueError("match must be in (0, 1]")
        if not 0 <= self.substitution <= 1:
            raise ValueError("substitution must be between 0 and 1")
        if not 0 <= self.deletion <= 1:
            raise ValueError("deletion must be between 0 and 1")


# ============================================================================
# Caller Configuration
# ============================================================================

@dataclass(frozen=True)
class CallerConfig:
    """
    Configuration for variant calling and haplotype phasing.

    Attributes
    ----------
    alpha : float
        Significance threshold for Bonferroni-corrected p-values
        (default: 0.01)

    min_perc : float
        Minimal codon percentage reported in debug mode (default: 0.0)

    max_perc : float
        Percentage of coverage above which a majority codon disagreeing with
        the reference sequence is recorded as alternate reference
        (default: 100.0, never)

    low_coverage : int
        Haplotype clusters with fewer reads are flagged LOW_COV (default: 10)

    merge_outliers : bool
        Distribute filtered clusters over generator haplotypes as soft-collapse
        mass (default: False)

    debug : bool
        Report every codon at or above min_perc regardless of significance
        (default: False)

    drm_only : bool
        Report only significant codons that match a DRM rule (default: False)

    verbose : bool
        Log each accepted call at INFO level (default: False)

    n_threads : int
        Worker processes for per-position calling (default: 1)
    """
    alpha: float = 0.01
    min_perc: float = 0.0
    max_perc: float = 100.0
    low_coverage: int = 10
    merge_outliers: bool = False
    debug: bool = False
    drm_only: bool = False
    verbose: bool = False
    n_threads: int = 1

    def __post_init__(self):
        """Validate configuration parameters."""
        if not 0 < self.alpha <= 1:
            raise ValueError("alpha must be in (0, 1]")
        if not 0 <= self.min_perc <= 100:
            raise ValueError("min_perc must be between 0 and 100")
        if not 0 <= self.max_perc <= 100:
            raise ValueError("max_perc must be between 0 and 100")
        if self.low_coverage < 1:
            raise ValueError("low_coverage must be at least 1")
        if self.n_threads < 1:
            raise ValueError("n_threads must be at least 1")
        if self.debug and self.drm_only:
            logger.warning("debug mode ignores drm_only; every codon above min_perc is reported")


# ============================================================================
# Target Configuration
# ============================================================================

@dataclass(frozen=True)
class TargetConfig:
    """
    Target genes and optional reference sequence.

    Attributes
    ----------
    genes : Tuple[TargetGene, ...]
        Gene regions in reporting order. Empty means the whole alignment
        window is called as a single gene named "unknown".

    reference_sequence : str, optional
        External reference in the alignment's absolute coordinates. Without
        it, the majority codon at each position is the reference.
    """
    genes: Tuple[TargetGene, ...] = ()
    reference_sequence: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'genes', tuple(self.genes))
        if self.reference_sequence is not None:
            object.__setattr__(self, 'reference_sequence', self.reference_sequence.upper())

        names = [g.name for g in self.genes]
        duplicated = sorted({n for n in names if names.count(n) > 1})
        if duplicated:
            raise ValueError(f"Duplicated gene names: {', '.join(duplicated)}")

    @property
    def number_of_expected_minors(self) -> int:
        return sum(len(g.minors) for g in self.genes)

    @property
    def has_reference(self) -> bool:
        return bool(self.reference_sequence)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "genes": [gene_to_dict(g) for g in self.genes],
            "reference_sequence": self.reference_sequence,
        }


def gene_to_dict(gene: TargetGene) -> Dict[str, Any]:
    """Serializable form of a TargetGene; DRM triples written as 'K103N'."""
    return {
        "name": gene.name,
        "begin": gene.begin,
        "end": gene.end,
        "minors": [
            {"position": m.position, "amino_acid": m.amino_acid, "codon": m.codon}
            for m in gene.minors
        ],
        "drms": [
            {
                "name": rule.name,
                "mutations": [f"{ref}{pos}{alt}" for ref, pos, alt in sorted(
                    rule.mutations, key=lambda t: (t[1], t[0], t[2]))],
            }
            for rule in gene.drms
        ],
    }


def gene_from_dict(gene_dict: Dict[str, Any]) -> TargetGene:
    """
    Build a TargetGene from its configuration mapping.

    Minor amino acids default to the translation of their codon.

    Raises
    ------
    ConfigurationError
        If a field is missing or a codon or mutation is malformed
    """
    try:
        minors = []
        for minor in gene_dict.get("minors") or []:
            codon = str(minor["codon"]).upper()
            if codon not in CODON_TO_AMINO_ACID:
                raise ValueError(f"minor codon '{codon}' is not a sense codon")
            minors.append(MinorVariant(
                position=int(minor["position"]),
                amino_acid=minor.get("amino_acid") or translate(codon),
                codon=codon,
            ))

        drms = []
        for rule in gene_dict.get("drms") or []:
            if isinstance(rule, DRMRule):
                drms.append(rule)
            else:
                drms.append(build_rule(rule["name"], rule.get("mutations") or []))

        return TargetGene(
            begin=int(gene_dict["begin"]),
            end=int(gene_dict["end"]),
            name=str(gene_dict["name"]),
            minors=tuple(minors),
            drms=tuple(drms),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid gene definition {gene_dict!r}: {e}"
        ) from e


# ============================================================================
# Target Presets
# ============================================================================

# HXB2 coordinates, 1-based, end exclusive
_HIV_GENES = (
    ("PR", 2253, 2550, (
        ("PI major", (
            "D30N", "V32I", "M46IL", "I47VA", "G48VM", "I50VL", "I54VTALM",
            "L76V", "V82ATFS", "I84V", "N88S", "L90M",
        )),
    )),
    ("RT", 2550, 4230, (
        ("NRTI", (
            "M41L", "K65R", "D67N", "K70ER", "L74VI", "Y115F", "M184VI",
            "L210W", "T215YF", "K219QE",
        )),
        ("NNRTI", (
            "L100I", "K101EP", "K103NS", "V106AM", "Y181CIV", "Y188LCH",
            "G190ASE", "M230L",
        )),
    )),
    ("IN", 4230, 5094, (
        ("INSTI", (
            "T66IAK", "E92Q", "G118R", "E138KAT", "G140SAC", "Y143RCH",
            "S147G", "Q148HRK", "N155H", "R263K",
        )),
    )),
)


def _hiv_preset() -> TargetConfig:
    genes = []
    for name, begin, end, rules in _HIV_GENES:
        genes.append(TargetGene(
            begin=begin,
            end=end,
            name=name,
            drms=tuple(build_rule(rule_name, mutations) for rule_name, mutations in rules),
        ))
    return TargetConfig(genes=tuple(genes))


TARGET_PRESETS = {
    "HIV": _hiv_preset,
}


def get_target_preset(name: str) -> TargetConfig:
    """
    Target configuration for a named preset.

    Parameters
    ----------
    name : str
        Preset name, case-insensitive (available: HIV)

    Raises
    ------
    ConfigurationError
        If the preset is unknown
    """
    factory = TARGET_PRESETS.get(name.upper())
    if factory is None:
        raise ConfigurationError(
            f"Unknown target preset '{name}'. Available: {', '.join(sorted(TARGET_PRESETS))}"
        )
    return factory()


# ============================================================================
# Master Pipeline Configuration
# ============================================================================

@dataclass(frozen=True)
class PipelineConfig:
    """
    Master configuration for an AACaller run.

    Attributes
    ----------
    error_model : ErrorModel
        Sequencing error model

    caller : CallerConfig
        Calling and phasing configuration

    target : TargetConfig
        Target genes and reference sequence

    log_level : str
        Logging level (default: "INFO")

    output_dir : Path
        Base output directory (default: "results")

    output_prefix : str
        File name prefix of written reports (default: "aacaller")
    """
    error_model: ErrorModel = field(default_factory=ErrorModel)
    caller: CallerConfig = field(default_factory=CallerConfig)
    target: TargetConfig = field(default_factory=TargetConfig)
    log_level: str = "INFO"
    output_dir: Path = field(default_factory=lambda: Path("results"))
    output_prefix: str = "aacaller"

    def __post_init__(self):
        """Validate and normalize configuration."""
        if isinstance(self.output_dir, str):
            object.__setattr__(self, 'output_dir', Path(self.output_dir))

        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")

        if not self.output_prefix:
            raise ValueError("output_prefix must not be empty")

    def update(self, **kwargs) -> 'PipelineConfig':
        """
        Create a new configuration with updated values.

        Supports nested updates using double underscore notation:
        config.update(caller__alpha=0.001)

        Parameters
        ----------
        **kwargs
            Configuration parameters to update. Use double underscore
            for nested parameters (e.g., error_model__deletion)

        Returns
        -------
        PipelineConfig
            New configuration object with updates

        Examples
        --------
        >>> config = get_default_config()
        >>> new_config = config.update(
        ...     log_level="DEBUG",
        ...     caller__drm_only=True,
        ...     target=get_target_preset("HIV")
        ... )
        """
        top_level = {}
        nested = {}

        for key, value in kwargs.items():
            if '__' in key:
                component, param = key.split('__', 1)
                nested.setdefault(component, {})[param] = value
            else:
                top_level[key] = value

        for component, updates in nested.items():
            current = top_level.get(component, getattr(self, component))
            top_level[component] = replace(current, **updates)

        return replace(self, **top_level)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert configuration to dictionary.

        Returns
        -------
        Dict[str, Any]
            Configuration as nested dictionary
        """
        return {
            "error_model": asdict(self.error_model),
            "caller": asdict(self.caller),
            "target": self.target.to_dict(),
            "log_level": self.log_level,
            "output_dir": str(self.output_dir),
            "output_prefix": self.output_prefix,
        }

    def _write(self, output_path: Union[str, Path], dump) -> Path:
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            dump(self.to_dict(), f)
        logger.info(f"Configuration written: {path}")
        return path

    def to_yaml(self, output_path: Union[str, Path]) -> None:
        """Write the configuration as YAML, keeping section order."""
        self._write(
            output_path,
            lambda data, f: yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False),
        )

    def to_json(self, output_path: Union[str, Path]) -> None:
        """Write the configuration as indented JSON."""
        self._write(output_path, lambda data, f: json.dump(data, f, indent=2))


# ============================================================================
# Helper Functions
# ============================================================================

def get_default_config() -> PipelineConfig:
    """
    Get default pipeline configuration.

    Returns
    -------
    PipelineConfig
        Default configuration: no target genes, no reference, alpha 0.01

    Examples
    --------
    >>> config = get_default_config()
    >>> print(config.error_model.match)
    0.99
    """
    return PipelineConfig()


def load_config_from_file(config_path: Union[str, Path]) -> PipelineConfig:
    """
    Load configuration from YAML or JSON file.

    Automatically detects file format based on extension.

    Parameters
    ----------
    config_path : Union[str, Path]
        Path to configuration file (.yaml, .yml, or .json)

    Returns
    -------
    PipelineConfig
        Loaded configuration

    Raises
    ------
    FileNotFoundError
        If configuration file doesn't exist
    ConfigurationError
        If the format is not supported or the content is invalid

    Examples
    --------
    >>> config = load_config_from_file("hiv_run.yaml")
    """
    path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    suffix = path.suffix.lower()

    try:
        with open(path, 'r') as f:
            if suffix in ['.yaml', '.yml']:
                config_dict = yaml.safe_load(f)
            elif suffix == '.json':
                config_dict = json.load(f)
            else:
                raise ConfigurationError(f"Unsupported config file format: {suffix}")
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Could not parse configuration file {path}: {e}") from e

    logger.info(f"Loaded configuration from {path}")
    return _dict_to_config(config_dict or {})


def _dict_to_config(config_dict: Dict[str, Any]) -> PipelineConfig:
    """
    Convert dictionary to PipelineConfig object.

    Handles nested configuration structures, target presets and type
    conversions.
    """
    config_dict = dict(config_dict)
    nested_configs = {}

    try:
        if 'error_model' in config_dict:
            nested_configs['error_model'] = ErrorModel(**config_dict.pop('error_model'))

        if 'caller' in config_dict:
            nested_configs['caller'] = CallerConfig(**config_dict.pop('caller'))

        if 'target' in config_dict:
            nested_configs['target'] = _dict_to_target(config_dict.pop('target') or {})

        return PipelineConfig(**nested_configs, **config_dict)
    except ConfigurationError:
        raise
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def _dict_to_target(target_dict: Dict[str, Any]) -> TargetConfig:
    """Target section; explicitly listed genes replace the preset's genes."""
    preset = target_dict.get('preset')
    base = get_target_preset(preset) if preset else TargetConfig()

    genes = base.genes
    if target_dict.get('genes'):
        genes = tuple(gene_from_dict(g) for g in target_dict['genes'])

    reference = target_dict.get('reference_sequence') or base.reference_sequence
    return TargetConfig(genes=genes, reference_sequence=reference)


def load_config_from_env() -> Dict[str, Any]:
    """
    Load configuration overrides from environment variables.

    Environment variables should be prefixed with AACALLER_
    and use double underscores for nesting:

    AACALLER_CALLER__ALPHA=0.001
    AACALLER_LOG_LEVEL=DEBUG

    Returns
    -------
    Dict[str, Any]
        Configuration overrides from environment

    Examples
    --------
    >>> import os
    >>> os.environ['AACALLER_CALLER__MERGE_OUTLIERS'] = 'true'
    >>> env_config = load_config_from_env()
    >>> config = get_default_config().update(**env_config)
    """
    overrides = {}

    for key, value in os.environ.items():
        if key.startswith(ENV_PREFIX):
            config_key = key[len(ENV_PREFIX):].lower()
            overrides[config_key] = _parse_env_value(value)

    if overrides:
        logger.debug(f"Loaded {len(overrides)} configuration overrides from environment")

    return overrides


def _parse_env_value(value: str) -> Any:
    """Parse environment variable value to appropriate type."""
    # Boolean
    if value.lower() in ['true', 'yes']:
        return True
    if value.lower() in ['false', 'no']:
        return False

    # Integer
    try:
        return int(value)
    except ValueError:
        pass

    # Float
    try:
        return float(value)
    except ValueError:
        pass

    # String
    return value


def validate_config(config: PipelineConfig) -> List[str]:
    """
    Validate configuration and return list of warnings.

    Checks for settings that are legal but likely to give surprising results.

    Parameters
    ----------
    config : PipelineConfig
        Configuration to validate

    Returns
    -------
    List[str]
        List of warning messages (empty if no issues)

    Examples
    --------
    >>> config = get_default_config()
    >>> warnings = validate_config(config)
    >>> for warning in warnings:
    ...     print(f"Warning: {warning}")
    """
    warnings = []
    caller = config.caller
    target = config.target
    error_model = config.error_model

    if error_model.substitution >= error_model.match:
        warnings.append(
            f"Substitution probability ({error_model.substitution}) is not below the match "
            f"probability ({error_model.match}); every codon will look like noise."
        )

    if caller.debug:
        warnings.append(
            "Debug mode is enabled: codons are reported without significance testing."
        )

    if caller.drm_only and not any(g.drms for g in target.genes):
        warnings.append(
            "drm_only is set but no DRM rules are configured; nothing will be reported."
        )

    if caller.alpha > 0.05:
        warnings.append(
            f"Significance threshold ({caller.alpha}) is lenient for Bonferroni-corrected "
            "p-values and may report noise."
        )

    if caller.n_threads > (os.cpu_count() or 1):
        warnings.append(
            f"Thread count ({caller.n_threads}) exceeds available CPUs ({os.cpu_count()})"
        )

    genes = sorted(target.genes, key=lambda g: g.begin)
    for previous, current in zip(genes, genes[1:]):
        if current.begin < previous.end:
            warnings.append(f"Genes {previous.name} and {current.name} overlap.")

    for gene in target.genes:
        if (gene.end - gene.begin) % 3:
            warnings.append(
                f"Gene {gene.name} length ({gene.end - gene.begin}) is not a multiple of 3; "
                "the trailing bases are ignored."
            )
        n_codons = len(gene.codon_starts())
        for minor in gene.minors:
            if not 1 <= minor.position <= n_codons:
                warnings.append(
                    f"Expected minor {minor.codon} at codon {minor.position} lies outside "
                    f"gene {gene.name} ({n_codons} codons)."
                )
            if CODON_TO_AMINO_ACID.get(minor.codon) != minor.amino_acid:
                warnings.append(
                    f"Expected minor {minor.codon} at codon {minor.position} of {gene.name} "
                    f"does not encode {minor.amino_acid}."
                )

    if target.reference_sequence and genes:
        last_end = max(g.end for g in genes)
        if len(target.reference_sequence) < last_end - 1:
            warnings.append(
                f"Reference sequence ({len(target.reference_sequence)} bp) is shorter than "
                f"the target region (ends at {last_end - 1}); uncovered positions are skipped."
            )

    return warnings


# ============================================================================
# Configuration Templates
# ============================================================================

def create_config_template(
    output_path: Union[str, Path],
    format: str = "yaml",
    preset: Optional[str] = None,
) -> None:
    """
    Create a configuration template file.

    Parameters
    ----------
    output_path : Union[str, Path]
        Output file path
    format : str
        File format: "yaml" or "json" (default: "yaml")
    preset : str, optional
        Fill the target section from a preset

    Examples
    --------
    >>> create_config_template("hiv_run.yaml", preset="HIV")
    """
    writers = {"yaml": PipelineConfig.to_yaml, "json": PipelineConfig.to_json}
    writer = writers.get(format.lower())
    if writer is None:
        raise ValueError(f"Unsupported template format '{format}'; use yaml or json")

    config = get_default_config()
    if preset:
        config = config.update(target=get_target_preset(preset))
    writer(config, output_path)
