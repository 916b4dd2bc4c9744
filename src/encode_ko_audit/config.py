"""Configuration for the knockout fold-change report.

Defines the ``ReportConfig`` dataclass controlling input locations, the
metadata filters that select CRISPR-knockout result files, and the
tolerances used when comparing reported and recomputed fold-changes.
"""

import json
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

# =============================================================================
# Defaults
# =============================================================================

DEFAULT_ASSAY = "CRISPR genetic modification followed by RNA-seq"
DEFAULT_OUTPUT_TYPE = "differential expression quantifications"
DEFAULT_FILE_FORMAT = "tsv"
DEFAULT_MODIFICATION_METHOD = "CRISPR"

RELATIONS = ("negated", "identical")
IMAGE_FORMATS = ("png", "svg", "pdf", "jpeg", "webp")

NUMERIC_FIELDS = ("pseudocount", "tolerance")
OPTIONAL_FIELDS = ("annotation_file", "image_format")


# =============================================================================
# Configuration
# =============================================================================


@dataclass
class ReportConfig:
    """Configuration for a report run."""

    # Inputs and outputs
    files_list: str = "files.txt"
    metadata_file: str = "metadata.tsv"
    data_dir: str = "data"
    download_list: str = "download_files.txt"
    output_dir: str = "reports"

    # Metadata filters
    assay: str = DEFAULT_ASSAY
    output_type: str = DEFAULT_OUTPUT_TYPE
    file_format: str = DEFAULT_FILE_FORMAT
    modification_method: str = DEFAULT_MODIFICATION_METHOD  # "" disables

    # Gene annotation table (falls back to HGNC when unset)
    annotation_file: Optional[str] = None

    # Fold-change comparison
    pseudocount: float = 0.0
    tolerance: float = 0.01  # absolute, in log2 units
    expected_relation: str = "negated"  # "negated" | "identical"

    image_format: Optional[str] = None

    def __post_init__(self) -> None:
        if self.expected_relation not in RELATIONS:
            raise ValueError(
                f"expected_relation must be one of {', '.join(RELATIONS)}, "
                f"got {self.expected_relation!r}"
            )
        if self.image_format is not None and self.image_format not in IMAGE_FORMATS:
            raise ValueError(
                f"image_format must be one of {', '.join(IMAGE_FORMATS)}, "
                f"got {self.image_format!r}"
            )
        if self.tolerance < 0:
            raise ValueError(f"tolerance must be non-negative, got {self.tolerance}")
        if self.pseudocount < 0:
            raise ValueError(f"pseudocount must be non-negative, got {self.pseudocount}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReportConfig":
        """Build a config from a plain mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(unknown)}")
        values = dict(data)
        for key, value in data.items():
            if key in NUMERIC_FIELDS:
                try:
                    values[key] = float(value)
                except (TypeError, ValueError):
                    raise ValueError(
                        f"Config key '{key}' must be a number, got {value!r}"
                    ) from None
            elif value is None and key in OPTIONAL_FIELDS:
                continue
            elif not isinstance(value, str):
                raise ValueError(
                    f"Config key '{key}' must be a string, got {type(value).__name__}"
                )
        return cls(**values)

    def with_overrides(self, **overrides: Any) -> "ReportConfig":
        """Return a copy with the given fields replaced; ``None`` values are ignored."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)

    @property
    def output_path(self) -> Path:
        return Path(self.output_dir)


def load_config(path: Union[str, Path]) -> ReportConfig:
    """Load a ``ReportConfig`` from a JSON file."""
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    if config_path.suffix.lower() != ".json":
        raise ValueError(
            f"Unsupported config format for '{config_path}'. Use a .json config file."
        )

    try:
        with open(config_path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise ValueError(
            f"Invalid JSON in config '{config_path}' at line {exc.lineno}, "
            f"column {exc.colno}: {exc.msg}"
        ) from exc

    if not isinstance(data, dict):
        raise ValueError(
            f"Invalid config root in '{config_path}': expected JSON object, got {type(data).__name__}."
        )
    return ReportConfig.from_dict(data)
