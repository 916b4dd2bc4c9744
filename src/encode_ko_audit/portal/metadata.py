"""
Cart metadata table parsing and knockout file selection.

The portal's ``metadata.tsv`` has one row per file with experiment-level
attributes (assay, biosample, genetic modification). Knockout result files
are selected by column-value predicates and their target column is reduced
to a plain gene symbol.
"""

import logging
import re
from pathlib import Path
from typing import Optional, Union

import pandas as pd

from encode_ko_audit.config import ReportConfig

logger = logging.getLogger(__name__)

# Metadata columns (portal names)
COL_ACCESSION = "File accession"
COL_FORMAT = "File format"
COL_OUTPUT_TYPE = "Output type"
COL_EXPERIMENT = "Experiment accession"
COL_ASSAY = "Assay"
COL_BIOSAMPLE = "Biosample term name"
COL_MOD_METHODS = "Biosample genetic modifications methods"
COL_MOD_TARGETS = "Biosample genetic modifications targets"
COL_TARGET = "Experiment target"
COL_URL = "File download URL"

REQUIRED_COLUMNS = [COL_ACCESSION, COL_ASSAY]

KNOCKOUT_COLUMNS = [
    "file_accession",
    "experiment_accession",
    "assay",
    "cell_line",
    "target",
    "download_url",
]

_SPECIES_SUFFIX = re.compile(r"-(human|mouse|fly|worm)$", re.IGNORECASE)


def read_metadata(path: Union[str, Path]) -> pd.DataFrame:
    """
    Read a cart ``metadata.tsv``.

    Args:
        path: Path to the metadata table

    Returns:
        DataFrame with every value as a string (blank cells become NaN)
    """
    meta_path = Path(path)
    if not meta_path.exists():
        raise FileNotFoundError(f"Metadata file not found: {meta_path}")

    df = pd.read_csv(meta_path, sep="\t", dtype=str, low_memory=False)
    df.columns = [c.strip() for c in df.columns]

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(
            f"Metadata file {meta_path} is missing required columns: {', '.join(missing)}"
        )

    logger.debug(f"Read {len(df)} metadata rows from {meta_path}")
    return df


def clean_target(value) -> Optional[str]:
    """
    Reduce a target identifier to a gene symbol.

    Examples:
        "/targets/ZNF24-human/" -> "ZNF24"
        "ZNF24-human" -> "ZNF24"
        "NKX2-1-human" -> "NKX2-1"
        "/targets/ZNF24-human/, /targets/ZNF25-human/" -> "ZNF24"
    """
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    text = str(value).strip()
    if not text:
        return None

    first = text.split(",")[0].strip()
    first = first.strip("/")
    if first.startswith("targets/"):
        first = first[len("targets/"):]
    first = first.strip("/")
    symbol = _SPECIES_SUFFIX.sub("", first).strip()
    return symbol or None


def _column(df: pd.DataFrame, name: str) -> pd.Series:
    if name in df.columns:
        return df[name]
    return pd.Series([None] * len(df), index=df.index, dtype=object)


def _strip_equals(series: pd.Series, wanted: str) -> pd.Series:
    return series.fillna("").str.strip() == wanted


def filter_knockout_files(metadata: pd.DataFrame, config: ReportConfig) -> pd.DataFrame:
    """
    Select CRISPR-knockout result files and clean their targets.

    Args:
        metadata: Table from ``read_metadata``
        config: Filter values (assay, output type, file format, method)

    Returns:
        DataFrame with columns ``file_accession, experiment_accession, assay,
        cell_line, target, download_url``
    """
    df = metadata
    n_start = len(df)

    predicates = [
        ("assay", _strip_equals(_column(df, COL_ASSAY), config.assay)),
    ]
    if config.output_type:
        predicates.append(
            ("output type", _strip_equals(_column(df, COL_OUTPUT_TYPE), config.output_type))
        )
    if config.file_format:
        predicates.append(
            ("file format", _strip_equals(_column(df, COL_FORMAT), config.file_format))
        )
    if config.modification_method:
        methods = _column(df, COL_MOD_METHODS).fillna("").str.lower()
        predicates.append(
            ("modification method", methods.str.contains(config.modification_method.lower(), regex=False))
        )

    for label, mask in predicates:
        before = len(df)
        df = df[mask.loc[df.index]]
        logger.info(f"Filter on {label}: {before} -> {len(df)} files")

    targets = _column(df, COL_MOD_TARGETS).map(clean_target)
    fallback = _column(df, COL_TARGET).map(clean_target)
    targets = targets.where(targets.notna(), fallback)

    selected = pd.DataFrame({
        "file_accession": _column(df, COL_ACCESSION).str.strip(),
        "experiment_accession": _column(df, COL_EXPERIMENT),
        "assay": _column(df, COL_ASSAY),
        "cell_line": _column(df, COL_BIOSAMPLE),
        "target": targets,
        "download_url": _column(df, COL_URL),
    })

    no_target = selected["target"].isna()
    if no_target.any():
        logger.warning(
            f"Dropping {int(no_target.sum())} files without a knockout target: "
            f"{', '.join(selected.loc[no_target, 'file_accession'].astype(str))}"
        )
    selected = selected[~no_target].drop_duplicates(subset="file_accession")

    logger.info(f"Selected {len(selected)} of {n_start} files as knockout results")
    return selected.reset_index(drop=True)[KNOCKOUT_COLUMNS]
