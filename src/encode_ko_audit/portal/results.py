"""
Differential-expression result file parser.

Per-file results come in two tab-separated shapes produced by different
upstream tools:

- DESeq shape (9 or 10 columns): ``id, baseMean, baseMeanA, baseMeanB,
  foldChange, log2FoldChange, pval, padj`` plus either a leading row-number
  column or trailing ``resVarA, resVarB``. Condition A is the knockout,
  condition B the control.
- Replicate shape (15 columns): ``gene_id, gene_name, gene_type, baseMean,
  log2FoldChange, lfcSE, stat, pvalue, padj`` followed by three control and
  three knockout normalized-count columns.

Both are standardized to one set of columns so they can be concatenated.
"""

import logging
import re
from pathlib import Path
from typing import Dict, Iterable, List, Union

import pandas as pd

from encode_ko_audit.analysis.gene_symbols import strip_version
from encode_ko_audit.portal.files import local_result_path

logger = logging.getLogger(__name__)

FORMAT_DESEQ = "deseq"
FORMAT_REPLICATE = "replicate"

COLUMN_COUNTS = {
    9: FORMAT_DESEQ,
    10: FORMAT_DESEQ,
    15: FORMAT_REPLICATE,
}

STANDARD_COLUMNS = [
    "gene_id",
    "gene_id_versioned",
    "mean_knockout",
    "mean_control",
    "reported_log2fc",
    "pvalue",
    "padj",
    "source_format",
]

CONTROL_REPLICATE = re.compile(r"^(control|ctrl|wt)[_.-]?\d+$", re.IGNORECASE)
KNOCKOUT_REPLICATE = re.compile(r"^(knockout|ko|crispr)[_.-]?\d+$", re.IGNORECASE)

NA_VALUES = ["NA", "N/A", "nan", "NaN", ""]


class ResultFormatError(ValueError):
    """Raised when a result table matches neither known shape."""

    def __init__(self, n_columns: int, source: str = ""):
        self.n_columns = n_columns
        self.source = source
        where = f" in {source}" if source else ""
        super().__init__(
            f"Unrecognized result table shape{where}: {n_columns} columns "
            f"(expected {', '.join(str(n) for n in sorted(COLUMN_COUNTS))})"
        )


def detect_format(df: pd.DataFrame, source: str = "") -> str:
    """Classify a raw result table by its column count."""
    n_columns = df.shape[1]
    try:
        return COLUMN_COUNTS[n_columns]
    except KeyError:
        raise ResultFormatError(n_columns, source) from None


def _numeric(series: pd.Series) -> pd.Series:
    return pd.to_numeric(series, errors="coerce")


def _require(df: pd.DataFrame, columns: List[str], fmt: str, source: str) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise ValueError(
            f"{fmt} result table {source} is missing columns: {', '.join(missing)}"
        )


def _standardize_deseq(df: pd.DataFrame, source: str) -> pd.DataFrame:
    first = str(df.columns[0])
    if first == "" or first.startswith("Unnamed"):
        df = df.iloc[:, 1:]

    _require(df, ["id", "baseMeanA", "baseMeanB", "log2FoldChange", "pval", "padj"], FORMAT_DESEQ, source)

    return pd.DataFrame({
        "gene_id_versioned": df["id"].astype(str),
        "mean_knockout": _numeric(df["baseMeanA"]),
        "mean_control": _numeric(df["baseMeanB"]),
        "reported_log2fc": _numeric(df["log2FoldChange"]),
        "pvalue": _numeric(df["pval"]),
        "padj": _numeric(df["padj"]),
    })


def replicate_columns(columns: Iterable[str]) -> Dict[str, List[str]]:
    """Split replicate count columns into control and knockout groups."""
    groups: Dict[str, List[str]] = {"control": [], "knockout": []}
    for col in columns:
        name = str(col).strip()
        if CONTROL_REPLICATE.match(name):
            groups["control"].append(col)
        elif KNOCKOUT_REPLICATE.match(name):
            groups["knockout"].append(col)
    return groups


def _standardize_replicate(df: pd.DataFrame, source: str) -> pd.DataFrame:
    _require(df, ["gene_id", "log2FoldChange", "pvalue", "padj"], FORMAT_REPLICATE, source)

    groups = replicate_columns(df.columns)
    if not groups["control"] or not groups["knockout"]:
        raise ValueError(
            f"{FORMAT_REPLICATE} result table {source} has no "
            f"{'control' if not groups['control'] else 'knockout'} replicate columns"
        )

    control = df[groups["control"]].apply(_numeric)
    knockout = df[groups["knockout"]].apply(_numeric)

    return pd.DataFrame({
        "gene_id_versioned": df["gene_id"].astype(str),
        "mean_knockout": knockout.mean(axis=1),
        "mean_control": control.mean(axis=1),
        "reported_log2fc": _numeric(df["log2FoldChange"]),
        "pvalue": _numeric(df["pvalue"]),
        "padj": _numeric(df["padj"]),
    })


def read_result_file(path: Union[str, Path]) -> pd.DataFrame:
    """
    Parse a result file of either shape into the standard columns.

    Args:
        path: Path to the TSV result file

    Returns:
        DataFrame with ``STANDARD_COLUMNS``
    """
    result_path = Path(path)
    raw = pd.read_csv(
        result_path,
        sep="\t",
        dtype=str,
        na_values=NA_VALUES,
        keep_default_na=False,
    )

    fmt = detect_format(raw, source=str(result_path))
    if fmt == FORMAT_DESEQ:
        df = _standardize_deseq(raw, str(result_path))
    else:
        df = _standardize_replicate(raw, str(result_path))

    df["gene_id"] = df["gene_id_versioned"].map(strip_version)
    df["source_format"] = fmt
    logger.debug(f"Parsed {result_path.name}: {len(df)} genes ({fmt} shape)")
    return df[STANDARD_COLUMNS]


def empty_results() -> pd.DataFrame:
    df = pd.DataFrame(columns=["file_accession"] + STANDARD_COLUMNS)
    for col in ("mean_knockout", "mean_control", "reported_log2fc", "pvalue", "padj"):
        df[col] = df[col].astype(float)
    return df


def load_result_files(
    accessions: Iterable[str],
    data_dir: Union[str, Path],
    file_format: str = "tsv",
) -> pd.DataFrame:
    """
    Load and concatenate the result files present on disk.

    Missing files are skipped (they belong in the download list); files of
    an unrecognized shape are logged and skipped.

    Returns:
        DataFrame with ``file_accession`` plus ``STANDARD_COLUMNS``
    """
    frames = []
    missing = 0

    for accession in accessions:
        path = local_result_path(data_dir, accession, file_format)
        if not path.exists():
            missing += 1
            logger.debug(f"Result file not on disk: {path}")
            continue
        try:
            df = read_result_file(path)
        except ValueError as e:
            logger.warning(f"Skipping {path.name}: {e}")
            continue
        df.insert(0, "file_accession", accession)
        frames.append(df)

    if missing:
        logger.info(f"{missing} result files not yet downloaded")
    if not frames:
        return empty_results()

    combined = pd.concat(frames, ignore_index=True)
    logger.info(
        f"Loaded {len(frames)} result files ({len(combined):,} gene rows)"
    )
    return combined


def group_by_format(results: pd.DataFrame) -> Dict[str, pd.DataFrame]:
    """Split a combined result table by its source shape."""
    return {
        fmt: group.reset_index(drop=True)
        for fmt, group in results.groupby("source_format", sort=True)
    }


def log_format_counts(results: pd.DataFrame) -> None:
    if results.empty:
        return
    counts = results.drop_duplicates("file_accession")["source_format"].value_counts()
    for fmt, n in counts.items():
        logger.info(f"  {fmt} shape: {n} files")
