"""
Fold-change recomputation and orientation diagnosis.

Each result file reports a log2 fold-change per gene. Recomputing it from
the file's own group means (knockout over control) and comparing the two
shows which way round the reported value is oriented. The residual RNA
level of a knocked-out gene is its knockout/control mean ratio; in files
whose reported values run the opposite way to the expected relation the
group labels are taken to be swapped and the reciprocal is used.
"""

import logging
from typing import List

import numpy as np
import pandas as pd

from encode_ko_audit.analysis.gene_symbols import GeneSymbolLookup

logger = logging.getLogger(__name__)

IDENTICAL = "identical"
NEGATED = "negated"
ZERO = "zero"
DISCORDANT = "discordant"
NON_FINITE = "non-finite"
UNDETERMINED = "undetermined"

RELATION_LABELS = [IDENTICAL, NEGATED, ZERO, DISCORDANT, NON_FINITE]
OPPOSITE = {IDENTICAL: NEGATED, NEGATED: IDENTICAL}

MIN_CORRELATION_GENES = 3

ORIENTATION_COLUMNS = [
    "file_accession",
    "source_format",
    "n_genes",
    "n_finite",
    *[f"n_{label.replace('-', '_')}" for label in RELATION_LABELS],
    "dominant_relation",
    "consistent",
    "correlation",
]

RESIDUAL_COLUMNS = [
    "file_accession",
    "experiment_accession",
    "cell_line",
    "target",
    "gene_id",
    "mean_knockout",
    "mean_control",
    "reported_log2fc",
    "recomputed_log2fc",
    "residual_level",
    "dominant_relation",
    "corrected_residual_level",
]


def recompute_log2fc(mean_knockout, mean_control, pseudocount: float = 0.0):
    """
    Recompute log2(knockout / control) from group means.

    Works on scalars, arrays and Series. Zero control means give ``inf``,
    zero knockout means ``-inf`` and 0/0 gives NaN.
    """
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.log2(
            np.divide(mean_knockout + pseudocount, mean_control + pseudocount)
        )


def add_recomputed(results: pd.DataFrame, pseudocount: float = 0.0) -> pd.DataFrame:
    """Add ``recomputed_log2fc`` and a ``finite`` flag to a result table."""
    df = results.copy()
    df["recomputed_log2fc"] = recompute_log2fc(
        df["mean_knockout"].astype(float),
        df["mean_control"].astype(float),
        pseudocount,
    )
    df["finite"] = (
        np.isfinite(df["reported_log2fc"].astype(float))
        & np.isfinite(df["recomputed_log2fc"].astype(float))
    )
    return df


def classify_relation(
    reported: pd.Series,
    recomputed: pd.Series,
    tolerance: float = 0.01,
) -> pd.Series:
    """
    Label how each reported log2FC relates to the recomputed one.

    Returns:
        Series of ``identical``, ``negated``, ``zero`` (both hold, i.e. ~0),
        ``discordant`` or ``non-finite``
    """
    rep = reported.astype(float).to_numpy()
    rec = recomputed.astype(float).to_numpy()

    finite = np.isfinite(rep) & np.isfinite(rec)
    with np.errstate(invalid="ignore"):
        same = finite & (np.abs(rep - rec) <= tolerance)
        flipped = finite & (np.abs(rep + rec) <= tolerance)

    labels = np.select(
        [~finite, same & flipped, same, flipped],
        [NON_FINITE, ZERO, IDENTICAL, NEGATED],
        default=DISCORDANT,
    )
    return pd.Series(labels, index=reported.index, dtype=object)


def _dominant(counts: pd.Series) -> str:
    candidates = counts.reindex([IDENTICAL, NEGATED, DISCORDANT]).fillna(0)
    if candidates.sum() == 0:
        return UNDETERMINED
    top = candidates.max()
    leaders = candidates[candidates == top].index.tolist()
    if len(leaders) > 1:
        return UNDETERMINED
    return leaders[0]


def _correlation(group: pd.DataFrame) -> float:
    usable = group[group["relation"].isin([IDENTICAL, NEGATED, DISCORDANT])]
    if len(usable) < MIN_CORRELATION_GENES:
        return float("nan")
    rep = usable["reported_log2fc"].astype(float)
    rec = usable["recomputed_log2fc"].astype(float)
    if rep.std() == 0 or rec.std() == 0:
        return float("nan")
    return float(np.corrcoef(rep, rec)[0, 1])


def summarize_orientation(
    results: pd.DataFrame,
    tolerance: float = 0.01,
    expected_relation: str = NEGATED,
) -> pd.DataFrame:
    """
    Summarize the reported/recomputed relation per result file.

    Args:
        results: Output of ``add_recomputed``
        tolerance: Absolute log2 tolerance for the comparison
        expected_relation: Relation the reported values should have

    Returns:
        DataFrame with one row per file (``ORIENTATION_COLUMNS``)
    """
    if results.empty:
        return pd.DataFrame(columns=ORIENTATION_COLUMNS)

    df = results.copy()
    df["relation"] = classify_relation(df["reported_log2fc"], df["recomputed_log2fc"], tolerance)

    rows = []
    for accession, group in df.groupby("file_accession", sort=True):
        counts = group["relation"].value_counts()
        dominant = _dominant(counts)
        row = {
            "file_accession": accession,
            "source_format": group["source_format"].iloc[0],
            "n_genes": len(group),
            "n_finite": int((group["relation"] != NON_FINITE).sum()),
        }
        for label in RELATION_LABELS:
            row[f"n_{label.replace('-', '_')}"] = int(counts.get(label, 0))
        row["dominant_relation"] = dominant
        row["consistent"] = dominant == expected_relation
        row["correlation"] = _correlation(group)
        rows.append(row)

    summary = pd.DataFrame(rows, columns=ORIENTATION_COLUMNS)
    n_inconsistent = int((~summary["consistent"]).sum())
    if n_inconsistent:
        logger.warning(
            f"{n_inconsistent} of {len(summary)} files do not show the expected "
            f"'{expected_relation}' relation between reported and recomputed log2FC"
        )
    else:
        logger.info(f"All {len(summary)} files show the '{expected_relation}' relation")
    return summary


def residual_levels(
    results: pd.DataFrame,
    knockout_files: pd.DataFrame,
    lookup: GeneSymbolLookup,
    orientation: pd.DataFrame,
    expected_relation: str = NEGATED,
) -> pd.DataFrame:
    """
    Residual RNA level of each knocked-out gene in its own result file.

    Args:
        results: Output of ``add_recomputed``
        knockout_files: Output of ``filter_knockout_files``
        lookup: Symbol -> Ensembl ID resolution
        orientation: Output of ``summarize_orientation``
        expected_relation: Relation the reported values should have

    Returns:
        DataFrame with ``RESIDUAL_COLUMNS``, sorted by corrected level
    """
    if results.empty or knockout_files.empty:
        return pd.DataFrame(columns=RESIDUAL_COLUMNS)

    loaded = set(results["file_accession"])
    target_rows: List[dict] = []
    for row in knockout_files.itertuples(index=False):
        if row.file_accession not in loaded:
            continue
        gene_ids = lookup.ids_for_symbol(row.target)
        if not gene_ids:
            logger.warning(f"Unknown target symbol {row.target!r} ({row.file_accession})")
            continue
        for gene_id in gene_ids:
            target_rows.append({
                "file_accession": row.file_accession,
                "experiment_accession": row.experiment_accession,
                "cell_line": row.cell_line,
                "target": row.target,
                "gene_id": gene_id,
            })

    if not target_rows:
        return pd.DataFrame(columns=RESIDUAL_COLUMNS)

    targets = pd.DataFrame(target_rows)
    merged = targets.merge(
        results[["file_accession", "gene_id", "mean_knockout", "mean_control",
                 "reported_log2fc", "recomputed_log2fc"]],
        on=["file_accession", "gene_id"],
        how="inner",
    )

    absent = targets.drop_duplicates("file_accession").merge(
        merged[["file_accession"]].drop_duplicates(), how="left", indicator=True
    )
    for row in absent[absent["_merge"] == "left_only"].itertuples(index=False):
        logger.warning(f"Target {row.target} not found in {row.file_accession}")

    if merged.empty:
        return pd.DataFrame(columns=RESIDUAL_COLUMNS)

    with np.errstate(divide="ignore", invalid="ignore"):
        merged["residual_level"] = (
            merged["mean_knockout"].astype(float) / merged["mean_control"].astype(float)
        )

    merged = merged.merge(
        orientation[["file_accession", "dominant_relation"]],
        on="file_accession",
        how="left",
    )
    merged["dominant_relation"] = merged["dominant_relation"].fillna(UNDETERMINED)

    swapped = merged["dominant_relation"] == OPPOSITE[expected_relation]
    with np.errstate(divide="ignore"):
        merged["corrected_residual_level"] = np.where(
            swapped, 1.0 / merged["residual_level"], merged["residual_level"]
        )
    if swapped.any():
        logger.info(
            f"Took the reciprocal residual level for {int(swapped.sum())} targets "
            f"in files with swapped orientation"
        )

    merged = merged.sort_values(["corrected_residual_level", "target"]).reset_index(drop=True)
    return merged[RESIDUAL_COLUMNS]
