"""
Report orchestrator.

Runs the audit from the cart export to the figures: select knockout files
from the metadata, list the ones still to download, load the result files
present on disk, recompute fold-changes, summarize their orientation and
plot reported against recomputed values and the residual target levels.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import urljoin

import pandas as pd

from encode_ko_audit.analysis.fold_change import (
    add_recomputed,
    residual_levels,
    summarize_orientation,
)
from encode_ko_audit.analysis.gene_symbols import GeneSymbolLookup
from encode_ko_audit.config import ReportConfig
from encode_ko_audit.plotting import ReportVisualizer
from encode_ko_audit.portal.files import (
    PORTAL_URL,
    local_result_path,
    needs_download,
    plan_downloads,
    read_files_list,
    write_download_list,
)
from encode_ko_audit.portal.metadata import filter_knockout_files, read_metadata
from encode_ko_audit.portal.results import load_result_files, log_format_counts

logger = logging.getLogger(__name__)

ORIENTATION_FILE = "orientation_summary.tsv"
RESIDUALS_FILE = "residual_levels.tsv"
SCATTER_FILE = "fold_change_scatter.html"
RESIDUAL_PLOT_FILE = "residual_levels.html"


class ReportResult:
    """Container for report outputs."""

    def __init__(self):
        self.knockout_files: pd.DataFrame = pd.DataFrame()
        self.results: pd.DataFrame = pd.DataFrame()
        self.orientation: pd.DataFrame = pd.DataFrame()
        self.residuals: pd.DataFrame = pd.DataFrame()
        self.missing_accessions: List[str] = []
        self.download_urls: List[str] = []
        self.outputs: Dict[str, Path] = {}
        self.errors: List[str] = []

    def get_stats(self) -> Dict[str, int]:
        stats = {
            "knockout_files": len(self.knockout_files),
            "files_to_download": len(self.download_urls),
            "files_missing": len(self.missing_accessions),
            "files_loaded": (
                self.results["file_accession"].nunique() if not self.results.empty else 0
            ),
            "gene_rows": len(self.results),
            "targets_measured": len(self.residuals),
        }
        if not self.orientation.empty:
            stats["files_consistent"] = int(self.orientation["consistent"].sum())
            stats["files_inconsistent"] = int((~self.orientation["consistent"]).sum())
        return stats


def plan(config: ReportConfig) -> ReportResult:
    """Select knockout files and write the list of URLs still to download."""
    result = ReportResult()

    files_list = read_files_list(config.files_list)
    metadata = read_metadata(config.metadata_file)
    knockout = filter_knockout_files(metadata, config)
    result.knockout_files = knockout

    accessions = knockout["file_accession"].tolist()
    result.missing_accessions = [
        acc for acc in accessions
        if needs_download(local_result_path(config.data_dir, acc, config.file_format))
    ]

    result.download_urls = plan_downloads(
        files_list, accessions, config.data_dir, config.file_format
    )

    # Missing files absent from files.txt fall back to the metadata download URL
    listed = set(files_list.accessions())
    for row in knockout.itertuples(index=False):
        if row.file_accession in listed or row.file_accession not in result.missing_accessions:
            continue
        if isinstance(row.download_url, str) and row.download_url.strip():
            result.download_urls.append(urljoin(PORTAL_URL, row.download_url.strip()))

    result.outputs["download_list"] = write_download_list(
        result.download_urls, config.download_list
    )
    return result


def run_report(
    config: ReportConfig,
    lookup: Optional[GeneSymbolLookup] = None,
) -> ReportResult:
    """
    Run the full audit and write tables and figures to ``config.output_dir``.

    Args:
        config: Report configuration
        lookup: Gene symbol lookup (built from ``config.annotation_file`` if omitted)

    Returns:
        ReportResult with every intermediate table and the written outputs
    """
    result = plan(config)
    knockout = result.knockout_files
    logger.info(
        f"{len(knockout)} knockout files selected, "
        f"{len(result.download_urls)} still to download"
    )

    results = load_result_files(
        knockout["file_accession"].tolist(), config.data_dir, config.file_format
    )
    if results.empty:
        message = (
            f"No result files found in {config.data_dir}; "
            f"download them with: xargs -L 1 curl -O -J -L < {config.download_list}"
        )
        logger.warning(message)
        result.errors.append(message)
        return result
    log_format_counts(results)

    results = add_recomputed(results, config.pseudocount)
    result.results = results

    result.orientation = summarize_orientation(
        results, config.tolerance, config.expected_relation
    )

    if lookup is None:
        lookup = GeneSymbolLookup(annotation_file=config.annotation_file)
    result.residuals = residual_levels(
        results, knockout, lookup, result.orientation, config.expected_relation
    )

    _write_outputs(result, config)

    logger.info("Report summary:")
    for key, value in result.get_stats().items():
        logger.info(f"  {key}: {value}")
    return result


def _write_outputs(result: ReportResult, config: ReportConfig) -> None:
    out_dir = config.output_path
    out_dir.mkdir(parents=True, exist_ok=True)

    orientation_path = out_dir / ORIENTATION_FILE
    result.orientation.to_csv(orientation_path, sep="\t", index=False)
    result.outputs["orientation"] = orientation_path

    residuals_path = out_dir / RESIDUALS_FILE
    result.residuals.to_csv(residuals_path, sep="\t", index=False)
    result.outputs["residuals"] = residuals_path

    viz = ReportVisualizer()
    scatter = viz.fold_change_scatter(result.results)
    result.outputs["scatter"] = viz.save_html(scatter, out_dir / SCATTER_FILE)

    residual_fig = viz.residual_plot(result.residuals)
    result.outputs["residual_plot"] = viz.save_html(residual_fig, out_dir / RESIDUAL_PLOT_FILE)

    if config.image_format:
        image_path = out_dir / f"residual_levels.{config.image_format}"
        result.outputs["residual_image"] = viz.save_image(
            residual_fig, image_path, config.image_format
        )
