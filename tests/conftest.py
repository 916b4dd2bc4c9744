"""Shared builders for synthetic cart exports and result files."""

from pathlib import Path
from typing import Iterable, List, Sequence, Tuple

import pandas as pd
import pytest

from encode_ko_audit.config import DEFAULT_ASSAY, DEFAULT_OUTPUT_TYPE, ReportConfig

METADATA_URL = "https://www.encodeproject.org/metadata/?type=Experiment&cart=%2Fcarts%2Fabc%2F"

DESEQ_COLUMNS = [
    "id", "baseMean", "baseMeanA", "baseMeanB",
    "foldChange", "log2FoldChange", "pval", "padj",
]
REPLICATE_COLUMNS = [
    "gene_id", "gene_name", "gene_type", "baseMean", "log2FoldChange",
    "lfcSE", "stat", "pvalue", "padj",
    "control_1", "control_2", "control_3",
    "knockout_1", "knockout_2", "knockout_3",
]


def file_url(accession: str, ext: str = "tsv") -> str:
    return f"https://www.encodeproject.org/files/{accession}/@@download/{accession}.{ext}"


def write_deseq(
    path: Path,
    rows: Iterable[Tuple[str, float, float, float]],
    leading_index: bool = True,
    res_var: bool = False,
) -> Path:
    """Write a DESeq-shape table. Rows are (gene_id, mean_A_knockout, mean_B_control, log2FC)."""
    header = list(DESEQ_COLUMNS)
    if res_var:
        header += ["resVarA", "resVarB"]
    if leading_index:
        header = [""] + header

    lines = ["\t".join(header)]
    for i, (gene_id, mean_a, mean_b, log2fc) in enumerate(rows, 1):
        fold = "NA" if mean_a == 0 else f"{mean_b / mean_a:g}"
        values = [gene_id, f"{(mean_a + mean_b) / 2:g}", f"{mean_a:g}", f"{mean_b:g}",
                  fold, f"{log2fc:g}", "0.001", "0.01"]
        if res_var:
            values += ["1.1", "0.9"]
        if leading_index:
            values = [str(i)] + values
        lines.append("\t".join(values))
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n")
    return path


def write_replicate(
    path: Path,
    rows: Iterable[Tuple[str, Sequence[float], Sequence[float], float]],
) -> Path:
    """Write a replicate-shape table. Rows are (gene_id, control_reps, knockout_reps, log2FC)."""
    lines = ["\t".join(REPLICATE_COLUMNS)]
    for gene_id, control, knockout, log2fc in rows:
        base_mean = (sum(control) + sum(knockout)) / (len(control) + len(knockout))
        values = [gene_id, "SYM", "protein_coding", f"{base_mean:g}", f"{log2fc:g}",
                  "0.2", "3.1", "0.002", "0.02"]
        values += [f"{v:g}" for v in control] + [f"{v:g}" for v in knockout]
        lines.append("\t".join(values))
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n")
    return path


def _metadata_row(
    accession: str,
    experiment: str,
    cell_line: str,
    assay: str = DEFAULT_ASSAY,
    output_type: str = DEFAULT_OUTPUT_TYPE,
    file_format: str = "tsv",
    method: str = "CRISPR",
    mod_target: str = "",
    exp_target: str = "",
) -> dict:
    return {
        "File accession": accession,
        "File format": file_format,
        "Output type": output_type,
        "Experiment accession": experiment,
        "Assay": assay,
        "Biosample term name": cell_line,
        "Biosample genetic modifications methods": method,
        "Biosample genetic modifications targets": mod_target,
        "Experiment target": exp_target,
        "File download URL": f"/files/{accession}/@@download/{accession}.{file_format}",
    }


def write_metadata(path: Path, rows: List[dict]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    pd.DataFrame(rows).to_csv(path, sep="\t", index=False)
    return path


# ---------------------------------------------------------------------------
# Workspace: five files, two loadable knockouts with opposite orientation
# ---------------------------------------------------------------------------

# F1 (DESeq shape, K562): reported = -recomputed, GENEA at 10 / 40
DESEQ_ROWS = [
    ("ENSG00000000001.3", 10.0, 40.0, 2.0),
    ("ENSG00000000003.1", 20.0, 10.0, -1.0),
    ("ENSG00000000004.7", 5.0, 5.0, 0.0),
    ("ENSG00000000005.2", 8.0, 2.0, -2.0),
]

# F2 (replicate shape, HepG2): reported = recomputed, GENEB at 40 / 10
REPLICATE_ROWS = [
    ("ENSG00000000002.9", [10.0, 10.0, 10.0], [40.0, 40.0, 40.0], 2.0),
    ("ENSG00000000003.1", [10.0, 12.0, 14.0], [24.0, 24.0, 24.0], 1.0),
    ("ENSG00000000005.2", [32.0, 32.0, 32.0], [8.0, 8.0, 8.0], -2.0),
]


@pytest.fixture
def workspace(tmp_path: Path) -> ReportConfig:
    """A cart export with result files on disk; returns a config pointing at it."""
    files = ["ENCFF001AAA", "ENCFF002BBB", "ENCFF003CCC", "ENCFF004DDD", "ENCFF005EEE"]
    (tmp_path / "files.txt").write_text(
        "\n".join([METADATA_URL] + [file_url(acc) for acc in files]) + "\n"
    )

    write_metadata(tmp_path / "metadata.tsv", [
        _metadata_row("ENCFF001AAA", "ENCSR001AAA", "K562", mod_target="/targets/GENEA-human/"),
        _metadata_row("ENCFF002BBB", "ENCSR002BBB", "HepG2", exp_target="GENEB-human"),
        _metadata_row("ENCFF003CCC", "ENCSR003CCC", "K562",
                      assay="shRNA knockdown followed by RNA-seq", method="RNAi",
                      mod_target="/targets/GENEC-human/"),
        _metadata_row("ENCFF004DDD", "ENCSR004DDD", "HepG2", mod_target="/targets/GENEC-human/"),
        _metadata_row("ENCFF005EEE", "ENCSR001AAA", "K562",
                      output_type="gene quantifications", mod_target="/targets/GENEA-human/"),
    ])

    write_deseq(tmp_path / "data" / "ENCFF001AAA.tsv", DESEQ_ROWS)
    write_replicate(tmp_path / "data" / "ENCFF002BBB.tsv", REPLICATE_ROWS)

    (tmp_path / "annotation.tsv").write_text(
        "gene_id\tgene_name\n"
        "ENSG00000000001.3\tGENEA\n"
        "ENSG00000000002.9\tGENEB\n"
        "ENSG00000000006.1\tGENEC\n"
        "ENSG00000000003.1\tOTHER1\n"
    )

    return ReportConfig(
        files_list=str(tmp_path / "files.txt"),
        metadata_file=str(tmp_path / "metadata.tsv"),
        data_dir=str(tmp_path / "data"),
        download_list=str(tmp_path / "download_files.txt"),
        output_dir=str(tmp_path / "reports"),
        annotation_file=str(tmp_path / "annotation.tsv"),
    )
