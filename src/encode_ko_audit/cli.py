from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import click
import requests

from encode_ko_audit.config import RELATIONS, IMAGE_FORMATS, ReportConfig, load_config
from encode_ko_audit.portal.downloader import PortalDownloader
from encode_ko_audit.portal.files import read_download_list, read_files_list
from encode_ko_audit.report import plan, run_report


def _config(ctx: click.Context, **overrides) -> ReportConfig:
    base: ReportConfig = ctx.obj["config"]
    try:
        return base.with_overrides(**{k: str(v) if isinstance(v, Path) else v for k, v in overrides.items()})
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc


def _input_options(func):
    options = [
        click.option(
            "--files-list",
            type=click.Path(dir_okay=False, path_type=Path),
            help="Cart export listing the metadata URL and file URLs.  [default: files.txt]",
        ),
        click.option(
            "--metadata",
            "metadata_file",
            type=click.Path(dir_okay=False, path_type=Path),
            help="Cart metadata table.  [default: metadata.tsv]",
        ),
        click.option(
            "--data-dir",
            type=click.Path(file_okay=False, path_type=Path),
            help="Directory holding downloaded result files.  [default: data]",
        ),
        click.option(
            "--download-list",
            type=click.Path(dir_okay=False, path_type=Path),
            help="Where to write URLs still to download.  [default: download_files.txt]",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.option("--verbose", is_flag=True, help="Enable verbose logging.")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON file with report settings (command-line flags take precedence).",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_path: Optional[Path]) -> None:
    """Audit reported fold-changes of ENCODE CRISPR-knockout RNA-seq results."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config(config_path) if config_path else ReportConfig()
    except (FileNotFoundError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc


@cli.command("plan")
@_input_options
@click.pass_context
def plan_command(
    ctx: click.Context,
    files_list: Optional[Path],
    metadata_file: Optional[Path],
    data_dir: Optional[Path],
    download_list: Optional[Path],
) -> None:
    """Select knockout result files and list the ones still to download."""
    config = _config(
        ctx,
        files_list=files_list,
        metadata_file=metadata_file,
        data_dir=data_dir,
        download_list=download_list,
    )
    try:
        result = plan(config)
    except (FileNotFoundError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(f"Knockout result files: {len(result.knockout_files)}")
    click.echo(f"Still to download: {len(result.download_urls)} -> {config.download_list}")
    if result.download_urls:
        click.echo(f"Fetch them with: xargs -L 1 curl -O -J -L < {config.download_list}")


@cli.command("fetch-metadata")
@click.option(
    "--files-list",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Cart export whose first line is the metadata URL.  [default: files.txt]",
)
@click.option(
    "--metadata",
    "metadata_file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Where to save the metadata table.  [default: metadata.tsv]",
)
@click.pass_context
def fetch_metadata_command(
    ctx: click.Context,
    files_list: Optional[Path],
    metadata_file: Optional[Path],
) -> None:
    """Download the cart metadata table named in files.txt."""
    config = _config(ctx, files_list=files_list, metadata_file=metadata_file)
    try:
        listing = read_files_list(config.files_list)
    except FileNotFoundError as exc:
        raise click.ClickException(str(exc)) from exc
    if not listing.metadata_url:
        raise click.ClickException(f"No metadata URL on the first line of {config.files_list}")

    downloader = PortalDownloader(config.data_dir)
    try:
        path = downloader.fetch_metadata(listing.metadata_url, config.metadata_file)
    except requests.RequestException as exc:
        raise click.ClickException(f"Failed to fetch metadata: {exc}") from exc
    click.echo(f"Metadata saved to {path}.")


@cli.command("download")
@click.option(
    "--download-list",
    type=click.Path(dir_okay=False, path_type=Path),
    help="URLs to download, one per line.  [default: download_files.txt]",
)
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory to save result files into.  [default: data]",
)
@click.option("--dry-run", is_flag=True, help="Log what would be downloaded without fetching.")
@click.pass_context
def download_command(
    ctx: click.Context,
    download_list: Optional[Path],
    data_dir: Optional[Path],
    dry_run: bool,
) -> None:
    """Download the result files listed by `plan`."""
    config = _config(ctx, download_list=download_list, data_dir=data_dir)
    try:
        urls = read_download_list(config.download_list)
    except FileNotFoundError as exc:
        raise click.ClickException(str(exc)) from exc
    if not urls:
        click.echo("Nothing to download.")
        return

    summary = PortalDownloader(config.data_dir, dry_run=dry_run).run(urls)
    click.echo(
        f"Downloaded {len(summary.downloaded)}, skipped {len(summary.skipped)}, "
        f"failed {len(summary.failed)}."
    )
    if not summary.ok:
        click.echo("Failed downloads (rerun to retry):", err=True)
        for url in summary.failed:
            click.echo(f"  - {url}", err=True)
        ctx.exit(1)


@cli.command("report")
@_input_options
@click.option(
    "--annotation",
    "annotation_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Gene annotation table (Ensembl ID and symbol columns). Defaults to HGNC.",
)
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory for tables and figures.  [default: reports]",
)
@click.option("--pseudocount", type=click.FloatRange(min=0.0), help="Added to both group means.  [default: 0]")
@click.option("--tolerance", type=click.FloatRange(min=0.0), help="Absolute log2 tolerance.  [default: 0.01]")
@click.option(
    "--expected-relation",
    type=click.Choice(RELATIONS),
    help="Expected relation of reported to recomputed log2FC.  [default: negated]",
)
@click.option(
    "--image-format",
    type=click.Choice(IMAGE_FORMATS),
    help="Also export the residual plot as a static image (needs kaleido).",
)
@click.pass_context
def report_command(
    ctx: click.Context,
    files_list: Optional[Path],
    metadata_file: Optional[Path],
    data_dir: Optional[Path],
    download_list: Optional[Path],
    annotation_file: Optional[Path],
    output_dir: Optional[Path],
    pseudocount: Optional[float],
    tolerance: Optional[float],
    expected_relation: Optional[str],
    image_format: Optional[str],
) -> None:
    """Recompute fold-changes and plot reported vs recomputed values."""
    config = _config(
        ctx,
        files_list=files_list,
        metadata_file=metadata_file,
        data_dir=data_dir,
        download_list=download_list,
        annotation_file=annotation_file,
        output_dir=output_dir,
        pseudocount=pseudocount,
        tolerance=tolerance,
        expected_relation=expected_relation,
        image_format=image_format,
    )
    try:
        result = run_report(config)
    except (FileNotFoundError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo("\n" + "=" * 60)
    click.echo("REPORT SUMMARY")
    click.echo("=" * 60)
    for key, value in result.get_stats().items():
        click.echo(f"{key}: {value}")
    for error in result.errors:
        click.echo(f"⚠ {error}", err=True)
    for name, path in result.outputs.items():
        click.echo(f"{name}: {path}")
    click.echo("=" * 60)


def main() -> None:  # pragma: no cover
    cli()


if __name__ == "__main__":  # pragma: no cover
    main()
