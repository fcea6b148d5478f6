from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import click

from array_gsea.array_io import read_normalized_array
from array_gsea.cohorts import read_cohort_table
from array_gsea.config import (
    BaseGroup,
    NormalizationSettings,
    PipelineConfig,
    load_config,
)
from array_gsea.errors import ArrayPrepError
from array_gsea.pipeline import run_pipeline, write_outputs

DEFAULT_OUTPUT_DIR = Path("results")


def build_config(
    config_path: Optional[Path],
    control_percentile: Optional[float],
    group_retention_fraction: Optional[float],
    input_log2: bool,
    gene_column: Optional[str] = None,
) -> PipelineConfig:
    """Merge a JSON config file with command-line overrides."""
    base = load_config(config_path).to_dict() if config_path else {}
    if control_percentile is not None:
        base["control_percentile"] = control_percentile
    if group_retention_fraction is not None:
        base["group_retention_fraction"] = group_retention_fraction
    if input_log2:
        base["input_is_log2"] = True
    if gene_column is not None:
        base["gene_column"] = gene_column
    return PipelineConfig.from_mapping(base)


@click.group()
@click.option("--verbose", is_flag=True, help="Enable verbose logging.")
def cli(verbose: bool) -> None:
    """Prepare microarray expression tables for gene-set enrichment analysis."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO)


@cli.command("run")
@click.option(
    "--expression",
    "expression_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Normalized expression TSV (probe id, gene symbol, sample columns).",
)
@click.option(
    "--controls",
    "controls_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Control-probe TSV (control type, sample columns).",
)
@click.option(
    "--cohorts",
    "cohorts_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Tab-delimited sample -> cohort group lookup table.",
)
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=DEFAULT_OUTPUT_DIR,
    show_default=True,
    help="Directory for the contrast tables and run report.",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON configuration file (controlPercentile, groupRetentionFraction, ...).",
)
@click.option(
    "--control-percentile",
    type=click.FloatRange(0.0, 1.0),
    help="Percentile of negative controls used as the noise floor [default: 0.75].",
)
@click.option(
    "--group-retention-fraction",
    type=click.FloatRange(0.0, 1.0),
    help="Minimum present fraction per group to keep a probe [default: 0.75].",
)
@click.option(
    "--input-log2",
    is_flag=True,
    help="The expression matrix is already log2-transformed.",
)
@click.option("--probe-column", default="PROBE_ID", show_default=True)
@click.option(
    "--gene-column",
    default=None,
    help="Gene symbol column in the expression file and output tables [default: SYMBOL].",
)
@click.option("--control-type-column", default="CONTROL_TYPE", show_default=True)
@click.option(
    "--sample-suffix",
    default="",
    help="Suffix stripped from sample column names, e.g. '.AVG_Signal'.",
)
@click.option("--no-header", is_flag=True, help="The cohort table has no header row.")
@click.option("--prefix", default="", help="Prefix for output file names.")
@click.option(
    "--normalization-method",
    default="quantile",
    show_default=True,
    help="Normalization method used upstream (recorded in the report).",
)
def run_command(
    expression_path: Path,
    controls_path: Path,
    cohorts_path: Path,
    output_dir: Path,
    config_path: Optional[Path],
    control_percentile: Optional[float],
    group_retention_fraction: Optional[float],
    input_log2: bool,
    probe_column: str,
    gene_column: Optional[str],
    control_type_column: str,
    sample_suffix: str,
    no_header: bool,
    prefix: str,
    normalization_method: str,
) -> None:
    """Run the full pipeline and write the five contrast tables."""
    try:
        config = build_config(
            config_path,
            control_percentile,
            group_retention_fraction,
            input_log2,
            gene_column=gene_column,
        )
        registry = read_cohort_table(
            cohorts_path, labels=config.labels, has_header=not no_header
        )
        array = read_normalized_array(
            expression_path,
            controls_path,
            probe_column=probe_column,
            gene_column=config.gene_column,
            control_type_column=control_type_column,
            sample_suffix=sample_suffix,
            settings=NormalizationSettings(method=normalization_method),
        )
        result = run_pipeline(array, registry, config)
    except ArrayPrepError as exc:
        raise click.ClickException(str(exc)) from exc

    written = write_outputs(result, output_dir, prefix=prefix)
    report = result.report

    click.echo("\n" + "=" * 60)
    click.echo("PIPELINE SUMMARY")
    click.echo("=" * 60)
    click.echo(f"Probes: {report.n_probes}  Samples: {report.n_samples}")
    for group, stats in report.groups.items():
        click.echo(
            f"  {group}: {stats['retained']} probes kept "
            f"(>= {stats['min_required']} of {stats['samples']} samples)"
        )
    click.echo(f"Union of retained probes: {report.union_size}")
    click.echo(f"Genes after collapse: {report.n_genes}")
    for name, (rows, cols) in report.tables.items():
        click.echo(f"  {name}: {rows} x {cols} -> {written[name]}")
    if report.warnings:
        click.echo("\nWARNINGS:", err=True)
        for warning in report.warnings:
            click.echo(f"  - {warning}", err=True)
    click.echo(f"\nRun report saved to: {written['report']}")
    click.echo("=" * 60)


@cli.command("cohorts")
@click.argument(
    "cohorts_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON configuration file providing cohortLabels.",
)
@click.option("--no-header", is_flag=True, help="The cohort table has no header row.")
def cohorts_command(cohorts_path: Path, config_path: Optional[Path], no_header: bool) -> None:
    """Validate a cohort lookup table and print group sizes."""
    try:
        config = load_config(config_path) if config_path else PipelineConfig()
        registry = read_cohort_table(
            cohorts_path, labels=config.labels, has_header=not no_header
        )
    except ArrayPrepError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(f"{len(registry)} samples in {cohorts_path}")
    for group in BaseGroup:
        members = registry.members(group)
        click.echo(f"  {group.value} ({config.labels.label_for(group)}): {len(members)}")
        for sample in members:
            click.echo(f"    {sample}")


def main() -> None:  # pragma: no cover
    cli()


if __name__ == "__main__":  # pragma: no cover
    main()
