"""
Pipeline orchestrator.

Runs the stages in order, each as an explicit function call on explicit
matrices, and writes the contrast tables plus a run report.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np
import pandas as pd

from .array_io import NormalizedArray, write_table
from .cohorts import CohortRegistry
from .collapse import collapse_to_genes
from .config import BaseGroup, PipelineConfig
from .contrasts import ContrastTables, build_contrasts, check_pairing
from .filters import (
    GroupRetention,
    apply_signal_filter,
    estimate_noise_floor,
    filter_all_groups,
    merge_retained_probes,
)

logger = logging.getLogger(__name__)


@dataclass
class PipelineReport:
    """Summary of one run, serializable to JSON."""

    config: Dict[str, Any]
    normalization: Dict[str, Any]
    n_probes: int = 0
    n_samples: int = 0
    thresholds: Dict[str, Optional[float]] = field(default_factory=dict)
    groups: Dict[str, Dict[str, int]] = field(default_factory=dict)
    union_size: int = 0
    n_genes: int = 0
    tables: Dict[str, List[int]] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PipelineResult:
    """Every intermediate matrix of a run plus its outputs."""

    thresholds: pd.Series
    masked: pd.DataFrame
    backup: pd.DataFrame
    retentions: Dict[BaseGroup, GroupRetention]
    merged: pd.DataFrame
    genes: pd.DataFrame
    tables: ContrastTables
    report: PipelineReport

    def retention_counts(self) -> pd.DataFrame:
        """Per-probe present counts for each group."""
        counts = pd.concat(
            {group.value: r.present_counts for group, r in self.retentions.items()},
            axis=1,
        )
        counts.index.name = self.backup.index.name or "PROBE_ID"
        return counts.reset_index()


def run_pipeline(
    array: NormalizedArray,
    registry: CohortRegistry,
    config: Optional[PipelineConfig] = None,
) -> PipelineResult:
    """
    Run the full probe -> contrast table pipeline.

    Args:
        array: Normalized intensities, probe annotation, and control probes
        registry: Cohort group membership
        config: Thresholds and labels (defaults if None)

    Returns:
        PipelineResult with intermediate matrices, tables, and report
    """
    config = config or PipelineConfig()
    report = PipelineReport(
        config=config.to_dict(),
        normalization=asdict(array.settings),
        n_probes=array.n_probes,
        n_samples=len(array.samples),
    )

    # Fatal preconditions before filtering
    registry.validate_against(array.samples)
    check_pairing(registry)

    expression = array.expression[registry.samples]
    log_expr = expression if config.input_is_log2 else np.log2(expression)

    thresholds = estimate_noise_floor(
        array.controls,
        registry.samples,
        percentile=config.control_percentile,
        control_type=config.negative_control_type,
    )
    # JSON has no -inf or NaN; a floor with no usable control level is null
    report.thresholds = {
        str(k): float(v) if np.isfinite(v) else None for k, v in thresholds.items()
    }

    signal = apply_signal_filter(log_expr, thresholds)

    retentions = filter_all_groups(signal.masked, registry, config.group_retention_fraction)
    for group, retention in retentions.items():
        report.groups[group.value] = {
            "samples": len(registry.members(group)),
            "min_required": retention.min_required,
            "retained": len(retention.retained),
        }
        if retention.is_empty:
            report.warnings.append(
                f"{group.value}: every probe failed the retention filter "
                f"(needs {retention.min_required} of {len(registry.members(group))} samples)"
            )

    merged = merge_retained_probes(retentions, signal.backup)
    report.union_size = len(merged)

    genes = collapse_to_genes(merged, array.probes, gene_column=config.gene_column)
    report.n_genes = len(genes)

    tables = build_contrasts(genes, registry, config)
    report.tables = {name: [len(t), t.shape[1] - 1] for name, t in tables.items()}

    logger.info(
        "Pipeline complete: %d probes -> %d retained -> %d genes",
        array.n_probes,
        len(merged),
        len(genes),
    )
    return PipelineResult(
        thresholds=thresholds,
        masked=signal.masked,
        backup=signal.backup,
        retentions=retentions,
        merged=merged,
        genes=genes,
        tables=tables,
        report=report,
    )


def write_outputs(
    result: PipelineResult,
    output_dir: Union[str, Path],
    prefix: str = "",
) -> Dict[str, Path]:
    """
    Write the contrast tables, diagnostics, and run report.

    Returns:
        Mapping of output name to written path
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    written: Dict[str, Path] = {}
    for name, table in result.tables.items():
        written[name] = write_table(table, output_dir / f"{prefix}{name}.txt")

    written["retention_counts"] = write_table(
        result.retention_counts(), output_dir / f"{prefix}retention_counts.tsv"
    )

    report = result.report.to_dict()
    report["timestamp"] = datetime.now(timezone.utc).isoformat()
    report_path = output_dir / f"{prefix}run_report.json"
    with report_path.open("w", encoding="utf-8") as fh:
        json.dump(report, fh, indent=2, allow_nan=False)
    written["report"] = report_path

    logger.info("Wrote %d files to %s", len(written), output_dir)
    return written
