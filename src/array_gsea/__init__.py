"""Microarray preparation for gene-set enrichment analysis.

Turns normalized probe intensities and a sample -> cohort lookup table
into gene-level contrast tables (TBAM_POS, TBAM_NEG, MEDIA, TB, TBMM).

Usage::

    from array_gsea import PipelineConfig, read_cohort_table, read_normalized_array, run_pipeline

    array = read_normalized_array("expression.tsv", "controls.tsv")
    registry = read_cohort_table("cohorts.tsv")
    result = run_pipeline(array, registry, PipelineConfig(control_percentile=0.9))
    result.tables.tb.head()
"""

from array_gsea.array_io import NormalizedArray, read_normalized_array, write_table
from array_gsea.cohorts import CohortRegistry, read_cohort_table
from array_gsea.collapse import collapse_to_genes
from array_gsea.config import (
    BaseGroup,
    CohortLabels,
    NormalizationSettings,
    PipelineConfig,
    load_config,
)
from array_gsea.contrasts import ContrastTables, build_contrasts
from array_gsea.errors import ArrayPrepError, ConfigurationError, DataShapeError
from array_gsea.filters import (
    apply_signal_filter,
    estimate_noise_floor,
    filter_all_groups,
    merge_retained_probes,
    retain_group_probes,
)
from array_gsea.pipeline import PipelineReport, PipelineResult, run_pipeline, write_outputs

__all__ = [
    "ArrayPrepError",
    "BaseGroup",
    "CohortLabels",
    "CohortRegistry",
    "ConfigurationError",
    "ContrastTables",
    "DataShapeError",
    "NormalizationSettings",
    "NormalizedArray",
    "PipelineConfig",
    "PipelineReport",
    "PipelineResult",
    "apply_signal_filter",
    "build_contrasts",
    "collapse_to_genes",
    "estimate_noise_floor",
    "filter_all_groups",
    "load_config",
    "merge_retained_probes",
    "read_cohort_table",
    "read_normalized_array",
    "retain_group_probes",
    "run_pipeline",
    "write_outputs",
    "write_table",
]
