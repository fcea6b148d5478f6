"""
Probe filtering stages.

Noise floor estimation from negative-control probes, per-sample signal
masking, per-group probe retention, and the union merge that restores
unmasked values for every surviving probe.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from .cohorts import CohortRegistry
from .config import BaseGroup
from .errors import DataShapeError

logger = logging.getLogger(__name__)


# =============================================================================
# Noise floor
# =============================================================================


def estimate_noise_floor(
    controls: pd.DataFrame,
    samples: Iterable[str],
    percentile: float = 0.75,
    control_type: str = "NEGATIVE",
    type_column: str = "control_type",
) -> pd.Series:
    """
    Compute a log2 detection threshold per sample from negative controls.

    Args:
        controls: Control-probe matrix with a control type column and
            linear-scale intensities per sample
        samples: Sample columns needing a threshold
        percentile: Quantile of negative-control intensities (0-1)
        control_type: Type tag selecting negative controls (case-insensitive)
        type_column: Name of the control type column

    Returns:
        Series of log2 thresholds indexed by sample
    """
    if not 0.0 <= percentile <= 1.0:
        raise ValueError(f"percentile must be within [0, 1], got {percentile!r}")
    if type_column not in controls.columns:
        raise DataShapeError(f"Control matrix has no {type_column!r} column")

    samples = list(samples)
    missing = [s for s in samples if s not in controls.columns]
    if missing:
        raise DataShapeError(
            f"Control matrix is missing sample column(s): {', '.join(missing)}"
        )

    is_negative = controls[type_column].astype(str).str.upper() == control_type.upper()
    negatives = controls.loc[is_negative, samples]
    if negatives.empty:
        raise DataShapeError(
            f"Control matrix has no {control_type!r} control probes"
        )

    thresholds = np.log2(negatives.quantile(percentile))
    thresholds.name = "threshold"
    logger.info(
        "Noise floor from %d negative controls at p=%.2f: %.3f-%.3f (log2)",
        len(negatives),
        percentile,
        thresholds.min(),
        thresholds.max(),
    )
    return thresholds


# =============================================================================
# Signal filter
# =============================================================================


@dataclass
class SignalFilterResult:
    """Masked matrix plus an untouched copy of the log2 input."""

    masked: pd.DataFrame
    backup: pd.DataFrame

    @property
    def present_cells(self) -> int:
        return int(self.masked.notna().to_numpy().sum())


def apply_signal_filter(log_expr: pd.DataFrame, thresholds: pd.Series) -> SignalFilterResult:
    """Replace values strictly below their sample's threshold with NaN."""
    missing = [c for c in log_expr.columns if c not in thresholds.index]
    if missing:
        raise DataShapeError(f"No noise threshold for sample(s): {', '.join(map(str, missing))}")

    backup = log_expr.copy()
    column_thresholds = thresholds.reindex(log_expr.columns)
    masked = log_expr.mask(log_expr.lt(column_thresholds, axis=1))

    total = masked.size
    logger.info(
        "Signal filter masked %d of %d cells",
        int(masked.isna().to_numpy().sum() - log_expr.isna().to_numpy().sum()),
        total,
    )
    return SignalFilterResult(masked=masked, backup=backup)


# =============================================================================
# Group retention
# =============================================================================


@dataclass
class GroupRetention:
    """Probes kept for one cohort group."""

    group: Optional[BaseGroup]
    retained: pd.DataFrame
    present_counts: pd.Series
    min_required: int

    @property
    def is_empty(self) -> bool:
        return self.retained.empty

    @property
    def probe_ids(self) -> pd.Index:
        return self.retained.index


def minimum_present(n_samples: int, fraction: float) -> int:
    """Samples a probe must be present in: ceil(n_samples * fraction)."""
    return math.ceil(n_samples * fraction)


def retain_group_probes(
    masked: pd.DataFrame,
    samples: List[str],
    fraction: float = 0.75,
    group: Optional[BaseGroup] = None,
) -> GroupRetention:
    """
    Keep probes present in at least ceil(len(samples) * fraction) samples.

    A cell is present when it is not NaN and strictly greater than zero.

    Args:
        masked: Signal-filtered matrix
        samples: Columns of the group
        fraction: Minimum present fraction (0-1)
        group: Group tag carried on the result

    Returns:
        GroupRetention with the kept rows restricted to the group columns
    """
    missing = [s for s in samples if s not in masked.columns]
    if missing:
        raise DataShapeError(f"Masked matrix is missing sample(s): {', '.join(missing)}")

    subset = masked[samples]
    present_counts = (subset.notna() & subset.gt(0)).sum(axis=1)
    present_counts.name = group.value if group is not None else "present"
    min_required = minimum_present(len(samples), fraction)

    retained = subset.loc[present_counts >= min_required]
    label = group.value if group is not None else "group"
    if retained.empty:
        logger.warning(
            "%s: no probe is present in %d of %d samples; group contributes no probes",
            label,
            min_required,
            len(samples),
        )
    else:
        logger.info(
            "%s: kept %d of %d probes (present in >= %d of %d samples)",
            label,
            len(retained),
            len(subset),
            min_required,
            len(samples),
        )
    return GroupRetention(
        group=group,
        retained=retained,
        present_counts=present_counts,
        min_required=min_required,
    )


def filter_all_groups(
    masked: pd.DataFrame,
    registry: CohortRegistry,
    fraction: float = 0.75,
) -> Dict[BaseGroup, GroupRetention]:
    """Apply the retention filter to each base group independently."""
    return {
        group: retain_group_probes(masked, registry.members(group), fraction, group=group)
        for group in BaseGroup
    }


# =============================================================================
# Union merge
# =============================================================================


def merge_retained_probes(
    retentions: Dict[BaseGroup, GroupRetention],
    backup: pd.DataFrame,
) -> pd.DataFrame:
    """
    Union the retained probes of all groups and rescue their unmasked values.

    Rows are taken from the unmasked log2 backup in its original order, so
    a probe kept by any single group carries its original value in every
    sample, including samples where it fell below the noise floor. The
    result is returned on the linear scale.
    """
    union = set()
    for retention in retentions.values():
        union.update(retention.probe_ids)

    keep = backup.index.isin(union)
    merged = np.power(2.0, backup.loc[keep])
    logger.info("Merged probe set: %d of %d probes", len(merged), len(backup))
    return merged
