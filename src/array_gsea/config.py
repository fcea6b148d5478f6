"""Cohort group definitions and pipeline configuration.

Defines the four base cohort groups and the dataclasses controlling
filter thresholds, column labels, and the settings handed to the
external normalization step.
"""

import json
import re
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Union

from .errors import ConfigurationError

# =============================================================================
# Cohort groups
# =============================================================================


class BaseGroup(str, Enum):
    """Cohort x stimulation state. Values double as default table labels."""

    POS_MEDIA = "POS_MEDIA"
    POS_TB = "POS_TB"
    NEG_MEDIA = "NEG_MEDIA"
    NEG_TB = "NEG_TB"

    @property
    def cohort(self) -> str:
        return self.value.split("_")[0]

    @property
    def stimulated(self) -> bool:
        return self.value.endswith("_TB")


@dataclass
class CohortLabels:
    """Group labels as they appear in the cohort lookup table."""

    pos_media: str = BaseGroup.POS_MEDIA.value
    pos_tb: str = BaseGroup.POS_TB.value
    neg_media: str = BaseGroup.NEG_MEDIA.value
    neg_tb: str = BaseGroup.NEG_TB.value

    def label_for(self, group: BaseGroup) -> str:
        return getattr(self, group.value.lower())

    def to_lookup(self) -> Dict[str, BaseGroup]:
        """Return label -> group, rejecting labels shared by two groups."""
        lookup: Dict[str, BaseGroup] = {}
        for group in BaseGroup:
            label = self.label_for(group)
            if label in lookup:
                raise ConfigurationError(
                    f"Cohort label {label!r} is assigned to both "
                    f"{lookup[label].value} and {group.value}"
                )
            lookup[label] = group
        return lookup


# =============================================================================
# Normalization collaborator
# =============================================================================


@dataclass
class NormalizationSettings:
    """Settings passed to the external normalization step.

    Recorded in the run report so outputs can be traced back to how the
    input intensities were produced.
    """

    method: str = "quantile"
    background_correction: bool = True
    variance_stabilization: bool = False


# =============================================================================
# Pipeline configuration
# =============================================================================


@dataclass
class PipelineConfig:
    """Configuration for one pipeline run.

    Attributes:
        control_percentile: Percentile of negative-control intensities
            used as each sample's noise floor.
        group_retention_fraction: Minimum fraction of a group's samples in
            which a probe must be present to be kept for that group.
        negative_control_type: Control type tag selecting negative controls.
        input_is_log2: Set when the normalized matrix is already on the
            log2 scale.
        gene_column: Header of the gene column in every output table.
        stimulated_label: Text in stimulated sample ids replaced when
            naming difference columns.
        unstimulated_label: Text in unstimulated sample ids; used only to
            check that difference pairs share a replicate id.
        difference_label: Replacement text for difference columns.
        labels: Group labels used in the cohort lookup table.
    """

    control_percentile: float = 0.75
    group_retention_fraction: float = 0.75
    negative_control_type: str = "NEGATIVE"
    input_is_log2: bool = False
    gene_column: str = "SYMBOL"
    stimulated_label: str = "TB"
    unstimulated_label: str = "MEDIA"
    difference_label: str = "TBMM"
    labels: CohortLabels = field(default_factory=CohortLabels)

    def __post_init__(self):
        for name in ("control_percentile", "group_retention_fraction"):
            value = getattr(self, name)
            if not 0.0 <= float(value) <= 1.0:
                raise ConfigurationError(f"{name} must be within [0, 1], got {value!r}")
        if not self.stimulated_label:
            raise ConfigurationError("stimulated_label must not be empty")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PipelineConfig":
        """Build a config from camelCase or snake_case keys."""
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            name = "labels" if key == "cohortLabels" else _snake_case(key)
            if name not in known:
                raise ConfigurationError(f"Unknown configuration option: {key!r}")
            kwargs[name] = value

        labels = kwargs.get("labels")
        if isinstance(labels, Mapping):
            try:
                kwargs["labels"] = CohortLabels(
                    **{k.lower(): v for k, v in labels.items()}
                )
            except TypeError as exc:
                raise ConfigurationError(f"Invalid cohortLabels: {exc}") from exc
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _snake_case(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def load_config(path: Union[str, Path]) -> PipelineConfig:
    """Load a PipelineConfig from a JSON file."""
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as fh:
            payload = json.load(fh)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Could not read config file {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Config file {path} must hold a JSON object")
    return PipelineConfig.from_mapping(payload)
