"""
Cohort registry.

Parses the sample -> group lookup table into the four base cohort groups,
keeping member samples in table order.
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

import pandas as pd

from .config import BaseGroup, CohortLabels
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class CohortRegistry:
    """Sample membership of the four base cohort groups.

    Every sample belongs to exactly one group and every group has at
    least one member.
    """

    def __init__(
        self,
        groups: Dict[BaseGroup, List[str]],
        order: Optional[List[str]] = None,
    ):
        seen: Dict[str, BaseGroup] = {}
        for group in BaseGroup:
            members = groups.get(group, [])
            if not members:
                raise ConfigurationError(f"Cohort group {group.value} has no samples")
            for sample in members:
                if sample in seen:
                    raise ConfigurationError(
                        f"Sample {sample!r} is listed more than once "
                        f"({seen[sample].value}, {group.value})"
                    )
                seen[sample] = group
        self._groups = {group: list(groups[group]) for group in BaseGroup}
        self._sample_group = seen
        self._order = list(order) if order else [s for g in BaseGroup for s in self._groups[g]]

    @classmethod
    def from_pairs(
        cls,
        pairs: Iterable[Tuple[str, str]],
        labels: Optional[CohortLabels] = None,
    ) -> "CohortRegistry":
        """Build a registry from (sample_id, group_label) pairs."""
        lookup = (labels or CohortLabels()).to_lookup()
        groups: Dict[BaseGroup, List[str]] = {group: [] for group in BaseGroup}
        order: List[str] = []
        for sample, label in pairs:
            group = lookup.get(label)
            if group is None:
                raise ConfigurationError(
                    f"Unknown cohort label {label!r} for sample {sample!r}; "
                    f"expected one of {sorted(lookup)}"
                )
            groups[group].append(sample)
            order.append(sample)
        return cls(groups, order)

    @property
    def samples(self) -> List[str]:
        """All samples in lookup-table order."""
        return list(self._order)

    def members(self, group: BaseGroup) -> List[str]:
        return list(self._groups[group])

    def group_of(self, sample: str) -> BaseGroup:
        try:
            return self._sample_group[sample]
        except KeyError:
            raise ConfigurationError(f"Sample {sample!r} is not in the cohort table") from None

    def sizes(self) -> Dict[BaseGroup, int]:
        return {group: len(members) for group, members in self._groups.items()}

    def validate_against(self, sample_columns: Iterable[str]) -> None:
        """Check that the registry and a matrix cover the same samples."""
        columns = list(sample_columns)
        column_set = set(columns)
        missing = [s for s in self.samples if s not in column_set]
        if missing:
            raise ConfigurationError(
                f"{len(missing)} sample(s) in the cohort table are absent from "
                f"the expression matrix: {', '.join(missing)}"
            )
        unregistered = [c for c in columns if c not in self._sample_group]
        if unregistered:
            raise ConfigurationError(
                f"{len(unregistered)} sample(s) in the expression matrix are absent "
                f"from the cohort table: {', '.join(unregistered)}"
            )

    def __len__(self) -> int:
        return len(self._sample_group)

    def __repr__(self) -> str:
        sizes = ", ".join(f"{g.value}={n}" for g, n in self.sizes().items())
        return f"CohortRegistry({sizes})"


def read_cohort_table(
    path: Union[str, Path],
    labels: Optional[CohortLabels] = None,
    sample_column: int = 0,
    group_column: int = 1,
    has_header: bool = True,
) -> CohortRegistry:
    """
    Parse a tab-delimited cohort lookup table.

    Args:
        path: Lookup table path
        labels: Group labels used in the table (defaults to the BaseGroup names)
        sample_column: Position of the sample id column
        group_column: Position of the group label column
        has_header: Whether the first row is a header

    Returns:
        CohortRegistry with members in table order
    """
    path = Path(path)
    try:
        df = pd.read_csv(
            path,
            sep="\t",
            header=0 if has_header else None,
            dtype=str,
            skip_blank_lines=True,
            keep_default_na=False,
        )
    except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise ConfigurationError(f"Could not read cohort table {path}: {exc}") from exc

    if df.shape[1] < 2 or max(sample_column, group_column) >= df.shape[1]:
        raise ConfigurationError(
            f"Cohort table {path} needs at least two columns "
            f"(sample, group); found {df.shape[1]}"
        )

    samples = df.iloc[:, sample_column].str.strip()
    groups = df.iloc[:, group_column].str.strip()
    keep = samples != ""
    if (groups[keep] == "").any():
        bad = samples[keep & (groups == "")].tolist()
        raise ConfigurationError(f"Samples without a group label: {', '.join(bad)}")

    registry = CohortRegistry.from_pairs(zip(samples[keep], groups[keep]), labels)
    logger.info("Loaded cohort table %s: %r", path, registry)
    return registry
