"""
Normalized array input and tabular output.

The normalization step itself runs outside this package. These helpers
read what it produces (a normalized probe x sample matrix with probe
annotation, plus a control-probe matrix tagged by control type) and
write the final contrast tables.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

import pandas as pd

from .config import NormalizationSettings
from .errors import DataShapeError

logger = logging.getLogger(__name__)


@dataclass
class NormalizedArray:
    """Output of the external normalization step.

    Attributes:
        expression: Normalized intensities, probes as index, samples as columns
        probes: Gene symbol per probe id (Series indexed like ``expression``)
        controls: Control-probe intensities; a ``control_type`` column
            followed by the sample columns
        settings: How the intensities were normalized
    """

    expression: pd.DataFrame
    probes: pd.Series
    controls: pd.DataFrame
    settings: NormalizationSettings = field(default_factory=NormalizationSettings)

    @property
    def samples(self) -> List[str]:
        return [str(c) for c in self.expression.columns]

    @property
    def n_probes(self) -> int:
        return len(self.expression)


def _strip_suffix(columns, suffix: str, path: Path) -> List[str]:
    if not suffix:
        return list(columns)
    stripped = [c[: -len(suffix)] if c.endswith(suffix) else c for c in columns]
    names = pd.Index(stripped)
    repeated = names[names.duplicated()].unique()
    if len(repeated):
        raise DataShapeError(
            f"{path} has sample columns that collide after removing {suffix!r}: "
            f"{', '.join(repeated[:10])}"
        )
    return stripped


def _read_tsv(path: Path) -> pd.DataFrame:
    try:
        return pd.read_csv(path, sep="\t", dtype=str)
    except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise DataShapeError(f"Could not read {path}: {exc}") from exc


def _numeric_block(df: pd.DataFrame, columns: List[str], source: Path) -> pd.DataFrame:
    try:
        return df[columns].astype(float)
    except ValueError as exc:
        raise DataShapeError(f"Non-numeric intensity in {source}: {exc}") from exc


def read_normalized_array(
    expression_path: Union[str, Path],
    controls_path: Union[str, Path],
    probe_column: str = "PROBE_ID",
    gene_column: str = "SYMBOL",
    control_type_column: str = "CONTROL_TYPE",
    sample_suffix: str = "",
    settings: Optional[NormalizationSettings] = None,
) -> NormalizedArray:
    """
    Read normalized expression and control-probe tables.

    Args:
        expression_path: TSV with probe id, gene symbol, then sample columns
        controls_path: TSV with control type, optional probe id, then sample columns
        probe_column: Probe identifier column name (both files)
        gene_column: Gene symbol column name in the expression file
        control_type_column: Control type column name in the controls file
        sample_suffix: Suffix removed from sample column names, e.g. ".AVG_Signal"
        settings: Normalization settings recorded with the array

    Returns:
        NormalizedArray
    """
    expression_path = Path(expression_path)
    controls_path = Path(controls_path)

    raw = _read_tsv(expression_path)
    for column in (probe_column, gene_column):
        if column not in raw.columns:
            raise DataShapeError(f"{expression_path} has no {column!r} column")

    duplicated = raw[probe_column][raw[probe_column].duplicated()]
    if not duplicated.empty:
        raise DataShapeError(
            f"{expression_path} repeats probe ids: {', '.join(duplicated.unique()[:10])}"
        )

    sample_columns = [c for c in raw.columns if c not in (probe_column, gene_column)]
    if not sample_columns:
        raise DataShapeError(f"{expression_path} has no sample columns")

    expression = _numeric_block(raw, sample_columns, expression_path)
    expression.index = pd.Index(raw[probe_column], name=probe_column)
    expression.columns = _strip_suffix(sample_columns, sample_suffix, expression_path)

    probes = raw[gene_column].str.strip()
    probes.index = expression.index
    probes.name = gene_column

    raw_controls = _read_tsv(controls_path)
    if control_type_column not in raw_controls.columns:
        raise DataShapeError(f"{controls_path} has no {control_type_column!r} column")
    control_samples = [
        c for c in raw_controls.columns if c not in (control_type_column, probe_column)
    ]
    controls = _numeric_block(raw_controls, control_samples, controls_path)
    controls.columns = _strip_suffix(control_samples, sample_suffix, controls_path)
    controls.insert(0, "control_type", raw_controls[control_type_column].str.strip())

    logger.info(
        "Loaded %d probes x %d samples from %s (%d control probes)",
        len(expression),
        expression.shape[1],
        expression_path,
        len(controls),
    )
    return NormalizedArray(
        expression=expression,
        probes=probes,
        controls=controls,
        settings=settings or NormalizationSettings(),
    )


def write_table(df: pd.DataFrame, path: Union[str, Path]) -> Path:
    """Write a table as tab-delimited text with a header row and no index."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, sep="\t", index=False, na_rep="NA")
    return path
