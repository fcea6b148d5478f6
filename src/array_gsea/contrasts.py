"""
Contrast table assembly.

Splits the gene-level matrix back into the four base cohort groups and
recombines them into the five output tables.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

import pandas as pd

from .cohorts import CohortRegistry
from .config import BaseGroup, PipelineConfig
from .errors import DataShapeError

logger = logging.getLogger(__name__)

TABLE_NAMES = ("TBAM_POS", "TBAM_NEG", "MEDIA", "TB", "TBMM")


@dataclass(frozen=True)
class ContrastTables:
    """The five gene x sample output tables, gene column first."""

    tbam_pos: pd.DataFrame
    tbam_neg: pd.DataFrame
    media: pd.DataFrame
    tb: pd.DataFrame
    tbmm: pd.DataFrame

    def items(self) -> Iterator[Tuple[str, pd.DataFrame]]:
        for name in TABLE_NAMES:
            yield name, getattr(self, name.lower())

    def __getitem__(self, name: str) -> pd.DataFrame:
        if name not in TABLE_NAMES:
            raise KeyError(name)
        return getattr(self, name.lower())


def difference_label_for(sample: str, stimulated_label: str, difference_label: str) -> str:
    """Name a difference column after its stimulated sample.

    The last occurrence of ``stimulated_label`` is replaced; ids without it
    get ``_<difference_label>`` appended.
    """
    head, sep, tail = sample.rpartition(stimulated_label)
    if not sep:
        return f"{sample}_{difference_label}"
    return f"{head}{difference_label}{tail}"


def _replicate_stem(sample: str, label: str) -> str:
    head, sep, tail = sample.rpartition(label)
    return f"{head}{tail}" if sep else sample


def difference_columns(
    genes: pd.DataFrame,
    stimulated: List[str],
    unstimulated: List[str],
    stimulated_label: str = "TB",
    difference_label: str = "TBMM",
    unstimulated_label: Optional[str] = None,
) -> pd.DataFrame:
    """
    Subtract unstimulated from stimulated columns, paired by position.

    Raises:
        DataShapeError: if the two sample lists differ in length
    """
    if len(stimulated) != len(unstimulated):
        raise DataShapeError(
            f"Cannot pair {len(stimulated)} stimulated with "
            f"{len(unstimulated)} unstimulated samples"
        )

    if unstimulated_label:
        for tb, media in zip(stimulated, unstimulated):
            if _replicate_stem(tb, stimulated_label) != _replicate_stem(media, unstimulated_label):
                logger.warning("Pairing %s with %s: sample ids do not correspond", tb, media)

    diff = pd.DataFrame(
        genes[stimulated].to_numpy() - genes[unstimulated].to_numpy(),
        index=genes.index,
        columns=[difference_label_for(s, stimulated_label, difference_label) for s in stimulated],
    )
    return diff


def check_pairing(registry: CohortRegistry) -> None:
    """Fail early when a cohort's TB and media groups cannot be paired."""
    for tb_group, media_group in (
        (BaseGroup.NEG_TB, BaseGroup.NEG_MEDIA),
        (BaseGroup.POS_TB, BaseGroup.POS_MEDIA),
    ):
        n_tb, n_media = len(registry.members(tb_group)), len(registry.members(media_group))
        if n_tb != n_media:
            raise DataShapeError(
                f"{tb_group.value} has {n_tb} samples but {media_group.value} has "
                f"{n_media}; difference pairs need equal counts"
            )


def _with_gene_column(df: pd.DataFrame, gene_column: str) -> pd.DataFrame:
    table = df.copy()
    table.index.name = gene_column
    return table.reset_index()


def split_by_group(genes: pd.DataFrame, registry: CohortRegistry) -> Dict[BaseGroup, pd.DataFrame]:
    """Column subsets of ``genes`` for each base group, in registry order."""
    return {group: genes[registry.members(group)] for group in BaseGroup}


def build_contrasts(
    genes: pd.DataFrame,
    registry: CohortRegistry,
    config: Optional[PipelineConfig] = None,
) -> ContrastTables:
    """
    Build the five contrast tables from the collapsed gene matrix.

    TBAM_POS and TBAM_NEG pair each cohort's media and TB samples, MEDIA
    and TB compare cohorts within one condition, and TBMM holds TB minus
    media per cohort.
    """
    config = config or PipelineConfig()
    parts = split_by_group(genes, registry)
    gene_column = config.gene_column

    def combine(first: BaseGroup, second: BaseGroup) -> pd.DataFrame:
        return _with_gene_column(pd.concat([parts[first], parts[second]], axis=1), gene_column)

    diffs = []
    for tb_group, media_group in (
        (BaseGroup.NEG_TB, BaseGroup.NEG_MEDIA),
        (BaseGroup.POS_TB, BaseGroup.POS_MEDIA),
    ):
        diffs.append(
            difference_columns(
                genes,
                registry.members(tb_group),
                registry.members(media_group),
                stimulated_label=config.stimulated_label,
                difference_label=config.difference_label,
                unstimulated_label=config.unstimulated_label or None,
            )
        )

    tables = ContrastTables(
        tbam_pos=combine(BaseGroup.POS_MEDIA, BaseGroup.POS_TB),
        tbam_neg=combine(BaseGroup.NEG_MEDIA, BaseGroup.NEG_TB),
        media=combine(BaseGroup.NEG_MEDIA, BaseGroup.POS_MEDIA),
        tb=combine(BaseGroup.NEG_TB, BaseGroup.POS_TB),
        tbmm=_with_gene_column(pd.concat(diffs, axis=1), gene_column),
    )
    for name, table in tables.items():
        logger.debug("%s: %d genes x %d samples", name, len(table), table.shape[1] - 1)
    return tables
