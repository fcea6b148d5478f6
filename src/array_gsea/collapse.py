"""
Probe-to-gene collapsing.

Reduces every gene's probes to one row by taking, per sample, the value
with the largest absolute magnitude (sign kept).
"""

import logging

import numpy as np
import pandas as pd

from .errors import DataShapeError

logger = logging.getLogger(__name__)


def _signed_max_abs(values: np.ndarray) -> np.ndarray:
    """Column-wise value of largest magnitude; the first row wins ties."""
    if values.shape[0] == 1:
        return values[0]
    magnitude = np.abs(values)
    all_nan = np.isnan(magnitude).all(axis=0)
    # argmax returns the first maximal row
    rows = np.argmax(np.where(np.isnan(magnitude), -np.inf, magnitude), axis=0)
    picked = values[rows, np.arange(values.shape[1])]
    picked[all_nan] = np.nan
    return picked


def collapse_to_genes(
    linear: pd.DataFrame,
    probe_genes: pd.Series,
    gene_column: str = "SYMBOL",
) -> pd.DataFrame:
    """
    Collapse probe rows to one row per gene symbol.

    Genes are visited in ascending symbol order and probes within a gene in
    their original row order, which fixes the tie-break for probes of equal
    magnitude.

    Args:
        linear: Probe x sample matrix (linear scale)
        probe_genes: Gene symbol per probe id
        gene_column: Name given to the gene index

    Returns:
        Gene x sample matrix indexed by gene symbol
    """
    unmapped = linear.index.difference(probe_genes.index)
    if len(unmapped):
        raise DataShapeError(
            f"{len(unmapped)} probe(s) have no gene annotation: "
            f"{', '.join(map(str, unmapped[:10]))}"
        )

    genes = probe_genes.reindex(linear.index)
    has_gene = genes.notna() & (genes.astype(str).str.strip() != "")
    if not has_gene.all():
        logger.info("Dropping %d probe(s) without a gene symbol", int((~has_gene).sum()))

    values = linear.loc[has_gene]
    symbols = genes[has_gene].astype(str).to_numpy()
    order = np.argsort(symbols, kind="stable")
    symbols = symbols[order]
    matrix = values.to_numpy(dtype=float)[order]

    unique, starts = np.unique(symbols, return_index=True)
    bounds = list(starts) + [len(symbols)]
    rows = [_signed_max_abs(matrix[bounds[i]: bounds[i + 1]]) for i in range(len(unique))]

    collapsed = pd.DataFrame(
        np.vstack(rows) if rows else np.empty((0, linear.shape[1])),
        index=pd.Index(unique, name=gene_column),
        columns=linear.columns,
    )
    logger.info("Collapsed %d probes to %d genes", len(values), len(collapsed))
    return collapsed
