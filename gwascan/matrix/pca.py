"""
Principal Component Analysis for GWAS covariate augmentation
"""

import numpy as np
import pandas as pd
from typing import Tuple, Union

from ..model.formula import Formula
from ..utils.data_types import GenotypeMatrix

PCA_MARKER_SAMPLE_THRESHOLD = 500_000
PCA_MARKER_SAMPLE_SIZE = 200_000
PCA_MARKER_SAMPLE_SEED = 0


def GWASCAN_PCA(M: Union[GenotypeMatrix, np.ndarray],
                pcs_keep: int = 5,
                maxLine: int = 20000,
                verbose: bool = True) -> Tuple[np.ndarray, np.ndarray]:
    """PCA on a genotype matrix using covariance decomposition

    Computes the eigendecomposition of G×G'/m where G is the centred,
    mean-imputed dosage matrix and m the number of markers used. This is the
    only place where missing dosages are filled in.

    Args:
        M: Genotype matrix (n_individuals × n_markers)
        pcs_keep: Number of principal components to return
        maxLine: Batch size for processing markers
        verbose: Print progress information

    Note:
        If markers exceed PCA_MARKER_SAMPLE_THRESHOLD, randomly sample
        PCA_MARKER_SAMPLE_SIZE markers to reduce PCA cost.

    Returns:
        Tuple of (scores n_individuals × k, variance_explained k), with the
        score columns orthonormal and ordered by decreasing variance.
    """
    if isinstance(M, np.ndarray):
        M = GenotypeMatrix(M)
    elif not isinstance(M, GenotypeMatrix):
        raise ValueError("M must be GenotypeMatrix or numpy array")
    if pcs_keep < 1:
        raise ValueError("pcs_keep must be at least 1")

    n_individuals, n_markers = M.shape

    sample_indices = None
    markers_used = n_markers
    if n_markers > PCA_MARKER_SAMPLE_THRESHOLD:
        markers_used = min(PCA_MARKER_SAMPLE_SIZE, n_markers)
        rng = np.random.default_rng(PCA_MARKER_SAMPLE_SEED)
        sample_indices = np.sort(rng.choice(n_markers, size=markers_used, replace=False))
        if verbose:
            print(
                f"Sampling {markers_used} of {n_markers} markers for PCA "
                f"(seed={PCA_MARKER_SAMPLE_SEED})"
            )

    if verbose:
        print(f"Performing PCA on genotype matrix ({n_individuals}×{n_markers})")

    covariance = np.zeros((n_individuals, n_individuals), dtype=np.float64)
    for start in range(0, markers_used, maxLine):
        end = min(start + maxLine, markers_used)
        if sample_indices is None:
            G_batch = M.get_batch_mean_imputed(start, end)
        else:
            batch = M.get_columns_dosage(sample_indices[start:end])
            means = np.nanmean(batch, axis=0)
            means = np.where(np.isfinite(means), means, 0.0)
            G_batch = np.where(np.isnan(batch), means[np.newaxis, :], batch)

        # Center by per-marker means
        G_batch -= np.mean(G_batch, axis=0)[np.newaxis, :]
        covariance += G_batch @ G_batch.T

    covariance /= max(markers_used, 1)

    try:
        eigenvals, eigenvecs = np.linalg.eigh(covariance)
    except np.linalg.LinAlgError as e:
        raise ValueError(f"Failed to compute eigendecomposition: {e}")

    # Sort by eigenvalues in descending order, keep positive ones
    order = np.argsort(eigenvals)[::-1]
    eigenvals = eigenvals[order]
    eigenvecs = eigenvecs[:, order]
    positive = eigenvals > 1e-10
    eigenvals = eigenvals[positive]
    eigenvecs = eigenvecs[:, positive]

    pcs_keep = min(pcs_keep, len(eigenvals), n_individuals)
    total = float(np.sum(eigenvals)) if len(eigenvals) else 1.0
    variance_explained = eigenvals[:pcs_keep] / total

    if verbose:
        print(f"Keeping top {pcs_keep} principal components")
        print(f"Explained variance: {variance_explained * 100}")

    return eigenvecs[:, :pcs_keep], variance_explained


def zscore(values: np.ndarray) -> np.ndarray:
    """Standardise to mean 0 and sample standard deviation 1."""
    values = np.asarray(values, dtype=np.float64)
    sd = np.std(values, ddof=1)
    if not np.isfinite(sd) or sd == 0.0:
        return values - np.mean(values)
    return (values - np.mean(values)) / sd


def add_pcs(frame: pd.DataFrame,
            formula: Formula,
            geno: Union[GenotypeMatrix, np.ndarray],
            n_pcs: int,
            verbose: bool = True) -> Tuple[pd.DataFrame, Formula]:
    """Append z-scored principal components as covariates PC1..PCk.

    Args:
        frame: Individual-level data whose rows match the genotype rows
        formula: Regression formula to extend
        geno: Genotype matrix for the same individuals
        n_pcs: Number of components to add

    Returns:
        Tuple of (new frame with PC columns, formula with PC terms appended)
    """
    if n_pcs <= 0:
        return frame, formula
    n_rows = geno.shape[0]
    if n_rows != len(frame):
        raise ValueError(f"Frame has {len(frame)} rows but the genotype matrix has {n_rows}")

    scores, _ = GWASCAN_PCA(geno, pcs_keep=n_pcs, verbose=verbose)
    frame = frame.copy()
    names = []
    for i in range(scores.shape[1]):
        name = f"PC{i + 1}"
        frame[name] = zscore(scores[:, i])
        names.append(name)
    return frame, formula.with_terms(names)
