"""
Manhattan plot and Q-Q plot visualization for GWAS scan results
"""

import re
import warnings
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns

from ..utils.data_types import (
    GenotypeMap, ScanResults, OUTCOME_SCREENED, OUTCOME_ESCALATED, OUTCOME_FIT_FAILED,
)
from ..utils.stats import genomic_inflation_factor, qq_plot_data

# Smallest p-value drawn; exact zeros would be infinite on the -log10 scale
MIN_PLOT_PVALUE = 1e-300


def _natural_sort_key(value) -> List[Union[int, str]]:
    """Return a key for natural sorting of chromosome labels."""

    text = str(value).strip()
    if not text:
        return [""]
    parts = re.split(r'(\d+)', text)
    key: List[Union[int, str]] = []
    for part in parts:
        if part.isdigit():
            key.append(int(part))
        else:
            key.append(part.lower())
    return key


def manhattan_points(pvalues: np.ndarray,
                     chromosomes: Sequence,
                     positions: Sequence) -> pd.DataFrame:
    """Plotting coordinates for a Manhattan plot.

    Args:
        pvalues: One p-value per marker
        chromosomes: Chromosome label per marker
        positions: Base-pair position per marker

    Returns:
        DataFrame with columns index (marker index into the inputs), CHROM,
        POS and LOG10P (-log10 p), ordered by natural chromosome order
        (1, 2, ..., 10, X) and then by position
    """
    pvalues = np.asarray(pvalues, dtype=np.float64)
    chromosomes = np.asarray(chromosomes).astype(str)
    positions = np.asarray(positions)
    if not (pvalues.shape[0] == chromosomes.shape[0] == positions.shape[0]):
        raise ValueError("pvalues, chromosomes and positions must have the same length")

    chrom_order = {c: i for i, c in enumerate(sorted(set(chromosomes), key=_natural_sort_key))}
    df = pd.DataFrame({
        'index': np.arange(pvalues.shape[0]),
        'CHROM': chromosomes,
        'POS': positions,
        'LOG10P': -np.log10(np.clip(pvalues, MIN_PLOT_PVALUE, 1.0)),
        '_rank': [chrom_order[c] for c in chromosomes],
    })
    df = df.sort_values(['_rank', 'POS', 'index'], kind='mergesort')
    return df.drop(columns='_rank').reset_index(drop=True)


def plot_manhattan_with_positions(ax, points: pd.DataFrame,
                                  colors: Optional[List] = None,
                                  point_size: float = 3.0):
    """Plot Manhattan points laid out chromosome by chromosome"""

    if colors is None:
        colors = sns.color_palette("colorblind", 2)

    tick_positions = []
    tick_labels = []
    current_pos = 0.0

    for i, (chrom, block) in enumerate(points.groupby('CHROM', sort=False)):
        chrom_positions = block['POS'].to_numpy(dtype=np.float64)

        # Scale chromosome length in Mb, no gaps between chromosomes
        min_pos = np.min(chrom_positions)
        max_pos = np.max(chrom_positions)
        if max_pos > min_pos:
            chrom_length = (max_pos - min_pos) / 1e6
            norm_positions = (chrom_positions - min_pos) / 1e6
        else:
            chrom_length = 1.0
            norm_positions = np.full_like(chrom_positions, 0.5)

        ax.scatter(current_pos + norm_positions, block['LOG10P'].to_numpy(),
                   color=colors[i % len(colors)], s=point_size, alpha=0.8,
                   edgecolors='none')

        tick_positions.append(current_pos + chrom_length / 2)
        tick_labels.append(str(chrom))
        current_pos += chrom_length

    ax.set_xticks(tick_positions)
    ax.set_xticklabels(tick_labels)
    ax.set_xlabel('Chromosome', fontsize=12)


def plot_manhattan_sequential(ax, log_pvalues: np.ndarray, point_size: float = 3.0):
    """Plot Manhattan plot with sequential marker positions"""

    positions = np.arange(len(log_pvalues))
    ax.scatter(positions, log_pvalues, color=sns.color_palette("colorblind", 1)[0],
               s=point_size, alpha=0.8, edgecolors='none')
    ax.set_xlabel('Marker', fontsize=12)


def create_manhattan_plot(pvalues: np.ndarray,
                          map_data: Optional[GenotypeMap] = None,
                          threshold: float = 5e-8,
                          title: str = "Manhattan Plot",
                          figsize: Tuple[int, int] = (12, 6),
                          colors: Optional[List] = None,
                          point_size: float = 10.0) -> plt.Figure:
    """Create Manhattan plot for GWAS results

    Args:
        pvalues: Array of p-values, one per marker of map_data
        map_data: Genetic map with chromosome and position information
        threshold: Significance line (not drawn when <= 0)
        title: Plot title
        figsize: Figure size
        colors: Alternating chromosome colors
        point_size: Point size

    Returns:
        matplotlib Figure object
    """
    pvalues = np.asarray(pvalues, dtype=np.float64)
    fig, ax = plt.subplots(figsize=figsize)

    if map_data is not None and map_data.n_markers == len(pvalues):
        points = manhattan_points(pvalues, map_data.chromosomes.values, map_data.positions.values)
        plot_manhattan_with_positions(ax, points, colors=colors, point_size=point_size)
    else:
        if map_data is not None:
            warnings.warn(
                f"Map has {map_data.n_markers} markers but {len(pvalues)} p-values were given; "
                "plotting markers sequentially"
            )
        log_pvalues = -np.log10(np.clip(pvalues, MIN_PLOT_PVALUE, 1.0))
        plot_manhattan_sequential(ax, log_pvalues, point_size=point_size)

    if threshold > 0:
        ax.axhline(y=-np.log10(threshold), color='red', linestyle='--', alpha=0.8, linewidth=1.5)

    ax.set_ylabel(r'$-\log_{10}(P)$', fontsize=12)
    if title and title.strip():
        ax.set_title(title)
    sns.despine(ax=ax)

    plt.tight_layout()
    return fig


def create_qq_plot(pvalues: np.ndarray,
                   title: str = "Q-Q Plot",
                   figsize: Tuple[int, int] = (6, 6)) -> plt.Figure:
    """Create Q-Q plot for GWAS p-values

    Args:
        pvalues: Array of p-values
        title: Plot title
        figsize: Figure size

    Returns:
        matplotlib Figure object
    """
    fig, ax = plt.subplots(figsize=figsize)

    expected_pvals, observed_pvals = qq_plot_data(pvalues)

    if len(observed_pvals) == 0:
        ax.text(0.5, 0.5, 'No valid p-values for Q-Q plot',
                ha='center', va='center', transform=ax.transAxes)
        ax.set_title(title)
        return fig

    obs_log = -np.log10(observed_pvals)
    exp_log = -np.log10(expected_pvals)

    ax.scatter(exp_log, obs_log, alpha=0.6, s=4, edgecolors='none',
               color=sns.color_palette("colorblind", 1)[0])

    max_val = max(np.max(exp_log), np.max(obs_log))
    ax.plot([0, max_val], [0, max_val], 'r--', alpha=0.8, label='Null hypothesis')

    lambda_gc = genomic_inflation_factor(observed_pvals)

    ax.set_xlabel(r'Expected $-\log_{10}(P)$')
    ax.set_ylabel(r'Observed $-\log_{10}(P)$')
    ax.set_title(f'{title}\nλ = {lambda_gc:.3f}')
    ax.grid(True, alpha=0.3)
    ax.legend()

    plt.tight_layout()
    return fig


def GWASCAN_Report(results: ScanResults,
                   output_prefix: str = "GWASCAN_results",
                   threshold: Optional[float] = None,
                   plot_types: Sequence[str] = ("manhattan", "qq"),
                   dpi: int = 300,
                   figsize: Tuple[int, int] = (12, 6),
                   colors: Optional[List] = None,
                   point_size: float = 10.0,
                   verbose: bool = True,
                   save_plots: bool = True) -> Dict:
    """Generate the plot report for a scan

    Args:
        results: ScanResults from GWASCAN_Scan
        output_prefix: Prefix for output files ("<prefix>_manhattan.png", ...)
        threshold: Line drawn on the Manhattan plot (default: the scan's
            reporting threshold)
        plot_types: Any of "manhattan" and "qq"
        dpi: Plot resolution
        figsize: Manhattan figure size
        colors: Alternating chromosome colors
        point_size: Size of points
        verbose: Print progress information
        save_plots: Save plots to files

    Returns:
        Dictionary with 'plots', 'summary' and 'files_created'
    """
    if not isinstance(results, ScanResults):
        raise ValueError("results must be a ScanResults object")

    if verbose:
        print("Generating GWAS visualization report...")

    if threshold is None:
        threshold = results.report_threshold

    report = {
        'plots': {},
        'summary': {},
        'files_created': [],
    }

    pvalues = np.asarray(results.pvalues, dtype=np.float64)
    tested = np.isin(results.outcomes, [OUTCOME_SCREENED, OUTCOME_ESCALATED, OUTCOME_FIT_FAILED])

    if "manhattan" in plot_types:
        if verbose:
            print("Creating Manhattan plot...")
        fig = create_manhattan_plot(
            pvalues=pvalues,
            map_data=results.snp_map,
            threshold=threshold,
            title="",
            figsize=figsize,
            colors=colors,
            point_size=point_size,
        )
        report['plots']['manhattan'] = fig
        if save_plots:
            filename = f"{output_prefix}_manhattan.png"
            fig.savefig(filename, dpi=dpi, bbox_inches='tight')
            report['files_created'].append(filename)

    if "qq" in plot_types:
        if verbose:
            print("Creating Q-Q plot...")
        fig = create_qq_plot(pvalues=pvalues[tested], title="Q-Q Plot")
        report['plots']['qq'] = fig
        if save_plots:
            filename = f"{output_prefix}_qq.png"
            fig.savefig(filename, dpi=dpi, bbox_inches='tight')
            report['files_created'].append(filename)

    tested_p = pvalues[tested]
    report['summary'] = {
        'n_markers': results.n_markers,
        'n_tested': int(np.sum(tested)),
        'n_escalated': results.n_escalated,
        'n_reported': len(results.reports),
        'min_pvalue': float(np.min(tested_p)) if tested_p.size else np.nan,
        'lambda_gc': genomic_inflation_factor(tested_p) if tested_p.size else np.nan,
    }

    if verbose:
        summary = report['summary']
        print(f"  Total markers: {summary['n_markers']}")
        print(f"  Tested markers: {summary['n_tested']}")
        print(f"  Reported markers: {summary['n_reported']}")
        print(f"Report generation complete. Created {len(report['files_created'])} plot files.")

    return report
