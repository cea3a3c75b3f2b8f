"""
gwascan: score-screened genome-wide association scans

Fits a covariate-only generalized linear model once (linear, logistic or
Poisson), screens every marker with a score test against it and refits only
the promising markers for a likelihood ratio test. Reported markers carry
Hardy-Weinberg diagnostics and the scan ends with a Benjamini-Hochberg
false discovery rate table.
"""

__version__ = "0.1.0"

from .association.families import Family
from .association.regress import GWASCAN_Regress
from .association.score import GWASCAN_ScoreTest
from .association.scan import GWASCAN_Scan
from .utils.stats import GWASCAN_FDR
from .matrix.pca import GWASCAN_PCA
from .visualization.manhattan import GWASCAN_Report
from .pipelines.gwas import GWASConfig, GWASPipeline

__all__ = [
    'Family',
    'GWASCAN_Regress',
    'GWASCAN_ScoreTest',
    'GWASCAN_Scan',
    'GWASCAN_FDR',
    'GWASCAN_PCA',
    'GWASCAN_Report',
    'GWASConfig',
    'GWASPipeline',
]
