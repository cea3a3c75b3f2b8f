"""
Association testing methods for GWAS analysis
"""

from .families import Family
from .regress import GWASCAN_Regress, FitResult
from .score import GWASCAN_ScoreTest, ScoreTestContext
from .lrt import fit_marker_lrt
from .scan import GWASCAN_Scan

__all__ = [
    'Family', 'FitResult', 'ScoreTestContext',
    'GWASCAN_Regress', 'GWASCAN_ScoreTest', 'GWASCAN_Scan', 'fit_marker_lrt',
]
