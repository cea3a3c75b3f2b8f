"""
Core data structures for the gwascan package
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass, field
from typing import Optional, Union, Tuple, Dict, Any, List
from pathlib import Path

MISSING_GENOTYPE = -9

X_CHROMOSOME_LABELS = ('X', 'CHRX', '23')


def is_x_chromosome(label: Any) -> bool:
    """True for the labels used for the X chromosome (X, chrX, 23)."""
    return str(label).strip().upper() in X_CHROMOSOME_LABELS


class GenotypeMap:
    """SNP map information

    Expected columns: [SNP, CHROM, POS]
    """

    def __init__(self, data: Union[pd.DataFrame, str, Path], metadata: Optional[Dict[str, Any]] = None):
        if isinstance(data, (str, Path)):
            self.data = pd.read_csv(data)
        elif isinstance(data, pd.DataFrame):
            self.data = data.copy()
        else:
            raise ValueError("Data must be DataFrame or file path")

        self.metadata: Dict[str, Any] = dict(metadata) if metadata else {}

        # Validate required columns
        required_cols = ['SNP', 'CHROM', 'POS']
        for col in required_cols:
            if col not in self.data.columns:
                raise ValueError(f"Missing required column: {col}")
        self.data = self.data.reset_index(drop=True)

    @property
    def snp_ids(self) -> pd.Series:
        """SNP identifiers"""
        return self.data['SNP']

    @property
    def chromosomes(self) -> pd.Series:
        """Chromosome labels"""
        return self.data['CHROM']

    @property
    def positions(self) -> pd.Series:
        """Base-pair positions"""
        return self.data['POS']

    @property
    def n_markers(self) -> int:
        """Number of markers"""
        return len(self.data)

    def xlinked_mask(self) -> np.ndarray:
        """Boolean mask of markers on the X chromosome"""
        return np.array([is_x_chromosome(c) for c in self.chromosomes], dtype=bool)

    def to_dataframe(self) -> pd.DataFrame:
        """Convert to pandas DataFrame"""
        return self.data.copy()


class GenotypeMatrix:
    """Dosage matrix (n_individuals x n_markers) of minor-allele copies.

    Entries are 0/1/2 calls or fractional imputed dosages in [0, 2]; missing
    calls are stored as -9 or NaN. Dosage accessors never impute: missing
    entries come back as NaN.
    """

    def __init__(self, data: Union[np.ndarray, str, Path],
                 shape: Optional[Tuple[int, int]] = None,
                 dtype: np.dtype = np.float32,
                 maf: Optional[np.ndarray] = None):

        if isinstance(data, np.ndarray):
            if data.ndim != 2:
                raise ValueError("Genotype matrix must be 2D (individuals x markers)")
            self._data = data
        elif isinstance(data, (str, Path)):
            # Memory-mapped file
            if shape is None:
                raise ValueError("Shape required for memory-mapped files")
            self._data = np.memmap(data, dtype=dtype, mode='r', shape=shape)
        else:
            raise ValueError("Data must be array or file path")

        self._maf = None
        if maf is not None:
            maf = np.asarray(maf, dtype=np.float64)
            if maf.shape != (self.n_markers,):
                raise ValueError(f"MAF vector must have length {self.n_markers}")
            self._maf = maf

    @property
    def shape(self) -> Tuple[int, int]:
        """Matrix shape (n_individuals, n_markers)"""
        return self._data.shape

    @property
    def n_individuals(self) -> int:
        """Number of individuals"""
        return self.shape[0]

    @property
    def n_markers(self) -> int:
        """Number of markers"""
        return self.shape[1]

    def __getitem__(self, key):
        """Support array indexing"""
        return self._data[key]

    @staticmethod
    def _as_dosage(raw: np.ndarray) -> np.ndarray:
        out = np.array(raw, dtype=np.float64, copy=True)
        out[out == MISSING_GENOTYPE] = np.nan
        return out

    def get_dosage(self, marker_idx: int) -> np.ndarray:
        """Dosage vector for one marker, missing calls as NaN"""
        return self._as_dosage(self._data[:, marker_idx])

    def get_batch_dosage(self, marker_start: int, marker_end: int) -> np.ndarray:
        """Dosages for a contiguous block of markers, missing calls as NaN"""
        return self._as_dosage(self._data[:, marker_start:marker_end])

    def get_columns_dosage(self, indices: Union[np.ndarray, List[int]]) -> np.ndarray:
        """Dosages for arbitrary marker columns, missing calls as NaN"""
        indices = np.asarray(indices, dtype=int)
        return self._as_dosage(self._data[:, indices])

    def get_batch_mean_imputed(self, marker_start: int, marker_end: int) -> np.ndarray:
        """Dosage block with missing calls replaced by the marker mean.

        Only principal component analysis uses this; association tests
        always see the raw dosages.
        """
        batch = self.get_batch_dosage(marker_start, marker_end)
        missing = np.isnan(batch)
        if missing.any():
            with np.errstate(invalid='ignore'):
                means = np.nanmean(batch, axis=0)
            means = np.where(np.isfinite(means), means, 0.0)
            batch[missing] = np.broadcast_to(means, batch.shape)[missing]
        return batch

    def subset_individuals(self, indices: Union[np.ndarray, list]) -> "GenotypeMatrix":
        """Return a GenotypeMatrix restricted to (and ordered by) a subset of individuals.

        A supplied MAF vector is dropped so frequencies are recomputed on the subset.
        """
        if isinstance(indices, list):
            indices = np.asarray(indices)
        if isinstance(indices, np.ndarray) and indices.dtype == bool:
            indexer = indices
        else:
            indexer = np.asarray(indices, dtype=int)
        return GenotypeMatrix(np.asarray(self._data[indexer, :]))

    def calculate_maf(self, batch_size: int = 1000) -> np.ndarray:
        """Minor allele frequencies over non-missing calls.

        A MAF vector supplied at construction takes precedence.
        """
        if self._maf is not None:
            return self._maf.copy()

        n_markers = self.n_markers
        maf = np.zeros(n_markers)
        for start in range(0, n_markers, batch_size):
            end = min(start + batch_size, n_markers)
            batch = self.get_batch_dosage(start, end)
            with np.errstate(invalid='ignore'):
                freq = np.nanmean(batch, axis=0) / 2.0
            freq = np.where(np.isfinite(freq), freq, 0.0)
            maf[start:end] = np.minimum(freq, 1.0 - freq)
        self._maf = maf
        return maf.copy()


@dataclass(frozen=True)
class FDRRow:
    """One Benjamini-Hochberg summary row."""

    level: float
    threshold: float
    n_passing: int


@dataclass
class FDRTable:
    """Ordered Benjamini-Hochberg thresholds, one row per requested FDR level."""

    rows: List[FDRRow]
    n_tests: int

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self):
        return iter(self.rows)

    @property
    def levels(self) -> np.ndarray:
        return np.array([r.level for r in self.rows])

    @property
    def thresholds(self) -> np.ndarray:
        return np.array([r.threshold for r in self.rows])

    @property
    def n_passing(self) -> np.ndarray:
        return np.array([r.n_passing for r in self.rows], dtype=int)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame({
            'FDR': self.levels,
            'P_Threshold': self.thresholds,
            'N_Passing': self.n_passing,
        })

    def format_table(self) -> str:
        """Fixed-width text table for the analysis summary"""
        lines = [
            "        P-value   Number of Passing",
            "FDR    Threshold     Predictors",
            "",
        ]
        for row in self.rows:
            lines.append(f"{row.level:4.2f}   {row.threshold:8.5f}   {row.n_passing:9d}")
        return "\n".join(lines)


# Per-marker outcomes of the scan
OUTCOME_SKIPPED_MAF = 'skipped-maf'
OUTCOME_MISSING_DOSAGE = 'missing-dosage'
OUTCOME_SCREENED = 'screened-nonsignificant'
OUTCOME_ESCALATED = 'escalated'
OUTCOME_FIT_FAILED = 'escalation-failed'


@dataclass(frozen=True)
class MarkerReport:
    """Summary of one marker that passed the reporting threshold."""

    index: int
    snp: str
    chromosome: str
    position: int
    pvalue: float
    maf: float
    hwe_pvalue: float
    effect: float
    loglik: float
    outcome: str
    fit_error: Optional[str] = None

    def format_block(self) -> str:
        """Text block for the analysis summary file"""
        lines = [
            f"Summary for SNP {self.snp}",
            f" on chromosome {self.chromosome} at basepair {self.position}",
            f"SNP p-value: {self.pvalue:.6g}",
            f"Minor Allele Frequency: {self.maf:.4f}",
            f"Hardy-Weinberg p-value: {self.hwe_pvalue:.4f}",
        ]
        if self.outcome == OUTCOME_ESCALATED:
            lines.append(f"SNP Effect Estimate: {self.effect:.4g}")
            lines.append(f"SNP Effect Loglikelihood: {self.loglik:.8g}")
        if self.fit_error:
            lines.append(f"Warning: likelihood ratio refit failed ({self.fit_error}); "
                         "p-value is from the score test")
        return "\n".join(lines)


@dataclass
class ScanResults:
    """GWAS scan results: one entry per marker plus the baseline fit."""

    pvalues: np.ndarray
    screen_pvalues: np.ndarray
    effects: np.ndarray
    logliks: np.ndarray
    maf: np.ndarray
    outcomes: np.ndarray
    fit_errors: Dict[int, str]
    baseline: Any
    baseline_names: List[str]
    reports: List[MarkerReport] = field(default_factory=list)
    snp_map: Optional[GenotypeMap] = None
    report_threshold: float = 0.05

    @property
    def n_markers(self) -> int:
        """Number of markers"""
        return len(self.pvalues)

    @property
    def n_escalated(self) -> int:
        return int(np.sum(self.outcomes == OUTCOME_ESCALATED))

    @property
    def n_skipped(self) -> int:
        return int(np.sum(self.outcomes == OUTCOME_SKIPPED_MAF))

    def to_dataframe(self) -> pd.DataFrame:
        """All markers as a DataFrame"""
        df = pd.DataFrame({
            'P': self.pvalues,
            'Screen_P': self.screen_pvalues,
            'Effect': self.effects,
            'LogLik': self.logliks,
            'MAF': self.maf,
            'Outcome': self.outcomes,
            'FitError': [self.fit_errors.get(i, '') for i in range(self.n_markers)],
        })

        if self.snp_map is not None:
            df.insert(0, 'SNP', self.snp_map.snp_ids.values)
            df.insert(1, 'CHROM', self.snp_map.chromosomes.values)
            df.insert(2, 'POS', self.snp_map.positions.values)

        return df

    def report_dataframe(self) -> pd.DataFrame:
        """Markers that passed the reporting threshold"""
        columns = ['SNP', 'CHROM', 'POS', 'P', 'MAF', 'HWE_P', 'Effect', 'LogLik', 'Outcome', 'FitError']
        rows = [
            [r.snp, r.chromosome, r.position, r.pvalue, r.maf, r.hwe_pvalue,
             r.effect, r.loglik, r.outcome, r.fit_error or '']
            for r in self.reports
        ]
        return pd.DataFrame(rows, columns=columns)

    def baseline_summary(self) -> pd.DataFrame:
        """Baseline coefficients by design-matrix column"""
        return pd.DataFrame({
            'Term': self.baseline_names,
            'Estimate': self.baseline.coefficients,
        })
