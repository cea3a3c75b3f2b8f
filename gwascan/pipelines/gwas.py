"""
GWAS Pipeline Module

This module runs a score-screened association scan end to end: it loads the
individual table and the dosage matrix, aligns individuals, builds the
baseline model (optionally augmented with principal components), scans every
marker and writes the text summary, result tables and plots.
"""

import time
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

from ..association.families import Family
from ..association.regress import DEFAULT_MAX_ITER, DEFAULT_TOL
from ..association.scan import (
    GWASCAN_Scan, DEFAULT_LRT_THRESHOLD, DEFAULT_MAF_THRESHOLD, DEFAULT_REPORT_ALPHA,
)
from ..data.loaders import (
    load_phenotype_file, load_genotype_file, load_map_file, match_individuals,
)
from ..matrix.pca import add_pcs
from ..model.formula import (
    Formula, ModelFrame, DEFAULT_MALE_DESIGNATORS, build_model, parse_formula, sex_vector,
)
from ..utils.data_types import (
    FDRTable, GenotypeMap, GenotypeMatrix, ScanResults, OUTCOME_SKIPPED_MAF,
)
from ..utils.errors import BaselineFitError, ConfigurationError
from ..utils.stats import DEFAULT_FDR_LEVELS, HWE_METHODS, GWASCAN_FDR, genomic_inflation_factor
from ..visualization.manhattan import create_manhattan_plot


@dataclass
class GWASConfig:
    """Analysis keywords for one scan.

    `regression` and `regression_formula` have no usable default and must be
    supplied; everything else falls back to the values below.
    """

    regression: str = ""
    regression_formula: str = ""
    lrt_threshold: float = DEFAULT_LRT_THRESHOLD
    maf_threshold: float = DEFAULT_MAF_THRESHOLD
    report_alpha: float = DEFAULT_REPORT_ALPHA
    num_pcs: int = 0
    manhattan_plot_file: str = ""
    affected_designator: str = ""
    male_designators: Tuple[str, ...] = DEFAULT_MALE_DESIGNATORS
    hwe_method: str = "chisq"
    max_iter: int = DEFAULT_MAX_ITER
    tol: float = DEFAULT_TOL
    n_workers: int = 1
    batch_size: int = 5000
    fdr_levels: Tuple[float, ...] = DEFAULT_FDR_LEVELS
    output_dir: str = "./GWAS_results"

    @classmethod
    def from_keywords(cls, keywords: Mapping[str, Any]) -> "GWASConfig":
        """Build and validate a config from a keyword mapping.

        Keyword names are case-insensitive. Comma-separated strings are
        accepted for `male_designators` and `fdr_levels`.

        Raises:
            ConfigurationError: unknown keyword or invalid value
        """
        known = {f.name: f for f in fields(cls)}
        values: Dict[str, Any] = {}
        for raw_name, value in keywords.items():
            name = str(raw_name).strip().lower()
            if name not in known:
                raise ConfigurationError(f"unknown keyword '{raw_name}'", keyword=str(raw_name))
            if value is None:
                continue
            values[name] = _coerce_keyword(name, value, known[name].default)
        config = cls(**values)
        config.validate()
        return config

    def validate(self) -> "GWASConfig":
        """Check every keyword; returns self so calls can be chained."""
        Family.parse(self.regression)
        parse_formula(self.regression_formula)
        if not 0.0 < self.lrt_threshold <= 1.0:
            raise ConfigurationError(f"must lie in (0, 1], got {self.lrt_threshold}",
                                     keyword="lrt_threshold")
        if not 0.0 <= self.maf_threshold < 0.5:
            raise ConfigurationError(f"must lie in [0, 0.5), got {self.maf_threshold}",
                                     keyword="maf_threshold")
        if not 0.0 < self.report_alpha <= 1.0:
            raise ConfigurationError(f"must lie in (0, 1], got {self.report_alpha}",
                                     keyword="report_alpha")
        if self.num_pcs < 0:
            raise ConfigurationError(f"must be non-negative, got {self.num_pcs}", keyword="num_pcs")
        if self.hwe_method not in HWE_METHODS:
            raise ConfigurationError(f"must be one of {HWE_METHODS}, got '{self.hwe_method}'",
                                     keyword="hwe_method")
        if self.max_iter < 1:
            raise ConfigurationError(f"must be at least 1, got {self.max_iter}", keyword="max_iter")
        if not self.tol > 0.0:
            raise ConfigurationError(f"must be positive, got {self.tol}", keyword="tol")
        if self.n_workers < 1:
            raise ConfigurationError(f"must be at least 1, got {self.n_workers}", keyword="n_workers")
        if self.batch_size < 1:
            raise ConfigurationError(f"must be at least 1, got {self.batch_size}", keyword="batch_size")
        if not self.male_designators:
            raise ConfigurationError("at least one label is required", keyword="male_designators")
        for level in self.fdr_levels:
            if not 0.0 < level <= 1.0:
                raise ConfigurationError(f"levels must lie in (0, 1], got {level}", keyword="fdr_levels")
        return self

    @property
    def family(self) -> Family:
        return Family.parse(self.regression)

    @property
    def formula(self) -> Formula:
        return parse_formula(self.regression_formula)


def _split_list(value) -> List[str]:
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v).strip() for v in value]


def _coerce_keyword(name: str, value: Any, default: Any) -> Any:
    try:
        if name == "male_designators":
            return tuple(_split_list(value))
        if name == "fdr_levels":
            return tuple(float(v) for v in _split_list(value))
        if isinstance(default, bool):
            return bool(value)
        if isinstance(default, int):
            as_float = float(value)
            if not as_float.is_integer():
                raise ValueError(f"expected an integer, got {value}")
            return int(as_float)
        if isinstance(default, float):
            return float(value)
        return str(value).strip()
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"invalid value {value!r} ({exc})", keyword=name) from exc


def format_baseline_summary(results: ScanResults, formula: Formula, family: Family) -> str:
    """Text block describing the covariate-only fit"""
    lines = [
        f"Summary for Base Model with {formula}",
        f"Regression Model: {family.value}",
        "Link Function: canonical",
        "Base Components Effect Estimates: ",
    ]
    for name, estimate in zip(results.baseline_names, results.baseline.coefficients):
        lines.append(f"   {name} : {estimate:.6g}")
    lines.append(f"Base Loglikelihood: {results.baseline.loglik:.8g}")
    return "\n".join(lines)


class GWASPipeline:
    """
    High-level pipeline for a score-screened genome-wide association scan.

    Typical workflow:
        1. Initialize pipeline with a GWASConfig
        2. Load the individual table, the dosage matrix and an optional map
        3. Align individuals (phenotype entry order is kept)
        4. Prepare the baseline model (recoding and optional PCs)
        5. Run the scan; the summary, tables and plots are written to
           the output directory

    Attributes:
        config (GWASConfig): Analysis keywords
        phenotype_df (DataFrame): Aligned individual table
        genotype_matrix (GenotypeMatrix): Aligned dosages (n_individuals × n_markers)
        geno_map (GenotypeMap): Marker map (SNP, CHROM, POS)
        model (ModelFrame): Baseline design for the complete cases
        results (ScanResults): Scan output once run_analysis() succeeded
        fdr_table (FDRTable): Benjamini-Hochberg thresholds for the scan

    Example:
        >>> config = GWASConfig.from_keywords({
        ...     'regression': 'linear',
        ...     'regression_formula': 'Trait ~ Sex',
        ... })
        >>> pipeline = GWASPipeline(config, output_dir='./my_gwas')
        >>> pipeline.load_data('individuals.csv', 'dosages.csv', map_file='map.csv')
        >>> pipeline.align_samples()
        >>> pipeline.prepare_model()
        >>> pipeline.run_analysis()
        True
    """

    def __init__(self, config: GWASConfig, output_dir: Optional[str] = None, verbose: bool = True):
        self.config = config.validate()
        self.output_dir = Path(output_dir if output_dir is not None else config.output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.verbose = verbose

        # Data storage
        self.phenotype_df: Optional[pd.DataFrame] = None
        self.genotype_matrix: Optional[GenotypeMatrix] = None
        self.geno_map: Optional[GenotypeMap] = None
        self.individual_ids: List[str] = []

        # Model state
        self.formula: Optional[Formula] = None
        self.model: Optional[ModelFrame] = None
        self.male: Optional[np.ndarray] = None

        # Analysis state
        self.results: Optional[ScanResults] = None
        self.fdr_table: Optional[FDRTable] = None
        self.files_created: Dict[str, Path] = {}

    def log(self, message: str):
        """Internal logger"""
        if self.verbose:
            print(message)

    def log_step(self, step_name: str, start_time: Optional[float] = None):
        """Log a pipeline step with optional timing"""
        if start_time is not None:
            elapsed = time.time() - start_time
            self.log(f"{step_name} completed in {elapsed:.2f} seconds")
        else:
            self.log(f"{step_name}...")

    def load_data(self,
                  phenotype_file: str,
                  genotype_file: str,
                  map_file: Optional[str] = None,
                  phenotype_id_column: str = 'ID',
                  genotype_id_column: str = 'ID'):
        """
        Load the individual table, the dosage matrix and an optional marker map.

        Args:
            phenotype_file: CSV/TSV with an ID column, the trait, covariates
                and optionally a Sex column
            genotype_file: CSV/TSV dosage matrix, one row per individual
            map_file: CSV/TSV with SNP, CHROM and POS for every marker
                column of the genotype file, in the same order

        Raises:
            ValueError: a file cannot be read or the map does not match
        """
        step_start = time.time()
        self.log_step("Step 1: Loading and validating input data")

        self.phenotype_df = load_phenotype_file(phenotype_file, id_column=phenotype_id_column)
        self.log(f"   Loaded {len(self.phenotype_df)} individuals with "
                 f"{len(self.phenotype_df.columns) - 2} fields")

        self.genotype_matrix, self.individual_ids, self.geno_map = load_genotype_file(
            genotype_file, id_column=genotype_id_column)
        self.log(f"   Loaded {self.genotype_matrix.n_individuals} individuals x "
                 f"{self.genotype_matrix.n_markers} markers")

        if map_file:
            supplied_map = load_map_file(map_file)
            if supplied_map.n_markers != self.geno_map.n_markers:
                raise ValueError(
                    f"Map marker count ({supplied_map.n_markers}) != genotype marker count "
                    f"({self.geno_map.n_markers})"
                )
            self.geno_map = supplied_map
            self.log(f"   Loaded map for {supplied_map.n_markers} markers")

        self.log_step("Data loading", step_start)

    def align_samples(self):
        """
        Keep individuals present in both files, in the phenotype file's order.

        Raises:
            ValueError: load_data() has not been called or no IDs overlap
        """
        if self.phenotype_df is None or self.genotype_matrix is None:
            raise ValueError("Data not loaded. Call load_data() first.")

        step_start = time.time()
        self.log_step("Step 2: Matching individuals between datasets")

        matched, matched_indices, summary = match_individuals(self.phenotype_df, self.individual_ids)
        self.phenotype_df = matched
        self.genotype_matrix = self.genotype_matrix.subset_individuals(matched_indices)
        self.individual_ids = matched['ID'].tolist()

        self.log(f"   Original phenotypes: {summary['n_phenotype_original']}")
        self.log(f"   Original genotypes: {summary['n_genotype_original']}")
        self.log(f"   Matched Intersection: {summary['n_common']}")
        self.log_step("Individual matching", step_start)

    def prepare_model(self) -> ModelFrame:
        """
        Build the baseline design: parse the formula, append principal
        components when num_pcs > 0, recode Sex and a case/control trait.

        Raises:
            ValueError: samples have not been aligned
            ConfigurationError: formula fields are missing or non-numeric
        """
        if self.phenotype_df is None or self.genotype_matrix is None:
            raise ValueError("Data not loaded. Call load_data() first.")
        if len(self.phenotype_df) != self.genotype_matrix.n_individuals:
            raise ValueError("Samples are not aligned. Call align_samples() first.")

        step_start = time.time()
        self.log_step("Step 3: Preparing the baseline model")

        formula = self.config.formula
        if self.config.num_pcs > 0:
            self.log(f"   Calculating {self.config.num_pcs} PCs...")
            self.phenotype_df, formula = add_pcs(
                self.phenotype_df, formula, self.genotype_matrix,
                self.config.num_pcs, verbose=False)

        self.model = build_model(
            self.phenotype_df, formula, self.config.family,
            affected_designator=self.config.affected_designator,
            male_designators=self.config.male_designators,
        )
        self.formula = formula
        self.male = sex_vector(self.phenotype_df, male_designators=self.config.male_designators)

        self.log(f"   Formula: {formula}")
        self.log(f"   Complete cases: {self.model.n_complete} of {self.model.n_individuals}")
        self.log_step("Model preparation", step_start)
        return self.model

    def run_analysis(self, write_outputs: bool = True) -> bool:
        """
        Scan every marker, summarise the false discovery rate and write the
        outputs.

        Returns:
            True when the scan finished; False when the baseline model could
            not be fitted, in which case no marker report is written
        """
        if self.model is None:
            self.prepare_model()

        step_start = time.time()
        self.log_step("Step 4: Running GWAS analysis")
        config = self.config
        try:
            self.results = GWASCAN_Scan(
                self.model,
                self.genotype_matrix,
                geno_map=self.geno_map,
                maf_threshold=config.maf_threshold,
                lrt_threshold=config.lrt_threshold,
                report_alpha=config.report_alpha,
                male=self.male,
                hwe_method=config.hwe_method,
                batch_size=config.batch_size,
                n_workers=config.n_workers,
                max_iter=config.max_iter,
                tol=config.tol,
                verbose=self.verbose,
            )
        except BaselineFitError as exc:
            self.results = None
            self.log(f"   {exc}")
            self.log("ERROR: analysis terminated prematurely")
            return False

        self.fdr_table = GWASCAN_FDR(self.results.pvalues, levels=config.fdr_levels)
        tested = self.results.pvalues[self.results.outcomes != OUTCOME_SKIPPED_MAF]
        if tested.size:
            self.log(f"   Lambda (GC): {genomic_inflation_factor(tested):.3f}")
        self.log_step("GWAS analysis", step_start)

        if write_outputs:
            self.write_report()
        self.log("\nGWAS Analysis Completed Successfully.")
        return True

    @property
    def output_prefix(self) -> str:
        response = self.formula.response if self.formula is not None else "trait"
        return f"GWAS_{response}"

    def format_summary(self) -> str:
        """Full text summary: base model, reported markers and the FDR table"""
        if self.results is None or self.fdr_table is None:
            raise ValueError("No results. Call run_analysis() first.")
        sections = [format_baseline_summary(self.results, self.formula, self.config.family)]
        if self.results.reports:
            sections.extend(report.format_block() for report in self.results.reports)
        else:
            sections.append(f"No SNP passed the reporting threshold "
                            f"(p < {self.results.report_threshold:.3g}).")
        sections.append(self.fdr_table.format_table())
        return "\n\n".join(sections) + "\n"

    def write_report(self) -> Dict[str, Path]:
        """
        Write the text summary, the all-marker and reported-marker tables,
        the FDR table and, when manhattan_plot_file is set, the Manhattan plot.

        Returns:
            Mapping of output kind to file path
        """
        if self.results is None:
            raise ValueError("No results. Call run_analysis() first.")

        prefix = self.output_prefix
        files: Dict[str, Path] = {}

        summary_path = self.output_dir / f"{prefix}_summary.txt"
        summary_path.write_text(self.format_summary())
        files['summary'] = summary_path

        all_path = self.output_dir / f"{prefix}_all_results.csv"
        self.results.to_dataframe().to_csv(all_path, index=False)
        files['all_results'] = all_path

        sig_path = self.output_dir / f"{prefix}_significant.csv"
        self.results.report_dataframe().to_csv(sig_path, index=False)
        files['significant'] = sig_path

        fdr_path = self.output_dir / f"{prefix}_fdr.csv"
        self.fdr_table.to_dataframe().to_csv(fdr_path, index=False)
        files['fdr'] = fdr_path

        if self.config.manhattan_plot_file:
            plot_path = Path(self.config.manhattan_plot_file)
            if not plot_path.is_absolute():
                plot_path = self.output_dir / plot_path
            fig = create_manhattan_plot(
                self.results.pvalues,
                map_data=self.geno_map,
                threshold=self.results.report_threshold,
                title=f"Manhattan Plot for {self.formula.response}",
            )
            fig.savefig(plot_path, dpi=300, bbox_inches='tight')
            plt.close(fig)
            files['manhattan'] = plot_path

        for kind, path in files.items():
            self.log(f"   Saved {kind} to {path}")
        self.files_created = files
        return files
