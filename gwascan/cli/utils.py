import argparse
from pathlib import Path
from typing import Dict, List, Optional

from ..utils.errors import ConfigurationError

# Control-file keywords that name input files rather than analysis settings
FILE_KEYWORDS = ('phenotype_file', 'genotype_file', 'map_file')


def read_control_file(path: str) -> Dict[str, str]:
    """Read `keyword = value` lines; blank lines and '#' comments are skipped.

    Keywords are lower-cased. A repeated keyword keeps its last value.
    """
    keywords: Dict[str, str] = {}
    with open(path, 'r') as handle:
        for line_no, raw in enumerate(handle, start=1):
            line = raw.split('#', 1)[0].strip()
            if not line:
                continue
            if '=' not in line:
                raise ConfigurationError(f"line {line_no} of {path} is not 'keyword = value': {raw.strip()}")
            name, _, value = line.partition('=')
            name = name.strip().lower()
            if not name:
                raise ConfigurationError(f"line {line_no} of {path} has no keyword")
            keywords[name] = value.strip()
    return keywords


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments for GWAS pipeline"""
    parser = argparse.ArgumentParser(
        description="Score-screened GWAS scan (linear, logistic or Poisson regression)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    # Inputs
    parser.add_argument("--control", "-c", default=None,
                       help="Control file of 'keyword = value' lines; command line options override it")
    parser.add_argument("--phenotype", "-p", default=None,
                       help="Individual file (CSV/TSV with ID, trait, covariates and optional Sex)")
    parser.add_argument("--phenotype-id-column", default='ID',
                       help="Column name for sample IDs in phenotype file")
    parser.add_argument("--genotype", "-g", default=None,
                       help="Dosage file (CSV/TSV, one row per individual)")
    parser.add_argument("--map", "-m", default=None,
                       help="Marker map file (CSV/TSV with SNP, CHROM, POS)")
    parser.add_argument("--outputdir", "-o", default=None,
                       help="Output directory (default ./GWAS_results)")

    # Model
    parser.add_argument("--regression", "-r", default=None,
                       choices=['linear', 'logistic', 'poisson'],
                       help="Regression family")
    parser.add_argument("--formula", "-f", dest='regression_formula', default=None,
                       help="Regression formula, e.g. 'Trait ~ Sex + Age'")
    parser.add_argument("--num-pcs", type=int, default=None,
                       help="Number of genotype principal components added as covariates (default 0)")
    parser.add_argument("--affected-designator", default=None,
                       help="Trait label of cases for logistic regression")
    parser.add_argument("--male-designators", default=None,
                       help="Comma-separated Sex labels treated as male (default male,m,1)")

    # Thresholds
    parser.add_argument("--lrt-threshold", type=float, default=None,
                       help="Screening p-value below which a likelihood ratio refit is run (default 5e-8)")
    parser.add_argument("--maf-threshold", type=float, default=None,
                       help="Markers with MAF at or below this are not tested (default 0.01)")
    parser.add_argument("--alpha", dest='report_alpha', type=float, default=None,
                       help="Bonferroni alpha for the report (default 0.05)")
    parser.add_argument("--hwe-method", default=None, choices=['chisq', 'exact'],
                       help="Autosomal Hardy-Weinberg test (default chisq)")

    # Options
    parser.add_argument("--max-iterations", dest='max_iter', type=int, default=None,
                       help="IRLS iteration cap")
    parser.add_argument("--n-workers", type=int, default=None,
                       help="Worker threads for screening and refits (default 1)")
    parser.add_argument("--batch-size", type=int, default=None,
                       help="Markers per screening block (default 5000)")
    parser.add_argument("--manhattan", dest='manhattan_plot_file', default=None,
                       help="Manhattan plot file name (PNG); no plot when omitted")
    parser.add_argument("--quiet", "-q", action='store_true',
                       help="Suppress progress output")

    return parser.parse_args(argv)


CONFIG_OPTIONS = (
    'regression', 'regression_formula', 'num_pcs', 'affected_designator',
    'male_designators', 'lrt_threshold', 'maf_threshold', 'report_alpha',
    'hwe_method', 'max_iter', 'n_workers', 'batch_size', 'manhattan_plot_file',
)


def resolve_inputs(args) -> Dict[str, Optional[str]]:
    """Merge the control file and command line into input paths and keywords.

    Returns:
        Dict with 'phenotype_file', 'genotype_file', 'map_file' and 'keywords'

    Raises:
        ConfigurationError: a required input file is missing
    """
    keywords: Dict[str, str] = {}
    base_dir = Path('.')
    if args.control:
        keywords = read_control_file(args.control)
        base_dir = Path(args.control).parent

    files = {}
    for name in FILE_KEYWORDS:
        value = keywords.pop(name, None)
        files[name] = str(base_dir / value) if value else None
    if args.phenotype:
        files['phenotype_file'] = args.phenotype
    if args.genotype:
        files['genotype_file'] = args.genotype
    if args.map:
        files['map_file'] = args.map

    for name in ('phenotype_file', 'genotype_file'):
        if not files[name]:
            raise ConfigurationError("no file given on the command line or in the control file",
                                     keyword=name)

    for name in CONFIG_OPTIONS:
        value = getattr(args, name)
        if value is not None:
            keywords[name] = value
    if args.outputdir:
        keywords['output_dir'] = args.outputdir

    files['keywords'] = keywords
    return files
