#!/usr/bin/env python3
"""
Score-screened GWAS scan from the command line.

Example:
    python scripts/run_GWAS.py -p individuals.csv -g dosages.csv -m map.csv \\
        -r linear -f "Trait ~ Sex" --manhattan manhattan.png
"""
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from gwascan.cli.utils import parse_args, resolve_inputs
from gwascan.pipelines.gwas import GWASConfig, GWASPipeline
from gwascan.utils.errors import ConfigurationError


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        inputs = resolve_inputs(args)
        config = GWASConfig.from_keywords(inputs['keywords'])
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    pipeline = GWASPipeline(config, verbose=not args.quiet)

    # 1. Load Data
    pipeline.load_data(
        phenotype_file=inputs['phenotype_file'],
        genotype_file=inputs['genotype_file'],
        map_file=inputs['map_file'],
        phenotype_id_column=args.phenotype_id_column,
    )

    # 2. Align
    pipeline.align_samples()

    # 3. Model
    pipeline.prepare_model()

    # 4. Run Analysis
    return 0 if pipeline.run_analysis() else 1


if __name__ == "__main__":
    sys.exit(main())
