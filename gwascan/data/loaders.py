"""
Data loading utilities for delimited phenotype, genotype and map files
"""

import pandas as pd
import numpy as np
from pathlib import Path
from typing import Union, Tuple, Dict, List
import warnings

from ..utils.data_types import GenotypeMatrix, GenotypeMap, MISSING_GENOTYPE

NA_VALUES = [
    '', 'NA', 'NaN', 'nan', 'NAN', 'na', 'N/A', 'n/a', 'Null', 'NULL',
    '.', '-', '--'
]

POSSIBLE_ID_COLUMNS = [
    'ID', 'id', 'IID', 'Person', 'person',
    'sample', 'Sample',
]


def detect_file_format(filepath: Union[str, Path]) -> str:
    """Detect delimited file format based on extension and content

    Args:
        filepath: Path to file

    Returns:
        Detected format: 'csv', 'tsv' or 'unknown'
    """
    filepath = Path(filepath)

    name_lower = filepath.name.lower()
    if name_lower.endswith(('.tsv', '.txt', '.tsv.gz', '.txt.gz')):
        return 'tsv'
    elif name_lower.endswith(('.csv', '.csv.gz')):
        return 'csv'

    try:
        with open(filepath, 'r') as f:
            first_line = f.readline().strip()
    except OSError:
        return 'unknown'
    if '\t' in first_line and ',' not in first_line:
        return 'tsv'
    elif ',' in first_line:
        return 'csv'
    return 'unknown'


def _read_table(filepath: Union[str, Path], **kwargs) -> pd.DataFrame:
    filepath = Path(filepath)
    if not filepath.exists():
        raise ValueError(f"File not found: {filepath}")
    file_format = detect_file_format(filepath)
    if file_format == 'tsv':
        return pd.read_csv(filepath, sep='\t', **kwargs)
    if file_format == 'csv':
        return pd.read_csv(filepath, **kwargs)
    return pd.read_csv(filepath, sep=None, engine='python', **kwargs)


def _standardize_id_column(df: pd.DataFrame, id_column: str, what: str) -> pd.DataFrame:
    if id_column in df.columns:
        return df.rename(columns={id_column: 'ID'})
    present = [c for c in df.columns if c in POSSIBLE_ID_COLUMNS]
    if present:
        if len(present) > 1:
            warnings.warn(
                f"Multiple potential ID columns found in {what} file: {present}. "
                f"Selecting leftmost '{present[0]}' as ID."
            )
        return df.rename(columns={present[0]: 'ID'})
    first_col = df.columns[0]
    warnings.warn(f"No recognized ID column found in {what} file; using first column '{first_col}' as ID.")
    return df.rename(columns={first_col: 'ID'})


def load_phenotype_file(filepath: Union[str, Path],
                        id_column: str = 'ID') -> pd.DataFrame:
    """Load an individual-level table (traits, covariates, Sex).

    Columns are kept as read: text columns such as Sex or a case/control
    label are recoded later by the model builder. The row order of the file
    is recorded in an 'EntryOrder' column.

    Args:
        filepath: Path to CSV/TSV file
        id_column: Name of ID column

    Returns:
        DataFrame with 'ID', 'EntryOrder' and the file's other columns
    """
    df = _read_table(filepath, na_values=NA_VALUES, keep_default_na=True)
    df = _standardize_id_column(df, id_column, 'phenotype')
    df['ID'] = df['ID'].astype(str)

    if df['ID'].duplicated().any():
        n_dups = int(df['ID'].duplicated().sum())
        df = df.drop_duplicates(subset=['ID'], keep='first')
        warnings.warn(
            f"Detected {n_dups} duplicated phenotype records by ID; retained the first record per ID."
        )

    df = df.reset_index(drop=True)
    df.insert(1, 'EntryOrder', np.arange(len(df)))
    return df


def load_genotype_file(filepath: Union[str, Path],
                       id_column: str = 'ID') -> Tuple[GenotypeMatrix, List[str], GenotypeMap]:
    """Load a delimited dosage matrix: one row per individual, one column per marker.

    Missing calls may be blank, NA or -9; they are kept as missing.

    Args:
        filepath: Path to CSV/TSV file with an ID column then marker columns

    Returns:
        Tuple of (GenotypeMatrix, individual_ids, GenotypeMap with placeholder
        CHROM/POS until a map file is supplied)
    """
    df = _read_table(filepath, na_values=NA_VALUES, keep_default_na=True)
    df = _standardize_id_column(df, id_column, 'genotype')

    individual_ids = df['ID'].astype(str).tolist()
    marker_cols = [c for c in df.columns if c != 'ID']
    if not marker_cols:
        raise ValueError(f"Genotype file {filepath} has no marker columns")

    dosages = df[marker_cols].apply(pd.to_numeric, errors='coerce').to_numpy(dtype=np.float32)
    dosages[dosages == MISSING_GENOTYPE] = np.nan
    called = dosages[np.isfinite(dosages)]
    if called.size and (called.min() < 0.0 or called.max() > 2.0):
        raise ValueError(f"Genotype file {filepath} has dosages outside [0, 2]")

    if len(set(individual_ids)) != len(individual_ids):
        seen = set()
        keep = []
        for i, ind in enumerate(individual_ids):
            if ind not in seen:
                seen.add(ind)
                keep.append(i)
        warnings.warn(
            f"Detected {len(individual_ids) - len(keep)} duplicated genotype sample IDs; keeping first occurrence."
        )
        individual_ids = [individual_ids[i] for i in keep]
        dosages = dosages[keep, :]

    geno_map = GenotypeMap(pd.DataFrame({
        'SNP': [str(c) for c in marker_cols],
        'CHROM': ['NA'] * len(marker_cols),
        'POS': np.arange(1, len(marker_cols) + 1),
    }))
    return GenotypeMatrix(dosages), individual_ids, geno_map


def load_map_file(filepath: Union[str, Path]) -> GenotypeMap:
    """Load genetic map file

    Args:
        filepath: Path to map file

    Returns:
        GenotypeMap object
    """
    df = _read_table(filepath)

    # Standardize column names
    col_mapping = {
        'Chr': 'CHROM', 'chr': 'CHROM', 'chromosome': 'CHROM', 'Chromosome': 'CHROM',
        'Pos': 'POS', 'pos': 'POS', 'position': 'POS', 'bp': 'POS', 'Basepairs': 'POS',
        'snp': 'SNP', 'marker': 'SNP', 'rs': 'SNP', 'SNPID': 'SNP', 'Locus': 'SNP',
    }

    for old_name, new_name in col_mapping.items():
        if old_name in df.columns and new_name not in df.columns:
            df = df.rename(columns={old_name: new_name})

    if 'CHROM' in df.columns:
        df['CHROM'] = df['CHROM'].astype(str)
    return GenotypeMap(df)


def match_individuals(phenotype_df: pd.DataFrame,
                      individual_ids: List[str]) -> Tuple[pd.DataFrame, List[int], Dict[str, int]]:
    """Match individuals between the phenotype table and genotype rows.

    Matched individuals keep the phenotype file's entry order; the returned
    genotype indices put genotype rows in that same order.

    Returns:
        Tuple of (matched phenotype frame, genotype row indices, summary counts)
    """
    phenotype_df = phenotype_df.copy()
    if 'ID' not in phenotype_df.columns:
        raise ValueError("Phenotype dataframe must contain an 'ID' column.")
    phenotype_df['ID'] = phenotype_df['ID'].astype(str)

    genotype_ids = [str(ind_id) for ind_id in individual_ids]
    id_to_index: Dict[str, int] = {}
    for idx, raw_id in enumerate(genotype_ids):
        if raw_id not in id_to_index:
            id_to_index[raw_id] = idx

    phe_ids = set(phenotype_df['ID'])
    geno_ids = set(id_to_index)
    common_ids = phe_ids & geno_ids

    summary: Dict[str, int] = {
        'n_phenotype_original': len(phe_ids),
        'n_genotype_original': len(geno_ids),
        'n_common': len(common_ids),
        'n_phenotype_dropped': len(phe_ids - common_ids),
        'n_genotype_dropped': len(geno_ids - common_ids),
    }

    if len(common_ids) == 0:
        raise ValueError("No common individuals found between phenotype and genotype data")

    matched = phenotype_df[phenotype_df['ID'].isin(common_ids)]
    if 'EntryOrder' in matched.columns:
        matched = matched.sort_values('EntryOrder', kind='stable')
    matched = matched.reset_index(drop=True)
    matched_indices = [id_to_index[sid] for sid in matched['ID']]

    return matched, matched_indices, summary
