import numpy as np
import pandas as pd
import pytest

from gwascan.data import loaders
from gwascan.utils.data_types import GenotypeMatrix, GenotypeMap


def test_detect_file_format_by_extension_and_content(tmp_path) -> None:
    assert loaders.detect_file_format(tmp_path / "a.csv") == 'csv'
    assert loaders.detect_file_format(tmp_path / "a.tsv.gz") == 'tsv'
    assert loaders.detect_file_format(tmp_path / "a.txt") == 'tsv'

    tab_path = tmp_path / "table.dat"
    tab_path.write_text("ID\tTrait\nA\t1\n", encoding="utf-8")
    comma_path = tmp_path / "table.data"
    comma_path.write_text("ID,Trait\nA,1\n", encoding="utf-8")

    assert loaders.detect_file_format(tab_path) == 'tsv'
    assert loaders.detect_file_format(comma_path) == 'csv'
    assert loaders.detect_file_format(tmp_path / "missing.dat") == 'unknown'


def test_load_phenotype_keeps_text_columns_and_records_entry_order(tmp_path) -> None:
    path = tmp_path / "pheno.csv"
    path.write_text(
        "Person,Trait,Sex,Status\n"
        "C,1.5,male,case\n"
        "A,NA,female,control\n"
        "B,2.0,,case\n",
        encoding="utf-8",
    )

    df = loaders.load_phenotype_file(path, id_column='Person')

    assert list(df.columns[:2]) == ['ID', 'EntryOrder']
    assert df['ID'].tolist() == ['C', 'A', 'B']
    assert df['EntryOrder'].tolist() == [0, 1, 2]
    assert np.isnan(df.loc[1, 'Trait'])
    assert df.loc[0, 'Sex'] == 'male'
    assert pd.isna(df.loc[2, 'Sex'])


def test_load_phenotype_drops_duplicate_ids_with_warning(tmp_path) -> None:
    path = tmp_path / "pheno.tsv"
    path.write_text("ID\tTrait\nA\t1\nB\t2\nA\t3\n", encoding="utf-8")

    with pytest.warns(UserWarning, match="duplicated phenotype records"):
        df = loaders.load_phenotype_file(path)

    assert df['ID'].tolist() == ['A', 'B']
    assert df['Trait'].tolist() == [1, 2]


def test_load_phenotype_missing_file_raises(tmp_path) -> None:
    with pytest.raises(ValueError):
        loaders.load_phenotype_file(tmp_path / "absent.csv")


def test_load_genotype_marks_missing_calls(tmp_path) -> None:
    path = tmp_path / "geno.csv"
    path.write_text(
        "ID,rs1,rs2,rs3\n"
        "A,0,1,2\n"
        "B,-9,NA,0.5\n"
        "C,2,,1\n",
        encoding="utf-8",
    )

    genotype, ids, geno_map = loaders.load_genotype_file(path)

    assert isinstance(genotype, GenotypeMatrix)
    assert ids == ['A', 'B', 'C']
    assert genotype.shape == (3, 3)
    assert np.isnan(genotype[1, 0])
    assert np.isnan(genotype[1, 1])
    assert np.isnan(genotype[2, 1])
    assert genotype[1, 2] == pytest.approx(0.5)
    assert list(geno_map.snp_ids) == ['rs1', 'rs2', 'rs3']
    assert geno_map.positions.tolist() == [1, 2, 3]


def test_load_genotype_rejects_out_of_range_dosage(tmp_path) -> None:
    path = tmp_path / "geno.csv"
    path.write_text("ID,rs1\nA,0\nB,3\n", encoding="utf-8")

    with pytest.raises(ValueError, match="outside"):
        loaders.load_genotype_file(path)


def test_load_genotype_dedups_ids(tmp_path) -> None:
    path = tmp_path / "geno.csv"
    path.write_text("ID,rs1,rs2\nI1,0,1\nI2,1,0\nI1,2,2\n", encoding="utf-8")

    with pytest.warns(UserWarning, match="duplicated genotype sample IDs"):
        genotype, ids, _ = loaders.load_genotype_file(path)

    assert ids == ['I1', 'I2']
    np.testing.assert_array_equal(genotype[:, :], np.array([[0, 1], [1, 0]], dtype=np.float32))


def test_load_map_file_standardises_columns(tmp_path) -> None:
    path = tmp_path / "map.csv"
    path.write_text("marker,Chromosome,Basepairs\nrs1,1,100\nrs2,X,200\n", encoding="utf-8")

    geno_map = loaders.load_map_file(path)

    assert isinstance(geno_map, GenotypeMap)
    assert geno_map.snp_ids.tolist() == ['rs1', 'rs2']
    assert geno_map.chromosomes.tolist() == ['1', 'X']
    assert geno_map.positions.tolist() == [100, 200]
    np.testing.assert_array_equal(geno_map.xlinked_mask(), [False, True])


def test_load_map_file_requires_columns(tmp_path) -> None:
    path = tmp_path / "map.csv"
    path.write_text("SNP,CHROM\nrs1,1\n", encoding="utf-8")

    with pytest.raises(ValueError, match="POS"):
        loaders.load_map_file(path)


def test_match_individuals_follows_phenotype_entry_order() -> None:
    phenotype = pd.DataFrame({
        'ID': ['C', 'A', 'B', 'E'],
        'EntryOrder': [0, 1, 2, 3],
        'Trait': [3.0, 1.0, 2.0, 5.0],
    })

    matched, indices, summary = loaders.match_individuals(phenotype, ['A', 'B', 'C', 'D'])

    assert matched['ID'].tolist() == ['C', 'A', 'B']
    assert indices == [2, 0, 1]
    assert summary['n_common'] == 3
    assert summary['n_phenotype_dropped'] == 1
    assert summary['n_genotype_dropped'] == 1


def test_match_individuals_without_overlap_raises() -> None:
    phenotype = pd.DataFrame({'ID': ['X', 'Y']})

    with pytest.raises(ValueError, match="No common individuals"):
        loaders.match_individuals(phenotype, ['A', 'B'])
