import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

from gwascan.association.families import Family
from gwascan.association.scan import GWASCAN_Scan
from gwascan.model.formula import build_model
from gwascan.utils.data_types import GenotypeMap, GenotypeMatrix
from gwascan.visualization import manhattan


def _make_genotype_map(n: int = 3) -> GenotypeMap:
    chroms = [str((i % 2) + 1) for i in range(n)]
    return GenotypeMap(
        pd.DataFrame(
            {
                "SNP": [f"s{i}" for i in range(n)],
                "CHROM": chroms,
                "POS": np.arange(1, n + 1) * 10,
            }
        )
    )


def _scan_results(n: int = 80, m: int = 20):
    rng = np.random.default_rng(11)
    geno = rng.binomial(2, 0.3, size=(n, m)).astype(np.float32)
    geno[:, 0] = 0.0
    frame = pd.DataFrame({'Trait': 2.0 * geno[:, 5] + rng.normal(size=n)})
    model = build_model(frame, "Trait ~ ", Family.LINEAR)
    return GWASCAN_Scan(model, GenotypeMatrix(geno), geno_map=_make_genotype_map(m), verbose=False)


def test_manhattan_points_natural_chromosome_order() -> None:
    points = manhattan.manhattan_points(
        np.array([0.1, 0.2, 0.3, 0.4, 0.5]),
        ['10', '2', 'X', '1', '2'],
        [5, 30, 1, 7, 10],
    )

    assert points['index'].tolist() == [3, 4, 1, 0, 2]
    assert points['CHROM'].tolist() == ['1', '2', '2', '10', 'X']
    assert list(points.columns) == ['index', 'CHROM', 'POS', 'LOG10P']
    assert points.loc[0, 'LOG10P'] == pytest.approx(-np.log10(0.4))


def test_manhattan_points_clips_zero_and_checks_lengths() -> None:
    points = manhattan.manhattan_points(np.array([0.0, 1.0]), ['1', '1'], [1, 2])

    assert points.loc[0, 'LOG10P'] == pytest.approx(300.0)
    assert points.loc[1, 'LOG10P'] == 0.0
    with pytest.raises(ValueError):
        manhattan.manhattan_points(np.array([0.1]), ['1', '1'], [1, 2])


def test_create_manhattan_plot_with_map_and_threshold() -> None:
    pvalues = np.array([0.05, 0.5, 1e-8])
    geno_map = _make_genotype_map(3)

    fig = manhattan.create_manhattan_plot(
        pvalues,
        map_data=geno_map,
        threshold=5e-8,
        title="Manhattan",
        point_size=5.0,
    )

    assert isinstance(fig, matplotlib.figure.Figure)
    ax = fig.axes[0]
    assert [t.get_text() for t in ax.get_xticklabels()] == ['1', '2']
    assert ax.get_title() == "Manhattan"
    plt.close(fig)


def test_create_manhattan_plot_falls_back_to_sequential() -> None:
    with pytest.warns(UserWarning, match="plotting markers sequentially"):
        fig = manhattan.create_manhattan_plot(np.array([0.1, 0.2]), map_data=_make_genotype_map(3))

    assert fig.axes[0].get_xlabel() == 'Marker'
    plt.close(fig)


def test_create_qq_plot_reports_lambda_and_handles_empty() -> None:
    fig = manhattan.create_qq_plot(np.array([0.01, 0.2, 0.5, 0.9]), title="QQ")
    assert "λ =" in fig.axes[0].get_title()
    plt.close(fig)

    empty = manhattan.create_qq_plot(np.array([np.nan, 0.0]))
    assert empty.axes[0].texts[0].get_text() == 'No valid p-values for Q-Q plot'
    plt.close(empty)


def test_gwascan_report_writes_plots(tmp_path) -> None:
    results = _scan_results()
    prefix = tmp_path / "scan"

    report = manhattan.GWASCAN_Report(results, output_prefix=str(prefix), dpi=50, verbose=False)

    assert sorted(report['plots']) == ['manhattan', 'qq']
    for name in report['files_created']:
        assert (tmp_path / name.split('/')[-1]).exists()
    summary = report['summary']
    assert summary['n_markers'] == 20
    assert summary['n_tested'] == 19
    assert summary['n_reported'] == len(results.reports)
    assert summary['min_pvalue'] == pytest.approx(results.pvalues[5])
    for fig in report['plots'].values():
        plt.close(fig)


def test_gwascan_report_rejects_other_inputs() -> None:
    with pytest.raises(ValueError):
        manhattan.GWASCAN_Report({'pvalues': [0.1]}, save_plots=False, verbose=False)
