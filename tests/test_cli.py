"""
Tests for the randslopes command line entry point.
"""

import pandas as pd
import pytest

from randslopes.__main__ import build_parser, main
from randslopes.models import ComparisonReport


SMALL_ARGS = ['--subjects', '10', '--sessions', '4', '--seed', '5']


class TestBuildParser:
    """Tests for argument parsing."""

    def test_defaults(self):
        """Test the default scenario."""
        args = build_parser().parse_args([])

        assert args.subjects == 30
        assert args.sessions == 5
        assert args.slope == -10.0
        assert args.correlation == 0.2
        assert args.seed == 314
        assert not args.ml
        assert args.n_reps == 0


class TestMain:
    """Tests for running the CLI end to end."""

    def test_prints_report(self, capsys):
        """Test the comparison is printed and returned."""
        report = main(SMALL_ARGS)
        out = capsys.readouterr().out

        assert isinstance(report, ComparisonReport)
        assert 'COMPARISON COMPLETE' in out
        assert 'Random intercept + slope' in out

    def test_outputs_written(self, tmp_path):
        """Test CSV and figure files are saved."""
        main(SMALL_ARGS + ['--n-reps', '2', '--output', str(tmp_path)])

        for name in ('dataset.csv', 'summary.csv', 'simulation_study.csv',
                     'figure_trajectories.png', 'figure_pooling.png',
                     'figure_information_criteria.png', 'figure_simulation_study.png'):
            assert (tmp_path / name).exists()

        summary = pd.read_csv(tmp_path / 'summary.csv')
        assert len(summary) == 4

    def test_load_csv(self, small_dataset, tmp_path):
        """Test fitting a CSV instead of simulating."""
        path = tmp_path / 'data.csv'
        small_dataset.to_csv(path)

        report = main(['--data', str(path), '--ml'])

        assert report.n_obs == small_dataset.n_observations
        assert report.model('random_slope').method == 'ML'

    def test_invalid_configuration(self):
        """Test an invalid correlation is rejected."""
        with pytest.raises(ValueError):
            main(['--correlation', '2.0'])
