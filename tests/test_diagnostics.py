"""
Tests for statistics file writers and readers.

Tests validate:
1. CSV layout: configuration row, header row, data rows
2. JSON and HDF5 layouts
3. Format selection by suffix
4. Error reporting through StatsExportError
"""

import csv
import json
import shutil
import tempfile
from pathlib import Path

import h5py
import numpy as np
import pytest

from lj_sim.io import StatsExportError, write_stats, read_stats
from lj_sim.io.diagnostics import infer_format


ROWS = np.array([
    [0, -1.5, -2.0],
    [31, -1.25, -2.25],
    [62, -1.0, -2.5],
])
CONFIG = {'n_particles': 3, 'boundary': 'wrap'}


class TestStatsWriters:
    """Test suite for write_stats/read_stats."""

    def setup_method(self):
        """Set up test fixtures with temporary directory."""
        self.temp_dir = Path(tempfile.mkdtemp())

    def teardown_method(self):
        """Clean up temporary directory."""
        shutil.rmtree(self.temp_dir)

    def test_csv_layout(self):
        path = write_stats(self.temp_dir / "stats.csv", ROWS, CONFIG)

        with open(path, newline='') as f:
            rows = list(csv.reader(f))

        assert json.loads(rows[0][0]) == CONFIG
        assert rows[1] == ['iteration', 'KE', 'PE']
        assert len(rows) == 2 + len(ROWS)
        assert rows[2] == ['0', '-1.5', '-2.0']
        assert rows[3][0] == '31'

    def test_csv_empty_history_writes_headers(self):
        path = write_stats(self.temp_dir / "empty.csv", [], CONFIG)
        with open(path, newline='') as f:
            rows = list(csv.reader(f))
        assert len(rows) == 2
        assert rows[1] == ['iteration', 'KE', 'PE']

    def test_csv_read_back(self):
        path = write_stats(self.temp_dir / "stats.csv", ROWS, CONFIG)
        rows, config = read_stats(path)
        np.testing.assert_array_equal(rows, ROWS)
        assert config == CONFIG

    def test_json_layout(self):
        path = write_stats(self.temp_dir / "stats.json", ROWS, CONFIG)
        with open(path) as f:
            payload = json.load(f)
        assert payload['config'] == CONFIG
        assert payload['columns'] == ['iteration', 'KE', 'PE']
        assert payload['rows'][1] == [31, -1.25, -2.25]

    def test_hdf5_layout(self):
        path = write_stats(self.temp_dir / "stats.h5", ROWS, CONFIG)
        with h5py.File(path, 'r') as f:
            assert json.loads(f.attrs['config']) == CONFIG
            np.testing.assert_array_equal(f['iteration'][...], [0, 31, 62])
            np.testing.assert_array_equal(f['KE'][...], ROWS[:, 1])
            np.testing.assert_array_equal(f['PE'][...], ROWS[:, 2])

        rows, config = read_stats(path)
        np.testing.assert_array_equal(rows, ROWS)
        assert config == CONFIG

    def test_parent_directories_created(self):
        path = write_stats(self.temp_dir / "a" / "b" / "stats.csv", ROWS)
        assert path.exists()

    def test_explicit_format_overrides_suffix(self):
        path = write_stats(self.temp_dir / "stats.dat", ROWS, CONFIG, format='json')
        rows, _ = read_stats(path, format='json')
        np.testing.assert_array_equal(rows, ROWS)

    def test_unwritable_path(self):
        blocker = self.temp_dir / "not_a_dir"
        blocker.write_text("x")
        with pytest.raises(StatsExportError, match="Failed to write"):
            write_stats(blocker / "stats.csv", ROWS, CONFIG)

    def test_bad_rows_shape(self):
        with pytest.raises(ValueError):
            write_stats(self.temp_dir / "stats.csv", np.zeros((3, 2)))

    def test_read_missing_file(self):
        with pytest.raises(FileNotFoundError):
            read_stats(self.temp_dir / "missing.csv")

    def test_read_malformed_csv(self):
        path = self.temp_dir / "bad.csv"
        path.write_text('{}\nfoo,bar\n')
        with pytest.raises(StatsExportError, match="Unexpected header"):
            read_stats(path)

        path.write_text('not json\n')
        with pytest.raises(StatsExportError, match="Malformed"):
            read_stats(path)


class TestFormatInference:

    @pytest.mark.parametrize("name, expected", [
        ("stats.csv", "csv"),
        ("stats.CSV", "csv"),
        ("stats", "csv"),
        ("stats.json", "json"),
        ("stats.h5", "hdf5"),
        ("stats.hdf5", "hdf5"),
    ])
    def test_suffixes(self, name, expected):
        assert infer_format(name) == expected

    def test_unsupported_suffix(self):
        with pytest.raises(StatsExportError, match="Unsupported"):
            infer_format("stats.xlsx")

    def test_unsupported_format_name(self):
        with pytest.raises(StatsExportError, match="Unsupported"):
            infer_format("stats.csv", format="parquet")
