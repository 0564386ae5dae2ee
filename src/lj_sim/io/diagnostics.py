"""
Persistence of the energy statistics history.

A history is an (M, 3) table of ``iteration, KE, PE`` rows (energies in eV)
plus the run configuration it was produced with. Three formats are supported,
chosen by file suffix:

- CSV (``.csv``, default): first row holds the configuration serialised as a
  single JSON cell, second row is the header ``iteration,KE,PE``, then one
  row per snapshot.
- JSON (``.json``): ``{"config": {...}, "columns": [...], "rows": [...]}``.
- HDF5 (``.h5``, ``.hdf5``): datasets ``iteration``, ``KE``, ``PE``; the
  configuration is stored as a JSON string attribute.

Usage:
    >>> write_stats("energy.csv", rows, config.model_dump())
    >>> rows, config_dict = read_stats("energy.csv")
"""

import csv
import json
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import h5py
import numpy as np
import numpy.typing as npt

NDArrayFloat = npt.NDArray[np.float64]

STATS_COLUMNS = ('iteration', 'KE', 'PE')

FORMAT_SUFFIXES = {
    '.csv': 'csv',
    '.json': 'json',
    '.h5': 'hdf5',
    '.hdf5': 'hdf5',
}


class StatsExportError(Exception):
    """Raised when a statistics history cannot be written or read."""


def _json_serializer(obj):
    """JSON serializer for numpy types."""
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    elif isinstance(obj, (np.float32, np.float64)):
        return float(obj)
    elif isinstance(obj, (np.int32, np.int64)):
        return int(obj)
    else:
        return str(obj)


def infer_format(path: Union[str, Path], format: Optional[str] = None) -> str:
    """Resolve the output format from an explicit name or the file suffix."""
    if format is not None:
        fmt = format.lower()
        if fmt not in ('csv', 'json', 'hdf5'):
            raise StatsExportError(f"Unsupported stats format '{format}'")
        return fmt
    suffix = Path(path).suffix.lower()
    if suffix == '':
        return 'csv'
    if suffix not in FORMAT_SUFFIXES:
        raise StatsExportError(
            f"Unsupported stats file suffix '{suffix}'. Use one of {sorted(FORMAT_SUFFIXES)}"
        )
    return FORMAT_SUFFIXES[suffix]


def _as_rows(rows) -> NDArrayFloat:
    rows = np.asarray(rows, dtype=np.float64)
    if rows.size == 0:
        return np.zeros((0, 3), dtype=np.float64)
    if rows.ndim != 2 or rows.shape[1] != 3:
        raise ValueError(f"rows must have shape (M, 3), got {rows.shape}")
    return rows


def _write_csv(path: Path, rows: NDArrayFloat, config: Dict[str, Any]) -> None:
    with open(path, 'w', newline='') as f:
        writer = csv.writer(f)
        writer.writerow([json.dumps(config, default=_json_serializer)])
        writer.writerow(STATS_COLUMNS)
        for iteration, ke, pe in rows:
            writer.writerow([int(iteration), repr(float(ke)), repr(float(pe))])


def _write_json(path: Path, rows: NDArrayFloat, config: Dict[str, Any]) -> None:
    payload = {
        'config': config,
        'columns': list(STATS_COLUMNS),
        'rows': [[int(r[0]), float(r[1]), float(r[2])] for r in rows],
    }
    with open(path, 'w') as f:
        json.dump(payload, f, indent=2, default=_json_serializer)


def _write_hdf5(path: Path, rows: NDArrayFloat, config: Dict[str, Any]) -> None:
    with h5py.File(path, 'w') as f:
        f.attrs['config'] = json.dumps(config, default=_json_serializer)
        f.create_dataset('iteration', data=rows[:, 0].astype(np.int64))
        f.create_dataset('KE', data=rows[:, 1])
        f.create_dataset('PE', data=rows[:, 2])


def write_stats(
    path: Union[str, Path],
    rows,
    config: Optional[Dict[str, Any]] = None,
    format: Optional[str] = None,
) -> Path:
    """
    Write a statistics table.

    Parameters
    ----------
    path : str or Path
        Destination file. Parent directories are created.
    rows : array-like, shape (M, 3)
        ``iteration, KE, PE`` rows, already in the desired order.
    config : Dict[str, Any], optional
        Run configuration stored alongside the table.
    format : str, optional
        'csv', 'json' or 'hdf5'; inferred from the suffix when omitted.

    Returns
    -------
    path : Path

    Raises
    ------
    StatsExportError
        If the format is unsupported or the file cannot be written.
    """
    path = Path(path)
    fmt = infer_format(path, format)
    rows = _as_rows(rows)
    config = config or {}

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        if fmt == 'csv':
            _write_csv(path, rows, config)
        elif fmt == 'json':
            _write_json(path, rows, config)
        else:
            _write_hdf5(path, rows, config)
    except OSError as e:
        raise StatsExportError(f"Failed to write stats to {path}: {e}") from e

    return path


def read_stats(path: Union[str, Path], format: Optional[str] = None) -> Tuple[NDArrayFloat, Dict[str, Any]]:
    """
    Read a statistics table written by ``write_stats``.

    Returns
    -------
    rows : NDArrayFloat, shape (M, 3)
    config : Dict[str, Any]

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    StatsExportError
        If the file is not a valid statistics table.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Stats file not found: {path}")
    fmt = infer_format(path, format)

    try:
        if fmt == 'csv':
            with open(path, 'r', newline='') as f:
                reader = csv.reader(f)
                config = json.loads(next(reader)[0])
                header = tuple(next(reader))
                if header != STATS_COLUMNS:
                    raise StatsExportError(f"Unexpected header {header} in {path}")
                data = [[float(v) for v in row] for row in reader if row]
        elif fmt == 'json':
            with open(path, 'r') as f:
                payload = json.load(f)
            config = payload.get('config', {})
            data = payload['rows']
        else:
            with h5py.File(path, 'r') as f:
                config = json.loads(f.attrs['config'])
                data = np.column_stack([
                    f['iteration'][...].astype(np.float64),
                    f['KE'][...],
                    f['PE'][...],
                ])
    except (StopIteration, KeyError, IndexError, ValueError) as e:
        raise StatsExportError(f"Malformed stats file {path}: {e}") from e

    return _as_rows(data), config
