"""
I/O module: statistics history export and import.
"""

from lj_sim.io.diagnostics import (
    StatsExportError,
    write_stats,
    read_stats,
)

__all__ = [
    'StatsExportError',
    'write_stats',
    'read_stats',
]
