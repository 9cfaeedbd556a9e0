"""
epicast.archive
===============
Versioned ("as of") panel data.

An archive is a long table of updates keyed by ``(key, time, version)``:
each row is the full record of ``(key, time)`` as published at ``version``.
A snapshot as of version ``v`` keeps, for every ``(key, time)``, the latest
update with ``version <= v``.

Public API
----------
EpiArchive(data, key_cols, time_col, version_col)
EpiArchive.from_snapshots({version: df, ...})
archive.versions_end                 → latest version
archive.as_of(version)               → snapshot DataFrame
archive.first_seen(columns)          → first version each value was populated
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from .checks import NoVersionHistory, assert_columns_present
from .config import KEY_COLS, TIME_COL, VERSION_COL


class EpiArchive:
    """
    Parameters
    ----------
    data : pd.DataFrame
        Update table with key, time and version columns plus value columns.
    key_cols : list of str
    time_col, version_col : str

    Raises
    ------
    NoVersionHistory
        If *version_col* is absent.
    ValueError
        If a ``(key, time, version)`` triple appears twice.
    """

    def __init__(
        self,
        data: pd.DataFrame,
        key_cols: Sequence[str] = tuple(KEY_COLS),
        time_col: str = TIME_COL,
        version_col: str = VERSION_COL,
    ):
        if version_col not in data.columns:
            raise NoVersionHistory(
                f"No version column '{version_col}' in columns {list(data.columns)}; "
                "latency needs a versioned archive."
            )
        self.key_cols = list(key_cols)
        self.time_col = time_col
        self.version_col = version_col
        assert_columns_present(data, self.key_cols + [time_col])

        id_cols = self.key_cols + [time_col, version_col]
        dup = data.duplicated(subset=id_cols)
        if dup.any():
            raise ValueError(
                f"{int(dup.sum())} duplicated (key, {time_col}, {version_col}) rows "
                "in archive data."
            )
        self.data = data.sort_values(id_cols).reset_index(drop=True)
        self.value_cols: List[str] = [c for c in data.columns if c not in id_cols]

    @classmethod
    def from_snapshots(
        cls,
        snapshots: Dict[Any, pd.DataFrame],
        key_cols: Sequence[str] = tuple(KEY_COLS),
        time_col: str = TIME_COL,
        version_col: str = VERSION_COL,
    ) -> "EpiArchive":
        """Stack ``{version: snapshot}`` into an archive, keeping only changes."""
        frames = [
            snap.assign(**{version_col: version})
            for version, snap in sorted(snapshots.items(), key=lambda kv: kv[0])
        ]
        if not frames:
            raise NoVersionHistory("No snapshots given.")
        stacked = pd.concat(frames, ignore_index=True)
        id_cols = list(key_cols) + [time_col]
        value_cols = [c for c in stacked.columns if c not in id_cols + [version_col]]

        # drop updates identical to the previous version of the same row
        prev = stacked.groupby(id_cols, sort=False)[value_cols].shift(1)
        same = (
            (stacked[value_cols] == prev) | (stacked[value_cols].isna() & prev.isna())
        ).all(axis=1)
        first = stacked.groupby(id_cols, sort=False).cumcount() == 0
        return cls(stacked[first | ~same], key_cols, time_col, version_col)

    def __repr__(self) -> str:
        return (
            f"EpiArchive(n_updates={len(self.data)}, keys={self.key_cols}, "
            f"versions_end={self.versions_end})"
        )

    @property
    def versions_end(self):
        return self.data[self.version_col].max()

    def as_of(self, version: Optional[Any] = None) -> pd.DataFrame:
        """
        Snapshot as it looked at *version* (default: `versions_end`).
        Pure: returns a new frame without the version column.
        """
        if version is None:
            version = self.versions_end
        if version > self.versions_end:
            raise ValueError(
                f"Version {version} is after versions_end={self.versions_end}."
            )
        visible = self.data[self.data[self.version_col] <= version]
        snap = visible.groupby(self.key_cols + [self.time_col], sort=False).tail(1)
        return snap.drop(columns=[self.version_col]).reset_index(drop=True)

    def first_seen(self, columns: Sequence[str]) -> pd.DataFrame:
        """
        For each ``(key, time)``, the first version at which each of
        *columns* held a non-missing value (``NaN``/``NaT`` if never).
        """
        assert_columns_present(self.data, list(columns))
        id_cols = self.key_cols + [self.time_col]
        out = self.data[id_cols].drop_duplicates().reset_index(drop=True)
        for col in columns:
            seen = (
                self.data.loc[self.data[col].notna(), id_cols + [self.version_col]]
                .groupby(id_cols, sort=False)[self.version_col]
                .min()
                .rename(col)
                .reset_index()
            )
            out = out.merge(seen, on=id_cols, how="left")
        return out
