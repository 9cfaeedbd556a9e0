"""
tests/test_latency.py
=====================
Versioned archives and latency tables.
Run with:  python -m pytest tests/ -v
"""

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Ensure project root is importable
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


@pytest.fixture
def updates():
    """Update table: ca reports one or two units late, ny two or three."""
    return pd.DataFrame(
        [
            ("ca", 1, 2, 10.0),
            ("ca", 1, 4, 11.0),
            ("ca", 2, 3, 20.0),
            ("ca", 3, 5, 30.0),
            ("ny", 1, 3, 5.0),
            ("ny", 2, 5, 6.0),
            ("ny", 3, 6, 7.0),
        ],
        columns=["geo_value", "time_value", "version", "cases"],
    )


@pytest.fixture
def archive(updates):
    from epicast.archive import EpiArchive
    return EpiArchive(updates)


# ======================================================================== #
#  Archive                                                                  #
# ======================================================================== #

class TestArchive:
    def test_versions_end(self, archive):
        assert archive.versions_end == 6

    def test_as_of_latest_update(self, archive):
        snap = archive.as_of(3).set_index(["geo_value", "time_value"])["cases"]
        assert snap[("ca", 1)] == 10.0
        assert snap[("ca", 2)] == 20.0
        assert snap[("ny", 1)] == 5.0
        assert len(snap) == 3

    def test_as_of_sees_revision(self, archive):
        snap = archive.as_of(4).set_index(["geo_value", "time_value"])["cases"]
        assert snap[("ca", 1)] == 11.0

    def test_as_of_drops_version_column(self, archive):
        assert "version" not in archive.as_of().columns
        assert len(archive.as_of()) == 6

    def test_as_of_future_raises(self, archive):
        with pytest.raises(ValueError, match="versions_end"):
            archive.as_of(7)

    def test_missing_version_column(self, updates):
        from epicast.archive import EpiArchive
        from epicast.checks import NoVersionHistory
        with pytest.raises(NoVersionHistory):
            EpiArchive(updates.drop(columns="version"))

    def test_duplicate_updates_raise(self, updates):
        from epicast.archive import EpiArchive
        dup = pd.concat([updates, updates.iloc[[0]]], ignore_index=True)
        with pytest.raises(ValueError, match="duplicated"):
            EpiArchive(dup)

    def test_from_snapshots_keeps_changes_only(self):
        from epicast.archive import EpiArchive
        v1 = pd.DataFrame({"geo_value": ["ca", "ca"], "time_value": [1, 2], "cases": [10.0, 20.0]})
        v2 = pd.DataFrame({"geo_value": ["ca"] * 3, "time_value": [1, 2, 3], "cases": [10.0, 25.0, 30.0]})
        arch = EpiArchive.from_snapshots({1: v1, 2: v2})
        assert len(arch.data) == 4
        assert arch.as_of(1).set_index("time_value").loc[2, "cases"] == 20.0
        assert arch.as_of(2).set_index("time_value").loc[2, "cases"] == 25.0

    def test_first_seen(self, archive):
        seen = archive.first_seen(["cases"]).set_index(["geo_value", "time_value"])["cases"]
        assert seen[("ca", 1)] == 2
        assert seen[("ny", 3)] == 6


# ======================================================================== #
#  Latency estimation                                                       #
# ======================================================================== #

class TestComputeLatency:
    def test_median_then_max_over_keys(self, archive):
        from epicast.latency import compute_latency
        # ca deltas 1, 1, 2 -> 1 ; ny deltas 2, 3, 3 -> 3
        assert compute_latency(archive, ["cases"]) == {"cases": 3}

    def test_pooled_keys(self, archive):
        from epicast.latency import compute_latency
        assert compute_latency(archive, ["cases"], epi_keys_checked=[]) == {"cases": 2}

    def test_keys_to_ignore(self, archive):
        from epicast.latency import compute_latency
        table = compute_latency(archive, ["cases"], keys_to_ignore={"geo_value": ["ny"]})
        assert table == {"cases": 1}

    def test_accepts_update_frame(self, updates):
        from epicast.latency import compute_latency
        assert compute_latency(updates, ["cases"]) == {"cases": 3}

    def test_rounds_up(self):
        from epicast.latency import compute_latency
        df = pd.DataFrame({
            "geo_value": ["ca", "ca"],
            "time_value": pd.to_datetime(["2022-01-01", "2022-01-02"]),
            "version": pd.to_datetime(["2022-01-02", "2022-01-04"]),
            "cases": [1.0, 2.0],
        })
        assert compute_latency(df, ["cases"]) == {"cases": 2}

    def test_no_version_history(self, updates):
        from epicast.checks import NoVersionHistory
        from epicast.latency import compute_latency
        with pytest.raises(NoVersionHistory):
            compute_latency(updates.drop(columns="version"), ["cases"])

    def test_unobserved_column_warns(self, updates):
        from epicast.latency import compute_latency
        df = updates.assign(deaths=np.nan)
        with pytest.warns(UserWarning, match="deaths"):
            table = compute_latency(df, ["cases", "deaths"])
        assert table == {"cases": 3}

    def test_snapshot_latency(self):
        from epicast.latency import snapshot_latency
        df = pd.DataFrame({
            "geo_value": ["ca"] * 5 + ["ny"] * 5,
            "time_value": list(range(1, 6)) * 2,
            "cases": [1.0] * 5 + [1.0, 1.0, 1.0, np.nan, np.nan],
        })
        assert snapshot_latency(df, ["cases"], forecast_date=6) == {"cases": 3}


# ======================================================================== #
#  Applying a latency table                                                 #
# ======================================================================== #

class TestApplyLatency:
    @pytest.fixture
    def specs(self):
        from epicast.features import ShiftSpec
        return [ShiftSpec.lag(["cases", "deaths"], [0, 7]), ShiftSpec.ahead("cases", [7])]

    def test_reference_dates(self):
        from epicast.latency import latency_reference_dates
        ref = latency_reference_dates({"cases": 3}, "2022-01-10", sign_shift=1,
                                      time_unit=pd.Timedelta(days=1))
        assert ref == {"cases": pd.Timestamp("2022-01-07")}
        ref = latency_reference_dates({"cases": 3}, 10, sign_shift=-1, time_unit=1)
        assert ref == {"cases": 13}

    def test_extend_lags(self, specs):
        from epicast.config import LatencyMethod
        from epicast.latency import adjust_specs_for_latency
        out = adjust_specs_for_latency(specs, {"cases": 2, "deaths": 4}, LatencyMethod.EXTEND_LAGS)
        lags = {s.columns[0]: sorted(s.lags) for s in out if s.role == "predictor"}
        assert lags == {"cases": [2, 9], "deaths": [4, 11]}
        ahead = [s for s in out if s.role == "outcome"][0]
        assert ahead.aheads == [7]

    def test_extend_ahead(self, specs):
        from epicast.config import LatencyMethod
        from epicast.latency import adjust_specs_for_latency
        out = adjust_specs_for_latency(specs, {"cases": 2, "deaths": 4}, LatencyMethod.EXTEND_AHEAD)
        ahead = [s for s in out if s.role == "outcome"][0]
        assert ahead.aheads == [9]
        assert out[0] == specs[0]

    def test_locf_leaves_specs(self, specs):
        from epicast.latency import adjust_specs_for_latency
        assert adjust_specs_for_latency(specs, {"cases": 2}, "locf") == specs

    def test_locf_fill(self):
        from epicast.latency import locf_fill
        df = pd.DataFrame({
            "geo_value": ["ca", "ca", "ca", "ny"],
            "time_value": [1, 2, 3, 1],
            "cases": [1.0, 2.0, np.nan, 5.0],
        })
        out = locf_fill(df, ["cases"], forecast_date=4)
        assert len(out) == 8
        ca = out[out["geo_value"] == "ca"].set_index("time_value")["cases"]
        assert ca[3] == 2.0
        assert ca[4] == 2.0
        ny = out[out["geo_value"] == "ny"]["cases"].tolist()
        assert ny == [5.0, 5.0, 5.0, 5.0]

    def test_extend_to_date_adds_empty_rows(self):
        from epicast.latency import extend_to_date
        df = pd.DataFrame({
            "geo_value": ["ca", "ca", "ny"],
            "time_value": [1, 2, 3],
            "cases": [1.0, 2.0, 5.0],
        })
        out = extend_to_date(df, 4)
        assert len(out) == 6
        ca = out[out["geo_value"] == "ca"].set_index("time_value")["cases"]
        assert list(ca.index) == [1, 2, 3, 4]
        assert ca[2] == 2.0
        assert ca[[3, 4]].isna().all()

    def test_locf_keeps_interior_gaps(self):
        from epicast.latency import locf_fill
        df = pd.DataFrame({
            "geo_value": ["ca"] * 3,
            "time_value": [1, 2, 3],
            "cases": [1.0, np.nan, 3.0],
        })
        out = locf_fill(df, ["cases"], forecast_date=3)
        assert np.isnan(out.loc[out["time_value"] == 2, "cases"].iloc[0])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
