"""Unit tests for the spatial context engine."""

import pytest
import numpy as np
import pandas as pd

from cellcontext.core.spatial import (
    ContextEngine,
    ContextResult,
    SpatialConfig,
    build_association_table,
)
from tests.fixtures import cohort, parent_strip_image, poisson_image


def _config(**point_pattern) -> SpatialConfig:
    data = {"point_pattern": {"radii": [50]}}
    data["point_pattern"].update(point_pattern)
    return SpatialConfig.from_dict(data)


class TestContextResult:
    """Tests for ContextResult dataclass."""

    def test_default_values(self):
        """Test default result values."""
        result = ContextResult()
        assert result.success is True
        assert result.n_images == 0
        assert result.weights is None
        assert result.outcome_results is None
        assert result.failures == []
        assert list(result.failures_frame.columns) == ["kind", "image_id", "test", "message"]

    def test_summary_dict(self, small_cells):
        """Summary counts tests and failures."""
        result = ContextEngine(_config()).execute(small_cells)
        summary = result.summary_dict()
        assert summary["n_images"] == 2
        assert summary["n_tests"] == 9
        assert summary["n_contextual_tests"] == 0
        assert summary["radii"] == [50.0]


class TestExecute:
    """Tests for ContextEngine.execute()."""

    def test_all_pairs_by_default(self, small_cells):
        """Every ordered pair, self pairs included."""
        result = ContextEngine(_config()).execute(small_cells)
        assert result.table.columns.tolist() == [
            "A__A", "A__B", "A__C", "B__A", "B__B", "B__C", "C__A", "C__B", "C__C",
        ]
        assert result.table.index.tolist() == ["s1", "s2"]

    def test_pairs_as_strings_or_tuples(self, small_cells):
        """Pairs may be given as tuples or 'from__to' names."""
        engine = ContextEngine(_config())
        first = engine.execute(small_cells, pairs=[("A", "B")]).table
        second = engine.execute(small_cells, pairs=["A__B"]).table
        pd.testing.assert_frame_equal(first, second)
        assert first.columns.tolist() == ["A__B"]

    def test_bad_pair_name(self, small_cells):
        """A malformed pair name raises ValueError."""
        with pytest.raises(ValueError):
            ContextEngine(_config()).execute(small_cells, pairs=["A-B"])

    def test_missing_columns(self, small_cells):
        """Missing required columns raise before any work."""
        with pytest.raises(ValueError, match="missing required columns"):
            ContextEngine(_config()).execute(small_cells.drop(columns=["x"]))

    def test_radii_override(self, small_cells):
        """Radii passed to execute take precedence."""
        result = ContextEngine(_config()).execute(small_cells, pairs=[("A", "B")], radii=[20, 40])
        assert sorted(result.pairwise["r"].unique()) == [20.0, 40.0]
        assert result.radii == [20.0, 40.0]

    def test_missing_type_is_nan(self):
        """An image without a type gives NaN for its pairs, never zero."""
        cells = cohort([
            poisson_image({"A": 50, "B": 50}, seed=1, image_id="with_b"),
            poisson_image({"A": 50}, seed=2, image_id="without_b"),
        ])
        result = ContextEngine(_config()).execute(cells, pairs=[("A", "B")])
        assert np.isfinite(result.table.loc["with_b", "A__B"])
        assert np.isnan(result.table.loc["without_b", "A__B"])
        assert result.counts.loc["without_b", "A__B"] == 0

    def test_failed_image_isolated(self, small_cells):
        """A malformed image is recorded and the others still run."""
        bad = poisson_image({"A": 30, "B": 30}, seed=9, image_id="bad")
        bad.loc[0, "x"] = np.nan
        cells = pd.concat([small_cells, bad], ignore_index=True)

        result = ContextEngine(_config()).execute(cells, pairs=[("A", "B")])
        assert result.success
        assert result.n_images == 3
        assert result.n_images_failed == 1
        assert result.table.index.tolist() == ["bad", "s1", "s2"]
        assert np.isnan(result.table.loc["bad", "A__B"])
        assert np.isfinite(result.table.loc["s1", "A__B"])

        failures = result.failures_frame
        assert failures["kind"].tolist() == ["input_data"]
        assert failures["image_id"].tolist() == ["bad"]

    def test_duplicate_coordinates_recorded(self, small_cells):
        """An image with two cells at one position is reported, not analysed."""
        dup = poisson_image({"A": 30, "B": 30}, seed=9, image_id="dup")
        dup.loc[1, ["x", "y"]] = dup.loc[0, ["x", "y"]].to_numpy()
        cells = pd.concat([small_cells, dup], ignore_index=True)

        result = ContextEngine(_config()).execute(cells, pairs=[("A", "B")])
        failures = result.failures_frame
        assert failures["kind"].tolist() == ["input_data"]
        assert failures["image_id"].tolist() == ["dup"]
        assert np.isnan(result.table.loc["dup", "A__B"])
        assert np.isfinite(result.table.loc["s1", "A__B"])

    def test_integer_labels(self):
        """Integer cell types give finite statistics for their string pairs."""
        cells = poisson_image({"A": 100, "B": 100}, seed=3, image_id="img")
        cells["cell_type"] = cells["cell_type"].map({"A": 1, "B": 2})
        result = ContextEngine(_config()).execute(cells, pairs=[("1", "2")])
        assert result.table.columns.tolist() == ["1__2"]
        assert np.isfinite(result.table.loc["img", "1__2"])
        assert result.counts.loc["img", "1__2"] == 100

    def test_all_images_failed(self):
        """The run reports failure when no image could be analysed."""
        bad = poisson_image({"A": 10, "B": 10}, seed=9, image_id="bad")
        bad.loc[1, "cell_id"] = bad.loc[0, "cell_id"]
        result = ContextEngine(_config()).execute(bad, pairs=[("A", "B")])
        assert not result.success

    def test_subjects_collected(self, small_cells):
        """Subject ids of the cell table are kept per image."""
        cells = small_cells.copy()
        cells["subject_id"] = cells["image_id"].map({"s1": "p1", "s2": "p2"})
        result = ContextEngine(_config()).execute(cells, pairs=[("A", "B")])
        assert result.subjects.to_dict() == {"s1": "p1", "s2": "p2"}

    def test_idempotent(self, small_cells):
        """Two runs give byte-identical tables."""
        first = build_association_table(small_cells, config=_config())
        second = build_association_table(small_cells, config=_config())
        assert first.to_csv() == second.to_csv()

    def test_input_order_irrelevant(self, small_cells):
        """Shuffling the rows does not change the table."""
        shuffled = small_cells.sample(frac=1.0, random_state=1)
        first = build_association_table(small_cells, config=_config())
        second = build_association_table(shuffled, config=_config())
        pd.testing.assert_frame_equal(first, second, check_exact=False, rtol=1e-10)

    def test_parallel_matches_sequential(self, small_cells):
        """joblib workers give the same table as the sequential loop."""
        sequential = ContextEngine(_config()).execute(small_cells).table
        config = _config()
        config.parallel.n_jobs = 2
        parallel = ContextEngine(config).execute(small_cells).table
        pd.testing.assert_frame_equal(sequential, parallel)


class TestContextualExecution:
    """Tests for hierarchy-driven contextual tests."""

    def test_contextual_columns(self, simple_hierarchy_dict):
        """Triples appear as from__to__parent columns next to plain pairs."""
        cells = parent_strip_image(seed=11, image_id="strip")
        result = ContextEngine(_config()).execute(
            cells, pairs=[("A", "B")], hierarchy=simple_hierarchy_dict
        )
        assert "A__B" in result.table.columns
        assert "A__B__tumour" in result.table.columns
        assert result.table.loc["strip", "A__B"] < 0
        assert result.table.loc["strip", "A__B__tumour"] > 0

        summary = result.kontextual_table.set_index("test").loc["A__B__tumour"]
        assert summary["original"] < 0 < summary["kontextual"]

    def test_contextual_only(self, simple_hierarchy_dict):
        """contextual_only skips the plain pairs."""
        cells = parent_strip_image(seed=11, image_id="strip")
        result = ContextEngine(_config()).execute(
            cells, hierarchy=simple_hierarchy_dict, contextual_only=True
        )
        assert all(c.count("__") == 2 for c in result.table.columns)

    def test_contextual_only_needs_hierarchy(self, small_cells):
        """contextual_only without a hierarchy raises ValueError."""
        with pytest.raises(ValueError):
            ContextEngine(_config()).execute(small_cells, contextual_only=True)

    def test_unmapped_type_recorded(self):
        """Types unknown to the hierarchy are reported and skipped."""
        cells = parent_strip_image(seed=11, image_id="strip")
        cells.loc[cells.index[:10], "cell_type"] = "D"
        result = ContextEngine(_config()).execute(
            cells, pairs=[("A", "B")], hierarchy={"tumour": ["B", "C"], "_unassigned": ["A"]}
        )
        failures = result.failures_frame
        assert "invalid_hierarchy" in failures["kind"].tolist()
        assert not any("D" in c.split("__") for c in result.table.columns if c.count("__") == 2)
        assert result.success


class TestEndToEnd:
    """Three scenarios from dispersed to localised."""

    def test_ranking(self, three_image_cells):
        """Localised > random > dispersed at r = 50."""
        result = ContextEngine(_config()).execute(three_image_cells, pairs=[("A", "B")])
        column = result.table["A__B"]
        assert column["img1"] < 0
        assert abs(column["img3"]) < 15
        assert column["img2"] > 200
        assert column["img2"] > column["img3"] > column["img1"]

    def test_three_image_association(self, three_image_cells):
        """The localised image alone labelled 1 gives a positive, significant A__B."""
        engine = ContextEngine(_config())
        result = engine.execute(three_image_cells, pairs=[("A", "B")])
        outcome = pd.Series({"img1": 0, "img2": 1, "img3": 0}, name="response")
        results = engine.associate(result, outcome)

        top = results.iloc[0]
        assert top["test"] == "A__B"
        assert top["estimable"]
        assert top["n_obs"] == 3
        assert top["coefficient"] > 0
        assert top["p_value"] < 0.05

    def test_association(self, replicated_cells, replicated_outcome):
        """Localised images differ from the rest."""
        engine = ContextEngine(_config())
        result = engine.execute(replicated_cells, pairs=[("A", "B")])
        results = engine.associate(result, replicated_outcome)

        top = results.iloc[0]
        assert top["test"] == "A__B"
        assert top["coefficient"] > 0
        assert top["p_value"] < 0.05
        assert result.weights is not None
        assert result.outcome_results is results

    def test_association_without_weights(self, replicated_cells, replicated_outcome):
        """Weights can be switched off."""
        config = _config()
        config.weights.enabled = False
        engine = ContextEngine(config)
        result = engine.execute(replicated_cells, pairs=[("A", "B")])
        engine.associate(result, replicated_outcome)
        assert result.weights is None
        assert result.outcome_results.iloc[0]["estimable"]

    def test_use_subjects(self, replicated_cells, replicated_outcome):
        """Subject ids from the cell table switch to mixed models."""
        cells = replicated_cells.copy()
        cells["subject_id"] = cells["image_id"].str.split("_").str[-1]
        engine = ContextEngine(_config())
        result = engine.execute(cells, pairs=[("A", "B")])
        results = engine.associate(result, replicated_outcome, use_subjects=True)
        assert set(results["kind"]) == {"mixed"}

    def test_use_subjects_without_ids(self, small_cells):
        """use_subjects needs subject ids in the cell table."""
        engine = ContextEngine(_config())
        result = engine.execute(small_cells, pairs=[("A", "B")])
        outcome = pd.Series([0.0, 1.0], index=["s1", "s2"])
        with pytest.raises(ValueError):
            engine.associate(result, outcome, use_subjects=True)
