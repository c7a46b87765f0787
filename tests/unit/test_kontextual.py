"""Unit tests for the Kontextual statistic."""

import pytest
import numpy as np

from cellcontext.errors import InvalidHierarchy
from cellcontext.core.hierarchy import CellTypeHierarchy
from cellcontext.core.spatial import (
    OTHER_PARENT,
    ImageCells,
    kontextual,
    kontext_curve,
    kontextual_image,
    parent_combinations,
    relabel_parent,
)
from tests.fixtures import parent_strip_image, poisson_image


@pytest.fixture
def strip_cells():
    """Globally dispersed, contextually attracted image."""
    return ImageCells.from_frame(parent_strip_image(seed=11, image_id="strip"))


class TestRelabelParent:
    """Tests for parent relabelling."""

    def test_other_members_collapsed(self):
        """Parent members other than 'to' share one label."""
        labels = np.array(["A", "B", "C", "D"], dtype=object)
        result = relabel_parent(labels, "B", ["B", "C", "D"])
        assert result.tolist() == ["A", "B", OTHER_PARENT, OTHER_PARENT]

    def test_input_unchanged(self):
        """The input labels are not modified."""
        labels = np.array(["B", "C"], dtype=object)
        relabel_parent(labels, "B", ["B", "C"])
        assert labels.tolist() == ["B", "C"]


class TestKontextual:
    """Tests for kontextual()."""

    def test_columns(self, strip_cells):
        """One row per radius with original and kontextual values."""
        result = kontextual(strip_cells, "A", "B", ["B", "C"], radii=[25, 50])
        assert list(result.columns) == ["r", "original", "kontextual"]
        assert result["r"].tolist() == [25.0, 50.0]

    def test_disagreement_with_plain_statistic(self, strip_cells):
        """Dispersed overall, attracted relative to the parent population."""
        result = kontextual(strip_cells, "A", "B", ["B", "C"], radii=50)
        assert result["original"].iloc[0] < 0
        assert result["kontextual"].iloc[0] > 0

    def test_null_near_zero(self):
        """Random labels within the parent give values near zero."""
        df = poisson_image({"A": 200, "B": 100, "C": 900}, seed=12)
        result = kontextual(df, "A", "B", ["B", "C"], radii=50)
        assert abs(result["kontextual"].iloc[0]) < 10

    def test_to_not_in_parent(self, strip_cells):
        """A 'to' type outside the parent is an invalid hierarchy."""
        with pytest.raises(InvalidHierarchy) as exc_info:
            kontextual(strip_cells, "A", "C", ["B"], radii=50)
        assert exc_info.value.test == "A__C"
        assert exc_info.value.image_id == "strip"

    def test_single_parent_string(self, strip_cells):
        """A parent given as a single type name still works."""
        result = kontextual(strip_cells, "A", "B", "B", radii=50)
        # p = 1 and every parent neighbour is a 'to' neighbour
        assert result["kontextual"].iloc[0] == pytest.approx(0.0, abs=1e-9)

    def test_too_few_cells(self):
        """Too few 'to' cells gives NaN, never zero."""
        df = poisson_image({"A": 100, "B": 3, "C": 100}, seed=13)
        result = kontextual(df, "A", "B", ["B", "C"], radii=50, min_cells=5)
        assert result["kontextual"].isna().all()
        assert result["original"].isna().all()

    def test_inhomogeneous(self, strip_cells):
        """The sigma variant keeps the sign of the contextual signal."""
        result = kontextual(strip_cells, "A", "B", ["B", "C"], radii=50, sigma=150.0)
        assert np.isfinite(result["kontextual"]).all()
        assert result["kontextual"].iloc[0] > 0


class TestKontextCurve:
    """Tests for kontext_curve()."""

    def test_without_se(self, strip_cells):
        """Without se the curve equals kontextual()."""
        curve = kontext_curve(strip_cells, "A", "B", ["B", "C"], radii=[25, 50])
        direct = kontextual(strip_cells, "A", "B", ["B", "C"], radii=[25, 50])
        assert curve.equals(direct)

    def test_with_se(self):
        """Permutation spread and envelopes are added."""
        df = poisson_image({"A": 100, "B": 100, "C": 200}, size=500.0, seed=14)
        curve = kontext_curve(df, "A", "B", ["B", "C"], radii=[25, 50], se=True, n_sim=10)
        for name in ("original", "kontextual"):
            assert f"{name}_se" in curve.columns
            assert (curve[f"{name}_se"] > 0).all()
            assert (curve[f"{name}_lower"] <= curve[f"{name}_upper"]).all()

    def test_reproducible(self):
        """The same seed gives the same envelope."""
        df = poisson_image({"A": 60, "B": 60, "C": 120}, size=500.0, seed=15)
        first = kontext_curve(df, "A", "B", ["B", "C"], radii=50, se=True, n_sim=5, seed=1)
        second = kontext_curve(df, "A", "B", ["B", "C"], radii=50, se=True, n_sim=5, seed=1)
        assert first.equals(second)


class TestParentCombinations:
    """Tests for parent_combinations()."""

    def test_triples(self, simple_hierarchy_dict):
        """Every child is tested against every other usable type."""
        hierarchy = CellTypeHierarchy.from_dict(simple_hierarchy_dict)
        combos = parent_combinations(["A", "B", "C"], hierarchy)
        assert combos["test"].tolist() == [
            "A__B__tumour", "A__C__tumour", "B__C__tumour", "C__B__tumour",
        ]
        assert (combos["from"] != combos["to"]).all()
        assert all(t in p for t, p in zip(combos["to"], combos["parent_types"]))

    def test_excluded_types(self):
        """Excluded types never appear in a triple."""
        hierarchy = CellTypeHierarchy.from_dict({"tumour": ["B", "C"], "_excluded": ["A"]})
        combos = parent_combinations(["A", "B", "C"], hierarchy)
        assert "A" not in set(combos["from"]) | set(combos["to"])
        assert len(combos) == 2

    def test_unobserved_children(self, simple_hierarchy_dict):
        """Children absent from the data are not tested."""
        hierarchy = CellTypeHierarchy.from_dict(simple_hierarchy_dict)
        combos = parent_combinations(["A", "B"], hierarchy)
        assert combos["to"].unique().tolist() == ["B"]

    def test_unknown_type(self, simple_hierarchy_dict):
        """A type the hierarchy does not know raises InvalidHierarchy."""
        hierarchy = CellTypeHierarchy.from_dict(simple_hierarchy_dict)
        with pytest.raises(InvalidHierarchy):
            parent_combinations(["A", "B", "C", "D"], hierarchy)


class TestKontextualImage:
    """Tests for kontextual_image()."""

    def test_rows(self, strip_cells, simple_hierarchy_dict):
        """One row per triple and radius with cell counts."""
        hierarchy = CellTypeHierarchy.from_dict(simple_hierarchy_dict)
        combos = parent_combinations(["A", "B", "C"], hierarchy)
        rows, failures = kontextual_image(strip_cells, combos, radii=[25, 50])
        assert failures == []
        assert len(rows) == len(combos) * 2
        first = rows[(rows["from_type"] == "A") & (rows["to_type"] == "B")].iloc[0]
        assert first["n_from"] == 200
        assert first["n_to"] == 100
        assert first["n_parent"] == 1000
        assert (rows["image_id"] == "strip").all()
