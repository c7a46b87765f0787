"""Outcome association for per-image spatial statistics.

Weights images by the reliability of their statistics and tests every
column of an association table against a categorical, continuous or
survival outcome:

    >>> from cellcontext.core.association import fit_weights, fit_outcome_association
    >>> weights = fit_weights(result.table, result.counts)
    >>> results = fit_outcome_association(result.table, outcome, weights=weights)
    >>> top_pairs(results, n=5)
"""

from .weights import fit_weights

from .models import (
    RESULT_COLUMNS,
    outcome_kind,
    fit_outcome_association,
    non_estimable_failures,
    top_pairs,
)

__all__ = [
    "fit_weights",
    "RESULT_COLUMNS",
    "outcome_kind",
    "fit_outcome_association",
    "non_estimable_failures",
    "top_pairs",
]
