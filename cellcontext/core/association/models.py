"""Association of per-image spatial statistics with an outcome.

Every column of the association table is tested on its own, using only
the images where that column has a value:

- categorical outcome: weighted linear model ``value ~ group`` (first or
  configured level is the reference)
- continuous outcome: weighted linear model ``value ~ outcome``
- survival outcome (time, event): Cox proportional hazards on ``value``
- with ``subject`` given, linear models become mixed models with a subject
  random intercept and Cox models use cluster-robust variance

Columns that cannot be fitted are reported with ``estimable=False`` and a
reason instead of stopping the batch.
"""

from typing import Any, Dict, List, Optional, Tuple, Union
import logging

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from lifelines import CoxPHFitter

from ...errors import ModelNonEstimable, UnitFailure
from ...utils.stats import apply_fdr_correction
from .config import ModelConfig

logger = logging.getLogger(__name__)

RESULT_COLUMNS = [
    "test", "kind", "term", "coefficient", "se", "statistic", "p_value",
    "hazard_ratio", "n_obs", "estimable", "reason", "fdr",
]

Outcome = Union[pd.Series, pd.DataFrame]


def outcome_kind(outcome: Outcome) -> str:
    """"survival", "categorical" or "continuous"."""
    if isinstance(outcome, pd.DataFrame):
        missing = [c for c in ("time", "event") if c not in outcome.columns]
        if missing:
            raise ValueError(f"Survival outcome needs 'time' and 'event' columns, missing {missing}")
        return "survival"
    if pd.api.types.is_bool_dtype(outcome) or not pd.api.types.is_numeric_dtype(outcome):
        return "categorical"
    return "continuous"


def _align(obj: Optional[Union[pd.Series, pd.DataFrame]], index: pd.Index):
    if obj is None:
        return None
    obj = obj.copy()
    obj.index = obj.index.astype(str)
    if obj.index.duplicated().any():
        raise ValueError("Outcome, subject and covariate indices must be unique image ids")
    return obj.reindex(index)


def _levels(outcome: pd.Series, reference: Optional[str]) -> List[str]:
    """Outcome levels with the reference first."""
    if isinstance(outcome.dtype, pd.CategoricalDtype):
        levels = [str(c) for c in outcome.cat.categories]
    else:
        levels = sorted({str(v) for v in outcome.dropna()})
    if reference is not None:
        reference = str(reference)
        if reference not in levels:
            raise ValueError(f"Reference level '{reference}' not among outcome levels {levels}")
        levels = [reference] + [lvl for lvl in levels if lvl != reference]
    return levels


def _covariate_frame(covariates: Optional[pd.DataFrame]) -> Optional[pd.DataFrame]:
    """Numeric covariate design with safe column names cov_1, cov_2, ..."""
    if covariates is None or covariates.shape[1] == 0:
        return None
    design = pd.get_dummies(covariates, drop_first=True, dtype=float)
    design.columns = [f"cov_{k + 1}" for k in range(design.shape[1])]
    return design


def _check_common(data: pd.DataFrame, min_observations: int, n_params: int) -> None:
    n = len(data)
    if n < min_observations:
        raise ModelNonEstimable(f"too few observations ({n} < {min_observations})")
    if n <= n_params:
        raise ModelNonEstimable(f"too few observations ({n}) for {n_params} parameters")
    if np.ptp(data["value"].to_numpy(dtype=float)) == 0:
        raise ModelNonEstimable("no variation in statistic")


def _fit_linear(
    data: pd.DataFrame,
    terms: List[str],
    effect_terms: List[str],
    weighted: bool,
    mixed: bool,
) -> Dict[str, Any]:
    formula = "value ~ " + " + ".join(terms)
    if mixed:
        fit = smf.mixedlm(formula, data, groups=data["subject"]).fit(method="lbfgs")
    elif weighted:
        fit = smf.wls(formula, data, weights=data["weight"]).fit()
    else:
        fit = smf.ols(formula, data).fit()

    term = effect_terms[0]
    p_value = float(fit.pvalues[term])
    if len(effect_terms) > 1:
        if mixed:
            # Restriction rows over all parameters, variance terms included
            names = list(fit.params.index)
            restriction = np.zeros((len(effect_terms), len(names)))
            for row, t in enumerate(effect_terms):
                restriction[row, names.index(t)] = 1.0
            joint = fit.wald_test(restriction, scalar=True)
        else:
            joint = fit.f_test(", ".join(f"{t} = 0" for t in effect_terms))
        p_value = float(np.squeeze(joint.pvalue))

    return {
        "coefficient": float(fit.params[term]),
        "se": float(fit.bse[term]),
        "statistic": float(fit.tvalues[term]),
        "p_value": p_value,
        "hazard_ratio": np.nan,
    }


def _fit_cox(data: pd.DataFrame, weighted: bool, clustered: bool) -> Dict[str, Any]:
    if data["event"].sum() == 0:
        raise ModelNonEstimable("no events")

    kwargs: Dict[str, Any] = {"duration_col": "time", "event_col": "event"}
    columns = ["value", "time", "event"] + [c for c in data.columns if c.startswith("cov_")]
    if weighted:
        columns.append("weight")
        kwargs["weights_col"] = "weight"
        kwargs["robust"] = True
    if clustered:
        columns.append("subject")
        kwargs["cluster_col"] = "subject"

    cph = CoxPHFitter()
    cph.fit(data[columns], **kwargs)
    row = cph.summary.loc["value"]
    return {
        "coefficient": float(row["coef"]),
        "se": float(row["se(coef)"]),
        "statistic": float(row["z"]),
        "p_value": float(row["p"]),
        "hazard_ratio": float(row["exp(coef)"]),
    }


def _fit_column(
    values: pd.Series,
    outcome: Outcome,
    kind: str,
    levels: List[str],
    weights: Optional[pd.Series],
    subject: Optional[pd.Series],
    covariates: Optional[pd.DataFrame],
    config: ModelConfig,
) -> Tuple[Dict[str, Any], int]:
    """Fit one column. Raises ModelNonEstimable when it cannot be fitted."""
    data = pd.DataFrame({"value": values.astype(float)})
    if kind == "survival":
        data["time"] = pd.to_numeric(outcome["time"], errors="coerce")
        data["event"] = pd.to_numeric(outcome["event"], errors="coerce")
    elif kind == "categorical":
        data["group"] = outcome.astype(object).map(lambda v: np.nan if pd.isna(v) else str(v))
    else:
        data["outcome"] = outcome.astype(float)
    if weights is not None:
        data["weight"] = weights.astype(float)
    if subject is not None:
        data["subject"] = subject
    if covariates is not None:
        data = data.join(covariates)

    # Pairwise-complete: drop incomplete rows for this column only
    data = data.replace([np.inf, -np.inf], np.nan).dropna()
    if weights is not None:
        data = data[data["weight"] > 0]
    data = data.copy()
    n_obs = len(data)
    cov_terms = [c for c in data.columns if c.startswith("cov_")]

    try:
        if n_obs < config.min_observations:
            raise ModelNonEstimable(
                f"too few observations ({n_obs} < {config.min_observations})"
            )
        if kind == "survival":
            _check_common(data, config.min_observations, 1 + len(cov_terms))
            estimate = _fit_cox(data, weights is not None, subject is not None)
            return estimate, n_obs

        if kind == "categorical":
            present = [lvl for lvl in levels if lvl in set(data["group"])]
            if len(present) < 2 or present[0] != levels[0]:
                raise ModelNonEstimable("fewer than two outcome groups with data")
            effect_terms = []
            for k, level in enumerate(present[1:], start=1):
                data[f"grp_{k}"] = (data["group"] == level).astype(float)
                effect_terms.append(f"grp_{k}")
        else:
            if np.ptp(data["outcome"].to_numpy(dtype=float)) == 0:
                raise ModelNonEstimable("no variation in outcome")
            effect_terms = ["outcome"]

        _check_common(data, config.min_observations, 1 + len(effect_terms) + len(cov_terms))
        estimate = _fit_linear(
            data,
            effect_terms + cov_terms,
            effect_terms,
            weighted=weights is not None,
            mixed=subject is not None,
        )
        if kind == "categorical":
            estimate["level"] = present[1]
    except ModelNonEstimable:
        raise
    except Exception as e:
        raise ModelNonEstimable(f"fit failed: {e}") from e

    if not (np.isfinite(estimate["coefficient"]) and np.isfinite(estimate["p_value"])):
        raise ModelNonEstimable("non-finite estimate")
    return estimate, n_obs


def fit_outcome_association(
    table: pd.DataFrame,
    outcome: Outcome,
    weights: Optional[pd.DataFrame] = None,
    subject: Optional[pd.Series] = None,
    covariates: Optional[pd.DataFrame] = None,
    config: Optional[ModelConfig] = None,
) -> pd.DataFrame:
    """Test every column of an association table against an outcome.

    Parameters
    ----------
    table : pd.DataFrame
        Images x tests statistic table
    outcome : pd.Series or pd.DataFrame
        Series keyed by image id (categorical or numeric), or a frame with
        ``time`` and ``event`` columns for survival
    weights : pd.DataFrame, optional
        Image weights aligned with ``table`` (see ``fit_weights``)
    subject : pd.Series, optional
        Subject id per image; switches to repeated-measures models
    covariates : pd.DataFrame, optional
        Extra per-image covariates
    config : ModelConfig, optional
        Reference level, minimum observations and correction method

    Returns
    -------
    pd.DataFrame
        One row per test, sorted by p-value then adjusted p-value
    """
    config = config or ModelConfig()
    index = table.index.astype(str)
    table = table.copy()
    table.index = index

    kind = outcome_kind(outcome)
    outcome = _align(outcome, index)
    subject = _align(subject, index)
    covariates = _covariate_frame(_align(covariates, index))
    if weights is not None:
        weights = weights.copy()
        weights.index = weights.index.astype(str)
        weights = weights.reindex(index=index, columns=table.columns)

    levels: List[str] = []
    if kind == "categorical":
        levels = _levels(outcome, config.reference)
    model_kind = {"survival": "cox"}.get(kind, "linear")
    if subject is not None:
        model_kind = "cox_clustered" if kind == "survival" else "mixed"
        if weights is not None and kind != "survival":
            logger.warning("Mixed models do not support image weights; fitting unweighted")
            weights = None

    if kind == "categorical":
        term = f"{outcome.name or 'outcome'}[T.{levels[1]}]" if len(levels) > 1 else None
    elif kind == "continuous":
        term = str(outcome.name or "outcome")
    else:
        term = "value"

    logger.info(
        f"Fitting {model_kind} models for {table.shape[1]} tests "
        f"({kind} outcome, {len(index)} images)"
    )

    rows = []
    for column in table.columns:
        row: Dict[str, Any] = {
            "test": column, "kind": model_kind, "term": term,
            "coefficient": np.nan, "se": np.nan, "statistic": np.nan,
            "p_value": np.nan, "hazard_ratio": np.nan, "n_obs": 0,
            "estimable": False, "reason": "",
        }
        try:
            estimate, n_obs = _fit_column(
                table[column],
                outcome,
                kind,
                levels,
                None if weights is None else weights[column],
                subject,
                covariates,
                config,
            )
            level = estimate.pop("level", None)
            if level is not None:
                row["term"] = f"{outcome.name or 'outcome'}[T.{level}]"
            row.update(estimate)
            row["n_obs"] = n_obs
            row["estimable"] = True
        except ModelNonEstimable as e:
            row["reason"] = e.message
            row["n_obs"] = int(table[column].notna().sum())
            logger.debug(f"{column}: non-estimable ({e.message})")
        rows.append(row)

    results = pd.DataFrame(rows, columns=RESULT_COLUMNS[:-1])
    results["fdr"] = apply_fdr_correction(results["p_value"].to_numpy(), method=config.correction)
    results = results.sort_values(
        ["p_value", "fdr", "test"], na_position="last", kind="mergesort"
    ).reset_index(drop=True)

    n_estimable = int(results["estimable"].sum())
    logger.info(f"Estimable: {n_estimable}/{len(results)} tests")
    return results


def non_estimable_failures(results: pd.DataFrame) -> List[UnitFailure]:
    """UnitFailure records for the rows that could not be fitted."""
    failed = results[~results["estimable"].astype(bool)]
    return [
        UnitFailure(kind=ModelNonEstimable.kind, test=row.test, message=row.reason)
        for row in failed.itertuples(index=False)
    ]


def top_pairs(
    results: pd.DataFrame,
    n: int = 10,
    adjusted: bool = False,
    alpha: Optional[float] = None,
) -> pd.DataFrame:
    """Most significant tests.

    Parameters
    ----------
    results : pd.DataFrame
        Output of ``fit_outcome_association``
    n : int
        Number of rows to return
    adjusted : bool
        Rank and filter on the adjusted p-value instead of the raw one
    alpha : float, optional
        Keep only rows at or below this threshold
    """
    column = "fdr" if adjusted else "p_value"
    ranked = results.sort_values([column, "test"], na_position="last", kind="mergesort")
    if alpha is not None:
        ranked = ranked[ranked[column] <= alpha]
    return ranked.head(n).reset_index(drop=True)
