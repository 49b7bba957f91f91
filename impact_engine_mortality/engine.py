"""
Impact Engine - main entry point for mortality impact evaluation.

Runs the covariate screen and every configured model variant for every
stratum, selects the "best" variant and aggregates the impact of each fit.
Fits of different (stratum, variant) pairs are independent and run on the
configured worker pool; a failure in one never aborts the others.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Sequence, Union

import pandas as pd

from .batch import run_tasks
from .core.context import AnalysisContext
from .core.series import SeriesRegistry, StratumSeries
from .impact.aggregator import ImpactSummary
from .models.base import ModelExclusion, ModelVariant
from .models.manager import ModelsManager
from .results import STATUS_EXCLUDED, STATUS_FAILED, STATUS_OK, ImpactResults, VariantResult
from .screening.screener import CovariateScreener, ScreeningResult, rank_screening

logger = logging.getLogger(__name__)

ConfigSource = Union[str, Path, Dict[str, Any], None]


@dataclass(frozen=True, repr=False)
class ScreenTask:
    context: AnalysisContext
    stratum: StratumSeries
    covariate: str

    def __repr__(self) -> str:
        return f"ScreenTask(stratum={self.stratum.name!r}, covariate={self.covariate!r})"


@dataclass(frozen=True, repr=False)
class FitTask:
    context: AnalysisContext
    stratum: StratumSeries
    variant: str
    exclude: tuple = ()

    def __repr__(self) -> str:
        return f"FitTask(stratum={self.stratum.name!r}, variant={self.variant!r}, exclude={list(self.exclude)})"


def screen_task(task: ScreenTask) -> ScreeningResult:
    """Worker entry point: screen one covariate of one stratum."""
    return CovariateScreener(task.context).screen_covariate(task.stratum, task.covariate)


def fit_task(task: FitTask) -> VariantResult:
    """Worker entry point: fit one variant to one stratum and aggregate it.

    Variant exclusions become an "excluded" result here; any other exception
    propagates to the pool's error handler.
    """
    manager = ModelsManager(task.context)
    try:
        fitted = manager.fit_variant(task.stratum, task.variant, exclude=list(task.exclude))
    except ModelExclusion as e:
        logger.warning(f"Stratum '{task.stratum.name}': variant '{task.variant}' excluded ({e})")
        return VariantResult(task.stratum.name, task.variant, STATUS_EXCLUDED, reason=str(e))

    return VariantResult(
        task.stratum.name,
        task.variant,
        STATUS_OK,
        fitted=fitted,
        impact=ImpactSummary.from_fitted(fitted, task.context),
    )


def _screening_failed(task: ScreenTask, exc: BaseException) -> ScreeningResult:
    return ScreeningResult.excluded(task.stratum.name, task.covariate, f"screening failed: {exc}")


def _fit_failed(task: FitTask, exc: BaseException) -> VariantResult:
    return VariantResult(task.stratum.name, task.variant, STATUS_FAILED, reason=str(exc))


def _run(func, tasks: Sequence, context: AnalysisContext, on_error) -> List:
    return run_tasks(func, tasks, max_workers=context.max_workers, executor=context.executor, on_error=on_error)


def evaluate_impact(data: pd.DataFrame, config: ConfigSource = None) -> ImpactResults:
    """Evaluate the intervention's impact on every stratum in ``data``.

    Args:
        data: Long-format DataFrame, one row per stratum and timestamp.
        config: YAML/JSON config path, config dict, or None for defaults.
            Merged over the packaged defaults and validated.

    Returns:
        ImpactResults: Per-(stratum, variant) fits and impact summaries,
            covariate screening tables and optional sensitivity tables.

    Raises:
        ConfigValidationError: If the configuration is invalid.
        MalformedInputError: If ``data`` violates the series contract.
    """
    context = AnalysisContext.from_source(config)
    registry = SeriesRegistry.from_frame(data, context)
    results = ImpactResults(context=context)

    logger.info(
        f"Evaluating impact of intervention on {context.intervention_date.date()} "
        f"for {len(registry)} strata, models {list(context.models)}"
    )

    results.screening = _screen(registry, context)
    results.variants = _fit_variants(registry, context)

    manager = ModelsManager(context)
    for stratum in registry.strata:
        results.variants[stratum][ModelVariant.BEST.value] = _select_best(manager, stratum, results.variants[stratum])

    if context.sensitivity:
        results.sensitivity = _sensitivity(registry, context, results)

    logger.info("Impact evaluation complete")
    return results


def _screen(registry: SeriesRegistry, context: AnalysisContext) -> Dict[str, pd.DataFrame]:
    tasks = [ScreenTask(context, stratum, name) for stratum in registry for name in stratum.covariate_names]
    screened = _run(screen_task, tasks, context, _screening_failed)

    by_stratum: Dict[str, List[ScreeningResult]] = defaultdict(list)
    for result in screened:
        by_stratum[result.stratum].append(result)
    return {name: rank_screening(by_stratum[name]) for name in registry.strata}


def _fit_variants(registry: SeriesRegistry, context: AnalysisContext) -> Dict[str, Dict[str, VariantResult]]:
    tasks = [FitTask(context, stratum, variant) for stratum in registry for variant in context.models]
    fitted = _run(fit_task, tasks, context, _fit_failed)

    variants: Dict[str, Dict[str, VariantResult]] = {name: {} for name in registry.strata}
    for result in fitted:
        variants[result.stratum][result.variant] = result
        if result.status == STATUS_FAILED:
            logger.error(f"Stratum '{result.stratum}': variant '{result.variant}' failed ({result.reason})")
    return variants


def _select_best(manager: ModelsManager, stratum: str, variants: Dict[str, VariantResult]) -> VariantResult:
    fits = {name: result.fitted for name, result in variants.items() if result.ok}
    best = manager.select_best(fits)
    if best is None:
        reason = f"no variant in {list(manager.context.best_precedence)} qualified"
        logger.warning(f"Stratum '{stratum}': {reason}")
        return VariantResult(stratum, ModelVariant.BEST.value, STATUS_EXCLUDED, reason=reason)

    source = variants[best.metadata["selected_from"]]
    return VariantResult(stratum, ModelVariant.BEST.value, STATUS_OK, fitted=best, impact=source.impact)


def _sensitivity(
    registry: SeriesRegistry, context: AnalysisContext, results: ImpactResults
) -> Dict[str, pd.DataFrame]:
    """Refit "full" without its strongest covariates, one more each time."""
    tasks = []
    for stratum in registry:
        full = results.variants[stratum.name].get(ModelVariant.FULL.value)
        if full is None or not full.ok or not full.fitted.metadata.get("informative_covariates"):
            continue
        retained = full.fitted.metadata["retained_covariates"]
        ranked = full.fitted.coefficients.loc[retained, "median"].abs().sort_values(ascending=False, kind="mergesort")
        top = list(ranked.index)
        for n_drop in range(1, min(context.sensitivity_drop, len(top)) + 1):
            tasks.append(FitTask(context, stratum, ModelVariant.FULL.value, exclude=tuple(top[:n_drop])))

    if not tasks:
        return {}

    logger.info(f"Running {len(tasks)} sensitivity refits")
    refits = _run(fit_task, tasks, context, _fit_failed)

    rows: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for task, result in zip(tasks, refits):
        row = {
            "n_dropped": len(task.exclude),
            "dropped": ", ".join(task.exclude),
            "status": result.status,
            "rate_ratio": float("nan"),
            "lower": float("nan"),
            "upper": float("nan"),
            "informative_covariates": None,
            "reason": result.reason,
        }
        if result.ok:
            evaluation = result.impact.evaluation
            row.update(
                rate_ratio=evaluation["rate_ratio"],
                lower=evaluation["lower"],
                upper=evaluation["upper"],
                informative_covariates=", ".join(result.fitted.metadata["informative_covariates"]),
            )
        rows[task.stratum.name].append(row)
    return {name: pd.DataFrame(table) for name, table in rows.items()}
