"""
Models Manager for coordinating model operations.
"""

import dataclasses
import logging
from typing import Callable, Mapping, Optional, Sequence

from ..core.context import AnalysisContext
from ..core.series import StratumSeries
from .base import FittedModel, ModelInterface, ModelVariant
from .factory import create_connected_adapter

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[str, AnalysisContext], ModelInterface]


class ModelsManager:
    """Central coordinator for fitting variants and choosing "best".

    Uses dependency injection - the adapter factory is passed in via the
    constructor, making the manager easy to test with mock implementations.
    """

    def __init__(self, context: AnalysisContext, adapter_factory: AdapterFactory = create_connected_adapter):
        """Initialize the ModelsManager.

        Args:
            context: Run context shared by every adapter.
            adapter_factory: Returns a connected adapter for a variant name.
        """
        self.context = context
        self.adapter_factory = adapter_factory

    def fit_variant(
        self,
        stratum: StratumSeries,
        variant: str,
        exclude: Optional[Sequence[str]] = None,
    ) -> FittedModel:
        """Fit one variant to one stratum.

        Args:
            stratum: Validated stratum series.
            variant: Variant name ("full", "pca", "time" or "its").
            exclude: Covariates to leave out.

        Returns:
            FittedModel from the variant's adapter.

        Raises:
            ValueError: If ``variant`` is "best" or not registered.
        """
        if ModelVariant(variant) is ModelVariant.BEST:
            raise ValueError("'best' is selected from fitted variants, it cannot be fitted directly")
        model = self.adapter_factory(variant, self.context)
        return model.fit(stratum, exclude=exclude)

    @staticmethod
    def qualifies(variant: str, fitted: Optional[FittedModel]) -> bool:
        """Whether a fit can be promoted to "best".

        ``full`` needs at least one informative covariate, ``pca`` at least one
        component; any other variant qualifies once it has fitted.
        """
        if fitted is None:
            return False
        if variant == ModelVariant.FULL.value:
            return bool(fitted.metadata.get("informative_covariates"))
        if variant == ModelVariant.PCA.value:
            return fitted.metadata.get("n_components", 0) >= 1
        return True

    def select_best(self, fits: Mapping[str, FittedModel]) -> Optional[FittedModel]:
        """Pick the first qualifying fit in ``context.best_precedence``.

        Args:
            fits: Successful fits of one stratum keyed by variant name.

        Returns:
            The chosen fit relabelled as "best" (same draws, ``selected_from`` in
            metadata), or None when nothing qualifies.
        """
        for variant in self.context.best_precedence:
            fitted = fits.get(variant)
            if self.qualifies(variant, fitted):
                logger.info(f"Stratum '{fitted.stratum}': best model is '{variant}'")
                return dataclasses.replace(
                    fitted,
                    variant=ModelVariant.BEST,
                    metadata={**fitted.metadata, "selected_from": variant},
                )
        return None
