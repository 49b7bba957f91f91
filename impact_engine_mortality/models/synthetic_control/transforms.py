"""Transforms specific to the synthetic-control ("pca") variant.

Control series are smoothed to their STL trend and compressed into a few
principal components, which then act as synthetic controls.
"""

from dataclasses import dataclass
from typing import List

import numpy as np
import pandas as pd
from sklearn.decomposition import PCA
from sklearn.preprocessing import StandardScaler
from statsmodels.tsa.seasonal import STL

from ...core.context import AnalysisContext


@dataclass(frozen=True)
class ReducedCovariates:
    """Principal-component synthetic controls.

    Attributes:
        components: Component scores over the full range (PC1, PC2, ...).
        loadings: Loadings of each retained component on each covariate trend.
        explained_variance_ratio: Variance share of each retained component.
        trends: STL trend of each covariate over the full range.
    """

    components: pd.DataFrame
    loadings: pd.DataFrame
    explained_variance_ratio: np.ndarray
    trends: pd.DataFrame

    @property
    def n_components(self) -> int:
        return self.components.shape[1]

    @property
    def component_names(self) -> List[str]:
        return list(self.components.columns)


def decompose_trends(covariates: pd.DataFrame, n_seasons: int, robust: bool = True) -> pd.DataFrame:
    """Replace each covariate by its STL trend component.

    Args:
        covariates: Complete covariate frame on a regular index.
        n_seasons: Seasonal period of the series.
        robust: Use the robust (outlier-downweighting) STL fit.

    Returns:
        DataFrame: Trend of each covariate, same shape as the input.
    """
    if n_seasons < 2:
        return covariates.astype(float).copy()

    trends = {}
    for name in covariates.columns:
        series = covariates[name].astype(float)
        result = STL(series.to_numpy(), period=n_seasons, robust=robust).fit()
        trends[name] = np.asarray(result.trend)
    return pd.DataFrame(trends, index=covariates.index)


def reduce_covariates(trends: pd.DataFrame, pre_mask: np.ndarray, context: AnalysisContext) -> ReducedCovariates:
    """Compress covariate trends into leading principal components.

    Scaling and PCA are fitted on the pre-intervention rows only; scores are
    projected over the full range. The smallest number of leading components
    reaching ``pca_variance_threshold`` is kept, capped at
    ``pca_max_components``. Each component is oriented so that its
    largest-magnitude loading is positive.

    Raises:
        ValueError: If the trends carry no variance over the pre-period.
    """
    pre_trends = trends.loc[pre_mask].to_numpy(dtype=float)
    scaler = StandardScaler().fit(pre_trends)
    scaled_pre = scaler.transform(pre_trends)

    n_max = min(scaled_pre.shape)
    pca = PCA(n_components=n_max).fit(scaled_pre)
    if not np.isfinite(pca.explained_variance_ratio_).all() or pca.explained_variance_.sum() <= 0:
        raise ValueError("Covariate trends have no variance over the pre-intervention period")

    cumulative = np.cumsum(pca.explained_variance_ratio_)
    n_keep = int(np.searchsorted(cumulative, context.pca_variance_threshold - 1e-12) + 1)
    n_keep = max(1, min(n_keep, context.pca_max_components, n_max))

    loadings = pca.components_[:n_keep]
    signs = np.sign(loadings[np.arange(n_keep), np.abs(loadings).argmax(axis=1)])
    signs[signs == 0] = 1.0
    loadings = loadings * signs[:, None]

    names = [f"PC{i + 1}" for i in range(n_keep)]
    scores = pca.transform(scaler.transform(trends.to_numpy(dtype=float)))[:, :n_keep] * signs

    return ReducedCovariates(
        components=pd.DataFrame(scores, index=trends.index, columns=names),
        loadings=pd.DataFrame(loadings, index=names, columns=trends.columns),
        explained_variance_ratio=pca.explained_variance_ratio_[:n_keep].copy(),
        trends=trends,
    )
