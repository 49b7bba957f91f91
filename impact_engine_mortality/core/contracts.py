"""
Data contracts for impact-engine-mortality.

Defines the schema of the long stratum frame handed to the engine. The
ingestion adapter that produced the frame is responsible for column
filtering and date parsing; this module only checks the contract.
"""

from dataclasses import dataclass
from typing import List

import pandas as pd

from .context import AnalysisContext


@dataclass
class Schema:
    """Columns a stratum frame must carry."""

    required: List[str]

    def validate(self, df: pd.DataFrame) -> bool:
        """Check DataFrame has required columns."""
        missing = [col for col in self.required if col not in df.columns]
        if missing:
            raise ValueError(f"Missing required columns: {missing}")
        return True


def stratum_frame_schema(context: AnalysisContext) -> Schema:
    """Schema of the long frame: one row per stratum and timestamp.

    Explicit covariate columns are required; an empty covariate list makes
    every remaining numeric column a candidate, so nothing extra is required.
    """
    required = [context.group_column, context.date_column, context.outcome_column]
    if context.denominator_column:
        required.append(context.denominator_column)
    return Schema(required=required + list(context.covariate_columns))
