from morphometrics.stage_2_preparation.group_imputer import (
    GroupImputer,
    impute_categorical,
    impute_numeric,
)
from morphometrics.stage_2_preparation.feature_construction import derive_composite, prepare

__all__ = [
    "GroupImputer",
    "impute_numeric",
    "impute_categorical",
    "derive_composite",
    "prepare",
]
