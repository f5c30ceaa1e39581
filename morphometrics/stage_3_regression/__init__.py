from morphometrics.stage_3_regression.model_selection import (
    FittedModel,
    ModelComparison,
    build_design_matrix,
    compare_models,
    fit_linear_model,
    fit_models,
    select_model,
)

__all__ = [
    "FittedModel",
    "ModelComparison",
    "build_design_matrix",
    "compare_models",
    "fit_linear_model",
    "fit_models",
    "select_model",
]
