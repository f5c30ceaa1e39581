"""Palmer-penguins morphometrics: imputation, model selection, PCA and clustering."""

__version__ = "0.1.0"
