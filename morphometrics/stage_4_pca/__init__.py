from morphometrics.stage_4_pca.pca import PCAResult, compute_pca, orient_components, standardize

__all__ = ["PCAResult", "compute_pca", "orient_components", "standardize"]
