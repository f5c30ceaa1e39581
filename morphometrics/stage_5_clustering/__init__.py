from morphometrics.stage_5_clustering.clustering import (
    ClusterResult,
    SilhouetteResult,
    adjusted_rand_index,
    contingency_table,
    distance_matrix,
    elbow_curve,
    hierarchical_cluster,
    kmeans,
    match_clusters_to_labels,
    silhouette_width,
)

__all__ = [
    "ClusterResult",
    "SilhouetteResult",
    "adjusted_rand_index",
    "contingency_table",
    "distance_matrix",
    "elbow_curve",
    "hierarchical_cluster",
    "kmeans",
    "match_clusters_to_labels",
    "silhouette_width",
]
