"""2-D clustering of features across runs.

This module provides:
- A sorted 2-D range-query index for neighbor lookup
- A generic reference-point bucketing engine with absolute or ppm tolerances
- Feature clustering on (mass or m/z) x (time or scan)
- Cross-run grouping into an aligned peptide array, optionally per charge
"""

from .spatial_index import SpatialBucketIndex

from .clusterer2d import (
    BucketEntry,
    BucketSummary,
    ClusterPoint,
    Clusterer2D,
    DimensionSplitCalculator,
    PpmDimensionSplitCalculator,
    grid_search_tolerances,
)

from .feature_clusterer import (
    ElutionMode,
    FeatureClusterable,
    FeatureClusterer,
    MassMzMode,
)

from .feature_grouper import (
    BucketEvaluationMode,
    ConflictResolver,
    FeatureGrouper,
    PeptideAgreementParams,
    PeptideArrayRow,
    order_cluster_features,
)

__all__ = [
    # Spatial index
    'SpatialBucketIndex',

    # Generic clustering
    'BucketEntry',
    'BucketSummary',
    'ClusterPoint',
    'Clusterer2D',
    'DimensionSplitCalculator',
    'PpmDimensionSplitCalculator',
    'grid_search_tolerances',

    # Feature clustering
    'ElutionMode',
    'FeatureClusterable',
    'FeatureClusterer',
    'MassMzMode',

    # Grouping across runs
    'BucketEvaluationMode',
    'ConflictResolver',
    'FeatureGrouper',
    'PeptideAgreementParams',
    'PeptideArrayRow',
    'order_cluster_features',
]
