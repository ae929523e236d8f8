"""lcmsfeatures - LC-MS feature grouping, deconvolution and isotope quantitation.

This library provides Numba-accelerated building blocks for working with
detected LC-MS features across runs: 2-D clustering and cross-run
alignment, charge state deconvolution, and light/heavy isotope-label pair
matching and quantitation.
"""

__version__ = "0.1.0"

# Import main submodules for convenient access
from lcmsfeatures import constants
from lcmsfeatures import mass
from lcmsfeatures import feature
from lcmsfeatures import feature_set
from lcmsfeatures import clustering
from lcmsfeatures import features

from lcmsfeatures.feature import Feature, IdentificationInfo, QuantitationInfo
from lcmsfeatures.feature_set import FeatureSelector, FeatureSet

__all__ = [
    "constants",
    "mass",
    "feature",
    "feature_set",
    "clustering",
    "features",
    "Feature",
    "IdentificationInfo",
    "QuantitationInfo",
    "FeatureSelector",
    "FeatureSet",
]
