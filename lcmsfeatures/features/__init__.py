"""Feature consolidation and isotope-label quantitation.

This module provides:
- Charge state deconvolution (grouping z=2, z=3, z=4 of same peptide)
- Tolerance optimization for deconvolution
- Isotopic label definitions and a registry of common labels
- Light/heavy isotope pair matching and ratio quantitation
"""

from .charge_consolidation import (
    DeconvolutionParams,
    Deconvoluter,
    deconvolute_features,
)

from .isotope_labels import (
    DEFAULT_LABEL_REGISTRY,
    ICAT_LABEL,
    IsotopicLabel,
    LabelRegistry,
)

from .isotope_pairs import (
    IntensityType,
    IsotopePairMatcher,
    Pair,
    PairMatchingParams,
    analyze,
    analyze1,
    quantitate,
)

__all__ = [
    # Charge consolidation
    'DeconvolutionParams',
    'Deconvoluter',
    'deconvolute_features',

    # Isotopic labels
    'DEFAULT_LABEL_REGISTRY',
    'ICAT_LABEL',
    'IsotopicLabel',
    'LabelRegistry',

    # Isotope pairs
    'IntensityType',
    'IsotopePairMatcher',
    'Pair',
    'PairMatchingParams',
    'analyze',
    'analyze1',
    'quantitate',
]
