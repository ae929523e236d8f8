"""Clustering of Features on (mass or m/z) x (time or scan)."""

import logging
from enum import Enum
from typing import List

from lcmsfeatures.clustering.clusterer2d import (
    Clusterer2D,
    DimensionSplitCalculator,
    PpmDimensionSplitCalculator,
)
from lcmsfeatures.feature import Feature
from lcmsfeatures.feature_set import FeatureSet
from lcmsfeatures.mass import ToleranceType

logger = logging.getLogger(__name__)


class MassMzMode(Enum):
    """Dimension 1: neutral mass or m/z."""
    MASS = "mass"
    MZ = "mz"


class ElutionMode(Enum):
    """Dimension 2: retention time or scan number."""
    TIME = "time"
    SCAN = "scan"


_DIMENSION1_ATTRIBUTE = {MassMzMode.MASS: "mass", MassMzMode.MZ: "mz"}
_DIMENSION2_ATTRIBUTE = {ElutionMode.TIME: "time", ElutionMode.SCAN: "scan"}


class FeatureClusterable:
    """View of a Feature exposing the two clustered coordinates."""

    __slots__ = ("feature", "_dimension1_attribute", "_dimension2_attribute")

    def __init__(self, feature: Feature, dimension1_attribute: str, dimension2_attribute: str):
        self.feature = feature
        self._dimension1_attribute = dimension1_attribute
        self._dimension2_attribute = dimension2_attribute

    @property
    def dimension1_value(self) -> float:
        return getattr(self.feature, self._dimension1_attribute)

    @property
    def dimension2_value(self) -> float:
        return getattr(self.feature, self._dimension2_attribute)

    def __repr__(self) -> str:
        return (f"FeatureClusterable({self._dimension1_attribute}={self.dimension1_value}, "
                f"{self._dimension2_attribute}={self.dimension2_value})")


class FeatureClusterer(Clusterer2D):
    """Clusterer2D over the features of one or more FeatureSets.

    Parameters
    ----------
    mass_mz_mode : MassMzMode
        Cluster on neutral mass or on m/z
    elution_mode : ElutionMode
        Cluster on retention time or on scan number
    mass_tolerance_type : ToleranceType
        Dimension-1 tolerance in Da or in ppm of the anchor mass.
        ppm is only supported in MASS mode.
    """

    def __init__(
        self,
        mass_mz_mode: MassMzMode = MassMzMode.MZ,
        elution_mode: ElutionMode = ElutionMode.SCAN,
        mass_tolerance_type: ToleranceType = ToleranceType.ABSOLUTE
    ):
        if mass_tolerance_type == ToleranceType.PPM and mass_mz_mode != MassMzMode.MASS:
            raise ValueError("ppm mass tolerance requires clustering on mass, not m/z")
        if mass_tolerance_type == ToleranceType.PPM:
            calculator = PpmDimensionSplitCalculator()
        else:
            calculator = DimensionSplitCalculator()
        super().__init__(calculator)

        self.mass_mz_mode = mass_mz_mode
        self.elution_mode = elution_mode
        self.mass_tolerance_type = mass_tolerance_type
        self.dimension2_is_int = elution_mode == ElutionMode.SCAN
        self._feature_sets: List[FeatureSet] = []

    @property
    def dimension1_attribute(self) -> str:
        return _DIMENSION1_ATTRIBUTE[self.mass_mz_mode]

    @property
    def dimension2_attribute(self) -> str:
        return _DIMENSION2_ATTRIBUTE[self.elution_mode]

    def wrap(self, feature: Feature) -> FeatureClusterable:
        return FeatureClusterable(feature, self.dimension1_attribute, self.dimension2_attribute)

    def add_set(self, feature_set) -> int:
        """Register a FeatureSet (or plain feature sequence); returns its set index."""
        if not isinstance(feature_set, FeatureSet):
            feature_set = FeatureSet(feature_set)
        self._feature_sets.append(feature_set)
        return super().add_set([self.wrap(feature) for feature in feature_set.features])

    def get_set(self, set_index: int) -> FeatureSet:
        return self._feature_sets[set_index]

    @property
    def feature_sets(self) -> List[FeatureSet]:
        return self._feature_sets
