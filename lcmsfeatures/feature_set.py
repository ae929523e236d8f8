"""FeatureSet container, feature filtering and I/O collaborator protocols."""

import copy
import logging
import os
from dataclasses import dataclass, fields
from typing import Dict, FrozenSet, Iterable, List, Optional, Protocol

from lcmsfeatures.feature import Feature

logger = logging.getLogger(__name__)


# Extra information types a FeatureSet may declare
EXTRA_INFO_IDENTIFICATION = "identification"
EXTRA_INFO_QUANTITATION = "quantitation"


@dataclass
class FeatureSelector:
    """Bounds used to filter features.

    Defaults accept every feature; only the bounds that differ from their
    default show up in ``describe()``.
    """
    min_charge: int = -10
    max_charge: int = 10
    min_mz: float = 0.0
    max_mz: float = 10000.0
    min_mass: float = 0.0
    max_mass: float = float("inf")
    min_intensity: float = 0.0
    min_total_intensity: float = 0.0
    min_scans: int = 0
    scan_first: int = 0
    scan_last: int = 2 ** 31 - 1
    min_time: float = 0.0
    max_time: float = float("inf")
    max_kl: float = float("inf")
    min_peaks: int = 0
    max_peaks: int = 2 ** 31 - 1
    min_peptide_prophet: float = 0.0
    accurate_mz_only: bool = False

    def __post_init__(self):
        if self.min_charge > self.max_charge:
            raise ValueError(f"min_charge ({self.min_charge}) > max_charge ({self.max_charge})")
        if self.min_mz > self.max_mz:
            raise ValueError(f"min_mz ({self.min_mz}) > max_mz ({self.max_mz})")
        if self.min_mass > self.max_mass:
            raise ValueError(f"min_mass ({self.min_mass}) > max_mass ({self.max_mass})")

    def accepts(self, feature: Feature) -> bool:
        if not self.min_charge <= feature.charge <= self.max_charge:
            return False
        if not self.min_mz <= feature.mz <= self.max_mz:
            return False
        if not self.min_mass <= feature.mass <= self.max_mass:
            return False
        if feature.intensity < self.min_intensity:
            return False
        if feature.total_intensity < self.min_total_intensity:
            return False
        if feature.scan_count < self.min_scans:
            return False
        if not self.scan_first <= feature.scan <= self.scan_last:
            return False
        if not self.min_time <= feature.time <= self.max_time:
            return False
        if feature.kl > self.max_kl:
            return False
        if not self.min_peaks <= feature.peaks <= self.max_peaks:
            return False
        if self.accurate_mz_only and not feature.accurate_mz:
            return False
        if self.min_peptide_prophet > 0:
            if not feature.has_identification():
                return False
            if feature.identification.peptide_prophet < self.min_peptide_prophet:
                return False
        return True

    def describe(self) -> str:
        """Space-separated name=value list of the non-default bounds."""
        parts = []
        for f in fields(self):
            value = getattr(self, f.name)
            if value != f.default:
                parts.append(f"{f.name}={value}")
        return " ".join(parts)


class FeatureSet:
    """An ordered collection of features plus set-level metadata.

    Parameters
    ----------
    features : iterable of Feature
        Features owned by this set (copied into a new list)
    source : str, optional
        Path or name the features were loaded from
    tag : str, optional
        Short label used in column names
    properties : dict, optional
        Set-level metadata (label used, original source file, ...)
    """

    def __init__(
        self,
        features: Iterable[Feature] = (),
        source: Optional[str] = None,
        tag: Optional[str] = None,
        properties: Optional[Dict[str, object]] = None
    ):
        self.features: List[Feature] = list(features)
        self.source = source
        self.tag = tag
        self.properties: Dict[str, object] = properties if properties is not None else {}
        self._declared_types: set = set()

    def __len__(self) -> int:
        return len(self.features)

    def __iter__(self):
        return iter(self.features)

    def __getitem__(self, index):
        return self.features[index]

    def __repr__(self) -> str:
        return f"FeatureSet(source={self.source!r}, n_features={len(self.features)})"

    # ------------------------------------------------------------------
    # Extra information types
    # ------------------------------------------------------------------

    def infer_extra_information_types(self) -> FrozenSet[str]:
        """Extra information types carried by at least one feature."""
        types = set()
        for feature in self.features:
            if feature.has_identification():
                types.add(EXTRA_INFO_IDENTIFICATION)
            if feature.has_quantitation():
                types.add(EXTRA_INFO_QUANTITATION)
            if len(types) == 2:
                break
        return frozenset(types)

    @property
    def extra_info_types(self) -> FrozenSet[str]:
        return frozenset(self._declared_types) | self.infer_extra_information_types()

    def add_extra_information_type(self, info_type: str):
        self._declared_types.add(info_type)

    def has_extra_information_type(self, info_type: str) -> bool:
        return info_type in self._declared_types or info_type in self.infer_extra_information_types()

    # ------------------------------------------------------------------
    # Copies
    # ------------------------------------------------------------------

    def clone(self) -> 'FeatureSet':
        """Shallow copy: new feature list, same features and properties dict."""
        result = FeatureSet(self.features, self.source, self.tag, self.properties)
        result._declared_types = set(self._declared_types)
        return result

    def deep_copy(self) -> 'FeatureSet':
        """Copy with new Feature objects and a shallow copy of the properties."""
        result = FeatureSet(
            [copy.copy(feature) for feature in self.features],
            self.source,
            self.tag,
            dict(self.properties),
        )
        result._declared_types = set(self._declared_types)
        return result

    def with_features(self, features: Iterable[Feature]) -> 'FeatureSet':
        """Copy holding a different list of features and its own properties."""
        result = FeatureSet(features, self.source, self.tag, dict(self.properties))
        result._declared_types = set(self._declared_types)
        return result

    def filter(self, selector: FeatureSelector) -> 'FeatureSet':
        """Features accepted by ``selector``, as a new FeatureSet."""
        kept = [feature for feature in self.features if selector.accepts(feature)]
        result = self.with_features(kept)
        if self.source is not None:
            result.properties["origSourceFile"] = self.source
        result.properties["filter"] = selector.describe()
        logger.debug(f"Filter kept {len(kept)} of {len(self.features)} features")
        return result

    # ------------------------------------------------------------------
    # Naming
    # ------------------------------------------------------------------

    def source_name(self) -> Optional[str]:
        """File name of the source without directories."""
        if self.source is None:
            return None
        return os.path.basename(self.source)

    def column_suffix(self, index: int) -> str:
        """Suffix used to name per-set columns of aligned output.

        The tag if set, else the source file name up to its first '.',
        with spaces replaced by '_'; else the 1-based set index.
        """
        name = self.tag or self.source_name()
        if name:
            dot = name.find(".")
            if dot > 0:
                name = name[:dot]
            return "_" + name.replace(" ", "_")
        return f"_{index + 1}"


class FeatureSetLoader(Protocol):
    """Produces a FeatureSet from a file in some feature format."""

    def load(self, path: str) -> FeatureSet:
        ...


class FeatureSetWriter(Protocol):
    """Writes a FeatureSet to a file in some feature format."""

    def save(self, feature_set: FeatureSet, path: str):
        ...
