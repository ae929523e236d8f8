"""Light/heavy isotope pair matching and pair quantitation.

Two matching strategies are provided:

- ``match`` (mass-anchored, recommended): anchors are taken by decreasing
  intensity; every label multiplicity from -maxLabelCount to +maxLabelCount
  is probed for the most intense same-charge partner, and ambiguous
  candidate ladders are resolved by slot parity or a best-distance search.
- ``match_intensity_anchored``: anchors are taken by increasing m/z and
  paired with a single-label heavy partner.

Both work on a copy of the input sequence and track consumed features in a
per-pass set, so input features are never modified and the same features
can be matched by independent passes.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import List, NamedTuple, Optional, Sequence, Set

from lcmsfeatures.clustering.spatial_index import SpatialBucketIndex
from lcmsfeatures.feature import (
    Feature,
    IdentificationInfo,
    QuantitationInfo,
    intensity_desc_key,
    mz_scan_key,
)
from lcmsfeatures.feature_set import EXTRA_INFO_QUANTITATION, FeatureSet
from lcmsfeatures.features.isotope_labels import ICAT_LABEL, IsotopicLabel
from lcmsfeatures.mass import ToleranceType, calculate_absolute_delta_mass

logger = logging.getLogger(__name__)

# Floor for log-intensity distances of zero-intensity features
MIN_LOG_INTENSITY = 1e-10


class Pair(NamedTuple):
    """Matched features; ``first`` is the lower-mass (light) member."""
    first: Feature
    second: Feature


class IntensityType(Enum):
    """Which intensity of each partner goes into the light/heavy ratio."""
    TOTAL = "total"
    MAX = "max"


@dataclass
class PairMatchingParams:
    """Tolerances for isotope pair matching."""

    # Mass tolerance (Da by default)
    mass_tolerance: float = 0.2
    mass_tolerance_type: ToleranceType = ToleranceType.ABSOLUTE

    # Co-elution tolerance (same unit as Feature.time)
    time_tolerance: float = 10.0

    def __post_init__(self):
        if not self.mass_tolerance > 0:
            raise ValueError(f"mass_tolerance must be positive, got {self.mass_tolerance}")
        if not self.time_tolerance > 0:
            raise ValueError(f"time_tolerance must be positive, got {self.time_tolerance}")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _log_intensity(feature: Feature) -> float:
    return math.log(max(feature.total_intensity, MIN_LOG_INTENSITY))


def _ordered_pair(a: Feature, b: Feature) -> Pair:
    if b.mass < a.mass:
        return Pair(b, a)
    return Pair(a, b)


def _best_distance_pair(slots: List[Optional[Feature]], anchor: Feature) -> Optional[Pair]:
    """Iteratively take the closest pair of slotted features until one holds the anchor.

    Distance is squared slot distance + squared time difference + squared
    log-intensity difference. Closest pairs without the anchor are discarded.
    """
    n_slots = len(slots)
    remaining = sum(1 for feature in slots if feature is not None)
    while remaining > 1:
        best_a = best_b = -1
        best_distance = math.inf
        for a in range(n_slots - 1):
            f = slots[a]
            if f is None:
                continue
            for b in range(a + 1, n_slots):
                g = slots[b]
                if g is None:
                    continue
                distance = ((a - b) ** 2
                            + (f.time - g.time) ** 2
                            + (_log_intensity(f) - _log_intensity(g)) ** 2)
                if distance < best_distance:
                    best_distance = distance
                    best_a, best_b = a, b
        if best_a < 0:
            return None
        if slots[best_a] is anchor or slots[best_b] is anchor:
            return Pair(slots[best_a], slots[best_b])
        slots[best_a] = None
        slots[best_b] = None
        remaining -= 2
    return None


class IsotopePairMatcher:
    """Finds light/heavy feature pairs for one isotopic label.

    Parameters
    ----------
    label : IsotopicLabel
        Labeling scheme (heavy delta, maximum label count)
    params : PairMatchingParams, optional
        Mass and time tolerances
    """

    def __init__(self, label: IsotopicLabel = ICAT_LABEL, params: Optional[PairMatchingParams] = None):
        self.label = label
        self.params = params or PairMatchingParams()

    def _build_index(self, features: Sequence[Feature]) -> SpatialBucketIndex:
        index = SpatialBucketIndex()
        for i, feature in enumerate(features):
            index.insert(feature.mass, feature.time, i)
        return index

    def _query(self, index: SpatialBucketIndex, anchor: Feature, offset: float) -> List[int]:
        delta = calculate_absolute_delta_mass(anchor.mass, self.params.mass_tolerance,
                                              self.params.mass_tolerance_type)
        target = anchor.mass + offset
        return index.range_query(target - delta, anchor.time - self.params.time_tolerance,
                                 target + delta, anchor.time + self.params.time_tolerance)

    def match_intensity_anchored(self, features: Sequence[Feature]) -> List[Pair]:
        """Pair each feature (by ascending m/z) with a one-label-heavier partner.

        Among same-charge partners in range, the last one returned by the
        index (highest mass, then latest in m/z order) is taken. This mirrors
        long-standing behavior rather than choosing a best partner; prefer
        ``match`` for new work.
        """
        ordered = sorted(features, key=mz_scan_key)
        index = self._build_index(ordered)
        consumed: Set[int] = set()
        pairs = []

        for i, light in enumerate(ordered):
            if i in consumed:
                continue
            heavy_index = None
            for j in self._query(index, light, self.label.heavy):
                if j == i or j in consumed:
                    continue
                if ordered[j].charge != light.charge:
                    continue
                heavy_index = j
            if heavy_index is None:
                continue
            consumed.add(i)
            consumed.add(heavy_index)
            pairs.append(_ordered_pair(light, ordered[heavy_index]))

        logger.info(f"Intensity-anchored matching: {len(pairs)} pairs from {len(ordered)} features")
        return pairs

    def match(self, features: Sequence[Feature]) -> List[Pair]:
        """Mass-anchored pair matching.

        Returns:
            Pairs in the order their anchors were processed; each feature
            appears in at most one pair
        """
        ordered = sorted(features, key=intensity_desc_key)
        index = self._build_index(ordered)
        consumed: Set[int] = set()
        pairs = []
        heavy = self.label.heavy
        max_count = self.label.max_label_count

        for i, anchor in enumerate(ordered):
            if i in consumed:
                continue

            # The anchor may be light or heavy, so probe both directions
            candidate_indices = []
            for count in range(-max_count, max_count + 1):
                if count == 0:
                    continue
                best = None
                for j in self._query(index, anchor, count * heavy):
                    if j == i or j in consumed or j in candidate_indices:
                        continue
                    candidate = ordered[j]
                    if candidate.charge != anchor.charge:
                        continue
                    if best is None or candidate.total_intensity > ordered[best].total_intensity:
                        best = j
                if best is not None:
                    candidate_indices.append(best)

            if not candidate_indices:
                continue

            candidate_indices.append(i)
            candidate_indices.sort(key=lambda j: ordered[j].mass)
            pair = self._resolve(ordered, candidate_indices, i)

            if pair is None:
                consumed.add(i)
                continue
            first, second = pair
            for j in candidate_indices:
                if ordered[j] is first or ordered[j] is second:
                    consumed.add(j)
            pairs.append(_ordered_pair(first, second))

        logger.info(f"Mass-anchored matching: {len(pairs)} pairs from {len(ordered)} features")
        return pairs

    def _resolve(self, ordered: Sequence[Feature], candidate_indices: List[int],
                 anchor_index: int) -> Optional[Pair]:
        """Choose the anchor's partner among mass-sorted candidates (anchor included)."""
        candidates = [ordered[j] for j in candidate_indices]
        anchor = ordered[anchor_index]
        if len(candidates) == 2:
            return Pair(candidates[0], candidates[1])

        heavy = self.label.heavy
        lightest = candidates[0].mass
        n_range = _round_half_up((candidates[-1].mass - lightest) / heavy)

        slots: List[Optional[Feature]] = [None] * (n_range + 1)
        anchor_position = 0
        for position, feature in enumerate(candidates):
            slots[_round_half_up((feature.mass - lightest) / heavy)] = feature
            if feature is anchor:
                anchor_position = position

        if n_range + 1 == len(candidates) and len(candidates) % 2 == 0:
            i1 = (anchor_position // 2) * 2
            first, second = slots[i1], slots[i1 + 1]
            if first is not None and second is not None and (first is anchor or second is anchor):
                return Pair(first, second)

        return _best_distance_pair(slots, anchor)


def analyze(
    features: Sequence[Feature],
    label: IsotopicLabel = ICAT_LABEL,
    params: Optional[PairMatchingParams] = None
) -> List[Pair]:
    """Mass-anchored isotope pair matching (see IsotopePairMatcher.match)."""
    return IsotopePairMatcher(label, params).match(features)


def analyze1(
    features: Sequence[Feature],
    label: IsotopicLabel = ICAT_LABEL,
    params: Optional[PairMatchingParams] = None
) -> List[Pair]:
    """Intensity-anchored isotope pair matching (see IsotopePairMatcher.match_intensity_anchored)."""
    return IsotopePairMatcher(label, params).match_intensity_anchored(features)


# =============================================================================
# Quantitation
# =============================================================================

def overlapping_scan_start(pair: Pair) -> int:
    """First scan where both partners elute, 0 if their scan ranges do not overlap."""
    start = max(pair.first.scan_first, pair.second.scan_first)
    end = min(pair.first.scan_last, pair.second.scan_last)
    return start if start <= end else 0


def reconcile_identification(
    light: Feature,
    heavy: Feature,
    label: IsotopicLabel,
    label_count: int
) -> Optional[IdentificationInfo]:
    """Identification for a quantitated pair.

    One-sided or agreeing identifications are kept, disagreeing ones are
    dropped. For residue-specific labels the peptide must carry exactly
    ``label_count`` labeled residues.
    """
    light_peptides = light.identification.peptides if light.has_identification() else ()
    heavy_peptides = heavy.identification.peptides if heavy.has_identification() else ()
    if not light_peptides and not heavy_peptides:
        return None

    if not heavy_peptides:
        peptide = light_peptides[0]
    elif not light_peptides:
        peptide = heavy_peptides[0]
    elif len(light_peptides) == 1 and len(heavy_peptides) == 1:
        peptide = light_peptides[0] if light_peptides[0] == heavy_peptides[0] else None
    else:
        common = [p for p in heavy_peptides if p in light_peptides]
        peptide = common[0] if common else None

    if peptide is None:
        return None
    if label.is_residue_specific and label.count_labeled_residues(peptide) != label_count:
        logger.debug(f"Dropping {peptide}: labeled residue count differs from {label_count}")
        return None

    source = light if peptide in light_peptides else heavy
    info = source.identification
    protein = None
    if len(info.proteins) == len(info.peptides):
        protein = info.proteins[info.peptides.index(peptide)]
    elif info.proteins:
        protein = info.proteins[0]
    return IdentificationInfo.single(peptide, protein, info.peptide_prophet)


def quantitate_pair(pair: Pair, label: IsotopicLabel,
                    intensity_type: IntensityType = IntensityType.TOTAL) -> Feature:
    """Ratio feature for one pair, built from the light partner."""
    light, heavy = pair
    if intensity_type == IntensityType.TOTAL:
        light_intensity = light.total_intensity
        heavy_intensity = heavy.total_intensity
    else:
        light_intensity = light.intensity
        heavy_intensity = heavy.intensity

    label_count = _round_half_up((heavy.mass - light.mass) / label.heavy)
    quantitation = QuantitationInfo(
        light_intensity=light_intensity,
        heavy_intensity=heavy_intensity,
        ratio=light_intensity / heavy_intensity if heavy_intensity != 0 else None,
        label_count=label_count,
        label=str(label),
        light_mass=light.mass,
        heavy_mass=heavy.mass,
        light_first_scan=light.scan_first,
        light_last_scan=light.scan_last,
        heavy_first_scan=heavy.scan_first,
        heavy_last_scan=heavy.scan_last,
    )

    changes = dict(
        total_intensity=light.total_intensity + heavy.total_intensity,
        charge_states=max(light.charge_states, heavy.charge_states),
        quantitation=quantitation,
    )
    if light.has_identification() or heavy.has_identification():
        changes["identification"] = reconcile_identification(light, heavy, label, label_count)
    return light.evolve(**changes)


def quantitate(
    feature_set: FeatureSet,
    label: IsotopicLabel = ICAT_LABEL,
    params: Optional[PairMatchingParams] = None,
    intensity_type: IntensityType = IntensityType.TOTAL,
    pairs_only: bool = False
) -> FeatureSet:
    """Relative quantitation of a feature set with an isotopic label.

    Pairs are found with mass-anchored matching; each pair becomes one
    feature carrying QuantitationInfo. Unpaired features follow the pairs
    unless ``pairs_only``.

    Returns:
        New FeatureSet with the ``label`` property set
    """
    pairs = IsotopePairMatcher(label, params).match(feature_set.features)
    if intensity_type == IntensityType.TOTAL:
        pairs.sort(key=overlapping_scan_start)

    paired_ids = set()
    result_features = []
    for pair in pairs:
        result_features.append(quantitate_pair(pair, label, intensity_type))
        paired_ids.add(id(pair.first))
        paired_ids.add(id(pair.second))

    if not pairs_only:
        result_features.extend(f for f in feature_set.features if id(f) not in paired_ids)

    result = feature_set.with_features(result_features)
    result.add_extra_information_type(EXTRA_INFO_QUANTITATION)
    result.properties["label"] = str(label)
    logger.info(f"Quantitated {len(pairs)} pairs with label {label}")
    return result
