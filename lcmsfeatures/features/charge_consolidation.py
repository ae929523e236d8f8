"""
Charge state consolidation (deconvolution) of LC-MS features.

Features at different charge states (z=2, z=3, z=4) that represent the
same peptide are clustered on neutral mass (ppm tolerance) and elution
time, and each bucket is collapsed into one feature:

- the member with the highest total intensity is the representative
- intensity is the sum of all member intensities
- charge_states is the number of distinct member charges
- a peptide identification survives only if all identified members agree

Includes a grid search for the mass/time tolerances that best separate
charge-state variants from distinct same-charge peptides.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from lcmsfeatures.clustering.clusterer2d import BucketSummary, grid_search_tolerances
from lcmsfeatures.clustering.feature_clusterer import ElutionMode
from lcmsfeatures.clustering.feature_grouper import FeatureGrouper, bucket_features
from lcmsfeatures.feature import Feature, IdentificationInfo
from lcmsfeatures.feature_set import EXTRA_INFO_IDENTIFICATION, FeatureSet
from lcmsfeatures.mass import ToleranceType

logger = logging.getLogger(__name__)


@dataclass
class DeconvolutionParams:
    """Parameters for charge state deconvolution.

    Mass tolerance is in ppm of the anchor mass, not Da.
    """

    # Mass tolerance (ppm, not Da!)
    mass_tolerance_ppm: float = 15.0

    # Co-elution tolerance (seconds, or scans in SCAN mode)
    time_tolerance: float = 30.0

    # Optimization grid (inclusive bounds)
    min_mass_tolerance_ppm: float = 5.0
    max_mass_tolerance_ppm: float = 40.0
    mass_tolerance_step_ppm: float = 2.0
    min_time_tolerance: float = 10.0
    max_time_tolerance: float = 50.0
    time_tolerance_step: float = 5.0

    def __post_init__(self):
        if self.mass_tolerance_ppm <= 0:
            raise ValueError(f"mass_tolerance_ppm must be positive, got {self.mass_tolerance_ppm}")
        if self.time_tolerance <= 0:
            raise ValueError(f"time_tolerance must be positive, got {self.time_tolerance}")
        if self.mass_tolerance_step_ppm <= 0 or self.time_tolerance_step <= 0:
            raise ValueError("Optimization grid steps must be positive")
        if self.min_mass_tolerance_ppm > self.max_mass_tolerance_ppm:
            raise ValueError("min_mass_tolerance_ppm > max_mass_tolerance_ppm")
        if self.min_time_tolerance > self.max_time_tolerance:
            raise ValueError("min_time_tolerance > max_time_tolerance")

    @staticmethod
    def _grid(minimum: float, maximum: float, step: float) -> np.ndarray:
        n_steps = int((maximum - minimum) / step) + 1
        return minimum + step * np.arange(n_steps, dtype=np.float64)

    def mass_grid(self) -> np.ndarray:
        """Candidate mass tolerances (ppm), e.g. 5, 7, ..., 39."""
        return self._grid(self.min_mass_tolerance_ppm, self.max_mass_tolerance_ppm,
                          self.mass_tolerance_step_ppm)

    def time_grid(self) -> np.ndarray:
        """Candidate time tolerances, e.g. 10, 15, ..., 50."""
        return self._grid(self.min_time_tolerance, self.max_time_tolerance,
                          self.time_tolerance_step)


def has_same_charge_pair(features: List[Feature]) -> bool:
    """True if at least two of the features share a charge."""
    charges = [feature.charge for feature in features]
    return len(set(charges)) < len(charges)


def consolidate_bucket(features: List[Feature], with_identifications: bool) -> Tuple[Feature, str]:
    """Collapse the features of one bucket into a single feature.

    Args:
        features: Bucket members, in bucket order
        with_identifications: Reconcile peptide identifications

    Returns:
        (consolidated feature, outcome) where outcome is 'single',
        'preserved', 'conflict' or 'merged'
    """
    if len(features) == 1:
        return features[0].evolve(charge_states=1, comprised=(features[0],)), "single"

    best = features[0]
    description_parts = []
    intensity_sum = 0.0
    for feature in features:
        part = str(feature.charge)
        if feature.description is not None:
            part += f" ({feature.description})"
        description_parts.append(part)
        intensity_sum += feature.intensity
        if feature.total_intensity > best.total_intensity:
            best = feature

    changes = dict(
        intensity=intensity_sum,
        charge_states=len({feature.charge for feature in features}),
        description=", ".join(description_parts),
        comprised=tuple(features),
    )

    outcome = "merged"
    if with_identifications:
        peptides = set()
        proteins = set()
        for feature in features:
            peptide = feature.first_peptide
            if peptide is None:
                continue
            peptides.add(peptide)
            if feature.first_protein is not None:
                proteins.add(feature.first_protein)

        if len(peptides) == 1:
            protein = next(iter(proteins)) if len(proteins) == 1 else None
            prophet = best.identification.peptide_prophet if best.identification else 0.0
            changes["identification"] = IdentificationInfo.single(next(iter(peptides)), protein, prophet)
            outcome = "preserved"
        elif len(peptides) > 1:
            changes["identification"] = None
            outcome = "conflict"

    return best.evolve(**changes), outcome


class Deconvoluter:
    """Collapses multiply-charged observations of the same peptide.

    Parameters
    ----------
    feature_set : FeatureSet
        Features from one run
    params : DeconvolutionParams, optional
        Tolerances and optimization grid
    elution_mode : ElutionMode
        Cluster on retention time (default) or scan number

    Examples
    --------
    >>> deconvoluter = Deconvoluter(feature_set)
    >>> deconvoluter.optimize_parameters()
    >>> consolidated = deconvoluter.deconvolute()
    """

    def __init__(
        self,
        feature_set: FeatureSet,
        params: Optional[DeconvolutionParams] = None,
        elution_mode: ElutionMode = ElutionMode.TIME
    ):
        self.feature_set = feature_set
        self.params = params or DeconvolutionParams()
        self.mass_tolerance_ppm = self.params.mass_tolerance_ppm
        self.time_tolerance = self.params.time_tolerance

        self.grouper = FeatureGrouper(
            use_mass=True,
            elution_mode=elution_mode,
            mass_tolerance_type=ToleranceType.PPM,
        )
        self.grouper.add_set(feature_set)

        self.last_peptide_conflicts = 0
        self.last_preserved_peptides = 0

    def _buckets(self, mass_tolerance_ppm: float, time_tolerance: float) -> List[BucketSummary]:
        self.grouper.split2d(mass_tolerance_ppm, time_tolerance)
        return self.grouper.summarize()

    def charge_state_separation_score(
        self,
        mass_tolerance_ppm: Optional[float] = None,
        time_tolerance: Optional[float] = None
    ) -> int:
        """Multi-feature buckets without a shared charge minus those with one.

        Higher is better: buckets of distinct charges look like real
        charge-state variants, same-charge buckets look like over-clustering.
        """
        if mass_tolerance_ppm is None:
            mass_tolerance_ppm = self.mass_tolerance_ppm
        if time_tolerance is None:
            time_tolerance = self.time_tolerance

        n_multiple_charges = 0
        n_same_charges = 0
        for bucket in self._buckets(mass_tolerance_ppm, time_tolerance):
            if bucket.feature_count < 2:
                continue
            if has_same_charge_pair(bucket_features(bucket)):
                n_same_charges += 1
            else:
                n_multiple_charges += 1
        return n_multiple_charges - n_same_charges

    def optimize_parameters(self) -> Tuple[float, float]:
        """Grid search mass/time tolerances and apply the best pair.

        Returns:
            (mass_tolerance_ppm, time_tolerance)
        """
        if len(self.feature_set) == 0:
            logger.warning("No features to optimize deconvolution on, keeping current tolerances")
            return self.mass_tolerance_ppm, self.time_tolerance

        best_mass, best_time, best_score = grid_search_tolerances(
            self.params.mass_grid(),
            self.params.time_grid(),
            self.charge_state_separation_score,
        )
        self.mass_tolerance_ppm = float(best_mass)
        self.time_tolerance = float(best_time)
        logger.info(f"Optimal deconvolution parameters: mass {self.mass_tolerance_ppm} ppm, "
                    f"time {self.time_tolerance} (score {best_score})")
        return self.mass_tolerance_ppm, self.time_tolerance

    def deconvolute(self) -> FeatureSet:
        """Consolidate features into one per bucket.

        Returns:
            New FeatureSet; the input set is not modified
        """
        with_identifications = self.feature_set.has_extra_information_type(EXTRA_INFO_IDENTIFICATION)
        n_before = len(self.feature_set)
        logger.debug(f"Deconvoluting {n_before} features: mass {self.mass_tolerance_ppm} ppm, "
                     f"time {self.time_tolerance}")

        consolidated = []
        n_conflicts = 0
        n_preserved = 0
        if n_before > 0:
            for bucket in self._buckets(self.mass_tolerance_ppm, self.time_tolerance):
                feature, outcome = consolidate_bucket(bucket_features(bucket), with_identifications)
                if outcome == "conflict":
                    n_conflicts += 1
                elif outcome == "preserved":
                    n_preserved += 1
                consolidated.append(feature)

        self.last_peptide_conflicts = n_conflicts
        self.last_preserved_peptides = n_preserved

        result = self.feature_set.with_features(consolidated)
        if self.feature_set.source is not None:
            result.properties["origSourceFile"] = self.feature_set.source
        result.properties["deconvoluteScanDiff"] = str(self.time_tolerance)
        result.properties["deconvoluteMassDiff"] = str(self.mass_tolerance_ppm)
        if with_identifications:
            result.properties["deconvolutePeptideConflicts"] = n_conflicts
            result.properties["deconvolutePreservedPeptides"] = n_preserved
            logger.debug(f"Peptides preserved: {n_preserved}, peptide conflicts: {n_conflicts}")

        logger.info(f"Deconvolution: {n_before} features -> {len(consolidated)}")
        return result


def deconvolute_features(
    feature_set: FeatureSet,
    params: Optional[DeconvolutionParams] = None,
    optimize: bool = False
) -> FeatureSet:
    """Convenience wrapper: optionally optimize tolerances, then deconvolute."""
    deconvoluter = Deconvoluter(feature_set, params)
    if optimize:
        deconvoluter.optimize_parameters()
    return deconvoluter.deconvolute()
