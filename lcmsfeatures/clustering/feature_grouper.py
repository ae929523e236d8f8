"""Cross-run grouping of features into an aligned "peptide array".

FeatureGrouper clusters the features of several FeatureSets (one set per
run) and reports, for each bucket, one intensity per run plus the peptide
and protein identifications folded into that cell. With group-by-charge
enabled every observed charge state gets its own clusterer, so features
are never grouped across charge states.
"""

import csv
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, NamedTuple, Optional, Sequence, TextIO, Tuple

from lcmsfeatures.clustering.clusterer2d import BucketEntry, BucketSummary, grid_search_tolerances
from lcmsfeatures.clustering.feature_clusterer import (
    ElutionMode,
    FeatureClusterer,
    MassMzMode,
)
from lcmsfeatures.feature import (
    DESCRIPTION_COLUMN,
    FEATURE_COLUMNS,
    Feature,
    intensity_desc_key,
    quality_key,
)
from lcmsfeatures.feature_set import EXTRA_INFO_IDENTIFICATION, FeatureSet
from lcmsfeatures.mass import ToleranceType

logger = logging.getLogger(__name__)


class ConflictResolver(Enum):
    """How several features from one run in one bucket are reduced."""
    SUM = "sum"    # add all intensities (features ordered as BEST)
    BEST = "best"  # most peaks, then lowest KL
    MAX = "max"    # highest intensity


class BucketEvaluationMode(Enum):
    """Score used when searching for the best clustering tolerances."""
    ONE_FROM_EACH = "one_from_each"
    PEPTIDE_AGREEMENT = "peptide_agreement"


@dataclass
class PeptideAgreementParams:
    """Scoring of buckets by agreement of their peptide identifications.

    A bucket is evaluated when it holds at least
    ``round(min_aligned_num_sets_multiple * n_sets)`` features, all from
    different sets. It scores ``match_score`` when every identified feature
    names the same first peptide and at least
    ``round(min_peptide_ids_num_sets_multiple * n_sets)`` of them are
    identified, and loses ``mismatch_penalty`` on any disagreement.
    """
    match_score: int = 1
    mismatch_penalty: int = 1
    min_aligned_num_sets_multiple: float = 1.0
    min_peptide_ids_num_sets_multiple: float = 0.5

    def __post_init__(self):
        if self.min_aligned_num_sets_multiple < 0 or self.min_peptide_ids_num_sets_multiple < 0:
            raise ValueError("Peptide agreement multiples must be non-negative")


class PeptideArrayRow(NamedTuple):
    """One aligned bucket: per-set features (best first) and intensities."""
    row_id: int
    charge: Optional[int]
    summary: BucketSummary
    set_features: List[List[Feature]]
    intensities: List[float]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def bucket_features(summary: BucketSummary) -> List[Feature]:
    """Features behind the clusterables of a bucket."""
    return [clusterable.feature for clusterable in summary.parents()]


def order_cluster_features(
    summary: BucketSummary,
    num_sets: int,
    conflict_resolver: ConflictResolver
) -> List[List[Feature]]:
    """Features of a bucket per set, in descending order of goodness.

    BEST (and SUM) rank by quality: more isotope peaks first, then lower
    KL, with unset KL last. MAX ranks by intensity. Ties keep insertion
    order within the set.

    Returns:
        One list per set index; empty when the set has no feature here
    """
    if conflict_resolver == ConflictResolver.MAX:
        key = intensity_desc_key
    else:
        key = quality_key

    per_set: List[List[BucketEntry]] = [[] for _ in range(num_sets)]
    for entry in summary.entries:
        per_set[entry.set_index].append(entry)

    result: List[List[Feature]] = []
    for entries in per_set:
        entries.sort(key=lambda entry: entry.position)
        features = [entry.clusterable.feature for entry in entries]
        features.sort(key=key)
        result.append(features)
    return result


def cell_intensity(features: Sequence[Feature], conflict_resolver: ConflictResolver) -> float:
    """Representative intensity of one bucket/set cell."""
    if not features:
        return 0.0
    if conflict_resolver == ConflictResolver.SUM:
        return float(sum(feature.intensity for feature in features))
    return float(features[0].intensity)


def cell_identifications(features: Sequence[Feature]) -> Tuple[str, str, bool]:
    """Peptide and protein text of one cell.

    Distinct peptide lists are kept in feature order; when there is more
    than one, each list (and its protein list) is wrapped in brackets.

    Returns:
        (peptide_text, protein_text, has_multiple)
    """
    peptide_lists: List[str] = []
    protein_lists: List[Optional[str]] = []
    for feature in features:
        if not feature.has_identification():
            continue
        identification = feature.identification.collapse_sequential_duplicates()
        peptide_text = identification.peptide_list_string()
        if peptide_text in peptide_lists:
            continue
        peptide_lists.append(peptide_text)
        protein_lists.append(identification.protein_list_string() if identification.proteins else None)

    multiple = len(peptide_lists) > 1
    if not multiple:
        peptides = peptide_lists[0] if peptide_lists else ""
        proteins = (protein_lists[0] or "") if protein_lists else ""
        return peptides, proteins, False

    peptides = "".join(f"[{text}]" for text in peptide_lists)
    proteins = "".join(f"[{text}]" for text in protein_lists if text is not None)
    return peptides, proteins, True


class FeatureGrouper:
    """Aligns features across FeatureSets.

    Parameters
    ----------
    use_mass : bool
        Cluster on neutral mass instead of m/z
    elution_mode : ElutionMode
        Cluster on scan number or retention time
    mass_tolerance_type : ToleranceType
        Da or ppm; ppm requires ``use_mass``
    group_by_charge : bool
        Keep one clusterer per observed charge; charge-0 features are dropped
    conflict_resolver : ConflictResolver
        How several features from one set in one bucket are reduced
    peptide_agreement : PeptideAgreementParams, optional
        Scoring for BucketEvaluationMode.PEPTIDE_AGREEMENT
    """

    def __init__(
        self,
        use_mass: bool = False,
        elution_mode: ElutionMode = ElutionMode.SCAN,
        mass_tolerance_type: ToleranceType = ToleranceType.ABSOLUTE,
        group_by_charge: bool = False,
        conflict_resolver: ConflictResolver = ConflictResolver.SUM,
        peptide_agreement: Optional[PeptideAgreementParams] = None
    ):
        self.use_mass = use_mass
        self.elution_mode = elution_mode
        self.mass_tolerance_type = mass_tolerance_type
        self.group_by_charge = group_by_charge
        self.conflict_resolver = conflict_resolver
        self.peptide_agreement = peptide_agreement or PeptideAgreementParams()

        self._feature_sets: List[FeatureSet] = []
        self._feature_clusterer = self._create_clusterer()
        self._charge_clusterers: Dict[int, FeatureClusterer] = {}
        self.num_identification_conflicts = 0

    def _create_clusterer(self) -> FeatureClusterer:
        return FeatureClusterer(
            MassMzMode.MASS if self.use_mass else MassMzMode.MZ,
            self.elution_mode,
            self.mass_tolerance_type,
        )

    # ------------------------------------------------------------------
    # Sets
    # ------------------------------------------------------------------

    def add_set(self, feature_set: FeatureSet):
        """Add one run's features.

        With group-by-charge the features are partitioned by charge. A charge
        seen for the first time gets empty sets for all earlier runs so set
        indices stay aligned across charge clusterers.
        """
        set_index = len(self._feature_sets)
        if self.group_by_charge:
            by_charge: Dict[int, List[Feature]] = {}
            for feature in feature_set.features:
                if feature.charge == 0:
                    continue
                by_charge.setdefault(feature.charge, []).append(feature)

            for charge in by_charge:
                if charge not in self._charge_clusterers:
                    clusterer = self._create_clusterer()
                    for earlier in self._feature_sets:
                        clusterer.add_set(earlier.with_features([]))
                    self._charge_clusterers[charge] = clusterer

            for charge, clusterer in self._charge_clusterers.items():
                clusterer.add_set(feature_set.with_features(by_charge.get(charge, [])))
        else:
            self._feature_clusterer.add_set(feature_set)

        self._feature_sets.append(feature_set)
        logger.debug(f"Added set {set_index} with {len(feature_set)} features")

    def get_set(self, set_index: int) -> FeatureSet:
        return self._feature_sets[set_index]

    @property
    def feature_sets(self) -> List[FeatureSet]:
        return self._feature_sets

    @property
    def num_sets(self) -> int:
        return len(self._feature_sets)

    @property
    def observed_charges(self) -> List[int]:
        return sorted(self._charge_clusterers)

    def clusterers(self) -> List[Tuple[Optional[int], FeatureClusterer]]:
        """(charge, clusterer) pairs in ascending charge order; charge is None without grouping."""
        if self.group_by_charge:
            return [(charge, self._charge_clusterers[charge]) for charge in self.observed_charges]
        return [(None, self._feature_clusterer)]

    def has_identifications(self) -> bool:
        return any(fs.has_extra_information_type(EXTRA_INFO_IDENTIFICATION)
                   for fs in self._feature_sets)

    # ------------------------------------------------------------------
    # Clustering
    # ------------------------------------------------------------------

    def split2d(self, dimension1_tolerance: float, dimension2_tolerance: float):
        for _, clusterer in self.clusterers():
            clusterer.split2d(dimension1_tolerance, dimension2_tolerance)

    def summarize(self) -> List[BucketSummary]:
        """Buckets of all clusterers, charge clusterers in ascending charge order."""
        summaries = []
        for _, clusterer in self.clusterers():
            summaries.extend(clusterer.summarize())
        return summaries

    def summarize_by_charge(self) -> Dict[Optional[int], List[BucketSummary]]:
        return {charge: clusterer.summarize() for charge, clusterer in self.clusterers()}

    def num_buckets(self) -> int:
        return sum(clusterer.num_buckets() for _, clusterer in self.clusterers())

    def rows_with_one_from_each(self) -> int:
        return sum(clusterer.rows_with_one_from_each() for _, clusterer in self.clusterers())

    def peptide_agreement_score(self) -> int:
        """Peptide-agreement score of the current split."""
        params = self.peptide_agreement
        n_sets = self.num_sets
        min_aligned = _round_half_up(params.min_aligned_num_sets_multiple * n_sets)
        min_peptide_ids = _round_half_up(params.min_peptide_ids_num_sets_multiple * n_sets)

        score = 0
        for summary in self.summarize():
            if summary.feature_count < min_aligned or summary.set_count != summary.feature_count:
                continue
            common_peptide = None
            num_matched = 0
            failed = False
            for feature in bucket_features(summary):
                peptide = feature.first_peptide
                if peptide is None:
                    continue
                if common_peptide is None:
                    common_peptide = peptide
                    num_matched += 1
                elif peptide == common_peptide:
                    num_matched += 1
                else:
                    failed = True
                    break
            if failed:
                score -= params.mismatch_penalty
            elif num_matched >= min_peptide_ids:
                score += params.match_score
        return score

    def calculate_best_buckets(
        self,
        dimension1_candidates: Sequence[float],
        dimension2_candidates: Sequence[float],
        mode: BucketEvaluationMode = BucketEvaluationMode.ONE_FROM_EACH
    ) -> Tuple[float, float]:
        """Grid-search clustering tolerances; the grouper is left split at the winner."""
        if mode == BucketEvaluationMode.PEPTIDE_AGREEMENT:
            score = FeatureGrouper.peptide_agreement_score
            max_score = None
        else:
            score = FeatureGrouper.rows_with_one_from_each
            max_score = None
            if self._feature_sets and not self.group_by_charge:
                max_score = min(len(fs) for fs in self._feature_sets)

        def evaluate(dim1, dim2):
            self.split2d(dim1, dim2)
            return score(self)

        best_dim1, best_dim2, best_score = grid_search_tolerances(
            dimension1_candidates, dimension2_candidates, evaluate, max_score)
        logger.info(f"Best grouping tolerances: {best_dim1}, {best_dim2} "
                    f"({mode.value} score {best_score})")
        self.split2d(best_dim1, best_dim2)
        return best_dim1, best_dim2

    # ------------------------------------------------------------------
    # Peptide array
    # ------------------------------------------------------------------

    def peptide_array_columns(self) -> List[str]:
        columns = ["id"]
        if self.group_by_charge:
            columns.append("charge")
        if self.use_mass:
            columns += ["minMass", "maxMass"]
        else:
            columns += ["minMz", "maxMz"]
        if self.elution_mode == ElutionMode.SCAN:
            columns += ["minScan", "maxScan"]
        else:
            columns += ["minTime", "maxTime"]
        columns += ["featureCount", "setCount"]

        with_identifications = self.has_identifications()
        for i, feature_set in enumerate(self._feature_sets):
            suffix = feature_set.column_suffix(i)
            columns.append("intensity" + suffix)
            if with_identifications:
                columns.append("peptide" + suffix)
                columns.append("protein" + suffix)
        return columns

    def iter_peptide_array_rows(self) -> Iterator[PeptideArrayRow]:
        """Aligned rows, one per bucket, computed as they are consumed."""
        row_id = 0
        for charge, clusterer in self.clusterers():
            summaries = clusterer.summarize()
            if charge is not None:
                logger.info(f"Charge {charge}: {len(summaries)} clusters")
            for summary in summaries:
                row_id += 1
                set_features = order_cluster_features(summary, self.num_sets, self.conflict_resolver)
                intensities = [cell_intensity(features, self.conflict_resolver)
                               for features in set_features]
                yield PeptideArrayRow(row_id, charge, summary, set_features, intensities)

    def format_peptide_array_row(self, row: PeptideArrayRow, with_identifications: bool) -> list:
        clusterer = self._feature_clusterer
        values = [row.row_id]
        if self.group_by_charge:
            values.append(row.charge)
        values += row.summary.to_row(clusterer.dimension1_is_int, clusterer.dimension2_is_int)
        for features, intensity in zip(row.set_features, row.intensities):
            values.append(intensity if intensity > 0 else "")
            if with_identifications:
                peptides, proteins, multiple = cell_identifications(features)
                if multiple:
                    self.num_identification_conflicts += 1
                values.append(peptides)
                values.append(proteins)
        return values

    def write_peptide_array(self, stream: TextIO) -> int:
        """Stream the tab-separated peptide array to ``stream``.

        Returns:
            Number of rows written
        """
        with_identifications = self.has_identifications()
        self.num_identification_conflicts = 0
        writer = csv.writer(stream, delimiter="\t", lineterminator="\n")
        writer.writerow(self.peptide_array_columns())
        n_rows = 0
        for row in self.iter_peptide_array_rows():
            writer.writerow(self.format_peptide_array_row(row, with_identifications))
            n_rows += 1
        logger.info(f"Wrote peptide array with {n_rows} rows "
                    f"({self.num_identification_conflicts} cells with multiple identifications)")
        return n_rows

    def _set_name(self, set_index: int) -> str:
        name = self._feature_sets[set_index].source_name()
        return name if name is not None else str(set_index)

    def write_array_details(self, stream: TextIO, include_identification: bool = False) -> int:
        """One row per clustered feature: bucket id, source set, feature columns.

        Returns:
            Number of feature rows written
        """
        writer = csv.writer(stream, delimiter="\t", lineterminator="\n")
        extra_columns = ["peptide", "protein"] if include_identification else []
        writer.writerow(["id", "file", *FEATURE_COLUMNS, *extra_columns, DESCRIPTION_COLUMN])
        row_id = 0
        n_written = 0
        for summary in self.summarize():
            row_id += 1
            for entry in summary.entries:
                feature = entry.clusterable.feature
                extra_values = []
                if include_identification:
                    identification = feature.identification
                    extra_values = [
                        identification.peptide_list_string() if identification else "",
                        identification.protein_list_string() if identification else "",
                    ]
                writer.writerow([row_id, self._set_name(entry.set_index), *feature.to_row(extra_values)])
                n_written += 1
        return n_written

    def filter_by_grouped_alignment(self, min_aligned: int) -> List[FeatureSet]:
        """Per set, keep only features in buckets spanning at least ``min_aligned`` sets."""
        kept: List[List[Feature]] = [[] for _ in range(self.num_sets)]
        for summary in self.summarize():
            if summary.set_count < min_aligned:
                continue
            for entry in summary.entries:
                kept[entry.set_index].append(entry.clusterable.feature)
        return [fs.with_features(features) for fs, features in zip(self._feature_sets, kept)]
