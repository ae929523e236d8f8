"""Generic 2-D clustering of points from several sets into buckets.

Each registered set is a list of clusterable points (anything exposing
``dimension1_value`` and ``dimension2_value``). ``split2d`` partitions all
points of all sets into buckets with the reference-point rule:

1. Order points by dimension 1 (stable, so ties keep insertion order)
2. The first point not yet in a bucket anchors a new bucket
3. The bucket absorbs every unbucketed point with
   ``anchor1 <= value1 <= anchor1 + width1`` and
   ``|value2 - anchor2| <= width2 / 2``

``width1``/``width2`` come from a pluggable split calculator, so dimension 1
can be an absolute window or parts-per-million of the anchor value. Any
two points in a bucket are within the tolerance of each other in both
dimensions, and the result depends only on the input order and tolerances.
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, Dict, List, NamedTuple, Optional, Protocol, Sequence, Tuple

import numpy as np
from numba import njit

logger = logging.getLogger(__name__)


class Clusterable(Protocol):
    """Two-coordinate view used for clustering."""

    @property
    def dimension1_value(self) -> float:
        ...

    @property
    def dimension2_value(self) -> float:
        ...


@dataclass(frozen=True)
class ClusterPoint:
    """Minimal clusterable carrying an arbitrary payload."""
    dimension1_value: float
    dimension2_value: float
    payload: object = None


# =============================================================================
# Split calculators
# =============================================================================

class DimensionSplitCalculator:
    """Absolute bucket widths: the tolerance itself, whatever the anchor.

    Both methods accept scalars or numpy arrays of anchor values.
    """

    def calculate_dimension1_for_split(self, reference_value, tolerance: float):
        return np.full_like(np.asarray(reference_value, dtype=np.float64), tolerance)

    def calculate_dimension2_for_split(self, reference_value, tolerance: float):
        return np.full_like(np.asarray(reference_value, dtype=np.float64), tolerance)


class PpmDimensionSplitCalculator(DimensionSplitCalculator):
    """Dimension-1 width is ``tolerance`` ppm of the anchor value."""

    def calculate_dimension1_for_split(self, reference_value, tolerance: float):
        return tolerance * np.abs(np.asarray(reference_value, dtype=np.float64)) / 1e6


# =============================================================================
# Bucket results
# =============================================================================

class BucketEntry(NamedTuple):
    """One clustered point, the set it came from and its index in that set."""
    clusterable: object
    set_index: int
    position: int = 0


@dataclass(frozen=True)
class BucketSummary:
    """Bounding box, counts and members of one bucket."""
    min_dimension1: float
    max_dimension1: float
    min_dimension2: float
    max_dimension2: float
    feature_count: int
    set_count: int
    entries: Tuple[BucketEntry, ...]

    def parents(self) -> List[object]:
        """The clustered points, in bucket order."""
        return [entry.clusterable for entry in self.entries]

    def entries_for_set(self, set_index: int) -> List[BucketEntry]:
        return [entry for entry in self.entries if entry.set_index == set_index]

    def parents_for_set(self, set_index: int) -> List[object]:
        return [entry.clusterable for entry in self.entries if entry.set_index == set_index]

    def to_row(self, dimension1_as_int: bool = False, dimension2_as_int: bool = False) -> list:
        """min1, max1, min2, max2, featureCount, setCount."""
        def fmt(value, as_int):
            return int(round(value)) if as_int else value
        return [
            fmt(self.min_dimension1, dimension1_as_int),
            fmt(self.max_dimension1, dimension1_as_int),
            fmt(self.min_dimension2, dimension2_as_int),
            fmt(self.max_dimension2, dimension2_as_int),
            self.feature_count,
            self.set_count,
        ]


# =============================================================================
# Bucket assignment (numba kernel)
# =============================================================================

@njit
def _assign_buckets(
    dim1_sorted: np.ndarray,
    dim2_sorted: np.ndarray,
    dim1_widths: np.ndarray,
    dim2_widths: np.ndarray
) -> Tuple[np.ndarray, int]:
    """Reference-point bucket assignment over points sorted by dimension 1.

    Args:
        dim1_sorted: Dimension-1 values, ascending
        dim2_sorted: Dimension-2 values in the same order
        dim1_widths: Dimension-1 window width if point i anchors a bucket
        dim2_widths: Dimension-2 window width if point i anchors a bucket

    Returns:
        (bucket_ids, n_buckets); bucket ids are numbered in anchor order
    """
    n = len(dim1_sorted)
    bucket_ids = np.full(n, -1, dtype=np.int64)
    n_buckets = 0

    for i in range(n):
        if bucket_ids[i] >= 0:
            continue
        bucket_ids[i] = n_buckets
        limit1 = dim1_sorted[i] + dim1_widths[i]
        half2 = dim2_widths[i] / 2.0
        for j in range(i + 1, n):
            if dim1_sorted[j] > limit1:
                break
            if bucket_ids[j] < 0 and abs(dim2_sorted[j] - dim2_sorted[i]) <= half2:
                bucket_ids[j] = n_buckets
        n_buckets += 1

    return bucket_ids, n_buckets


# =============================================================================
# Grid search
# =============================================================================

def grid_search_tolerances(
    dimension1_candidates: Sequence[float],
    dimension2_candidates: Sequence[float],
    evaluate: Callable[[float, float], float],
    max_score: Optional[float] = None
) -> Tuple[float, float, float]:
    """Find the tolerance pair with the highest score.

    Candidates are evaluated dimension-1 major. Non-positive candidates are
    skipped. The first pair reaching the strictly highest score wins, and
    the search stops early once ``max_score`` is reached.

    Args:
        dimension1_candidates: Candidate dimension-1 tolerances
        dimension2_candidates: Candidate dimension-2 tolerances
        evaluate: Score function of (dim1_tolerance, dim2_tolerance)
        max_score: Best achievable score, if known

    Returns:
        (best_dim1, best_dim2, best_score)

    Raises:
        ValueError: If no candidate pair is positive
    """
    best = None
    for dim1 in dimension1_candidates:
        if not dim1 > 0:
            logger.debug(f"Skipping non-positive dimension 1 tolerance {dim1}")
            continue
        for dim2 in dimension2_candidates:
            if not dim2 > 0:
                logger.debug(f"Skipping non-positive dimension 2 tolerance {dim2}")
                continue
            score = evaluate(dim1, dim2)
            logger.debug(f"Tolerances ({dim1}, {dim2}): score {score}")
            if best is None or score > best[2]:
                best = (dim1, dim2, score)
                if max_score is not None and score >= max_score:
                    logger.debug("Reached best possible score, stopping grid search")
                    return best

    if best is None:
        raise ValueError("No positive tolerance candidates to evaluate")
    return best


# =============================================================================
# Clusterer
# =============================================================================

class Clusterer2D:
    """Clusters points from one or more sets in two dimensions.

    Parameters
    ----------
    split_calculator : DimensionSplitCalculator, optional
        Converts tolerances to bucket widths (absolute by default)
    """

    def __init__(self, split_calculator: Optional[DimensionSplitCalculator] = None):
        self.split_calculator = split_calculator or DimensionSplitCalculator()
        self._sets: List[List[object]] = []
        self._points: List[object] = []
        self._set_indices = np.empty(0, dtype=np.int64)
        self._positions = np.empty(0, dtype=np.int64)
        self._dim1 = np.empty(0, dtype=np.float64)
        self._dim2 = np.empty(0, dtype=np.float64)
        self._stale_arrays = False

        # Results of the last split2d call
        self._order: Optional[np.ndarray] = None
        self._bucket_ids: Optional[np.ndarray] = None
        self._n_buckets = 0
        self._summaries: Optional[List[BucketSummary]] = None
        self.dimension1_tolerance: Optional[float] = None
        self.dimension2_tolerance: Optional[float] = None

        # Text formatting of bucket bounds
        self.dimension1_is_int = False
        self.dimension2_is_int = False

    # ------------------------------------------------------------------
    # Sets
    # ------------------------------------------------------------------

    def add_set(self, points: Sequence[object]) -> int:
        """Register a set of clusterable points; returns its set index."""
        self._sets.append(list(points))
        self._stale_arrays = True
        # Bucket results no longer cover every set
        self._order = None
        self._bucket_ids = None
        self._n_buckets = 0
        self._summaries = None
        return len(self._sets) - 1

    @property
    def num_sets(self) -> int:
        return len(self._sets)

    @property
    def clusterable_sets(self) -> List[List[object]]:
        return self._sets

    def count_all_entries(self) -> int:
        return sum(len(points) for points in self._sets)

    def _refresh_arrays(self):
        points = []
        set_indices = []
        positions = []
        for set_index, set_points in enumerate(self._sets):
            points.extend(set_points)
            set_indices.extend([set_index] * len(set_points))
            positions.extend(range(len(set_points)))
        self._points = points
        self._set_indices = np.asarray(set_indices, dtype=np.int64)
        self._positions = np.asarray(positions, dtype=np.int64)
        self._dim1 = np.array([p.dimension1_value for p in points], dtype=np.float64)
        self._dim2 = np.array([p.dimension2_value for p in points], dtype=np.float64)
        self._stale_arrays = False

    # ------------------------------------------------------------------
    # Splitting
    # ------------------------------------------------------------------

    def split2d(self, dimension1_tolerance: float, dimension2_tolerance: float):
        """Partition all registered points into buckets.

        Raises:
            ValueError: If either tolerance is not positive
        """
        for name, tolerance in (("dimension 1", dimension1_tolerance),
                                ("dimension 2", dimension2_tolerance)):
            if not (tolerance > 0 and math.isfinite(tolerance)):
                raise ValueError(f"{name} tolerance must be positive, got {tolerance}")

        if self._stale_arrays:
            self._refresh_arrays()

        self.dimension1_tolerance = dimension1_tolerance
        self.dimension2_tolerance = dimension2_tolerance
        self._summaries = None

        order = np.argsort(self._dim1, kind="stable")
        dim1_sorted = np.ascontiguousarray(self._dim1[order])
        dim2_sorted = np.ascontiguousarray(self._dim2[order])
        widths1 = np.ascontiguousarray(
            self.split_calculator.calculate_dimension1_for_split(dim1_sorted, dimension1_tolerance),
            dtype=np.float64)
        widths2 = np.ascontiguousarray(
            self.split_calculator.calculate_dimension2_for_split(dim2_sorted, dimension2_tolerance),
            dtype=np.float64)

        bucket_ids, n_buckets = _assign_buckets(dim1_sorted, dim2_sorted, widths1, widths2)
        self._order = order
        self._bucket_ids = bucket_ids
        self._n_buckets = int(n_buckets)

    def _require_split(self):
        if self._bucket_ids is None:
            raise RuntimeError("split2d must be called before bucket results are available")

    def num_buckets(self) -> int:
        self._require_split()
        return self._n_buckets

    def _set_counts(self) -> Tuple[np.ndarray, np.ndarray]:
        """(feature_count, set_count) per bucket id."""
        bucket_ids = self._bucket_ids
        set_indices = self._set_indices[self._order]
        feature_counts = np.bincount(bucket_ids, minlength=self._n_buckets)
        if len(bucket_ids) == 0:
            return feature_counts, np.zeros(self._n_buckets, dtype=np.int64)
        n_sets = max(self.num_sets, 1)
        cells = np.unique(bucket_ids * n_sets + set_indices)
        set_counts = np.bincount(cells // n_sets, minlength=self._n_buckets)
        return feature_counts, set_counts

    def summarize(self) -> List[BucketSummary]:
        """Bucket summaries of the last split, in anchor order.

        Entries inside a bucket are ordered by dimension 1, ties by
        insertion order.
        """
        self._require_split()
        if self._summaries is not None:
            return self._summaries

        members: Dict[int, List[int]] = {}
        for position, bucket_id in enumerate(self._bucket_ids):
            members.setdefault(int(bucket_id), []).append(int(self._order[position]))

        summaries = []
        for bucket_id in range(self._n_buckets):
            indices = members[bucket_id]
            dim1 = self._dim1[indices]
            dim2 = self._dim2[indices]
            entries = tuple(
                BucketEntry(self._points[i], int(self._set_indices[i]), int(self._positions[i]))
                for i in indices
            )
            summaries.append(BucketSummary(
                min_dimension1=float(dim1.min()),
                max_dimension1=float(dim1.max()),
                min_dimension2=float(dim2.min()),
                max_dimension2=float(dim2.max()),
                feature_count=len(entries),
                set_count=len({entry.set_index for entry in entries}),
                entries=entries,
            ))
        self._summaries = summaries
        return summaries

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def rows_with_one_from_each(self) -> int:
        """Buckets holding exactly one point from every registered set."""
        self._require_split()
        if self.num_sets == 0:
            return 0
        feature_counts, set_counts = self._set_counts()
        return int(np.sum((feature_counts == self.num_sets) & (set_counts == self.num_sets)))

    def histogram_bucket_counts(self) -> np.ndarray:
        """histogram[k] = number of buckets with k points."""
        self._require_split()
        feature_counts, _ = self._set_counts()
        return np.bincount(feature_counts, minlength=1)

    def histogram_set_counts(self) -> np.ndarray:
        """histogram[k] = number of buckets with points from k sets."""
        self._require_split()
        _, set_counts = self._set_counts()
        return np.bincount(set_counts, minlength=self.num_sets + 1)

    def calculate_best_buckets(
        self,
        dimension1_candidates: Sequence[float],
        dimension2_candidates: Sequence[float],
        score: Optional[Callable[['Clusterer2D'], float]] = None
    ) -> Tuple[float, float]:
        """Grid-search tolerances, scoring each split.

        The default score is ``rows_with_one_from_each``; its maximum, the
        size of the smallest set, ends the search early. The clusterer is
        left split at the winning tolerances.

        Returns:
            (best_dim1_tolerance, best_dim2_tolerance)
        """
        max_score = None
        if score is None:
            score = Clusterer2D.rows_with_one_from_each
            if self._sets:
                max_score = min(len(points) for points in self._sets)

        def evaluate(dim1, dim2):
            self.split2d(dim1, dim2)
            return score(self)

        best_dim1, best_dim2, best_score = grid_search_tolerances(
            dimension1_candidates, dimension2_candidates, evaluate, max_score)
        logger.info(f"Best tolerances ({best_dim1}, {best_dim2}) with score {best_score}")
        self.split2d(best_dim1, best_dim2)
        return best_dim1, best_dim2
