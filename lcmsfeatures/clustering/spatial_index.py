"""2-D range query index over (dim1, dim2) keyed payloads.

Points are kept sorted by dimension 1; a query binary-searches the
dimension-1 interval and filters dimension 2 inside it. Sorting happens
lazily on the first query after an insert, so building the index from n
points and issuing n queries costs O(n log n + n * k) for k points per
dimension-1 window.
"""

from typing import Any, List

import numpy as np


class SpatialBucketIndex:
    """Payloads indexed by two coordinates, queried by closed boxes.

    Query results are ordered by dimension 1 ascending; points with equal
    dimension-1 values come back in insertion order.

    Examples
    --------
    >>> index = SpatialBucketIndex()
    >>> index.insert(1000.0, 100.0, "light")
    >>> index.insert(1009.0, 102.0, "heavy")
    >>> index.range_query(1008.8, 92.0, 1009.2, 112.0)
    ['heavy']
    """

    def __init__(self):
        self._dim1: List[float] = []
        self._dim2: List[float] = []
        self._payloads: List[Any] = []
        self._sorted_dim1 = np.empty(0, dtype=np.float64)
        self._sorted_dim2 = np.empty(0, dtype=np.float64)
        self._order = np.empty(0, dtype=np.int64)
        self._dirty = False

    def __len__(self) -> int:
        return len(self._payloads)

    def insert(self, dim1: float, dim2: float, payload: Any):
        self._dim1.append(float(dim1))
        self._dim2.append(float(dim2))
        self._payloads.append(payload)
        self._dirty = True

    def _build(self):
        dim1 = np.asarray(self._dim1, dtype=np.float64)
        dim2 = np.asarray(self._dim2, dtype=np.float64)
        # Stable sort keeps insertion order among equal dim1 values
        self._order = np.argsort(dim1, kind="stable")
        self._sorted_dim1 = dim1[self._order]
        self._sorted_dim2 = dim2[self._order]
        self._dirty = False

    def range_query(
        self,
        dim1_min: float,
        dim2_min: float,
        dim1_max: float,
        dim2_max: float
    ) -> List[Any]:
        """Payloads with dim1_min <= dim1 <= dim1_max and dim2_min <= dim2 <= dim2_max."""
        if self._dirty:
            self._build()
        if len(self._order) == 0 or dim1_min > dim1_max or dim2_min > dim2_max:
            return []

        left = np.searchsorted(self._sorted_dim1, dim1_min, side='left')
        right = np.searchsorted(self._sorted_dim1, dim1_max, side='right')
        if left >= right:
            return []

        window = self._sorted_dim2[left:right]
        hits = np.nonzero((window >= dim2_min) & (window <= dim2_max))[0]
        return [self._payloads[self._order[left + i]] for i in hits]
