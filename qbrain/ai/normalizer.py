"""
Input Normalization
===================

Rescales a game's feature vector before it reaches the network. Board
features mix flags in [0, 1] with counts such as column heights or hole
totals, and the counts would otherwise dominate the first layer.

Kinds:
    MINMAX  Only values above 1 are rescaled, to (v - lo) / (hi - lo) where
            lo and hi are the smallest and largest such values. Values at or
            below 1 pass through untouched. If lo == hi every rescaled value
            becomes 0.
    ZSCORE  (v - mean) / std over the whole vector, or 0 everywhere when the
            vector is constant.

Statistics are scalars fitted on one vector at a time. The game calls
normalize_automatically(), which refits on every vector it is given; a
(rows, size) matrix of candidate placements has each row normalized on its
own.

Usage:
    >>> normalizer = make_normalizer('MINMAX', 4)
    >>> normalizer.normalize_automatically(np.array([0.5, 2.0, 3.0, 4.0]))
    array([0.5, 0. , 0.5, 1. ])
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Type

import numpy as np


MINMAX = 'MINMAX'
ZSCORE = 'ZSCORE'


class InputNormalizer(ABC):
    """Fit/transform scaler for feature vectors of a fixed length."""

    def __init__(self, size: int):
        self.size = size
        self.is_fitted = False

    def fit(self, data) -> None:
        self._fit(self._check(data))
        self.is_fitted = True

    def transform(self, data) -> np.ndarray:
        if not self.is_fitted:
            raise RuntimeError("Fit the normalizer before transforming")
        return self._transform(self._check(data))

    def fit_transform(self, data) -> np.ndarray:
        self.fit(data)
        return self.transform(data)

    def normalize_automatically(self, data) -> np.ndarray:
        """Refit and transform a vector, or every row of a matrix separately."""
        arr = np.asarray(data, dtype=np.float64)
        if arr.ndim == 2:
            if arr.shape[1] != self.size:
                raise ValueError(f"Expected rows of length {self.size}, got shape {arr.shape}")
            return np.array([self.fit_transform(row) for row in arr]).reshape(arr.shape)
        return self.fit_transform(arr)

    def _check(self, data) -> np.ndarray:
        arr = np.asarray(data, dtype=np.float64)
        if arr.shape != (self.size,):
            raise ValueError(f"Expected a vector of length {self.size}, got shape {arr.shape}")
        return arr

    @abstractmethod
    def _fit(self, data: np.ndarray) -> None:
        pass

    @abstractmethod
    def _transform(self, data: np.ndarray) -> np.ndarray:
        pass


class MinMaxNormalizer(InputNormalizer):
    """Squeezes values above 1 into [0, 1]; flags and fractions are kept."""

    def __init__(self, size: int):
        super().__init__(size)
        self.min = np.inf
        self.max = -np.inf

    def _fit(self, data):
        large = data[data > 1.0]
        self.min = float(large.min()) if large.size else np.inf
        self.max = float(large.max()) if large.size else -np.inf

    def _transform(self, data):
        out = data.copy()
        mask = data > 1.0
        if self.max != self.min:
            out[mask] = (data[mask] - self.min) / (self.max - self.min)
        else:
            out[mask] = 0.0
        return out


class ZScoreNormalizer(InputNormalizer):
    """Standard score with the population standard deviation."""

    def __init__(self, size: int):
        super().__init__(size)
        self.mean = 0.0
        self.std = 0.0

    def _fit(self, data):
        self.mean = float(data.mean())
        self.std = float(data.std())

    def _transform(self, data):
        if self.std == 0.0:
            return np.zeros_like(data)
        return (data - self.mean) / self.std


_NORMALIZERS: Dict[str, Type[InputNormalizer]] = {
    MINMAX: MinMaxNormalizer,
    ZSCORE: ZScoreNormalizer,
}


def available_normalizers() -> List[str]:
    return sorted(_NORMALIZERS)


def make_normalizer(kind: str, size: int) -> InputNormalizer:
    """Build a normalizer by name, raising ValueError for unknown kinds."""
    try:
        return _NORMALIZERS[kind.upper()](size)
    except KeyError:
        raise ValueError(
            f"Unknown normalizer '{kind}'. Available: {available_normalizers()}"
        ) from None
