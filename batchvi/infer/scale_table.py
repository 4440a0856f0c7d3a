# Copyright Contributors to the Pyro project.
# SPDX-License-Identifier: Apache-2.0

import math
import numbers
from typing import Dict, Iterable, Iterator, Optional, Tuple

import torch

from batchvi.errors import UnknownSiteError
from batchvi.poutine.util import site_is_subsample


def _as_factor(factor) -> float:
    if isinstance(factor, torch.Tensor):
        if factor.numel() != 1:
            raise ValueError("Expected a scalar scale factor but got shape {}".format(tuple(factor.shape)))
        factor = factor.item()
    if not isinstance(factor, numbers.Number):
        raise ValueError("Expected a number but got {}".format(type(factor).__name__))
    factor = float(factor)
    if not (factor > 0 and math.isfinite(factor)):
        raise ValueError("Expected a finite scale factor > 0 but got {}".format(factor))
    return factor


class ScaleTable:
    """
    Per-site multipliers of log probability contributions.

    A site inside a subsampled plate of size ``N`` observed through ``M``
    indices has factor ``N / M``, so that the scaled sum over the batch is an
    unbiased estimate of the sum over the full dataset. Sites outside such
    plates have factor ``1``. The table is a plain lookup; it has no side
    effects and is read by :class:`~batchvi.infer.step.InferenceStep`.

        >>> scales = ScaleTable.subsampled(["z", "obs"], size=1000, subsample_size=10)
        >>> scales.get("obs")
        100.0

    :param dict scales: optional initial map from site name to factor.
    """

    def __init__(self, scales: Optional[Dict[str, float]] = None) -> None:
        self._scales: Dict[str, float] = {}
        for site, factor in (scales or {}).items():
            self.set(site, factor)

    def get(self, site: str) -> float:
        """
        :raises UnknownSiteError: if ``site`` is not registered.
        """
        try:
            return self._scales[site]
        except KeyError as e:
            raise UnknownSiteError("site '{}' has no registered scale factor".format(site)) from e

    def set(self, site: str, factor: float) -> None:
        """
        :raises ValueError: if ``factor`` is not a finite positive number.
        """
        self._scales[site] = _as_factor(factor)

    def __contains__(self, site: str) -> bool:
        return site in self._scales

    def __len__(self) -> int:
        return len(self._scales)

    def __iter__(self) -> Iterator[str]:
        return iter(self._scales)

    def items(self) -> Iterator[Tuple[str, float]]:
        return iter(self._scales.items())

    def __repr__(self) -> str:
        return "ScaleTable({})".format(self._scales)

    @classmethod
    def subsampled(cls, sites: Iterable[str], size: int, subsample_size: int) -> "ScaleTable":
        """
        Builds a table assigning ``size / subsample_size`` to every site.

        :raises ValueError: unless ``0 < subsample_size <= size``.
        """
        if not 0 < subsample_size <= size:
            raise ValueError("Expected 0 < subsample_size <= size but got {} and {}".format(
                subsample_size, size))
        return cls({site: size / subsample_size for site in sites})

    @classmethod
    def from_trace(cls, *traces) -> "ScaleTable":
        """
        Registers every sample site of the given traces, except plate
        subsample sites, with the scale recorded at that site. A site that
        appears in several traces must carry the same scale in each.

        :param traces: :class:`~batchvi.poutine.Trace` objects, typically a
            model trace and a guide trace.
        :raises ValueError: on conflicting scales.
        """
        table = cls()
        for trace in traces:
            for name, site in trace.nodes.items():
                if site["type"] != "sample" or site_is_subsample(site):
                    continue
                factor = _as_factor(site["scale"])
                if name in table and not math.isclose(table.get(name), factor):
                    raise ValueError("site '{}' has scale {} in one trace and {} in another".format(
                        name, table.get(name), factor))
                table.set(name, factor)
        return table
