# Copyright Contributors to the Pyro project.
# SPDX-License-Identifier: Apache-2.0

"""
Restriction of a global/local model to one minibatch.

A :class:`HierarchicalModel` pairs a model and a guide written against the
full dataset: both take the observations as their only argument and wrap
their local sites in ``batchvi.plate(plate_name, size)``. The
:class:`SubgraphBinder` turns the pair into a :class:`Subgraph` over one
:class:`~batchvi.data.Batch`, whose zero-argument ``model()`` and ``guide()``
see only the global sites, the local sites of the batch indices and the
batch observations.
"""
import functools
from typing import Callable

import torch

from batchvi import poutine
from batchvi.errors import DimensionMismatchError, UnknownSiteError
from batchvi.infer.scale_table import ScaleTable


class HierarchicalModel:
    """
    A model and guide over a dataset of ``size`` items, for example::

        def model(data):
            locs = batchvi.sample("locs", dist.Independent(dist.Normal(torch.zeros(5, 2), 10.), 2))
            with batchvi.plate("data", 10000000):
                z = batchvi.sample("z", dist.Categorical(logits=torch.zeros(5)))
                batchvi.sample("obs", dist.Independent(dist.Normal(locs[z], 1.), 1), obs=data)

    :param callable model: the generative model, taking the observations.
    :param callable guide: the variational guide, taking the observations.
    :param int size: the dataset size ``N``.
    :param str plate_name: the name of the plate over the data axis.
    """

    def __init__(self, model: Callable, guide: Callable, size: int, plate_name: str = "data") -> None:
        if size <= 0:
            raise ValueError("Expected size > 0 but got {}".format(size))
        self.model = model
        self.guide = guide
        self.size = size
        self.plate_name = plate_name


class Subgraph:
    """
    A :class:`HierarchicalModel` bound to one batch, its local parameters and
    the global parameter store. Build instances with
    :meth:`SubgraphBinder.bind`.
    """

    def __init__(self, hierarchical_model, batch, global_params, local_params) -> None:
        self.hierarchical_model = hierarchical_model
        self.batch = batch
        self.global_params = global_params
        self.local_params = local_params
        self.model = self._bind(hierarchical_model.model)
        self.guide = self._bind(hierarchical_model.guide)

    @property
    def batch_size(self) -> int:
        return self.batch.batch_size

    @property
    def indices(self) -> torch.Tensor:
        return self.batch.indices

    def _bind(self, fn):
        fn = functools.partial(fn, self.batch.values)
        fn = poutine.condition(fn, data={self.hierarchical_model.plate_name: self.batch.indices})
        return poutine.bind_params(fn, global_params=self.global_params, local_params=self.local_params)

    def scale_table(self) -> ScaleTable:
        """
        Runs the guide and the model once and collects the scale of every
        sample site.

        :raises UnknownSiteError: if the data plate is never entered.
        """
        with torch.no_grad(), poutine.block():
            guide_trace = poutine.trace(self.guide).get_trace()
            model_trace = poutine.trace(poutine.replay(self.model, trace=guide_trace)).get_trace()
        plate_name = self.hierarchical_model.plate_name
        if plate_name not in model_trace:
            raise UnknownSiteError("plate '{}' does not appear in the model".format(plate_name))
        return ScaleTable.from_trace(model_trace, guide_trace)


class SubgraphBinder:
    """
    Builds :class:`Subgraph` objects. Binding is a pure function of its
    arguments; the binder keeps no state between calls.
    """

    def bind(self, hierarchical_model, batch, global_params, local_params) -> Subgraph:
        """
        :param HierarchicalModel hierarchical_model: the full model.
        :param batch: a :class:`~batchvi.data.Batch`.
        :param global_params: a :class:`~batchvi.params.ParamStore`.
        :param local_params: the :class:`~batchvi.params.LocalParams` of ``batch``.
        :raises DimensionMismatchError: if the batch size disagrees between the
            indices, the observations and the local parameters, or an index
            lies outside the model.
        """
        indices, values = batch
        if indices.dim() != 1:
            raise DimensionMismatchError("batch indices must be one dimensional, got shape {}".format(
                tuple(indices.shape)))
        batch_size = indices.size(0)
        if values.dim() == 0 or values.size(0) != batch_size:
            raise DimensionMismatchError("batch has {} indices but observations of shape {}".format(
                batch_size, tuple(values.shape)))
        if local_params.batch_size != batch_size:
            raise DimensionMismatchError("batch has {} indices but local parameters were allocated for {}".format(
                batch_size, local_params.batch_size))
        if not torch.equal(local_params.indices, indices):
            raise DimensionMismatchError("local parameters were allocated for different indices than the batch")
        if batch_size and (indices.min() < 0 or indices.max() >= hierarchical_model.size):
            raise DimensionMismatchError("batch indices must lie in [0, {})".format(hierarchical_model.size))
        return Subgraph(hierarchical_model, batch, global_params, local_params)
