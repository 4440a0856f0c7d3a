# Copyright Contributors to the Pyro project.
# SPDX-License-Identifier: Apache-2.0

"""
Block coordinate updates of a :class:`~batchvi.infer.subgraph.Subgraph`.

An :class:`InferenceStep` takes one gradient step on either the global or
the local variational parameters of a subgraph while holding the other set
fixed. A step either completes and mutates only its targeted parameters, or
raises and leaves them at their last valid value.
"""
from enum import Enum
from typing import Dict, NamedTuple, Optional

import torch

from batchvi import poutine
from batchvi.errors import OptimizationDivergedError, ShapeError
from batchvi.infer.util import torch_item, zero_grads
from batchvi.util import check_finite, is_finite


class Mode(Enum):
    """
    The parameter set targeted by an :class:`InferenceStep`.
    """
    GLOBAL = "global"
    LOCAL = "local"


class UpdatedParameters(NamedTuple):
    """
    Result of one :meth:`InferenceStep.update`.

    :ivar Mode mode: the updated parameter set.
    :ivar float loss: the loss evaluated before the update.
    :ivar dict values: detached constrained values after the update, by name.
    """
    mode: Mode
    loss: float
    values: Dict[str, torch.Tensor]


class InferenceStep:
    """
    One optimizer step on the global or local parameters of a subgraph,
    minimizing the scaled negative ELBO.

        >>> step = InferenceStep(Trace_ELBO(), Adam({"lr": 0.01}), Adam({"lr": 0.1}))
        >>> with local_store.scope(batch.indices) as local_params:  # doctest: +SKIP
        ...     subgraph = SubgraphBinder().bind(hmodel, batch, global_params, local_params)
        ...     step.update(Mode.LOCAL, subgraph, subgraph.scale_table())

    :param loss: an :class:`~batchvi.infer.elbo.ELBO` instance.
    :param global_optim: a :class:`~batchvi.optim.Optim` for global parameters.
    :param local_optim: a :class:`~batchvi.optim.Optim` for local parameters.
        Defaults to ``global_optim``.
    """

    def __init__(self, loss, global_optim, local_optim=None):
        self.loss = loss
        self.global_optim = global_optim
        self.local_optim = global_optim if local_optim is None else local_optim
        self._local_tensors = []

    def update(self, mode, subgraph, scales, step_options: Optional[dict] = None) -> UpdatedParameters:
        """
        :param Mode mode: the parameter set to update.
        :param subgraph: a :class:`~batchvi.infer.subgraph.Subgraph`.
        :param scales: a :class:`~batchvi.infer.scale_table.ScaleTable`.
        :param dict step_options: keyword arguments forwarded to the
            optimizer's ``step``.
        :raises OptimizationDivergedError: if the loss, a gradient or an
            updated value is not finite.
        :raises ShapeError: if a parameter or gradient shape disagrees with
            the subgraph.
        """
        mode = Mode(mode)
        step_options = {} if step_options is None else step_options

        # globals stay fixed from the loss evaluation until the write
        with subgraph.global_params.lock:
            return self._step(mode, subgraph, scales, step_options)

    def _step(self, mode, subgraph, scales, step_options):
        # get loss and the params it touches
        with poutine.trace(param_only=True) as param_capture:
            loss = self.loss.differentiable_loss(subgraph.model, subgraph.guide, scales)
        params = self._targets(mode, subgraph, param_capture.trace)
        names = list(params)
        tensors = [params[name] for name in names]
        check_finite([("loss", loss)], "loss")

        if tensors and torch.is_tensor(loss) and loss.requires_grad:
            grads = torch.autograd.grad(loss, tensors, allow_unused=True)
        else:
            grads = [None] * len(tensors)
        grads = [torch.zeros_like(p) if g is None else g for p, g in zip(tensors, grads)]
        self._check_shapes(mode, subgraph, names, tensors, grads)
        check_finite(zip(names, grads), "gradient")

        if mode is Mode.GLOBAL:
            optim = self.global_optim
            store = subgraph.global_params
        else:
            optim = self.local_optim
            store = subgraph.local_params
            self._local_tensors.extend(tensors)

        snapshot = {name: p.detach().clone() for name, p in params.items()}
        for p, g in zip(tensors, grads):
            p.grad = g
        try:
            optim(params, **step_options)
        finally:
            zero_grads(tensors)
        bad = [name for name, p in params.items() if not is_finite(p)]
        if bad:
            with torch.no_grad():
                for name, value in snapshot.items():
                    params[name].copy_(value)
            raise OptimizationDivergedError("{} update produced non-finite values at: {}".format(
                mode.name, ", ".join(bad)))
        values = {name: store[name].detach().clone() for name in names}
        self._after_update(mode, subgraph, values)

        return UpdatedParameters(mode, torch_item(loss), values)

    def forget_local(self) -> None:
        """
        Drops the optimizer state of the local parameters updated since the
        last call. Called at every batch boundary.
        """
        self.local_optim.forget(self._local_tensors)
        self._local_tensors = []

    def _after_update(self, mode, subgraph, values):
        pass

    def _targets(self, mode, subgraph, param_trace) -> Dict[str, torch.Tensor]:
        targets = {}
        for name in param_trace.param_nodes:
            is_local = param_trace.nodes[name]["infer"].get("local", False)
            if mode is Mode.LOCAL and is_local:
                targets[name] = subgraph.local_params.unconstrained[name]
            elif mode is Mode.GLOBAL and not is_local:
                targets[name] = subgraph.global_params.get_unconstrained(name)
        return targets

    def _check_shapes(self, mode, subgraph, names, tensors, grads):
        for name, p, g in zip(names, tensors, grads):
            if g.shape != p.shape:
                raise ShapeError("gradient of '{}' has shape {} but the parameter has shape {}".format(
                    name, tuple(g.shape), tuple(p.shape)))
            if mode is Mode.LOCAL and (p.dim() == 0 or p.size(0) != subgraph.batch_size):
                raise ShapeError("local parameter '{}' has shape {} but the batch has {} indices".format(
                    name, tuple(p.shape), subgraph.batch_size))
