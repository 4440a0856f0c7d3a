# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

import warnings
from typing import Callable, Optional, Union

import torch
from torch.distributions import constraints

from batchvi.errors import UnknownSiteError
from batchvi.poutine.plate_messenger import PlateMessenger
from batchvi.poutine.runtime import InferDict, am_i_wrapped, apply_stack, draw, new_message


def _unbound_param(name, constraint=None):
    raise UnknownSiteError("param '{}' has no initializer and was not resolved by any "
                           "parameter store; wrap the program in poutine.bind_params".format(name))


def param(name: str,
          init_tensor: Union[torch.Tensor, Callable[[], torch.Tensor], None] = None,
          constraint: constraints.Constraint = constraints.real) -> torch.Tensor:
    """
    Declares a variational parameter. Parameters live in explicitly passed
    stores: a statement is resolved by an enclosing
    :func:`~batchvi.poutine.bind_params` handler, against the local
    parameters of the active batch first and the global
    :class:`~batchvi.params.ParamStore` second.

    :param str name: name of parameter
    :param init_tensor: initial tensor or lazy callable that returns a tensor.
        Only used the first time a global parameter is registered.
    :type init_tensor: torch.Tensor or callable
    :param constraint: torch constraint, defaults to ``constraints.real``.
    :type constraint: torch.distributions.constraints.Constraint
    :returns: A constrained parameter. The underlying unconstrained parameter
        is accessible via ``param(...).unconstrained()``, where
        ``.unconstrained`` is a weakref attribute.
    :rtype: torch.Tensor
    :raises UnknownSiteError: if no handler resolves the statement.
    """
    if not am_i_wrapped():
        _unbound_param(name)
    msg = new_message("param", name, lambda *args: _unbound_param(name),
                      args=(init_tensor, constraint))
    apply_stack(msg)
    return msg["value"]


def sample(name: str, fn, obs: Optional[torch.Tensor] = None,
           infer: Optional[InferDict] = None) -> torch.Tensor:
    """
    Draws from the distribution ``fn`` with additional side-effects depending
    on ``name`` and the enclosing handlers (e.g. an inference algorithm).

    :param name: name of sample
    :param fn: a :class:`torch.distributions.Distribution`
    :param obs: observed datum (optional; should only be used in context of
        inference)
    :param dict infer: Optional dictionary of inference parameters, e.g.
        ``{"enumerate": "parallel"}``.
    :returns: sample
    """
    if not am_i_wrapped():
        if obs is not None:
            warnings.warn("trying to observe a value outside of inference at " + name,
                          RuntimeWarning)
            return obs
        return draw(fn)
    msg = new_message("sample", name, fn, value=obs, is_observed=obs is not None,
                      infer={} if infer is None else infer.copy())
    apply_stack(msg)
    return msg["value"]


def plate(name: str, size: int, subsample_size: Optional[int] = None,
          subsample: Optional[torch.Tensor] = None, dim: Optional[int] = None) -> PlateMessenger:
    """
    Construct for conditionally independent sequences of variables along a
    dataset axis. Used as a context manager, it yields the index tensor of
    the (sub)sample::

        with batchvi.plate("data", 10000000, subsample_size=128) as ind:
            z = batchvi.sample("z", dist.Categorical(logits=torch.zeros(5)))
            batchvi.sample("obs", dist.Independent(dist.Normal(locs[z], 1.), 1), obs=data[ind])

    The log probability of every sample site in the plate is multiplied by
    ``size / subsample_size``, so that a sum over the subsample is an
    unbiased estimate of the sum over all ``size`` elements. Distributions
    are broadcast along ``dim``. Indices are drawn uniformly without
    replacement unless fixed, either by ``subsample`` or by conditioning
    the site named ``name``, as
    :class:`~batchvi.infer.subgraph.SubgraphBinder` does.

    :param str name: A unique name to help inference algorithms match
        plate sites between models and guides.
    :param int size: the full size of the dataset axis.
    :param int subsample_size: Optional size of the subsample.
    :param subsample: Optional custom subsample of indices.
    :type subsample: torch.LongTensor
    :param int dim: An optional negative dim to use for this plate,
        counting from the right. If unspecified the rightmost free dim is
        allocated.
    """
    return PlateMessenger(name, size, subsample_size=subsample_size, subsample=subsample, dim=dim)
