# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

"""
Poutine is a library of composable effect handlers for recording and
modifying the behavior of programs written with ``batchvi.sample``,
``batchvi.param`` and ``batchvi.plate``.

Handlers can be used as higher-order functions, decorators, or context
managers to modify the behavior of functions or blocks of code:

    >>> def model(x):
    ...     s = batchvi.param("s", torch.tensor(0.5))
    ...     z = batchvi.sample("z", dist.Normal(x, s))
    ...     return z ** 2

We can mark sample sites as observed using ``condition``, which returns a
callable with the same input and output signatures as ``model``:

    >>> conditioned_model = poutine.condition(model, data={"z": torch.tensor(1.0)})

Handlers compose freely, which is how the objective is built::

    guide_tr = poutine.trace(guide).get_trace()
    model_tr = poutine.trace(poutine.replay(model, trace=guide_tr)).get_trace()
    monte_carlo_elbo = model_tr.log_prob_sum() - guide_tr.log_prob_sum()
"""

import functools

from batchvi.poutine.bind_messenger import BindParamsMessenger
from batchvi.poutine.block_messenger import BlockMessenger
from batchvi.poutine.condition_messenger import ConditionMessenger
from batchvi.poutine.enum_messenger import EnumMessenger
from batchvi.poutine.replay_messenger import ReplayMessenger
from batchvi.poutine.scale_messenger import ScaleMessenger
from batchvi.poutine.seed_messenger import SeedMessenger
from batchvi.poutine.trace_messenger import TraceMessenger


def _make_handler(msngr_cls):
    def handler(fn=None, *args, **kwargs):
        if fn is not None and not callable(fn):
            raise ValueError(
                "{} is not callable, did you mean to pass it as a keyword arg?".format(fn))
        msngr = msngr_cls(*args, **kwargs)
        return functools.update_wrapper(msngr(fn), fn, updated=()) if fn is not None else msngr

    handler.__doc__ = "Convenient wrapper of :class:`~{}.{}` \n\n{}".format(
        msngr_cls.__module__, msngr_cls.__name__, msngr_cls.__doc__ or "")
    return handler


bind_params = _make_handler(BindParamsMessenger)
block = _make_handler(BlockMessenger)
condition = _make_handler(ConditionMessenger)
enum = _make_handler(EnumMessenger)
replay = _make_handler(ReplayMessenger)
scale = _make_handler(ScaleMessenger)
seed = _make_handler(SeedMessenger)
trace = _make_handler(TraceMessenger)
