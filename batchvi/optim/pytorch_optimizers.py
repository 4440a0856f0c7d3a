# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

import torch

from batchvi.optim.optim import Optim

__all__ = []
# Programmatically load all optimizers from PyTorch.
for _name, _Optim in torch.optim.__dict__.items():
    if not isinstance(_Optim, type):
        continue
    if not issubclass(_Optim, torch.optim.Optimizer):
        continue
    if _Optim is torch.optim.Optimizer:
        continue
    if _Optim is torch.optim.LBFGS:
        # LBFGS needs a closure that re-runs the subgraph, which steps do not provide
        continue

    _BatchOptim = (lambda _Optim: lambda optim_args, clip_args=None: Optim(_Optim, optim_args, clip_args))(_Optim)
    _BatchOptim.__name__ = _name
    _BatchOptim.__doc__ = 'Wraps :class:`torch.optim.{}` with :class:`~batchvi.optim.optim.Optim`.'.format(_name)

    locals()[_name] = _BatchOptim
    __all__.append(_name)
    del _BatchOptim
