# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

from batchvi.optim.optim import Optim
from batchvi.optim.pytorch_optimizers import *  # noqa F403
from batchvi.optim.pytorch_optimizers import __all__ as pytorch_optims
from batchvi.optim.sgld import SGLD

__all__ = [
    "Optim",
    "SGLD",
]
__all__.extend(pytorch_optims)
