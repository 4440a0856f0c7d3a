# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

from batchvi.poutine.handlers import bind_params, block, condition, enum, replay, scale, seed, trace
from batchvi.poutine.messenger import Messenger
from batchvi.poutine.plate_messenger import CondIndepStackFrame, PlateMessenger
from batchvi.poutine.trace_struct import Trace
from batchvi.poutine.util import enable_validation, is_validation_enabled

__all__ = [
    "bind_params",
    "block",
    "condition",
    "CondIndepStackFrame",
    "enable_validation",
    "enum",
    "is_validation_enabled",
    "Messenger",
    "PlateMessenger",
    "replay",
    "scale",
    "seed",
    "trace",
    "Trace",
]
