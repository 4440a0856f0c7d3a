# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

import batchvi.poutine as poutine
from batchvi.logger import log
from batchvi.poutine import enable_validation, is_validation_enabled
from batchvi.primitives import param, plate, sample
from batchvi.util import set_rng_seed

from . import infer, settings

# After changing this, also update setup.py
version_prefix = "0.1.0"

# Get the __version__ string from the auto-generated _version.py file, if exists.
try:
    from batchvi._version import __version__  # type: ignore
except ImportError:
    __version__ = version_prefix

__all__ = [
    "__version__",
    "enable_validation",
    "infer",
    "is_validation_enabled",
    "log",
    "param",
    "plate",
    "poutine",
    "sample",
    "set_rng_seed",
    "settings",
]
