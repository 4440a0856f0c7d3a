# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

from batchvi.params.local_store import (
    EphemeralLocalStore,
    LocalFactorStore,
    LocalParams,
    LocalParamSpec,
    PersistentLocalStore,
)
from batchvi.params.param_store import ParamStore

__all__ = [
    "EphemeralLocalStore",
    "LocalFactorStore",
    "LocalParamSpec",
    "LocalParams",
    "ParamStore",
    "PersistentLocalStore",
]
