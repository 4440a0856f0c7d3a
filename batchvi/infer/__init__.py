# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

from batchvi.infer.driver import SubsamplingDriver
from batchvi.infer.elbo import ELBO, Trace_ELBO
from batchvi.infer.scale_table import ScaleTable
from batchvi.infer.sgld import SGLDStep
from batchvi.infer.step import InferenceStep, Mode, UpdatedParameters
from batchvi.infer.subgraph import HierarchicalModel, Subgraph, SubgraphBinder

__all__ = [
    "ELBO",
    "HierarchicalModel",
    "InferenceStep",
    "Mode",
    "ScaleTable",
    "SGLDStep",
    "Subgraph",
    "SubgraphBinder",
    "SubsamplingDriver",
    "Trace_ELBO",
    "UpdatedParameters",
]
