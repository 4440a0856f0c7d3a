# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

from batchvi.poutine.messenger import Messenger
from batchvi.poutine.trace_struct import Trace


class ConditionMessenger(Messenger):
    """
    Given a stochastic function with some sample statements and a dictionary
    of observations at names, change the sample statements at those names
    into observes with those values.

    Conditioning the subsample site of a plate fixes the plate's indices:

        >>> def model(data):
        ...     with batchvi.plate("data", 1000) as ind:
        ...         return ind
        >>> conditioned = batchvi.poutine.condition(model, data={"data": torch.tensor([3, 7])})
        >>> conditioned(None)
        tensor([3, 7])

    :param fn: a stochastic function (callable containing primitive calls)
    :param data: a dict or a :class:`~batchvi.poutine.Trace`
    :returns: stochastic function decorated with a :class:`~batchvi.poutine.condition_messenger.ConditionMessenger`
    """

    def __init__(self, data):
        super().__init__()
        self.data = data

    def _process_sample(self, msg):
        """
        If msg["name"] appears in self.data, convert the sample site into an
        observe site whose observed value is the value from
        self.data[msg["name"]].
        """
        name = msg["name"]

        if name in self.data:
            if isinstance(self.data, Trace):
                msg["value"] = self.data.nodes[name]["value"]
            else:
                msg["value"] = self.data[name]
            msg["is_observed"] = msg["value"] is not None
