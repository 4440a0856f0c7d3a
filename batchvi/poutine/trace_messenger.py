# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

import sys

from batchvi.errors import InferenceError
from batchvi.poutine.messenger import Messenger
from batchvi.poutine.trace_struct import Trace


class TraceMessenger(Messenger):
    """
    Return a handler that records the inputs and outputs of primitive calls.

        >>> def model(x):
        ...     s = batchvi.param("s", torch.tensor(0.5))
        ...     z = batchvi.sample("z", dist.Normal(x, s))
        ...     return z ** 2

    We can record its execution using ``trace`` and use the resulting data
    structure to compute the log-joint probability of all of the sample sites
    in the execution or extract all parameters:

        >>> trace = batchvi.poutine.trace(bound_model).get_trace(0.0)  # doctest: +SKIP
        >>> logp = trace.log_prob_sum()  # doctest: +SKIP

    :param fn: a stochastic function (callable containing primitive calls)
    :param param_only: if true, only records params and not samples
    :returns: stochastic function decorated with a :class:`~batchvi.poutine.trace_messenger.TraceMessenger`
    """

    def __init__(self, param_only=None):
        super().__init__()
        if param_only is None:
            param_only = False
        self.param_only = param_only
        self.trace = Trace()

    def __enter__(self):
        self.trace = Trace()
        return super().__enter__()

    def __call__(self, fn):
        return TraceHandler(self, fn)

    def get_trace(self):
        """
        :returns: data structure
        :rtype: batchvi.poutine.Trace

        A shallow copy of the recorded trace.
        """
        return self.trace.copy()

    def _postprocess_sample(self, msg):
        if self.param_only:
            return
        self.trace.add_node(msg["name"], **msg.copy())

    def _postprocess_param(self, msg):
        self.trace.add_node(msg["name"], **msg.copy())


class TraceHandler:
    """
    Wraps a function so that each call records its primitive sites, its
    arguments (site ``_INPUT``) and its return value (site ``_RETURN``).
    """
    def __init__(self, msngr, fn):
        self.fn = fn
        self.msngr = msngr

    def __call__(self, *args, **kwargs):
        with self.msngr:
            self.msngr.trace.add_node("_INPUT",
                                      name="_INPUT", type="args",
                                      args=args, kwargs=kwargs)
            try:
                ret = self.fn(*args, **kwargs)
            except (ValueError, RuntimeError) as e:
                if isinstance(e, InferenceError):
                    raise
                exc_type, exc_value, traceback = sys.exc_info()
                shapes = self.msngr.trace.format_shapes()
                exc = exc_type(u"{}\n{}".format(exc_value, shapes))
                exc = exc.with_traceback(traceback)
                raise exc from e
            self.msngr.trace.add_node("_RETURN", name="_RETURN", type="return", value=ret)
        return ret

    @property
    def trace(self):
        return self.msngr.trace

    def get_trace(self, *args, **kwargs):
        """
        :returns: data structure
        :rtype: batchvi.poutine.Trace

        Calls the wrapped function and returns its trace instead of its value.
        """
        self(*args, **kwargs)
        return self.msngr.get_trace()
