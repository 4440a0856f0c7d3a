# Copyright Contributors to the Pyro project.
# SPDX-License-Identifier: Apache-2.0

"""
Errors raised by subsampled inference.

Every error here is terminal for the current
:meth:`~batchvi.infer.driver.SubsamplingDriver.run` call: a shape mismatch or
a diverged update would otherwise corrupt the global parameters shared by all
later batches. The driver annotates the error with the outer iteration and
update mode in which it occurred before re-raising it.
"""
from typing import Optional


def format_context(iteration, mode) -> str:
    """
    :returns: e.g. ``"outer iteration 3, GLOBAL step"``.
    """
    if mode is None:
        return "outer iteration {}".format(iteration)
    return "outer iteration {}, {} step".format(iteration, getattr(mode, "name", mode))


class InferenceError(Exception):
    """
    Base class for errors raised during subsampled inference.

    :ivar int iteration: outer iteration during which the error was raised,
        or ``None`` if raised outside of a driver run.
    :ivar mode: the :class:`~batchvi.infer.step.Mode` being executed, or
        ``None``.
    """

    def __init__(self, *args) -> None:
        super().__init__(*args)
        self.iteration: Optional[int] = None
        self.mode = None

    def add_context(self, iteration: int, mode) -> "InferenceError":
        self.iteration = iteration
        self.mode = mode
        return self

    def __str__(self) -> str:
        msg = super().__str__()
        if self.iteration is None:
            return msg
        return "{} ({})".format(msg, format_context(self.iteration, self.mode))


class UnknownSiteError(InferenceError, LookupError):
    """
    Raised when a site or parameter is referenced that is not registered for
    the active subgraph. This indicates a programming error.
    """


class NoActiveBatchError(InferenceError, RuntimeError):
    """
    Raised when local parameters are requested while no batch is allocated.
    This indicates a programming error.
    """


class DimensionMismatchError(InferenceError, ValueError):
    """
    Raised when the batch size disagrees between indices, observations and
    local parameters.
    """


class ShapeError(InferenceError, ValueError):
    """
    Raised when a parameter or gradient shape disagrees with the dimensions
    declared by the subgraph.
    """


class OptimizationDivergedError(InferenceError, RuntimeError):
    """
    Raised when a loss, gradient or updated parameter becomes non-finite.
    """
