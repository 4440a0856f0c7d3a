# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

import threading
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple, TypedDict, Union

import torch

if TYPE_CHECKING:
    from batchvi.poutine.messenger import Messenger
    from batchvi.poutine.plate_messenger import CondIndepStackFrame


class InferDict(TypedDict, total=False):
    """
    A dictionary that contains per-site inference configuration, e.g.::

        batchvi.sample("z", dist.Categorical(logits), infer={"enumerate": "parallel"})

    Keys:
        enumerate (str):
            If "parallel", the site is summed out exactly by
            :class:`~batchvi.infer.elbo.Trace_ELBO`.
        _enumerate_dim (int):
            (internal) The tensor dim holding the enumerated values.
    """

    enumerate: str
    _enumerate_dim: int


class Message(TypedDict, total=False):
    """
    Internal message type passed up and down the handler stack. Messages are
    stored in trace objects, e.g.::

        trace.nodes["my_site_name"]  # This is a Message.

    Keys:
        type (str): "sample" or "param".
        name (str): the site name.
        fn: the distribution (sample sites) or initializer (param sites).
        is_observed (bool): whether the value is observed.
        args (tuple), kwargs (dict): arguments to ``fn``.
        value (torch.Tensor): the sampled, observed or looked-up value.
        scale: multiplier of the site's log probability.
        cond_indep_stack (tuple): enclosing plate frames, innermost first.
        done (bool): whether a value has been provided.
        stop (bool): stop further processing by outer handlers.
        infer (InferDict): per-site inference configuration.
    """

    type: str
    name: str
    fn: Any
    is_observed: bool
    args: Tuple
    kwargs: Dict
    value: Optional[torch.Tensor]
    scale: Union[torch.Tensor, float]
    cond_indep_stack: Tuple["CondIndepStackFrame", ...]
    done: bool
    stop: bool
    continuation: Optional[Callable[["Message"], None]]
    infer: InferDict
    log_prob: torch.Tensor
    log_prob_sum: torch.Tensor
    unscaled_log_prob: torch.Tensor


class _DimAllocator:
    """
    Dimension allocator for internal use by :class:`plate`.
    There is one instance per thread.

    Note that dimensions are indexed from the right, e.g. -1, -2.
    """

    def __init__(self) -> None:
        # in reverse orientation of log_prob.shape
        self._stack: List[Optional[str]] = []

    def allocate(self, name: str, dim: Optional[int]) -> int:
        """
        Allocate a dimension to an :class:`plate` with given name.
        Dim should be either None for automatic allocation or a negative
        integer for manual allocation.
        """
        if name in self._stack:
            raise ValueError("duplicate plate '{}'".format(name))
        if dim is None:
            # Automatically designate the rightmost available dim for allocation.
            dim = -1
            while -dim <= len(self._stack) and self._stack[-1 - dim] is not None:
                dim -= 1
        elif dim >= 0:
            raise ValueError("Expected dim < 0 to index from the right, actual {}".format(dim))

        # Allocate the requested dimension.
        while dim < -len(self._stack):
            self._stack.append(None)
        if self._stack[-1 - dim] is not None:
            raise ValueError('at plates "{}" and "{}", collide at dim={}\n'
                             'Try moving the dim of one plate to the left, e.g. dim={}'
                             .format(name, self._stack[-1 - dim], dim, dim - 1))
        self._stack[-1 - dim] = name
        return dim

    def free(self, name: str, dim: int) -> None:
        """
        Free a dimension.
        """
        free_idx = -1 - dim  # stack index to free
        assert self._stack[free_idx] == name
        self._stack[free_idx] = None
        while self._stack and self._stack[-1] is None:
            self._stack.pop()


class _ThreadLocalState(threading.local):
    """
    The effect handler stack and plate dim allocator of one thread.
    """

    def __init__(self) -> None:
        self.stack: List["Messenger"] = []
        self.dim_allocator = _DimAllocator()


_STATE = _ThreadLocalState()


def get_stack() -> List["Messenger"]:
    """
    :returns: the effect handler stack of the current thread.
    """
    return _STATE.stack


def get_dim_allocator() -> _DimAllocator:
    return _STATE.dim_allocator


def draw(fn, *args, **kwargs) -> torch.Tensor:
    """
    Draws a value from a distribution, using a reparameterized sample where
    one is available so that pathwise gradients flow through the value.
    """
    if getattr(fn, "has_rsample", False):
        return fn.rsample(*args, **kwargs)
    if hasattr(fn, "sample"):
        return fn.sample(*args, **kwargs)
    return fn(*args, **kwargs)


def default_process_message(msg: Message) -> None:
    """
    Default method for processing messages in inference.

    :param msg: a message to be processed
    :returns: None
    """
    if msg["done"] or msg["is_observed"] or msg["value"] is not None:
        msg["done"] = True
        return

    if msg["type"] == "sample":
        msg["value"] = draw(msg["fn"], *msg["args"], **msg["kwargs"])
    else:
        msg["value"] = msg["fn"](*msg["args"], **msg["kwargs"])

    # after fn has been called, update msg to prevent it from being called again.
    msg["done"] = True


def apply_stack(msg: Message) -> None:
    """
    Execute the effect stack at a single site according to the following scheme:

        1. For each ``Messenger`` in the stack from bottom to top,
           execute ``Messenger._process_message`` with the message;
           if the message field "stop" is True, stop;
           otherwise, continue
        2. Apply default behavior (``default_process_message``) to finish remaining site execution
        3. For each ``Messenger`` in the stack from top to bottom,
           execute ``_postprocess_message`` to update the message and internal messenger state with the site results
        4. If the message field "continuation" is not ``None``, call it with the message

    :param dict msg: the starting version of the trace site
    :returns: ``None``
    """
    stack = get_stack()

    pointer = 0
    for frame in reversed(stack):
        pointer = pointer + 1

        frame._process_message(msg)

        if msg["stop"]:
            break

    default_process_message(msg)

    for frame in stack[-pointer:]:
        frame._postprocess_message(msg)

    cont = msg.get("continuation")
    if cont is not None:
        cont(msg)


def am_i_wrapped() -> bool:
    """
    Checks whether the current computation is wrapped in a handler.
    :returns: bool
    """
    return len(get_stack()) > 0


def new_message(type: str, name: str, fn, value=None, is_observed=False, infer=None,
                args=(), kwargs=None) -> Message:
    return Message(
        type=type,
        name=name,
        fn=fn,
        is_observed=is_observed,
        args=args,
        kwargs={} if kwargs is None else kwargs,
        value=value,
        scale=1.0,
        cond_indep_stack=(),
        done=False,
        stop=False,
        continuation=None,
        infer={} if infer is None else infer,
    )
