# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

from typing import Callable, Dict, Iterable, Optional, Type, Union

import torch
from torch.nn.utils import clip_grad_norm_, clip_grad_value_
from torch.optim import Optimizer


def is_scheduler(optimizer) -> bool:
    """
    Helper method to determine whether a PyTorch object is either a PyTorch
    optimizer (return false) or a optimizer wrapped in an LRScheduler e.g. a
    ``ReduceLROnPlateau`` or subclasses of ``_LRScheduler`` (return true).
    """
    return hasattr(optimizer, "optimizer")


def _get_state_dict(optimizer) -> dict:
    if is_scheduler(optimizer):
        return {
            "scheduler": optimizer.state_dict(),
            "optimizer": optimizer.optimizer.state_dict(),
        }
    return optimizer.state_dict()


def _load_state_dict(optimizer, state: dict) -> None:
    if is_scheduler(optimizer):
        optimizer.load_state_dict(state["scheduler"])
        optimizer.optimizer.load_state_dict(state["optimizer"])
    else:
        optimizer.load_state_dict(state)


class Optim:
    """
    A wrapper for torch.optim.Optimizer objects that helps with managing
    parameters that appear while inference runs: one optimizer is created
    lazily per parameter tensor, the first time a gradient step is taken for
    it. Local parameters are fresh tensors for every batch, so their
    optimizers must be dropped with :meth:`forget` or :meth:`clear` at each
    batch boundary.

    :param optim_constructor: a torch.optim.Optimizer
    :param optim_args: a dictionary of learning arguments for the optimizer or a callable that returns
        such dictionaries. A callable is called with the parameter name.
    :param clip_args: a dictionary of clip_norm and/or clip_value args or a callable that returns
        such dictionaries
    """

    def __init__(self, optim_constructor: Union[Callable, Type[Optimizer]],
                 optim_args: Union[Dict, Callable[[str], Dict]],
                 clip_args: Optional[Union[Dict, Callable[[str], Dict]]] = None):
        self.pt_optim_constructor = optim_constructor

        # must be callable or dict
        assert callable(optim_args) or isinstance(optim_args, dict), \
            "optim_args must be function that returns defaults or a defaults dictionary"

        if clip_args is None:
            clip_args = {}

        # must be callable or dict
        assert callable(clip_args) or isinstance(clip_args, dict), \
            "clip_args must be function that returns defaults or a defaults dictionary"

        # hold our args to be called/used
        self.pt_optim_args = optim_args
        self.pt_clip_args = clip_args

        # holds the torch optimizer objects
        self.optim_objs: Dict[torch.Tensor, Optimizer] = {}
        self.grad_clip: Dict[torch.Tensor, Optional[Callable]] = {}
        self._param_names: Dict[torch.Tensor, str] = {}

        # any optimizer state that's waiting to be consumed (because that parameter hasn't been seen before)
        self._state_waiting_to_be_consumed: Dict[str, dict] = {}

    def __call__(self, params: Dict[str, torch.Tensor], *args, **kwargs) -> None:
        """
        :param dict params: a map from parameter name to unconstrained tensor

        Do an optimization step for each param in params. If a given param has never been seen before,
        initialize an optimizer for it. Extra arguments are forwarded to the
        optimizer's ``step``.
        """
        for name, p in params.items():
            # if we have not seen this param before, we instantiate an optim object to deal with it
            if p not in self.optim_objs:
                self._param_names[p] = name
                # create a single optim object for that param
                optimizer = self.optim_objs[p] = self._get_optim(name, p)
                # create a gradient clipping function if specified
                self.grad_clip[p] = self._get_grad_clip(name)
                # set state from _state_waiting_to_be_consumed if present
                state = self._state_waiting_to_be_consumed.pop(name, None)
                if state is not None:
                    _load_state_dict(optimizer, state)

            if self.grad_clip[p] is not None:
                self.grad_clip[p](p)

            if is_scheduler(self.optim_objs[p]):
                # if optim object was a scheduler, perform an optimizer step
                self.optim_objs[p].optimizer.step(*args, **kwargs)
            else:
                self.optim_objs[p].step(*args, **kwargs)

    def forget(self, params: Iterable[torch.Tensor]) -> None:
        """
        Drops the optimizers, and with them the optimizer state, of ``params``.
        """
        for p in params:
            self.optim_objs.pop(p, None)
            self.grad_clip.pop(p, None)
            self._param_names.pop(p, None)

    def clear(self) -> None:
        """
        Drops all optimizers.
        """
        self.optim_objs.clear()
        self.grad_clip.clear()
        self._param_names.clear()

    def __len__(self) -> int:
        return len(self.optim_objs)

    def get_state(self) -> Dict[str, dict]:
        """
        Get state associated with all the optimizers in the form of a dictionary with
        key-value pairs (parameter name, optim state dicts)
        """
        return {self._param_names[p]: _get_state_dict(optimizer)
                for p, optimizer in self.optim_objs.items()}

    def set_state(self, state_dict: Dict[str, dict]) -> None:
        """
        Set the state associated with all the optimizers using the state obtained
        from a previous call to get_state(). State is consumed the next time
        a parameter of the same name is stepped.
        """
        self._state_waiting_to_be_consumed.update(state_dict)

    def save(self, filename: str) -> None:
        """
        :param filename: file name to save to
        :type filename: str

        Save optimizer state to disk
        """
        with open(filename, "wb") as output_file:
            torch.save(self.get_state(), output_file)

    def load(self, filename: str, map_location=None) -> None:
        """
        :param filename: file name to load from
        :type filename: str
        :param map_location: torch.load() map_location parameter
        :type map_location: function, torch.device, string or a dict

        Load optimizer state from disk
        """
        with open(filename, "rb") as input_file:
            state = torch.load(input_file, map_location=map_location, weights_only=False)
        self.set_state(state)

    def _get_optim(self, name: str, param: torch.Tensor):
        return self.pt_optim_constructor([param], **self._get_optim_args(name))

    # helper to fetch the optim args if callable (only used internally)
    def _get_optim_args(self, name: str) -> Dict:
        if callable(self.pt_optim_args):
            opt_dict = self.pt_optim_args(name)
            # must be dictionary
            assert isinstance(opt_dict, dict), "per-param optim arg must return defaults dictionary"
            return opt_dict
        return self.pt_optim_args

    def _get_grad_clip(self, name: str):
        grad_clip_args = self._get_grad_clip_args(name)

        if not grad_clip_args:
            return None

        def _clip_grad(params):
            self._clip_grad(params, **grad_clip_args)

        return _clip_grad

    def _get_grad_clip_args(self, name: str) -> Dict:
        if callable(self.pt_clip_args):
            clip_dict = self.pt_clip_args(name)
            # must be dictionary
            assert isinstance(clip_dict, dict), "per-param clip arg must return defaults dictionary"
            return clip_dict
        return self.pt_clip_args

    @staticmethod
    def _clip_grad(params, clip_norm=None, clip_value=None) -> None:
        if clip_norm is not None:
            clip_grad_norm_(params, clip_norm)
        if clip_value is not None:
            clip_grad_value_(params, clip_value)
