# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

import re
import threading
import weakref
from contextlib import contextmanager
from typing import Callable, Dict, ItemsView, Iterator, KeysView, Optional, Tuple, TypedDict, Union

import torch
from torch.distributions import constraints, transform_to

from batchvi.errors import ShapeError, UnknownSiteError


class StateDict(TypedDict):
    params: Dict[str, torch.Tensor]
    constraints: Dict[str, constraints.Constraint]


class ParamStore:
    """
    Key-value store for the *global* variational parameters of a model.
    Unlike a process-wide registry, each store is an explicitly-owned object
    that is passed by reference to the inference steps that update it.

    Some things to bear in mind when using parameters:

    - parameters must be assigned unique names
    - the ``init_tensor`` argument to :func:`batchvi.param` is only used the
      first time that a given (named) parameter is registered with a store.
    - parameters are associated with both *constrained* and *unconstrained*
      values. For example, under the hood a parameter that is constrained to
      be positive is represented as an unconstrained tensor in log space.
      Optimizers update the unconstrained tensors in place.
    - every write by an inference step holds :attr:`lock`, a re-entrant lock,
      so that several drivers may share one store from different threads.
    - parameters can be saved and loaded from disk using :meth:`save` and
      :meth:`load`.
    """

    def __init__(self) -> None:
        self._params: Dict[str, torch.Tensor] = {}  # dictionary from param name to param
        self._param_to_name: Dict[torch.Tensor, str] = {}  # dictionary from unconstrained param to param name
        self._constraints: Dict[str, constraints.Constraint] = {}  # dictionary from param name to constraint object
        self.lock = threading.RLock()

    def clear(self) -> None:
        """
        Clear the ParamStore
        """
        with self.lock:
            self._params = {}
            self._param_to_name = {}
            self._constraints = {}

    def items(self) -> Iterator[Tuple[str, torch.Tensor]]:
        """
        Iterate over ``(name, constrained_param)`` pairs. Note that `constrained_param` is
        in the constrained (i.e. user-facing) space.
        """
        for name in self._params:
            yield name, self[name]

    def keys(self) -> KeysView[str]:
        """
        Iterate over param names.
        """
        return self._params.keys()

    def values(self) -> Iterator[torch.Tensor]:
        """
        Iterate over constrained parameter values.
        """
        for name, constrained_param in self.items():
            yield constrained_param

    def __bool__(self) -> bool:
        return bool(self._params)

    def __len__(self) -> int:
        return len(self._params)

    def __contains__(self, name: str) -> bool:
        return name in self._params

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __delitem__(self, name: str) -> None:
        """
        Remove a parameter from the param store.
        """
        with self.lock:
            unconstrained_value = self._params.pop(name)
            self._param_to_name.pop(unconstrained_value)
            self._constraints.pop(name)

    def __getitem__(self, name: str) -> torch.Tensor:
        """
        Get the *constrained* value of a named parameter.

        :raises UnknownSiteError: if no parameter of that name is registered.
        """
        try:
            unconstrained_value = self._params[name]
        except KeyError as e:
            raise UnknownSiteError("unknown global parameter '{}'".format(name)) from e

        # compute the constrained value
        constraint = self._constraints[name]
        constrained_value = transform_to(constraint)(unconstrained_value)
        constrained_value.unconstrained = weakref.ref(unconstrained_value)
        return constrained_value

    def __setitem__(self, name: str, new_constrained_value: torch.Tensor) -> None:
        """
        Set the constrained value of an existing parameter, or the value of a
        new *unconstrained* parameter. To declare a new parameter with
        constraint, use :meth:`setdefault`.
        """
        with self.lock:
            # store constraint, defaulting to unconstrained
            constraint = self._constraints.setdefault(name, constraints.real)

            # compute the unconstrained value
            with torch.no_grad():
                unconstrained_value = transform_to(constraint).inv(new_constrained_value)
                unconstrained_value = unconstrained_value.detach().clone().contiguous()
            unconstrained_value.requires_grad_(True)

            # store a bidirectional mapping between name and unconstrained tensor
            old_value = self._params.get(name)
            if old_value is not None:
                self._param_to_name.pop(old_value, None)
            self._params[name] = unconstrained_value
            self._param_to_name[unconstrained_value] = name

    def setdefault(self, name: str,
                   init_constrained_value: Union[torch.Tensor, Callable[[], torch.Tensor]],
                   constraint: constraints.Constraint = constraints.real) -> torch.Tensor:
        """
        Retrieve a *constrained* parameter value from the store if it exists,
        otherwise set the initial value. Note that this is a little fancier than
        :meth:`dict.setdefault`.

        If the parameter already exists, ``init_constrained_value`` will be
        ignored, except that a tensor of a different shape raises
        :class:`~batchvi.errors.ShapeError`. To avoid expensive creation of
        ``init_constrained_value`` you can wrap it in a ``lambda`` that will
        only be evaluated if the parameter does not already exist::

            param_store.setdefault("foo", lambda: 0.1 * torch.randn(1000, 2))

        :param str name: parameter name
        :param init_constrained_value: initial constrained value
        :type init_constrained_value: torch.Tensor or callable returning a torch.Tensor
        :param constraint: torch constraint object
        :type constraint: ~torch.distributions.constraints.Constraint
        :returns: constrained parameter value
        :rtype: torch.Tensor
        """
        with self.lock:
            if name not in self._params:
                # set the constraint
                self._constraints[name] = constraint

                # evaluate the lazy value
                if callable(init_constrained_value):
                    init_constrained_value = init_constrained_value()

                # set the initial value
                self[name] = init_constrained_value
            elif isinstance(init_constrained_value, torch.Tensor) and \
                    init_constrained_value.shape != self._params[name].shape:
                raise ShapeError("global parameter '{}' has shape {} but was declared with shape {}".format(
                    name, tuple(self._params[name].shape), tuple(init_constrained_value.shape)))

            # get the param, which is guaranteed to exist
            return self[name]

    def named_parameters(self) -> ItemsView[str, torch.Tensor]:
        """
        Returns an iterator over ``(name, unconstrained_value)`` tuples for
        each parameter in the ParamStore. Note that, in the event the parameter is constrained,
        `unconstrained_value` is in the unconstrained space implicitly used by the constraint.
        """
        return self._params.items()

    def get_unconstrained(self, name: str) -> torch.Tensor:
        """
        :returns: the unconstrained leaf tensor that optimizers update.
        :raises UnknownSiteError: if no parameter of that name is registered.
        """
        try:
            return self._params[name]
        except KeyError as e:
            raise UnknownSiteError("unknown global parameter '{}'".format(name)) from e

    def match(self, name: str) -> Dict[str, torch.Tensor]:
        """
        Get all parameters that match regex. The parameter must exist.

        :param name: regular expression
        :type name: str
        :returns: dict with key param name and value torch Tensor
        """
        pattern = re.compile(name)
        return {name: self[name] for name in self if pattern.match(name)}

    def param_name(self, p: torch.Tensor) -> Optional[str]:
        """
        Get parameter name from parameter

        :param p: unconstrained parameter
        :returns: parameter name
        """
        return self._param_to_name.get(p)

    def snapshot(self, names=None) -> Dict[str, torch.Tensor]:
        """
        Copies the unconstrained values of ``names`` (default all), for use
        with :meth:`restore`.
        """
        names = self._params.keys() if names is None else names
        with torch.no_grad():
            return {name: self._params[name].detach().clone() for name in names}

    def restore(self, snapshot: Dict[str, torch.Tensor]) -> None:
        """
        Writes values from a :meth:`snapshot` back into the existing
        unconstrained tensors in place, so optimizer state keyed by those
        tensors stays valid.
        """
        with self.lock, torch.no_grad():
            for name, value in snapshot.items():
                self._params[name].copy_(value)

    # -------------------------------------------------------------------------------
    # Persistence interface

    def get_state(self) -> StateDict:
        """
        Get the ParamStore state.
        """
        with self.lock:
            params = self._params.copy()
            # Remove weakrefs in preparation for pickling.
            for param in params.values():
                param.__dict__.pop("unconstrained", None)
            return {"params": params, "constraints": self._constraints.copy()}

    def set_state(self, state: StateDict) -> None:
        """
        Set the ParamStore state using state from a previous :meth:`get_state` call
        """
        assert isinstance(state, dict), "malformed ParamStore state"
        assert set(state.keys()) == set(["params", "constraints"]), \
            "malformed ParamStore keys {}".format(state.keys())

        with self.lock:
            for param_name, param in state["params"].items():
                self._params[param_name] = param
                self._param_to_name[param] = param_name

            for param_name, constraint in state["constraints"].items():
                if isinstance(constraint, type(constraints.real)):
                    # Work around lack of hash & equality comparison on constraints.
                    constraint = constraints.real
                self._constraints[param_name] = constraint

    def save(self, filename: str) -> None:
        """
        Save parameters to file

        :param filename: file name to save to
        :type filename: str
        """
        with open(filename, "wb") as output_file:
            torch.save(self.get_state(), output_file)

    def load(self, filename: str, map_location=None) -> None:
        """
        Loads parameters from file

        :param filename: file name to load from
        :type filename: str
        :param map_location: specifies how to remap storage locations
        :type map_location: function, torch.device, string or a dict
        """
        with open(filename, "rb") as input_file:
            state = torch.load(input_file, map_location, weights_only=False)
        self.set_state(state)

    @contextmanager
    def scope(self, state: Optional[StateDict] = None) -> Iterator[StateDict]:
        """
        Context manager for fitting several models with one store while
        avoiding param name conflicts. This is a thin wrapper around
        :meth:`get_state`, :meth:`clear`, and :meth:`set_state`::

            with global_params.scope() as scope1:
                # ...fit one model...
            with global_params.scope(scope1):  # loads the first model's scope
                # ...evaluate the first model...
        """
        if state is None:
            state = {"params": {}, "constraints": {}}
        old_state = self.get_state()
        try:
            self.clear()
            self.set_state(state)
            yield state
            state.update(self.get_state())
        finally:
            self.clear()
            self.set_state(old_state)
