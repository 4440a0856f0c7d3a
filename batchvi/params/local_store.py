# Copyright Contributors to the Pyro project.
# SPDX-License-Identifier: Apache-2.0

"""
Local variational parameters, one set per data index of the active batch.

A :class:`LocalFactorStore` hands out a :class:`LocalParams` for the indices
of one batch via :meth:`~LocalFactorStore.allocate` and takes it back via
:meth:`~LocalFactorStore.reset`. The footprint of a :class:`LocalParams` is
``batch_size * sum(prod(event_shape))`` elements, independent of the dataset
size and of the number of batches processed.
"""
import weakref
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, NamedTuple, Optional, Tuple, Union

import torch
from torch.distributions import constraints, transform_to

from batchvi.errors import DimensionMismatchError, NoActiveBatchError, UnknownSiteError


class LocalParamSpec(NamedTuple):
    """
    Declaration of a local parameter.

    :param tuple event_shape: the per-index shape of the parameter.
    :param init: constrained initial value, either a number, a tensor of
        shape ``event_shape``, or a callable mapping a full shape
        ``(batch_size,) + event_shape`` to a tensor.
    :param constraint: torch constraint, defaults to ``constraints.real``.
    """
    event_shape: Tuple[int, ...] = ()
    init: Union[float, torch.Tensor, Callable[[torch.Size], torch.Tensor]] = 0.
    constraint: constraints.Constraint = constraints.real

    def initial_value(self, batch_size: int) -> torch.Tensor:
        """
        :returns: the default *unconstrained* value for ``batch_size`` indices.
        """
        shape = torch.Size((batch_size,) + tuple(self.event_shape))
        if callable(self.init):
            value = self.init(shape)
        elif isinstance(self.init, torch.Tensor):
            value = self.init.expand(shape)
        else:
            value = torch.full(shape, float(self.init))
        if value.shape != shape:
            raise ValueError("local parameter init produced shape {}, expected {}".format(
                tuple(value.shape), tuple(shape)))
        with torch.no_grad():
            return transform_to(self.constraint).inv(value).detach().clone().contiguous()


def _as_indices(indices) -> torch.Tensor:
    indices = torch.as_tensor(indices, dtype=torch.long)
    if indices.dim() != 1:
        raise DimensionMismatchError("batch indices must be one dimensional, got shape {}".format(
            tuple(indices.shape)))
    return indices


class LocalParams:
    """
    Live local parameters of one batch. Values are stored unconstrained, as
    leaf tensors of shape ``(batch_size,) + event_shape`` that local
    inference steps update in place; indexing returns constrained values.

    :param torch.LongTensor indices: the batch indices.
    :param dict specs: map from parameter name to :class:`LocalParamSpec`.
    :param dict values: map from parameter name to unconstrained tensor.
    """

    def __init__(self, indices: torch.Tensor, specs: Dict[str, LocalParamSpec],
                 values: Dict[str, torch.Tensor]) -> None:
        self.indices = indices
        self.specs = specs
        self.unconstrained: Dict[str, torch.Tensor] = {}
        for name, value in values.items():
            if value.shape[:1] != indices.shape:
                raise DimensionMismatchError("local parameter '{}' has leading dim {} but the batch has {} indices"
                                             .format(name, value.size(0), indices.size(0)))
            self.unconstrained[name] = value.requires_grad_(True)

    @property
    def batch_size(self) -> int:
        return self.indices.size(0)

    def __contains__(self, name: str) -> bool:
        return name in self.unconstrained

    def __iter__(self) -> Iterator[str]:
        return iter(self.unconstrained)

    def __len__(self) -> int:
        return len(self.unconstrained)

    def keys(self):
        return self.unconstrained.keys()

    def __getitem__(self, name: str) -> torch.Tensor:
        """
        Get the *constrained* value of a named local parameter.
        """
        try:
            unconstrained_value = self.unconstrained[name]
        except KeyError as e:
            raise UnknownSiteError("unknown local parameter '{}'".format(name)) from e
        constrained_value = transform_to(self.specs[name].constraint)(unconstrained_value)
        constrained_value.unconstrained = weakref.ref(unconstrained_value)
        return constrained_value

    def items(self) -> Iterator[Tuple[str, torch.Tensor]]:
        for name in self.unconstrained:
            yield name, self[name]

    def numel(self) -> int:
        """
        :returns: the total number of parameter elements held for this batch.
        """
        return sum(value.numel() for value in self.unconstrained.values())

    def snapshot(self) -> Dict[str, torch.Tensor]:
        with torch.no_grad():
            return {name: value.detach().clone() for name, value in self.unconstrained.items()}

    def restore(self, snapshot: Dict[str, torch.Tensor]) -> None:
        with torch.no_grad():
            for name, value in snapshot.items():
                self.unconstrained[name].copy_(value)


class LocalFactorStore(ABC):
    """
    Abstract owner of the local parameters of the active batch.

    Example::

        store = EphemeralLocalStore({"assignment_logits": LocalParamSpec((5,))})
        with store.scope(batch.indices) as local_params:
            ...  # refine local_params, then update the globals
        store.current()  # raises NoActiveBatchError

    :param dict specs: map from local parameter name to :class:`LocalParamSpec`.
    """

    def __init__(self, specs: Dict[str, LocalParamSpec]) -> None:
        self.specs = dict(specs)
        self._current: Optional[LocalParams] = None

    @property
    def active(self) -> bool:
        return self._current is not None

    def allocate(self, indices) -> LocalParams:
        """
        Creates the local parameters of a new batch.

        :param indices: the batch indices, a sequence or 1-d tensor of ints.
        :raises RuntimeError: if a batch is already active.
        """
        if self._current is not None:
            raise RuntimeError("cannot allocate local parameters while a batch is active; call reset() first")
        indices = _as_indices(indices)
        self._current = LocalParams(indices, self.specs, self._initialize(indices))
        return self._current

    def current(self) -> LocalParams:
        """
        :returns: the live local parameters.
        :raises NoActiveBatchError: if no batch is allocated.
        """
        if self._current is None:
            raise NoActiveBatchError("no active batch; call allocate() first")
        return self._current

    def reset(self) -> None:
        """
        Discards the current local parameters. Safe to call when no batch is
        active.
        """
        local_params, self._current = self._current, None
        if local_params is not None:
            self._release(local_params)

    @contextmanager
    def scope(self, indices) -> Iterator[LocalParams]:
        """
        Allocates local parameters for ``indices`` and resets them on every
        exit path, including exceptions.
        """
        local_params = self.allocate(indices)
        try:
            yield local_params
        finally:
            self.reset()

    @abstractmethod
    def _initialize(self, indices: torch.Tensor) -> Dict[str, torch.Tensor]:
        raise NotImplementedError

    def _release(self, local_params: LocalParams) -> None:
        pass


class EphemeralLocalStore(LocalFactorStore):
    """
    Local store that initializes every batch from the defaults of its
    specs, regardless of values refined for earlier batches. This is the
    store of classic stochastic variational inference, where local factors
    are re-derived for each minibatch.
    """

    def _initialize(self, indices):
        return {name: spec.initial_value(indices.size(0)) for name, spec in self.specs.items()}


class PersistentLocalStore(LocalFactorStore):
    """
    Local store that keeps a dense unconstrained array of length ``size``
    per local parameter. :meth:`allocate` gathers the rows of the batch and
    :meth:`reset` scatters the refined rows back, so that a data index
    revisited in a later batch resumes from its last refined value. When a
    batch contains an index more than once, the last occurrence wins.

    :param dict specs: map from local parameter name to :class:`LocalParamSpec`.
    :param int size: the dataset size.
    """

    def __init__(self, specs: Dict[str, LocalParamSpec], size: int) -> None:
        super().__init__(specs)
        if size <= 0:
            raise ValueError("Expected size > 0 but got {}".format(size))
        self.size = size
        self._dense = {name: spec.initial_value(size) for name, spec in self.specs.items()}

    def _initialize(self, indices):
        if indices.numel() and (indices.min() < 0 or indices.max() >= self.size):
            raise IndexError("batch indices must lie in [0, {})".format(self.size))
        return {name: dense.index_select(0, indices).clone() for name, dense in self._dense.items()}

    def _release(self, local_params):
        indices = local_params.indices
        if not indices.numel():
            return
        unique, inverse = torch.unique(indices, return_inverse=True)
        position = torch.arange(indices.size(0))
        last = torch.full_like(unique, -1).scatter_reduce(0, inverse, position, reduce="amax")
        with torch.no_grad():
            for name, value in local_params.unconstrained.items():
                self._dense[name][unique] = value.detach()[last]

    def dense(self, name: str) -> torch.Tensor:
        """
        :returns: the constrained dense values of local parameter ``name``.
        """
        return transform_to(self.specs[name].constraint)(self._dense[name])
