# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

import math
import numbers
import random
import warnings
from typing import Any, Dict, Iterable, Tuple, Union

import numpy as np
import torch

from batchvi.errors import OptimizationDivergedError


def set_rng_seed(rng_seed: int) -> None:
    """
    Sets seeds of `torch`, `random` and `numpy`.

    :param int rng_seed: The seed value.
    """
    torch.manual_seed(rng_seed)
    random.seed(rng_seed)
    np.random.seed(rng_seed)


def get_rng_state() -> Dict[str, Any]:
    return {
        "torch": torch.get_rng_state(),
        "random": random.getstate(),
        "numpy": np.random.get_state(),
    }


def set_rng_state(state: Dict[str, Any]) -> None:
    torch.set_rng_state(state["torch"])
    random.setstate(state["random"])
    if "numpy" in state:
        np.random.set_state(state["numpy"])


def torch_isnan(x: Union[torch.Tensor, numbers.Number]) -> Union[bool, torch.Tensor]:
    """
    A convenient function to check if a Tensor contains any nan; also works with numbers
    """
    if isinstance(x, numbers.Number):
        return x != x
    return torch.isnan(x).any()


def torch_isinf(x: Union[torch.Tensor, numbers.Number]) -> Union[bool, torch.Tensor]:
    """
    A convenient function to check if a Tensor contains any +inf; also works with numbers
    """
    if isinstance(x, numbers.Number):
        return x == math.inf or x == -math.inf
    return (x == math.inf).any() or (x == -math.inf).any()


def is_finite(x: Union[torch.Tensor, numbers.Number]) -> bool:
    return not (bool(torch_isnan(x)) or bool(torch_isinf(x)))


def check_finite(named_values: Iterable[Tuple[str, Union[torch.Tensor, numbers.Number]]],
                 what: str) -> None:
    """
    Raises :class:`~batchvi.errors.OptimizationDivergedError` naming every
    value that contains a nan or inf.

    :param named_values: iterable of ``(name, value)`` pairs.
    :param str what: description of the values, e.g. ``"gradient"``.
    """
    bad = [name for name, value in named_values if not is_finite(value)]
    if bad:
        raise OptimizationDivergedError(
            "Encountered non-finite {} at: {}".format(what, ", ".join(bad)))


def warn_if_nan(value: Union[torch.Tensor, numbers.Number], msg: str = "") -> Union[torch.Tensor, numbers.Number]:
    """
    A convenient function to warn if a Tensor contains any nan,
    also works with numbers.
    """
    if torch_isnan(value):
        warnings.warn("Encountered NaN{}".format(": " + msg if msg else "."),
                      UserWarning, stacklevel=2)
    return value
