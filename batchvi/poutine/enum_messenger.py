# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

from batchvi.poutine.messenger import Messenger


def enumerate_site(msg):
    dist = msg["fn"]
    if not getattr(dist, "has_enumerate_support", False):
        raise ValueError("site '{}' is marked for enumeration but {} does not support it"
                         .format(msg["name"], type(dist).__name__))
    value = dist.enumerate_support(expand=False)
    assert value.dim() == 1 + len(dist.batch_shape) + len(dist.event_shape)
    return value


class EnumMessenger(Messenger):
    """
    Enumerates in parallel over discrete sample sites marked
    ``infer={"enumerate": "parallel"}``.

    Each enumerated site receives its own dim to the left of all plate dims,
    so that the log probability of every downstream site carries one
    enumeration dim per enumerated upstream site. The allocated dim is
    recorded as ``msg["infer"]["_enumerate_dim"]``.

    :param int first_available_dim: The first tensor dimension (counting
        from the right) that is available for parallel enumeration, usually
        ``-1 - max_plate_nesting``. This should be a negative integer or None.
    """
    def __init__(self, first_available_dim=None):
        assert first_available_dim is None or first_available_dim < 0, first_available_dim
        self.first_available_dim = first_available_dim
        super().__init__()

    def __enter__(self):
        self._next_available_dim = self.first_available_dim
        return super().__enter__()

    def _process_sample(self, msg):
        if msg["done"] or msg["is_observed"] or msg["infer"].get("enumerate") != "parallel":
            return
        if self._next_available_dim is None:
            raise ValueError("max_plate_nesting must be set for parallel enumeration")

        value = enumerate_site(msg)
        actual_dim = -1 - len(msg["fn"].batch_shape)  # the leftmost dim of log_prob
        target_dim = self._next_available_dim
        self._next_available_dim -= 1
        if actual_dim < target_dim:
            raise ValueError("site '{}' has batch_shape {} which does not fit left of dim {}; "
                             "try increasing max_plate_nesting"
                             .format(msg["name"], tuple(msg["fn"].batch_shape), target_dim))
        if target_dim < actual_dim:
            diff = actual_dim - target_dim
            value = value.reshape(value.shape[:1] + (1,) * diff + value.shape[1:])

        msg["infer"]["_enumerate_dim"] = target_dim
        msg["value"] = value
        msg["done"] = True
