# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

from batchvi.poutine.messenger import Messenger
from batchvi.util import get_rng_state, set_rng_seed, set_rng_state


class SeedMessenger(Messenger):
    """
    Handler to set the random number generator to a pre-defined state by
    setting its seed. This is the same as calling
    :func:`batchvi.set_rng_seed` before the call to `fn`; the previous state
    is restored on exit.

    :param fn: a stochastic function (callable containing primitive calls).
    :param int rng_seed: rng seed.
    """

    def __init__(self, rng_seed):
        assert isinstance(rng_seed, int)
        self.rng_seed = rng_seed
        super().__init__()

    def __enter__(self):
        self.old_state = get_rng_state()
        set_rng_seed(self.rng_seed)
        return super().__enter__()

    def __exit__(self, exc_type, exc_value, traceback):
        set_rng_state(self.old_state)
        return super().__exit__(exc_type, exc_value, traceback)
