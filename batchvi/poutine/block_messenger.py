# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

from batchvi.poutine.messenger import Messenger


class BlockMessenger(Messenger):
    """
    Hides sites from the handlers outside of it. With no arguments every
    site is hidden, which makes dry runs of a model invisible to enclosing
    handlers::

        >>> with poutine.block(), torch.no_grad():
        ...     trace = poutine.trace(model).get_trace(data)  # doctest: +SKIP

    :param hide_fn: optional predicate on a site; hides the site when true.
    :param list hide: optional site names to hide; other sites stay visible.
    """

    def __init__(self, hide_fn=None, hide=None):
        super().__init__()
        if hide_fn is not None and hide is not None:
            raise ValueError("Only specify one of hide_fn or hide")
        if hide_fn is not None:
            self.hide_fn = hide_fn
        elif hide is not None:
            hide = frozenset(hide)
            self.hide_fn = lambda msg: msg["name"] in hide
        else:
            self.hide_fn = lambda msg: True

    def _process_message(self, msg):
        msg["stop"] = bool(self.hide_fn(msg))
