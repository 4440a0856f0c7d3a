# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

import logging
import os
import sys
from contextlib import contextmanager

from tqdm import tqdm


class ProgressBar:
    """
    Initialize a progress bar over outer iterations using :class:`~tqdm.tqdm`.

    :param int total: Number of outer iterations.
    :param str desc: Description shown left of the bar.
    :param int min_width: Minimum column width of the bar.
    :param int max_width: Maximum column width of the bar.
    :param bool disable: Disable progress bar.
    """
    def __init__(self, total, desc="Outer", min_width=80, max_width=120, disable=False):
        # Disable progress bar in "CI"
        # (see https://github.com/travis-ci/travis-ci/issues/1337).
        disable = disable or "CI" in os.environ or "PYTEST_XDIST_WORKER" in os.environ
        bar_format = "{l_bar}{bar}| {n_fmt}/{total_fmt} [{elapsed}, {rate_fmt}{postfix}]"
        pbar = tqdm(total=total, desc=desc, bar_format=bar_format, file=sys.stderr, disable=disable)
        # Assume reasonable values when terminal width not available
        if getattr(pbar, "ncols", None) is not None:
            pbar.ncols = max(min_width, pbar.ncols)
            pbar.ncols = min(max_width, pbar.ncols)
        self.progress_bar = pbar
        self.disable = disable

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    def set_postfix(self, *args, **kwargs):
        if not self.disable:
            self.progress_bar.set_postfix(*args, **kwargs)

    def update(self, *args, **kwargs):
        if not self.disable:
            self.progress_bar.update(*args, **kwargs)

    def close(self):
        self.progress_bar.close()


class TqdmHandler(logging.StreamHandler):
    """
    Handler that synchronizes the log output with the
    :class:`~tqdm.tqdm` progress bar.
    """
    def emit(self, record):
        try:
            msg = self.format(record)
            self.flush()
            tqdm.write(msg, file=sys.stderr)
        except (KeyboardInterrupt, SystemExit):
            raise
        except Exception:
            self.handleError(record)


@contextmanager
def initialize_logger(logger, progress_bar):
    """
    Routes the records of ``logger`` through a :class:`TqdmHandler` while
    ``progress_bar`` is shown, restoring the previous handlers on exit.
    Does nothing if the progress bar is disabled.

    :param logger: logger instance.
    :param ProgressBar progress_bar: the active progress bar.
    """
    if progress_bar.disable:
        yield logger
        return
    handlers, propagate = logger.handlers, logger.propagate
    handler = TqdmHandler()
    handler.setFormatter(logging.Formatter("%(levelname).1s \t %(message)s"))
    logger.handlers = [handler]
    logger.propagate = False
    try:
        yield logger
    finally:
        logger.handlers = handlers
        logger.propagate = propagate
