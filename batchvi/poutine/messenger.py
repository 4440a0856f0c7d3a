# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

from functools import partial

from batchvi.poutine.runtime import get_stack


def _context_wrap(context, fn, *args, **kwargs):
    with context:
        return fn(*args, **kwargs)


class _bound_partial(partial):
    """
    Converts a (possibly) bound method into a partial function to
    support class methods as arguments to handlers.
    """
    def __get__(self, instance, owner):
        if instance is None:
            return self
        return partial(self.func, instance)


class Messenger:
    """
    Context manager class that modifies behavior
    and adds side effects to stochastic functions
    i.e. callables containing ``batchvi.sample`` and ``batchvi.param``
    statements.

    This is the base Messenger class. It implements the default behavior for
    all primitives, so that the joint distribution induced by a stochastic
    function fn is identical to the joint distribution induced by
    ``Messenger()(fn)``. Subclasses handle a site of type ``"sample"`` by
    defining ``_process_sample`` and post-process it with ``_postprocess_sample``.
    """

    def __call__(self, fn):
        if not callable(fn):
            raise ValueError(
                "{} is not callable, did you mean to pass it as a keyword arg?".format(fn))
        wraps = _bound_partial(partial(_context_wrap, self, fn))
        return wraps

    def __enter__(self):
        """
        Installs this messenger at the bottom of the stack.

        Derived classes that override this must push themselves onto the
        stack by calling ``super().__enter__()`` and return its result.
        """
        stack = get_stack()
        if self in stack:
            raise ValueError("cannot install a Messenger instance twice")
        stack.append(self)
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        """
        Removes this messenger from the bottom of the stack.
        If an exception is raised, removes this messenger and everything below it.
        """
        stack = get_stack()
        if exc_type is None:
            if stack[-1] == self:
                stack.pop()
            else:
                # should never get here, but just in case...
                raise ValueError("This Messenger is not on the bottom of the stack")
        else:
            # when the enclosed block raises, remove this messenger and
            # everything below it in the stack.
            if self in stack:
                loc = stack.index(self)
                for _ in range(loc, len(stack)):
                    stack.pop()

    def _process_message(self, msg):
        """
        :param msg: current message at a trace site
        :returns: None

        Process the message by calling appropriate method of itself based
        on message type. The message is updated in place.
        """
        method = getattr(self, "_process_{}".format(msg["type"]), None)
        if method is not None:
            return method(msg)
        return None

    def _postprocess_message(self, msg):
        method = getattr(self, "_postprocess_{}".format(msg["type"]), None)
        if method is not None:
            return method(msg)
        return None
