# Copyright Contributors to the Pyro project.
# SPDX-License-Identifier: Apache-2.0

"""
Example usage::

    # Simple getting and setting.
    print(batchvi.settings.get())  # print all settings
    print(batchvi.settings.get("driver_log_every"))  # print one
    batchvi.settings.set(driver_log_every=10)  # set one
    batchvi.settings.set(**my_settings)  # set many

    # Use as a contextmanager.
    with batchvi.settings.context(driver_progress_bar=False):
        driver.run(1000, 10, 128)

    # Use as a decorator.
    fn = batchvi.settings.context(driver_progress_bar=False)(my_function)
    fn()

    # Register a new setting on a user-provided validator.
    @batchvi.settings.register(
        "driver_log_every",              # alias
        "batchvi.infer.driver",          # module
        "SubsamplingDriver.log_every",   # deep name
    )
    def _validate_log_every(value):  # called each time setting is set
        assert isinstance(value, int)
        assert value > 0

Default Settings
----------------

{defaults}

Settings Interface
------------------
"""

# This module must have no dependencies on other batchvi modules.
import functools
from contextlib import contextmanager
from importlib import import_module
from typing import Any, Callable, Dict, Iterator, Optional, Tuple

_doc_template = __doc__

# Maps alias -> (modulename, deepname, validator), where deepname may contain
# dots to address class attributes.
_REGISTRY: Dict[str, Tuple[str, str, Optional[Callable]]] = {}


def _resolve(module: str, deepname: str) -> Tuple[Any, str]:
    destin = import_module(module)
    names = deepname.split(".")
    for name in names[:-1]:
        destin = getattr(destin, name)
    return destin, names[-1]


def get(alias: Optional[str] = None) -> Any:
    """
    Gets one or all global settings.

    :param str alias: The name of a registered setting.
    :returns: The currently set value.
    """
    if alias is None:
        return {alias: get(alias) for alias in sorted(_REGISTRY)}
    module, deepname, _ = _REGISTRY[alias]
    destin, name = _resolve(module, deepname)
    return getattr(destin, name)


def set(**kwargs) -> None:
    r"""
    Sets one or more settings. Each value is checked by the setting's
    validator before any attribute is written.

    :param \*\*kwargs: alias=value pairs.
    """
    for alias, value in kwargs.items():
        module, deepname, validator = _REGISTRY[alias]
        if validator is not None:
            validator(value)
        destin, name = _resolve(module, deepname)
        setattr(destin, name, value)


@contextmanager
def context(**kwargs) -> Iterator[None]:
    r"""
    Context manager to temporarily override one or more settings. This also
    works as a decorator.

    :param \*\*kwargs: alias=value pairs.
    """
    old = {alias: get(alias) for alias in kwargs}
    try:
        set(**kwargs)
        yield
    finally:
        set(**old)


def register(
    alias: str,
    modulename: str,
    deepname: str,
    validator: Optional[Callable] = None,
) -> Callable:
    """
    Register a global setting. This should be declared in the module where
    the setting is defined, either as a declaration::

        settings.register("my_setting", __name__, "MY_SETTING")

    or as a decorator on a validator function::

        @settings.register("my_setting", __name__, "MY_SETTING")
        def _validate_my_setting(value):
            assert isinstance(value, float)
            assert 0 < value

    :param str alias: A valid python identifier serving as a settings alias.
    :param str modulename: The module name where the setting is declared,
        typically ``__name__``.
    :param str deepname: A ``.``-separated string of names, e.g.
        ``MY_CONSTANT`` or ``MyClass.my_attribute``.
    :param callable validator: Optional validator that inputs a value,
        possibly raises validation errors, and returns None.
    """
    global __doc__
    assert isinstance(alias, str)
    assert alias.isidentifier()
    assert isinstance(modulename, str)
    assert isinstance(deepname, str)
    _REGISTRY[alias] = modulename, deepname, validator

    __doc__ = _doc_template.format(
        defaults="\n".join(f"- {a} = {get(a)}" for a in sorted(_REGISTRY))
    )

    if validator is None:
        return functools.partial(register, alias, modulename, deepname)
    else:
        validator(get(alias))
        return validator
