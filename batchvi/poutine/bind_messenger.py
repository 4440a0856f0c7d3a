# Copyright Contributors to the Pyro project.
# SPDX-License-Identifier: Apache-2.0

from batchvi.errors import UnknownSiteError
from batchvi.poutine.messenger import Messenger


class BindParamsMessenger(Messenger):
    """
    Resolves ``batchvi.param`` statements against explicitly passed stores
    instead of a process-wide registry.

    A name registered in ``local_params`` resolves to the constrained local
    value of the active batch. Any other name resolves to ``global_params``,
    which creates the parameter from the statement's initializer the first
    time it is seen. A name found in neither store and declared without an
    initializer raises :class:`~batchvi.errors.UnknownSiteError`.

        >>> store = ParamStore()
        >>> def guide():
        ...     return batchvi.param("loc", torch.zeros(2))
        >>> batchvi.poutine.bind_params(guide, global_params=store)()
        tensor([0., 0.], requires_grad=True)

    :param fn: a stochastic function (callable containing primitive calls)
    :param global_params: a :class:`~batchvi.params.ParamStore`.
    :param local_params: an optional :class:`~batchvi.params.LocalParams`.
    """

    def __init__(self, global_params, local_params=None):
        super().__init__()
        self.global_params = global_params
        self.local_params = local_params

    def _process_param(self, msg):
        name = msg["name"]
        init_tensor, constraint = msg["args"]
        if self.local_params is not None and name in self.local_params:
            msg["value"] = self.local_params[name]
            msg["infer"]["local"] = True
        elif init_tensor is not None:
            msg["value"] = self.global_params.setdefault(name, init_tensor, constraint)
        elif name in self.global_params:
            msg["value"] = self.global_params[name]
        else:
            raise UnknownSiteError("param '{}' is neither a local parameter of the batch "
                                   "nor a registered global parameter".format(name))
        msg["done"] = True
