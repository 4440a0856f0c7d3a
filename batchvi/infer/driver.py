# Copyright Contributors to the Pyro project.
# SPDX-License-Identifier: Apache-2.0

import logging
from typing import List

from batchvi import settings
from batchvi.errors import InferenceError, format_context
from batchvi.infer.logger import ProgressBar, initialize_logger
from batchvi.infer.step import Mode
from batchvi.infer.subgraph import SubgraphBinder

logger = logging.getLogger(__name__)


class SubsamplingDriver:
    """
    Stochastic variational inference over minibatches of a global/local
    model. Each outer iteration

    1. draws a batch of ``batch_size`` indices and observations,
    2. allocates fresh local parameters for the batch,
    3. binds the model to the batch,
    4. takes ``local_iters_per_outer`` local steps,
    5. takes one global step,
    6. releases the local parameters.

        >>> hmodel = HierarchicalModel(model, guide, size=len(data_source))
        >>> step = InferenceStep(Trace_ELBO(), Adam({"lr": 0.05}), Adam({"lr": 0.5}))
        >>> driver = SubsamplingDriver(hmodel, data_source, ParamStore(), local_store, step)
        >>> losses = driver.run(1000, 10, 128)  # doctest: +SKIP

    :param hierarchical_model: a :class:`~batchvi.infer.subgraph.HierarchicalModel`.
    :param data_source: a :class:`~batchvi.data.DataSource` of the same size.
    :param global_params: the :class:`~batchvi.params.ParamStore` of global
        parameters, owned by the caller and updated in place.
    :param local_store: a :class:`~batchvi.params.LocalFactorStore`.
    :param step: an :class:`~batchvi.infer.step.InferenceStep`.
    :param binder: optional :class:`~batchvi.infer.subgraph.SubgraphBinder`.
    :param bool progress_bar: whether to show a progress bar. Defaults to
        the ``driver_progress_bar`` setting.
    """

    log_every = 100
    progress_bar = True

    def __init__(self, hierarchical_model, data_source, global_params, local_store, step,
                 binder=None, progress_bar=None):
        if len(data_source) != hierarchical_model.size:
            raise ValueError("data source has {} items but the model was declared with size {}".format(
                len(data_source), hierarchical_model.size))
        self.hierarchical_model = hierarchical_model
        self.data_source = data_source
        self.global_params = global_params
        self.local_store = local_store
        self.step = step
        self.binder = SubgraphBinder() if binder is None else binder
        if progress_bar is not None:
            self.progress_bar = progress_bar

    def run(self, num_outer_iters, local_iters_per_outer, batch_size, stop_event=None) -> List[float]:
        """
        :param int num_outer_iters: number of outer iterations.
        :param int local_iters_per_outer: number of local steps per outer
            iteration.
        :param int batch_size: the batch size ``M``.
        :param threading.Event stop_event: optional event that stops the run
            before the next outer iteration once set.
        :returns: the loss of every global step.
        :rtype: list
        :raises ValueError: if ``batch_size`` exceeds the dataset size.
        :raises InferenceError: annotated with the failing iteration and mode.
            Other exceptions propagate unchanged after being logged with
            the same context.
        """
        if num_outer_iters < 0:
            raise ValueError("Expected num_outer_iters >= 0 but got {}".format(num_outer_iters))
        if local_iters_per_outer < 0:
            raise ValueError("Expected local_iters_per_outer >= 0 but got {}".format(local_iters_per_outer))
        if not 0 < batch_size <= self.hierarchical_model.size:
            raise ValueError("Expected 0 < batch_size <= {} but got {}".format(
                self.hierarchical_model.size, batch_size))

        losses = []
        with ProgressBar(num_outer_iters, disable=not self.progress_bar) as pbar, \
                initialize_logger(logger, pbar):
            for t in range(1, num_outer_iters + 1):
                if stop_event is not None and stop_event.is_set():
                    logger.info("Stopped after {} of {} outer iterations".format(t - 1, num_outer_iters))
                    break
                loss = self._outer_iteration(t, local_iters_per_outer, batch_size)
                losses.append(loss)
                if t % self.log_every == 0 or t == num_outer_iters:
                    logger.info("[outer iteration {:04d}] loss: {:.4f}".format(t, loss))
                pbar.set_postfix(loss="{:.4g}".format(loss), refresh=False)
                pbar.update()
        return losses

    def _outer_iteration(self, t, local_iters_per_outer, batch_size):
        mode = None
        try:
            batch = self.data_source.next_batch(batch_size)
            with self.local_store.scope(batch.indices) as local_params:
                try:
                    subgraph = self.binder.bind(self.hierarchical_model, batch, self.global_params, local_params)
                    scales = subgraph.scale_table()
                    mode = Mode.LOCAL
                    for _ in range(local_iters_per_outer):
                        subgraph = self.binder.bind(self.hierarchical_model, batch, self.global_params,
                                                    self.local_store.current())
                        self.step.update(Mode.LOCAL, subgraph, scales)
                    mode = Mode.GLOBAL
                    updated = self.step.update(Mode.GLOBAL, subgraph, scales)
                finally:
                    self.step.forget_local()
        except InferenceError as e:
            e.add_context(t, mode)
            logger.error("Subsampled inference aborted: {}: {}".format(type(e).__name__, e))
            raise
        except Exception as e:
            logger.error("Subsampled inference aborted: {}: {} ({})".format(
                type(e).__name__, e, format_context(t, mode)))
            raise
        return updated.loss


@settings.register("driver_log_every", __name__, "SubsamplingDriver.log_every")
def _validate_log_every(value):
    assert isinstance(value, int) and not isinstance(value, bool), "driver_log_every must be an int"
    assert value > 0, "driver_log_every must be positive"


@settings.register("driver_progress_bar", __name__, "SubsamplingDriver.progress_bar")
def _validate_progress_bar(value):
    assert isinstance(value, bool), "driver_progress_bar must be a bool"
