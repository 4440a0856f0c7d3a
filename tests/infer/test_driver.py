# Copyright Contributors to the Pyro project.
# SPDX-License-Identifier: Apache-2.0

import logging
import math
import threading

import pytest
import torch

import batchvi
import batchvi.distributions as dist
from batchvi import settings
from batchvi.data import Batch, FunctionDataSource, TensorDataSource
from batchvi.errors import DimensionMismatchError, OptimizationDivergedError, UnknownSiteError
from batchvi.infer import HierarchicalModel, InferenceStep, Mode, SubsamplingDriver, Trace_ELBO
from batchvi.optim import Adam
from batchvi.params import EphemeralLocalStore, LocalParamSpec, ParamStore, PersistentLocalStore
from tests.common import assert_equal

pytestmark = pytest.mark.stage("unit")


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__(logging.DEBUG)
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def driver_log():
    handler = _ListHandler()
    logger = logging.getLogger("batchvi.infer.driver")
    logger.addHandler(handler)
    yield handler.records
    logger.removeHandler(handler)


class _HookedSource(TensorDataSource):
    """
    Calls ``hook(batch_number, batch)`` on every batch and returns its result
    if not None.
    """

    def __init__(self, data, hook):
        super().__init__(data)
        self.hook = hook
        self.num_batches = 0

    def next_batch(self, batch_size):
        batch = super().next_batch(batch_size)
        self.num_batches += 1
        result = self.hook(self.num_batches, batch)
        return batch if result is None else result


class _RecordingStep(InferenceStep):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.initial_states = []
        self._last_local_params = None

    def update(self, mode, subgraph, scales, step_options=None):
        if subgraph.local_params is not self._last_local_params:
            self._last_local_params = subgraph.local_params
            self.initial_states.append(subgraph.local_params.snapshot())
        return super().update(mode, subgraph, scales, step_options)


def _make_driver(hmodel, data_source, local_specs, global_params=None, step=None, **kwargs):
    global_params = ParamStore() if global_params is None else global_params
    step = InferenceStep(Trace_ELBO(), Adam({"lr": 0.05}), Adam({"lr": 0.1})) if step is None else step
    return SubsamplingDriver(hmodel, data_source, global_params, EphemeralLocalStore(local_specs), step,
                             progress_bar=kwargs.pop("progress_bar", False), **kwargs)


def test_run(hmodel, data_source, local_specs):
    driver = _make_driver(hmodel, data_source, local_specs)
    losses = driver.run(5, 3, 10)

    assert len(losses) == 5
    assert all(isinstance(loss, float) and math.isfinite(loss) for loss in losses)
    assert set(driver.global_params.keys()) == {"loc_q"}
    assert not driver.local_store.active
    assert len(driver.step.local_optim) == 0
    assert len(driver.step.global_optim) == 1


def test_zero_local_iterations(hmodel, data_source, local_specs):
    driver = _make_driver(hmodel, data_source, local_specs)
    assert len(driver.run(3, 0, 10)) == 3
    assert len(driver.step.local_optim) == 0


def test_global_params_move_toward_data_mean(hmodel, data_source, local_specs):
    global_params = ParamStore()
    step = InferenceStep(Trace_ELBO(), Adam({"lr": 0.05}), Adam({"lr": 0.1}))
    driver = SubsamplingDriver(hmodel, data_source, global_params, PersistentLocalStore(local_specs, 100), step,
                               progress_bar=False)
    driver.run(200, 5, 20)
    # posterior mean of loc given x_n ~ N(loc, 2) is close to the data mean
    assert (driver.global_params["loc_q"] - data_source.data.mean()).abs() < 1.


@pytest.mark.parametrize("batch_size", [0, 101])
def test_invalid_batch_size(hmodel, data_source, local_specs, batch_size):
    driver = _make_driver(hmodel, data_source, local_specs)
    with pytest.raises(ValueError):
        driver.run(1, 1, batch_size)


@pytest.mark.parametrize("num_outer_iters,local_iters_per_outer", [(-1, 1), (1, -1)])
def test_invalid_iteration_counts(hmodel, data_source, local_specs, num_outer_iters, local_iters_per_outer):
    driver = _make_driver(hmodel, data_source, local_specs)
    with pytest.raises(ValueError):
        driver.run(num_outer_iters, local_iters_per_outer, 10)


def test_size_mismatch(make_hmodel, data_source, local_specs):
    with pytest.raises(ValueError, match="size"):
        _make_driver(make_hmodel(50), data_source, local_specs)


def test_stop_event(hmodel, local_specs, driver_log):
    stop_event = threading.Event()

    def stop_after_two(num_batches, batch):
        if num_batches == 2:
            stop_event.set()

    data_source = _HookedSource(torch.randn(100), stop_after_two)
    driver = _make_driver(hmodel, data_source, local_specs)
    losses = driver.run(10, 1, 10, stop_event=stop_event)

    assert len(losses) == 2
    assert any("Stopped after 2 of 10" in r.getMessage() for r in driver_log)
    assert driver.run(10, 1, 10, stop_event=stop_event) == []


@pytest.mark.parametrize("local_iters_per_outer,mode", [(2, Mode.LOCAL), (0, Mode.GLOBAL)])
def test_divergence_aborts_run(hmodel, local_specs, driver_log, local_iters_per_outer, mode):
    global_params = ParamStore()
    snapshots = []

    def poison_third(num_batches, batch):
        if num_batches == 3:
            snapshots.append(global_params.snapshot())
            return Batch(batch.indices, torch.full_like(batch.values, float("inf")))

    data_source = _HookedSource(3. + torch.randn(100), poison_third)
    driver = _make_driver(hmodel, data_source, local_specs, global_params=global_params)
    with pytest.raises(OptimizationDivergedError) as e:
        driver.run(10, local_iters_per_outer, 10)

    assert e.value.iteration == 3
    assert e.value.mode is mode
    assert "outer iteration 3, {} step".format(mode.name) in str(e.value)
    assert_equal(global_params.snapshot(), snapshots[0])
    assert not driver.local_store.active
    assert len(driver.step.local_optim) == 0
    errors = [r for r in driver_log if r.levelno == logging.ERROR]
    assert len(errors) == 1
    assert "OptimizationDivergedError" in errors[0].getMessage()


def test_nan_gradient_aborts_run(data_source, driver_log):
    def model(data):
        loc = batchvi.sample("loc", dist.Normal(0., 10.))
        with batchvi.plate("data", 100):
            batchvi.sample("obs", dist.Normal(loc, 1.), obs=data)

    # the gradient of sqrt(|x|) at x = 0 is nan
    def guide(data):
        loc_q = batchvi.param("loc_q", lambda: torch.tensor(0.))
        batchvi.sample("loc", dist.Delta(loc_q.abs().sqrt()))

    global_params = ParamStore()
    driver = _make_driver(HierarchicalModel(model, guide, 100), data_source, {}, global_params=global_params)
    with pytest.raises(OptimizationDivergedError, match="non-finite gradient at: loc_q") as e:
        driver.run(5, 0, 10)
    assert e.value.iteration == 1
    assert e.value.mode is Mode.GLOBAL
    assert_equal(global_params["loc_q"].detach(), torch.tensor(0.))
    assert any(r.levelno == logging.ERROR for r in driver_log)


def test_missing_plate(data_source):
    def model(data):
        loc = batchvi.sample("loc", dist.Normal(0., 10.))
        batchvi.sample("obs", dist.Independent(dist.Normal(loc.expand(data.shape), 1.), 1), obs=data)

    def guide(data):
        batchvi.sample("loc", dist.Delta(batchvi.param("loc_q", lambda: torch.tensor(0.))))

    driver = _make_driver(HierarchicalModel(model, guide, 100), data_source, {})
    with pytest.raises(UnknownSiteError, match="plate 'data'") as e:
        driver.run(2, 1, 10)
    assert e.value.iteration == 1
    assert e.value.mode is None
    assert str(e.value).endswith("(outer iteration 1)")


def test_out_of_range_indices_abort_run(hmodel, local_specs, driver_log):
    def shift_second(num_batches, batch):
        if num_batches == 2:
            return Batch(batch.indices + 100, batch.values)

    data_source = _HookedSource(torch.randn(100), shift_second)
    driver = _make_driver(hmodel, data_source, local_specs)
    with pytest.raises(DimensionMismatchError, match="must lie in") as e:
        driver.run(5, 1, 10)
    assert e.value.iteration == 2
    assert e.value.mode is None
    assert not driver.local_store.active
    errors = [r.getMessage() for r in driver_log if r.levelno == logging.ERROR]
    assert len(errors) == 1
    assert "DimensionMismatchError" in errors[0]
    assert "(outer iteration 2)" in errors[0]


class _FailingStep(InferenceStep):
    def update(self, mode, subgraph, scales, step_options=None):
        if mode is Mode.GLOBAL:
            raise RuntimeError("backend failure")
        return super().update(mode, subgraph, scales, step_options)


def test_foreign_error_is_logged_with_context(hmodel, data_source, local_specs, driver_log):
    step = _FailingStep(Trace_ELBO(), Adam({"lr": 0.05}), Adam({"lr": 0.1}))
    driver = _make_driver(hmodel, data_source, local_specs, step=step)
    with pytest.raises(RuntimeError, match="backend failure"):
        driver.run(3, 2, 10)
    assert not driver.local_store.active
    assert len(step.local_optim) == 0
    errors = [r.getMessage() for r in driver_log if r.levelno == logging.ERROR]
    assert errors == ["Subsampled inference aborted: RuntimeError: backend failure (outer iteration 1, GLOBAL step)"]


def test_log_every(hmodel, data_source, local_specs, driver_log):
    driver = _make_driver(hmodel, data_source, local_specs)
    with settings.context(driver_log_every=2):
        driver.run(5, 1, 10)
    messages = [r.getMessage() for r in driver_log if r.levelno == logging.INFO]
    assert [m.split("]")[0] for m in messages] == [
        "[outer iteration 0002",
        "[outer iteration 0004",
        "[outer iteration 0005",
    ]


def test_progress_bar(hmodel, data_source, local_specs):
    logger = logging.getLogger("batchvi.infer.driver")
    handlers, propagate = list(logger.handlers), logger.propagate
    with settings.context(driver_progress_bar=True):
        driver = SubsamplingDriver(hmodel, data_source, ParamStore(), EphemeralLocalStore(local_specs),
                                   InferenceStep(Trace_ELBO(), Adam({"lr": 0.05})))
        assert driver.progress_bar
        assert len(driver.run(3, 1, 10)) == 3
    assert logger.handlers == handlers
    assert logger.propagate == propagate


def test_first_local_state_is_default(hmodel, data_source, local_specs):
    step = _RecordingStep(Trace_ELBO(), Adam({"lr": 0.05}), Adam({"lr": 0.5}))
    driver = _make_driver(hmodel, data_source, local_specs, step=step)
    driver.run(4, 3, 10)

    assert len(step.initial_states) == 4
    for state in step.initial_states:
        assert_equal(state["z_loc"], torch.zeros(10))
        # z_scale is stored unconstrained, log(1.) == 0.
        assert_equal(state["z_scale"], torch.zeros(10))


def test_drivers_share_global_params(make_hmodel, local_specs):
    global_params = ParamStore()
    hmodel = make_hmodel(100)
    drivers = [_make_driver(hmodel, TensorDataSource(3. + torch.randn(100)), local_specs,
                            global_params=global_params)
               for _ in range(2)]
    errors = []

    def run(driver):
        try:
            driver.run(20, 2, 10)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=run, args=(driver,)) for driver in drivers]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert not errors
    assert set(global_params.keys()) == {"loc_q"}
    assert torch.isfinite(global_params["loc_q"]).all()
    assert len(drivers[0].step.global_optim) == 1
    assert len(drivers[1].step.global_optim) == 1


def _squared_weights_model(size, dim):
    # w_q is saved by autograd for the backward pass of w_q * w_q
    def model(data):
        w = batchvi.sample("w", dist.Independent(dist.Normal(torch.zeros(dim, dim), 1.), 2))
        with batchvi.plate("data", size):
            z = batchvi.sample("z", dist.Normal(0., 1.))
            batchvi.sample("obs", dist.Independent(dist.Normal(w.sum(-1) + z.unsqueeze(-1), 1.), 1), obs=data)

    def guide(data):
        w_q = batchvi.param("w_q", lambda: torch.full((dim, dim), 0.1))
        batchvi.sample("w", dist.Delta(w_q * w_q, event_dim=2))
        with batchvi.plate("data", size):
            batchvi.sample("z", dist.Normal(batchvi.param("z_loc"), batchvi.param("z_scale")))

    return HierarchicalModel(model, guide, size)


@pytest.mark.parametrize("num_local_iters", [0, 1])
def test_drivers_share_saved_global_leaf(local_specs, num_local_iters):
    size, dim = 100, 8
    global_params = ParamStore()
    hmodel = _squared_weights_model(size, dim)
    drivers = [_make_driver(hmodel, TensorDataSource(torch.randn(size, dim)), local_specs,
                            global_params=global_params)
               for _ in range(4)]
    errors = []

    def run(driver):
        try:
            driver.run(100, num_local_iters, 10)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=run, args=(driver,)) for driver in drivers]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert not errors
    assert set(global_params.keys()) == {"w_q"}
    assert global_params["w_q"].shape == (dim, dim)
    assert torch.isfinite(global_params["w_q"]).all()


def _circle(num_components, radius):
    angles = torch.arange(num_components) * 2 * math.pi / num_components
    return radius * torch.stack([angles.cos(), angles.sin()], -1)


def _nearest_distance(locs, true_locs):
    return (locs.unsqueeze(-2) - true_locs).norm(dim=-1).min(-1)[0].mean()


@pytest.mark.stage("integration")
@pytest.mark.init(rng_seed=0)
def test_gaussian_mixture_recovers_means():
    size, num_components, dim = 10000000, 5, 2
    true_locs = _circle(num_components, 10.)

    def model(data):
        locs = batchvi.sample("locs", dist.Independent(dist.Normal(torch.zeros(num_components, dim), 10.), 2))
        with batchvi.plate("data", size):
            z = batchvi.sample("z", dist.Categorical(logits=torch.zeros(num_components)))
            batchvi.sample("obs", dist.Independent(dist.Normal(locs[z], 1.), 1), obs=data)

    def guide(data):
        loc_q = batchvi.param("loc_q", lambda: torch.randn(num_components, dim))
        batchvi.sample("locs", dist.Delta(loc_q, event_dim=2))
        with batchvi.plate("data", size):
            batchvi.sample("z", dist.Categorical(logits=batchvi.param("assignment_logits")),
                           infer={"enumerate": "parallel"})

    data_source = FunctionDataSource(size, lambda idx: true_locs[idx % num_components] + torch.randn(len(idx), dim))
    global_params = ParamStore()
    local_store = EphemeralLocalStore({"assignment_logits": LocalParamSpec((num_components,))})
    step = InferenceStep(Trace_ELBO(), Adam({"lr": 0.05}), Adam({"lr": 0.5}))
    driver = SubsamplingDriver(HierarchicalModel(model, guide, size), data_source, global_params,
                               local_store, step, progress_bar=False)

    global_params["loc_q"] = torch.randn(num_components, dim)
    initial_distance = _nearest_distance(global_params["loc_q"].detach(), true_locs)
    losses = driver.run(1000, 10, 128)

    assert len(losses) == 1000
    assert all(math.isfinite(loss) for loss in losses)
    final_distance = _nearest_distance(global_params["loc_q"].detach(), true_locs)
    assert final_distance < 0.5 * initial_distance
