# Copyright (c) 2017-2019 Uber Technologies, Inc.
# SPDX-License-Identifier: Apache-2.0

import pytest
import torch

import batchvi
import batchvi.distributions as dist
import batchvi.poutine as poutine
from batchvi.errors import UnknownSiteError
from batchvi.params import LocalParamSpec, EphemeralLocalStore, ParamStore
from batchvi.poutine.runtime import get_stack
from batchvi.poutine.util import prune_subsample_sites
from tests.common import assert_close, assert_equal

pytestmark = pytest.mark.stage("unit")


def model(data):
    loc = batchvi.sample("loc", dist.Normal(0., 10.))
    with batchvi.plate("data", 100, subsample_size=data.size(0)) as ind:
        batchvi.sample("obs", dist.Normal(loc, 1.), obs=data)
    return ind


def test_trace_records_sites():
    data = torch.randn(10)
    tr = poutine.trace(model).get_trace(data)
    assert "loc" in tr
    assert tr.stochastic_nodes == ["loc"]
    assert tr.observation_nodes == ["obs"]
    assert tr.nodes["obs"]["scale"] == 10.
    assert tr.nodes["loc"]["scale"] == 1.
    assert tr.nodes["obs"]["cond_indep_stack"][0].name == "data"
    assert tr.nodes["obs"]["cond_indep_stack"][0].full_size == 100
    assert "data" not in prune_subsample_sites(tr)
    assert not get_stack()


@pytest.mark.init(rng_seed=0)
def test_log_prob_is_scaled():
    data = torch.randn(10)
    tr = poutine.trace(model).get_trace(data)
    tr.compute_log_prob()
    site = tr.nodes["obs"]
    assert_equal(site["log_prob"], 10. * site["unscaled_log_prob"])
    expected = dist.Normal(tr.nodes["loc"]["value"], 1.).log_prob(data).sum() * 10. + \
        dist.Normal(0., 10.).log_prob(tr.nodes["loc"]["value"])
    assert_close(tr.log_prob_sum(), expected, rtol=1e-5)


def test_condition_fixes_subsample():
    data = torch.randn(3)
    ind = torch.tensor([5, 17, 42])
    assert_equal(poutine.condition(model, data={"data": ind})(data), ind)
    tr = poutine.trace(poutine.condition(model, data={"data": ind})).get_trace(data)
    assert tr.nodes["obs"]["scale"] == pytest.approx(100. / 3)


def test_condition_subsample_out_of_range():
    with pytest.raises(ValueError, match="must lie in"):
        poutine.condition(model, data={"data": torch.tensor([0, 100])})(torch.randn(2))


def test_plate_subsample_size_mismatch():
    def bad_model():
        with batchvi.plate("data", 10, subsample_size=4, subsample=torch.arange(3)):
            pass

    with pytest.raises(ValueError, match="subsample_size does not match"):
        bad_model()


def test_plate_broadcasts():
    def model():
        with batchvi.plate("outer", 3):
            with batchvi.plate("inner", 4):
                return batchvi.sample("x", dist.Normal(0., 1.))

    assert poutine.trace(model).get_trace().nodes["x"]["value"].shape == (4, 3)


def test_replay():
    def guide():
        return batchvi.sample("loc", dist.Normal(3., 1.))

    guide_trace = poutine.trace(guide).get_trace()
    data = torch.randn(10)
    model_trace = poutine.trace(poutine.replay(model, trace=guide_trace)).get_trace(data)
    assert_equal(model_trace.nodes["loc"]["value"], guide_trace.nodes["loc"]["value"])


def test_block_hides_sites():
    data = torch.randn(10)
    with poutine.trace() as tr:
        poutine.block(model, hide=["loc"])(data)
    assert "loc" not in tr.trace
    assert "obs" in tr.trace

    with poutine.trace() as tr:
        poutine.block(model)(data)
    assert len(tr.trace) == 0


def test_scale():
    data = torch.randn(10)
    tr = poutine.trace(poutine.scale(model, scale=2.)).get_trace(data)
    assert tr.nodes["loc"]["scale"] == 2.
    assert tr.nodes["obs"]["scale"] == 20.
    with pytest.raises(ValueError):
        poutine.scale(scale=0.)


def test_seed_is_reproducible():
    data = torch.randn(10)
    a = poutine.trace(poutine.seed(model, rng_seed=0)).get_trace(data).nodes["loc"]["value"]
    b = poutine.trace(poutine.seed(model, rng_seed=0)).get_trace(data).nodes["loc"]["value"]
    c = poutine.trace(poutine.seed(model, rng_seed=1)).get_trace(data).nodes["loc"]["value"]
    assert_equal(a, b)
    assert (a != c).all()


def test_enum_allocates_dims():
    def guide():
        with batchvi.plate("data", 6):
            batchvi.sample("z", dist.Categorical(logits=torch.zeros(4)), infer={"enumerate": "parallel"})
            batchvi.sample("y", dist.Bernoulli(0.5), infer={"enumerate": "parallel"})

    tr = poutine.trace(poutine.enum(guide, first_available_dim=-2)).get_trace()
    tr.compute_log_prob()
    z, y = tr.nodes["z"], tr.nodes["y"]
    assert z["infer"]["_enumerate_dim"] == -2
    assert y["infer"]["_enumerate_dim"] == -3
    assert z["value"].shape == (4, 1)
    assert y["value"].shape == (2, 1, 1)
    assert z["unscaled_log_prob"].shape == (4, 6)
    assert tr.enumerated_nodes == ["z", "y"]
    assert tr.nonreparam_stochastic_nodes == []


def test_enum_requires_plate_nesting():
    def guide():
        batchvi.sample("z", dist.Categorical(logits=torch.zeros(4)), infer={"enumerate": "parallel"})

    with pytest.raises(ValueError, match="max_plate_nesting"):
        poutine.enum(guide)()


def test_param_requires_binding():
    with pytest.raises(UnknownSiteError):
        batchvi.param("loc", torch.zeros(2))
    with pytest.raises(UnknownSiteError):
        poutine.trace(lambda: batchvi.param("loc"))()


def test_bind_params_global_then_local():
    store = ParamStore()
    local_store = EphemeralLocalStore({"z_loc": LocalParamSpec((), init=1.)})

    def guide():
        loc = batchvi.param("loc", lambda: torch.zeros(2))
        z_loc = batchvi.param("z_loc")
        return loc, z_loc

    with local_store.scope(torch.arange(3)) as local_params:
        with poutine.trace(param_only=True) as tr:
            loc, z_loc = poutine.bind_params(guide, global_params=store, local_params=local_params)()
    assert "loc" in store
    assert "z_loc" not in store
    assert_equal(loc, torch.zeros(2))
    assert_equal(z_loc, torch.ones(3))
    assert tr.trace.param_nodes == ["loc", "z_loc"]
    assert tr.trace.nodes["z_loc"]["infer"]["local"]
    assert not tr.trace.nodes["loc"]["infer"].get("local", False)


def test_bind_params_unknown_name():
    with pytest.raises(UnknownSiteError, match="z_loc"):
        poutine.bind_params(lambda: batchvi.param("z_loc"), global_params=ParamStore())()


def test_duplicate_sample_site():
    def bad_model():
        batchvi.sample("x", dist.Normal(0., 1.))
        batchvi.sample("x", dist.Normal(0., 1.))

    with pytest.raises(RuntimeError, match="Multiple sample sites"):
        poutine.trace(bad_model).get_trace()
    assert not get_stack()


def test_sample_outside_handlers():
    assert batchvi.sample("x", dist.Normal(torch.zeros(3), 1.)).shape == (3,)
    with pytest.warns(RuntimeWarning):
        assert batchvi.sample("x", dist.Normal(0., 1.), obs=torch.tensor(2.)) == 2.
