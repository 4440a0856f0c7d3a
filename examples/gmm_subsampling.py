# Copyright Contributors to the Pyro project.
# SPDX-License-Identifier: Apache-2.0

# Fitting a Gaussian mixture to a dataset too large to visit in one pass.
#
# The data are generated on demand from their indices, so a dataset of ten
# million points never sits in memory. Each outer iteration draws a batch of
# points, refines the per-point assignment logits with a few local steps and
# then takes one step on the component means, with every likelihood term
# scaled by size / batch_size. With --sgld the global step is a stochastic
# gradient Langevin transition instead and the visited means are summarized
# as an empirical posterior.

import argparse
import logging
import math

import torch

import batchvi
import batchvi.distributions as dist
from batchvi.data import FunctionDataSource
from batchvi.infer import HierarchicalModel, InferenceStep, SGLDStep, SubsamplingDriver, Trace_ELBO
from batchvi.optim import Adam
from batchvi.params import EphemeralLocalStore, LocalParamSpec, ParamStore

logging.basicConfig(format="%(relativeCreated) 9d %(message)s", level=logging.INFO)


def make_model(size, num_components, dim):
    def model(data):
        locs = batchvi.sample("locs", dist.Independent(dist.Normal(torch.zeros(num_components, dim), 10.), 2))
        with batchvi.plate("data", size):
            z = batchvi.sample("z", dist.Categorical(logits=torch.zeros(num_components)))
            batchvi.sample("obs", dist.Independent(dist.Normal(locs[z], 1.), 1), obs=data)

    # The means are point estimates; each assignment is summed out exactly
    # under a local categorical guide.
    def guide(data):
        locs_q = batchvi.param("locs_q", lambda: torch.randn(num_components, dim))
        batchvi.sample("locs", dist.Delta(locs_q, event_dim=2))
        with batchvi.plate("data", size):
            batchvi.sample("z", dist.Categorical(logits=batchvi.param("assignment_logits")),
                           infer={"enumerate": "parallel"})

    return HierarchicalModel(model, guide, size)


def main(args):
    batchvi.set_rng_seed(args.seed)
    batchvi.enable_validation(__debug__)

    angles = torch.arange(args.num_components) * 2 * math.pi / args.num_components
    true_locs = args.radius * torch.stack([angles.cos(), angles.sin()], -1)

    def generate(indices):
        return true_locs[indices % args.num_components] + torch.randn(len(indices), 2)

    data_source = FunctionDataSource(args.size, generate)
    hmodel = make_model(args.size, args.num_components, 2)
    local_store = EphemeralLocalStore({"assignment_logits": LocalParamSpec((args.num_components,))})
    global_params = ParamStore()

    local_optim = Adam({"lr": args.local_learning_rate})
    if args.sgld:
        step = SGLDStep(Trace_ELBO(), local_optim, lr=args.sgld_learning_rate,
                        num_burn_in=args.num_burn_in)
    else:
        step = InferenceStep(Trace_ELBO(), Adam({"lr": args.learning_rate}), local_optim)

    logging.info("Fitting {} components to {} points".format(args.num_components, args.size))
    driver = SubsamplingDriver(hmodel, data_source, global_params, local_store, step,
                               progress_bar=not args.no_progress_bar)
    losses = driver.run(args.num_steps, args.num_local_steps, args.batch_size)
    logging.info("final loss = {:.4g}".format(losses[-1]))

    if args.sgld:
        posterior = step.posterior("locs_q")
        locs = posterior.mean
        logging.info("posterior std of the means:\n{}".format(posterior.variance.sqrt()))
    else:
        locs = global_params["locs_q"].detach()
    distance = (locs.unsqueeze(-2) - true_locs).norm(dim=-1).min(-1)[0]
    logging.info("estimated means:\n{}".format(locs))
    logging.info("distance to the nearest true mean: {}".format(distance))


if __name__ == "__main__":
    assert batchvi.__version__.startswith("0.1.0")
    parser = argparse.ArgumentParser(description="Gaussian mixture fitted with subsampled inference")
    parser.add_argument("-n", "--num-steps", default=1000, type=int)
    parser.add_argument("-k", "--num-local-steps", default=10, type=int)
    parser.add_argument("-b", "--batch-size", default=128, type=int)
    parser.add_argument("--size", default=10000000, type=int)
    parser.add_argument("--num-components", default=5, type=int)
    parser.add_argument("--radius", default=10., type=float)
    parser.add_argument("-lr", "--learning-rate", default=0.05, type=float)
    parser.add_argument("--local-learning-rate", default=0.5, type=float)
    parser.add_argument("--sgld", action="store_true", default=False,
                        help="sample the means with stochastic gradient Langevin dynamics")
    parser.add_argument("--sgld-learning-rate", default=1e-7, type=float)
    parser.add_argument("--num-burn-in", default=200, type=int)
    parser.add_argument("--seed", default=0, type=int)
    parser.add_argument("--no-progress-bar", action="store_true", default=False)
    args = parser.parse_args()
    main(args)
