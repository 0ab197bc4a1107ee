"""
Post-deploy verification from the public vantage point.

Reachability can fail for reasons outside the pipeline's control (DNS
propagation, CDN caching), so nothing here is fatal: every probe that is not
confirmed becomes a warning in the final summary.
"""

from typing import List

from .context import DeployContext
from .log import logger
from .probes import REDIRECT_OR_SUCCESS, SUCCESS_CLASSES, ProbeResult


def run_probes(ctx: DeployContext) -> List[ProbeResult]:
    config = ctx.config
    results = [ctx.prober.probe(f"http://{config.domain}/", REDIRECT_OR_SUCCESS)]
    for name in config.server_names:
        results.append(ctx.prober.probe(f"https://{name}/", SUCCESS_CLASSES))
    return results


def verify_public(ctx: DeployContext) -> None:
    ctx.probe_results = run_probes(ctx)
    for result in ctx.probe_results:
        if result.confirmed:
            logger.info(f"Reachable: {result.describe()}")
        else:
            ctx.warn(f"Public probe {result.describe()}")
