"""
Prefect flow for one-shot builds.

``bundleforge build`` runs the coordinator inside a Prefect flow so build runs
show up alongside other flows. Retries are disabled: a failed cycle is
reported verbatim and re-triggering is left to the operator.
"""

from __future__ import annotations

from prefect import flow

from .. import __version__
from ..core.config import BuildTarget, Config, get_config
from ..core.logging import get_logger
from .pipeline import BuildResult, PipelineCoordinator

logger = get_logger(__name__)


def make_coordinator(target: BuildTarget, config: Config | None = None) -> PipelineCoordinator:
    """Create the coordinator used by the CLI and the flow."""
    return PipelineCoordinator(target, config=config or get_config())


@flow(
    name="bundleforge-build",
    description="Compile the crate, bundle the front-end and copy static assets",
    version=__version__,
    retries=0,
    validate_parameters=False,
    log_prints=False,
)
async def build_flow(target: BuildTarget) -> BuildResult:
    """Run one full build cycle for ``target``.

    Args:
        target: Validated build target.

    Returns:
        BuildResult; stage failures are in ``result.error``.
    """
    logger.info("Starting build", entry=str(target.entry), mode=target.mode, output=str(target.output_dir))
    coordinator = make_coordinator(target)
    result = await coordinator.build()
    if result.success:
        logger.info("Build succeeded", cycle=result.cycle.cycle_id)
    else:
        logger.error("Build failed", cycle=result.cycle.cycle_id, stage=str(result.failed_stage))
    return result


async def run_build(target: BuildTarget, use_flow: bool = True) -> BuildResult:
    """Convenience entry point: run through Prefect or call the coordinator directly."""
    if use_flow:
        return await build_flow(target)
    return await make_coordinator(target).build()
