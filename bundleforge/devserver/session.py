"""
Development session control loop.

Consumes change events from the watcher, coalesces them into one build scope
and asks the coordinator for a cycle. A cycle whose output is superseded by a
newer change before promotion is discarded; the newest change always wins.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from ..core.config import DevServerConfig
from ..core.logging import get_logger
from ..orchestration.pipeline import BuildResult, BuildScope, PipelineCoordinator
from .hub import LiveReloadHub
from .watcher import ChangeEvent, ChangeKind, PollingWatcher, WatchPlan

logger = get_logger(__name__)

SCOPE_FOR_KIND = {
    ChangeKind.CRATE: BuildScope.FULL,
    ChangeKind.SCRIPT: BuildScope.SCRIPTS,
    ChangeKind.ASSET: BuildScope.ASSETS,
}


def scope_for_events(events: list[ChangeEvent]) -> BuildScope | None:
    scope: BuildScope | None = None
    for event in events:
        needed = SCOPE_FOR_KIND[event.kind]
        scope = needed if scope is None else scope.union(needed)
    return scope


class DevSession:
    """Ties the watcher, the coordinator and the live reload hub together."""

    def __init__(
        self,
        coordinator: PipelineCoordinator,
        hub: LiveReloadHub | None = None,
        config: DevServerConfig | None = None,
        watcher: PollingWatcher | None = None,
    ) -> None:
        self.coordinator = coordinator
        self.hub = hub or LiveReloadHub()
        self.config = config or DevServerConfig()
        self.queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        if watcher is None:
            plan = WatchPlan.for_target(coordinator.target, cache_dir=coordinator.cache_dir)
            watcher = PollingWatcher(plan, self.queue, interval=self.config.poll_interval_seconds)
        self.watcher = watcher
        self.last_result: BuildResult | None = None
        # scope of changes not yet reflected in the served output
        self._carry: BuildScope | None = None

    @property
    def output_dir(self) -> Path:
        return self.coordinator.output_dir

    def _drain(self) -> list[ChangeEvent]:
        events = []
        while True:
            try:
                events.append(self.queue.get_nowait())
            except asyncio.QueueEmpty:
                return events

    async def initial_build(self) -> BuildResult:
        result = await self.coordinator.build(BuildScope.FULL)
        if not result.success:
            self._carry = BuildScope.FULL
        self._report(result)
        self.last_result = result
        return result

    async def rebuild(self, scope: BuildScope) -> BuildResult:
        """Run one cycle for ``scope`` and notify connected clients."""
        if self._carry is not None:
            scope = self._carry.union(scope)
        result = await self.coordinator.build(scope, should_promote=self.queue.empty)
        self.last_result = result
        cycle = result.cycle

        if result.discarded:
            # newer changes are queued; they are rebuilt with this scope folded in
            self._carry = scope
            return result

        self._report(result)
        if result.success:
            self._carry = None
            await self.hub.notify_reload(cycle.cycle_id, scope.value)
        else:
            self._carry = scope
            stage = result.failed_stage.value if result.failed_stage else ""
            await self.hub.notify_error(cycle.cycle_id, stage, str(result.error))
        return result

    async def process_pending(self) -> BuildResult | None:
        """Rebuild once for every change queued right now. No-op when idle."""
        scope = scope_for_events(self._drain())
        if scope is None:
            return None
        return await self.rebuild(scope)

    async def run(self, stop: asyncio.Event) -> None:
        while not stop.is_set():
            try:
                first = await asyncio.wait_for(self.queue.get(), timeout=self.config.poll_interval_seconds)
            except asyncio.TimeoutError:
                continue
            if self.config.debounce_seconds:
                await asyncio.sleep(self.config.debounce_seconds)
            scope = scope_for_events([first, *self._drain()])
            if scope is None:
                continue
            await self.rebuild_until_current(scope)

    async def rebuild_until_current(self, scope: BuildScope) -> BuildResult | None:
        """Rebuild until a cycle is not superseded.

        Unexpected errors are logged and pushed to clients; the session keeps
        waiting for the next change with the failed scope carried forward.
        """
        try:
            result = await self.rebuild(scope)
            while result.discarded:
                scope = scope_for_events(self._drain()) or BuildScope.ASSETS
                result = await self.rebuild(scope)
            return result
        except Exception as e:
            self._carry = scope if self._carry is None else self._carry.union(scope)
            logger.exception("Build cycle crashed, serving previous output", scope=scope.value)
            await self.hub.notify_error("", "internal", f"{type(e).__name__}: {e}")
            return None

    def _report(self, result: BuildResult) -> None:
        cycle = result.cycle
        if result.success:
            logger.info("Output updated", cycle=cycle.cycle_id, duration=f"{cycle.duration_seconds:.2f}s")
        elif result.error is not None:
            logger.error(
                "Build failed, serving previous output",
                cycle=cycle.cycle_id,
                stage=result.failed_stage.value if result.failed_stage else None,
                error=str(result.error),
            )

    def status(self) -> dict[str, Any]:
        result = self.last_result
        if result is None:
            return {"state": "idle", "busy": self.coordinator.busy}
        cycle = result.cycle
        return {
            "state": cycle.state.value,
            "cycle": cycle.cycle_id,
            "busy": self.coordinator.busy,
            "failedStage": result.failed_stage.value if result.failed_stage else None,
            "error": str(result.error) if result.error else None,
            "stages": [
                {"stage": r.stage.value, "status": r.status.value} for r in cycle.stages
            ],
        }
