from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Mapping, Optional

from .conditions import ConditionEvaluator
from .executors import Executor, executor_for
from .inventory import Inventory
from .renderer import Renderer
from .runner import ConvergenceRunner, ProgressCallback
from .types import Disposition, FleetReport, HostConfig, HostReport, HostStatus, OperationReport, Playbook

logger = logging.getLogger(__name__)

DEFAULT_FANOUT = 5


class FleetOrchestrator:
    """Runs one playbook across every host of its group with bounded parallelism.

    Hosts share nothing but the report map and the cancel event; a failure on
    one host never changes what happens on another.
    """

    def __init__(
        self,
        *,
        fanout: int = DEFAULT_FANOUT,
        renderer: Optional[Renderer] = None,
        executor_factory: Callable[[HostConfig], Executor] = executor_for,
        evaluator_factory: Callable[[Executor], ConditionEvaluator] = ConditionEvaluator,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        if fanout < 1:
            raise ValueError("fanout must be at least 1")
        self.fanout = fanout
        self.renderer = renderer or Renderer()
        self.executor_factory = executor_factory
        self.evaluator_factory = evaluator_factory
        self.progress_callback = progress_callback
        self._cancel = threading.Event()
        self._lock = threading.Lock()

    def cancel(self) -> None:
        """Stop starting new operations on every host; running actions finish."""
        self._cancel.set()

    def run(
        self,
        inventory: Inventory,
        playbook: Playbook,
        bindings: Optional[Mapping[str, Any]] = None,
    ) -> FleetReport:
        report = FleetReport(playbook=playbook.name)
        hosts = inventory.hosts_in_group(playbook.hosts)
        if not hosts:
            logger.warning("playbook=%s group=%s selected no hosts", playbook.name, playbook.hosts)
            return report

        overrides = dict(bindings or {})
        pool = ThreadPoolExecutor(max_workers=min(self.fanout, len(hosts)))
        futures = {
            pool.submit(self._run_host, playbook, host, {**inventory.bindings_for(host), **overrides}): host
            for host in hosts
        }
        try:
            for future in as_completed(futures):
                self._record(report, futures[future], future.result())
        except KeyboardInterrupt:
            logger.warning("playbook=%s interrupted, cancelling remaining operations", playbook.name)
            self.cancel()
            report.interrupted = True
        except BaseException:
            self.cancel()
            raise
        finally:
            pool.shutdown(wait=True, cancel_futures=True)

        for future, host in futures.items():
            if host.name in report.hosts:
                continue
            if future.cancelled():
                self._record(report, host, _cancelled(playbook, host))
            else:
                self._record(report, host, future.result())

        logger.info("playbook=%s hosts=%d status=%s", playbook.name, len(report.hosts), report.status.value)
        return report

    def _record(self, report: FleetReport, host: HostConfig, host_report: HostReport) -> None:
        with self._lock:
            report.hosts[host.name] = host_report

    def _run_host(self, playbook: Playbook, host: HostConfig, bindings: Mapping[str, Any]) -> HostReport:
        runner = ConvergenceRunner(
            playbook,
            renderer=self.renderer,
            executor_factory=self.executor_factory,
            evaluator_factory=self.evaluator_factory,
            cancel_event=self._cancel,
            progress_callback=self.progress_callback,
        )
        try:
            return runner.run(host, bindings)
        except Exception as exc:  # noqa: BLE001
            logger.error("playbook=%s host=%s worker crashed: %s", playbook.name, host.name, exc, exc_info=True)
            return _crashed(playbook, host, exc, runner.report)


def _crashed(
    playbook: Playbook, host: HostConfig, exc: BaseException, partial: Optional[HostReport]
) -> HostReport:
    # Operations the runner already reported keep their dispositions.
    done = list(partial.operations) if partial is not None else []
    remaining = playbook.operations[len(done) :]
    return HostReport(
        host=host.name,
        playbook=playbook.name,
        status=HostStatus.FAILED,
        operations=done + [OperationReport(spec.name, spec.type, Disposition.NOT_REACHED) for spec in remaining],
        error=f"worker crashed: {exc}",
    )


def _cancelled(playbook: Playbook, host: HostConfig) -> HostReport:
    return HostReport(
        host=host.name,
        playbook=playbook.name,
        status=HostStatus.FAILED,
        operations=[OperationReport(spec.name, spec.type, Disposition.NOT_REACHED) for spec in playbook.operations],
        error="cancelled",
    )
