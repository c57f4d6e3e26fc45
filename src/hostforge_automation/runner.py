from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Mapping, Optional

from .conditions import ConditionEvaluator
from .errors import ActionFailed, ProbeUnknown, RenderError, TransportUnreachable
from .executors import Executor, executor_for
from .operations import OPERATION_REGISTRY, Operation
from .renderer import Renderer
from .types import (
    Disposition,
    FailurePolicy,
    HostConfig,
    HostReport,
    HostStatus,
    OperationReport,
    Playbook,
    RenderedOperation,
    RunState,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[HostConfig, RenderedOperation], None]


class ConvergenceRunner:
    """Drives one host through a playbook: render, then guard and apply each operation in order."""

    def __init__(
        self,
        playbook: Playbook,
        *,
        renderer: Optional[Renderer] = None,
        executor_factory: Callable[[HostConfig], Executor] = executor_for,
        evaluator_factory: Callable[[Executor], ConditionEvaluator] = ConditionEvaluator,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.playbook = playbook
        self.renderer = renderer or Renderer()
        self.executor_factory = executor_factory
        self.evaluator_factory = evaluator_factory
        self.cancel_event = cancel_event or threading.Event()
        self.progress_callback = progress_callback
        self.state = RunState.PENDING
        self.report: Optional[HostReport] = None

    def run(self, host: HostConfig, bindings: Mapping[str, Any]) -> HostReport:
        report = HostReport(host=host.name, playbook=self.playbook.name)
        self.report = report

        self.state = RunState.RENDERING
        try:
            operations = self.renderer.render(self.playbook, bindings)
        except RenderError as exc:
            logger.error("playbook=%s host=%s render failed: %s", self.playbook.name, host.name, exc)
            report.error = str(exc)
            report.operations = [
                OperationReport(spec.name, spec.type, Disposition.NOT_REACHED, str(exc))
                for spec in self.playbook.operations
            ]
            return self._finish(report, HostStatus.FAILED)

        self.state = RunState.CONVERGING
        try:
            executor = self.executor_factory(host)
        except ValueError as exc:
            report.error = str(exc)
            report.operations = [_not_reached(op) for op in operations]
            return self._finish(report, HostStatus.FAILED)
        evaluator = self.evaluator_factory(executor)

        status = HostStatus.SUCCESS
        for position, operation in enumerate(operations):
            if self.cancel_event.is_set():
                logger.warning("playbook=%s host=%s cancelled", self.playbook.name, host.name)
                report.error = "cancelled"
                report.operations.extend(_not_reached(op) for op in operations[position:])
                return self._finish(report, HostStatus.FAILED)

            if self.progress_callback:
                self.progress_callback(host, operation)
            try:
                outcome = self._converge(host, executor, evaluator, operation)
            except TransportUnreachable as exc:
                logger.error("operation=%s host=%s transport lost: %s", operation.name, host.name, exc)
                report.error = str(exc)
                report.operations.append(
                    OperationReport(operation.name, operation.type, Disposition.APPLIED_FAILURE, str(exc))
                )
                report.operations.extend(_not_reached(op) for op in operations[position + 1 :])
                return self._finish(report, HostStatus.FAILED)

            report.operations.append(outcome)
            logger.debug(
                "operation=%s host=%s disposition=%s", operation.name, host.name, outcome.disposition.value
            )
            if not outcome.failed:
                continue
            if operation.on_failure is FailurePolicy.CONTINUE:
                status = HostStatus.PARTIAL
                continue
            report.error = f"{operation.name}: {outcome.detail}"
            report.operations.extend(_not_reached(op) for op in operations[position + 1 :])
            return self._finish(report, HostStatus.FAILED)

        return self._finish(report, status)

    def _converge(
        self,
        host: HostConfig,
        executor: Executor,
        evaluator: ConditionEvaluator,
        operation: RenderedOperation,
    ) -> OperationReport:
        def failure(detail: str) -> OperationReport:
            return OperationReport(operation.name, operation.type, Disposition.APPLIED_FAILURE, detail)

        operation_cls = OPERATION_REGISTRY.get(operation.type)
        if not operation_cls:
            detail = f"unknown operation '{operation.type}'"
            logger.warning(detail)
            return failure(detail)
        try:
            action: Operation = operation_cls(dict(operation.data))
        except ValueError as exc:
            return failure(str(exc))

        guard = operation.guard or action.guard()
        if guard is not None:
            try:
                if evaluator.holds(host, guard):
                    return OperationReport(operation.name, operation.type, Disposition.SKIPPED, "guard holds")
            except ProbeUnknown as exc:
                logger.warning("operation=%s host=%s guard unknown: %s", operation.name, host.name, exc)
                return failure(f"guard unknown: {exc}")
            except TransportUnreachable:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.error("operation=%s host=%s guard failed: %s", operation.name, host.name, exc, exc_info=True)
                return failure(f"guard failed: {exc}")

        try:
            result = action.apply(host, executor)
        except TransportUnreachable:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "operation=%s host=%s failed: %s", operation.name, host.name, exc, exc_info=True
            )
            return failure(str(exc))
        if result.failed:
            return failure(result.details)

        if guard is not None:
            try:
                if not evaluator.holds(host, guard):
                    raise ActionFailed("did not converge")
            except (ActionFailed, ProbeUnknown) as exc:
                return failure(f"{result.details}; {exc}" if result.details else str(exc))
            except TransportUnreachable:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.error("operation=%s host=%s re-check failed: %s", operation.name, host.name, exc, exc_info=True)
                return failure(f"{result.details}; re-check failed: {exc}")
        return OperationReport(operation.name, operation.type, Disposition.APPLIED_SUCCESS, result.details)

    def _finish(self, report: HostReport, status: HostStatus) -> HostReport:
        report.status = status
        self.state = RunState.DONE
        logger.info("playbook=%s host=%s status=%s", self.playbook.name, report.host, status.value)
        return report


def _not_reached(operation: RenderedOperation) -> OperationReport:
    return OperationReport(operation.name, operation.type, Disposition.NOT_REACHED)
