from __future__ import annotations

import structlog

from shipwright.broker.base import LogBroker
from shipwright.core.constants import EventKind, OutcomeStatus, Severity
from shipwright.core.exceptions import BrokerError
from shipwright.core.types import BuildOutcome, LogEvent

logger = structlog.get_logger(__name__)

_OUTCOME_SEVERITY = {
    OutcomeStatus.SUCCEEDED: Severity.SUCCESS,
    OutcomeStatus.FAILED: Severity.ERROR,
    OutcomeStatus.CRASHED: Severity.ERROR,
}


class LogEmitter:
    """Publish one build's :class:`LogEvent` stream, strictly in order.

    Each :meth:`emit` awaits the broker before returning, so a caller that
    awaits every emission never has two events of the same project in flight.
    Broker failures are logged and the event is dropped: the log stream is
    best-effort and must not fail the build.

    The stream ends with exactly one outcome event; emitting after it is a
    programming error.
    """

    def __init__(self, broker: LogBroker, project_id: str) -> None:
        self._broker = broker
        self._project_id = project_id
        self._seq = 0
        self._finished = False
        self._log = logger.bind(project=project_id)

    @property
    def project_id(self) -> str:
        return self._project_id

    @property
    def emitted(self) -> int:
        return self._seq

    @property
    def finished(self) -> bool:
        return self._finished

    async def emit(
        self,
        message: str,
        *,
        severity: Severity = Severity.INFO,
        kind: EventKind = EventKind.LOG,
        stage: str | None = None,
        outcome: BuildOutcome | None = None,
    ) -> LogEvent:
        if self._finished:
            raise RuntimeError(
                f"log stream for {self._project_id} already ended with an outcome"
            )
        self._seq += 1
        event = LogEvent(
            project_id=self._project_id,
            seq=self._seq,
            message=message,
            severity=severity,
            kind=kind,
            stage=stage,
            outcome=outcome,
        )
        if outcome is not None:
            self._finished = True

        self._log.info(
            "build_event",
            seq=event.seq,
            kind=kind.value,
            severity=severity.value,
            stage=stage,
            message=message,
        )
        try:
            await self._broker.publish(event.topic, event.to_wire())
        except BrokerError as exc:
            self._log.warning("build_event_dropped", seq=event.seq, error=str(exc))
        return event

    async def finish(self, outcome: BuildOutcome) -> LogEvent:
        """Publish the terminal outcome event."""
        if outcome.ok:
            message = "Build succeeded"
        else:
            label = "crashed" if outcome.status is OutcomeStatus.CRASHED else "failed"
            message = f"Build {label}: {outcome.reason}"
        return await self.emit(
            message,
            severity=_OUTCOME_SEVERITY[outcome.status],
            kind=EventKind.OUTCOME,
            outcome=outcome,
        )
