"""Build worker: staged execution and structured log emission."""

from shipwright.worker.emitter import LogEmitter
from shipwright.worker.pipeline import BuildWorker, build_command_line, run_worker
from shipwright.worker.process import OutputLine, StageProcess

__all__ = [
    "BuildWorker",
    "LogEmitter",
    "OutputLine",
    "StageProcess",
    "build_command_line",
    "run_worker",
]
