import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from migrator.utils import log, resolver
from migrator.utils.errors import AlreadyApplied, MigrationError
from migrator.utils.ledger import Status


class RunnerState(str, Enum):
    IDLE = "Idle"
    PLANNING = "Planning"
    EXECUTING = "Executing"
    HALTED = "Halted"
    STOPPED = "Stopped"
    DONE = "Done"


EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_RESUMABLE = 2


@dataclass
class StepFailure:
    step: Optional[int]
    name: Optional[str]
    kind: str
    reason: str


@dataclass
class RunReport:
    network: str
    state: RunnerState = RunnerState.IDLE
    applied: list = field(default_factory=list)
    skipped: list = field(default_factory=list)
    failed: list = field(default_factory=list)
    resumable: bool = False
    transactions_sent: int = 0

    @property
    def exit_code(self):
        if self.state == RunnerState.DONE:
            return EXIT_SUCCESS
        if self.resumable:
            return EXIT_RESUMABLE
        return EXIT_FATAL

    def print(self):
        log.h1(f"Migration report for `{self.network}`: {self.state.value}")
        for record in self.applied:
            log.row(
                "applied",
                f"{record.step_sequence_number}-{record.step_name} "
                f"at {record.deployed_address} ({record.transaction_hash})",
                "ok")
        for step in self.skipped:
            log.row("skipped", f"{step} (already applied)")
        for failure in self.failed:
            log.row("failed", f"{failure.step}-{failure.name}: [{failure.kind}] {failure.reason}", "error")

        log.info("")
        log.info(f"Transactions sent: {self.transactions_sent}")
        if self.state == RunnerState.STOPPED:
            log.warn("Run stopped before completion. Re-run to resume.")
        elif self.state == RunnerState.HALTED and self.resumable:
            log.warn("Run halted on a transient error. Re-run to resume.")
        elif self.state == RunnerState.HALTED:
            log.error("Run halted. Fix the failing step before running again.")


class MigrationRunner:
    """
    Facilitates the application of a step set to one network.

    Steps run strictly one at a time in sequence order, since later steps may
    bind earlier addresses. The first error halts the run: fatal errors need the
    step set (or artifacts) fixed, retryable ones only need another run, which
    resumes at the first step without a Confirmed record.

    `stop()` may be called from another thread; it takes effect before the next
    step starts, never in the middle of a deployment.
    """

    def __init__(self, ledger, registry, executor, network):
        self.ledger = ledger
        self.registry = registry
        self.executor = executor
        self.network = network
        self.state = RunnerState.IDLE
        self.current_step = None
        self._stop_requested = threading.Event()

    def stop(self):
        self._stop_requested.set()

    def run(self, steps) -> RunReport:
        report = RunReport(self.network)
        sent_before = self.executor.transactions_sent
        try:
            with self.ledger.lock(self.network):
                self._run(steps, report)
        except MigrationError as exception:
            # lock could not be taken
            self._halt(report, exception, None)

        report.state = self.state
        report.transactions_sent = self.executor.transactions_sent - sent_before
        return report

    def _run(self, steps, report):
        self.state = RunnerState.PLANNING
        log.h2(f"Planning {len(steps)} steps for `{self.network}`...")

        state = self.ledger.read_state(self.network)
        try:
            pending = resolver.plan(steps, state, self.registry)
        except MigrationError as exception:
            failing = next(
                (step for step in steps if step.sequence_number == exception.step), None)
            self._halt(report, exception, failing)
            return

        pending_numbers = {step.sequence_number for step in pending}
        report.skipped.extend(step for step in steps if step.sequence_number not in pending_numbers)
        log.info(f"{len(pending)} pending, {len(report.skipped)} already applied.")

        for step in pending:
            if self._stop_requested.is_set():
                log.warn(f"Stop requested, not starting step {step}")
                self.state = RunnerState.STOPPED
                report.resumable = True
                return

            self.state = RunnerState.EXECUTING
            self.current_step = step
            log.h1(f"Running migration step {step}...")

            try:
                bindings = resolver.resolve_bindings(step, self.ledger.read_state(self.network))
                record = self.executor.deploy(step, bindings, self.network)
            except AlreadyApplied:
                log.h3(f"Step {step} already applied, skipping")
                report.skipped.append(step)
                continue
            except MigrationError as exception:
                self._halt(report, exception, step)
                return

            report.applied.append(record)

        confirmed = {
            record.step_sequence_number
            for record in self.ledger.read_state(self.network)
            if record.status == Status.CONFIRMED
        }
        missing = [step for step in steps if step.sequence_number not in confirmed]
        if missing:
            self._halt(
                report,
                MigrationError(f"Step {missing[0]} has no Confirmed record after the run"),
                missing[0])
            return

        self.current_step = None
        self.state = RunnerState.DONE

    def _halt(self, report, exception, step):
        if exception.step is None and step is not None:
            exception.step = step.sequence_number

        name = step.name if step is not None else None
        report.failed.append(StepFailure(exception.step, name, exception.kind, exception.message))
        report.resumable = exception.retryable
        self.state = RunnerState.HALTED
        log.error(f"Halted: {exception}")
