class MigrationError(Exception):
    """
    Error representing an exception that occurs while applying a migration step.
    Provides the failing `step` (sequence number), when known, so the run report
    can name it and a later run can resume from it.

    `retryable` errors leave the step pending and the run resumable; all others
    halt the run until the step set or the network is fixed.
    """

    kind = "MigrationError"
    retryable = False

    def __init__(self, message="An error occurred while applying migration", step=None):
        self.message = message
        self.step = step
        super().__init__(self.message)

    def __str__(self):
        if self.step is None:
            return self.message
        return f"{self.message}. Sequence number of failed step: {self.step}"


class ArtifactNotFound(MigrationError):
    kind = "NotFound"


class InvalidArtifact(MigrationError):
    kind = "InvalidArtifact"


class InvalidConstructorArgs(MigrationError):
    kind = "InvalidConstructorArgs"


class UnresolvedDependency(MigrationError):
    kind = "UnresolvedDependency"


class MalformedStepSet(MigrationError):
    kind = "MalformedStepSet"


class DeploymentReverted(MigrationError):
    kind = "DeploymentReverted"


class LedgerLocked(MigrationError):
    kind = "LedgerLocked"


class MissingConfiguration(MigrationError):
    kind = "MissingConfiguration"


class ConfirmationTimeout(MigrationError):
    kind = "ConfirmationTimeout"
    retryable = True


class NetworkError(MigrationError):
    kind = "NetworkError"
    retryable = True


class AlreadyApplied(MigrationError):
    """
    Raised by the ledger when a step already has a Confirmed record.
    Not a failure: the runner treats it as an idempotent skip.
    """

    kind = "AlreadyApplied"
