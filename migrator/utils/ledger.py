import fcntl
import os
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Optional

from mergedeep import merge

from migrator.utils import json_file, log
from migrator.utils.errors import AlreadyApplied, LedgerLocked, MigrationError


class Status(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    FAILED = "Failed"


@dataclass
class DeploymentRecord:
    """
    Outcome of applying one migration step to one network.

    `transactions` holds one `{"artifact", "tx_hash", "payload", "address"}` entry per
    submitted deployment, so an interrupted step can be re-verified against the
    network instead of being deployed twice.
    """

    step_sequence_number: int
    step_name: str
    network: str
    status: Status
    deployed_address: Optional[str] = None
    transaction_hash: Optional[str] = None
    timestamp: Optional[int] = None
    contracts: dict = field(default_factory=dict)
    transactions: list = field(default_factory=list)
    error_kind: Optional[str] = None
    reason: Optional[str] = None

    def submission(self, artifact):
        return next((tx for tx in self.transactions if tx["artifact"] == artifact), None)

    def to_dict(self):
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data):
        data = dict(data)
        data["status"] = Status(data["status"])
        return cls(**data)


class LedgerTransaction:
    """
    Handle for one in-flight step. The Pending record is on disk from the moment
    the handle exists; it must be finalized with `commit` or `abort`.
    """

    def __init__(self, ledger, record: DeploymentRecord):
        self._ledger = ledger
        self.record = record
        self.finalized = False

    @property
    def network(self):
        return self.record.network

    def record_submission(self, artifact, tx_hash, payload=None):
        """
        Persist a signed deployment before it is broadcast. `payload` is the
        hash of the creation data, so a later run can tell whether the
        submission still matches the step.
        """
        self._check_open()
        self._check_not_confirmed()
        self.record.transactions = [
            tx for tx in self.record.transactions if tx["artifact"] != artifact
        ] + [{"artifact": artifact, "tx_hash": tx_hash, "payload": payload, "address": None}]
        self.record.contracts.pop(artifact, None)
        self._ledger._write(self.record)

    def record_confirmation(self, artifact, address):
        self._check_open()
        self._check_not_confirmed()
        submission = self.record.submission(artifact)
        if submission is None:
            raise MigrationError(
                f"No submitted transaction for {artifact}", step=self.record.step_sequence_number)
        submission["address"] = address
        self.record.contracts[artifact] = address
        self._ledger._write(self.record)

    def commit(self, record: DeploymentRecord):
        self._check_open()
        if record.status != Status.CONFIRMED:
            raise MigrationError(
                f"Only Confirmed records can be committed, got {record.status.value}",
                step=record.step_sequence_number)

        self._check_not_confirmed()
        self._ledger._write(record)
        self._ledger._append_manifest(record)
        self.record = record
        self.finalized = True
        return record

    def abort(self, reason, error_kind=None):
        self._check_open()
        current = self._ledger.get(self.network, self.record.step_sequence_number)
        if current is not None and current.status == Status.CONFIRMED:
            # never downgrade a confirmed step
            self.finalized = True
            return current

        self.record.status = Status.FAILED
        self.record.reason = reason
        self.record.error_kind = error_kind
        self.record.timestamp = int(time.time())
        self._ledger._write(self.record)
        self.finalized = True
        return self.record

    def _check_open(self):
        if self.finalized:
            raise MigrationError(
                "Ledger transaction already finalized", step=self.record.step_sequence_number)

    def _check_not_confirmed(self):
        # confirmed records are append-only: a stale handle must not touch them
        current = self._ledger.get(self.network, self.record.step_sequence_number)
        if current is not None and current.status == Status.CONFIRMED:
            self.finalized = True
            raise AlreadyApplied(
                f"Step {self.record.step_name} is already confirmed on {self.network}",
                step=self.record.step_sequence_number)


class MigrationLedger:
    """
    Durable record, per network, of which migration steps have been applied.

    Each network gets its own directory under `history_dir` holding:
      - `ledger.json`: every DeploymentRecord keyed by step sequence number
      - `current-manifest.json`: deployed address of every confirmed contract,
        for tooling that only needs addresses
    Networks never share files, so independent runners can migrate different
    networks at the same time.
    """

    def __init__(self, history_dir):
        self.history_dir = history_dir

    def read_state(self, network):
        """
        Returns the network's records ordered by step sequence number
        (empty for a network that has never been migrated).
        """
        records = self._load(network)
        return [records[seq] for seq in sorted(records.keys())]

    def get(self, network, sequence_number) -> Optional[DeploymentRecord]:
        return self._load(network).get(sequence_number)

    def begin_step(self, network, step) -> LedgerTransaction:
        existing = self.get(network, step.sequence_number)
        if existing is not None and existing.status == Status.CONFIRMED:
            raise AlreadyApplied(
                f"Step {step.name} is already confirmed on {network}", step=step.sequence_number)

        # keep earlier submissions so they can be checked before deploying again
        transactions = []
        contracts = {}
        if existing is not None:
            transactions = [dict(tx) for tx in existing.transactions]
            contracts = {tx["artifact"]: tx["address"] for tx in transactions if tx["address"]}
            log.h3(f"Resuming step {step} from a {existing.status.value} record")

        record = DeploymentRecord(
            step_sequence_number=step.sequence_number,
            step_name=step.name,
            network=network,
            status=Status.PENDING,
            timestamp=int(time.time()),
            contracts=contracts,
            transactions=transactions,
        )
        self._write(record)
        return LedgerTransaction(self, record)

    def manifest(self, network):
        return json_file.load_or_default(self._manifest_filename(network), {"contracts": {}})

    @contextmanager
    def lock(self, network):
        """
        Exclusive lock on a network's ledger for the duration of a run.

        The kernel drops the lock when the holding process dies, so a lock file
        left behind by a crashed run never blocks the next one.
        """
        filename = self._lock_filename(network)
        os.makedirs(os.path.dirname(filename), exist_ok=True)
        with open(filename, "a+") as lock_file:
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                raise LedgerLocked(
                    f"Ledger for {network} is locked by another run ({filename})") from None

            try:
                lock_file.seek(0)
                lock_file.truncate()
                lock_file.write(str(os.getpid()))
                lock_file.flush()
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _network_dir(self, network):
        return os.path.join(self.history_dir, network)

    def _ledger_filename(self, network):
        return os.path.join(self._network_dir(network), "ledger.json")

    def _manifest_filename(self, network):
        return os.path.join(self._network_dir(network), "current-manifest.json")

    def _lock_filename(self, network):
        return os.path.join(self._network_dir(network), "ledger.lock")

    def _load(self, network):
        content = json_file.load_or_default(self._ledger_filename(network), {"records": {}})
        return {
            int(seq): DeploymentRecord.from_dict(data)
            for seq, data in content["records"].items()
        }

    def _write(self, record: DeploymentRecord):
        filename = self._ledger_filename(record.network)
        content = json_file.load_or_default(
            filename, {"network": record.network, "records": {}})
        content["records"][str(record.step_sequence_number)] = record.to_dict()
        json_file.save(filename, content)

    def _append_manifest(self, record: DeploymentRecord):
        manifest = {
            "contracts": {
                artifact: {
                    "address": address,
                    "step": record.step_sequence_number,
                    "tx": (record.submission(artifact) or {}).get("tx_hash"),
                }
                for artifact, address in record.contracts.items()
            }
        }
        merged_manifest = merge({}, self.manifest(record.network), manifest)
        json_file.save(self._manifest_filename(record.network), merged_manifest)

        log.h3(f"{', '.join(record.contracts.keys())} added to manifest")
        return merged_manifest
