import time
from dataclasses import dataclass

from eth_abi.abi import encode, is_encodable
from web3 import Web3

from migrator.utils import log
from migrator.utils.errors import (ConfirmationTimeout, DeploymentReverted,
                                   InvalidConstructorArgs, MigrationError)
from migrator.utils.ledger import DeploymentRecord, Status


@dataclass(frozen=True)
class PollConfig:
    attempts: int = 20
    interval: float = 3
    backoff: float = 1.5
    max_interval: float = 30


def abi_type(input_):
    # collapse tuple components into their canonical `(t1,t2)` form
    typ = input_["type"]
    if not typ.startswith("tuple"):
        return typ
    inner = ",".join(abi_type(component) for component in input_.get("components", []))
    return f"({inner}){typ[len('tuple'):]}"


def _coerce(typ, value):
    # JSON step sets cannot carry raw bytes, so hex strings stand in for them
    if typ.startswith("bytes") and isinstance(value, str) and value.startswith("0x"):
        try:
            return bytes.fromhex(value[2:])
        except ValueError:
            return value
    return value


def materialize_args(descriptor, bindings, step=None):
    """
    Order `bindings` by the artifact's constructor signature and type-check them.
    Returns `(types, values)`; raises InvalidConstructorArgs on a missing binding
    or a value that does not fit its ABI type.
    """
    types = []
    values = []
    for position, input_ in enumerate(descriptor.constructor_inputs()):
        name = input_.get("name") or f"arg{position}"
        typ = abi_type(input_)
        if name not in bindings:
            raise InvalidConstructorArgs(
                f"Constructor of {descriptor.name} expects `{name}` ({typ}) but no binding provides it",
                step=step)

        value = _coerce(typ, bindings[name])
        if not is_encodable(typ, value):
            raise InvalidConstructorArgs(
                f"Binding `{name}` = {value!r} does not fit {typ} in constructor of {descriptor.name}",
                step=step)
        types.append(typ)
        values.append(value)

    return types, values


def deployment_data(descriptor, types, values) -> bytes:
    if not types:
        return descriptor.bytecode
    return descriptor.bytecode + encode(types, values)


def payload_hash(data: bytes) -> str:
    return Web3.to_hex(Web3.keccak(data))


class DeploymentExecutor:
    """
    Applies a single migration step: deploys each of its artifacts, waits for the
    network to confirm them and commits the outcome to the ledger.

    Signed transaction hashes are written to the ledger before broadcast, and a
    record only becomes Confirmed from mined, successful receipts. A step left
    behind by an interrupted run is re-verified against the network first; an
    earlier submission is only reused while its creation data is unchanged and
    it has not reverted.
    """

    def __init__(self, ledger, registry, client, poll=None, sleep=time.sleep):
        self.ledger = ledger
        self.registry = registry
        self.client = client
        self.poll = poll or PollConfig()
        self.sleep = sleep
        self.transactions_sent = 0

    def prepare(self, step, resolved_bindings):
        """
        Build the creation payload of every artifact in `step`, in order.
        Each binding must be consumed by at least one constructor.
        """
        payloads = []
        used = set()
        for artifact in step.artifact_refs:
            descriptor = self.registry.resolve(artifact)
            types, values = materialize_args(descriptor, resolved_bindings, step.sequence_number)
            used.update(
                input_.get("name") or f"arg{position}"
                for position, input_ in enumerate(descriptor.constructor_inputs())
            )
            payloads.append((artifact, deployment_data(descriptor, types, values)))

        unused = sorted(set(resolved_bindings.keys()) - used)
        if unused:
            raise InvalidConstructorArgs(
                f"Bindings {', '.join(unused)} match no constructor parameter of step {step}",
                step=step.sequence_number)

        return payloads

    def deploy(self, step, resolved_bindings, network) -> DeploymentRecord:
        payloads = self.prepare(step, resolved_bindings)

        # raises AlreadyApplied when another run confirmed the step already
        txn = self.ledger.begin_step(network, step)

        try:
            for artifact, data in payloads:
                self._deploy_artifact(txn, artifact, data)
        except MigrationError as exception:
            if exception.step is None:
                exception.step = step.sequence_number
            # a handle that found the step confirmed underneath it is already closed
            if not txn.finalized:
                txn.abort(exception.message, exception.kind)
                log.error(f"\tStep {step} failed: {exception.message}")
            raise

        primary = txn.record.submission(step.primary_artifact)
        record = DeploymentRecord(
            step_sequence_number=step.sequence_number,
            step_name=step.name,
            network=network,
            status=Status.CONFIRMED,
            deployed_address=primary["address"],
            transaction_hash=primary["tx_hash"],
            timestamp=int(time.time()),
            contracts=dict(txn.record.contracts),
            transactions=[dict(tx) for tx in txn.record.transactions],
        )
        return txn.commit(record)

    def wait_for_confirmation(self, tx_hash):
        """
        Poll for the receipt of `tx_hash` with exponential backoff.
        Raises ConfirmationTimeout once the configured attempts are used up.
        """
        interval = self.poll.interval
        for attempt in range(1, self.poll.attempts + 1):
            receipt = self.client.get_receipt(tx_hash)
            if receipt is not None:
                return receipt

            if attempt < self.poll.attempts:
                log.h3(
                    f"Waiting for confirmation of {tx_hash} "
                    f"(attempt {attempt}/{self.poll.attempts}, next check in {interval}s)")
                self.sleep(interval)
                interval = min(interval * self.poll.backoff, self.poll.max_interval)

        raise ConfirmationTimeout(
            f"Transaction {tx_hash} not confirmed after {self.poll.attempts} attempts")

    def _deploy_artifact(self, txn, artifact, data):
        payload = payload_hash(data)
        submission = txn.record.submission(artifact)
        if submission is not None and submission.get("payload") != payload:
            log.warn(f"\tCreation data of {artifact} changed since {submission['tx_hash']}, not reusing it")
            submission = None

        if submission is not None and submission["address"]:
            log.h3(f"Skipping {artifact}, already deployed at {submission['address']}")
            return

        tx_hash = None
        if submission is not None:
            tx_hash = submission["tx_hash"]
            log.h3(f"Checking earlier transaction {tx_hash} for {artifact}")
            receipt = self.client.get_receipt(tx_hash)
            if receipt is not None and not receipt.succeeded:
                log.warn(f"\tTransaction {tx_hash} reverted, deploying {artifact} again")
                tx_hash = None
            elif receipt is None and not self.client.is_known(tx_hash):
                log.warn(f"\tTransaction {tx_hash} is unknown to the network, deploying {artifact} again")
                tx_hash = None

        if tx_hash is None:
            log.h3(f"Deploying {artifact}")
            signed = self.client.sign_deployment(data)
            tx_hash = signed.tx_hash
            # persisted before broadcast: a lost response must not lead to a second deployment
            txn.record_submission(artifact, tx_hash, payload)
            self.client.broadcast(signed)
            self.transactions_sent += 1

        receipt = self.wait_for_confirmation(tx_hash)
        if not receipt.succeeded:
            raise DeploymentReverted(f"Deployment of {artifact} reverted in {tx_hash}")
        if not receipt.contract_address:
            raise DeploymentReverted(
                f"Transaction {tx_hash} for {artifact} created no contract")

        address = Web3.to_checksum_address(receipt.contract_address)
        txn.record_confirmation(artifact, address)
        log.h3(f"Contract {artifact} deployed at {address}")
