import hashlib

import pytest
from web3 import Web3

from constants import (DICE_ABI, DICE_BYTECODE, NETWORK, TOKEN_MOCK_ABI,
                       TOKEN_MOCK_BYTECODE, VAULT_ABI, VAULT_BYTECODE)
from migrator.utils.artifacts import ArtifactDescriptor, ArtifactRegistry
from migrator.utils.errors import NetworkError
from migrator.utils.executor import DeploymentExecutor, PollConfig
from migrator.utils.ledger import MigrationLedger
from migrator.utils.migration_runner import MigrationRunner
from migrator.utils.network import Receipt, SignedDeployment
from migrator.utils.steps import MigrationStep, ref


class FakeNetwork:
    """
    In-memory chain: every signed deployment gets a deterministic hash and
    address, and is mined after `confirm_after` receipt polls.
    """

    def __init__(self):
        self.sent = []
        self.transactions = {}
        self.confirm_after = 0
        self.revert = set()
        self.fail_sends = 0
        self.accept_then_fail = 0

    def sign_deployment(self, data):
        nonce = len(self.sent)
        digest = hashlib.sha256(nonce.to_bytes(8, "big") + data).hexdigest()
        return SignedDeployment(tx_hash="0x" + digest, raw=data)

    def broadcast(self, signed):
        if self.fail_sends:
            self.fail_sends -= 1
            raise NetworkError("connection refused")

        self.sent.append(signed.raw)
        self.transactions[signed.tx_hash] = {
            "data": signed.raw,
            "address": Web3.to_checksum_address("0x" + signed.tx_hash[2:42]),
            "status": 0 if len(self.sent) in self.revert else 1,
            "polls": 0,
            "mined": False,
        }
        if self.accept_then_fail:
            self.accept_then_fail -= 1
            raise NetworkError("read timeout")
        return signed.tx_hash

    def send_deployment(self, data):
        return self.broadcast(self.sign_deployment(data))

    def get_receipt(self, tx_hash):
        tx = self.transactions.get(tx_hash)
        if tx is None:
            return None
        if not tx["mined"]:
            if tx["polls"] < self.confirm_after:
                tx["polls"] += 1
                return None
            tx["mined"] = True
        return Receipt(
            tx_hash=tx_hash,
            status=tx["status"],
            contract_address=tx["address"] if tx["status"] == 1 else None,
            block_number=1,
        )

    def is_known(self, tx_hash):
        return tx_hash in self.transactions

    def mine(self, tx_hash):
        self.transactions[tx_hash]["mined"] = True

    def drop(self, tx_hash):
        del self.transactions[tx_hash]

    def deployed_data(self, address):
        return next(tx["data"] for tx in self.transactions.values() if tx["address"] == address)


@pytest.fixture
def network():
    return NETWORK


@pytest.fixture
def fake_network():
    return FakeNetwork()


@pytest.fixture
def token_mock():
    return ArtifactDescriptor.from_json(
        {"contractName": "TokenMock", "abi": TOKEN_MOCK_ABI, "bytecode": TOKEN_MOCK_BYTECODE})


@pytest.fixture
def dice_contract():
    return ArtifactDescriptor.from_json(
        {"contractName": "DiceContract", "abi": DICE_ABI, "bytecode": DICE_BYTECODE})


@pytest.fixture
def vault():
    return ArtifactDescriptor.from_json(
        {"contractName": "Vault", "abi": VAULT_ABI, "bytecode": VAULT_BYTECODE})


@pytest.fixture
def registry(token_mock, dice_contract, vault):
    return ArtifactRegistry.load([token_mock, dice_contract, vault])


@pytest.fixture
def ledger(tmp_path):
    return MigrationLedger(str(tmp_path / "migration_history" / "dev"))


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def poll():
    return PollConfig(attempts=3, interval=1, backoff=2, max_interval=3)


@pytest.fixture
def executor(ledger, registry, fake_network, poll, sleeps):
    return DeploymentExecutor(ledger, registry, fake_network, poll, sleep=sleeps.append)


@pytest.fixture
def createRunner(ledger, registry, fake_network, poll, sleeps, network):
    def createRunner(_network=network, _client=fake_network):
        executor = DeploymentExecutor(ledger, registry, _client, poll, sleep=sleeps.append)
        return MigrationRunner(ledger, registry, executor, _network)

    yield createRunner


@pytest.fixture
def runner(createRunner):
    return createRunner()


@pytest.fixture
def token_step():
    return MigrationStep(1, "TokenMock", ["TokenMock"], {})


@pytest.fixture
def dice_step():
    return MigrationStep(2, "DiceContract", ["DiceContract"], {"tokenAddress": ref(1)})


@pytest.fixture
def steps(token_step, dice_step):
    return [token_step, dice_step]
