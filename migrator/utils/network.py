from dataclasses import dataclass
from typing import Optional

import requests
from web3 import Web3
from web3.exceptions import ContractLogicError, TransactionNotFound, Web3Exception

from migrator.utils.errors import DeploymentReverted, NetworkError


@dataclass(frozen=True)
class Receipt:
    tx_hash: str
    status: int
    contract_address: Optional[str]
    block_number: Optional[int] = None

    @property
    def succeeded(self):
        return self.status == 1


@dataclass(frozen=True)
class SignedDeployment:
    tx_hash: str
    raw: bytes


class Web3Network:
    """
    JSON-RPC client used by the executor: signs contract-creation transactions
    locally with `account` and submits them as raw transactions.

    Signing and broadcasting are separate calls so the transaction hash can be
    persisted before the node ever sees the transaction. Any object providing
    `sign_deployment`, `broadcast`, `get_receipt` and `is_known` can stand in for
    it (the test suite uses an in-memory network).
    """

    def __init__(self, rpc_url, account, w3=None):
        self.rpc_url = rpc_url
        self.account = account
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url))

    @property
    def address(self):
        return self.account.address

    def sign_deployment(self, data: bytes) -> SignedDeployment:
        """
        Build and sign a contract creation carrying `data` (bytecode + constructor
        args). Nothing is sent to the network besides the nonce, fee and gas queries.
        """
        try:
            tx = {
                "from": self.address,
                "data": Web3.to_hex(data),
                "value": 0,
                "nonce": self.w3.eth.get_transaction_count(self.address, "pending"),
                "chainId": self.w3.eth.chain_id,
                "gasPrice": self.w3.eth.gas_price,
            }
            tx["gas"] = self.w3.eth.estimate_gas(tx)
        except ContractLogicError as exception:
            raise DeploymentReverted(
                f"Deployment reverted during gas estimation: {exception}") from exception
        except (requests.exceptions.RequestException, Web3Exception) as exception:
            raise NetworkError(f"Could not prepare transaction on {self.rpc_url}: {exception}") from exception

        signed = self.account.sign_transaction(tx)
        return SignedDeployment(tx_hash=Web3.to_hex(signed.hash), raw=bytes(signed.raw_transaction))

    def broadcast(self, signed: SignedDeployment) -> str:
        """
        Submit a signed deployment. Returns its transaction hash as a 0x-prefixed
        hex string. A NetworkError here does not mean the node rejected it.
        """
        try:
            self.w3.eth.send_raw_transaction(signed.raw)
        except (requests.exceptions.RequestException, Web3Exception) as exception:
            raise NetworkError(
                f"Could not submit transaction {signed.tx_hash} to {self.rpc_url}: {exception}") from exception
        return signed.tx_hash

    def get_receipt(self, tx_hash) -> Optional[Receipt]:
        """
        Returns the receipt of a mined transaction, or None if it is not mined yet.
        """
        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except (requests.exceptions.RequestException, Web3Exception) as exception:
            raise NetworkError(f"Could not fetch receipt for {tx_hash}: {exception}") from exception

        return Receipt(
            tx_hash=tx_hash,
            status=receipt["status"],
            contract_address=receipt.get("contractAddress"),
            block_number=receipt.get("blockNumber"),
        )

    def is_known(self, tx_hash) -> bool:
        """
        Whether the node knows the transaction at all (mined or in its mempool).
        """
        try:
            self.w3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return False
        except (requests.exceptions.RequestException, Web3Exception) as exception:
            raise NetworkError(f"Could not look up transaction {tx_hash}: {exception}") from exception
        return True
