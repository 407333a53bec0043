import os

import dotenv
from eth_account import Account

from migrator.utils import log
from migrator.utils.errors import MissingConfiguration

dotenv.load_dotenv()


# anvil / hardhat account #0, only ever used on the local chain
TEST_PRIVATE_KEY = '0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80'


def get_account(accountName, chain="local"):
    log.h1(f'Connecting to deployer account {accountName}')

    accountKey = os.environ.get(f'{accountName}_PRIVATE_KEY')
    if not accountKey and chain != "local":
        raise MissingConfiguration(f'{accountName}_PRIVATE_KEY is not set, cannot sign on {chain}')

    try:
        account = Account.from_key(
            accountKey if accountKey else TEST_PRIVATE_KEY)
    except ValueError:
        raise MissingConfiguration(f'{accountName}_PRIVATE_KEY is not a valid private key') from None
    log.h2(f'Deployer account {accountName} connected')

    return account
