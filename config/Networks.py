# confirmation polling (seconds)
SECOND = 1
MINUTE = 60 * SECOND

# block times differ a lot between chains, so polling is tuned per chain
PARAMS = {
    "local": {
        # anvil / hardhat node mines instantly
        "CONFIRMATION_ATTEMPTS": 10,
        "POLL_INTERVAL": 0.5 * SECOND,
        "BACKOFF": 1,
        "MAX_POLL_INTERVAL": 0.5 * SECOND,
    },
    "base-mainnet": {
        "CONFIRMATION_ATTEMPTS": 20,
        "POLL_INTERVAL": 2 * SECOND,
        "BACKOFF": 1.5,
        "MAX_POLL_INTERVAL": 30 * SECOND,
    },
    "base-sepolia": {
        "CONFIRMATION_ATTEMPTS": 20,
        "POLL_INTERVAL": 2 * SECOND,
        "BACKOFF": 1.5,
        "MAX_POLL_INTERVAL": 30 * SECOND,
    },
    "eth-mainnet": {
        "CONFIRMATION_ATTEMPTS": 25,
        "POLL_INTERVAL": 12 * SECOND,
        "BACKOFF": 1.5,
        "MAX_POLL_INTERVAL": 2 * MINUTE,
    },
    "eth-sepolia": {
        "CONFIRMATION_ATTEMPTS": 25,
        "POLL_INTERVAL": 12 * SECOND,
        "BACKOFF": 1.5,
        "MAX_POLL_INTERVAL": 2 * MINUTE,
    },
}

# `{key}` is replaced with WEB3_ALCHEMY_API_KEY
RPC_URLS = {
    "local": "http://127.0.0.1:8545",
    "base-mainnet": "https://base-mainnet.g.alchemy.com/v2/{key}",
    "base-sepolia": "https://base-sepolia.g.alchemy.com/v2/{key}",
    "eth-mainnet": "https://eth-mainnet.g.alchemy.com/v2/{key}",
    "eth-sepolia": "https://eth-sepolia.g.alchemy.com/v2/{key}",
}

CHAINS = list(PARAMS.keys())
