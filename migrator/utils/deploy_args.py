import os

from config.Networks import PARAMS, RPC_URLS
from migrator.utils.errors import MissingConfiguration
from migrator.utils.executor import PollConfig


def default_rpc(chain):
    template = RPC_URLS[chain]
    key = os.environ.get("WEB3_ALCHEMY_API_KEY")
    if "{key}" in template and not key:
        raise MissingConfiguration(
            f"WEB3_ALCHEMY_API_KEY is not set, pass --rpc or set it to reach {chain}")
    return template.format(key=key)


def poll_config(chain, **overrides):
    params = PARAMS[chain]
    values = {
        "attempts": params["CONFIRMATION_ATTEMPTS"],
        "interval": params["POLL_INTERVAL"],
        "backoff": params["BACKOFF"],
        "max_interval": params["MAX_POLL_INTERVAL"],
    }
    values.update({key: value for key, value in overrides.items() if value is not None})
    return PollConfig(**values)


class DeployArgs:
    def __init__(self, sender, chain, environment, rpc=None, poll=None):
        self.sender = sender
        self.chain = chain
        self.environment = environment
        self.rpc = rpc or default_rpc(chain)
        self.poll = poll or poll_config(chain)

    def __repr__(self):
        return (
            f"DeployArgs(sender={self.sender.address}, chain={self.chain}, "
            f"environment={self.environment}, poll={self.poll})"
        )
