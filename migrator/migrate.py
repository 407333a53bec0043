import signal

import click

from config.Networks import CHAINS
from migrator.utils import log
from migrator.utils.artifacts import ARTIFACTS_DIR, load_artifacts
from migrator.utils.deploy_args import DeployArgs
from migrator.utils.errors import MigrationError
from migrator.utils.executor import DeploymentExecutor
from migrator.utils.ledger import MigrationLedger, Status
from migrator.utils.migration_helpers import get_account
from migrator.utils.migration_runner import EXIT_FATAL, MigrationRunner
from migrator.utils.network import Web3Network
from migrator.utils.steps import load_step_set


MIGRATION_SCRIPTS_DIR = "./migrations"
MIGRATION_HISTORY_DIR = "./migration_history"


CLICK_PROMPTS = {
    "rpc": {
        "prompt": "What is the desired rpc?",
        "default": "",
        "help": "RPC url for the chain to deploy to. Defaults to the chain's url in `config/Networks.py`.",
    },
    "environment": {
        "prompt": "Inform the environment name",
        "default": "dev",
        "help": "Environment whose step set is applied and whose ledger records the result. Defaults to `dev`.",
    },
    "chain": {
        "prompt": "Chain name",
        "default": "local",
        "help": "Chain to migrate (ex: eth-mainnet, eth-sepolia, base-mainnet, base-sepolia). Defaults to `local`",
        "type": click.Choice(CHAINS, case_sensitive=False),
    },
    "account": {
        "prompt": "Deployer account name",
        "default": "DEPLOYER",
        "help": "Account name for deployment, read from `<ACCOUNT>_PRIVATE_KEY`. Defaults to `DEPLOYER`"
    },
    "artifacts": {
        "prompt": "Artifacts directory",
        "default": ARTIFACTS_DIR,
        "help": f"Directory of compiled contract artifacts. Defaults to `{ARTIFACTS_DIR}`.",
    },
    "steps": {
        "prompt": "Step set file",
        "default": "",
        "help": "Step set to apply. Defaults to `./migrations/<chain>/<environment>/steps.json`.",
    },
    "until": {
        "prompt": "Last step",
        "default": 0,
        "help": "Last sequence number to apply. If none is provided, every step of the set is applied.",
    },
}


def param_prompt(ctx, param, value):
    param_config = CLICK_PROMPTS.get(param.name)
    if param_config is None:
        return value

    default_val = param_config.get("default")
    prompt = param_config.get("prompt")
    optional = param_config.get("optional", default_val is not None)

    if value != default_val:
        return value

    if prompt is None or (ctx.params.get("silent") and optional):
        return value

    value = click.prompt(
        f"{prompt} --{param.name.replace('_', '-')}",
        default=default_val,
        type=param_config.get("type"),
    )

    return value


def prompted_option(*names, **kwargs):
    name = names[0].lstrip("-").replace("-", "_")
    return click.option(
        *names,
        default=CLICK_PROMPTS[name]["default"],
        help=CLICK_PROMPTS[name]["help"],
        callback=param_prompt,
        **kwargs,
    )


silent_option = click.option(
    "--silent", is_flag=True, default=False, is_eager=True, help="Run command without prompts.")
history_option = click.option(
    "--history-dir", default=MIGRATION_HISTORY_DIR, show_default=True,
    help="Directory holding the per-environment ledgers.")


@click.group()
def cli():
    """
    Applies ordered contract deployment steps to a chain, exactly once each.

    A step set (`./migrations/<chain>/<environment>/steps.json`) lists the
    steps in sequence order. Each step deploys one or more compiled artifacts,
    and its constructor arguments may reference addresses deployed by earlier
    steps.

    Every applied step is recorded in a ledger under
    `./migration_history/<environment>/<chain>/`. Re-running skips confirmed
    steps and resumes from the first step that is not confirmed. A step left
    pending by an interrupted run is checked against the chain before
    anything is deployed again.
    """


@cli.command()
@silent_option
@prompted_option("--chain", "-f", type=click.Choice(CHAINS, case_sensitive=False))
@prompted_option("--environment")
@prompted_option("--rpc")
@prompted_option("--account", "-a")
@prompted_option("--artifacts")
@prompted_option("--steps")
@prompted_option("--until", "-e", type=int)
@history_option
@click.pass_context
def run(ctx, silent, chain, environment, rpc, account, artifacts, steps, until, history_dir):
    """
    Apply the pending steps of a step set. Exits with 0 when every step is
    confirmed, 1 on a fatal error and 2 when the run can be resumed.
    """
    steps_file = steps or f"{MIGRATION_SCRIPTS_DIR}/{chain}/{environment}/steps.json"

    try:
        sender = get_account(account, chain)
        deploy_args = DeployArgs(sender, chain, environment, rpc=rpc or None)
    except MigrationError as exception:
        log.error(f"Cannot start migration: {exception}")
        ctx.exit(EXIT_FATAL)

    log.h1("Contract Migration")
    log.info(f"Connected to rpc `{deploy_args.rpc}`.")
    log.info(f"Deployer account `{sender.address}`.")
    log.info(f"Ledger is stored in `{history_dir}/{environment}/{chain}`.")
    log.info(f"Deployment arguments: {deploy_args}")
    log.info("")

    try:
        registry = load_artifacts(artifacts)
        step_set = load_step_set(steps_file)
    except MigrationError as exception:
        log.error(f"Cannot start migration: {exception}")
        ctx.exit(EXIT_FATAL)

    log.info(f"Loaded {len(registry)} artifacts and {len(step_set)} steps from `{steps_file}`.")
    if until:
        step_set = [step for step in step_set if step.sequence_number <= until]
        log.info(f"Applying steps up to {until}.")

    ledger = MigrationLedger(f"{history_dir}/{environment}")
    client = Web3Network(deploy_args.rpc, sender)
    executor = DeploymentExecutor(ledger, registry, client, deploy_args.poll)
    runner = MigrationRunner(ledger, registry, executor, chain)

    def request_stop(signum, frame):
        log.warn("Stop requested, finishing the current step first...")
        runner.stop()

    previous_handler = signal.signal(signal.SIGINT, request_stop)
    try:
        log.h2("Running migrations...")
        report = runner.run(step_set)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    report.print()
    log.info("Done.")
    ctx.exit(report.exit_code)


@cli.command()
@silent_option
@prompted_option("--chain", "-f", type=click.Choice(CHAINS, case_sensitive=False))
@prompted_option("--environment")
@history_option
def status(silent, chain, environment, history_dir):
    """Print the ledger of a chain."""
    ledger = MigrationLedger(f"{history_dir}/{environment}")
    records = ledger.read_state(chain)

    log.h1(f"Ledger for `{chain}` ({environment})")
    if not records:
        log.info("No migration steps recorded.")
        return

    for record in records:
        line = (
            f"{record.step_sequence_number}-{record.step_name}: {record.status.value}"
        )
        if record.status == Status.CONFIRMED:
            line += f" at {record.deployed_address} ({record.transaction_hash})"
        elif record.reason:
            line += f" [{record.error_kind}] {record.reason}"
        log.status(record.status.value, line)

        for artifact, address in record.contracts.items():
            log.info(f"\t\t{artifact}: {address}")


if __name__ == "__main__":
    cli()
