import pytest
from eth_abi.abi import decode

from constants import DICE_BYTECODE, TOKEN_MOCK_BYTECODE
from migrator.utils.executor import payload_hash
from migrator.utils.ledger import Status
from migrator.utils.migration_runner import (EXIT_FATAL, EXIT_RESUMABLE, EXIT_SUCCESS,
                                             RunnerState)
from migrator.utils.steps import MigrationStep, ref


def confirmed(ledger, network):
    return [r for r in ledger.read_state(network) if r.status == Status.CONFIRMED]


################
# Dice example #
################


def test_token_and_dice(runner, ledger, fake_network, network, steps):
    report = runner.run(steps)

    assert report.state == RunnerState.DONE
    assert report.exit_code == EXIT_SUCCESS
    assert report.transactions_sent == 2
    assert [r.step_name for r in report.applied] == ["TokenMock", "DiceContract"]

    token, dice = confirmed(ledger, network)
    data = fake_network.deployed_data(dice.deployed_address)
    code = bytes.fromhex(DICE_BYTECODE[2:])
    (token_address,) = decode(["address"], data[len(code):])
    assert token_address.lower() == token.deployed_address.lower()


def test_rerun_is_noop(createRunner, ledger, fake_network, network, steps):
    createRunner().run(steps)
    state = ledger.read_state(network)

    report = createRunner().run(steps)

    assert report.exit_code == EXIT_SUCCESS
    assert report.transactions_sent == 0
    assert report.applied == []
    assert [step.name for step in report.skipped] == ["TokenMock", "DiceContract"]
    assert ledger.read_state(network) == state
    assert len(fake_network.sent) == 2


def test_steps_run_in_sequence_order(runner, fake_network):
    steps = [
        MigrationStep(1, "TokenMock", ["TokenMock"], {}),
        MigrationStep(5, "DiceContract", ["DiceContract"], {"tokenAddress": ref(1)}),
        MigrationStep(9, "SecondDice", ["DiceContract"], {"tokenAddress": ref(5)}),
    ]

    report = runner.run(steps)

    assert [r.step_sequence_number for r in report.applied] == [1, 5, 9]
    assert fake_network.sent[0] == bytes.fromhex(TOKEN_MOCK_BYTECODE[2:])
    # step 9 is bound to step 5's address
    data = fake_network.deployed_data(report.applied[2].deployed_address)
    (bound,) = decode(["address"], data[len(bytes.fromhex(DICE_BYTECODE[2:])):])
    assert bound.lower() == report.applied[1].deployed_address.lower()


#################
# Fatal errors  #
#################


def test_forward_reference_halts_before_any_transaction(runner, ledger, fake_network, network):
    steps = [
        MigrationStep(1, "TokenMock", ["TokenMock"], {}),
        MigrationStep(2, "DiceContract", ["DiceContract"], {"tokenAddress": ref(3)}),
        MigrationStep(3, "Vault", ["TokenMock"], {}),
    ]

    report = runner.run(steps)

    assert report.state == RunnerState.HALTED
    assert report.exit_code == EXIT_FATAL
    assert not report.resumable
    (failure,) = report.failed
    assert failure.kind == "UnresolvedDependency"
    assert failure.step == 2
    assert failure.name == "DiceContract"
    assert fake_network.sent == []
    assert ledger.read_state(network) == []


def test_unknown_artifact_halts(runner, fake_network, token_step):
    report = runner.run([token_step, MigrationStep(2, "Lottery", ["Lottery"], {})])

    assert report.exit_code == EXIT_FATAL
    assert report.failed[0].kind == "NotFound"
    assert fake_network.sent == []


def test_invalid_constructor_args_halts(runner, fake_network, token_step):
    bad = MigrationStep(2, "DiceContract", ["DiceContract"], {"tokenAddress": "not-an-address"})
    report = runner.run([token_step, bad])

    assert report.exit_code == EXIT_FATAL
    assert report.failed[0].kind == "InvalidConstructorArgs"
    assert report.failed[0].step == 2
    assert len(report.applied) == 1
    assert len(fake_network.sent) == 1


def test_malformed_order_halts(runner, token_step, dice_step):
    report = runner.run([dice_step, token_step])

    assert report.exit_code == EXIT_FATAL
    assert report.failed[0].kind == "MalformedStepSet"


def test_revert_halts(runner, fake_network, ledger, network, steps):
    fake_network.revert = {2}

    report = runner.run(steps)

    assert report.exit_code == EXIT_FATAL
    assert report.failed[0].kind == "DeploymentReverted"
    assert ledger.get(network, 2).status == Status.FAILED


def test_reverted_step_can_be_fixed_and_rerun(createRunner, fake_network, ledger, network, steps):
    fake_network.revert = {1}
    assert createRunner().run(steps).exit_code == EXIT_FATAL

    # whatever made the constructor revert has been fixed on chain
    fake_network.revert = set()
    report = createRunner().run(steps)

    assert report.exit_code == EXIT_SUCCESS
    assert report.transactions_sent == 2
    assert len(confirmed(ledger, network)) == 2


###################
# Resumable runs  #
###################


def test_timeout_is_resumable(createRunner, fake_network, ledger, network, steps):
    fake_network.confirm_after = 10

    report = createRunner().run(steps)

    assert report.state == RunnerState.HALTED
    assert report.exit_code == EXIT_RESUMABLE
    assert report.resumable
    assert report.failed[0].kind == "ConfirmationTimeout"
    assert report.failed[0].step == 1
    assert confirmed(ledger, network) == []

    # the transaction eventually lands; the next run adopts it instead of redeploying
    fake_network.confirm_after = 0
    report = createRunner().run(steps)

    assert report.exit_code == EXIT_SUCCESS
    assert report.transactions_sent == 1
    assert len(fake_network.sent) == 2
    assert len(confirmed(ledger, network)) == 2


def test_network_error_is_resumable(createRunner, fake_network, ledger, network, steps):
    createRunner().run(steps[:1])
    fake_network.fail_sends = 1

    report = createRunner().run(steps)

    assert report.exit_code == EXIT_RESUMABLE
    assert report.failed[0].kind == "NetworkError"
    assert report.failed[0].step == 2

    report = createRunner().run(steps)
    assert report.exit_code == EXIT_SUCCESS
    assert [r.step_name for r in report.applied] == ["DiceContract"]


def test_recover_pending_record(createRunner, fake_network, ledger, network, steps, token_step):
    # crash after submitting step 1: Pending record, transaction mined on the network
    token_data = bytes.fromhex(TOKEN_MOCK_BYTECODE[2:])
    tx_hash = fake_network.send_deployment(token_data)
    fake_network.mine(tx_hash)
    ledger.begin_step(network, token_step).record_submission("TokenMock", tx_hash, payload_hash(token_data))

    report = createRunner().run(steps)

    assert report.exit_code == EXIT_SUCCESS
    assert ledger.get(network, 1).status == Status.CONFIRMED
    assert ledger.get(network, 1).transaction_hash == tx_hash
    # only DiceContract was submitted
    assert report.transactions_sent == 1


def test_crash_between_sign_and_broadcast(createRunner, fake_network, ledger, network, steps, token_step):
    # the hash was recorded but the process died before broadcasting it
    token_data = bytes.fromhex(TOKEN_MOCK_BYTECODE[2:])
    signed = fake_network.sign_deployment(token_data)
    ledger.begin_step(network, token_step).record_submission("TokenMock", signed.tx_hash, payload_hash(token_data))

    report = createRunner().run(steps)

    assert report.exit_code == EXIT_SUCCESS
    assert report.transactions_sent == 2
    assert len(fake_network.sent) == 2


def test_stale_lock_file_from_crashed_run(createRunner, ledger, network, steps, tmp_path):
    lock_filename = tmp_path / "migration_history" / "dev" / network / "ledger.lock"
    lock_filename.parent.mkdir(parents=True, exist_ok=True)
    lock_filename.write_text("999999")

    assert createRunner().run(steps).exit_code == EXIT_SUCCESS


def test_no_duplicate_confirmed_records(createRunner, fake_network, ledger, network, steps):
    fake_network.confirm_after = 10
    createRunner().run(steps)
    fake_network.confirm_after = 0
    createRunner().run(steps)
    createRunner().run(steps)

    numbers = [r.step_sequence_number for r in confirmed(ledger, network)]
    assert numbers == sorted(set(numbers)) == [1, 2]


###############
# Cancelling  #
###############


def test_stop_takes_effect_at_step_boundary(runner, fake_network, ledger, network, steps):
    original = fake_network.broadcast

    def broadcast_and_stop(signed):
        runner.stop()
        return original(signed)

    fake_network.broadcast = broadcast_and_stop

    report = runner.run(steps)

    # step 1 finished even though stop arrived mid-deployment
    assert report.state == RunnerState.STOPPED
    assert report.exit_code == EXIT_RESUMABLE
    assert [r.step_name for r in report.applied] == ["TokenMock"]
    assert ledger.get(network, 2) is None


def test_locked_ledger_halts(runner, ledger, network, steps, fake_network):
    with ledger.lock(network):
        report = runner.run(steps)

    assert report.exit_code == EXIT_FATAL
    assert report.failed[0].kind == "LedgerLocked"
    assert fake_network.sent == []


def test_networks_migrate_independently(createRunner, ledger, steps):
    assert createRunner("local").run(steps).exit_code == EXIT_SUCCESS
    assert createRunner("base-sepolia").run(steps).exit_code == EXIT_SUCCESS

    assert len(confirmed(ledger, "local")) == 2
    assert len(confirmed(ledger, "base-sepolia")) == 2


def test_report_print(runner, steps, capsys):
    report = runner.run(steps)
    report.print()

    out = capsys.readouterr().out
    assert "Done" in out
    assert "applied  1-TokenMock" in out
    assert "Transactions sent: 2" in out


@pytest.mark.parametrize("until, applied", [(1, ["TokenMock"]), (2, ["TokenMock", "DiceContract"])])
def test_partial_step_set(runner, steps, until, applied):
    report = runner.run([step for step in steps if step.sequence_number <= until])
    assert [r.step_name for r in report.applied] == applied
