from migrator.utils.errors import ArtifactNotFound, MalformedStepSet, UnresolvedDependency
from migrator.utils.ledger import Status
from migrator.utils.steps import Ref


def _confirmed(ledger_state):
    return {
        record.step_sequence_number: record
        for record in ledger_state
        if record.status == Status.CONFIRMED
    }


def check_ordering(steps):
    # the declared order is the dependency order, so it must already be
    # strictly increasing; nothing is reordered here

    previous = None
    for step in steps:
        if previous is not None and step.sequence_number <= previous.sequence_number:
            if step.sequence_number == previous.sequence_number:
                reason = f"Steps {previous} and {step} share sequence number {step.sequence_number}"
            else:
                reason = f"Step {step} is declared after {previous}"
            raise MalformedStepSet(reason, step=step.sequence_number)
        previous = step


def plan(all_steps, ledger_state, registry=None):
    """
    Returns the steps of `all_steps` that still need to be applied, in order.

    Every reference of a pending step must point to a lower sequence number whose
    step is either Confirmed in `ledger_state` or applied earlier in the same plan.
    When a `registry` is given, every artifact a pending step deploys must exist.
    Nothing here touches the network.
    """
    check_ordering(all_steps)

    confirmed = _confirmed(ledger_state)
    declared = {step.sequence_number: step for step in all_steps}
    pending = [step for step in all_steps if step.sequence_number not in confirmed]
    planned = set()

    for step in pending:
        seq = step.sequence_number
        for param, target in step.references():
            _check_reference(step, param, target, declared, confirmed, planned)

        if registry is not None:
            for artifact in step.artifact_refs:
                try:
                    registry.resolve(artifact)
                except ArtifactNotFound as exception:
                    exception.step = seq
                    raise

        planned.add(seq)

    return pending


def _check_reference(step, param, target: Ref, declared, confirmed, planned):
    seq = step.sequence_number

    if target.step >= seq:
        raise UnresolvedDependency(
            f"Binding `{param}` of step {step} references {target}, which is not an earlier step",
            step=seq)

    if target.step not in confirmed and target.step not in planned:
        raise UnresolvedDependency(
            f"Binding `{param}` of step {step} references {target}, which is neither confirmed nor scheduled",
            step=seq)

    if target.artifact is not None:
        if target.step in declared:
            artifacts = declared[target.step].artifact_refs
        else:
            artifacts = tuple(confirmed[target.step].contracts.keys())
        if target.artifact not in artifacts:
            raise UnresolvedDependency(
                f"Binding `{param}` of step {step} references {target}, but that step does not deploy {target.artifact}",
                step=seq)


def resolve_bindings(step, ledger_state):
    """
    Substitute each reference in `step`'s bindings with the deployed address
    recorded by the referenced (Confirmed) step. Literals pass through unchanged.
    """
    confirmed = _confirmed(ledger_state)
    resolved = {}

    for param, value in step.constructor_bindings.items():
        if not isinstance(value, Ref):
            resolved[param] = value
            continue

        record = confirmed.get(value.step) if value.step < step.sequence_number else None
        if record is None:
            raise UnresolvedDependency(
                f"Binding `{param}` of step {step} references {value}, which is not confirmed",
                step=step.sequence_number)

        if value.artifact is None:
            address = record.deployed_address
        else:
            address = record.contracts.get(value.artifact)

        if not address:
            raise UnresolvedDependency(
                f"Binding `{param}` of step {step} references {value}, which has no deployed address",
                step=step.sequence_number)
        resolved[param] = address

    return resolved
