from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Optional

from migrator.utils import json_file
from migrator.utils.errors import MalformedStepSet

STEP_SET_VERSION = 1


@dataclass(frozen=True)
class Ref:
    """
    Reference to the deployed address of an earlier step.
    With no `artifact`, the step's primary (first) artifact is meant.
    """

    step: int
    artifact: Optional[str] = None

    def __str__(self):
        if self.artifact:
            return f"ref(step {self.step}, {self.artifact})"
        return f"ref(step {self.step})"


def ref(step, artifact=None):
    return Ref(step, artifact)


@dataclass(frozen=True)
class MigrationStep:
    sequence_number: int
    name: str
    artifact_refs: tuple
    constructor_bindings: MappingProxyType = field(
        default_factory=lambda: MappingProxyType({}))

    def __post_init__(self):
        # allow plain lists/dicts in, store immutable views
        object.__setattr__(self, "artifact_refs", tuple(self.artifact_refs))
        object.__setattr__(
            self, "constructor_bindings", MappingProxyType(dict(self.constructor_bindings)))

    @property
    def primary_artifact(self):
        return self.artifact_refs[0]

    def references(self):
        """
        Returns `(param, Ref)` pairs for every binding that points at another step.
        """
        return [(param, value) for param, value in self.constructor_bindings.items()
                if isinstance(value, Ref)]

    def __str__(self):
        return f"{self.sequence_number}-{self.name}"


def _parse_binding(param, value, seq):
    if isinstance(value, dict) and "ref" in value:
        extra = set(value.keys()) - {"ref", "artifact"}
        target = value["ref"]
        artifact = value.get("artifact")
        if extra or not isinstance(target, int) or isinstance(target, bool) \
                or not (artifact is None or isinstance(artifact, str)):
            raise MalformedStepSet(
                f"Binding `{param}` has a malformed reference {value}", step=seq)
        return Ref(target, artifact)

    if isinstance(value, dict) and set(value.keys()) == {"value"}:
        # escaped literal, lets a literal dict carry a "ref" key
        return value["value"]

    return value


def parse_step(data) -> MigrationStep:
    if not isinstance(data, dict):
        raise MalformedStepSet(f"Step {data!r} must be an object")

    seq = data.get("seq", data.get("sequenceNumber"))
    if not isinstance(seq, int) or isinstance(seq, bool):
        raise MalformedStepSet(f"Step {data.get('name')} has no integer sequence number")

    name = data.get("name")
    if not name or not isinstance(name, str):
        raise MalformedStepSet("Step has no name", step=seq)

    artifacts = data.get("artifacts", data.get("artifactRefs"))
    if not artifacts or not isinstance(artifacts, list):
        raise MalformedStepSet(f"Step {name} deploys no artifacts", step=seq)
    if not all(isinstance(artifact, str) and artifact for artifact in artifacts):
        raise MalformedStepSet(f"Step {name} artifacts must be artifact names", step=seq)
    if len(set(artifacts)) != len(artifacts):
        raise MalformedStepSet(f"Step {name} lists an artifact twice", step=seq)

    bindings = data.get("bindings", data.get("constructorBindings", {}))
    if not isinstance(bindings, dict):
        raise MalformedStepSet(f"Step {name} bindings must be a mapping", step=seq)

    return MigrationStep(
        sequence_number=seq,
        name=name,
        artifact_refs=artifacts,
        constructor_bindings={
            param: _parse_binding(param, value, seq) for param, value in bindings.items()
        },
    )


def parse_step_set(content):
    """
    Parse a step-set document:

        {"version": 1, "steps": [{"seq": 1, "name": "...", "artifacts": [...], "bindings": {...}}]}

    Step order is kept exactly as declared; ordering problems are reported by the
    resolver when the set is planned.
    """
    if not isinstance(content, dict) or not isinstance(content.get("steps"), list):
        raise MalformedStepSet("Step set must be an object with a `steps` list")

    version = content.get("version", STEP_SET_VERSION)
    if version != STEP_SET_VERSION:
        raise MalformedStepSet(f"Unsupported step set version {version}")

    return [parse_step(data) for data in content["steps"]]


def load_step_set(filename):
    try:
        content = json_file.load(filename)
    except FileNotFoundError:
        raise MalformedStepSet(f"Step set {filename} does not exist") from None
    except ValueError as exception:
        raise MalformedStepSet(f"Step set {filename} is not valid JSON") from exception
    return parse_step_set(content)
