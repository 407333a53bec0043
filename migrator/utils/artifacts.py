import json
import os
from dataclasses import dataclass
from types import MappingProxyType

from migrator.utils import log
from migrator.utils.errors import ArtifactNotFound, InvalidArtifact

# Truffle writes its build output here
ARTIFACTS_DIR = "./build/contracts"


def _freeze(value):
    if isinstance(value, dict):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value):
    if isinstance(value, MappingProxyType):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


@dataclass(frozen=True)
class ArtifactDescriptor:
    """
    A compiled contract: creation bytecode plus the ABI describing its constructor.
    """

    name: str
    bytecode: bytes
    abi: tuple

    @classmethod
    def from_json(cls, data, default_name=None):
        """
        Build a descriptor from a Truffle/Hardhat style artifact
        (`contractName`, `abi`, `bytecode`).
        """
        name = data.get("contractName") or default_name
        if not name:
            raise InvalidArtifact("Artifact has no contract name")

        bytecode = data.get("bytecode")
        if isinstance(bytecode, dict):
            # solc standard-json shape: {"object": "0x..."}
            bytecode = bytecode.get("object")

        if not bytecode or bytecode == "0x":
            raise InvalidArtifact(f"Artifact {name} has no bytecode")
        # library placeholders look like `__$...$__` (solc) or `__Name____` (truffle)
        if "__" in bytecode:
            raise InvalidArtifact(f"Artifact {name} has unlinked library references")

        try:
            code = bytes.fromhex(bytecode[2:] if bytecode.startswith("0x") else bytecode)
        except ValueError as exception:
            raise InvalidArtifact(f"Artifact {name} bytecode is not valid hex") from exception

        abi = data.get("abi")
        if not isinstance(abi, list):
            raise InvalidArtifact(f"Artifact {name} has no ABI")

        return cls(name=name, bytecode=code, abi=_freeze(abi))

    def constructor_inputs(self):
        """
        Returns the constructor inputs as a list of `{"name", "type"}` dicts,
        empty when the contract declares no constructor.
        """
        constructor = next(
            (item for item in self.abi if item.get("type") == "constructor"), None)
        if not constructor:
            return []
        return [_thaw(input_) for input_ in constructor.get("inputs", ())]


class ArtifactRegistry:
    """
    Read-only lookup of compiled contracts by name.
    """

    def __init__(self, descriptors):
        self._descriptors = MappingProxyType(dict(descriptors))

    @classmethod
    def load(cls, descriptors):
        by_name = {}
        for descriptor in descriptors:
            if descriptor.name in by_name:
                raise InvalidArtifact(f"Artifact {descriptor.name} is declared twice")
            by_name[descriptor.name] = descriptor
        return cls(by_name)

    def resolve(self, name) -> ArtifactDescriptor:
        try:
            return self._descriptors[name]
        except KeyError:
            raise ArtifactNotFound(f"Artifact {name} is not declared") from None

    def names(self):
        return sorted(self._descriptors.keys())

    def __contains__(self, name):
        return name in self._descriptors

    def __len__(self):
        return len(self._descriptors)


def load_artifacts(directory=ARTIFACTS_DIR) -> ArtifactRegistry:
    """
    Load all JSON artifacts from `directory` (non-recursive).
    Files named after the contract, as Truffle and Hardhat emit them, are expected.
    """
    if not os.path.isdir(directory):
        raise InvalidArtifact(f"Artifact directory {directory} does not exist")

    descriptors = []
    for file in sorted(os.listdir(directory)):
        if not file.endswith(".json"):
            continue

        path = os.path.join(directory, file)
        with open(path) as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as exception:
                raise InvalidArtifact(f"Artifact file {path} is not valid JSON") from exception

        descriptors.append(ArtifactDescriptor.from_json(data, default_name=file[:-5]))
        log.h3(f"Loaded artifact {descriptors[-1].name}")

    return ArtifactRegistry.load(descriptors)
