"""Minimal ABI descriptions for contract reads and event logs.

Selectors and topics are keccak hashes computed with web3; argument encoding
and decoding go through eth_abi. Decoded integers come back as decimal
strings and addresses as lowercase hex so no value loses precision on its way
to the database.
"""

import re
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Sequence

from eth_abi import decode, encode
from web3 import Web3

from services.indexer.src.indexer.domain.models import RawLog

_SIGNATURE_RE = re.compile(r"^\s*(\w+)\s*\((.*?)\)\s*(?:->\s*\((.*)\))?\s*$")


def _split_types(types: str) -> list[str]:
    """Split a comma separated type list, keeping tuple types intact."""
    parts, depth, current = [], 0, ""
    for ch in types:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        if ch == "," and depth == 0:
            parts.append(current.strip())
            current = ""
        else:
            current += ch
    if current.strip():
        parts.append(current.strip())
    return parts


def _to_hex(value: bytes) -> str:
    return "0x" + value.hex()


def normalize_value(abi_type: str, value: Any) -> Any:
    """Convert an eth_abi value into its string-typed storage form."""
    if abi_type.endswith("]"):
        inner = abi_type[: abi_type.rindex("[")]
        return [normalize_value(inner, v) for v in value]
    if abi_type.startswith(("uint", "int")):
        return str(value)
    if abi_type == "address":
        return value.lower()
    if abi_type.startswith("bytes"):
        return _to_hex(value)
    return value


def _prepare_arg(abi_type: str, value: Any) -> Any:
    if abi_type.startswith(("uint", "int")) and not abi_type.endswith("]"):
        return int(value)
    if abi_type.startswith("bytes") and isinstance(value, str):
        return bytes.fromhex(value.removeprefix("0x"))
    return value


@dataclass(frozen=True)
class ContractFunction:
    """A view function, e.g. ``ContractFunction.parse("getTroveManager(uint256)->(address)")``."""

    name: str
    inputs: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()

    @classmethod
    def parse(cls, signature: str) -> "ContractFunction":
        match = _SIGNATURE_RE.match(signature)
        if match is None:
            raise ValueError(f"Invalid function signature: {signature!r}")
        name, inputs, outputs = match.groups()
        return cls(
            name=name,
            inputs=tuple(_split_types(inputs)),
            outputs=tuple(_split_types(outputs or "")),
        )

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.inputs)})"

    @cached_property
    def selector(self) -> str:
        return Web3.to_hex(Web3.keccak(text=self.signature))[:10]

    def encode(self, args: Sequence[Any] = ()) -> str:
        if len(args) != len(self.inputs):
            raise ValueError(
                f"{self.signature} expects {len(self.inputs)} argument(s), got {len(args)}"
            )
        prepared = [_prepare_arg(t, a) for t, a in zip(self.inputs, args)]
        return self.selector + encode(list(self.inputs), prepared).hex()

    def decode(self, data: str) -> Any:
        """Decode return data. A single output is returned bare, several as a tuple."""
        raw = bytes.fromhex(data.removeprefix("0x"))
        if not raw and self.outputs:
            raise ValueError(f"Empty return data for {self.signature}")
        values = decode(list(self.outputs), raw)
        normalized = tuple(normalize_value(t, v) for t, v in zip(self.outputs, values))
        if len(normalized) == 1:
            return normalized[0]
        return normalized


@dataclass(frozen=True)
class EventInput:
    name: str
    type: str
    indexed: bool = False


@dataclass(frozen=True)
class EventSpec:
    name: str
    inputs: tuple[EventInput, ...] = field(default_factory=tuple)

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(i.type for i in self.inputs)})"

    @cached_property
    def topic(self) -> str:
        return Web3.to_hex(Web3.keccak(text=self.signature))

    def decode(self, log: RawLog) -> dict[str, Any]:
        """
        Decode a raw log into ``{argument name: value}``.

        Leading underscores are dropped from argument names (``_troveId`` -> ``troveId``).

        Raises:
            ValueError: If the log does not belong to this event or is malformed
        """
        if not log.topics or log.topics[0].lower() != self.topic.lower():
            raise ValueError(f"Log is not a {self.name} event")

        indexed = [i for i in self.inputs if i.indexed]
        plain = [i for i in self.inputs if not i.indexed]
        if len(log.topics) != len(indexed) + 1:
            raise ValueError(
                f"{self.name} expects {len(indexed)} indexed topic(s), got {len(log.topics) - 1}"
            )

        result: dict[str, Any] = {}
        for arg, topic in zip(indexed, log.topics[1:]):
            (value,) = decode([arg.type], bytes.fromhex(topic.removeprefix("0x")))
            result[arg.name.lstrip("_")] = normalize_value(arg.type, value)

        values = decode([i.type for i in plain], bytes.fromhex(log.data.removeprefix("0x")))
        for arg, value in zip(plain, values):
            result[arg.name.lstrip("_")] = normalize_value(arg.type, value)
        return result


def parse_event(signature: str) -> EventSpec:
    """Build an EventSpec from ``"Name(uint256 indexed _a, address _b)"``."""
    match = _SIGNATURE_RE.match(signature)
    if match is None:
        raise ValueError(f"Invalid event signature: {signature!r}")
    name, params, _ = match.groups()
    inputs = []
    for param in _split_types(params):
        tokens = param.split()
        if len(tokens) == 3 and tokens[1] == "indexed":
            inputs.append(EventInput(name=tokens[2], type=tokens[0], indexed=True))
        elif len(tokens) == 2:
            inputs.append(EventInput(name=tokens[1], type=tokens[0]))
        else:
            raise ValueError(f"Invalid event parameter {param!r} in {signature!r}")
    return EventSpec(name=name, inputs=tuple(inputs))
