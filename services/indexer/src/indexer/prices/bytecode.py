"""Oracle discovery from a price feed's contract creation bytecode.

Price feeds receive their oracle addresses as constructor arguments, which
the compiler appends to the creation code. The last six 32-byte words of the
creation bytecode are read as those arguments.
"""

import re

WORD_HEX_LENGTH = 64
CONSTRUCTOR_ARG_COUNT = 6
CONSTRUCTOR_ARGS_HEX_LENGTH = WORD_HEX_LENGTH * CONSTRUCTOR_ARG_COUNT

_HEX_RE = re.compile(r"^[0-9a-fA-F]*$")


def extract_constructor_args(bytecode: str) -> list[str]:
    """The six trailing 32-byte words of ``bytecode`` as 64-char hex strings.

    Raises:
        ValueError: If the bytecode is not hex or shorter than six words
    """
    body = bytecode.removeprefix("0x")
    if not _HEX_RE.match(body):
        raise ValueError("Creation bytecode is not a hex string")
    if len(body) < CONSTRUCTOR_ARGS_HEX_LENGTH:
        raise ValueError(
            f"Creation bytecode has {len(body)} hex chars, "
            f"need at least {CONSTRUCTOR_ARGS_HEX_LENGTH}"
        )
    tail = body[-CONSTRUCTOR_ARGS_HEX_LENGTH:]
    return [
        tail[i * WORD_HEX_LENGTH:(i + 1) * WORD_HEX_LENGTH]
        for i in range(CONSTRUCTOR_ARG_COUNT)
    ]


def resolve_oracle_from_creation_code(bytecode: str, arg_index: int) -> str:
    """Address held by constructor argument ``arg_index`` (left-padded word, last 20 bytes)."""
    if not 0 <= arg_index < CONSTRUCTOR_ARG_COUNT:
        raise ValueError(f"Constructor argument index out of range: {arg_index}")
    word = extract_constructor_args(bytecode)[arg_index]
    return "0x" + word[24:].lower()
