import pytest

from services.indexer.src.indexer.prices.bytecode import (
    extract_constructor_args,
    resolve_oracle_from_creation_code,
)

ORACLE = "cd" * 20


def creation_code(args: list[str]) -> str:
    return "0x608060405234801561001057600080fd5b50" + "".join(a.rjust(64, "0") for a in args)


class TestExtractConstructorArgs:

    def test_returns_six_trailing_words(self):
        words = extract_constructor_args(creation_code([f"{i:x}" for i in range(6)]))

        assert len(words) == 6
        assert [int(w, 16) for w in words] == [0, 1, 2, 3, 4, 5]

    def test_too_short(self):
        with pytest.raises(ValueError):
            extract_constructor_args("0x" + "00" * 100)

    def test_not_hex(self):
        with pytest.raises(ValueError):
            extract_constructor_args("0x" + "zz" * 200)


class TestResolveOracle:

    def test_address_from_argument_slot(self):
        bytecode = creation_code(["1", "2", ORACLE.upper(), "4", "5", "6"])

        assert resolve_oracle_from_creation_code(bytecode, 2) == "0x" + ORACLE

    def test_index_out_of_range(self):
        with pytest.raises(ValueError):
            resolve_oracle_from_creation_code(creation_code(["0"] * 6), 6)
