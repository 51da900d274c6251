"""Contract function descriptors for the escrow and ERC-20 contracts.

Calldata is built with eth-abi from the canonical signatures; selectors are
the first four bytes of the keccak hash of the signature.
"""

import re
from dataclasses import dataclass
from functools import cached_property
from typing import Any, Optional

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from scrow.ledger.models import Operation, OperationStatus

# (id, maker, taker, tokenA, tokenB, amountA, amountB, status,
#  createdAt, completedAt, cancelledAt, expiresAt)
OPERATION_TUPLE = (
    "(uint256,address,address,address,address,uint256,uint256,uint8,"
    "uint256,uint256,uint256,uint256)"
)

# Error(string)
REVERT_SELECTOR = "0x08c379a0"

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


@dataclass(frozen=True)
class ContractFunction:
    """A single contract function: name, input types and output types."""

    name: str
    inputs: tuple = ()
    outputs: tuple = ()

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.inputs)})"

    @cached_property
    def selector(self) -> bytes:
        return bytes(Web3.keccak(text=self.signature)[:4])

    def encode_call(self, *args: Any) -> str:
        """Build hex calldata for this function."""
        if len(args) != len(self.inputs):
            raise TypeError(
                f"{self.signature} takes {len(self.inputs)} arguments, got {len(args)}"
            )
        values = [
            to_checksum(arg) if typ == "address" else arg
            for typ, arg in zip(self.inputs, args)
        ]
        return "0x" + (self.selector + encode(list(self.inputs), values)).hex()

    def decode_result(self, data: str) -> tuple:
        """Decode hex return data into a tuple of output values."""
        raw = bytes.fromhex(data[2:] if data.startswith("0x") else data)
        return decode(list(self.outputs), raw)


# Escrow contract (reads)
OWNER = ContractFunction("owner", (), ("address",))
GET_ALLOWED_TOKENS = ContractFunction("getAllowedTokens", (), ("address[]",))
ALLOWED_TOKEN = ContractFunction("allowedToken", ("address",), ("bool",))
GET_OPERATION = ContractFunction("getOperation", ("uint256",), (OPERATION_TUPLE,))
GET_ALL_OPERATIONS = ContractFunction("getAllOperations", (), (OPERATION_TUPLE + "[]",))
GET_USER_BALANCES = ContractFunction(
    "getUserBalances", ("address",), ("address[]", "uint256[]")
)

# Escrow contract (writes)
ADD_TOKEN = ContractFunction("addToken", ("address",))
CREATE_OPERATION = ContractFunction(
    "createOperation", ("address", "address", "uint256", "uint256")
)
CREATE_OPERATION_WITH_DURATION = ContractFunction(
    "createOperation", ("address", "address", "uint256", "uint256", "uint256")
)
COMPLETE_OPERATION = ContractFunction("completeOperation", ("uint256",))
CANCEL_OPERATION = ContractFunction("cancelOperation", ("uint256",))

# ERC-20
NAME = ContractFunction("name", (), ("string",))
SYMBOL = ContractFunction("symbol", (), ("string",))
DECIMALS = ContractFunction("decimals", (), ("uint8",))
BALANCE_OF = ContractFunction("balanceOf", ("address",), ("uint256",))
ALLOWANCE = ContractFunction("allowance", ("address", "address"), ("uint256",))
APPROVE = ContractFunction("approve", ("address", "uint256"), ("bool",))


def is_address(value: str) -> bool:
    """Check for a 0x-prefixed, 20-byte hex address (any case)."""
    return bool(value) and bool(ADDRESS_RE.match(value))


def to_checksum(address: str) -> str:
    return Web3.to_checksum_address(address.lower())


def operation_from_tuple(raw: tuple) -> Operation:
    """Convert a decoded operation struct into an Operation."""
    (
        op_id,
        maker,
        taker,
        token_a,
        token_b,
        amount_a,
        amount_b,
        status,
        created_at,
        completed_at,
        cancelled_at,
        expires_at,
    ) = raw
    return Operation(
        id=int(op_id),
        maker=maker.lower(),
        taker=taker.lower(),
        token_a=token_a.lower(),
        token_b=token_b.lower(),
        amount_a=int(amount_a),
        amount_b=int(amount_b),
        status=OperationStatus.from_code(status),
        created_at=int(created_at),
        completed_at=int(completed_at),
        cancelled_at=int(cancelled_at),
        expires_at=int(expires_at),
    )


def decode_revert_reason(data: Optional[str]) -> Optional[str]:
    """Extract the message from Error(string) revert data, if present."""
    if not isinstance(data, str) or not data.startswith(REVERT_SELECTOR):
        return None
    try:
        (reason,) = decode(["string"], bytes.fromhex(data[len(REVERT_SELECTOR):]))
        return reason
    except (DecodingError, ValueError):
        return None
