"""Ledger protocol data: deposit intents, transactions and blocks."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from .errors import NodeError


def _encode_json(data: Any) -> bytes:
    return json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")


@dataclass(frozen=True)
class DepositIntent:
    """A user's announced intention to deposit funds to an address."""

    amount_sat: int
    deposit_tracking_id: str
    deposit_address: str
    timestamp: int
    user_pubkey: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "amount_sat": self.amount_sat,
            "deposit_tracking_id": self.deposit_tracking_id,
            "deposit_address": self.deposit_address,
            "timestamp": self.timestamp,
            "user_pubkey": self.user_pubkey,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DepositIntent:
        return cls(
            amount_sat=int(data["amount_sat"]),
            deposit_tracking_id=str(data["deposit_tracking_id"]),
            deposit_address=str(data["deposit_address"]),
            timestamp=int(data["timestamp"]),
            user_pubkey=str(data["user_pubkey"]),
        )


class TransactionType(Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


@dataclass(frozen=True)
class OpPush:
    """Push a value onto the execution stack."""

    value: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", bytes(self.value))


@dataclass(frozen=True)
class OpCheckOracle:
    """Ask the oracle to confirm a deposit and grant an allowance."""


@dataclass(frozen=True)
class OpIncrementBalance:
    """Credit an account out of its allowance."""


@dataclass(frozen=True)
class OpDecrementBalance:
    """Debit an account."""


Operation = Union[OpPush, OpCheckOracle, OpIncrementBalance, OpDecrementBalance]

_OP_NAMES = {
    OpCheckOracle: "check_oracle",
    OpIncrementBalance: "increment_balance",
    OpDecrementBalance: "decrement_balance",
}
_OPS_BY_NAME = {name: op for op, name in _OP_NAMES.items()}


def _op_to_dict(op: Operation) -> dict[str, Any]:
    if isinstance(op, OpPush):
        return {"op": "push", "value": op.value.hex()}
    return {"op": _OP_NAMES[type(op)]}


def _op_from_dict(data: dict[str, Any]) -> Operation:
    name = data["op"]
    if name == "push":
        return OpPush(bytes.fromhex(data["value"]))
    try:
        return _OPS_BY_NAME[name]()
    except KeyError:
        raise NodeError(f"Unknown operation: {name}") from None


@dataclass(frozen=True)
class Transaction:
    """A typed sequence of operations run against the chain state."""

    tx_type: TransactionType
    operations: tuple[Operation, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "operations", tuple(self.operations))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.tx_type.value,
            "operations": [_op_to_dict(op) for op in self.operations],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Transaction:
        try:
            tx_type = TransactionType(data["type"])
        except ValueError:
            raise NodeError(f"Unknown transaction type: {data['type']}") from None
        return cls(tx_type, tuple(_op_from_dict(op) for op in data["operations"]))


@dataclass(frozen=True)
class ValidatorInfo:
    pub_key: bytes
    stake: int


@dataclass(frozen=True)
class ChainConfig:
    min_signers: int
    max_signers: int
    min_stake: int
    block_time_seconds: int
    max_block_size: int


@dataclass(frozen=True)
class BlockHeader:
    version: int
    height: int
    previous_block_hash: bytes
    timestamp: int
    state_root: bytes
    proposer: bytes

    def _to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "height": self.height,
            "previous_block_hash": self.previous_block_hash.hex(),
            "timestamp": self.timestamp,
            "state_root": self.state_root.hex(),
            "proposer": self.proposer.hex(),
        }

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> BlockHeader:
        return cls(
            version=int(data["version"]),
            height=int(data["height"]),
            previous_block_hash=bytes.fromhex(data["previous_block_hash"]),
            timestamp=int(data["timestamp"]),
            state_root=bytes.fromhex(data["state_root"]),
            proposer=bytes.fromhex(data["proposer"]),
        )


@dataclass(frozen=True)
class BlockBody:
    transactions: tuple[Transaction, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "transactions", tuple(self.transactions))


@dataclass(frozen=True)
class Block:
    """A block: header plus the transactions it carries."""

    header: BlockHeader
    body: BlockBody = field(default_factory=BlockBody)

    def _to_dict(self) -> dict[str, Any]:
        return {
            "header": self.header._to_dict(),
            "transactions": [tx.to_dict() for tx in self.body.transactions],
        }

    def serialize(self) -> bytes:
        return _encode_json(self._to_dict())

    def hash(self) -> bytes:
        """The 32-byte SHA-256 digest of the serialized block."""
        return hashlib.sha256(self.serialize()).digest()

    @classmethod
    def deserialize(cls, data: bytes) -> Block:
        try:
            decoded = json.loads(bytes(data).decode("utf-8"))
            header = BlockHeader._from_dict(decoded["header"])
            body = BlockBody(
                tuple(Transaction.from_dict(tx) for tx in decoded["transactions"])
            )
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise NodeError(f"Failed to decode block: {exc}") from exc
        return cls(header, body)


@dataclass(frozen=True)
class GenesisBlock:
    """The founding parameters of a chain."""

    validators: tuple[ValidatorInfo, ...]
    chain_config: ChainConfig
    pubkey: bytes
    timestamp: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "validators", tuple(self.validators))
        object.__setattr__(self, "pubkey", bytes(self.pubkey))

    def _digest(self) -> bytes:
        cfg = self.chain_config
        data = {
            "validators": [
                {"pub_key": v.pub_key.hex(), "stake": v.stake} for v in self.validators
            ],
            "chain_config": {
                "min_signers": cfg.min_signers,
                "max_signers": cfg.max_signers,
                "min_stake": cfg.min_stake,
                "block_time_seconds": cfg.block_time_seconds,
                "max_block_size": cfg.max_block_size,
            },
            "pubkey": self.pubkey.hex(),
        }
        return hashlib.sha256(_encode_json(data)).digest()

    def to_block(self) -> Block:
        """The block at height 0 that commits to these parameters."""
        header = BlockHeader(
            version=1,
            height=0,
            previous_block_hash=bytes(32),
            timestamp=self.timestamp,
            state_root=self._digest(),
            proposer=b"",
        )
        return Block(header, BlockBody())