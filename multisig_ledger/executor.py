"""Stack machine that runs ledger transactions against the chain state."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from .chain_state import Account, ChainState
from .errors import NodeError
from .protocol import (
    OpCheckOracle,
    OpDecrementBalance,
    OpIncrementBalance,
    OpPush,
    Transaction,
)

_TXID_LENGTH = 32
_AMOUNT_LENGTH = 8
_TRUE = (1).to_bytes(_AMOUNT_LENGTH, "big")
_FALSE = (0).to_bytes(_AMOUNT_LENGTH, "big")


class Oracle(ABC):
    """Source of truth about deposits made on the underlying chain."""

    @abstractmethod
    async def validate_transaction(self, address: str, amount: int, tx_hash: bytes) -> bool:
        """Whether ``tx_hash`` paid ``amount`` to ``address``."""


def _copy_state(state: ChainState) -> ChainState:
    return ChainState(
        accounts=dict(state.accounts),
        deposit_intents=list(state.deposit_intents),
        proposed_transactions=list(state.proposed_transactions),
        block_height=state.block_height,
    )


def _decode_address(raw: bytes) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise NodeError(str(exc)) from exc


def _decode_amount(raw: bytes) -> int:
    if len(raw) != _AMOUNT_LENGTH:
        raise NodeError("Invalid amount")
    return int.from_bytes(raw, "big")


class TransactionExecutor:
    """Runs the operations of a transaction on a stack of byte strings."""

    def __init__(self, oracle: Oracle) -> None:
        self.oracle = oracle
        self.allowance_list: dict[str, int] = {}
        self.stack: list[bytes] = []
        self.error: Optional[NodeError] = None
        self.new_chain_state = ChainState()

    def push_to_stack(self, value: bytes) -> None:
        self.stack.append(bytes(value))

    def pop_from_stack(self) -> Optional[bytes]:
        return self.stack.pop() if self.stack else None

    def signal_error(self, error: NodeError) -> NodeError:
        """Record ``error``, push a false flag and hand the error back."""
        self.stack.append(_FALSE)
        self.error = error
        return error

    def _pop_required(self, what: str) -> bytes:
        value = self.pop_from_stack()
        if value is None:
            raise NodeError(f"Missing {what}")
        return value

    async def op_check_oracle(self) -> None:
        """Pop tx hash, address and amount; grant an allowance if the oracle agrees."""
        tx_hash = self._pop_required("tx hash")
        if len(tx_hash) != _TXID_LENGTH:
            raise NodeError(
                f"invalid txid length: expected {_TXID_LENGTH}, got {len(tx_hash)}"
            )
        address = _decode_address(self._pop_required("address"))
        amount = _decode_amount(self._pop_required("amount"))

        if await self.oracle.validate_transaction(address, amount, tx_hash):
            self.allowance_list[address] = self.allowance_list.get(address, 0) + amount
            self.push_to_stack(_TRUE)
        else:
            self.push_to_stack(_FALSE)

    def _pop_address_and_amount(self) -> tuple[str, int]:
        raw_address = self._pop_required("address")
        raw_amount = self._pop_required("amount")
        return _decode_address(raw_address), _decode_amount(raw_amount)

    def _account(self, address: str) -> Account:
        return self.new_chain_state.get_account(address) or Account(address, 0)

    def op_increment_balance(self) -> None:
        """Pop address and amount; credit the account out of its allowance."""
        address, amount = self._pop_address_and_amount()
        allowance = self.allowance_list.get(address, 0)
        if allowance < amount:
            raise NodeError("Insufficient allowance")
        self.allowance_list[address] = allowance - amount
        account = self._account(address).increment_balance(amount)
        self.new_chain_state.upsert_account(address, account)
        self.push_to_stack(_TRUE)

    def op_decrement_balance(self) -> None:
        """Pop address and amount; debit the account."""
        address, amount = self._pop_address_and_amount()
        account = self._account(address)
        if account.balance < amount:
            raise NodeError("Insufficient balance")
        self.new_chain_state.upsert_account(address, account.decrement_balance(amount))
        self.push_to_stack(_TRUE)

    async def execute_transaction(
        self, transaction: Transaction, chain_state: ChainState
    ) -> ChainState:
        """Run every operation of ``transaction`` and return the resulting state."""
        self.new_chain_state = _copy_state(chain_state)
        for operation in transaction.operations:
            match operation:
                case OpPush(value=value):
                    self.push_to_stack(value)
                case OpCheckOracle():
                    await self.op_check_oracle()
                case OpIncrementBalance():
                    self.op_increment_balance()
                case OpDecrementBalance():
                    self.op_decrement_balance()
                case _:
                    raise NodeError(f"Unknown operation: {operation!r}")
        return _copy_state(self.new_chain_state)