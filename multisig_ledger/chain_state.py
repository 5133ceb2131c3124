"""Account balances, deposit intents and pending transactions of the chain."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional

from .errors import NodeError
from .protocol import Block, BlockBody, BlockHeader, DepositIntent, Transaction

_U64_MAX = 2**64 - 1


@dataclass(frozen=True)
class Account:
    """A ledger account; balance changes produce new accounts."""

    address: str
    balance: int

    def increment_balance(self, amount: int) -> Account:
        new_balance = self.balance + amount
        if new_balance > _U64_MAX:
            raise OverflowError("balance overflow")
        return replace(self, balance=new_balance)

    def decrement_balance(self, amount: int) -> Account:
        return replace(self, balance=max(self.balance - amount, 0))


@dataclass
class ChainState:
    """The mutable state of the chain between blocks."""

    accounts: dict[str, Account] = field(default_factory=dict)
    deposit_intents: list[DepositIntent] = field(default_factory=list)
    proposed_transactions: list[Transaction] = field(default_factory=list)
    block_height: int = 0

    @classmethod
    def with_accounts(cls, accounts: Mapping[str, Account], block_height: int) -> ChainState:
        return cls(accounts=dict(accounts), block_height=block_height)

    def get_account(self, address: str) -> Optional[Account]:
        return self.accounts.get(address)

    def upsert_account(self, address: str, account: Account) -> None:
        self.accounts[address] = account

    def insert_deposit_intent(self, intent: DepositIntent) -> None:
        self.deposit_intents.append(intent)

    def all_deposit_intents(self) -> list[DepositIntent]:
        return list(self.deposit_intents)

    def deposit_intent_by_address(self, address: str) -> Optional[DepositIntent]:
        return next(
            (intent for intent in self.deposit_intents if intent.deposit_address == address),
            None,
        )

    def add_transaction_to_block(self, transaction: Transaction) -> None:
        self.proposed_transactions.append(transaction)

    def proposed_block(self, previous_block: Optional[Block], proposer: bytes) -> Block:
        """Build a block of the pending transactions on top of ``previous_block``."""
        previous_hash = previous_block.hash() if previous_block is not None else bytes(32)
        header = BlockHeader(
            version=1,
            height=self.block_height,
            previous_block_hash=previous_hash,
            timestamp=int(time.time()),
            state_root=bytes(32),
            proposer=bytes(proposer),
        )
        return Block(header, BlockBody(tuple(self.proposed_transactions)))

    def serialize(self) -> bytes:
        data = {
            "accounts": {
                address: {"address": account.address, "balance": account.balance}
                for address, account in self.accounts.items()
            },
            "deposit_intents": [intent.to_dict() for intent in self.deposit_intents],
            "proposed_transactions": [tx.to_dict() for tx in self.proposed_transactions],
            "block_height": self.block_height,
        }
        return json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")

    @classmethod
    def deserialize(cls, data: bytes) -> ChainState:
        try:
            decoded = json.loads(bytes(data).decode("utf-8"))
            accounts = {
                address: Account(str(entry["address"]), int(entry["balance"]))
                for address, entry in decoded["accounts"].items()
            }
            return cls(
                accounts=accounts,
                deposit_intents=[
                    DepositIntent.from_dict(item) for item in decoded["deposit_intents"]
                ],
                proposed_transactions=[
                    Transaction.from_dict(item) for item in decoded["proposed_transactions"]
                ],
                block_height=int(decoded["block_height"]),
            )
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise NodeError(f"Failed to decode chain state: {exc}") from exc