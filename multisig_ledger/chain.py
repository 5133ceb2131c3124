"""The chain interface: applies transactions, keeps state and answers requests."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Union

from .chain_state import Account, ChainState
from .errors import NodeError
from .executor import TransactionExecutor
from .protocol import Block, ChainConfig, DepositIntent, GenesisBlock, Transaction, ValidatorInfo
from .store import Store

logger = logging.getLogger(__name__)

_CHANNEL_CAPACITY = 100


@dataclass(frozen=True)
class InsertDepositIntent:
    intent: DepositIntent


@dataclass(frozen=True)
class GetAccount:
    address: str


@dataclass(frozen=True)
class GetAllDepositIntents:
    pass


@dataclass(frozen=True)
class GetDepositIntentByAddress:
    address: str


@dataclass(frozen=True)
class CreateGenesisBlock:
    validators: tuple[ValidatorInfo, ...]
    chain_config: ChainConfig
    pubkey: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "validators", tuple(self.validators))
        object.__setattr__(self, "pubkey", bytes(self.pubkey))


@dataclass(frozen=True)
class AddTransactionToBlock:
    transaction: Transaction


@dataclass(frozen=True)
class GetProposedBlock:
    previous_block: Optional[Block]
    proposer: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "proposer", bytes(self.proposer))


ChainMessage = Union[
    InsertDepositIntent,
    GetAccount,
    GetAllDepositIntents,
    GetDepositIntentByAddress,
    CreateGenesisBlock,
    AddTransactionToBlock,
    GetProposedBlock,
]

Envelope = tuple[ChainMessage, "asyncio.Future[ChainResponse]"]


@dataclass(frozen=True)
class ChainResponse:
    """The answer to a chain message.

    ``value`` carries the result of a query; ``error`` the failure of a command.
    """

    message: ChainMessage
    value: Any = None
    error: Optional[NodeError] = field(default=None)


class ChainSender:
    """The handle other components use to send messages to the chain."""

    def __init__(self, queue: asyncio.Queue) -> None:
        self._queue = queue

    async def request(self, message: ChainMessage) -> ChainResponse:
        """Send ``message`` and wait for the chain to answer it."""
        reply: asyncio.Future[ChainResponse] = asyncio.get_running_loop().create_future()
        await self._queue.put((message, reply))
        return await reply


def _capture(action: Callable[[], Any]) -> Optional[NodeError]:
    try:
        action()
    except NodeError as exc:
        return exc
    return None


class ChainInterface:
    """Owns the chain state, runs transactions and persists the results."""

    def __init__(self, store: Store, executor: TransactionExecutor) -> None:
        self._store = store
        self._executor = executor
        try:
            self.chain_state = store.get_chain_state()
        except NodeError:
            self.chain_state = ChainState()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=_CHANNEL_CAPACITY)
        self.sender = ChainSender(self._queue)

    def insert_deposit_intent(self, intent: DepositIntent) -> None:
        self.chain_state.insert_deposit_intent(intent)
        self._store.insert_deposit_intent(intent)

    def get_account(self, address: str) -> Optional[Account]:
        return self.chain_state.get_account(address)

    def get_all_deposit_intents(self) -> list[DepositIntent]:
        return self.chain_state.all_deposit_intents()

    def get_deposit_intent_by_address(self, address: str) -> Optional[DepositIntent]:
        return self.chain_state.deposit_intent_by_address(address)

    def create_genesis_block(
        self,
        validators: Iterable[ValidatorInfo],
        chain_config: ChainConfig,
        pubkey: bytes,
    ) -> None:
        """Store the genesis block built from the validators and group key."""
        try:
            serialized_key = bytes(pubkey)
        except TypeError as exc:
            raise NodeError(f"Failed to serialize public key: {exc}") from exc
        genesis = GenesisBlock(tuple(validators), chain_config, serialized_key)
        self._store.insert_block(genesis.to_block())

    async def add_transaction_to_block(self, transaction: Transaction) -> None:
        """Queue ``transaction`` for the next block and apply it to the state."""
        self.chain_state.add_transaction_to_block(transaction)
        new_state = await self._executor.execute_transaction(transaction, self.chain_state)
        self._store.flush_state(new_state)
        self.chain_state = new_state

    def get_proposed_block(self, previous_block: Optional[Block], proposer: bytes) -> Block:
        return self.chain_state.proposed_block(previous_block, proposer)

    async def try_poll(self) -> bool:
        """Handle one waiting message, if any; report whether one was handled."""
        try:
            envelope = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return False
        await self.handle(envelope)
        return True

    async def poll(self) -> None:
        """Wait for the next message and handle it."""
        envelope = await self._queue.get()
        await self.handle(envelope)

    async def start(self) -> None:
        """Handle messages for ever, logging any failures."""
        while True:
            try:
                await self.poll()
            except NodeError as exc:
                logger.error("Error polling chain messages: %s", exc)

    async def _respond(self, message: ChainMessage) -> ChainResponse:
        match message:
            case InsertDepositIntent(intent=intent):
                error = _capture(lambda: self.insert_deposit_intent(intent))
                return ChainResponse(message, error=error)
            case GetAccount(address=address):
                return ChainResponse(message, value=self.get_account(address))
            case GetAllDepositIntents():
                return ChainResponse(message, value=self.get_all_deposit_intents())
            case GetDepositIntentByAddress(address=address):
                return ChainResponse(
                    message, value=self.get_deposit_intent_by_address(address)
                )
            case CreateGenesisBlock(validators=validators, chain_config=config, pubkey=key):
                error = _capture(lambda: self.create_genesis_block(validators, config, key))
                return ChainResponse(message, error=error)
            case AddTransactionToBlock(transaction=transaction):
                try:
                    await self.add_transaction_to_block(transaction)
                except NodeError as exc:
                    return ChainResponse(message, error=exc)
                return ChainResponse(message)
            case GetProposedBlock(previous_block=previous, proposer=proposer):
                return ChainResponse(message, value=self.get_proposed_block(previous, proposer))
            case _:
                raise NodeError(f"Unknown chain message: {message!r}")

    async def handle(self, envelope: Optional[Envelope]) -> None:
        """Answer one message and deliver the response to its sender."""
        if envelope is None:
            return
        message, reply = envelope
        try:
            response = await self._respond(message)
        except NodeError as exc:
            if not reply.done():
                reply.set_exception(exc)
            raise
        if reply.done():
            raise NodeError("Failed to send response: receiver is gone")
        reply.set_result(response)