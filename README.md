# multisig_ledger

The ledger side of a node in a threshold multisig network: account balances, a small
stack machine that applies transactions, SQLite storage, a message-driven chain
interface and the operations behind the node control API. It needs nothing beyond
the Python standard library.

## Modules

- `multisig_ledger.errors`: `NodeError`, raised by the ledger, and `CliError` with its
  subclass `KeygenError` (whose `kind` is a `KeygenErrorKind`).
- `multisig_ledger.protocol`: `DepositIntent`, `Transaction` with its `TransactionType`
  and operations (`OpPush`, `OpCheckOracle`, `OpIncrementBalance`,
  `OpDecrementBalance`), and `Block`, `BlockHeader`, `BlockBody`, `GenesisBlock`,
  `ChainConfig` and `ValidatorInfo`.
- `multisig_ledger.chain_state`: `Account` and `ChainState`, the in-memory ledger.
- `multisig_ledger.executor`: `Oracle`, the interface that confirms deposits, and
  `TransactionExecutor`, which runs a transaction against a chain state.
- `multisig_ledger.store`: the `Store` interface and `SqliteStore`.
- `multisig_ledger.chain`: `ChainInterface`, the chain messages, `ChainResponse` and
  `ChainSender`.
- `multisig_ledger.operator` and `multisig_ledger.service`: the control operations and
  `NodeControlService`, which forwards them to a `Network`.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Accounts and chain state

Accounts are immutable. Crediting or debiting returns a new account. A debit stops
at zero rather than going negative; a credit past 2**64 - 1 raises `OverflowError`.

```python
from multisig_ledger.chain_state import Account, ChainState

account = Account("addr1", 100)
account.increment_balance(50).balance   # 150
account.decrement_balance(500).balance  # 0
account.balance                         # still 100

state = ChainState()
state.upsert_account("addr1", account)
state.get_account("addr1").balance      # 100
state.get_account("unknown")            # None
```

`ChainState` also holds deposit intents (`insert_deposit_intent`,
`all_deposit_intents`, `deposit_intent_by_address`), the transactions queued for the
next block (`add_transaction_to_block`) and the block height.
`proposed_block(previous_block, proposer)` builds a block of the queued transactions
on top of `previous_block`, or on an all-zero hash when it is `None`.

`serialize()` turns a chain state into bytes and `ChainState.deserialize()` reads it
back. Data that cannot be decoded raises `NodeError`.

## Executing transactions

A transaction is a sequence of operations. `OpPush` puts a value on a stack, and the
other operations pop what they need. Amounts are 8-byte big-endian integers.

- `OpCheckOracle` pops a 32-byte transaction hash, an address and an amount. If the
  oracle confirms the deposit, the amount is added to that address's allowance and an
  8-byte `1` is pushed. Otherwise an 8-byte `0` is pushed.
- `OpIncrementBalance` pops an address and an amount. It credits the account out of
  its allowance and pushes `1`.
- `OpDecrementBalance` pops an address and an amount. It debits the account and pushes
  `1`.

Any of these raises `NodeError` on a missing stack value, a malformed hash, address or
amount, too little allowance, or too low a balance. `execute_transaction` returns a
new chain state; the state passed in is left unchanged.

```python
import asyncio

from multisig_ledger.chain_state import ChainState
from multisig_ledger.executor import Oracle, TransactionExecutor
from multisig_ledger.protocol import (
    OpCheckOracle, OpIncrementBalance, OpPush, Transaction, TransactionType,
)


class TrustingOracle(Oracle):
    async def validate_transaction(self, address, amount, tx_hash):
        return True


amount = (1000).to_bytes(8, "big")
deposit = Transaction(
    TransactionType.DEPOSIT,
    [
        OpPush(amount), OpPush(b"addr1"), OpPush(bytes(32)), OpCheckOracle(),
        OpPush(amount), OpPush(b"addr1"), OpIncrementBalance(),
    ],
)

executor = TransactionExecutor(TrustingOracle())
new_state = asyncio.run(executor.execute_transaction(deposit, ChainState()))
new_state.get_account("addr1").balance  # 1000
```

## Storage

`SqliteStore(path)` takes a database file, an existing directory (where it creates
`ledger.sqlite3`) or `":memory:"`. It can be used as a context manager. It stores:

- blocks by hash and by height, and the hash of the last inserted block as the tip;
- the current chain state (`get_chain_state` gives an empty state if none is stored);
- deposit intents by tracking id and by deposit address;
- UTXOs, given as JSON mappings with an `outpoint.txid` entry.

Corrupted records raise `NodeError` when they are read.

## The chain interface

`ChainInterface(store, executor)` loads the stored chain state. Its
`add_transaction_to_block` runs a transaction through the executor, saves the result
to the store and keeps it as the current state. If execution fails, the state is
left as it was. `create_genesis_block` stores the height-0 block built from the
validators, chain configuration and group public key.

Other components talk to it through `chain.sender`. `ChainSender.request(message)`
sends one of `InsertDepositIntent`, `GetAccount`, `GetAllDepositIntents`,
`GetDepositIntentByAddress`, `CreateGenesisBlock`, `AddTransactionToBlock` or
`GetProposedBlock`, and waits for a `ChainResponse`. The response's `value` holds a
query's result and its `error` holds a command's `NodeError`. The chain answers
messages through `poll()` (wait for one), `try_poll()` (handle one only if it is
already waiting) or `start()` (serve for ever, logging failures).

```python
async def main():
    with SqliteStore(":memory:") as store:
        chain = ChainInterface(store, TransactionExecutor(TrustingOracle()))
        server = asyncio.create_task(chain.start())
        response = await chain.sender.request(AddTransactionToBlock(deposit))
        account = (await chain.sender.request(GetAccount("addr1"))).value
        server.cancel()
```

## Control operations

`multisig_ledger.operator` provides `spend_funds`, `start_signing`,
`create_deposit_intent`, `get_pending_deposit_intents`, `propose_withdrawal`,
`confirm_withdrawal` and `check_balance`. Each one validates its request and sends
the node a request through `Network.send_self_request(request, sync)`. It then shapes
the answer into a response dataclass. Spends always carry a fee of 200 satoshis.
Failures raise `RpcStatus` with a `StatusCode`:

- `INVALID_ARGUMENT` for a deposit or withdrawal amount that is not positive, or a
  `blocks_to_confirm` outside 0 to 65535;
- `INTERNAL` when the network fails, gives no answer, or gives the wrong kind of answer.

`NodeControlService(network)` exposes the same operations as async methods.

## What the package does not do

The package has no networking of its own. `Network` and `Oracle` are abstract: you
supply the layer that carries requests between nodes and the component that checks
deposits on the underlying chain. The package does not run an RPC server, provide a
command-line tool, build or sign chain transactions, or manage keys. `KeygenError`
only describes such failures.