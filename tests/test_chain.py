import asyncio
import uuid

import pytest

from multisig_ledger.chain import (
    AddTransactionToBlock,
    ChainInterface,
    ChainResponse,
    CreateGenesisBlock,
    GetAccount,
    GetAllDepositIntents,
    GetDepositIntentByAddress,
    GetProposedBlock,
    InsertDepositIntent,
)
from multisig_ledger.errors import NodeError
from multisig_ledger.executor import Oracle, TransactionExecutor
from multisig_ledger.protocol import (
    ChainConfig,
    DepositIntent,
    OpCheckOracle,
    OpDecrementBalance,
    OpIncrementBalance,
    OpPush,
    Transaction,
    TransactionType,
    ValidatorInfo,
)
from multisig_ledger.store import SqliteStore

TX_HASH = bytes(32)


class AlwaysValidOracle(Oracle):
    async def validate_transaction(self, address, amount, tx_hash):
        return True


def amount_bytes(amount):
    return amount.to_bytes(8, "big")


def deposit_tx(address, amount):
    return Transaction(
        TransactionType.DEPOSIT,
        [
            OpPush(amount_bytes(amount)),
            OpPush(address.encode()),
            OpPush(TX_HASH),
            OpCheckOracle(),
            OpPush(amount_bytes(amount)),
            OpPush(address.encode()),
            OpIncrementBalance(),
        ],
    )


def withdrawal_tx(address, amount):
    return Transaction(
        TransactionType.WITHDRAWAL,
        [OpPush(amount_bytes(amount)), OpPush(address.encode()), OpDecrementBalance()],
    )


def make_intent(amount, address, timestamp=1_234_567_890, user="user"):
    return DepositIntent(
        amount_sat=amount,
        deposit_tracking_id=str(uuid.uuid4()),
        deposit_address=address,
        timestamp=timestamp,
        user_pubkey=user,
    )


@pytest.fixture
def store(tmp_path):
    db = SqliteStore(tmp_path)
    yield db
    db.close()


@pytest.fixture
def chain(store):
    return ChainInterface(store, TransactionExecutor(AlwaysValidOracle()))


def test_chain_interface_new(chain):
    assert chain.get_account("any_address") is None
    assert len(chain.get_all_deposit_intents()) == 0
    assert chain.get_deposit_intent_by_address("any_address") is None


def test_insert_and_get_deposit_intent(chain, store):
    intent = make_intent(50000, "test_deposit_address", user="test_user_pubkey")
    chain.insert_deposit_intent(intent)

    retrieved = chain.get_deposit_intent_by_address("test_deposit_address")
    assert retrieved.amount_sat == 50000

    all_intents = chain.get_all_deposit_intents()
    assert len(all_intents) == 1
    assert all_intents[0].deposit_address == "test_deposit_address"
    assert store.get_deposit_intent(intent.deposit_tracking_id) == intent


def test_insert_multiple_deposit_intents(chain):
    chain.insert_deposit_intent(make_intent(10000, "address1", user="user1"))
    chain.insert_deposit_intent(make_intent(20000, "address2", 1_234_567_891, "user2"))

    assert chain.get_deposit_intent_by_address("address1").amount_sat == 10000
    assert chain.get_deposit_intent_by_address("address2").amount_sat == 20000
    assert len(chain.get_all_deposit_intents()) == 2


@pytest.mark.asyncio
async def test_execute_deposit_transaction(chain):
    await chain.add_transaction_to_block(deposit_tx("deposit_user", 1000))
    account = chain.get_account("deposit_user")
    assert account is not None
    assert account.balance == 1000


@pytest.mark.asyncio
async def test_execute_withdrawal_transaction(chain):
    await chain.add_transaction_to_block(deposit_tx("withdrawal_user", 2000))
    await chain.add_transaction_to_block(withdrawal_tx("withdrawal_user", 500))
    assert chain.get_account("withdrawal_user").balance == 1500


@pytest.mark.asyncio
async def test_execute_transaction_insufficient_balance(chain):
    with pytest.raises(NodeError, match="Insufficient balance"):
        await chain.add_transaction_to_block(withdrawal_tx("poor_user", 1000))


@pytest.mark.asyncio
async def test_execute_transaction_state_persistence(chain, store):
    await chain.add_transaction_to_block(deposit_tx("persistent_user", 5000))
    assert chain.get_account("persistent_user").balance == 5000
    assert store.get_chain_state().get_account("persistent_user").balance == 5000


@pytest.mark.asyncio
async def test_state_reloaded_from_store(chain, store):
    await chain.add_transaction_to_block(deposit_tx("reloaded_user", 700))
    reopened = ChainInterface(store, TransactionExecutor(AlwaysValidOracle()))
    assert reopened.get_account("reloaded_user").balance == 700


@pytest.mark.asyncio
async def test_execute_multiple_transactions(chain):
    for i in range(1, 4):
        await chain.add_transaction_to_block(deposit_tx("multi_tx_user", i * 1000))
    assert chain.get_account("multi_tx_user").balance == 6000


@pytest.mark.asyncio
async def test_transaction_error_propagation(chain):
    transaction = Transaction(
        TransactionType.DEPOSIT,
        [OpPush(amount_bytes(1000)), OpPush(b"address"), OpIncrementBalance()],
    )
    with pytest.raises(NodeError, match="Insufficient allowance"):
        await chain.add_transaction_to_block(transaction)
    assert chain.get_account("address") is None


@pytest.mark.asyncio
async def test_concurrent_operations(chain):
    chain.insert_deposit_intent(
        make_intent(25000, "concurrent_address", user="concurrent_user")
    )
    await chain.add_transaction_to_block(deposit_tx("concurrent_user", 5000))

    assert chain.get_deposit_intent_by_address("concurrent_address").amount_sat == 25000
    assert chain.get_account("concurrent_user").balance == 5000


def test_empty_state_queries(chain):
    assert chain.get_account("nonexistent") is None
    assert chain.get_deposit_intent_by_address("nonexistent") is None
    assert chain.get_all_deposit_intents() == []


def test_create_genesis_block_stores_block(chain, store):
    validators = [ValidatorInfo(b"test_validator", 1000)]
    config = ChainConfig(1, 1, 1000, 10, 1_024_000)
    chain.create_genesis_block(validators, config, b"\x01\x02\x03\x04")

    block = store.get_block_by_height(0)
    assert block.header.height == 0
    assert store.get_tip_block_hash() == block.hash()


@pytest.mark.asyncio
async def test_proposed_block_contains_added_transactions(chain):
    tx = deposit_tx("block_user", 100)
    await chain.add_transaction_to_block(tx)
    block = chain.get_proposed_block(None, b"\x04\x05")
    assert block.body.transactions == (tx,)
    assert block.header.previous_block_hash == bytes(32)
    assert block.header.proposer == b"\x04\x05"


@pytest.mark.asyncio
async def test_try_poll_with_empty_queue(chain):
    assert await chain.try_poll() is False


@pytest.mark.asyncio
async def test_request_and_poll_insert_and_query(chain):
    intent = make_intent(1500, "queued_address")
    insert = asyncio.create_task(chain.sender.request(InsertDepositIntent(intent)))
    await asyncio.sleep(0)
    assert await chain.try_poll() is True
    response = await insert
    assert response.error is None

    query = asyncio.create_task(
        chain.sender.request(GetDepositIntentByAddress("queued_address"))
    )
    await chain.poll()
    assert (await query).value == intent

    everything = asyncio.create_task(chain.sender.request(GetAllDepositIntents()))
    await chain.poll()
    assert (await everything).value == [intent]


@pytest.mark.asyncio
async def test_request_add_transaction_and_get_account(chain):
    add = asyncio.create_task(
        chain.sender.request(AddTransactionToBlock(deposit_tx("rpc_user", 300)))
    )
    await chain.poll()
    assert (await add).error is None

    query = asyncio.create_task(chain.sender.request(GetAccount("rpc_user")))
    await chain.poll()
    assert (await query).value.balance == 300


@pytest.mark.asyncio
async def test_request_failed_transaction_reports_error(chain):
    add = asyncio.create_task(
        chain.sender.request(AddTransactionToBlock(withdrawal_tx("nobody", 10)))
    )
    await chain.poll()
    response = await add
    assert isinstance(response.error, NodeError)
    assert "Insufficient balance" in str(response.error)


@pytest.mark.asyncio
async def test_request_genesis_and_proposed_block(chain, store):
    genesis = asyncio.create_task(
        chain.sender.request(
            CreateGenesisBlock(
                [ValidatorInfo(b"validator", 5)], ChainConfig(1, 1, 5, 10, 1000), b"\x09"
            )
        )
    )
    await chain.poll()
    assert (await genesis).error is None
    previous = store.get_block_by_height(0)

    proposed = asyncio.create_task(chain.sender.request(GetProposedBlock(previous, b"\x01")))
    await chain.poll()
    response = await proposed
    assert isinstance(response, ChainResponse)
    assert response.value.header.previous_block_hash == previous.hash()


@pytest.mark.asyncio
async def test_handle_none_leaves_state_untouched(chain):
    await chain.handle(None)
    assert chain.get_all_deposit_intents() == []
    assert await chain.try_poll() is False


@pytest.mark.asyncio
async def test_handle_reports_dropped_receiver(chain):
    reply = asyncio.get_running_loop().create_future()
    reply.cancel()
    with pytest.raises(NodeError, match="Failed to send response"):
        await chain.handle((GetAccount("someone"), reply))