"""Persistent storage for blocks, chain state, deposit intents and UTXOs."""

from __future__ import annotations

import json
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

from .chain_state import ChainState
from .errors import NodeError
from .protocol import Block, DepositIntent

_TABLES = ("deposit_intents", "blocks", "chain_state", "utxos")
_DB_FILE_NAME = "ledger.sqlite3"
_HASH_LENGTH = 32
_ADDRESS_PREFIX = "addr:"
_UTXO_PREFIX = "utxo:"


class Store(ABC):
    """What the chain needs from its persistent storage."""

    @abstractmethod
    def get_block_by_height(self, height: int) -> Optional[Block]: ...

    @abstractmethod
    def get_block_by_hash(self, block_hash: bytes) -> Optional[Block]: ...

    @abstractmethod
    def get_tip_block_hash(self) -> Optional[bytes]: ...

    @abstractmethod
    def get_chain_state(self) -> ChainState: ...

    @abstractmethod
    def insert_chain_state(self, chain_state: ChainState) -> None: ...

    @abstractmethod
    def insert_block(self, block: Block) -> None: ...

    @abstractmethod
    def insert_deposit_intent(self, intent: DepositIntent) -> None: ...

    @abstractmethod
    def get_deposit_intent(self, tracking_id: str) -> Optional[DepositIntent]: ...

    @abstractmethod
    def get_all_deposit_intents(self) -> list[DepositIntent]: ...

    @abstractmethod
    def get_deposit_intent_by_address(self, address: str) -> Optional[DepositIntent]: ...

    @abstractmethod
    def flush_state(self, chain_state: ChainState) -> None: ...

    @abstractmethod
    def store_utxos(self, utxos: Iterable[Mapping[str, Any]]) -> None: ...

    @abstractmethod
    def get_utxos(self) -> list[dict[str, Any]]: ...


def _encode_intent(intent: DepositIntent) -> bytes:
    return json.dumps(intent.to_dict(), sort_keys=True).encode("utf-8")


def _decode_intent(raw: bytes) -> DepositIntent:
    try:
        return DepositIntent.from_dict(json.loads(bytes(raw).decode("utf-8")))
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        raise NodeError(f"Failed to decode deposit intent: {exc}") from exc


def _utxo_txid(utxo: Mapping[str, Any]) -> str:
    try:
        return str(utxo["outpoint"]["txid"])
    except (KeyError, TypeError) as exc:
        raise NodeError(f"UTXO has no outpoint txid: {exc}") from exc


class SqliteStore(Store):
    """A key/value store over SQLite, one table per kind of record.

    ``path`` may name a database file, an existing directory (the database is
    then created inside it) or ``":memory:"``.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        target = Path(path) if str(path) != ":memory:" else None
        if target is not None and target.is_dir():
            target = target / _DB_FILE_NAME
        try:
            self._conn = sqlite3.connect(str(target) if target else ":memory:")
            with self._conn:
                for table in _TABLES:
                    self._conn.execute(
                        f"CREATE TABLE IF NOT EXISTS {table} "
                        "(key TEXT PRIMARY KEY, value BLOB NOT NULL)"
                    )
        except sqlite3.Error as exc:
            raise NodeError(f"Failed to open store: {exc}") from exc
        self.path = target

    def __enter__(self) -> SqliteStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._conn.close()

    def _get(self, table: str, key: str) -> Optional[bytes]:
        try:
            row = self._conn.execute(
                f"SELECT value FROM {table} WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise NodeError(str(exc)) from exc
        return None if row is None else bytes(row[0])

    def _put_many(self, table: str, items: Iterable[tuple[str, bytes]]) -> None:
        try:
            with self._conn:
                self._conn.executemany(
                    f"INSERT OR REPLACE INTO {table} (key, value) VALUES (?, ?)",
                    [(key, sqlite3.Binary(bytes(value))) for key, value in items],
                )
        except sqlite3.Error as exc:
            raise NodeError(str(exc)) from exc

    def _items(self, table: str) -> list[tuple[str, bytes]]:
        try:
            rows = self._conn.execute(
                f"SELECT key, value FROM {table} ORDER BY key"
            ).fetchall()
        except sqlite3.Error as exc:
            raise NodeError(str(exc)) from exc
        return [(key, bytes(value)) for key, value in rows]

    def put_raw(self, table: str, key: str, value: bytes) -> None:
        """Write ``value`` under ``key`` in ``table`` without any encoding."""
        if table not in _TABLES:
            raise NodeError(f"Unknown table: {table}")
        self._put_many(table, [(key, value)])

    def get_block_by_height(self, height: int) -> Optional[Block]:
        block_hash = self._get("blocks", f"h:{height}")
        if block_hash is None:
            return None
        return self.get_block_by_hash(block_hash)

    def get_block_by_hash(self, block_hash: bytes) -> Optional[Block]:
        raw = self._get("blocks", f"b:{bytes(block_hash).hex()}")
        if raw is None:
            return None
        try:
            return Block.deserialize(raw)
        except NodeError:
            return None

    def get_tip_block_hash(self) -> Optional[bytes]:
        tip = self._get("blocks", "tip")
        if tip is None:
            return None
        if len(tip) != _HASH_LENGTH:
            raise NodeError(f"Corrupted tip hash of length {len(tip)}")
        return tip

    def get_chain_state(self) -> ChainState:
        raw = self._get("chain_state", "current")
        return ChainState() if raw is None else ChainState.deserialize(raw)

    def insert_chain_state(self, chain_state: ChainState) -> None:
        self._put_many("chain_state", [("current", chain_state.serialize())])

    def insert_block(self, block: Block) -> None:
        block_hash = block.hash()
        self._put_many(
            "blocks",
            [
                (f"b:{block_hash.hex()}", block.serialize()),
                (f"h:{block.header.height}", block_hash),
                ("tip", block_hash),
            ],
        )

    def insert_deposit_intent(self, intent: DepositIntent) -> None:
        encoded = _encode_intent(intent)
        self._put_many(
            "deposit_intents",
            [
                (intent.deposit_tracking_id, encoded),
                (f"{_ADDRESS_PREFIX}{intent.deposit_address}", encoded),
            ],
        )

    def get_deposit_intent(self, tracking_id: str) -> Optional[DepositIntent]:
        raw = self._get("deposit_intents", tracking_id)
        return None if raw is None else _decode_intent(raw)

    def get_all_deposit_intents(self) -> list[DepositIntent]:
        return [
            _decode_intent(value)
            for key, value in self._items("deposit_intents")
            if not key.startswith(_ADDRESS_PREFIX)
        ]

    def get_deposit_intent_by_address(self, address: str) -> Optional[DepositIntent]:
        raw = self._get("deposit_intents", f"{_ADDRESS_PREFIX}{address}")
        return None if raw is None else _decode_intent(raw)

    def flush_state(self, chain_state: ChainState) -> None:
        self.insert_chain_state(chain_state)

    def store_utxos(self, utxos: Iterable[Mapping[str, Any]]) -> None:
        """Store each UTXO, a JSON mapping with an ``outpoint.txid`` entry."""
        items = []
        for utxo in utxos:
            try:
                encoded = json.dumps(utxo, sort_keys=True).encode("utf-8")
            except (TypeError, ValueError) as exc:
                raise NodeError(f"Failed to encode UTXO: {exc}") from exc
            items.append((f"{_UTXO_PREFIX}{_utxo_txid(utxo)}", encoded))
        self._put_many("utxos", items)

    def get_utxos(self) -> list[dict[str, Any]]:
        utxos = []
        for key, value in self._items("utxos"):
            if not key.startswith(_UTXO_PREFIX):
                continue
            try:
                utxos.append(json.loads(value.decode("utf-8")))
            except ValueError as exc:
                raise NodeError(f"Failed to decode UTXO: {exc}") from exc
        return utxos