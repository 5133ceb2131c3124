"""Error types shared by the ledger node and its command-line client."""

from __future__ import annotations

from enum import Enum, auto


class NodeError(Exception):
    """Failure reported by the ledger node."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class CliError(Exception):
    """Failure reported by the command-line client."""


class KeygenErrorKind(Enum):
    """The ways key generation and key storage can fail."""

    PASSWORD_MISMATCH = auto()
    DIRECTORY_CREATION = auto()
    IO = auto()
    KEY_ENCODING = auto()
    ENCRYPTION = auto()
    KEY_FILE_NOT_FOUND = auto()


_KEYGEN_MESSAGES = {
    KeygenErrorKind.PASSWORD_MISMATCH: "Password mismatch",
    KeygenErrorKind.DIRECTORY_CREATION: "Failed to create directory.",
    KeygenErrorKind.IO: "Io error: {}",
    KeygenErrorKind.KEY_ENCODING: "Failed to encode key.",
    KeygenErrorKind.ENCRYPTION: "Failed to encrypt key.",
    KeygenErrorKind.KEY_FILE_NOT_FOUND: "Failed to create directory.",
}


class KeygenError(CliError):
    """Failure while generating, encrypting or storing a key."""

    def __init__(self, kind: KeygenErrorKind, detail: object = None) -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(self.message)

    @property
    def message(self) -> str:
        template = _KEYGEN_MESSAGES[self.kind]
        if self.kind is KeygenErrorKind.IO:
            return template.format("" if self.detail is None else self.detail)
        return template

    def __str__(self) -> str:
        return self.message