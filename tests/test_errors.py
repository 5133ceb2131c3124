import pytest

from multisig_ledger.errors import CliError, KeygenError, KeygenErrorKind, NodeError


def test_node_error_message():
    err = NodeError("Missing tx hash")
    assert str(err) == "Missing tx hash"
    assert err.message == "Missing tx hash"


def test_node_error_keeps_formatted_detail():
    err = NodeError("Failed to send response: channel closed")
    assert "channel closed" in str(err)
    assert err.message.startswith("Failed to send response")
    assert str(err) == err.message


def test_password_mismatch_message():
    assert str(KeygenError(KeygenErrorKind.PASSWORD_MISMATCH)) == "Password mismatch"


def test_io_error_includes_detail():
    err = KeygenError(KeygenErrorKind.IO, OSError("disk full"))
    assert str(err).startswith("Io error: ")
    assert "disk full" in str(err)


@pytest.mark.parametrize(
    "kind, expected",
    [
        (KeygenErrorKind.DIRECTORY_CREATION, "Failed to create directory."),
        (KeygenErrorKind.KEY_ENCODING, "Failed to encode key."),
        (KeygenErrorKind.ENCRYPTION, "Failed to encrypt key."),
        (KeygenErrorKind.KEY_FILE_NOT_FOUND, "Failed to create directory."),
    ],
)
def test_detail_not_shown_in_message(kind, expected):
    err = KeygenError(kind, "some detail")
    assert str(err) == expected
    assert err.detail == "some detail"
    assert err.kind is kind


def test_keygen_error_is_cli_error():
    err = KeygenError(KeygenErrorKind.ENCRYPTION)
    assert isinstance(err, CliError)
    assert err.kind is KeygenErrorKind.ENCRYPTION
    assert str(err) == "Failed to encrypt key."


def test_kinds_are_distinct():
    not_found = KeygenError(KeygenErrorKind.KEY_FILE_NOT_FOUND, "a")
    creation = KeygenError(KeygenErrorKind.DIRECTORY_CREATION, "a")
    assert str(not_found) == str(creation)
    assert not_found.kind is KeygenErrorKind.KEY_FILE_NOT_FOUND
    assert creation.kind is KeygenErrorKind.DIRECTORY_CREATION
    assert not_found.kind != creation.kind