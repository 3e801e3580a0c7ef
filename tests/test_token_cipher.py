try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import pytest

from slackconnect.clients.sqlite_store import SQLiteStore
from slackconnect.services.token_cipher import TokenCipherService

from _fakes import make_credential


def test_token_cipher_roundtrip() -> None:
    cipher = TokenCipherService(secret="super-secret-key")

    encrypted = cipher.encrypt("xoxp-sensitive")

    assert encrypted != "xoxp-sensitive"
    assert cipher.decrypt(encrypted) == "xoxp-sensitive"


def test_token_cipher_rejects_ciphertext_from_another_secret() -> None:
    encrypted = TokenCipherService(secret="old-secret").encrypt("xoxp-token")

    with pytest.raises(ValueError):
        TokenCipherService(secret="new-secret").decrypt(encrypted)


def test_token_cipher_requires_secret() -> None:
    with pytest.raises(ValueError):
        TokenCipherService(secret="")


def test_store_keeps_tokens_encrypted_at_rest(tmp_path) -> None:
    db_path = tmp_path / "tokens.db"
    cipher = TokenCipherService(secret="secret-key")
    store = SQLiteStore(str(db_path), token_cipher=cipher)
    store.save_credential(make_credential(bot_token="xoxb-bot"))

    raw = db_path.read_bytes()
    assert b"xoxp-current" not in raw
    assert b"xoxe-refresh" not in raw
    assert b"xoxb-bot" not in raw

    loaded = store.get_credential("U1")
    assert loaded is not None
    assert loaded.access_token == "xoxp-current"
    assert loaded.refresh_token == "xoxe-refresh"
    assert loaded.bot_token == "xoxb-bot"
