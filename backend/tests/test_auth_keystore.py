import sys
from pathlib import Path
from types import SimpleNamespace

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

import pytest

from services.auth import generate_api_key, hash_api_key, verify_api_key, verify_api_key_async
from services.keystore import EncryptedKeystore
from utils.secrets import SecretsUnavailableError, is_encrypted


def test_api_key_is_64_hex_chars_and_unique():
    key = generate_api_key()
    assert len(key) == 64
    int(key, 16)
    assert generate_api_key() != key


def test_bcrypt_hash_verifies_only_the_original_key():
    key = generate_api_key()
    stored = hash_api_key(key, rounds=4)

    assert stored != key
    assert verify_api_key(key, stored) is True
    assert verify_api_key(generate_api_key(), stored) is False


def test_malformed_hash_never_verifies():
    assert verify_api_key("anything", "not-a-bcrypt-hash") is False


@pytest.mark.asyncio
async def test_async_verification_matches_sync():
    key = generate_api_key()
    stored = hash_api_key(key, rounds=4)
    assert await verify_api_key_async(key, stored) is True


def test_keystore_round_trips_encrypted_wallet():
    keystore = EncryptedKeystore(secret_key="unit-test-key")
    wallet = keystore.create_wallet()

    assert is_encrypted(wallet.secret_ref)
    signer = keystore.signer_for(SimpleNamespace(wallet_secret=wallet.secret_ref))
    assert str(signer.pubkey()) == wallet.public_key


def test_keystore_rejects_wrong_key():
    wallet = EncryptedKeystore(secret_key="unit-test-key").create_wallet()
    with pytest.raises(SecretsUnavailableError):
        EncryptedKeystore(secret_key="other-key").signer_for(SimpleNamespace(wallet_secret=wallet.secret_ref))
