"""Custody of agent wallet keys.

The rest of the service only ever sees public keys and an opaque encrypted
reference; the secret key is decrypted on demand when a signer is needed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from solders.keypair import Keypair

from utils.secrets import decrypt_secret, encrypt_secret


@dataclass
class WalletRecord:
    public_key: str
    secret_ref: str  # what gets stored on the agent row


class Keystore(ABC):
    @abstractmethod
    def create_wallet(self) -> WalletRecord: ...

    @abstractmethod
    def signer_for(self, agent) -> Keypair:
        """Return a signer for ``agent`` (anything with ``wallet_secret``)."""


class EncryptedKeystore(Keystore):
    """Ed25519 keypairs whose secret bytes are Fernet-encrypted at rest."""

    def __init__(self, secret_key: Optional[str] = None):
        self._secret_key = secret_key

    def create_wallet(self) -> WalletRecord:
        keypair = Keypair()
        return WalletRecord(
            public_key=str(keypair.pubkey()),
            secret_ref=encrypt_secret(bytes(keypair), secret_key=self._secret_key),
        )

    def signer_for(self, agent) -> Keypair:
        raw = decrypt_secret(agent.wallet_secret, secret_key=self._secret_key)
        return Keypair.from_bytes(raw)
