"""
Digests and sealed boxes.

Secrets are encrypted with libsodium's anonymous sealed boxes: anyone with the
public key can encrypt, only the holder of the secret key can decrypt.
"""

import hashlib
import logging
import re
import typing

import nacl.encoding
import nacl.exceptions
import nacl.public

from .utils import IntegrityMismatch, MalformedEncoding

log = logging.getLogger(__name__)

PublicKey = nacl.public.PublicKey
SecretKey = nacl.public.PrivateKey

KEY_SIZE: int = nacl.public.PublicKey.SIZE
DIGEST_SIZE: int = hashlib.sha256().digest_size

# Hex digits only, no whitespace between pairs.
HEX_PATTERN = re.compile(r'[0-9a-fA-F]*')


def digest(plaintext: bytes) -> bytes:
    return hashlib.sha256(plaintext).digest()


def generate() -> typing.Tuple[SecretKey, PublicKey]:
    """Generate a new key pair."""
    log.debug("Generating a new key pair")
    secret_key = SecretKey.generate()
    return secret_key, secret_key.public_key


def seal(plaintext: bytes, public_key: PublicKey) -> bytes:
    return nacl.public.SealedBox(public_key).encrypt(plaintext)


def unseal(ciphertext: bytes, secret_key: SecretKey) -> bytes:
    try:
        return nacl.public.SealedBox(secret_key).decrypt(ciphertext)
    except nacl.exceptions.CryptoError as error:
        raise IntegrityMismatch("Unable to decrypt secret") from error


def decode_hex(value: str, size: typing.Optional[int], what: str) -> bytes:
    """Decode a hex string, optionally checking the decoded length."""
    if not isinstance(value, str):
        raise MalformedEncoding(f"{what} is not a string")
    if not HEX_PATTERN.fullmatch(value):
        raise MalformedEncoding(f"{what} is not hex")
    try:
        decoded = bytes.fromhex(value)
    except ValueError as error:
        raise MalformedEncoding(f"{what} is not hex") from error
    if size is not None and len(decoded) != size:
        raise MalformedEncoding(
            f"{what} should be {size} bytes, found {len(decoded)}")
    return decoded


def encode_hex(value: typing.Union[bytes, PublicKey, SecretKey]) -> str:
    if isinstance(value, (PublicKey, SecretKey)):
        return value.encode(nacl.encoding.HexEncoder).decode('ascii')
    return value.hex()


def public_key_from_hex(value: str) -> PublicKey:
    return PublicKey(decode_hex(value, KEY_SIZE, "Public key"))


def secret_key_from_hex(value: str) -> SecretKey:
    return SecretKey(decode_hex(value, KEY_SIZE, "Secret key"))
