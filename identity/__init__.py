"""Identity module: seller keys, addresses and the order envelope cipher.

Orders are encrypted by buyers for the seller's secp256k1 public key, and
fulfillment replies are encrypted by the seller for the buyer's key. The
envelope is the eccrypto/eth-crypto construction:

    shared  = x coordinate of ECDH(ephemeral key, recipient key)
    keys    = sha512(shared) -> aes key (first 32 bytes), mac key (last 32 bytes)
    body    = AES-256-CBC(iv, aes key, plaintext) with PKCS7 padding
    mac     = HMAC-SHA256(mac key, iv || ephemeral public key (65 bytes) || body)

and is serialized as hex of iv(16) || compressed ephemeral key(33) || mac(32) || body.
"""

import hashlib
import hmac
import logging
import os
from typing import Tuple, Union

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from eth_utils import keccak, to_checksum_address
from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

# Order of the secp256k1 group
CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

IV_LENGTH = 16
COMPRESSED_KEY_LENGTH = 33
MAC_LENGTH = 32

class IdentityError(Exception):
    """Raised for an unusable private key or a seller that may not trade."""
    pass

class DecryptionError(Exception):
    """Raised when an envelope is malformed or fails authentication."""
    pass

def _strip_0x(value: str) -> str:
    return value[2:] if value.startswith(('0x', '0X')) else value

def normalize_private_key(private_key: Union[str, bytes]) -> bytes:
    """Return the 32 raw bytes of a hex (optionally 0x prefixed) or raw private key.

    Raises:
        IdentityError: Not 32 bytes of hex, zero, or outside the curve order
    """
    if isinstance(private_key, (bytes, bytearray)):
        raw = bytes(private_key)
    else:
        try:
            raw = bytes.fromhex(_strip_0x(private_key.strip()))
        except ValueError as e:
            raise IdentityError("Invalid private key: not hex") from e
    if len(raw) != 32:
        raise IdentityError(f"Invalid private key: expected 32 bytes, got {len(raw)}")
    scalar = int.from_bytes(raw, 'big')
    if not 0 < scalar < CURVE_ORDER:
        raise IdentityError("Invalid private key: outside the secp256k1 range")
    return raw

def _private_key(private_key: Union[str, bytes]) -> ec.EllipticCurvePrivateKey:
    raw = normalize_private_key(private_key)
    return ec.derive_private_key(int.from_bytes(raw, 'big'), ec.SECP256K1())

def _uncompressed(public_key: ec.EllipticCurvePublicKey) -> bytes:
    return public_key.public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)

def _compressed(public_key: ec.EllipticCurvePublicKey) -> bytes:
    return public_key.public_bytes(Encoding.X962, PublicFormat.CompressedPoint)

def load_public_key(public_key: Union[str, bytes]) -> ec.EllipticCurvePublicKey:
    """Load a public key given as 64 raw bytes, or an 04/02/03 prefixed point (hex or bytes)."""
    if isinstance(public_key, str):
        try:
            data = bytes.fromhex(_strip_0x(public_key.strip()))
        except ValueError as e:
            raise ValueError(f"public key is not hex: {e}") from e
    else:
        data = bytes(public_key)
    if len(data) == 64:
        data = b'\x04' + data
    return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), data)

def derive_public_key(private_key: Union[str, bytes]) -> str:
    """Uncompressed public key as 128 hex characters, without the 04 prefix."""
    return _uncompressed(_private_key(private_key).public_key())[1:].hex()

def public_key_to_address(public_key: Union[str, bytes]) -> str:
    """Checksummed address: last 20 bytes of keccak256 over the 64 byte public key."""
    point = _uncompressed(load_public_key(public_key))[1:]
    return to_checksum_address(keccak(point)[-20:])

def derive_address(private_key: Union[str, bytes]) -> str:
    return public_key_to_address(derive_public_key(private_key))

def _derive_keys(private_key: ec.EllipticCurvePrivateKey,
                 public_key: ec.EllipticCurvePublicKey) -> Tuple[bytes, bytes]:
    shared = private_key.exchange(ec.ECDH(), public_key)
    digest = hashlib.sha512(shared).digest()
    return digest[:32], digest[32:]

def _mac(mac_key: bytes, iv: bytes, ephemeral_key: bytes, ciphertext: bytes) -> bytes:
    return hmac.new(mac_key, iv + ephemeral_key + ciphertext, hashlib.sha256).digest()

def encrypt(public_key: Union[str, bytes], plaintext: Union[str, bytes]) -> str:
    """Encrypt `plaintext` for `public_key` and return the serialized envelope (hex)."""
    if isinstance(plaintext, str):
        plaintext = plaintext.encode('utf-8')
    recipient = load_public_key(public_key)

    ephemeral = ec.generate_private_key(ec.SECP256K1())
    ephemeral_key = _uncompressed(ephemeral.public_key())
    aes_key, mac_key = _derive_keys(ephemeral, recipient)

    iv = os.urandom(IV_LENGTH)
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(aes_key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()

    mac = _mac(mac_key, iv, ephemeral_key, ciphertext)
    return (iv + _compressed(ephemeral.public_key()) + mac + ciphertext).hex()

def decrypt(private_key: Union[str, bytes], envelope: str) -> str:
    """Open a serialized envelope addressed to `private_key`.

    Raises:
        DecryptionError: Malformed envelope, tag mismatch, or undecodable plaintext
    """
    key = _private_key(private_key)

    try:
        data = bytes.fromhex(_strip_0x(envelope.strip()))
    except ValueError as e:
        raise DecryptionError(f"Envelope is not hex: {e}") from e

    header = IV_LENGTH + COMPRESSED_KEY_LENGTH + MAC_LENGTH
    if len(data) <= header or (len(data) - header) % 16:
        raise DecryptionError(f"Envelope has invalid length {len(data)}")

    iv = data[:IV_LENGTH]
    compressed_key = data[IV_LENGTH:IV_LENGTH + COMPRESSED_KEY_LENGTH]
    mac = data[IV_LENGTH + COMPRESSED_KEY_LENGTH:header]
    ciphertext = data[header:]

    try:
        ephemeral = load_public_key(compressed_key)
    except ValueError as e:
        raise DecryptionError(f"Envelope carries an invalid ephemeral key: {e}") from e

    aes_key, mac_key = _derive_keys(key, ephemeral)
    expected = _mac(mac_key, iv, _uncompressed(ephemeral), ciphertext)
    if not hmac.compare_digest(mac, expected):
        raise DecryptionError("Bad MAC")

    try:
        decryptor = Cipher(algorithms.AES(aes_key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        plaintext = unpadder.update(padded) + unpadder.finalize()
        return plaintext.decode('utf-8')
    except (ValueError, UnicodeDecodeError) as e:
        raise DecryptionError(f"Corrupt ciphertext: {e}") from e

class Identity(BaseModel):
    """A seller identity derived from a private key."""
    model_config = ConfigDict(frozen=True)

    private_key: str
    public_key: str
    address: str

    @classmethod
    def from_private_key(cls, private_key: Union[str, bytes]) -> 'Identity':
        raw = normalize_private_key(private_key)
        public_key = derive_public_key(raw)
        return cls(
            private_key='0x' + raw.hex(),
            public_key=public_key,
            address=public_key_to_address(public_key)
        )

    @property
    def uncompressed_public_key(self) -> str:
        """The 0x04 prefixed form the contract stores with catalog uploads."""
        return '0x04' + self.public_key

    def decrypt(self, envelope: str) -> str:
        return decrypt(self.private_key, envelope)

    def __repr__(self) -> str:
        return f"Identity(address={self.address!r})"

    __str__ = __repr__

__all__ = [
    'IdentityError',
    'DecryptionError',
    'Identity',
    'normalize_private_key',
    'load_public_key',
    'derive_public_key',
    'derive_address',
    'public_key_to_address',
    'encrypt',
    'decrypt'
]
