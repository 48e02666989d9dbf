"""
Field Encryption Service — AES-256-GCM with scrypt key derivation for the
sensitive profile fields stored at rest.

Stored values use a private layout, byte-compatible with rows written by
earlier versions of the platform:

    base64( salt[32] | iv[16] | tag[16] | ciphertext[N] )

The key for each value is scrypt(master_key, salt, n=2**14, r=8, p=1) with a
32-byte output. The layout is not a public standard; any other reader must
slice it at exactly these offsets.
"""
import base64
import binascii
import logging
import os
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

logger = logging.getLogger("alia.encryption")

KEY_LENGTH = 32
SALT_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 16
HEADER_LENGTH = SALT_LENGTH + IV_LENGTH + TAG_LENGTH
MIN_MASTER_KEY_LENGTH = 32

SCRYPT_N = 2 ** 14
SCRYPT_R = 8
SCRYPT_P = 1

# plaintext column -> ciphertext column on user_profiles
SENSITIVE_FIELDS: Mapping[str, str] = MappingProxyType({
    "firstName": "firstNameEncrypted",
    "lastName": "lastNameEncrypted",
    "phone": "phoneEncrypted",
    "birthDate": "birthDateEncrypted",
    "nationality": "nationalityEncrypted",
    "address": "addressEncrypted",
    "motivation": "motivationEncrypted",
})
SENSITIVE_FIELD_NAMES = tuple(SENSITIVE_FIELDS)
ENCRYPTED_FIELD_NAMES: Mapping[str, str] = MappingProxyType(
    {encrypted: plain for plain, encrypted in SENSITIVE_FIELDS.items()}
)


def _check_field_table(table: Mapping[str, str]) -> None:
    encrypted = set(table.values())
    if len(encrypted) != len(table):
        raise RuntimeError("Sensitive field table maps two fields to one column")
    if encrypted & set(table):
        raise RuntimeError("Sensitive field table reuses a plaintext column for ciphertext")


_check_field_table(SENSITIVE_FIELDS)


class FieldEncryptionError(Exception):
    """Base class for field encryption failures."""


class ConfigurationError(FieldEncryptionError):
    """Master key missing or shorter than MIN_MASTER_KEY_LENGTH."""


class EncryptionError(FieldEncryptionError):
    """The cipher or KDF failed. Never carries plaintext or key material."""


class AuthenticationError(FieldEncryptionError):
    """Stored value was tampered with, corrupted, or sealed under another key."""


@dataclass(frozen=True)
class EncryptedBlob:
    """Result of `encrypt`. `encrypted` is the value that gets stored."""

    encrypted: str
    auth_tag: str
    iv: str

    def __str__(self) -> str:
        return self.encrypted


def encrypted_field_name(field: str) -> str:
    try:
        return SENSITIVE_FIELDS[field]
    except KeyError:
        raise ValueError(f"{field!r} is not a registered sensitive field") from None


class FieldEncryptionService:
    """AES-256-GCM encryption for individual profile fields.

    Holds only the master key. Build one per process and pass it to the
    endpoints and stores that need it.
    """

    def __init__(self, master_key: Optional[str]):
        self._master_key = master_key

    @classmethod
    def from_settings(cls, settings) -> "FieldEncryptionService":
        return cls(settings.master_key)

    def __repr__(self) -> str:
        return "FieldEncryptionService(master_key=<redacted>)"

    def _require_key(self) -> bytes:
        key = self._master_key
        if not key:
            raise ConfigurationError("ENCRYPTION_KEY is not configured")
        if len(key) < MIN_MASTER_KEY_LENGTH:
            raise ConfigurationError(
                f"ENCRYPTION_KEY must be at least {MIN_MASTER_KEY_LENGTH} characters"
            )
        return key.encode("utf-8")

    @staticmethod
    def _derive_key(master_key: bytes, salt: bytes) -> bytes:
        kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
        return kdf.derive(master_key)

    def encrypt(self, plaintext: str) -> EncryptedBlob:
        """Seal a non-empty string under a fresh salt and IV."""
        if not isinstance(plaintext, str) or not plaintext:
            raise ValueError("plaintext must be a non-empty string")
        master_key = self._require_key()

        salt = os.urandom(SALT_LENGTH)
        iv = os.urandom(IV_LENGTH)
        try:
            key = self._derive_key(master_key, salt)
            sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
        except Exception as e:
            logger.error("Field encryption failed (%s)", type(e).__name__)
            raise EncryptionError("Failed to encrypt field") from None

        # AESGCM appends the tag; the stored layout puts it before the ciphertext
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        combined = salt + iv + tag + ciphertext
        return EncryptedBlob(
            encrypted=base64.b64encode(combined).decode("ascii"),
            auth_tag=tag.hex(),
            iv=iv.hex(),
        )

    def decrypt(self, blob: Union[str, EncryptedBlob]) -> str:
        """Open a value produced by `encrypt`. Verifies the tag first."""
        master_key = self._require_key()
        token = blob.encrypted if isinstance(blob, EncryptedBlob) else blob

        try:
            combined = base64.b64decode(token, validate=True)
        except (binascii.Error, ValueError, TypeError):
            raise AuthenticationError("Encrypted value is not valid base64") from None
        if len(combined) < HEADER_LENGTH:
            raise AuthenticationError("Encrypted value is truncated")

        salt = combined[:SALT_LENGTH]
        iv = combined[SALT_LENGTH:SALT_LENGTH + IV_LENGTH]
        tag = combined[SALT_LENGTH + IV_LENGTH:HEADER_LENGTH]
        ciphertext = combined[HEADER_LENGTH:]

        try:
            key = self._derive_key(master_key, salt)
            plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
        except InvalidTag:
            raise AuthenticationError("Encrypted value failed authentication") from None
        except Exception as e:
            logger.error("Field decryption failed (%s)", type(e).__name__)
            raise EncryptionError("Failed to decrypt field") from None

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise AuthenticationError("Decrypted value is not valid UTF-8") from None

    @staticmethod
    def is_encrypted(value: Any) -> bool:
        """Cheap shape check: valid base64 long enough to hold a header and one byte."""
        if not isinstance(value, str) or not value:
            return False
        try:
            decoded = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            return False
        return len(decoded) >= HEADER_LENGTH + 1

    def encrypt_object(
        self,
        obj: Mapping[str, Any],
        fields: Iterable[str] = SENSITIVE_FIELD_NAMES,
    ) -> Dict[str, Any]:
        """Return a copy of `obj` with each listed field replaced by `<field>Encrypted`.

        Absent, empty and non-string fields are skipped. Any failure propagates,
        so a caller never sees a half-encrypted mapping.
        """
        columns = [(field, encrypted_field_name(field)) for field in fields]
        result = dict(obj)
        for field, encrypted_field in columns:
            value = obj.get(field)
            if not value or not isinstance(value, str):
                continue
            result[encrypted_field] = self.encrypt(value).encrypted
            del result[field]
        return result

    def decrypt_object(
        self,
        obj: Mapping[str, Any],
        fields: Iterable[str] = SENSITIVE_FIELD_NAMES,
    ) -> Dict[str, Any]:
        """Return a copy of `obj` with each `<field>Encrypted` opened back into `<field>`.

        A field that cannot be opened stays encrypted and is logged. A bad
        master key is not a per-field problem and still raises.
        """
        columns = [(field, encrypted_field_name(field)) for field in fields]
        result = dict(obj)
        for field, encrypted_field in columns:
            token = obj.get(encrypted_field)
            if not token or not isinstance(token, str):
                continue
            try:
                plaintext = self.decrypt(token)
            except (AuthenticationError, EncryptionError) as e:
                logger.warning("Leaving %s encrypted: %s", field, e)
                continue
            result[field] = plaintext
            del result[encrypted_field]
        return result

    def encrypt_sensitive_user_data(self, user_data: Mapping[str, Any]) -> Dict[str, str]:
        """Encrypt the sensitive fields of a registration form, returning only ciphertext columns."""
        encrypted = {}
        for field, value in user_data.items():
            if field not in SENSITIVE_FIELDS or not value or not isinstance(value, str):
                continue
            encrypted[SENSITIVE_FIELDS[field]] = self.encrypt(value).encrypted
        return encrypted

    def decrypt_sensitive_user_data(self, encrypted_data: Mapping[str, Any]) -> Dict[str, str]:
        decrypted = {}
        for column, value in encrypted_data.items():
            field = ENCRYPTED_FIELD_NAMES.get(column)
            if field is None or not value or not isinstance(value, str):
                continue
            try:
                decrypted[field] = self.decrypt(value)
            except (AuthenticationError, EncryptionError) as e:
                logger.warning("Skipping %s: %s", column, e)
        return decrypted
