import logging
import pathlib
import typing

import attr
import yaml

from . import crypto
from .utils import (
    DuplicateSecretName,
    FormatVersionMismatch,
    IntegrityMismatch,
    KeyMismatch,
    MalformedEncoding,
    MalformedStore,
    MissingSecret,
    MissingSecretKey,
    context,
)

log = logging.getLogger(__name__)

#: Environment variable containing the hex encoded secret key.
SECRET_KEY_ENV = 'AMBER_SECRET'

#: The only version of the file format this version of amber understands.
FILE_FORMAT_VERSION = 1

STORE_FIELDS = ('file_format_version', 'public_key', 'secrets')
SECRET_FIELDS = ('name', 'sha256', 'cipher')

Raw = typing.Dict[str, typing.Any]


def check_fields(raw: typing.Any, fields: typing.Sequence[str], what: str) -> Raw:
    """Require a mapping with exactly the given keys."""
    if not isinstance(raw, dict):
        raise MalformedStore(f"Expected {what} to be a mapping")

    unknown = sorted(str(key) for key in raw.keys() if key not in fields)
    if unknown:
        raise MalformedStore(f"Unknown field(s) in {what}: {', '.join(unknown)}")

    missing = [field for field in fields if field not in raw]
    if missing:
        raise MalformedStore(f"Missing field(s) in {what}: {', '.join(missing)}")

    return raw


@attr.s(frozen=True, kw_only=True)
class SecretRecord:
    """A single secret, still encrypted."""

    sha256: bytes = attr.ib(validator=attr.validators.instance_of(bytes))
    cipher: bytes = attr.ib(validator=attr.validators.instance_of(bytes))

    @classmethod
    def from_raw(cls, raw: typing.Any) -> typing.Tuple[str, 'SecretRecord']:
        raw = check_fields(raw, SECRET_FIELDS, "secret")
        name = raw['name']
        if not isinstance(name, str):
            raise MalformedStore(f"Secret name {name!r} is not a string")
        with context(f"Invalid secret named {name}"):
            record = cls(
                sha256=crypto.decode_hex(raw['sha256'], crypto.DIGEST_SIZE, "sha256"),
                cipher=crypto.decode_hex(raw['cipher'], None, "Ciphertext"))
        return name, record

    def to_raw(self, name: str) -> Raw:
        return {
            'name': name,
            'sha256': crypto.encode_hex(self.sha256),
            'cipher': crypto.encode_hex(self.cipher),
        }

    def decrypt(self, secret_key: crypto.SecretKey, name: str) -> str:
        """Decrypt this secret, the name is only used in error messages."""
        with context(f"Error while decrypting secret named {name}"):
            plaintext = crypto.unseal(self.cipher, secret_key)

            found = crypto.digest(plaintext)
            if found != self.sha256:
                raise IntegrityMismatch(
                    f"Hash mismatch, expected {crypto.encode_hex(self.sha256)}, "
                    f"received {crypto.encode_hex(found)}")

            try:
                return plaintext.decode('utf-8')
            except UnicodeDecodeError as error:
                raise MalformedEncoding("Invalid UTF-8 encoding") from error


@attr.s(kw_only=True)
class SecretStore:
    """
    The contents of an amber.yaml file.

    Holds the public key secrets are encrypted to and the encrypted secrets.
    The secret key is never stored here, it is passed in to each method that
    needs it.
    """

    public_key: crypto.PublicKey = attr.ib()
    secrets: typing.Dict[str, SecretRecord] = attr.ib(factory=dict)

    @classmethod
    def create(cls) -> typing.Tuple[crypto.SecretKey, 'SecretStore']:
        """Create a new key pair and an empty store."""
        secret_key, public_key = crypto.generate()
        return secret_key, cls(public_key=public_key)

    @classmethod
    def from_raw(cls, raw: typing.Any) -> 'SecretStore':
        raw = check_fields(raw, STORE_FIELDS, "file")

        version = raw['file_format_version']
        if type(version) is not int or version != FILE_FORMAT_VERSION:
            raise FormatVersionMismatch(
                f"Unsupported file format detected. Detected format is {version}, "
                f"we only support {FILE_FORMAT_VERSION}.")

        public_key = crypto.public_key_from_hex(raw['public_key'])

        if not isinstance(raw['secrets'], list):
            raise MalformedStore("Expected secrets to be a list")

        secrets: typing.Dict[str, SecretRecord] = {}
        for item in raw['secrets']:
            name, record = SecretRecord.from_raw(item)
            if name in secrets:
                raise DuplicateSecretName(f"Duplicated secret key: {name}")
            secrets[name] = record

        return cls(public_key=public_key, secrets=secrets)

    def to_raw(self) -> Raw:
        return {
            'file_format_version': FILE_FORMAT_VERSION,
            'public_key': crypto.encode_hex(self.public_key),
            'secrets': [self.secrets[name].to_raw(name) for name in self.names()],
        }

    @classmethod
    def load(cls, path: pathlib.Path) -> 'SecretStore':
        log.debug(f"Loading secrets from {path}")
        with context(f"Unable to read file {path}"):
            data = path.read_bytes()
            try:
                text = data.decode('utf-8')
            except UnicodeDecodeError as error:
                raise MalformedStore(f"Invalid UTF-8: {error}") from error
            try:
                raw = yaml.safe_load(text)
            except yaml.YAMLError as error:
                raise MalformedStore(f"Invalid YAML: {error}") from error
            return cls.from_raw(raw)

    def save(self, path: pathlib.Path) -> None:
        log.debug(f"Saving {len(self)} secrets to {path}")
        with context(f"Unable to write file {path}"):
            if path.name == '' or path.parent == path:
                raise MalformedStore("File must have a parent directory")
            path.parent.mkdir(parents=True, exist_ok=True)
            text = yaml.safe_dump(
                self.to_raw(),
                explicit_start=True,
                default_flow_style=False,
                sort_keys=False)
            path.write_text(text, encoding='utf-8')

    def names(self) -> typing.List[str]:
        return sorted(self.secrets.keys())

    def __len__(self) -> int:
        return len(self.secrets)

    def __contains__(self, name: object) -> bool:
        return name in self.secrets

    def encrypt(self, name: str, value: str) -> bool:
        """
        Encrypt a new value for a secret, replacing any existing value.

        Sealed boxes are randomised, so re-encrypting an unchanged value would
        still change the file. When the digest of the new value matches the
        existing secret nothing is done and False is returned.
        """
        plaintext = value.encode('utf-8')
        sha256 = crypto.digest(plaintext)

        old = self.secrets.get(name)
        if old is not None:
            if old.sha256 == sha256:
                log.info(f"New value for {name} matches old value, doing nothing")
                return False
            log.warning(f"Overwriting old value for {name}")

        self.secrets[name] = SecretRecord(
            sha256=sha256,
            cipher=crypto.seal(plaintext, self.public_key))
        return True

    def remove(self, name: str) -> None:
        if self.secrets.pop(name, None) is None:
            log.warning(f"Asked to remove non-present secret {name}, doing nothing")

    def validate_secret_key(self, secret_key: crypto.SecretKey) -> None:
        if bytes(secret_key.public_key) != bytes(self.public_key):
            raise KeyMismatch("Secret key does not match config file's public key")

    def load_secret_key(self, encoded: typing.Optional[str]) -> crypto.SecretKey:
        """Parse a hex encoded secret key and check it matches the public key."""
        with context(f"Error loading secret key from environment variable {SECRET_KEY_ENV}"):
            if not encoded:
                raise MissingSecretKey("No secret key was provided")
            secret_key = crypto.secret_key_from_hex(encoded.strip())
            self.validate_secret_key(secret_key)
            return secret_key

    def decrypt(self, name: str, secret_key: crypto.SecretKey) -> str:
        try:
            record = self.secrets[name]
        except KeyError:
            raise MissingSecret(f"Key does not exist: {name}") from None
        return record.decrypt(secret_key, name)

    def decrypt_all(self, secret_key: crypto.SecretKey) -> typing.Dict[str, str]:
        """Decrypt every secret, sorted by name. Stops at the first error."""
        self.validate_secret_key(secret_key)
        log.debug(f"Decrypting {len(self)} secrets")
        return {name: self.decrypt(name, secret_key) for name in self.names()}
