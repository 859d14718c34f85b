import pathlib
import typing

from .secrets import SecretStore


def secrets(path: pathlib.Path, secret_key: str) -> typing.Dict[str, str]:
    """Decrypt every secret in an amber.yaml file with a hex encoded secret key."""
    store = SecretStore.load(path)
    return store.decrypt_all(store.load_secret_key(secret_key))
