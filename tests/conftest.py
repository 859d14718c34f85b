import pathlib
import typing

import attr
import click.testing
import pytest

import amber.cli
from amber import crypto
from amber.secrets import SecretStore


@attr.s(frozen=True)
class Example:
    """A saved amber.yaml and the secret key for it."""

    path: pathlib.Path = attr.ib()
    secret_key: crypto.SecretKey = attr.ib()

    @property
    def encoded(self) -> str:
        return crypto.encode_hex(self.secret_key)

    def load(self) -> SecretStore:
        return SecretStore.load(self.path)


@pytest.fixture()
def example(tmp_path) -> Example:
    secret_key, store = SecretStore.create()
    path = tmp_path / 'amber.yaml'
    store.save(path)
    return Example(path=path, secret_key=secret_key)


@pytest.fixture()
def run(example):
    """Run the CLI against the example file, returning the click result."""
    def run_func(
            arguments: typing.Sequence[str],
            input: typing.Optional[str] = None,
            secret_key: typing.Optional[str] = None):
        assert all(isinstance(arg, str) for arg in arguments)
        runner = click.testing.CliRunner()
        return runner.invoke(
            amber.cli.main,
            ['--amber-yaml', example.path.as_posix(), *arguments],
            input=input,
            env={'AMBER_SECRET': secret_key or example.encoded})

    return run_func


@pytest.fixture()
def invoke(run):
    """Run the CLI, failing the test if it fails, returning stdout lines."""
    def invoke_func(arguments: typing.Sequence[str], **kwargs):
        result = run(arguments, **kwargs)
        if result.exit_code != 0:
            message = f"Command amber {' '.join(arguments)} failed: {result.output}"
            raise Exception(message) from result.exception
        return result.stdout.splitlines()

    return invoke_func
