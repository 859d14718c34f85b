import functools
import json
import logging
import os.path
import pathlib
import random
import string
import typing

import attr
import click
import yaml

from . import __doc__, __version__, crypto
from .launch import Command, platform_launcher
from .masking import run_masked
from .secrets import SECRET_KEY_ENV, SecretStore
from .utils import AmberException, find_amber_yaml, validate_name

log = logging.getLogger(__name__)

GENERATED_LENGTH = 40
GENERATED_ALPHABET = string.ascii_letters + string.digits

rng = random.SystemRandom()


@functools.lru_cache()
def rel(path: pathlib.Path) -> str:
    """
    Convert a path to a relative Path.

    Returns a string as these should only be used for presentation.
    """
    return os.path.relpath(path.as_posix(), pathlib.Path.cwd().as_posix())


def styled(name: str) -> str:
    """Style the name of a secret."""
    return click.style(name, fg='green')


class PathType(click.Path):
    def convert(self, value, param, ctx):
        return pathlib.Path(super().convert(value, param, ctx))


@attr.s(frozen=True)
class Options:
    path: pathlib.Path = attr.ib()

    def load(self) -> SecretStore:
        return SecretStore.load(self.path)

    def decrypt(self, secret_key: typing.Optional[str]) -> typing.Dict[str, str]:
        store = self.load()
        return store.decrypt_all(store.load_secret_key(secret_key))


def check_name(ctx, param, value: str) -> str:
    try:
        return validate_name(value)
    except AmberException as error:
        raise click.BadParameter(error.message, ctx=ctx, param=param) from error


name_argument = click.argument(
    'name',
    callback=check_name,
    required=True)

secret_key_option = click.option(
    '--secret-key', 'secret_key',
    metavar='HEX',
    envvar=SECRET_KEY_ENV,
    show_envvar=True,
    help="Hex encoded secret key, normally set with the environment variable.")


@click.group(help=__doc__)
@click.option(
    '--amber-yaml', 'path',
    type=PathType(dir_okay=False),
    envvar='AMBER_YAML',
    default=find_amber_yaml,
    show_envvar=True,
    help="Defaults to the nearest amber.yaml in the current git repository.")
@click.option(
    '-v', '--verbose', 'verbose',
    default=False,
    is_flag=True,
    help="Enable debug logging.")
@click.pass_context
def main(ctx, path: pathlib.Path, verbose: bool):
    logging.basicConfig(level=(logging.DEBUG if verbose else logging.INFO))
    ctx.obj = Options(path=path)


@main.command()
def version():
    """Show the application version."""
    click.echo(f"amber {__version__}")


@main.command()
@click.pass_obj
def init(options: Options):
    """Create a new key pair and an empty amber.yaml."""
    if options.path.exists():
        raise AmberException(f"{rel(options.path)} already exists")

    secret_key, store = SecretStore.create()
    store.save(options.path)
    encoded = crypto.encode_hex(secret_key)

    click.echo(f"Created {rel(options.path)}", err=True)
    click.echo(f"Your secret key is: {encoded}", err=True)
    click.secho(
        "Please save this key immediately! "
        "If you lose it, you will lose access to your secrets.",
        fg='yellow', err=True)
    click.echo("Recommendation: keep it in a password manager", err=True)
    click.echo(
        "If you're using this for CI, please update your CI configuration "
        "with a secret environment variable", err=True)
    click.echo(f"export {SECRET_KEY_ENV}={encoded}")


@main.command()
@name_argument
@click.argument('value', required=False, default=None)
@click.pass_obj
def encrypt(options: Options, name: str, value: typing.Optional[str]):
    """
    Add or update a secret.

    If no value is given it is read from stdin, without the trailing newline.
    """
    if value is None:
        value = click.get_text_stream('stdin').read()
        if value.endswith('\n'):
            value = value[:-1]
            if value.endswith('\r'):
                value = value[:-1]

    store = options.load()
    if store.encrypt(name, value):
        click.echo(f"Encrypted {styled(name)} in {rel(options.path)}", err=True)
    store.save(options.path)


@main.command()
@name_argument
@click.pass_obj
def generate(options: Options, name: str):
    """Generate a new strong secret value and add it to amber.yaml."""
    value = ''.join(rng.choice(GENERATED_ALPHABET) for _ in range(GENERATED_LENGTH))

    store = options.load()
    store.encrypt(name, value)
    store.save(options.path)
    click.echo(f"Generated {styled(name)} in {rel(options.path)}", err=True)


@main.command()
@name_argument
@click.pass_obj
def remove(options: Options, name: str):
    """Remove a secret."""
    store = options.load()
    store.remove(name)
    store.save(options.path)


@main.command(name='print')
@secret_key_option
@click.option(
    '--style',
    type=click.Choice(['setenv', 'json', 'yaml']),
    default='setenv',
    show_default=True,
    help="Output style. 'json' and 'yaml' print a list of key/value objects.")
@click.pass_obj
def print_(options: Options, secret_key: typing.Optional[str], style: str):
    """Print all of the secrets."""
    pairs = options.decrypt(secret_key)

    if style == 'setenv':
        for name, value in pairs.items():
            click.echo(f"export {name}={json.dumps(value, ensure_ascii=False)}")
    elif style == 'json':
        click.echo(json.dumps(
            [{'key': name, 'value': value} for name, value in pairs.items()],
            indent=2))
    elif style == 'yaml':
        click.echo(yaml.safe_dump(
            [{'key': name, 'value': value} for name, value in pairs.items()],
            default_flow_style=False,
            sort_keys=False), nl=False)


@main.command(
    name='exec',
    context_settings={
        'ignore_unknown_options': True,
        'allow_interspersed_args': False,
    })
@secret_key_option
@click.option(
    '--unmasked',
    default=False,
    is_flag=True,
    help="Disable masking of secret values in the command's output.")
@click.argument('command', required=True)
@click.argument('args', nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def exec_(
        ctx,
        secret_key: typing.Optional[str],
        unmasked: bool,
        command: str,
        args: typing.Sequence[str]):
    """
    Run a command with all of the secrets set as environment variables.

    Secret values are replaced with '******' in the command's stdout and
    stderr, unless --unmasked is given.
    """
    options: Options = ctx.obj
    pairs = options.decrypt(secret_key)
    child = Command(argv=(command, *args)).with_env(pairs)

    if unmasked:
        platform_launcher().launch(child)

    returncode = run_masked(
        child,
        secrets=[value.encode('utf-8') for value in pairs.values()],
        stdout=click.get_binary_stream('stdout'),
        stderr=click.get_binary_stream('stderr'))
    ctx.exit(returncode)

