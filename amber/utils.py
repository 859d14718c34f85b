import contextlib
import logging
import pathlib
import re
import typing

import click
import git

log = logging.getLogger(__name__)

AMBER_YAML = 'amber.yaml'

NAME_PATTERN = re.compile(r'[A-Z0-9_]+')


class AmberException(click.ClickException):
    pass


class FormatVersionMismatch(AmberException):
    pass


class MalformedEncoding(AmberException):
    pass


class MalformedStore(AmberException):
    pass


class DuplicateSecretName(AmberException):
    pass


class MissingSecret(AmberException):
    pass


class MissingSecretKey(AmberException):
    pass


class IntegrityMismatch(AmberException):
    pass


class KeyMismatch(AmberException):
    pass


class IOFailure(AmberException):
    pass


class PatternCompilationFailure(AmberException):
    pass


class ChildProcessAbnormalTermination(AmberException):
    pass


class ChildStreamFailure(AmberException):
    pass


@contextlib.contextmanager
def context(message: str) -> typing.Iterator[None]:
    """
    Prefix any error raised inside the block with a description of what was
    being attempted.

    Amber errors keep their type, OS errors become an IOFailure.
    """
    try:
        yield
    except AmberException as error:
        raise type(error)(f"{message}: {error.message}") from error
    except OSError as error:
        raise IOFailure(f"{message}: {error}") from error


def find_git_directory() -> typing.Optional[pathlib.Path]:
    try:
        repo = git.Repo(search_parent_directories=True)
    except git.exc.InvalidGitRepositoryError:
        return None
    if repo.working_dir is None:
        return None
    return pathlib.Path(repo.working_dir)


def find_amber_yaml() -> pathlib.Path:
    """
    Find the nearest amber.yaml, searching upwards from the current directory.

    The search stops at the root of the enclosing git repository. Falls back to
    amber.yaml in the current directory when nothing is found.
    """
    cwd = pathlib.Path.cwd()
    top = find_git_directory()

    if top is None:
        return cwd / AMBER_YAML

    top = top.resolve()
    for directory in (cwd.resolve(), *cwd.resolve().parents):
        candidate = directory / AMBER_YAML
        if candidate.is_file():
            log.debug(f"Found {candidate}")
            return candidate
        if directory == top:
            break

    return cwd / AMBER_YAML


def validate_name(name: str) -> str:
    """Check a secret name is usable as an environment variable name."""
    if not name:
        raise AmberException("Cannot provide an empty key")
    if not NAME_PATTERN.fullmatch(name):
        raise AmberException(
            "Key must be exclusively upper case ASCII, digits, and underscores")
    return name
