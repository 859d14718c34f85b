"""
Mask secret values in the output of a child process.

Each output stream is filtered on its own thread. Secrets are found with a
single Aho-Corasick automaton, and every match is replaced with the same fixed
width placeholder so the length of a secret is never revealed.
"""

import concurrent.futures
import logging
import subprocess
import typing

import ahocorasick
import click

from .launch import Command
from .utils import (
    AmberException,
    ChildProcessAbnormalTermination,
    ChildStreamFailure,
    IOFailure,
    PatternCompilationFailure,
)

log = logging.getLogger(__name__)

PLACEHOLDER = b'******'
CHUNK_SIZE = 8192

# Bytes are mapped one-to-one onto code points so the automaton can match
# arbitrary binary output.
ENCODING = 'latin-1'

Match = typing.Tuple[int, int]


class Matcher:
    """A compiled set of secrets, shared read-only between stream filters."""

    def __init__(self, secrets: typing.Iterable[bytes]) -> None:
        patterns: typing.Set[str] = set()
        for secret in secrets:
            if not isinstance(secret, bytes):
                raise PatternCompilationFailure(
                    f"Secrets must be bytes, not {type(secret).__name__}")
            if secret:
                patterns.add(secret.decode(ENCODING))

        self.longest: int = max((len(p) for p in patterns), default=0)
        self.automaton: typing.Optional[ahocorasick.Automaton] = None

        if patterns:
            try:
                automaton = ahocorasick.Automaton()
                for pattern in sorted(patterns):
                    automaton.add_word(pattern, len(pattern))
                automaton.make_automaton()
            except (TypeError, ValueError, MemoryError) as error:
                raise PatternCompilationFailure(
                    f"Unable to build matcher for {len(patterns)} secrets: {error}") from error
            self.automaton = automaton

        log.debug(f"Built matcher for {len(patterns)} secrets")

    def matches(self, haystack: str) -> typing.List[Match]:
        """
        Find non-overlapping matches as (start, end) pairs.

        Overlaps are resolved leftmost first, preferring the longest secret
        starting at the same position.
        """
        if self.automaton is None or not haystack:
            return []

        found = sorted(
            (end - length + 1, -length)
            for end, length in self.automaton.iter(haystack))

        selected: typing.List[Match] = []
        position = 0
        for start, negative_length in found:
            if start >= position:
                position = start - negative_length
                selected.append((start, position))
        return selected


class MaskingFilter:
    """
    Streaming replacement for one output stream.

    Up to `longest - 1` bytes are held back between chunks, so a secret split
    across two reads is still found.
    """

    def __init__(self, matcher: Matcher, placeholder: bytes = PLACEHOLDER) -> None:
        self.matcher = matcher
        self.placeholder = placeholder.decode(ENCODING)
        self.pending = ''

    def feed(self, chunk: bytes) -> bytes:
        self.pending += chunk.decode(ENCODING)
        return self.drain(final=False)

    def finish(self) -> bytes:
        return self.drain(final=True)

    def drain(self, final: bool) -> bytes:
        buffer = self.pending

        # Matches starting at or after the cut might continue in the next chunk.
        if final:
            cut = len(buffer)
        else:
            cut = len(buffer) - max(self.matcher.longest - 1, 0)

        output: typing.List[str] = []
        position = 0
        for start, end in self.matcher.matches(buffer):
            if start >= cut:
                break
            output.append(buffer[position:start])
            output.append(self.placeholder)
            position = end

        emit = max(position, cut)
        output.append(buffer[position:emit])
        self.pending = buffer[emit:]
        return ''.join(output).encode(ENCODING)


def read_chunk(source: typing.BinaryIO) -> bytes:
    read1 = getattr(source, 'read1', None)
    if read1 is not None:
        return read1(CHUNK_SIZE)
    return source.read(CHUNK_SIZE)


def mask_stream(
        source: typing.BinaryIO,
        sink: typing.BinaryIO,
        matcher: Matcher,
        name: str) -> None:
    """Copy source to sink until end of input, masking every secret."""
    masking = MaskingFilter(matcher)
    try:
        with source:
            while True:
                chunk = read_chunk(source)
                if not chunk:
                    break
                masked = masking.feed(chunk)
                if masked:
                    sink.write(masked)
                    sink.flush()
            sink.write(masking.finish())
            sink.flush()
    except OSError as error:
        raise ChildStreamFailure(f"Error while masking {name}: {error}") from error
    log.debug(f"Reached end of {name}")


def run_masked(
        command: Command,
        secrets: typing.Iterable[bytes],
        stdout: typing.Optional[typing.BinaryIO] = None,
        stderr: typing.Optional[typing.BinaryIO] = None) -> int:
    """
    Run a command with stdout and stderr masked, returning its exit code.

    The matcher is built before the child is started. A child killed by a
    signal raises ChildProcessAbnormalTermination.
    """
    matcher = Matcher(secrets)

    stdout = stdout if stdout is not None else click.get_binary_stream('stdout')
    stderr = stderr if stderr is not None else click.get_binary_stream('stderr')

    log.debug(f"Launching {command} with masked output")
    try:
        child = subprocess.Popen(
            command.argv,
            env=command.env,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE)
    except OSError as error:
        raise IOFailure(f"Unable to spawn child process {command}: {error}") from error

    with concurrent.futures.ThreadPoolExecutor(
            max_workers=2,
            thread_name_prefix='amber-mask') as pool:
        futures = [
            pool.submit(mask_stream, child.stdout, stdout, matcher, 'stdout'),
            pool.submit(mask_stream, child.stderr, stderr, matcher, 'stderr'),
        ]
        concurrent.futures.wait(
            futures, return_when=concurrent.futures.FIRST_EXCEPTION)
        if any(future.done() and future.exception() for future in futures):
            log.debug(f"Killing {command} after a masking failure")
            child.kill()

    failures = [future.exception() for future in futures if future.exception()]
    if failures:
        child.wait()
        failure = failures[0]
        if isinstance(failure, AmberException):
            raise failure
        raise ChildStreamFailure(f"Error while masking output: {failure}") from failure

    returncode = child.wait()
    log.debug(f"{command} exited with {returncode}")

    if returncode < 0:
        raise ChildProcessAbnormalTermination(
            f"Child process {command} was terminated by signal {-returncode}")

    return returncode
