import io
import os
import subprocess
import sys

import pytest

from amber.launch import Command
from amber.masking import (
    PLACEHOLDER,
    Matcher,
    MaskingFilter,
    mask_stream,
    run_masked,
)
from amber.utils import (
    ChildProcessAbnormalTermination,
    ChildStreamFailure,
    PatternCompilationFailure,
)

PYTHON = sys.executable

TEXT = b'prefix-s3cr3t-suffix'
MASKED = b'prefix-******-suffix'


class ChunkedReader(io.BytesIO):
    """A stream that never returns more than `size` bytes from one read."""

    def __init__(self, data: bytes, size: int) -> None:
        super().__init__(data)
        self.size = size

    def read1(self, size=-1):
        return super().read1(self.size)


class BrokenReader(io.BytesIO):
    def read1(self, size=-1):
        raise OSError("Broken pipe")


class BrokenWriter(io.BytesIO):
    def write(self, data):
        raise OSError("No space left on device")


def mask(secrets, chunks):
    masking = MaskingFilter(Matcher(secrets))
    return b''.join(masking.feed(chunk) for chunk in chunks) + masking.finish()


def test_placeholder_is_fixed_width():
    assert PLACEHOLDER == b'******'


def test_mask_single_chunk():
    assert mask([b's3cr3t'], [TEXT]) == MASKED


@pytest.mark.parametrize('split', range(len(TEXT) + 1))
def test_mask_split_in_two(split):
    assert mask([b's3cr3t'], [TEXT[:split], TEXT[split:]]) == MASKED


def test_mask_one_byte_at_a_time():
    assert mask([b's3cr3t'], [TEXT[i:i + 1] for i in range(len(TEXT))]) == MASKED


def test_mask_width_does_not_depend_on_secret_length():
    secrets = [b'ab', b'a-much-longer-secret-value']
    text = b'1 ab 2 a-much-longer-secret-value 3'
    assert mask(secrets, [text]) == b'1 ****** 2 ****** 3'


def test_mask_repeated_and_adjacent():
    assert mask([b'xy'], [b'xyxy-x', b'y']) == b'************-******'


def test_mask_prefers_longest_overlapping_secret():
    secrets = [b'abc', b'abcdef']
    assert mask(secrets, [b'-abcdef-']) == b'-******-'
    assert mask(secrets, [b'-abc', b'def-']) == b'-******-'
    assert mask(secrets, [b'-abc', b'de-']) == b'-******de-'


def test_mask_partial_secret_at_end_of_stream():
    assert mask([b's3cr3t'], [b'prefix-s3cr']) == b'prefix-s3cr'


def test_mask_without_secrets():
    assert mask([], [b'one', b'two']) == b'onetwo'


def test_mask_ignores_empty_secrets():
    assert mask([b'', b's3cr3t'], [TEXT]) == MASKED


def test_mask_binary_output():
    assert mask([b'\xff\xfe'], [b'\x01\xff', b'\xfe\x02']) == b'\x01******\x02'


def test_mask_holds_back_possible_match():
    masking = MaskingFilter(Matcher([b's3cr3t']))
    assert masking.feed(b'prefix-s3c') == b'prefi'
    assert masking.feed(b'r3t-suffix') == b'x-******-s'
    assert masking.finish() == b'uffix'


def test_matcher_rejects_text_secrets():
    with pytest.raises(PatternCompilationFailure):
        Matcher(['s3cr3t'])


@pytest.mark.parametrize('size', [1, 2, 5, 7, 1024])
def test_mask_stream(size):
    sink = io.BytesIO()
    mask_stream(ChunkedReader(TEXT * 3, size), sink, Matcher([b's3cr3t']), 'stdout')
    assert sink.getvalue() == MASKED * 3


def test_mask_stream_failure():
    with pytest.raises(ChildStreamFailure) as error:
        mask_stream(BrokenReader(), io.BytesIO(), Matcher([b's3cr3t']), 'stderr')
    assert 'stderr' in error.value.message


def python(code: str) -> Command:
    return Command(argv=(PYTHON, '-c', code))


def test_run_masked_streams():
    code = (
        "import sys, time\n"
        "out, err = sys.stdout.buffer, sys.stderr.buffer\n"
        "out.write(b'prefix-s3c'); out.flush()\n"
        "err.write(b'error: s3'); err.flush()\n"
        "time.sleep(0.1)\n"
        "out.write(b'r3t-suffix'); out.flush()\n"
        "err.write(b'cr3t'); err.flush()\n"
    )
    stdout, stderr = io.BytesIO(), io.BytesIO()
    assert run_masked(python(code), [b's3cr3t'], stdout=stdout, stderr=stderr) == 0
    assert stdout.getvalue() == MASKED
    assert stderr.getvalue() == b'error: ******'


def test_run_masked_secret_from_environment():
    command = python("import os; print(os.environ['FOO'], end='')")
    command = command.with_env({'FOO': 'foovalue'})
    stdout = io.BytesIO()
    assert run_masked(command, [b'foovalue'], stdout=stdout, stderr=io.BytesIO()) == 0
    assert stdout.getvalue() == b'******'


def test_run_masked_exit_code():
    command = python("import sys; sys.exit(7)")
    assert run_masked(command, [b's3cr3t'], stdout=io.BytesIO(), stderr=io.BytesIO()) == 7


@pytest.mark.skipif(os.name != 'posix', reason="requires signals")
def test_run_masked_killed_by_signal():
    command = python("import os, signal; os.kill(os.getpid(), signal.SIGKILL)")
    with pytest.raises(ChildProcessAbnormalTermination):
        run_masked(command, [b's3cr3t'], stdout=io.BytesIO(), stderr=io.BytesIO())


def test_run_masked_builds_matcher_before_spawning(monkeypatch):
    def popen(*args, **kwargs):
        raise AssertionError("Child should not be spawned")

    monkeypatch.setattr(subprocess, 'Popen', popen)
    with pytest.raises(PatternCompilationFailure):
        run_masked(python("pass"), ['not bytes'])


def test_run_masked_stream_failure_kills_child():
    command = python("while True: print('s3cr3t', flush=True)")
    with pytest.raises(ChildStreamFailure) as error:
        run_masked(command, [b's3cr3t'], stdout=BrokenWriter(), stderr=io.BytesIO())
    assert 'stdout' in error.value.message
