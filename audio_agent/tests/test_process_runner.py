import sys

import pytest

from audio_agent.domain.exceptions import ProcessExitError, ProcessSpawnError, ProcessTimeout
from audio_agent.media.process import ProcessRunner, TailBuffer


PY = sys.executable


def test_run_captures_both_streams():
    res = ProcessRunner().run(
        PY,
        ["-c", "import sys; print('out'); print('err', file=sys.stderr)"],
        timeout=30,
        max_output_bytes=1024,
    )
    assert res.returncode == 0
    assert res.stdout.strip() == "out"
    assert res.stderr.strip() == "err"
    assert "out" in res.output and "err" in res.output
    assert res.truncated is False


def test_arguments_are_not_shell_interpolated():
    res = ProcessRunner().run(PY, ["-c", "import sys; print(sys.argv[1])", "$(echo hi); rm -rf /"], 30, 1024)
    assert res.stdout.strip() == "$(echo hi); rm -rf /"


def test_nonzero_exit_raises():
    with pytest.raises(ProcessExitError) as exc_info:
        ProcessRunner().run(PY, ["-c", "import sys; sys.stderr.write('bad url'); sys.exit(3)"], 30, 1024)
    assert exc_info.value.returncode == 3
    assert "bad url" in exc_info.value.message


def test_timeout_raises():
    with pytest.raises(ProcessTimeout):
        ProcessRunner().run(PY, ["-c", "import time; time.sleep(10)"], timeout=0.5, max_output_bytes=1024)


def test_missing_executable_raises_spawn_error():
    with pytest.raises(ProcessSpawnError):
        ProcessRunner().run("definitely-not-a-real-binary-xyz", ["--version"], 5, 1024)


def test_output_is_capped_keeping_tail():
    res = ProcessRunner().run(
        PY,
        ["-c", "import sys; sys.stdout.write('a' * 5000 + 'END')"],
        timeout=30,
        max_output_bytes=100,
    )
    assert res.truncated is True
    assert len(res.output.encode()) <= 100
    assert res.stdout.endswith("END")


def test_tail_buffer_holds_at_most_limit():
    buf = TailBuffer(8)
    buf.feed(b"abcd")
    assert buf.overflowed is False
    for _ in range(1000):
        buf.feed(b"0123456789")
    buf.feed(b"XYZ")
    assert buf.getvalue() == b"56789XYZ"
    assert buf.overflowed is True


def test_large_output_on_both_streams_is_bounded():
    script = (
        "import sys\n"
        "for _ in range(200):\n"
        "    sys.stdout.write('o' * 10000)\n"
        "    sys.stderr.write('e' * 10000)\n"
        "sys.stdout.write('OUT-END')\n"
        "sys.stderr.write('ERR-END')\n"
    )
    res = ProcessRunner().run(PY, ["-c", script], timeout=30, max_output_bytes=4096)
    assert res.truncated is True
    assert len(res.output.encode()) <= 4096
    assert res.stdout.endswith("OUT-END")
    assert res.stderr.endswith("ERR-END")
