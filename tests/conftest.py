"""
Pytest configuration and shared fixtures.
"""

import json
import os
import sys
import tempfile

# Set environment variables BEFORE importing the application
# These override the defaults that try to use system paths like /var/log
_temp_base = tempfile.mkdtemp(prefix="vidshelf_test_")

# LOG_ROOT is the base - LOG_DIR is computed as LOG_ROOT / "vidshelf"
os.environ["LOG_ROOT"] = _temp_base
os.environ["LIBRARY_DIR"] = os.path.join(_temp_base, "library")
os.environ["YTDLP_BINARY"] = os.path.join(_temp_base, "missing-yt-dlp")

os.makedirs(os.path.join(_temp_base, "vidshelf"), exist_ok=True)  # LOG_DIR
os.makedirs(os.path.join(_temp_base, "library"), exist_ok=True)

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from vidshelf.download.process import YtDlpRunner

# Body of the stand-in yt-dlp. CONFIG is prepended by the fixture; each run
# appends its argv to CONFIG["record"] so tests can inspect the invocations.
_FAKE_YTDLP_BODY = r'''
import os
import sys
import time

args = sys.argv[1:]
with open(CONFIG["record"], "a", encoding="utf-8") as record:
    record.write(json.dumps(args) + "\n")

probe = "--dump-json" in args
stage = CONFIG["metadata"] if probe else CONFIG["download"]

for line in stage.get("stdout_lines", []):
    print(line, flush=True)
for line in stage.get("stderr_lines", []):
    print(line, file=sys.stderr, flush=True)

if stage.get("sleep"):
    time.sleep(stage["sleep"])

exit_code = stage.get("exit", 0)
if probe:
    if exit_code == 0 and "info" in stage:
        print(json.dumps(stage["info"]), flush=True)
    elif exit_code == 0:
        print(stage.get("raw", ""), flush=True)
elif exit_code == 0:
    out_dir = args[args.index("-P") + 1]
    for name, size in stage.get("files", {}).items():
        with open(os.path.join(out_dir, name), "wb") as f:
            f.write(b"\0" * size)

sys.exit(exit_code)
'''


@pytest.fixture
def library_dir(tmp_path):
    path = tmp_path / "library"
    path.mkdir()
    return path


@pytest.fixture
def fake_ytdlp(tmp_path):
    """Factory writing an executable stand-in for the yt-dlp binary.

    ``metadata`` and ``download`` describe each run: ``stdout_lines``,
    ``stderr_lines``, ``sleep``, ``exit``, plus ``info`` (probe JSON) or
    ``files`` (name -> size written into the ``-P`` directory).
    """
    counter = {"n": 0}

    def make(metadata=None, download=None):
        counter["n"] += 1
        script = tmp_path / f"fake-yt-dlp-{counter['n']}"
        record = tmp_path / f"fake-yt-dlp-{counter['n']}.calls"
        config = {
            "record": str(record),
            "metadata": metadata or {},
            "download": download or {},
        }
        header = (
            f"#!{sys.executable}\n"
            "import json\n"
            f"CONFIG = json.loads({json.dumps(config)!r})\n"
        )
        script.write_text(header + _FAKE_YTDLP_BODY, encoding="utf-8")
        os.chmod(script, 0o755)
        return str(script)

    return make


@pytest.fixture
def make_runner():
    def make(binary, **overrides):
        options = {
            "metadata_timeout": 15,
            "download_timeout": 15,
            "embed_metadata": False,
            "stderr_tail_lines": 20,
            "poll_interval": 0.05,
        }
        options.update(overrides)
        return YtDlpRunner(binary=binary, **options)

    return make


@pytest.fixture
def demo_info():
    """Probe output for the standard end-to-end scenario."""
    return {
        "id": "abc123",
        "title": "Demo Clip",
        "uploader": "Demo Channel",
        "upload_date": "20240115",
        "description": "A short demo",
        "thumbnail": "https://example.com/abc123.jpg",
        "duration": 42,
        "webpage_url": "https://example.com/watch?v=abc123",
    }


@pytest.fixture
def ytdlp_calls():
    """Reader for the argv lists of every run of a ``fake_ytdlp`` script."""

    def read(script):
        record = f"{script}.calls"
        if not os.path.exists(record):
            return []
        with open(record, encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]

    return read
