import json
import stat
import sys
import textwrap
from pathlib import Path
from typing import Callable

import pytest
from prometheus_client import CollectorRegistry

# a stand-in for `codex app-server`: records every line it receives, then
# answers each request with the lines scripted for its method, `{id}`
# replaced by the request id
FAKE_APP_SERVER = textwrap.dedent(
    """
    import json
    import sys

    with open(sys.argv[1]) as fh:
        script = json.load(fh)

    for raw in sys.stdin:
        with open(sys.argv[2], "a") as log:
            log.write(raw)
        raw = raw.strip()
        if not raw:
            continue
        message = json.loads(raw)
        if "id" not in message:
            continue
        for out in script.get(message["method"], []):
            sys.stdout.write(out.replace("{id}", str(message["id"])) + "\\n")
        sys.stdout.flush()
    """
)


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


@pytest.fixture()
def fake_program(tmp_path: "Path") -> "Callable[[str, str], str]":
    """
    writes an executable Python script under tmp_path and returns its
    path, so tests can stand in for helper programs like secret-tool.
    """

    def _make(name: "str", body: "str") -> "str":
        path = tmp_path / name
        path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body))
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)

    return _make


@pytest.fixture()
def app_server(tmp_path: "Path") -> "Callable[[dict], list[str]]":
    """
    returns a factory building the argv (after the interpreter) for a
    scripted fake app-server. Received lines land in the
    `app_server_log` file.
    """
    server = tmp_path / "fake_app_server.py"
    server.write_text(FAKE_APP_SERVER)

    def _make(script: "dict") -> "list[str]":
        script_path = tmp_path / "script.json"
        script_path.write_text(json.dumps(script))
        return [str(server), str(script_path), str(tmp_path / "received.jsonl")]

    return _make


@pytest.fixture()
def app_server_log(tmp_path: "Path") -> "Path":
    """
    raw lines the fake app-server read from its stdin, in order.
    """
    return tmp_path / "received.jsonl"
