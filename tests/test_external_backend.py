from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import pytest

from compilemw.backends.base import Artifact
from compilemw.backends.external import (
    ExternalBackend,
    external_backend_from_config,
    normalize_command,
)
from compilemw.backends.registry import default_registry
from compilemw.dispatcher import RequestDispatcher
from compilemw.errors import BackendExecutionError, ConfigurationError
from compilemw.pipeline import Outcome
from tests.utils import make_registry, make_settings, write_file

UPPER_SCRIPT = "import sys; sys.stdout.write(sys.stdin.read().upper())"


def _python_backend(script: str, **kwargs) -> ExternalBackend:
    return ExternalBackend(
        backend_id=kwargs.pop("backend_id", "py"),
        command=(sys.executable, "-c", script),
        ext=".src",
        match=r"\.out$",
        **kwargs,
    )


def test_compile_pipes_source_through_command() -> None:
    backend = _python_backend(UPPER_SCRIPT)
    assert asyncio.run(backend.compile("abc", {"timeout": 5000})) == "ABC"


def test_compile_non_zero_exit() -> None:
    backend = _python_backend("import sys; sys.stderr.write('parse error'); sys.exit(3)")
    with pytest.raises(BackendExecutionError) as excinfo:
        asyncio.run(backend.compile("abc", {"timeout": 5000}))
    assert excinfo.value.returncode == 3
    assert excinfo.value.stderr == "parse error"
    assert "parse error" in str(excinfo.value)


def test_compile_timeout() -> None:
    backend = _python_backend("import time; time.sleep(10)")
    with pytest.raises(BackendExecutionError, match="timed out after 200 ms") as excinfo:
        asyncio.run(backend.compile("abc", {"timeout": 200}))
    assert excinfo.value.timed_out


def test_compile_missing_executable() -> None:
    backend = ExternalBackend(
        backend_id="ghost",
        command=("compilemw-missing-compiler-xyz",),
        ext=".src",
    )
    with pytest.raises(BackendExecutionError, match="unable to run"):
        asyncio.run(backend.compile("abc", {"timeout": 1000}))


def test_compile_logs_stderr_as_warning(caplog) -> None:
    backend = _python_backend("import sys; sys.stderr.write('deprecated syntax'); print('ok')")
    caplog.set_level(logging.WARNING, logger="compilemw")
    assert asyncio.run(backend.compile("", {"timeout": 5000})).strip() == "ok"
    assert any("deprecated syntax" in record.getMessage() for record in caplog.records)


def test_preprocess_rewrites_command() -> None:
    def add_flag(command, text, options):
        return [*command, options["flag"]]

    script = "import sys; sys.stdout.write(sys.argv[1])"
    backend = _python_backend(script, preprocess=add_flag)
    assert asyncio.run(backend.compile("", {"timeout": 5000, "flag": "--bare"})) == "--bare"


def test_resolve_options_timeout_precedence(tmp_path: Path) -> None:
    settings = make_settings(tmp_path, ["py"], external_timeout=3000)
    artifact = Artifact(request_path="/app.out", source_path=tmp_path / "app.src")
    backend = _python_backend(UPPER_SCRIPT, timeout=2000)
    fallback = _python_backend(UPPER_SCRIPT)

    assert backend.resolve_options({}, artifact, settings)["timeout"] == 2000.0
    assert backend.resolve_options({"timeout": 500}, artifact, settings)["timeout"] == 500.0
    resolved = backend.resolve_options({"timeout": 500, "external_timeout": 100}, artifact, settings)
    assert resolved["timeout"] == 100.0
    assert "external_timeout" not in resolved
    assert fallback.resolve_options({}, artifact, settings)["timeout"] == 3000.0


def test_backend_bucket_timeout_beats_declared(tmp_path: Path) -> None:
    settings = make_settings(tmp_path, ["py"], options={"py": {"external_timeout": 750}})
    artifact = Artifact(request_path="/app.out")
    backend = _python_backend(UPPER_SCRIPT, timeout=2000)

    resolved = backend.resolve_options({}, artifact, settings.for_backend("py"))

    assert resolved["timeout"] == 750.0
    assert "filename" not in resolved


def test_resolve_options_sets_filename(tmp_path: Path) -> None:
    settings = make_settings(tmp_path, ["py"])
    artifact = Artifact(request_path="/app.out", source_path=tmp_path / "app.src")
    backend = _python_backend(UPPER_SCRIPT, cwd=str(tmp_path))

    resolved = backend.resolve_options({}, artifact, settings)

    assert resolved["filename"] == str(tmp_path / "app.src")
    assert resolved["cwd"] == str(tmp_path)


def test_external_backend_in_dispatch(tmp_path: Path) -> None:
    write_file(tmp_path / "app.src", "hello")
    backend = _python_backend(UPPER_SCRIPT)
    dispatcher = RequestDispatcher(make_settings(tmp_path, ["py"]), make_registry(backend))

    outcome = asyncio.run(dispatcher.handle("GET", "/app.out"))

    assert outcome.success
    assert (tmp_path / "app.out").read_text(encoding="utf-8") == "HELLO"


def test_external_failure_in_dispatch(tmp_path: Path) -> None:
    write_file(tmp_path / "app.src", "hello")
    backend = _python_backend("import sys; sys.exit(1)")
    dispatcher = RequestDispatcher(make_settings(tmp_path, ["py"]), make_registry(backend))

    outcome = asyncio.run(dispatcher.handle("GET", "/app.out"))

    assert [result.outcome for result in outcome.results] == [Outcome.FAILED]
    assert isinstance(outcome.errors[0].error, BackendExecutionError)
    assert not (tmp_path / "app.out").exists()


def test_per_backend_timeout_override(tmp_path: Path) -> None:
    write_file(tmp_path / "app.src", "hello")
    backend = _python_backend("import time; time.sleep(10)")
    settings = make_settings(tmp_path, ["py"], options={"py": {"external_timeout": 200}})
    dispatcher = RequestDispatcher(settings, make_registry(backend))

    outcome = asyncio.run(dispatcher.handle("GET", "/app.out"))

    error = outcome.errors[0].error
    assert isinstance(error, BackendExecutionError)
    assert error.timed_out


def test_normalize_command() -> None:
    assert normalize_command("sass --stdin --indented") == ("sass", "--stdin", "--indented")
    assert normalize_command(["lessc", "-"]) == ("lessc", "-")
    with pytest.raises(ConfigurationError):
        normalize_command("")
    with pytest.raises(ConfigurationError):
        normalize_command(42)


def test_external_backend_from_config() -> None:
    backend = external_backend_from_config(
        "tsc",
        {
            "command": "tsc --stdin",
            "ext": ".ts",
            "match": r"\.js$",
            "timeout": 5000,
            "options": {"target": "es2020"},
        },
    )
    spec = backend.spec()
    assert backend.command == ("tsc", "--stdin")
    assert spec.id == "tsc"
    assert spec.ext == ".ts"
    assert spec.match.search("/app.JS")
    assert spec.options == {"target": "es2020"}
    assert backend.timeout == 5000.0


def test_external_backend_from_config_rejects_invalid() -> None:
    with pytest.raises(ConfigurationError, match="tsc"):
        external_backend_from_config("tsc", {"ext": ".ts"})
    with pytest.raises(ConfigurationError):
        external_backend_from_config("tsc", {"command": "tsc", "ext": ".ts", "bogus": 1})


def test_external_backend_from_config_compiles_match() -> None:
    backend = external_backend_from_config("tsc", {"command": "tsc", "ext": ".ts", "match": r"\.js$"})
    assert backend.spec().match is backend.match
    with pytest.raises(ConfigurationError, match="Invalid match pattern for backend 'broken'"):
        external_backend_from_config("broken", {"command": "cat", "ext": ".x", "match": "(unclosed"})


def test_default_registry_rejects_bad_match(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setattr("compilemw.backends.registry.metadata.entry_points", lambda group: [])
    settings = make_settings(
        tmp_path,
        ["broken"],
        backends={"broken": {"command": "cat", "ext": ".x", "match": "(unclosed"}},
    )
    with pytest.raises(ConfigurationError):
        default_registry(settings)
