from __future__ import annotations

import asyncio
import shutil
from pathlib import Path

import pytest

from compilemw.backends.builtin import (
    JinjaBackend,
    MarkdownBackend,
    builtin_backends,
    coffee_backend,
    coffee_min_backend,
    less_backend,
    sass_backend,
    stylus_backend,
    uglify_backend,
)
from compilemw.backends.registry import BackendRegistry
from compilemw.dispatcher import RequestDispatcher
from tests.utils import make_settings, write_file


def _dispatch(settings, url: str):
    dispatcher = RequestDispatcher(settings, BackendRegistry(builtin_backends()))
    return asyncio.run(dispatcher.handle("GET", url))


def test_jinja_renders_context(tmp_path: Path) -> None:
    write_file(tmp_path / "index.jinja", "Hello {{ name }}")
    settings = make_settings(tmp_path, ["jinja"], options={"jinja": {"context": {"name": "World"}}})

    outcome = _dispatch(settings, "/index.html")

    assert outcome.success
    assert (tmp_path / "index.html").read_text(encoding="utf-8") == "Hello World"


def test_jinja_includes_sibling_templates(tmp_path: Path) -> None:
    write_file(tmp_path / "pages" / "_nav.jinja", "nav")
    write_file(tmp_path / "pages" / "about.jinja", "{% include '_nav.jinja' %}|about")

    outcome = _dispatch(make_settings(tmp_path, ["jinja"]), "/pages/about.htm")

    assert outcome.success
    assert (tmp_path / "pages" / "about.htm").read_text(encoding="utf-8") == "nav|about"


def test_jinja_syntax_error_reported(tmp_path: Path) -> None:
    write_file(tmp_path / "broken.jinja", "{% if %}")

    outcome = _dispatch(make_settings(tmp_path, ["jinja"]), "/broken.html")

    assert not outcome.success
    assert outcome.errors[0].backend_id == "jinja"


def test_markdown_renders_html(tmp_path: Path) -> None:
    write_file(tmp_path / "readme.md", "# Title\n\nSome *text*.")

    outcome = _dispatch(make_settings(tmp_path, ["markdown"]), "/readme.html")

    assert outcome.success
    html = (tmp_path / "readme.html").read_text(encoding="utf-8")
    assert "<h1>Title</h1>" in html
    assert "<em>text</em>" in html


def test_jinja_markdown_renders_template_first(tmp_path: Path) -> None:
    write_file(tmp_path / "post.md.jinja", "# {{ title }}")
    settings = make_settings(
        tmp_path,
        ["jinja_markdown"],
        options={"jinja": {"context": {"title": "Release notes"}}},
    )

    outcome = _dispatch(settings, "/post.html")

    assert outcome.success
    assert (tmp_path / "post.html").read_text(encoding="utf-8") == "<h1>Release notes</h1>"


def test_markdown_backend_compile_sync() -> None:
    backend = MarkdownBackend()
    output = backend.compile_sync("plain", backend.spec().options)
    assert output == "<p>plain</p>"


def test_jinja_backend_defaults() -> None:
    spec = JinjaBackend().spec()
    assert spec.ext == ".jinja"
    assert spec.match.search("/index.HTML")
    assert spec.options["context"] == {}


def test_coffee_paths() -> None:
    spec = coffee_backend().spec()
    assert spec.ext == ".coffee"
    assert spec.dest_ext == ".js"
    assert spec.options == {"bare": True}


def test_coffee_preprocess_adds_bare() -> None:
    backend = coffee_backend()
    command = list(backend.command)
    assert backend.preprocess(command, "", {"bare": True})[-1] == "--bare"
    assert "--bare" not in backend.preprocess(list(backend.command), "", {"bare": False})


def test_uglify_preprocess_flags() -> None:
    backend = uglify_backend()
    assert backend.preprocess(["uglifyjs"], "", {}) == ["uglifyjs", "--compress", "--mangle"]
    assert backend.preprocess(["uglifyjs"], "", {"mangle": False}) == ["uglifyjs", "--compress"]


def test_coffee_min_wraps_coffee() -> None:
    spec = coffee_min_backend().spec()
    assert spec.wraps == "coffee"
    assert spec.match.search("/app.min.js")
    assert not spec.match.search("/app.js")


def test_css_preprocessors_add_include_paths() -> None:
    options = {"filename": "/srv/site/css/main.src", "load_path": ["/srv/shared"]}
    sass = sass_backend().preprocess(list(sass_backend().command), "", options)
    assert "--load-path=/srv/site/css" in sass
    assert "--load-path=/srv/shared" in sass
    less = less_backend().preprocess(list(less_backend().command), "", options)
    assert "--include-path=/srv/site/css" in less
    stylus = stylus_backend().preprocess(list(stylus_backend().command), "", options)
    assert stylus[-2:] == ["--include", "/srv/site/css"]


def test_builtin_ids_unique() -> None:
    ids = [backend.spec().id for backend in builtin_backends()]
    assert len(ids) == len(set(ids))


@pytest.mark.integration
def test_coffee_compiles_with_installed_compiler(tmp_path: Path) -> None:
    if shutil.which("coffee") is None:
        pytest.skip("coffee is not installed")
    write_file(tmp_path / "app.coffee", "square = (x) -> x * x\n")

    outcome = _dispatch(make_settings(tmp_path, ["coffee"]), "/app.js")

    assert outcome.success
    assert "function" in (tmp_path / "app.js").read_text(encoding="utf-8")
