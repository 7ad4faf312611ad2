"""Built-in compiler backends."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping

import markdown
from jinja2 import Environment, FileSystemLoader, select_autoescape

from compilemw.backends.base import Artifact, BackendSpec, compile_pattern
from compilemw.backends.external import ExternalBackend

if TYPE_CHECKING:
    from compilemw.settings import CompilerSettings

HTML_MATCH = r"\.html?$"
CSS_MATCH = r"\.css$"


def _source_dir(options: Mapping[str, Any]) -> str | None:
    filename = options.get("filename")
    if not filename:
        return None
    return os.path.dirname(str(filename))


def _coffee_preprocess(command: list[str], text: str, options: Mapping[str, Any]) -> list[str]:
    if options.get("bare"):
        command.append("--bare")
    return command


def _uglify_preprocess(command: list[str], text: str, options: Mapping[str, Any]) -> list[str]:
    if options.get("compress", True):
        command.append("--compress")
    if options.get("mangle", True):
        command.append("--mangle")
    return command


def _include_path_preprocess(flag: str):
    """Return a preprocess hook adding the source directory as an include path."""

    def preprocess(command: list[str], text: str, options: Mapping[str, Any]) -> list[str]:
        source_dir = _source_dir(options)
        if source_dir:
            command.append(f"{flag}={source_dir}")
        load_path = options.get("load_path")
        if isinstance(load_path, str) and load_path:
            command.append(f"{flag}={load_path}")
        elif isinstance(load_path, (list, tuple)):
            command.extend(f"{flag}={item}" for item in load_path)
        return command

    return preprocess


def _stylus_preprocess(command: list[str], text: str, options: Mapping[str, Any]) -> list[str]:
    source_dir = _source_dir(options)
    if source_dir:
        command.extend(["--include", source_dir])
    return command


_SASS_PREPROCESS = _include_path_preprocess("--load-path")
_LESS_PREPROCESS = _include_path_preprocess("--include-path")


def coffee_backend() -> ExternalBackend:
    return ExternalBackend(
        backend_id="coffee",
        command=("coffee", "--stdio", "--print", "--compile"),
        ext=".coffee",
        dest_ext=".js",
        defaults={"bare": True},
        preprocess=_coffee_preprocess,
    )


def uglify_backend() -> ExternalBackend:
    return ExternalBackend(
        backend_id="uglify",
        command=("uglifyjs",),
        match=r"\.min(\.mod)?\.js$",
        ext=r"\1.js",
        preprocess=_uglify_preprocess,
    )


def coffee_min_backend() -> ExternalBackend:
    """Minify CoffeeScript output: ``name.min.js`` from ``name.coffee``."""
    return ExternalBackend(
        backend_id="coffee_min",
        command=("uglifyjs",),
        match=r"\.min\.js$",
        ext=".coffee",
        wraps="coffee",
        preprocess=_uglify_preprocess,
    )


def less_backend() -> ExternalBackend:
    return ExternalBackend(
        backend_id="less",
        command=("lessc", "-"),
        match=CSS_MATCH,
        ext=".less",
        preprocess=_LESS_PREPROCESS,
    )


def stylus_backend() -> ExternalBackend:
    return ExternalBackend(
        backend_id="stylus",
        command=("stylus", "--print"),
        match=CSS_MATCH,
        ext=".styl",
        preprocess=_stylus_preprocess,
    )


def sass_backend() -> ExternalBackend:
    return ExternalBackend(
        backend_id="sass",
        command=("sass", "--stdin", "--indented", "--no-source-map"),
        match=CSS_MATCH,
        ext=".sass",
        preprocess=_SASS_PREPROCESS,
    )


def scss_backend() -> ExternalBackend:
    return ExternalBackend(
        backend_id="scss",
        command=("sass", "--stdin", "--no-source-map"),
        match=CSS_MATCH,
        ext=".scss",
        preprocess=_SASS_PREPROCESS,
    )


@dataclass(frozen=True)
class JinjaBackend:
    """Render ``name.jinja`` templates into ``name.html``."""

    backend_id: str = "jinja"
    ext: str = ".jinja"
    match: str = HTML_MATCH

    def spec(self) -> BackendSpec:
        return BackendSpec(
            id=self.backend_id,
            ext=self.ext,
            match=compile_pattern(self.match),
            options={"context": {}, "trim_blocks": False, "lstrip_blocks": False},
        )

    def resolve_options(
        self,
        options: Mapping[str, Any],
        artifact: Artifact,
        settings: "CompilerSettings",
    ) -> dict[str, Any]:
        resolved = dict(options)
        search_path = resolved.get("search_path") or []
        if isinstance(search_path, str):
            search_path = [search_path]
        search_path = list(search_path)
        if artifact.source_path is not None:
            search_path.insert(0, str(artifact.source_path.parent))
            resolved.setdefault("filename", str(artifact.source_path))
        resolved["search_path"] = search_path
        return resolved

    def compile_sync(self, text: str, options: Mapping[str, Any]) -> str:
        environment = Environment(
            loader=FileSystemLoader(options.get("search_path") or []),
            autoescape=select_autoescape(default_for_string=False),
            trim_blocks=bool(options.get("trim_blocks")),
            lstrip_blocks=bool(options.get("lstrip_blocks")),
        )
        template = environment.from_string(text)
        return template.render(**dict(options.get("context") or {}))


@dataclass(frozen=True)
class MarkdownBackend:
    """Convert ``name.md`` documents into ``name.html`` fragments."""

    backend_id: str = "markdown"
    ext: str = ".md"
    match: str = HTML_MATCH
    wraps: str | None = None

    def spec(self) -> BackendSpec:
        return BackendSpec(
            id=self.backend_id,
            ext=self.ext,
            match=compile_pattern(self.match),
            wraps=self.wraps,
            options={"extensions": ["extra"], "output_format": "html"},
        )

    def compile_sync(self, text: str, options: Mapping[str, Any]) -> str:
        return markdown.markdown(
            text,
            extensions=list(options.get("extensions") or []),
            output_format=options.get("output_format") or "html",
        )


def builtin_backends() -> list[object]:
    """Return instances of every built-in backend."""
    return [
        coffee_backend(),
        uglify_backend(),
        coffee_min_backend(),
        less_backend(),
        stylus_backend(),
        sass_backend(),
        scss_backend(),
        JinjaBackend(),
        MarkdownBackend(),
        MarkdownBackend(backend_id="jinja_markdown", ext=".md.jinja", wraps="jinja"),
    ]
