"""Pytest configuration for the documentation examples in docs/."""

from os import chdir
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Any

from sybil import Sybil
from sybil.parsers.markdown import PythonCodeBlockParser, SkipParser

from tracer_engine.matrix_ops import clear_implicit_solver_cache


def documentation_setup(namespace: dict[str, Any]) -> None:  # noqa: ARG001
    """Run each documentation file in a fresh directory with an empty solver cache."""
    directory = Path(TemporaryDirectory().name)
    directory.mkdir(parents=True, exist_ok=True)
    chdir(directory)
    clear_implicit_solver_cache()


pytest_collect_file = Sybil(
    parsers=[
        PythonCodeBlockParser(),
        SkipParser(),
    ],
    path=str(Path(__file__).parent / "docs"),
    pattern="**/*.md",
    setup=documentation_setup,
).pytest()
