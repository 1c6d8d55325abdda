"""Pytest configuration and fixtures for modindex tests."""

import json
import shutil
import tempfile
from pathlib import Path
from typing import Dict, Generator

import pytest

from modindex_cli.fetch import InMemoryFetcher, InMemoryModule
from modindex_cli.ingest import IngestionOrchestrator
from modindex_cli.store import VersionStore

MODULE_PATH = "github.com/valid/module_name"
VERSION = "v1.0.0"

MIT_LICENSE = """MIT License

Copyright (c) 2019 The Authors

Permission is hereby granted, free of charge, to any person obtaining a copy
of this software and associated documentation files (the "Software"), to deal
in the Software without restriction, including without limitation the rights
to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
copies of the Software, and to permit persons to whom the Software is
furnished to do so, subject to the following conditions:

The above copyright notice and this permission notice shall be included in all
copies or substantial portions of the Software.
"""

FOO_GO = "// Package foo\npackage foo\n\nconst Foo = 42"
BAR_GO = '// Package bar\npackage bar\n\n// Bar returns the string "bar".\nfunc Bar() string {\n\treturn "bar"\n}\n'


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path_factory, monkeypatch):
    """Keep every test away from the real ~/.modindex directory."""
    home = tmp_path_factory.mktemp("modindex_home")
    monkeypatch.setattr("modindex_cli.config.BASE_DIR", home)
    monkeypatch.setattr("modindex_cli.config.DB_PATH", home / "index.db")
    monkeypatch.setattr("modindex_cli.config_manager.BASE_DIR", home)
    monkeypatch.setattr("modindex_cli.config_manager.CONFIG_FILE", home / "config.toml")
    return home


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def store(temp_dir: Path) -> VersionStore:
    """A VersionStore backed by a throwaway database file."""
    return VersionStore(temp_dir / "index.db")


@pytest.fixture
def foo_files() -> Dict[str, str]:
    return {
        "go.mod": f"module {MODULE_PATH}\n\ngo 1.21\n",
        "foo/foo.go": FOO_GO,
        "README.md": "This is a readme",
        "LICENSE": MIT_LICENSE,
    }


@pytest.fixture
def foobar_files(foo_files: Dict[str, str]) -> Dict[str, str]:
    return {**foo_files, "bar/bar.go": BAR_GO}


def make_orchestrator(store: VersionStore, files: Dict[str, str], **kwargs) -> IngestionOrchestrator:
    """Orchestrator whose fetcher serves *files* as MODULE_PATH@VERSION."""
    fetcher = InMemoryFetcher([InMemoryModule(MODULE_PATH, VERSION, files)], **kwargs)
    return IngestionOrchestrator(store, fetcher)


def write_proxy_tree(root: Path, module_path: str, version: str, files: Dict[str, str],
                     time: str = "2019-01-30T00:00:00Z") -> Path:
    """Lay out *files* the way DirectoryFetcher expects."""
    vdir = root / module_path / "@v"
    tree = vdir / version
    for rel, data in files.items():
        target = tree / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(data, encoding="utf-8")
    (vdir / f"{version}.info").write_text(json.dumps({"Version": version, "Time": time}), encoding="utf-8")
    return tree
