"""Shared test fixtures."""
from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest

from shipwright.broker.memory import InMemoryLogBroker
from shipwright.core.config import WorkerConfig
from shipwright.core.types import JobSpecification
from shipwright.launcher.mock import MockJobLauncher
from shipwright.storage.memory import InMemoryObjectStore


@pytest.fixture
def spec() -> JobSpecification:
    return JobSpecification(
        repository_url="https://github.com/acme/site",
        output_dir="dist",
        build_command="build",
        project_id="demo-site",
    )


@pytest.fixture
async def broker() -> AsyncGenerator[InMemoryLogBroker, None]:
    b = InMemoryLogBroker(record=True)
    await b.connect()
    yield b
    await b.close()


@pytest.fixture
def store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def mock_launcher() -> MockJobLauncher:
    return MockJobLauncher()


@pytest.fixture
def repo_dir(tmp_path: Path) -> Path:
    """A checked-out repository with no build tooling."""
    path = tmp_path / "repo"
    path.mkdir()
    return path


@pytest.fixture
def worker_config(repo_dir: Path) -> WorkerConfig:
    """Stages are plain shell commands; the build command runs verbatim."""
    return WorkerConfig(
        work_dir=repo_dir,
        install_command="echo installing",
        build_runner="",
        stage_timeout=10.0,
    )
