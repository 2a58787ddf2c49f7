"""Worker → broker → gateway → subscriber, all in one event loop."""
from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

from shipwright.broker.memory import InMemoryLogBroker
from shipwright.core.config import WorkerConfig
from shipwright.core.types import JobSpecification
from shipwright.gateway.bridge import BrokerBridge
from shipwright.gateway.hub import SubscriptionHub
from shipwright.storage.memory import InMemoryObjectStore
from shipwright.worker.pipeline import BuildWorker


class Browser:
    def __init__(self) -> None:
        self.frames: list[dict[str, Any]] = []
        self.done = asyncio.Event()

    async def send_text(self, data: str) -> None:
        frame = json.loads(data)
        self.frames.append(frame)
        if frame["type"] == "message" and json.loads(frame["data"])["kind"] == "outcome":
            self.done.set()

    async def close(self, code: int = 1000) -> None: ...

    def events(self) -> list[dict[str, Any]]:
        return [json.loads(f["data"]) for f in self.frames if f["type"] == "message"]


def _spec(project_id: str) -> JobSpecification:
    return JobSpecification(
        repository_url="https://github.com/acme/site",
        build_command="mkdir -p dist && for i in 1 2 3 4 5; do echo line $i; done && echo x > dist/index.html",
        project_id=project_id,
    )


async def test_concurrent_builds_stream_in_order(tmp_path: Path) -> None:
    broker = InMemoryLogBroker()
    await broker.connect()
    hub = SubscriptionHub()
    bridge = BrokerBridge(broker, hub)
    await bridge.start()

    browsers = {name: Browser() for name in ("alpha", "beta")}
    for name, browser in browsers.items():
        hub.join(hub.register(browser), f"logs:{name}")

    workers = []
    for name in browsers:
        repo = tmp_path / name
        repo.mkdir()
        config = WorkerConfig(work_dir=repo, install_command="echo deps", build_runner="", stage_timeout=10)
        workers.append(BuildWorker(_spec(name), broker=broker, store=InMemoryObjectStore(), config=config))

    outcomes = await asyncio.gather(*(worker.run() for worker in workers))
    assert all(outcome.ok for outcome in outcomes)
    await asyncio.wait_for(
        asyncio.gather(*(browser.done.wait() for browser in browsers.values())), timeout=5
    )

    for name, browser in browsers.items():
        assert browser.frames[0] == {"type": "joined", "topic": f"logs:{name}"}
        events = browser.events()
        assert [e["seq"] for e in events] == list(range(1, len(events) + 1))
        assert events[-1]["kind"] == "outcome"
        assert [e["log"] for e in events if e["log"].startswith("line ")] == [
            f"line {i}" for i in range(1, 6)
        ]
        assert all(f["topic"] == f"logs:{name}" for f in browser.frames)

    await bridge.stop()
    await hub.close()
    await broker.close()
