import httpx
import pytest

from src.orchestrator.domain.events.task_event import EventType
from src.orchestrator.worker.agent_client import AgentRuntimeClient, AgentRuntimeError
from src.orchestrator.worker.reporter import TaskReporter

MESSAGE = {"task_id": "task-1", "skill_id": "qa", "timeout_seconds": 30, "inputs": {}}


class RecordingPublisher:
    def __init__(self) -> None:
        self.events = []

    def publish(self, event) -> str:
        self.events.append(event)
        return f"{len(self.events)}-0"


@pytest.mark.asyncio
async def test_agent_client_posts_message_to_skill_endpoint() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"result": {"verdict": "pass"}})

    client = AgentRuntimeClient("http://agents/", transport=httpx.MockTransport(handler))

    result = await client.run(MESSAGE)

    assert result == {"verdict": "pass"}
    assert str(requests[0].url) == "http://agents/skills/qa/run"


@pytest.mark.asyncio
async def test_agent_client_wraps_http_errors() -> None:
    client = AgentRuntimeClient(
        "http://agents", transport=httpx.MockTransport(lambda request: httpx.Response(503))
    )

    with pytest.raises(AgentRuntimeError):
        await client.run(MESSAGE)


@pytest.mark.asyncio
async def test_agent_client_requires_result_field() -> None:
    client = AgentRuntimeClient(
        "http://agents",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"status": "ok"})),
    )

    with pytest.raises(AgentRuntimeError):
        await client.run(MESSAGE)


def test_reporter_publishes_completion_and_failure() -> None:
    publisher = RecordingPublisher()
    reporter = TaskReporter(publisher)

    done = reporter.report_completed("task-1", {"files": 3})
    failed = reporter.report_failed("task-2", "agent crashed")

    assert [event.type for event in publisher.events] == [
        EventType.TASK_COMPLETED,
        EventType.TASK_FAILED,
    ]
    assert publisher.events[0].payload == {"result": {"files": 3}}
    assert done["state"] == "succeeded"
    assert failed["reason"] == "agent crashed"


def test_run_skill_reports_agent_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    from src.orchestrator.worker.tasks import run_skill as module

    publisher = RecordingPublisher()

    class BrokenClient:
        async def run(self, message):
            raise AgentRuntimeError("runtime down")

    monkeypatch.setattr(module, "TaskReporter", lambda: TaskReporter(publisher))
    monkeypatch.setattr(
        module.AgentRuntimeClient, "from_settings", classmethod(lambda cls: BrokenClient())
    )

    outcome = module.run_skill.run(MESSAGE)

    assert outcome == {"task_id": "task-1", "state": "failed", "reason": "runtime down"}
    assert publisher.events[0].type == EventType.TASK_FAILED
