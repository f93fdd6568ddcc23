import asyncio

from src.orchestrator.infrastructure.celery.app import celery_app
from src.orchestrator.infrastructure.celery.task_registry import RUN_SKILL_TASK
from src.orchestrator.worker.agent_client import AgentRuntimeClient, AgentRuntimeError
from src.orchestrator.worker.reporter import TaskReporter


@celery_app.task(name=RUN_SKILL_TASK, bind=True)
def run_skill(self, message: dict) -> dict:
    """
    Run one dispatched task through the agent runtime and report the outcome.
    """
    reporter = TaskReporter()
    task_id = message["task_id"]
    try:
        result = asyncio.run(AgentRuntimeClient.from_settings().run(message))
    except AgentRuntimeError as exc:
        return reporter.report_failed(task_id, str(exc))
    return reporter.report_completed(task_id, result)
