"""Error types raised or attached by the orchestration engine."""
from __future__ import annotations

from typing import Iterable, List, Optional


class OrchestrationError(Exception):
    """Base class for all engine errors."""


class DuplicateAgent(OrchestrationError):
    def __init__(self, agent_id: str) -> None:
        self.agent_id = agent_id
        super().__init__(f"Agent '{agent_id}' is already registered")


class AgentBusy(OrchestrationError):
    def __init__(self, agent_id: str, task_id: Optional[str] = None) -> None:
        self.agent_id = agent_id
        self.task_id = task_id
        super().__init__(f"Agent '{agent_id}' is busy with task '{task_id}'")


class UnknownAgent(OrchestrationError, KeyError):
    def __init__(self, agent_id: str) -> None:
        self.agent_id = agent_id
        super().__init__(f"Unknown agent '{agent_id}'")

    def __str__(self) -> str:
        return self.args[0]


class UnknownTask(OrchestrationError, KeyError):
    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Unknown task '{task_id}'")

    def __str__(self) -> str:
        return self.args[0]


class UnknownWorkflow(OrchestrationError, KeyError):
    def __init__(self, workflow_id: str) -> None:
        self.workflow_id = workflow_id
        super().__init__(f"Unknown workflow '{workflow_id}'")

    def __str__(self) -> str:
        return self.args[0]


class DuplicateTask(OrchestrationError):
    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task '{task_id}' already exists")


class InvalidTransition(OrchestrationError, ValueError):
    """Raised when a task status change is not allowed by the state machine."""

    def __init__(self, task_id: str, from_status: str, to_status: str) -> None:
        self.task_id = task_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition for task '{task_id}': '{from_status}' -> '{to_status}'"
        )


class DependencyUnmet(OrchestrationError):
    """A task or step could not run because a prerequisite did not complete."""

    def __init__(self, subject: str, dependency: str) -> None:
        self.subject = subject
        self.dependency = dependency
        super().__init__(f"'{subject}' depends on '{dependency}', which did not complete")


class ExecutorError(OrchestrationError):
    """Wraps a failure reported by the external task executor."""

    def __init__(self, task_id: str, cause: BaseException) -> None:
        self.task_id = task_id
        self.cause = cause
        super().__init__(f"Executor failed task '{task_id}': {cause}")


class RetriesExhausted(OrchestrationError):
    def __init__(self, task_id: str, attempts: int, last_error: BaseException) -> None:
        self.task_id = task_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Task '{task_id}' failed after {attempts} attempt(s): {last_error}"
        )


class IterationLimitExceeded(OrchestrationError):
    def __init__(self, step_id: str, limit: int) -> None:
        self.step_id = step_id
        self.limit = limit
        super().__init__(f"Loop step '{step_id}' did not terminate within {limit} iterations")


class StepFailed(OrchestrationError):
    """A workflow step failed; ``errors`` holds every underlying failure."""

    def __init__(self, step_id: str, errors: Iterable[BaseException]) -> None:
        self.step_id = step_id
        self.errors: List[BaseException] = list(errors)
        detail = "; ".join(str(err) for err in self.errors) or "no detail"
        super().__init__(f"Step '{step_id}' failed: {detail}")
