"""Pre-configured agent definitions for the common coding-assistant roles."""
from __future__ import annotations

from typing import Iterable, List, Optional

from orchestra.core.models import AgentCapabilities, AgentDefinition


def _capabilities(
    tools: Iterable[str],
    task_types: Iterable[str],
    max_concurrency: int,
    system_prompt: str,
) -> AgentCapabilities:
    return AgentCapabilities(
        tools=frozenset(tools),
        task_types=frozenset(task_types),
        max_concurrency=max_concurrency,
        system_prompt=system_prompt,
    )


COORDINATOR = AgentDefinition(
    id="coordinator",
    name="Coordinator",
    role="coordinator",
    description="Coordinates other agents and manages workflows",
    capabilities=_capabilities(
        ["task_create", "task_assign", "agent_query", "workflow_manage"],
        ["coordination", "planning", "delegation"],
        10,
        "You are a coordinator agent. Break complex work into subtasks, hand them "
        "to the right agents, watch progress, and merge their results.",
    ),
    priority=100,
)

RESEARCHER = AgentDefinition(
    id="researcher",
    name="Researcher",
    role="researcher",
    description="Gathers information and performs analysis",
    capabilities=_capabilities(
        ["web_search", "file_read", "code_search", "knowledge_base"],
        ["research", "analysis", "information_gathering"],
        5,
        "You are a researcher agent. Search code and documentation, analyse what "
        "you find and summarise it with references for the other agents.",
    ),
    priority=50,
)

CODER = AgentDefinition(
    id="coder",
    name="Coder",
    role="coder",
    description="Writes and modifies code",
    capabilities=_capabilities(
        ["file_write", "file_edit", "code_generate", "refactor"],
        ["coding", "implementation", "bug_fix", "refactoring"],
        3,
        "You are a coder agent. Implement features and fixes following the "
        "conventions of the project you are working in.",
    ),
    priority=60,
)

REVIEWER = AgentDefinition(
    id="reviewer",
    name="Reviewer",
    role="reviewer",
    description="Reviews code and provides feedback",
    capabilities=_capabilities(
        ["file_read", "code_analyze", "diff_view", "comment"],
        ["code_review", "quality_check", "security_review"],
        5,
        "You are a reviewer agent. Review changes for correctness, security and "
        "maintainability and give actionable feedback.",
    ),
    priority=40,
)

TESTER = AgentDefinition(
    id="tester",
    name="Tester",
    role="tester",
    description="Creates and runs tests",
    capabilities=_capabilities(
        ["test_write", "test_run", "coverage_check", "assertion"],
        ["testing", "test_creation", "coverage_analysis"],
        3,
        "You are a tester agent. Write focused tests, run the suite and report "
        "failures and coverage gaps.",
    ),
    priority=40,
)

DOCUMENTER = AgentDefinition(
    id="documenter",
    name="Documenter",
    role="documenter",
    description="Creates and maintains documentation",
    capabilities=_capabilities(
        ["file_write", "markdown_format", "docstring_generate"],
        ["documentation", "readme", "api_docs", "changelog"],
        3,
        "You are a documenter agent. Write clear documentation for the code and "
        "changes you are given.",
    ),
    priority=30,
)

PLANNER = AgentDefinition(
    id="planner",
    name="Planner",
    role="planner",
    description="Creates implementation plans",
    capabilities=_capabilities(
        ["code_analyze", "dependency_check", "architecture_view"],
        ["planning", "architecture", "design"],
        2,
        "You are a planner agent. Turn requirements into an ordered, concrete "
        "implementation plan.",
    ),
    priority=70,
)

EXECUTOR = AgentDefinition(
    id="executor",
    name="Executor",
    role="executor",
    description="Executes commands and scripts",
    capabilities=_capabilities(
        ["bash_execute", "npm_run", "git_command", "process_manage"],
        ["execution", "automation", "build", "deploy"],
        5,
        "You are an executor agent. Run the commands you are asked to run and "
        "report their output faithfully.",
    ),
    priority=50,
)

DEFAULT_AGENTS: List[AgentDefinition] = [
    COORDINATOR,
    RESEARCHER,
    CODER,
    REVIEWER,
    TESTER,
    DOCUMENTER,
    PLANNER,
    EXECUTOR,
]


def create_custom_agent(
    id: str,
    name: str,
    description: str,
    *,
    role: str = "custom",
    tools: Iterable[str] = (),
    task_types: Iterable[str] = (),
    max_concurrency: int = 5,
    model: Optional[str] = None,
    system_prompt: Optional[str] = None,
    depends_on: Iterable[str] = (),
    priority: int = 50,
) -> AgentDefinition:
    """Build an agent definition outside the bundled defaults."""
    return AgentDefinition(
        id=id,
        name=name,
        role=role,
        description=description,
        capabilities=AgentCapabilities(
            tools=frozenset(tools),
            task_types=frozenset(task_types),
            max_concurrency=max_concurrency,
            model=model,
            system_prompt=system_prompt,
        ),
        depends_on=tuple(depends_on),
        priority=priority,
    )


def get_agent_by_role(role: str) -> Optional[AgentDefinition]:
    return next((agent for agent in DEFAULT_AGENTS if agent.role == role), None)


def get_agents_by_capability(capability: str) -> List[AgentDefinition]:
    """Default agents offering ``capability`` as a tool or a task type."""
    return [
        agent
        for agent in DEFAULT_AGENTS
        if capability in agent.capabilities.tools
        or capability in agent.capabilities.task_types
    ]
