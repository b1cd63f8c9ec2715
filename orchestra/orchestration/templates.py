"""Bundled workflow templates for common multi-agent coding tasks."""
from __future__ import annotations

from typing import Dict, List, Optional

from orchestra.core.models import (
    ParallelStep,
    TaskDefinition,
    TaskPriority,
    TaskStep,
    WorkflowDefinition,
)

HIGH = TaskPriority.HIGH
MEDIUM = TaskPriority.MEDIUM
LOW = TaskPriority.LOW


CODE_REVIEW = WorkflowDefinition(
    id="code-review",
    name="Code Review",
    description="Multi-agent code review process",
    steps=[
        TaskStep(
            id="analyze",
            name="Code Analysis",
            tasks=[
                TaskDefinition(
                    id="analyze-structure",
                    type="analysis",
                    name="Analyze Code Structure",
                    description="Analyze the code structure and dependencies",
                    input={"files": "$files"},
                    required_role="researcher",
                    priority=HIGH,
                ),
            ],
        ),
        ParallelStep(
            id="review",
            name="Parallel Reviews",
            depends_on=("analyze",),
            branches=[
                [
                    TaskStep(
                        id="quality-review",
                        name="Quality Review",
                        tasks=[
                            TaskDefinition(
                                id="check-quality",
                                type="code_review",
                                name="Check Code Quality",
                                description="Review code for quality and best practices",
                                input={"files": "$files", "analysis": "$task_analyze-structure"},
                                required_role="reviewer",
                                priority=MEDIUM,
                            ),
                        ],
                    ),
                ],
                [
                    TaskStep(
                        id="security-review",
                        name="Security Review",
                        tasks=[
                            TaskDefinition(
                                id="check-security",
                                type="security_review",
                                name="Check Security",
                                description="Review code for security vulnerabilities",
                                input={"files": "$files", "analysis": "$task_analyze-structure"},
                                required_role="reviewer",
                                priority=HIGH,
                            ),
                        ],
                    ),
                ],
                [
                    TaskStep(
                        id="test-review",
                        name="Test Coverage Review",
                        tasks=[
                            TaskDefinition(
                                id="check-tests",
                                type="coverage_analysis",
                                name="Check Test Coverage",
                                description="Analyze test coverage",
                                input={"files": "$files"},
                                required_role="tester",
                                priority=MEDIUM,
                            ),
                        ],
                    ),
                ],
            ],
        ),
        TaskStep(
            id="summarize",
            name="Summarize Findings",
            depends_on=("review",),
            tasks=[
                TaskDefinition(
                    id="create-summary",
                    type="documentation",
                    name="Create Review Summary",
                    description="Summarize all review findings",
                    input={
                        "quality": "$task_check-quality",
                        "security": "$task_check-security",
                        "tests": "$task_check-tests",
                    },
                    required_role="coordinator",
                    priority=HIGH,
                ),
            ],
        ),
    ],
    input_schema={"files": {"type": "array", "items": {"type": "string"}}},
    output_schema={
        "summary": {"type": "object"},
        "issues": {"type": "array"},
        "recommendations": {"type": "array"},
    },
)


FEATURE_IMPLEMENTATION = WorkflowDefinition(
    id="feature-implementation",
    name="Feature Implementation",
    description="Multi-agent feature implementation process",
    steps=[
        TaskStep(
            id="plan",
            name="Planning",
            tasks=[
                TaskDefinition(
                    id="create-plan",
                    type="planning",
                    name="Create Implementation Plan",
                    description="Analyze requirements and create implementation plan",
                    input={"feature": "$feature", "codebase": "$codebase"},
                    required_role="planner",
                    priority=HIGH,
                ),
            ],
        ),
        TaskStep(
            id="implement",
            name="Implementation",
            depends_on=("plan",),
            tasks=[
                TaskDefinition(
                    id="write-code",
                    type="coding",
                    name="Write Feature Code",
                    description="Implement the feature based on plan",
                    input={"plan": "$task_create-plan", "feature": "$feature"},
                    required_role="coder",
                    priority=HIGH,
                ),
            ],
        ),
        TaskStep(
            id="test",
            name="Testing",
            depends_on=("implement",),
            tasks=[
                TaskDefinition(
                    id="write-tests",
                    type="test_creation",
                    name="Write Tests",
                    description="Create tests for the new feature",
                    input={"code": "$task_write-code", "feature": "$feature"},
                    required_role="tester",
                    priority=MEDIUM,
                ),
                TaskDefinition(
                    id="run-tests",
                    type="testing",
                    name="Run Tests",
                    description="Execute test suite",
                    input={"tests": "$task_write-tests"},
                    required_role="tester",
                    priority=MEDIUM,
                    depends_on=("write-tests",),
                ),
            ],
        ),
        TaskStep(
            id="review",
            name="Code Review",
            depends_on=("test",),
            tasks=[
                TaskDefinition(
                    id="review-code",
                    type="code_review",
                    name="Review Implementation",
                    description="Review the implemented code",
                    input={"code": "$task_write-code", "tests": "$task_run-tests"},
                    required_role="reviewer",
                    priority=MEDIUM,
                ),
            ],
        ),
        TaskStep(
            id="document",
            name="Documentation",
            depends_on=("review",),
            tasks=[
                TaskDefinition(
                    id="write-docs",
                    type="documentation",
                    name="Write Documentation",
                    description="Document the new feature",
                    input={"code": "$task_write-code", "feature": "$feature"},
                    required_role="documenter",
                    priority=LOW,
                ),
            ],
        ),
    ],
    input_schema={"feature": {"type": "string"}, "codebase": {"type": "string"}},
)


BUG_FIX = WorkflowDefinition(
    id="bug-fix",
    name="Bug Fix",
    description="Multi-agent bug fixing process",
    steps=[
        TaskStep(
            id="investigate",
            name="Investigation",
            tasks=[
                TaskDefinition(
                    id="analyze-bug",
                    type="research",
                    name="Analyze Bug",
                    description="Investigate the bug and find root cause",
                    input={"bug": "$bug", "codebase": "$codebase"},
                    required_role="researcher",
                    priority=HIGH,
                ),
            ],
        ),
        TaskStep(
            id="fix",
            name="Fix",
            depends_on=("investigate",),
            tasks=[
                TaskDefinition(
                    id="implement-fix",
                    type="bug_fix",
                    name="Implement Fix",
                    description="Implement the bug fix",
                    input={"analysis": "$task_analyze-bug", "bug": "$bug"},
                    required_role="coder",
                    priority=HIGH,
                ),
            ],
        ),
        ParallelStep(
            id="verify",
            name="Verification",
            depends_on=("fix",),
            branches=[
                [
                    TaskStep(
                        id="test-fix",
                        name="Test Fix",
                        tasks=[
                            TaskDefinition(
                                id="create-regression-test",
                                type="test_creation",
                                name="Create Regression Test",
                                description="Create test to prevent regression",
                                input={"bug": "$bug", "fix": "$task_implement-fix"},
                                required_role="tester",
                                priority=MEDIUM,
                            ),
                        ],
                    ),
                ],
                [
                    TaskStep(
                        id="review-fix",
                        name="Review Fix",
                        tasks=[
                            TaskDefinition(
                                id="review-changes",
                                type="code_review",
                                name="Review Fix Changes",
                                description="Review the bug fix changes",
                                input={"fix": "$task_implement-fix"},
                                required_role="reviewer",
                                priority=MEDIUM,
                            ),
                        ],
                    ),
                ],
            ],
        ),
    ],
    input_schema={"bug": {"type": "object"}, "codebase": {"type": "string"}},
)


REFACTORING = WorkflowDefinition(
    id="refactoring",
    name="Refactoring",
    description="Multi-agent code refactoring process",
    steps=[
        TaskStep(
            id="analyze",
            name="Analysis",
            tasks=[
                TaskDefinition(
                    id="analyze-code",
                    type="analysis",
                    name="Analyze Code Quality",
                    description="Analyze code for refactoring opportunities",
                    input={"target": "$target", "scope": "$scope"},
                    required_role="researcher",
                    priority=HIGH,
                ),
            ],
        ),
        TaskStep(
            id="plan",
            name="Planning",
            depends_on=("analyze",),
            tasks=[
                TaskDefinition(
                    id="plan-refactoring",
                    type="planning",
                    name="Create Refactoring Plan",
                    description="Plan the refactoring steps",
                    input={"analysis": "$task_analyze-code", "target": "$target"},
                    required_role="planner",
                    priority=HIGH,
                ),
            ],
        ),
        TaskStep(
            id="backup",
            name="Backup",
            depends_on=("plan",),
            tasks=[
                TaskDefinition(
                    id="create-checkpoint",
                    type="automation",
                    name="Create Checkpoint",
                    description="Create a checkpoint before refactoring",
                    input={"target": "$target"},
                    required_role="executor",
                    priority=MEDIUM,
                ),
            ],
        ),
        TaskStep(
            id="refactor",
            name="Refactoring",
            depends_on=("backup",),
            tasks=[
                TaskDefinition(
                    id="apply-refactoring",
                    type="refactoring",
                    name="Apply Refactoring",
                    description="Apply the planned refactoring",
                    input={"plan": "$task_plan-refactoring", "target": "$target"},
                    required_role="coder",
                    priority=HIGH,
                ),
            ],
        ),
        ParallelStep(
            id="validate",
            name="Validation",
            depends_on=("refactor",),
            branches=[
                [
                    TaskStep(
                        id="run-tests",
                        name="Run Tests",
                        tasks=[
                            TaskDefinition(
                                id="test-refactored",
                                type="testing",
                                name="Test Refactored Code",
                                description="Run tests on refactored code",
                                input={"code": "$task_apply-refactoring"},
                                required_role="tester",
                                priority=HIGH,
                            ),
                        ],
                    ),
                ],
                [
                    TaskStep(
                        id="review",
                        name="Code Review",
                        tasks=[
                            TaskDefinition(
                                id="review-refactoring",
                                type="code_review",
                                name="Review Refactored Code",
                                description="Review the refactoring changes",
                                input={
                                    "code": "$task_apply-refactoring",
                                    "plan": "$task_plan-refactoring",
                                },
                                required_role="reviewer",
                                priority=MEDIUM,
                            ),
                        ],
                    ),
                ],
            ],
        ),
    ],
    input_schema={"target": {"type": "string"}, "scope": {"type": "string"}},
)


WORKFLOW_TEMPLATES: Dict[str, WorkflowDefinition] = {
    workflow.id: workflow
    for workflow in (CODE_REVIEW, FEATURE_IMPLEMENTATION, BUG_FIX, REFACTORING)
}


def get_workflow_template(workflow_id: str) -> Optional[WorkflowDefinition]:
    return WORKFLOW_TEMPLATES.get(workflow_id)


def list_workflow_templates() -> List[Dict[str, str]]:
    return [
        {"id": workflow.id, "name": workflow.name, "description": workflow.description}
        for workflow in WORKFLOW_TEMPLATES.values()
    ]
