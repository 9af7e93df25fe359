"""
Core Module - Planning and Plan Execution

This module provides the orchestration primitives used by the planner and
the agents:
- Plan / Step: structured plan schema (groups of parallel steps)
- substitute_templates: ${step:<id>.data.<key>} resolution
- make_plan: heuristic planner that needs no model
- execute_structured_plan: runs groups in order, steps concurrently
- plan_to_provider_output: orchestrator/main/leaf task tree for timelines

Usage:
    from agentkit.core import make_plan, execute_structured_plan, ExecutionContext

    plan = make_plan("Summarize the latest news about Stripe")
    text = await execute_structured_plan(plan, toolkit, ExecutionContext(message=goal))
"""

from agentkit.core.plan_executor import (
    ExecutionContext,
    RunEventRecorder,
    StepToolkit,
    execute_structured_plan,
    run_planned_step,
)
from agentkit.core.planning import (
    Plan,
    PlanDraft,
    Step,
    StepKind,
    StepResult,
    make_plan,
    substitute_templates,
    validate_step_args,
)
from agentkit.core.task_tree import (
    override_graph_to_provider_output,
    plan_to_provider_output,
    random_suffix,
)

__all__ = [
    # Plan schema
    "Plan",
    "PlanDraft",
    "Step",
    "StepKind",
    "StepResult",
    "validate_step_args",
    "substitute_templates",
    "make_plan",
    # Execution
    "ExecutionContext",
    "StepToolkit",
    "RunEventRecorder",
    "run_planned_step",
    "execute_structured_plan",
    # Task tree
    "plan_to_provider_output",
    "override_graph_to_provider_output",
    "random_suffix",
]
