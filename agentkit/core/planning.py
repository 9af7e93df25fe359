"""
Planning - Structured plans, step arguments and template substitution

A plan is a list of groups; groups run in order and the steps inside a group
are independent of each other. A step's arguments may reference the output
of a step from an earlier group with a template:

    ${step:<id>.data.<key>[.<key>...]}   value from the step's data
    ${step:<id>.data}                    the whole data payload
    ${step:<id>.text}                    the step's text output

A template that makes up a whole argument string is replaced by the raw
value (dicts stay dicts, numbers stay numbers); templates embedded in a
longer string are stringified. References that cannot be resolved become "".

Usage:
    from agentkit.core.planning import make_plan, substitute_templates

    plan = make_plan("Research Stripe pricing and update my notes")
    args = substitute_templates(step.args, outputs)
"""

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


class StepKind(str, Enum):
    """Operations a plan step can ask for"""
    WEB_SEARCH = "web.search"
    RAG_SEARCH = "rag.search"
    DOC_CREATE = "doc.create"
    DOC_READ_FIRST_CHUNK = "doc.readFirstChunk"
    DOC_EDIT = "doc.edit"
    ANSWER = "answer"


PlanIntent = Literal["edit_doc", "code_change", "answer", "search", "file_ops"]
PlanFinal = Literal["answer_only", "apply_edit", "both"]


@dataclass
class StepResult:
    """Output of one executed step"""
    text: str
    data: Any = None


# =============================================================================
# Plan models
# =============================================================================

class Step(BaseModel):
    id: Optional[str] = None
    kind: StepKind
    label: Optional[str] = None
    args: Dict[str, Any] = Field(default_factory=dict)


class Plan(BaseModel):
    intent: PlanIntent
    explain: Optional[str] = None
    final: Optional[PlanFinal] = None
    groups: List[List[Step]] = Field(default_factory=list)

    def step_count(self) -> int:
        return sum(len(group) for group in self.groups)


class DraftStepArgs(BaseModel):
    """Closed argument set the LLM planners fill in (strict JSON schema)."""
    model_config = ConfigDict(extra="forbid")

    query: Optional[str] = None
    title: Optional[str] = None
    topic: Optional[str] = None
    maxChars: Optional[int] = None
    propose: Optional[bool] = None
    strategy: Optional[str] = None
    style: Optional[str] = None


class DraftStep(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: Optional[str] = None
    kind: StepKind
    label: Optional[str] = None
    args: DraftStepArgs


class PlanDraft(BaseModel):
    """Response format for structured-output planners"""
    model_config = ConfigDict(extra="forbid")

    intent: PlanIntent
    explain: Optional[str] = None
    final: Optional[PlanFinal] = None
    groups: List[List[DraftStep]]

    def to_plan(self) -> Plan:
        return Plan(
            intent=self.intent,
            explain=self.explain,
            final=self.final,
            groups=[
                [
                    Step(
                        id=step.id,
                        kind=step.kind,
                        label=step.label,
                        args=step.args.model_dump(exclude_none=True),
                    )
                    for step in group
                ]
                for group in self.groups
            ],
        )


# =============================================================================
# Step argument validation
# =============================================================================

class _StepArgs(BaseModel):
    model_config = ConfigDict(extra="allow")


class SearchArgs(_StepArgs):
    query: str


class DocCreateArgs(_StepArgs):
    title: Optional[str] = None
    topic: Optional[str] = None


class ReadFirstChunkArgs(_StepArgs):
    maxChars: int = 1200


class DocEditArgs(_StepArgs):
    propose: bool = False
    strategy: Optional[str] = None


class AnswerArgs(_StepArgs):
    style: str = "concise"


STEP_ARG_MODELS = {
    StepKind.WEB_SEARCH: SearchArgs,
    StepKind.RAG_SEARCH: SearchArgs,
    StepKind.DOC_CREATE: DocCreateArgs,
    StepKind.DOC_READ_FIRST_CHUNK: ReadFirstChunkArgs,
    StepKind.DOC_EDIT: DocEditArgs,
    StepKind.ANSWER: AnswerArgs,
}


def validate_step_args(kind: StepKind | str, args: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Validate ``args`` for a step kind and fill defaults.

    Unknown keys are kept. Raises ValueError for an unknown kind and
    pydantic.ValidationError for bad arguments.
    """
    model = STEP_ARG_MODELS[StepKind(kind)]
    return model.model_validate(dict(args or {})).model_dump()


# =============================================================================
# Template substitution
# =============================================================================

TEMPLATE_PATTERN = re.compile(r"\$\{step:([A-Za-z0-9_\-]+)\.(text|data(?:\.[A-Za-z0-9_\-]+)*)\}")

_MISSING = object()


def _lookup(path: str, step_id: str, outputs: Mapping[str, Any]) -> Any:
    output = outputs.get(step_id)
    if output is None:
        return _MISSING

    if isinstance(output, Mapping):
        text, data = output.get("text"), output.get("data")
    else:
        text, data = getattr(output, "text", None), getattr(output, "data", None)

    if path == "text":
        return text if text is not None else _MISSING

    value = data
    for key in path.split(".")[1:]:
        if isinstance(value, Mapping) and key in value:
            value = value[key]
        elif isinstance(value, list) and key.isdigit() and int(key) < len(value):
            value = value[int(key)]
        else:
            return _MISSING
    return _MISSING if value is None else value


def _stringify(value: Any) -> str:
    if value is _MISSING:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def _substitute_string(value: str, outputs: Mapping[str, Any]) -> Any:
    whole = TEMPLATE_PATTERN.fullmatch(value)
    if whole:
        resolved = _lookup(whole.group(2), whole.group(1), outputs)
        return "" if resolved is _MISSING else resolved
    return TEMPLATE_PATTERN.sub(lambda m: _stringify(_lookup(m.group(2), m.group(1), outputs)), value)


def substitute_templates(value: Any, outputs: Mapping[str, Any]) -> Any:
    """Recursively resolve ``${step:...}`` references in strings, lists and dicts."""
    if isinstance(value, str):
        return _substitute_string(value, outputs)
    if isinstance(value, list):
        return [substitute_templates(item, outputs) for item in value]
    if isinstance(value, dict):
        return {key: substitute_templates(item, outputs) for key, item in value.items()}
    return value


# =============================================================================
# Heuristic planner
# =============================================================================

EDIT_WORDS = ("edit", "update", "rewrite", "revise", "improve", "reorganize", "fix", "add to")
CREATE_WORDS = ("create", "write", "draft", "new document", "new doc", "make a document")
NOTES_WORDS = ("note", "notes", "doc", "docs", "document", "documents", "my")
SEARCH_PREFIXES = ("search", "find", "look up", "lookup")


def _has_word(text: str, words) -> bool:
    return any(re.search(rf"\b{re.escape(word)}\b", text) for word in words)


def make_plan(goal: str, max_steps: int = 6) -> Plan:
    """
    Build a plan without calling any model.

    The first group gathers context in parallel (web search always, note
    search when the goal mentions the user's documents, a document read when
    editing); the second group acts on it (edit, create) and answers,
    referencing first-group outputs through templates.
    """
    text = " ".join(goal.lower().split())
    editing = _has_word(text, EDIT_WORDS)
    creating = not editing and _has_word(text, CREATE_WORDS)
    reorganize = "reorganize" in text or "restructure" in text

    gather: List[Step] = [
        Step(id="g0_s0", kind=StepKind.WEB_SEARCH, label="Search the web", args={"query": goal.strip()}),
    ]
    if _has_word(text, NOTES_WORDS):
        gather.append(Step(id=f"g0_s{len(gather)}", kind=StepKind.RAG_SEARCH, label="Search my notes",
                           args={"query": goal.strip()}))
    if editing:
        gather.append(Step(id=f"g0_s{len(gather)}", kind=StepKind.DOC_READ_FIRST_CHUNK, label="Read the document",
                           args={"maxChars": 1200}))

    act: List[Step] = []
    if editing:
        act.append(Step(id="g1_s0", kind=StepKind.DOC_EDIT, label="Edit the document",
                        args={"strategy": "heuristic", "propose": reorganize}))
    elif creating:
        act.append(Step(id="g1_s0", kind=StepKind.DOC_CREATE, label="Create the document",
                        args={"title": goal.strip()[:80], "topic": "${step:g0_s0.text}"}))
    act.append(Step(id=f"g1_s{len(act)}", kind=StepKind.ANSWER, label="Answer",
                    args={"style": "concise", "context": "${step:g0_s0.text}"}))

    budget = max(1, max_steps)
    gather = gather[:budget]
    act = act[:max(0, budget - len(gather))]

    if editing:
        intent, final = "edit_doc", "apply_edit"
    elif creating:
        intent, final = "file_ops", "both"
    elif text.startswith(SEARCH_PREFIXES):
        intent, final = "search", "answer_only"
    else:
        intent, final = "answer", "answer_only"

    return Plan(
        intent=intent,
        explain=f"Gather context with {len(gather)} step(s), then act with {len(act)} step(s).",
        final=final,
        groups=[group for group in (gather, act) if group],
    )
