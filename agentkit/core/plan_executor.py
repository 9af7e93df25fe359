"""
Plan Executor - Runs a structured plan group by group

Groups run in order. Steps inside a group run concurrently with
asyncio.gather and only see outputs of earlier groups. A failing step never
aborts the plan: its error text becomes that step's output and the next
group still runs.

Run events (group.start, step.start, step.done) go to an optional event
sink; sink failures are logged and ignored.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Union

from agentkit.core.planning import (
    Plan,
    Step,
    StepKind,
    StepResult,
    substitute_templates,
    validate_step_args,
)

logger = logging.getLogger(__name__)

STEP_DONE_PREVIEW_CHARS = 400


@dataclass
class ExecutionContext:
    """What the steps know about the request"""
    message: str = ""
    user_id: Optional[str] = None
    selected_document_id: Optional[str] = None
    ui_summary: Optional[str] = None


ToolOutput = Union[StepResult, str]


class StepToolkit(Protocol):
    """Coroutines the executor calls for each step kind"""

    async def web_search(self, query: str) -> ToolOutput: ...

    async def rag_search(self, query: str) -> ToolOutput: ...

    async def create_document(self, ask: str) -> ToolOutput: ...

    async def read_first_chunk(self, document_id: str, max_chars: int) -> Dict[str, Any]: ...

    async def edit_document(self, document_id: Optional[str], instruction: str) -> ToolOutput: ...

    async def propose_edit(self, document_id: str) -> str: ...

    async def answer(self, message: str, context: Optional[str] = None) -> ToolOutput: ...


class EventSink(Protocol):
    def __call__(self, kind: str, message: Optional[str] = None, data: Any = None) -> None: ...


class RunEventRecorder:
    """Event sink that appends to an agent run's event log."""

    def __init__(self, session, run_id: str):
        self.session = session
        self.run_id = run_id

    def __call__(self, kind: str, message: Optional[str] = None, data: Any = None) -> None:
        from hub.services.timelines import record_run_event

        record_run_event(self.session, self.run_id, kind, message=message, data=data)


def _emit(events: Optional[EventSink], kind: str, message: str, data: Any = None) -> None:
    if events is None:
        return
    try:
        events(kind, message, data)
    except Exception as e:
        logger.warning(f"Failed to record run event {kind}: {e}")


def _as_result(output: ToolOutput) -> StepResult:
    if isinstance(output, StepResult):
        return output
    return StepResult(text="" if output is None else str(output))


def _kind_value(kind: Any) -> str:
    return kind.value if isinstance(kind, StepKind) else str(kind)


async def run_planned_step(step: Step, toolkit: StepToolkit, context: ExecutionContext) -> StepResult:
    """Dispatch one step to the toolkit."""
    kind = _kind_value(step.kind)
    raw_args = dict(step.args or {})

    if kind in (StepKind.WEB_SEARCH.value, StepKind.RAG_SEARCH.value):
        if not raw_args.get("query"):
            raw_args["query"] = context.message
        args = validate_step_args(kind, raw_args)
        query = str(args.get("query") or context.message)
        if kind == StepKind.WEB_SEARCH.value:
            return _as_result(await toolkit.web_search(query))
        return _as_result(await toolkit.rag_search(query))

    if kind == StepKind.DOC_CREATE.value:
        args = validate_step_args(kind, raw_args)
        ask = args.get("title") or args.get("topic") or context.message or "New document"
        return _as_result(await toolkit.create_document(str(ask)))

    if kind == StepKind.DOC_READ_FIRST_CHUNK.value:
        args = validate_step_args(kind, raw_args)
        max_chars = int(args["maxChars"])
        if not context.selected_document_id:
            if isinstance(context.ui_summary, str) and context.ui_summary:
                chunk = context.ui_summary[:max_chars]
                data = {"documentId": None, "chunk": chunk, "cursor": len(chunk), "isEnd": True, "fromUiSummary": True}
                return StepResult(text=chunk, data=data)
            return StepResult(text="No selectedDocumentId for readFirstChunk")
        data = await toolkit.read_first_chunk(context.selected_document_id, max_chars)
        return StepResult(text=data.get("chunk") or "", data=data)

    if kind == StepKind.DOC_EDIT.value:
        args = validate_step_args(kind, raw_args)
        if args.get("propose") is True:
            if not context.selected_document_id:
                return StepResult(text="No selectedDocumentId for proposal")
            try:
                proposed = await toolkit.propose_edit(context.selected_document_id)
            except Exception as e:
                return StepResult(text=f"Failed to generate proposal: {e}")
            return StepResult(
                text="Prepared a reorganization proposal (review before applying).",
                data={"proposed": proposed},
            )
        result = _as_result(await toolkit.edit_document(context.selected_document_id, context.message))
        return StepResult(text=result.text, data={"strategy": args.get("strategy") or "heuristic"})

    if kind == StepKind.ANSWER.value:
        args = validate_step_args(kind, raw_args)
        extra = args.get("context")
        result = _as_result(await toolkit.answer(context.message, extra if isinstance(extra, str) and extra else None))
        return StepResult(text=result.text, data={"style": args.get("style") or "concise"})

    return StepResult(text="Unsupported step kind")


async def execute_structured_plan(
    plan: Plan,
    toolkit: StepToolkit,
    context: ExecutionContext,
    events: Optional[EventSink] = None,
) -> str:
    """
    Execute every group of ``plan`` and return the aggregated step texts.

    Step outputs are keyed by step id (``g{group}_s{step}`` when the plan
    leaves it empty) and feed template substitution for later groups.
    """
    aggregate = ""
    outputs: Dict[str, StepResult] = {}
    total_groups = len(plan.groups)

    for gi, group in enumerate(plan.groups):
        prepared = [
            step.model_copy(update={
                "id": step.id or f"g{gi}_s{si}",
                "args": substitute_templates(step.args or {}, outputs),
            })
            for si, step in enumerate(group)
        ]

        _emit(events, "group.start", f"Group {gi + 1} of {total_groups}",
              {"groupIndex": gi, "steps": len(prepared)})
        logger.info(f"Executing plan group {gi + 1}/{total_groups} ({len(prepared)} steps)")

        async def run_one(step: Step) -> str:
            kind = _kind_value(step.kind)
            _emit(events, "step.start", f"{kind} [{step.id}]", {"args": step.args})
            try:
                result = await run_planned_step(step, toolkit, context)
            except Exception as e:
                message = f"{kind}[{step.id}] failed: {e}"
                logger.warning(message)
                outputs[step.id] = StepResult(text=message)
                _emit(events, "step.done", f"{kind} [{step.id}] error", {"error": str(e)})
                return message

            outputs[step.id] = result
            _emit(events, "step.done", f"{kind} [{step.id}] ok",
                  {"result": result.text[:STEP_DONE_PREVIEW_CHARS]})
            return result.text

        texts = await asyncio.gather(*(run_one(step) for step in prepared))
        joined = "\n\n".join(text for text in texts if text)
        if joined:
            aggregate += ("\n\n" if aggregate else "") + joined

    return aggregate
