"""
Task Tree - Turns a plan into timeline tasks, links and a display graph

The tree is fixed at three levels: one orchestrator, one main task per plan
group and one leaf per step. Offsets and durations are in milliseconds from
the timeline's base start.
"""

import random
from typing import Any, Dict, List, Optional

from agentkit.core.planning import Plan, StepKind

ROOT_DURATION_MS = 10 * 60_000
GROUP_STAGGER_MS = 15_000
MAX_GROUP_START_MS = 9 * 60_000
MIN_GROUP_DURATION_MS = 30_000
MIN_MAIN_DURATION_MS = 45_000
LEAF_STAGGER_MS = 10_000
OVERRIDE_DURATION_MS = 60_000

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def random_suffix() -> str:
    """Base-36 rendering of a random integer below one million."""
    value = random.randrange(1_000_000)
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def leaf_duration_ms(kind: str) -> int:
    if "search" in kind:
        return 60_000
    if "fetch" in kind:
        return 30_000
    if "edit" in kind:
        return 90_000
    return 45_000


def _root(suffix: str, name: str) -> Dict[str, Any]:
    return {
        "id": f"orchestrate-{suffix}",
        "parentId": None,
        "name": name,
        "startOffsetMs": 0,
        "durationMs": ROOT_DURATION_MS,
        "agentType": "orchestrator",
        "status": "running",
        "icon": "🧠",
    }


def plan_to_provider_output(plan: Plan, prompt: str, suffix: Optional[str] = None) -> Dict[str, Any]:
    """Build ``{tasks, links, graph}`` for a plan."""
    suffix = suffix or random_suffix()
    root_name = f"Orchestrator: {prompt.strip()[:80]}".strip()
    root = _root(suffix, root_name)

    tasks: List[Dict[str, Any]] = [root]
    links: List[Dict[str, Any]] = []
    nodes = [{"id": root["id"], "kind": "orchestrator", "label": root_name}]
    edges: List[Dict[str, str]] = []

    group_base = max(MIN_GROUP_DURATION_MS, ROOT_DURATION_MS // max(1, len(plan.groups)))

    for gi, group in enumerate(plan.groups):
        main_id = f"main-{gi}-{suffix}"
        main_name = f"Main: {group[0].label}" if group and group[0].label else f"Main Group {gi + 1}"
        main_start = min(gi * GROUP_STAGGER_MS, MAX_GROUP_START_MS)
        tasks.append({
            "id": main_id,
            "parentId": root["id"],
            "name": main_name,
            "startOffsetMs": main_start,
            "durationMs": max(MIN_MAIN_DURATION_MS, group_base),
            "agentType": "main",
            "status": "running",
            "icon": "👤",
        })
        links.append({"sourceId": root["id"], "targetId": main_id, "type": "e2e"})
        nodes.append({"id": main_id, "kind": "main", "label": main_name})
        edges.append({"from": root["id"], "to": main_id})

        for si, step in enumerate(group):
            kind = step.kind.value if isinstance(step.kind, StepKind) else str(step.kind)
            leaf_id = f"leaf-{gi}-{si}-{suffix}"
            leaf_name = f"Leaf: {step.label or kind}"
            tasks.append({
                "id": leaf_id,
                "parentId": main_id,
                "name": leaf_name,
                "startOffsetMs": main_start + si * LEAF_STAGGER_MS,
                "durationMs": leaf_duration_ms(kind),
                "agentType": "leaf",
                "status": "pending",
                "icon": "🔗",
            })
            links.append({"sourceId": main_id, "targetId": leaf_id, "type": "e2e"})
            nodes.append({"id": leaf_id, "kind": "leaf", "label": leaf_name})
            edges.append({"from": main_id, "to": leaf_id})

    return {"tasks": tasks, "links": links, "graph": {"nodes": nodes, "edges": edges}}


def _override_icon(kind: Optional[str]) -> str:
    if kind == "custom":
        return "🔧"
    if kind == "search":
        return "🔍"
    return "📝"


def override_graph_to_provider_output(graph: Dict[str, Any], prompt: str, suffix: Optional[str] = None) -> Dict[str, Any]:
    """
    Convert a caller-supplied ``{nodes, edges}`` graph into provider output.

    Every node becomes a child of the orchestrator; edges are matched to
    tasks whose name contains the edge endpoint.
    """
    suffix = suffix or random_suffix()
    root = _root(suffix, f"Orchestrator: {prompt[:80]}")
    tasks: List[Dict[str, Any]] = [root]
    links: List[Dict[str, Any]] = []

    for idx, node in enumerate(graph.get("nodes") or []):
        kind = node.get("kind")
        if kind == "orchestrator":
            agent_type = "orchestrator"
        elif kind == "eval":
            agent_type = "main"
        else:
            agent_type = "leaf"
        task_id = f"task-{node['id']}-{suffix}"
        tasks.append({
            "id": task_id,
            "parentId": root["id"],
            "name": node.get("label") or node["id"],
            "startOffsetMs": idx * GROUP_STAGGER_MS,
            "durationMs": OVERRIDE_DURATION_MS,
            "agentType": agent_type,
            "status": "pending",
            "icon": _override_icon(kind),
        })
        links.append({"sourceId": root["id"], "targetId": task_id, "type": "e2e"})

    for edge in graph.get("edges") or []:
        source = next((t for t in tasks if str(edge.get("from")) in t["name"]), None)
        target = next((t for t in tasks if str(edge.get("to")) in t["name"]), None)
        if source and target:
            links.append({"sourceId": source["id"], "targetId": target["id"], "type": "e2e"})

    return {"tasks": tasks, "links": links, "graph": graph}
