"""LangGraph wrapper for the build loop - trace harness only.

Each engine step runs as one node invocation so the loop's progress is
visible in LangGraph Studio. All decisions stay in the engine; the graph
only keeps stepping until the engine reports an outcome.
"""

from typing import Any, Optional
from typing_extensions import TypedDict

from langgraph.graph import StateGraph, END

from agentic_build_loop.engine import OrchestrationEngine
from agentic_build_loop.loop_state import LoopOutcome, Phase


class LoopGraphState(TypedDict):
    """State for the loop graph - a view of the engine after each step."""
    phase: str
    iteration: int
    steps: int
    status: Optional[str]
    reason: Optional[str]
    # Engine reference (passed through state)
    engine: Any


def _snapshot(state: LoopGraphState, engine: OrchestrationEngine) -> LoopGraphState:
    outcome = engine.outcome
    return {
        **state,
        "phase": engine.phase.value,
        "iteration": engine.iteration,
        "status": outcome.status.value if outcome else None,
        "reason": outcome.reason if outcome else None,
    }


# --- Graph Nodes ---

def node_start(state: LoopGraphState) -> LoopGraphState:
    """Load the checkpoint and normalize the resume phase."""
    engine = state["engine"]
    engine.begin()
    return _snapshot(state, engine)


def node_step(state: LoopGraphState) -> LoopGraphState:
    """Run exactly one phase."""
    engine = state["engine"]
    engine.step()
    return _snapshot({**state, "steps": state["steps"] + 1}, engine)


def node_finish(state: LoopGraphState) -> LoopGraphState:
    return state


# --- Conditional Edges ---

def should_continue(state: LoopGraphState) -> str:
    if state["status"] is None:
        return "step"
    return "finish"


# --- Graph Builder ---

def build_loop_graph() -> StateGraph:
    """
    Build the loop graph.

    Flow:
        start -> step -> (outcome?) -> finish -> end
                      -> (running)  -> step
    """
    graph = StateGraph(LoopGraphState)

    graph.add_node("start", node_start)
    graph.add_node("step", node_step)
    graph.add_node("finish", node_finish)

    graph.set_entry_point("start")

    graph.add_edge("start", "step")
    graph.add_conditional_edges(
        "step",
        should_continue,
        {
            "step": "step",
            "finish": "finish",
        }
    )
    graph.add_edge("finish", END)

    return graph


def recursion_limit_for(engine: OrchestrationEngine) -> int:
    """Upper bound on graph supersteps for one run of *engine*."""
    config = engine.config
    steps_per_round = len(Phase) + 2 * (config.max_retries_per_state + 1)
    return (config.max_iterations + 1) * steps_per_round + 10


def run_loop_graph(engine: OrchestrationEngine) -> LoopOutcome:
    """
    Run the engine through the graph and return its outcome.

    This is the traced equivalent of engine.run().
    """
    compiled = build_loop_graph().compile()

    initial_state: LoopGraphState = {
        "phase": engine.phase.value,
        "iteration": engine.iteration,
        "steps": 0,
        "status": None,
        "reason": None,
        "engine": engine,
    }

    compiled.invoke(initial_state, config={"recursion_limit": recursion_limit_for(engine)})
    return engine.outcome


# Pre-compiled graph for Studio discovery
loop_graph = build_loop_graph().compile()
