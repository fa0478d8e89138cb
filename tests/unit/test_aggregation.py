import json

from agentrelay.engine import AllChildrenTerminalPolicy
from agentrelay.models import AgentState, Job, WorkflowShape


def _parent() -> Job:
    return Job(
        path="/wf.xml",
        model="default",
        repository="acme/widgets",
        workflow_shape=WorkflowShape.PARALLEL,
    )


def _child(parent: Job, status: AgentState, result: str | None = None) -> Job:
    child = Job(
        path=parent.path,
        model=parent.model,
        repository=parent.repository,
        parent_job_id=parent.job_id,
        status=status,
    )
    return child.with_result(result) if result is not None else child


def test_waits_without_children():
    assert AllChildrenTerminalPolicy().aggregate(_parent(), []) is None


def test_waits_for_unfinished_children():
    parent = _parent()
    children = [
        _child(parent, AgentState.FINISHED, "https://github.com/acme/widgets/pull/1"),
        _child(parent, AgentState.FINISHED),
    ]
    assert AllChildrenTerminalPolicy().aggregate(parent, children) is None


def test_all_children_finished():
    parent = _parent()
    first = _child(parent, AgentState.FINISHED, "pr-1")
    second = _child(parent, AgentState.FINISHED, "pr-2")

    decision = AllChildrenTerminalPolicy().aggregate(parent, [first, second])
    assert decision.status is AgentState.FINISHED
    assert json.loads(decision.result) == {first.job_id: "pr-1", second.job_id: "pr-2"}


def test_failed_child_fails_parent():
    parent = _parent()
    first = _child(parent, AgentState.FINISHED, "pr-1")
    second = _child(parent, AgentState.EXPIRED)

    decision = AllChildrenTerminalPolicy().aggregate(parent, [first, second])
    assert decision.status is AgentState.EXPIRED
    assert json.loads(decision.result)[second.job_id] == "EXPIRED"
