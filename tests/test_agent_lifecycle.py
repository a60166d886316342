from pathlib import Path

import pytest

from townbeads.beads.agents import AGENT_LABEL, AgentBeads, AgentState, CloseOutcome
from townbeads.beads.client import BeadsClient
from townbeads.beads.fields import AgentFields, parse_fields
from townbeads.core.config import AgentConfig
from townbeads.core.errors import (
    BeadsCommandError,
    ConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    UnrecoverableIdentityError,
)
from townbeads.core.provenance import ProvenanceLogger
from tests.mocks.fake_bd import FakeBd

AGENT_ID = "test-testrig-polecat-nux"


def _agents(tmp_path: Path, fake: FakeBd, **kwargs) -> AgentBeads:
    (tmp_path / ".beads").mkdir(exist_ok=True)
    client = BeadsClient(tmp_path, runner=fake)
    return AgentBeads(client, **kwargs)


def _fields_of(fake: FakeBd, bead_id: str) -> AgentFields:
    return parse_fields(fake.issues[bead_id]["description"], AgentFields) or AgentFields()


@pytest.fixture()
def fake() -> FakeBd:
    return FakeBd()


def test_create_writes_type_label_and_fields(tmp_path: Path, fake: FakeBd) -> None:
    agents = _agents(tmp_path, fake)
    record = agents.create(AGENT_ID, "Polecat nux", AgentFields(role_type="polecat", rig="testrig", agent_state="spawning"))
    assert record.id == AGENT_ID
    stored = fake.issues[AGENT_ID]
    assert stored["issue_type"] == "agent"
    assert stored["labels"] == [AGENT_LABEL]
    assert stored["description"] == "role_type: polecat\nrig: testrig\nagent_state: spawning"


def test_create_over_live_record_is_conflict(tmp_path: Path, fake: FakeBd) -> None:
    fake.seed(AGENT_ID, status="closed")
    agents = _agents(tmp_path, fake)
    with pytest.raises(ConflictError) as excinfo:
        agents.create(AGENT_ID, "again", AgentFields(role_type="polecat"))
    assert not isinstance(excinfo.value, UnrecoverableIdentityError)
    assert "closed" in str(excinfo.value)


def test_hard_delete_leaves_unrecoverable_tombstone(tmp_path: Path, fake: FakeBd) -> None:
    agents = _agents(tmp_path, fake)
    fields = AgentFields(role_type="polecat", rig="testrig", agent_state="spawning")
    agents.create(AGENT_ID, "Test agent", fields)

    agents.delete(AGENT_ID)

    assert fake.issues[AGENT_ID]["status"] == "tombstone"
    with pytest.raises(NotFoundError):
        agents.client.show(AGENT_ID)
    with pytest.raises(NotFoundError):
        agents.client.reopen(AGENT_ID)
    with pytest.raises(UnrecoverableIdentityError) as excinfo:
        agents.create_or_reopen(AGENT_ID, "Test agent", fields)
    assert excinfo.value.bead_id == AGENT_ID
    assert isinstance(excinfo.value, ConflictError)


def test_close_then_reopen_recycles_identity(tmp_path: Path, fake: FakeBd) -> None:
    agents = _agents(tmp_path, fake)
    agents.create(AGENT_ID, "Test agent", AgentFields(role_type="polecat", rig="testrig", agent_state="running"))

    assert agents.close_and_clear(AGENT_ID, "polecat done") is CloseOutcome.CLOSED
    assert fake.issues[AGENT_ID]["status"] == "closed"

    record = agents.create_or_reopen(
        AGENT_ID,
        "Test agent (respawned)",
        AgentFields(role_type="polecat", rig="testrig", agent_state="spawning", hook_bead="test-task-2"),
    )
    assert record.status == "open"
    assert record.title == "Test agent (respawned)"
    assert parse_fields(record.description, AgentFields).hook_bead == "test-task-2"
    reopen_call = [call for call in fake.calls if call["args"][0] == "reopen"][-1]
    assert reopen_call["args"] == ["reopen", AGENT_ID, "--reason=re-spawning"]
    assert "create" not in fake.subcommands()[1:]


def test_custom_reopen_reason(tmp_path: Path, fake: FakeBd) -> None:
    fake.seed(AGENT_ID, status="closed")
    agents = _agents(tmp_path, fake, settings=AgentConfig(reopen_reason="fresh spawn"))
    agents.create_or_reopen(AGENT_ID, "t", AgentFields(agent_state="spawning"))
    assert ["reopen", AGENT_ID, "--reason=fresh spawn"] in [call["args"] for call in fake.calls]


@pytest.mark.parametrize(
    "fields, reason",
    [
        (
            AgentFields(
                role_type="polecat",
                rig="testrig",
                agent_state="running",
                hook_bead="test-issue-123",
                role_bead="test-polecat-role",
                cleanup_status="clean",
                active_mr="test-mr-456",
                notification_level="normal",
            ),
            "polecat completed work",
        ),
        (AgentFields(role_type="polecat", rig="testrig", agent_state="spawning", hook_bead="test-issue-789"), "nuked"),
        (AgentFields(role_type="polecat", rig="testrig", agent_state="running", active_mr="test-mr-abc"), ""),
        (AgentFields(role_type="polecat", rig="testrig", agent_state="idle", cleanup_status="has_uncommitted"), "x"),
        (AgentFields(role_type="polecat", rig="testrig", agent_state="spawning"), "fresh spawn closed"),
    ],
)
def test_close_clears_lifecycle_fields(tmp_path: Path, fake: FakeBd, fields: AgentFields, reason: str) -> None:
    agents = _agents(tmp_path, fake)
    agents.create(AGENT_ID, "Test agent", fields)

    agents.close_and_clear(AGENT_ID, reason)

    stored = fake.issues[AGENT_ID]
    assert stored["status"] == "closed"
    assert stored.get("close_reason", "") == reason
    after = _fields_of(fake, AGENT_ID)
    assert after.agent_state == "closed"
    assert after.hook_bead == ""
    assert after.active_mr == ""
    assert after.cleanup_status == ""
    assert after.notification_level == ""
    assert after.role_type == fields.role_type
    assert after.rig == fields.rig
    assert after.role_bead == fields.role_bead


def test_close_keeps_prose(tmp_path: Path, fake: FakeBd) -> None:
    fake.seed(AGENT_ID, description="role_type: crew\nhook_bead: gt-1\n\nCrew member max.")
    agents = _agents(tmp_path, fake)
    agents.close_and_clear(AGENT_ID)
    assert fake.issues[AGENT_ID]["description"] == "role_type: crew\nagent_state: closed\n\nCrew member max."


def test_close_nonexistent_fails(tmp_path: Path, fake: FakeBd) -> None:
    agents = _agents(tmp_path, fake)
    with pytest.raises(NotFoundError):
        agents.close_and_clear("test-nonexistent-polecat-xyz", "should fail")
    assert fake.subcommands() == ["show"]


def test_double_close_accepted(tmp_path: Path, fake: FakeBd) -> None:
    agents = _agents(tmp_path, fake)
    agents.create(AGENT_ID, "t", AgentFields(role_type="polecat", agent_state="running", hook_bead="test-issue-1"))
    assert agents.close_and_clear(AGENT_ID, "first close") is CloseOutcome.CLOSED
    assert agents.close_and_clear(AGENT_ID, "second close") is CloseOutcome.ALREADY_CLOSED
    assert fake.issues[AGENT_ID]["status"] == "closed"


def test_double_close_rejected_still_clears(tmp_path: Path) -> None:
    fake = FakeBd(double_close="reject")
    fake.seed(AGENT_ID, status="closed", description="role_type: polecat\nhook_bead: stale\nagent_state: running")
    agents = _agents(tmp_path, fake)
    assert agents.close_and_clear(AGENT_ID, "again") is CloseOutcome.ALREADY_CLOSED_REJECTED
    after = _fields_of(fake, AGENT_ID)
    assert after.hook_bead == ""
    assert after.agent_state == "closed"
    assert fake.issues[AGENT_ID]["status"] == "closed"


def test_close_failure_on_open_record_propagates(tmp_path: Path, fake: FakeBd) -> None:
    fake.seed(AGENT_ID)
    fake.fail("close", "database is locked")
    agents = _agents(tmp_path, fake)
    with pytest.raises(BeadsCommandError, match="database is locked"):
        agents.close_and_clear(AGENT_ID)


def test_reopen_has_clean_state(tmp_path: Path, fake: FakeBd) -> None:
    agents = _agents(tmp_path, fake)
    agents.create(
        AGENT_ID,
        "t",
        AgentFields(role_type="polecat", rig="testrig", agent_state="running", hook_bead="old", active_mr="old-mr"),
    )
    agents.close_and_clear(AGENT_ID, "done")
    record = agents.create_or_reopen(AGENT_ID, "t", AgentFields(role_type="polecat", rig="testrig", agent_state="spawning"))
    fields = parse_fields(record.description, AgentFields)
    assert fields == AgentFields(role_type="polecat", rig="testrig", agent_state="spawning")


def test_create_or_reopen_refreshes_open_record(tmp_path: Path, fake: FakeBd) -> None:
    fake.seed(AGENT_ID, title="Original", description="agent_state: running\nhook_bead: gt-1\n\nnotes")
    agents = _agents(tmp_path, fake)
    record = agents.create_or_reopen(AGENT_ID, "Ignored", AgentFields(agent_state="spawning"))
    assert record.title == "Original"
    assert record.description == "agent_state: spawning\n\nnotes"
    assert "reopen" not in fake.subcommands()


def test_create_or_reopen_creates_when_missing(tmp_path: Path, fake: FakeBd) -> None:
    agents = _agents(tmp_path, fake)
    record = agents.create_or_reopen(AGENT_ID, "New", AgentFields(role_type="polecat"))
    assert record.id == AGENT_ID
    assert fake.subcommands() == ["show", "create"]


class TestAgentState:
    def _agent(self, tmp_path: Path, fake: FakeBd, state: str = "") -> AgentBeads:
        description = f"role_type: crew\nagent_state: {state}" if state else "role_type: crew"
        fake.seed(AGENT_ID, description=description)
        return _agents(tmp_path, fake)

    def test_lifecycle_walk(self, tmp_path: Path, fake: FakeBd) -> None:
        agents = self._agent(tmp_path, fake, "spawning")
        for state in ("running", "idle", "processing", "idle", "running"):
            assert agents.update_agent_state(AGENT_ID, state).agent_state == state
            assert _fields_of(fake, AGENT_ID).agent_state == state

    def test_missing_state_counts_as_spawning(self, tmp_path: Path, fake: FakeBd) -> None:
        agents = self._agent(tmp_path, fake)
        assert agents.update_agent_state(AGENT_ID, AgentState.RUNNING).agent_state == "running"
        with pytest.raises(InvalidStateTransitionError):
            self._agent(tmp_path, FakeBd()).update_agent_state(AGENT_ID, "idle")

    def test_same_state_is_noop(self, tmp_path: Path, fake: FakeBd) -> None:
        agents = self._agent(tmp_path, fake, "idle")
        agents.update_agent_state(AGENT_ID, "idle")
        assert "update" not in fake.subcommands()

    @pytest.mark.parametrize(
        "current, target",
        [("running", "spawning"), ("idle", "spawning"), ("running", "closed"), ("closed", "running"), ("weird", "idle")],
    )
    def test_rejected_transitions(self, tmp_path: Path, fake: FakeBd, current: str, target: str) -> None:
        agents = self._agent(tmp_path, fake, current)
        with pytest.raises(InvalidStateTransitionError):
            agents.update_agent_state(AGENT_ID, target)
        assert _fields_of(fake, AGENT_ID).agent_state == current

    def test_unknown_target(self, tmp_path: Path, fake: FakeBd) -> None:
        agents = self._agent(tmp_path, fake, "running")
        with pytest.raises(InvalidStateTransitionError, match="unknown"):
            agents.update_agent_state(AGENT_ID, "sleeping")


def test_set_hook_bead(tmp_path: Path, fake: FakeBd) -> None:
    fake.seed(AGENT_ID, description="role_type: polecat\nagent_state: running\n\nWorker notes")
    agents = _agents(tmp_path, fake)

    assert agents.set_hook_bead(AGENT_ID, "gt-task-1").hook_bead == "gt-task-1"
    assert fake.issues[AGENT_ID]["description"] == (
        "role_type: polecat\nagent_state: running\nhook_bead: gt-task-1\n\nWorker notes"
    )

    agents.set_hook_bead(AGENT_ID, None)
    assert "hook_bead" not in fake.issues[AGENT_ID]["description"]


def test_get_agent_bead_without_fields(tmp_path: Path, fake: FakeBd) -> None:
    fake.seed(AGENT_ID, description="just prose")
    record, fields = _agents(tmp_path, fake).get_agent_bead(AGENT_ID)
    assert record.id == AGENT_ID
    assert fields is None


def test_lifecycle_events_are_logged(tmp_path: Path, fake: FakeBd) -> None:
    provenance = ProvenanceLogger(tmp_path / "logs" / "events.jsonl")
    agents = _agents(tmp_path, fake, provenance=provenance)

    agents.create(AGENT_ID, "t", AgentFields(role_type="polecat", agent_state="spawning"))
    agents.update_agent_state(AGENT_ID, "running")
    agents.close_and_clear(AGENT_ID, "done")
    agents.create_or_reopen(AGENT_ID, "t", AgentFields(role_type="polecat", agent_state="spawning"))
    agents.delete(AGENT_ID)

    events = provenance.read()
    assert [event.stage for event in events] == [
        "agent_create",
        "agent_update",
        "agent_close",
        "agent_reopen",
        "agent_delete",
    ]
    assert all(event.agent == AGENT_ID for event in events)
    assert events[2].payload == {"reason": "done", "outcome": "closed"}
