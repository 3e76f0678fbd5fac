"""Unit tests for installation stage tables."""

import pytest

from bootstrapper.models.events import StageEvent
from bootstrapper.models.status import (
    ALLOWED_TRANSITIONS,
    FAILED_STAGES,
    FAILURE_STAGE,
    RETRY_ENTRY,
    STAGE_TABLE,
    InstallationStage,
    parse_stage,
    stage_progress,
    to_wire,
)


@pytest.mark.unit
class TestStageTables:
    """Test stage tables cover the whole stage set consistently."""

    def test_every_stage_has_table_entries(self):
        """Test every stage has a wire name, progress and transition row."""
        for stage in InstallationStage:
            assert stage in STAGE_TABLE
            assert stage in ALLOWED_TRANSITIONS

    def test_wire_names_round_trip(self):
        """Test each wire name parses back to its stage."""
        for stage in InstallationStage:
            assert parse_stage(to_wire(stage)) is stage

    def test_no_transition_targets_not_started(self):
        """Test NotStarted is never re-entered."""
        for targets in ALLOWED_TRANSITIONS.values():
            assert InstallationStage.NOT_STARTED not in targets

    def test_setup_complete_is_terminal(self):
        """Test SetupComplete has no outgoing transitions."""
        assert ALLOWED_TRANSITIONS[InstallationStage.SETUP_COMPLETE] == frozenset()

    def test_failure_stages_are_reachable(self):
        """Test every non-terminal stage can reach its failure stage."""
        for stage, failed in FAILURE_STAGE.items():
            assert failed in FAILED_STAGES
            assert failed in ALLOWED_TRANSITIONS[stage]

    def test_retry_entries_are_allowed_transitions(self):
        """Test retry entry stages are valid exits from the failed stages."""
        for failed, entry in RETRY_ENTRY.items():
            assert entry in ALLOWED_TRANSITIONS[failed]

    def test_happy_path_progress_is_monotonic(self):
        """Test progress only increases along the happy path."""
        path = [
            InstallationStage.NOT_STARTED,
            InstallationStage.PROBING_RUNTIME,
            InstallationStage.RUNTIME_ABSENT,
            InstallationStage.AWAITING_PRIVILEGED_CREDENTIAL,
            InstallationStage.RUNTIME_INSTALLING,
            InstallationStage.RUNTIME_INSTALLED,
            InstallationStage.CONTAINER_PROVISIONING,
            InstallationStage.CONTAINER_STARTED,
            InstallationStage.SETUP_COMPLETE,
        ]
        progress = [stage_progress(stage) for stage in path]
        assert progress == sorted(progress)
        assert progress[-1] == 100


@pytest.mark.unit
class TestParseStage:
    """Test boundary parsing of stage names."""

    def test_parse_known_name(self):
        """Test a known wire name parses."""
        assert parse_stage("ContainerStarted") is InstallationStage.CONTAINER_STARTED

    def test_parse_passes_through_stage(self):
        """Test an enum member is returned unchanged."""
        assert parse_stage(InstallationStage.RUNTIME_ABSENT) is InstallationStage.RUNTIME_ABSENT

    @pytest.mark.parametrize("value", ["Unknown", "container_started", "", None, 3])
    def test_parse_unknown_raises(self, value):
        """Test unknown names are rejected instead of defaulting."""
        with pytest.raises(ValueError):
            parse_stage(value)

    def test_stage_event_serializes_wire_name(self):
        """Test stage events carry the wire name on the boundary."""
        event = StageEvent(stage=InstallationStage.RUNTIME_INSTALLED)

        data = event.model_dump(mode="json")

        assert data == {"type": "stage", "stage": "RuntimeInstalled"}
        assert StageEvent.model_validate(data).stage is InstallationStage.RUNTIME_INSTALLED
