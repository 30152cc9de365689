"""Unit tests for the shipment draft status state machine"""

import pytest

from shipflow.shipment_drafts.status import (
    ALLOWED_TRANSITIONS,
    DraftStatus,
    StateTransitionError,
    can_transition,
    get_allowed_transitions,
    is_editable,
    validate_transition,
)


class TestDraftStatusStateMachine:
    """Test DraftStatus enum and transition validation"""

    def test_status_values(self):
        """Statuses are stored as lowercase strings"""
        assert [s.value for s in DraftStatus] == ["draft", "processing", "booked", "error"]

    def test_every_status_has_transition_entry(self):
        assert set(ALLOWED_TRANSITIONS) == set(DraftStatus)

    def test_draft_to_processing(self):
        """Committing to book moves draft -> processing"""
        assert can_transition(DraftStatus.DRAFT, DraftStatus.PROCESSING) is True

    def test_draft_cannot_skip_processing(self):
        assert can_transition(DraftStatus.DRAFT, DraftStatus.BOOKED) is False
        assert can_transition(DraftStatus.DRAFT, DraftStatus.ERROR) is False

    def test_processing_outcomes(self):
        assert can_transition(DraftStatus.PROCESSING, DraftStatus.BOOKED) is True
        assert can_transition(DraftStatus.PROCESSING, DraftStatus.ERROR) is True

    def test_no_transition_back_to_draft(self):
        """Once processing, a draft never becomes editable again"""
        for status in DraftStatus:
            assert can_transition(status, DraftStatus.DRAFT) is False

    def test_error_allows_retry(self):
        assert can_transition(DraftStatus.ERROR, DraftStatus.PROCESSING) is True

    def test_booked_is_terminal(self):
        assert get_allowed_transitions(DraftStatus.BOOKED) == []

    def test_validate_transition_raises(self):
        with pytest.raises(StateTransitionError) as exc_info:
            validate_transition(DraftStatus.BOOKED, DraftStatus.PROCESSING)
        assert "booked -> processing" in str(exc_info.value)

    def test_validate_transition_allows_valid(self):
        validate_transition(DraftStatus.DRAFT, DraftStatus.PROCESSING)


class TestEditability:
    """Only drafts still in status draft may be edited"""

    def test_draft_is_editable(self):
        assert is_editable(DraftStatus.DRAFT) is True

    @pytest.mark.parametrize("status", [DraftStatus.PROCESSING, DraftStatus.BOOKED, DraftStatus.ERROR])
    def test_other_statuses_are_not_editable(self, status):
        assert is_editable(status) is False

    def test_accepts_raw_string(self):
        assert is_editable("draft") is True
