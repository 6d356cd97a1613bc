"""
Tests for fact coverage merging
"""
from session_service.logic.fact_coverage import (
    all_fact_ids,
    collect_stage_facts,
    has_facts,
    merge_facts_covered,
    union_facts_by_stage,
)


class TestUnionFactsByStage:
    """Tests for merging duplicate beacon facts."""

    def test_adds_new_facts_without_duplicates(self):
        """New facts are appended once."""
        merged, added = union_facts_by_stage(
            {"learning": ["F1", "F2"]},
            {"learning": ["F2", "F3"], "accuracyPractice": ["F4"]}
        )

        assert added is True
        assert merged == {"learning": ["F1", "F2", "F3"], "accuracyPractice": ["F4"]}

    def test_nothing_new(self):
        """Known facts report nothing added."""
        merged, added = union_facts_by_stage({"learning": ["F1"]}, {"learning": ["F1"]})

        assert added is False
        assert merged == {"learning": ["F1"]}

    def test_no_incoming(self):
        """No incoming facts leaves the stored ones."""
        merged, added = union_facts_by_stage({"learning": ["F1"]}, None)

        assert added is False
        assert merged == {"learning": ["F1"]}


class TestCollectStageFacts:
    """Tests for gathering facts from two transitions."""

    def test_current_then_previous_unique(self):
        """Current facts come first, each fact once."""
        collected = collect_stage_facts(
            {"learning": ["F2", "F1"]},
            {"learning": ["F1", "F3"], "fluency6Practice": ["F7"]}
        )

        assert collected["learning"] == ["F2", "F1", "F3"]
        assert collected["fluency6Practice"] == ["F7"]
        assert collected["accuracyPractice"] == []
        assert all_fact_ids(collected) == ["F2", "F1", "F3", "F7"]

    def test_has_facts(self):
        """Only non-empty lists count as facts."""
        assert has_facts({"learning": ["F1"]})
        assert not has_facts({"learning": []})
        assert not has_facts(None)


class TestMergeFactsCovered:
    """Tests for the factsCovered merge."""

    def test_new_fact_records_initial_status(self):
        """First sighting stores the status unchanged."""
        result = merge_facts_covered(None, {"learning": ["F1", "F2"]}, {"F1": "learning"})

        assert result["learning"] == [
            {"factId": "F1", "initialStatus": "learning", "statusChanged": False},
            {"factId": "F2", "initialStatus": "unknown", "statusChanged": False},
        ]
        assert result["fluency1Practice"] == []

    def test_status_change_is_sticky(self):
        """statusChanged stays true once set."""
        covered = merge_facts_covered(None, {"learning": ["F1"]}, {"F1": "learning"})
        covered = merge_facts_covered(covered, {"learning": ["F1"]}, {"F1": "mastered"})

        assert covered["learning"][0]["statusChanged"] is True
        assert covered["learning"][0]["initialStatus"] == "learning"

        covered = merge_facts_covered(covered, {"learning": ["F1"]}, {"F1": "learning"})

        assert covered["learning"][0]["statusChanged"] is True

    def test_untouched_facts_are_kept(self):
        """Facts not in the beacon are kept."""
        covered = merge_facts_covered(None, {"learning": ["F1", "F2"]}, {})
        covered = merge_facts_covered(covered, {"learning": ["F3"]}, {"F3": "accuracyPractice"})

        assert [f["factId"] for f in covered["learning"]] == ["F3", "F1", "F2"]

    def test_input_not_mutated(self):
        """The stored structure is not modified in place."""
        original = {"learning": [{"factId": "F1", "initialStatus": "learning", "statusChanged": False}]}

        merge_facts_covered(original, {"learning": ["F1"]}, {"F1": "mastered"})

        assert original["learning"][0]["statusChanged"] is False
