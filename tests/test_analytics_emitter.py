"""
Tests for AnalyticsEmitter (Caliper record building)

Collector, token provider and profile store are mocked.
"""
import pytest
from unittest.mock import AsyncMock

from session_service.caliper_client import CaliperCollector
from session_service.dynamo import ConditionalStore
from session_service.logic.activities import ActivityType
from session_service.services.analytics_emitter import AnalyticsEmitter
from session_service.services.token_provider import TokenProvider, TokenError


@pytest.fixture
def collector():
    mock = AsyncMock(spec=CaliperCollector)
    mock.post_metric_record.return_value = True
    return mock


@pytest.fixture
def token_provider():
    mock = AsyncMock(spec=TokenProvider)
    mock.get_token.return_value = "token-123"
    return mock


@pytest.fixture
def profile_store():
    mock = AsyncMock(spec=ConditionalStore)
    mock.get_item.return_value = {"email": "student@example.com"}
    return mock


@pytest.fixture
def analytics(collector, token_provider, profile_store):
    return AnalyticsEmitter(collector, token_provider, profile_store, enabled=True)


def posted_record(collector):
    record, token = collector.post_metric_record.await_args.args
    assert token == "token-123"
    return record


class TestSendMetrics:
    """Tests for the metrics ActivityEvent."""

    @pytest.mark.asyncio
    async def test_builds_activity_event(self, analytics, collector):
        """Items become generated items of one ActivityEvent."""
        sent = await analytics.send_metrics("u1", "s1", {"xpEarned": 0.25, "totalQuestions": 3}, event_time="t1")

        assert sent is True
        record = posted_record(collector)
        assert record["dataVersion"] == "http://purl.imsglobal.org/ctx/caliper/v1p2"
        assert len(record["data"]) == 1
        event = record["data"][0]
        assert event["type"] == "ActivityEvent"
        assert event["eventTime"] == "t1"
        assert event["actor"]["email"] == "student@example.com"
        assert event["actor"]["id"].endswith("/users/u1")
        assert event["object"]["id"].endswith("/context/s1")
        assert event["generated"]["items"] == [
            {"type": "xpEarned", "value": 0.25},
            {"type": "totalQuestions", "value": 3},
        ]

    @pytest.mark.asyncio
    async def test_empty_items_is_noop(self, analytics, collector, token_provider):
        """No items means no token and no post."""
        assert await analytics.send_metrics("u1", "s1", {}) is False
        token_provider.get_token.assert_not_awaited()
        collector.post_metric_record.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_token_failure_is_swallowed(self, analytics, collector, token_provider):
        """A token error gives False instead of raising."""
        token_provider.get_token.side_effect = TokenError("no credentials")

        assert await analytics.send_metrics("u1", "s1", {"xpEarned": 1}) is False
        collector.post_metric_record.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_collector_failure_reported(self, analytics, collector):
        """A rejected post gives False."""
        collector.post_metric_record.return_value = False

        assert await analytics.send_metrics("u1", "s1", {"xpEarned": 1}) is False

    @pytest.mark.asyncio
    async def test_missing_profile_sends_empty_email(self, analytics, collector, profile_store):
        """Users without a profile get an empty email."""
        profile_store.get_item.side_effect = RuntimeError("throttled")

        assert await analytics.send_metrics("u1", "s1", {"xpEarned": 1}) is True
        assert posted_record(collector)["data"][0]["actor"]["email"] == ""

    @pytest.mark.asyncio
    async def test_disabled(self, collector, token_provider, profile_store):
        """Disabled analytics never post."""
        analytics = AnalyticsEmitter(collector, token_provider, profile_store, enabled=False)

        assert await analytics.send_metrics("u1", "s1", {"xpEarned": 1}) is False
        collector.post_metric_record.assert_not_awaited()


class TestSendActivityTime:
    """Tests for TimeSpentEvent emission."""

    @pytest.mark.asyncio
    async def test_time_spent_event(self, analytics, collector):
        """Active and waste seconds are reported."""
        await analytics.send_activity_time("u1", "s1", ActivityType.LEARNING, time_spent=15, waste_time=25)

        events = posted_record(collector)["data"]
        assert [e["type"] for e in events] == ["TimeSpentEvent"]
        assert events[0]["action"] == "SpentTime"
        assert events[0]["object"]["activity"]["name"] == "Learning"
        assert events[0]["object"]["activity"]["id"].endswith("-learning")
        assert events[0]["generated"]["items"] == [
            {"type": "active", "value": 15},
            {"type": "waste", "value": 25},
        ]

    @pytest.mark.asyncio
    async def test_with_facts_count(self, analytics, collector):
        """A facts count adds a totalQuestions ActivityEvent."""
        await analytics.send_activity_time("u1", "s1", ActivityType.ACCURACY_PRACTICE, time_spent=30, facts_count=4)

        events = posted_record(collector)["data"]
        assert [e["type"] for e in events] == ["TimeSpentEvent", "ActivityEvent"]
        assert events[1]["generated"]["items"] == [{"type": "totalQuestions", "value": 4}]

    @pytest.mark.asyncio
    async def test_nothing_to_send(self, analytics, collector):
        """Zero time sends nothing."""
        assert await analytics.send_activity_time("u1", "s1", ActivityType.LEARNING, time_spent=0) is False
        collector.post_metric_record.assert_not_awaited()


class TestSessionCompleted:
    """Tests for the session-completed event."""

    @pytest.fixture
    def session(self):
        return {
            "sessionId": "s1",
            "endTime": "2026-03-02T10:05:00.000Z",
            "pageTransitions": [
                {"timestamp": "2026-03-02T10:00:00.000Z", "page": "learn", "trackId": "T1"},
                {"timestamp": "2026-03-02T10:02:00.000Z", "page": "fluency-practice", "trackId": "T1",
                 "factsByStage": {"fluency2Practice": ["F1"]}},
            ],
            "learningTime": 120,
            "fluency2PracticeTime": 50,
            "fluency1PracticeTime": 7,
            "factsCovered": {
                "learning": [{"factId": "F9"}],
                "fluency2Practice": [{"factId": "F1"}, {"factId": "F2"}],
                "fluency1Practice": [{"factId": "F3"}],
            },
        }

    @pytest.mark.asyncio
    async def test_reports_last_activity_only(self, analytics, collector, session):
        """Only the last activity's time and facts are reported."""
        assert await analytics.send_session_completed_event("u1", session) is True

        events = posted_record(collector)["data"]
        assert [e["type"] for e in events] == ["TimeSpentEvent", "ActivityEvent"]
        assert events[0]["object"]["activity"]["name"] == "Fluency Practice"
        assert events[0]["eventTime"] == "2026-03-02T10:05:00.000Z"
        assert events[0]["generated"]["items"] == [
            {"type": "active", "value": 50},
            {"type": "waste", "value": 0},
        ]
        assert events[1]["generated"]["items"] == [{"type": "totalQuestions", "value": 2}]
        assert all(item["type"] != "xpEarned" for e in events for item in e["generated"]["items"])

    @pytest.mark.asyncio
    async def test_fluency_without_tier_sums_all_tiers(self, analytics, collector, session):
        """A fluency page without a tier reports all tiers together."""
        session["pageTransitions"][-1].pop("factsByStage")

        await analytics.send_session_completed_event("u1", session)

        events = posted_record(collector)["data"]
        assert events[0]["generated"]["items"][0] == {"type": "active", "value": 57}
        assert events[1]["generated"]["items"] == [{"type": "totalQuestions", "value": 3}]

    @pytest.mark.asyncio
    async def test_ending_on_dashboard_sends_nothing(self, analytics, collector, session):
        """Sessions ending on the dashboard emit nothing."""
        session["pageTransitions"].append(
            {"timestamp": "2026-03-02T10:04:00.000Z", "page": "dashboard", "trackId": "T1"}
        )

        assert await analytics.send_session_completed_event("u1", session) is False
        collector.post_metric_record.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_transitions(self, analytics, collector):
        """A session without transitions emits nothing."""
        assert await analytics.send_session_completed_event("u1", {"sessionId": "s1"}) is False
