"""
Tests for SessionReportService (moto)
"""
import pytest

from session_service.dynamo import session_key
from session_service.services.session_reports import SessionReportService

USER = "user-1"


def stored_session(session_id, start, end, **fields):
    pk, sk = session_key(USER, session_id)
    item = {
        "PK": pk,
        "SK": sk,
        "userId": USER,
        "sessionId": session_id,
        "trackId": "TRACK1",
        "startTime": start,
        "endTime": end,
        "version": 1,
        "pageTransitions": [],
        "totalDuration": 0,
    }
    item.update(fields)
    return item


@pytest.fixture
def reports(store, clock):
    return SessionReportService(store, clock=clock)


class TestSessionAnalytics:
    """Tests for windowed session analytics."""

    @pytest.mark.asyncio
    async def test_defaults_to_today(self, reports, store):
        """Without dates only today's sessions count."""
        await store.put_new(stored_session(
            "today", "2026-03-02T08:00:00.000Z", "2026-03-02T08:10:00.000Z",
            totalDuration=600, learningTime=400, otherTime=200,
            totalActiveTime=120, totalXpEarned=2.5, totalQuestions=5, correctQuestions=4
        ))
        await store.put_new(stored_session(
            "yesterday", "2026-03-01T08:00:00.000Z", "2026-03-01T08:10:00.000Z",
            totalDuration=600, learningTime=600
        ))

        result = await reports.get_session_analytics(USER)

        assert result.totalTimeSpent == 600
        assert result.timeByActivity.learningTime == 400
        assert result.timeByActivity.otherTime == 200
        assert result.totalActiveTime == 120
        assert result.totalXpEarned == pytest.approx(2.5)
        assert result.totalQuestions == 5
        assert result.correctQuestions == 4

    @pytest.mark.asyncio
    async def test_explicit_window(self, reports, store):
        """Sessions must start and end inside the window."""
        await store.put_new(stored_session(
            "s1", "2026-02-20T08:00:00.000Z", "2026-02-20T08:10:00.000Z", totalDuration=100
        ))
        await store.put_new(stored_session(
            "s2", "2026-02-21T08:00:00.000Z", "2026-02-21T08:10:00.000Z", totalDuration=50
        ))

        result = await reports.get_session_analytics(
            USER, from_date="2026-02-20T00:00:00.000Z", to_date="2026-02-21T23:59:59.999Z"
        )

        assert result.totalTimeSpent == 150

    @pytest.mark.asyncio
    async def test_track_breakdown_with_averages(self, reports, store):
        """A track id recomputes time and averages per fact."""
        await store.put_new(stored_session(
            "s1", "2026-03-02T08:00:00.000Z", "2026-03-02T08:01:00.000Z",
            pageTransitions=[
                {"timestamp": "2026-03-02T08:00:00.000Z", "page": "learn", "trackId": "TRACK1",
                 "factsByStage": {"learning": ["F1", "F2"]}},
                {"timestamp": "2026-03-02T08:00:40.000Z", "page": "learn", "trackId": "TRACK2"},
                {"timestamp": "2026-03-02T08:01:00.000Z", "page": "dashboard", "trackId": "TRACK2"},
            ]
        ))

        result = await reports.get_session_analytics(USER, track_id="TRACK1")

        assert result.totalTimeSpent == pytest.approx(40)
        assert result.timeByActivity.learningTime == pytest.approx(40)
        assert result.averageTimePerIteration == {"learning": pytest.approx(20)}
        assert result.totalActiveTime == 0

    @pytest.mark.asyncio
    async def test_no_sessions(self, reports):
        """Without sessions the result is empty."""
        result = await reports.get_session_analytics(USER)

        assert result.totalTimeSpent == 0
        assert result.averageTimePerIteration == {}


class TestLastActivity:
    """Tests for last activity lookup."""

    @pytest.mark.asyncio
    async def test_latest_end_time(self, reports, store):
        """The newest session's endTime is returned."""
        await store.put_new(stored_session("a", "2026-03-01T08:00:00.000Z", "2026-03-01T08:30:00.000Z"))
        await store.put_new(stored_session("b", "2026-03-02T09:00:00.000Z", "2026-03-02T09:05:00.000Z"))

        assert await reports.get_last_activity(USER) == "2026-03-02T09:05:00.000Z"

    @pytest.mark.asyncio
    async def test_no_sessions(self, reports):
        """Without sessions the result is empty."""
        assert await reports.get_last_activity(USER) is None


class TestLastWeek:
    """Tests for the weekly views."""

    @pytest.mark.asyncio
    async def test_excludes_today_and_older(self, reports, store):
        """Only the 7 days before today are returned, newest first."""
        for session_id, start in [
            ("today", "2026-03-02T08:00:00.000Z"),
            ("yesterday", "2026-03-01T23:00:00.000Z"),
            ("week-start", "2026-02-23T00:00:00.000Z"),
            ("too-old", "2026-02-22T23:59:59.000Z"),
        ]:
            await store.put_new(stored_session(session_id, start, start, totalDuration=60))

        sessions = await reports.get_user_sessions_last_week(USER)

        assert [s["sessionId"] for s in sessions] == ["yesterday", "week-start"]

    @pytest.mark.asyncio
    async def test_history(self, reports, store):
        """History sums time per day for the last week."""
        await store.put_new(stored_session(
            "today", "2026-03-02T08:00:00.000Z", "2026-03-02T08:10:00.000Z", totalDuration=300
        ))
        await store.put_new(stored_session(
            "yesterday", "2026-03-01T08:00:00.000Z", "2026-03-01T08:10:00.000Z", totalDuration=120
        ))

        history = await reports.get_session_history(USER)

        assert history["totalTimeToday"] == 300
        assert history["totalTimeLastWeek"] == 120
        assert len(history["dailyTimeData"]) == 7
        assert history["dailyTimeData"][0] == {"date": "2026-02-23", "totalTime": 0}
        assert history["dailyTimeData"][-1] == {"date": "2026-03-01", "totalTime": 120}
