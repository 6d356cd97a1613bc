"""
Schemas for session analytics

Request bodies use the camelCase names the web client sends; validation of
the beacon contract happens here, before any session state is touched.
"""
from typing import Optional, Dict, List, Literal
from pydantic import BaseModel, Field, field_validator

from session_service.logic.activities import FACT_STAGES

Page = Literal[
    'dashboard',
    'learn',
    'practice',
    'timed-practice',
    'accuracy-practice',
    'fluency-practice',
    'assessment',
    'onboarding',
    'other',
]


class PageTransitionRequest(BaseModel):
    """Page-transition beacon sent by the client on every navigation."""
    userId: str = Field(..., min_length=1, description="User identifier")
    trackId: str = Field(..., min_length=1, description="Track the user is working on")
    page: Page = Field(..., description="Page the user navigated to")
    factsByStage: Optional[Dict[str, List[str]]] = Field(
        None,
        description="Fact ids shown on the page, keyed by fact stage"
    )

    @field_validator('factsByStage')
    @classmethod
    def validate_stages(cls, v: Optional[Dict[str, List[str]]]) -> Optional[Dict[str, List[str]]]:
        if v is None:
            return v
        unknown = [stage for stage in v if stage not in FACT_STAGES]
        if unknown:
            raise ValueError(f"Unknown fact stage(s): {', '.join(unknown)}")
        return v

    class Config:
        json_schema_extra = {
            "example": {
                "userId": "user123",
                "trackId": "TRACK1",
                "page": "fluency-practice",
                "factsByStage": {"fluency3Practice": ["FACT1", "FACT2"]}
            }
        }


class PageTransitionResponse(BaseModel):
    success: bool
    sessionId: Optional[str] = None
    message: Optional[str] = None


class FlushResult(BaseModel):
    """Metrics reported by one delta flush"""
    active_time: float = Field(0, ge=0, description="Active seconds")
    waste_time: float = Field(0, ge=0, description="Idle seconds")
    xp_earned: float = Field(0, ge=0, description="XP (minutes of active time, with bonus)")
    total_questions: Optional[int] = None
    correct_questions: Optional[int] = None

    def session_increments(self) -> Dict[str, float]:
        """Amounts to add onto the session totals"""
        increments = {
            'totalActiveTime': self.active_time,
            'totalWasteTime': self.waste_time,
            'totalXpEarned': self.xp_earned,
        }
        if self.total_questions:
            increments['totalQuestions'] = self.total_questions
        if self.correct_questions:
            increments['correctQuestions'] = self.correct_questions
        return {key: value for key, value in increments.items() if value}


class TimeByActivity(BaseModel):
    learningTime: float = 0
    accuracyPracticeTime: float = 0
    fluency6PracticeTime: float = 0
    fluency3PracticeTime: float = 0
    fluency2PracticeTime: float = 0
    fluency1_5PracticeTime: float = 0
    fluency1PracticeTime: float = 0
    assessmentTime: float = 0
    otherTime: float = 0


class SessionAnalyticsResponse(BaseModel):
    totalTimeSpent: float = 0
    timeByActivity: TimeByActivity = Field(default_factory=TimeByActivity)
    averageTimePerIteration: Dict[str, float] = Field(default_factory=dict)
    totalActiveTime: float = 0
    totalWasteTime: float = 0
    totalXpEarned: float = 0
    totalQuestions: int = 0
    correctQuestions: int = 0


class LastActivityResponse(BaseModel):
    userId: str
    lastActivity: Optional[str] = None


class SessionSummary(BaseModel):
    sessionId: str
    trackId: Optional[str] = None
    startTime: str
    endTime: str
    totalDuration: int = 0
    totalActiveTime: float = 0
    totalXpEarned: float = 0


class UserSessionsResponse(BaseModel):
    userId: str
    sessions: List[SessionSummary] = Field(default_factory=list)


class DailyTime(BaseModel):
    date: str
    totalTime: float = 0


class SessionHistoryResponse(BaseModel):
    userId: str
    totalTimeToday: float = 0
    totalTimeLastWeek: float = 0
    dailyTimeData: List[DailyTime] = Field(default_factory=list)
