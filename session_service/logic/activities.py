"""
Pages, activities and fact stages shared by the session and metrics services
"""
from enum import Enum
from typing import Optional, Dict, List


PAGES = (
    'dashboard',
    'learn',
    'practice',
    'timed-practice',
    'accuracy-practice',
    'fluency-practice',
    'assessment',
    'onboarding',
    'other',
)

PAGE_TO_ACTIVITY: Dict[str, str] = {
    'learn': 'learning',
    'practice': 'learning',
    'timed-practice': 'learning',
    'accuracy-practice': 'accuracyPractice',
    'fluency-practice': 'fluencyPractice',
    'assessment': 'assessment',
    'onboarding': 'onboarding',
    'dashboard': 'other',
    'other': 'other',
}

# Fluency tiers in precedence order (slowest first)
FLUENCY_STAGES: List[str] = [
    'fluency6Practice',
    'fluency3Practice',
    'fluency2Practice',
    'fluency1_5Practice',
    'fluency1Practice',
]

FACT_STAGES: List[str] = ['learning', 'accuracyPractice'] + FLUENCY_STAGES

# Session time fields, one per stage plus assessment and other
TIME_FIELDS: List[str] = [f'{stage}Time' for stage in FACT_STAGES] + ['assessmentTime', 'otherTime']


class ActivityType(str, Enum):
    """Activity names as reported to the analytics collector"""
    LEARNING = 'Learning'
    ACCURACY_PRACTICE = 'Accuracy Practice'
    FLUENCY_PRACTICE = 'Fluency Practice'
    ASSESSMENT = 'Assessment'
    ONBOARDING = 'Onboarding'
    DAILY_GOALS = 'Daily Goals'


_ACTIVITY_TO_TYPE: Dict[str, ActivityType] = {
    'learning': ActivityType.LEARNING,
    'accuracyPractice': ActivityType.ACCURACY_PRACTICE,
    'fluencyPractice': ActivityType.FLUENCY_PRACTICE,
    'assessment': ActivityType.ASSESSMENT,
    'onboarding': ActivityType.ONBOARDING,
}

# Activity type -> session time fields it spans
ACTIVITY_TIME_FIELDS: Dict[ActivityType, List[str]] = {
    ActivityType.LEARNING: ['learningTime'],
    ActivityType.ACCURACY_PRACTICE: ['accuracyPracticeTime'],
    ActivityType.FLUENCY_PRACTICE: [f'{stage}Time' for stage in FLUENCY_STAGES],
    ActivityType.ASSESSMENT: ['assessmentTime'],
    ActivityType.ONBOARDING: ['assessmentTime'],
}


def activity_for_page(page: str) -> str:
    return PAGE_TO_ACTIVITY.get(page, 'other')


def activity_type_for_page(page: str) -> Optional[ActivityType]:
    """Reportable activity type for a page, None for dashboard/other"""
    return _ACTIVITY_TO_TYPE.get(activity_for_page(page))
