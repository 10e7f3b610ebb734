from allocation_survey.services.flow import build_flow_or_fallback, build_respondent_flow
from allocation_survey.services.pool import get_fixed_groups
from allocation_survey.services.session import AdminChannel, SessionRegistry, SurveySession

__all__ = [
    "AdminChannel",
    "SessionRegistry",
    "SurveySession",
    "build_flow_or_fallback",
    "build_respondent_flow",
    "get_fixed_groups",
]
