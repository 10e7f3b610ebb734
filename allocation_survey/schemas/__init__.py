from allocation_survey.schemas.demographics import DemographicsSchema
from allocation_survey.schemas.ingest import AppendRowSchema
from allocation_survey.schemas.survey import (
    AdminCommandSchema,
    AllocationInSchema,
    FinalSubmitSchema,
    FollowupOutSchema,
    OptionSchema,
    OutcomesSchema,
    ReasonSubmitSchema,
    SanitySubmitSchema,
    ScenarioOutSchema,
    StartSessionSchema,
    SurveyStateSchema,
)

__all__ = [
    "AdminCommandSchema",
    "AllocationInSchema",
    "AppendRowSchema",
    "DemographicsSchema",
    "FinalSubmitSchema",
    "FollowupOutSchema",
    "OptionSchema",
    "OutcomesSchema",
    "ReasonSubmitSchema",
    "SanitySubmitSchema",
    "ScenarioOutSchema",
    "StartSessionSchema",
    "SurveyStateSchema",
]
