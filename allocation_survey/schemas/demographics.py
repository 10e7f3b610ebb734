"""Pre-survey questionnaire. Everything is required except the free-text labels."""
import re
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

YOB_RE = re.compile(r"^\d{4}$")

ACTIVITY_OTHER = "5"


class DemographicsSchema(BaseModel):
    resp_id: str = Field(min_length=1, description="Panel participant id, needed for payment")
    yob: str
    gender: Literal["female", "male", "nonbinary", "preferNot", "selfDescribe"]
    gender_other: str | None = None
    education_level: Literal["none", "primary", "secondary", "college", "tertiary"]
    education_status: Literal["current", "dropout", "completed"]
    activity: Literal["1", "2", "3", "4", "5"]
    activity_other: str | None = None
    risk_scale: int = Field(ge=0, le=10)

    @field_validator("resp_id", "gender_other", "activity_other")
    @classmethod
    def strip_text(cls, v: str | None) -> str | None:
        return v.strip() if isinstance(v, str) else v

    @field_validator("yob", mode="before")
    @classmethod
    def check_yob(cls, v) -> str:
        v = str(v).strip()
        if not YOB_RE.match(v):
            raise ValueError("Year of birth must be 4 digits")
        return v

    @model_validator(mode="after")
    def check_other_labels(self):
        if not self.resp_id:
            raise ValueError("Participant id is required")
        if self.gender == "selfDescribe":
            if not self.gender_other:
                raise ValueError("Please describe your gender")
        else:
            self.gender_other = None
        if self.activity == ACTIVITY_OTHER:
            if not self.activity_other:
                raise ValueError("Please specify your market participation")
        else:
            self.activity_other = None
        return self
