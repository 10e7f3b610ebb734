"""Error taxonomy for the survey engine; routers translate these to HTTP codes."""


class SurveyError(Exception):
    """Base class for all survey engine errors."""


class ScenarioBuildError(SurveyError):
    """Grouping or flow construction produced an unusable result."""


class SurveyValidationError(SurveyError):
    """A transition is blocked locally; nothing is stored or sent."""


class ControlsLockedError(SurveyValidationError):
    """Allocation input on a confirmed, past, or not yet unlocked screen."""


class AllocationNotTouchedError(SurveyValidationError):
    """Confirm pressed before the allocation control was moved."""


class FollowupValidationError(SurveyValidationError):
    """A follow-up answer is missing a required field or is malformed."""


class NavigationBlockedError(SurveyValidationError):
    """Navigation refused, e.g. while a follow-up is open."""


class SubmissionError(SurveyError):
    """Final submission failed (network error or non-2xx). Retry is manual."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
