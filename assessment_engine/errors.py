"""
Error taxonomy for the assessment engine

Errors that cross the service boundary derive from AssessmentError and carry
the HTTP status and machine-readable code the API layer reports. Generation
faults derive from GenerationDegraded and are absorbed by the question
pipeline; they never reach a student.
"""


class AssessmentError(Exception):
    """Base class for user-visible assessment failures"""

    status_code = 400
    error_code = "assessment_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotConfigured(AssessmentError):
    """No question specs exist for the assessment"""

    status_code = 409
    error_code = "not_configured"


class AttemptNotFound(AssessmentError):
    status_code = 404
    error_code = "attempt_not_found"


class AttemptNotActive(AssessmentError):
    """Mutation attempted on a submitted or expired attempt"""

    status_code = 409
    error_code = "attempt_not_active"


class ResultNotReady(AssessmentError):
    status_code = 409
    error_code = "result_not_ready"


class AttemptLimitReached(AssessmentError):
    status_code = 409
    error_code = "attempt_limit_reached"


class InvalidQuestionOrder(AssessmentError):
    status_code = 422
    error_code = "invalid_question_order"


class InvalidGrade(AssessmentError):
    status_code = 422
    error_code = "invalid_grade"


class SpecsLocked(AssessmentError):
    """Question specs are frozen once an attempt has consumed them"""

    status_code = 409
    error_code = "specs_locked"


class NotAuthorized(AssessmentError):
    status_code = 403
    error_code = "not_authorized"


class GenerationDegraded(Exception):
    """External generation failed; callers fall back to placeholder content"""


class GenerationUnavailable(GenerationDegraded):
    pass


class GenerationTimeout(GenerationDegraded):
    pass


class MalformedOutput(GenerationDegraded):
    pass


class ValidationMismatch(Exception):
    """Generated content does not satisfy the requested specs"""
