"""Error taxonomy shared by the services and the HTTP layer"""


class SurveyMarketError(Exception):
    """Base class for errors that are reported back to the client"""
    status_code = 400

    def __init__(self, message, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self):
        body = {'success': False, 'error': self.message}
        body.update(self.extra)
        return body


class ValidationError(SurveyMarketError):
    """Malformed input: password policy, transaction code pattern, ..."""
    status_code = 400

    def __init__(self, message, field=None):
        if field:
            super().__init__(message, field=field)
        else:
            super().__init__(message)
        self.field = field


class InvalidCredentialError(SurveyMarketError):
    status_code = 401


class EligibilityError(SurveyMarketError):
    """A survey may not start right now"""
    status_code = 403

    def __init__(self, message, reason, upgrade=False):
        super().__init__(message, reason=reason, upgrade=upgrade)
        self.reason = reason
        self.upgrade = upgrade


class NotFoundError(SurveyMarketError):
    status_code = 404


class DuplicateError(SurveyMarketError):
    status_code = 409

    def __init__(self, message):
        super().__init__(message, action='login')


class SurveyStateError(SurveyMarketError):
    """Operation not valid in the current survey state"""
    status_code = 409


class CapacityError(SurveyMarketError):
    """The store refused a write because the record is too large"""
    status_code = 507

    def to_dict(self):
        return {'success': False, 'warning': self.message}


class ProviderError(Exception):
    """The AI text provider failed. Always recovered locally."""


class ProviderTimeout(ProviderError):
    pass
