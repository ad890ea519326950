# Error types raised by the leave portal services
# The Flask app turns every LeavePortalError into a JSON error response


class LeavePortalError(Exception):
    """Base error for anything the portal reports back to the user"""
    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'success': False, 'error': self.message}


class ValidationError(LeavePortalError):
    """Missing or malformed input, caught before anything is written"""
    status_code = 400


class AuthenticationError(LeavePortalError):
    status_code = 401


class AuthorizationError(LeavePortalError):
    """The actor's role does not allow the action"""
    status_code = 403


class PolicyError(LeavePortalError):
    """The action is allowed for the role but not in the record's current state"""
    status_code = 400


class NotFoundError(LeavePortalError):
    status_code = 404


class RemoteError(LeavePortalError):
    """The database call itself failed"""
    status_code = 502


class RemoteTimeout(RemoteError):
    status_code = 504


class SchemaError(LeavePortalError):
    """A column or table that is not part of the entity schema was used"""
    status_code = 500
