"""
Core exception classes for the instance scheduler.
"""


class SchedulerError(Exception):
    """Base exception for all instance scheduler errors."""
    
    def __init__(self, message: str, details: str = None):
        super().__init__(message)
        self.message = message
        self.details = details


class AuthenticationError(SchedulerError):
    """Raised when credential elevation into a member account fails.

    This is fatal for the whole run. Accounts that simply lack the
    scheduler role are not reported through this exception.
    """

    def __init__(self, message: str, details: str = None, account_name: str = None):
        super().__init__(message, details)
        self.account_name = account_name


class ConfigurationError(SchedulerError):
    """Raised when configuration is invalid or missing."""
    pass


class ServiceError(SchedulerError):
    """Raised when AWS service operations fail."""
    pass


class RegistryError(SchedulerError):
    """Raised when the account registry or environments source cannot be read."""
    pass


class ValidationError(SchedulerError):
    """Raised when input validation fails."""
    pass
