"""
Exceptions shared across the service.
"""


class ConfigurationError(Exception):
    """Missing credentials or malformed configuration. Fatal at startup."""


class DataIntegrityError(Exception):
    """Write rejected because the referenced task does not exist locally."""

    def __init__(self, message: str, task_id: str = None):
        super().__init__(message)
        self.task_id = task_id
