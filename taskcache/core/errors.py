from typing import Optional


class TaskCacheError(Exception):
    """Base class for every error raised by the task cache."""


class TaskValidationError(TaskCacheError):
    """Input rejected before any optimistic change was applied."""

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message)
        self.errors = errors or []


class TaskNotFoundError(TaskValidationError):
    def __init__(self, task_id: int):
        super().__init__(f"Task with id {task_id} not found")
        self.task_id = task_id


class GatewayError(TaskCacheError):
    """Transport failure or non-2xx response from the remote task API."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SessionExpiredError(GatewayError):
    def __init__(self, message: str = "Session expired"):
        super().__init__(message, status_code=401)


class SessionClosedError(TaskCacheError):
    def __init__(self, message: str = "Task session is closed"):
        super().__init__(message)


class MutationError(TaskCacheError):
    """
    A mutation was rejected after its optimistic change was applied.

    By the time this is raised the collection has already been restored
    to the snapshot taken before the mutation.
    """

    def __init__(self, action: str, task_id: Optional[int], cause: BaseException):
        super().__init__(f"Failed to {action} task {task_id}: {cause}")
        self.action = action
        self.task_id = task_id
        self.cause = cause
