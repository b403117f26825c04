"""Exception hierarchy for release-triage.

Business outcomes of the triage engine (a commit without an upstream issue,
an issue that does not justify a cherry-pick, ...) are never raised. They are
recorded on the Commit record as a state and a reason. The exceptions below
cover the failures that abort a run: bad configuration, broken collaborators
and corrupt persisted state.

Exception Hierarchy:
    ReleaseTriageError (base)
    ├── ConfigurationError
    ├── GitOperationError
    ├── ExternalServiceError
    │   └── IssueLoadError
    ├── StateError
    └── TaskExecutionError

Example Usage:
    >>> from release_triage.exceptions import ConfigurationError
    >>> try:
    ...     load_config(path)
    ... except FileNotFoundError as e:
    ...     raise ConfigurationError(f"Config file not found: {path}") from e
"""


class ReleaseTriageError(Exception):
    """Base exception for all release-triage errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigurationError(ReleaseTriageError):
    """Configuration-related errors.

    Examples:
        - Configuration file not found
        - Invalid YAML syntax
        - Unset environment variable referenced from the configuration
        - Invalid release or threshold values
    """

    pass


class GitOperationError(ReleaseTriageError):
    """A git command failed unexpectedly.

    A cherry-pick that stops on conflicts is not an error; the repository
    reports it as an unsuccessful cherry-pick instead.

    Attributes:
        command: The git arguments that failed
        stderr: Captured standard error of the git process
    """

    def __init__(
        self,
        message: str,
        command: list[str] | None = None,
        stderr: str | None = None,
    ) -> None:
        self.command = command
        self.stderr = stderr

        full_message = message
        if command:
            full_message = f"{message} (git {' '.join(command)})"
        if stderr:
            full_message = f"{full_message}\n{stderr.strip()}"

        super().__init__(full_message)
        self.message = message


class ExternalServiceError(ReleaseTriageError):
    """Issue tracker communication errors.

    Raised when the tracker cannot be reached or answers with an error
    after retries are exhausted.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_text: str | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.response_text = response_text

        full_message = message
        if status_code:
            full_message = f"{message} (HTTP {status_code})"

        super().__init__(full_message)


class IssueLoadError(ExternalServiceError):
    """Bulk issue load returned a different number of issues than reported.

    Attributes:
        loaded: Number of issues actually fetched
        total: Number of issues the tracker reported
    """

    def __init__(self, project_key: str, loaded: int, total: int) -> None:
        self.project_key = project_key
        self.loaded = loaded
        self.total = total
        super().__init__(f"Error loading {loaded}/{total} issues of project {project_key}")


class StateError(ReleaseTriageError):
    """Persisted run state is unreadable or malformed."""

    pass


class TaskExecutionError(ReleaseTriageError):
    """A remediation task cannot be executed as requested.

    Attributes:
        task_type: Type of the task that failed
        key: Issue key or commit id the task targets
    """

    def __init__(
        self,
        message: str,
        task_type: str | None = None,
        key: str | None = None,
    ) -> None:
        self.task_type = task_type
        self.key = key

        parts = []
        if task_type:
            parts.append(f"task: {task_type}")
        if key:
            parts.append(f"key: {key}")

        full_message = message if not parts else f"{message} ({', '.join(parts)})"
        super().__init__(full_message)
        self.message = message
