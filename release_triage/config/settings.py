"""
Configuration system using Pydantic for type-safe settings management.

This module provides configuration classes for a triage run: the working
clone and its remotes, both issue trackers, the triage policy and the
per-run options that the CLI can override.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from release_triage.exceptions import ConfigurationError
from release_triage.models.domain import CustomerPriority, SecurityImpact
from release_triage.models.release import ReleaseVersion

_RELEASE_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")
_QUALIFIER_PATTERN = re.compile(r"^[0-9A-Za-z]+$")


def _split_keys(value: Any) -> Any:
    """Accept ``"A-1, A-2"`` as well as ``["A-1", "A-2"]``."""
    if isinstance(value, str):
        return [key.strip() for key in value.split(",") if key.strip()]
    return value


class RepositoryConfig(BaseModel):
    """Working clone and the remotes it tracks."""

    directory: str = Field(default="target/repo", description="Path of the working clone")
    downstream_url: str = Field(..., description="Clone URL of the downstream repository")
    upstream_url: str = Field(..., description="Clone URL of the upstream repository")
    downstream_remote: str = Field(default="origin", description="Remote name of the downstream repository")
    upstream_remote: str = Field(default="upstream", description="Remote name of the upstream repository")
    upstream_branch: str = Field(default="main", description="Upstream branch to triage")
    midstream_branch: str = Field(..., description="Downstream branch receiving cherry-picks")
    committer_name: str = Field(default="rh-messaging-ci", description="Committer of cherry-picks")
    committer_email: str = Field(default="messaging-infra@redhat.com", description="Committer email of cherry-picks")


class TrackerConfig(BaseModel):
    """Issue tracker connection.

    Supports environment references:
    - auth_string: "Bearer ${DOWNSTREAM_TOKEN}"
    """

    base_url: str = Field(..., description="REST API root, e.g. https://issues.apache.org/jira/rest/api/2")
    project_key: str = Field(..., description="Project key, e.g. ARTEMIS")
    auth_string: SecretStr | None = Field(default=None, description="Authorization header value")
    parse_custom_fields: bool = Field(default=False, description="Parse downstream custom fields")
    page_size: int = Field(default=250, ge=1, le=1000, description="Issues per search page")
    max_workers: int | None = Field(default=None, ge=1, description="Concurrent page requests (default: CPU count)")
    timeout: float = Field(default=60.0, gt=0, description="Request timeout in seconds")
    browse_url: str | None = Field(default=None, description="Base URL of issue pages, e.g. .../jira/browse/")


class PolicyConfig(BaseModel):
    """Triage rules that rarely change between runs."""

    upstream_issue_pattern: str = Field(default=r"ARTEMIS-[0-9]+", description="Regex of upstream issue keys")
    release_prefix: str = Field(default="AMQ", description="Prefix of downstream release names")
    future_ga_release: str = Field(default="Future GA", description="Sentinel target release")
    upstream_test_coverage_label: str = Field(default="upstream-test-coverage")
    no_testing_needed_label: str = Field(default="no-testing-needed")
    no_issue_prefix: str = Field(default="NO-JIRA", description="Summary prefix of commits without an issue")
    test_path: str = Field(default="src/test/java/", description="Path fragment of test sources")
    test_suffix: str = Field(default="Test.java", description="File suffix of test classes")
    qualifier_label_prefix: str = Field(default="CR", description="Labels dropped when cloning issues")
    customer_priority: CustomerPriority = Field(default=CustomerPriority.LOW, description="Minimum customer priority")
    security_impact: SecurityImpact = Field(default=SecurityImpact.LOW, description="Minimum security impact")

    @field_validator("upstream_issue_pattern")
    @classmethod
    def validate_pattern(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"Invalid upstream issue pattern: {e}") from e
        return value

    @field_validator("customer_priority", mode="before")
    @classmethod
    def parse_customer_priority(cls, value: Any) -> Any:
        return CustomerPriority.from_name(value) if isinstance(value, str) else value

    @field_validator("security_impact", mode="before")
    @classmethod
    def parse_security_impact(cls, value: Any) -> Any:
        return SecurityImpact.from_name(value) if isinstance(value, str) else value


class RunConfig(BaseModel):
    """Options of a single run, overridable from the command line."""

    release: str | None = Field(default=None, description="Candidate release, e.g. 7.11.0")
    qualifier: str | None = Field(default=None, description="Candidate qualifier, e.g. CR1")
    assignee: str | None = Field(default=None, description="Default assignee username")
    check_incomplete_commits: bool = Field(default=True, description="Require downstream issue consistency")
    scratch: bool = Field(default=False, description="Identify tasks without performing them")
    skip_commit_test: bool = Field(default=True, description="Skip the test gate after cherry-picks")
    confirmed_upstream_issues: list[str] | None = Field(default=None)
    confirmed_downstream_issues: list[str] | None = Field(default=None)
    confirmed_commits_file: str | None = Field(default=None, description="commits.json of a prior run")
    state_directory: str = Field(default="target", description="Directory of the persisted run state")
    test_command: list[str] = Field(
        default_factory=lambda: ["mvn", "--show-version", "--define=failIfNoTests=false", "clean", "package"],
        description="Build command; test classes are appended as -Dtest=A,B",
    )
    test_timeout: float | None = Field(default=None, gt=0, description="Seconds before the build is killed")

    @field_validator("release")
    @classmethod
    def validate_release(cls, value: str | None) -> str | None:
        if value is not None and not _RELEASE_PATTERN.match(value):
            raise ValueError(f"Release must look like 7.11.0, got {value!r}")
        return value

    @field_validator("qualifier")
    @classmethod
    def validate_qualifier(cls, value: str | None) -> str | None:
        if value is not None and not _QUALIFIER_PATTERN.match(value):
            raise ValueError(f"Qualifier must be alphanumeric, got {value!r}")
        return value

    @field_validator("confirmed_upstream_issues", "confirmed_downstream_issues", mode="before")
    @classmethod
    def split_keys(cls, value: Any) -> Any:
        return _split_keys(value)


class TriageSettings(BaseSettings):
    """Complete configuration of a triage run.

    Only the repository and both trackers are required; policy and run
    options fall back to their defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="TRIAGE_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    repository: RepositoryConfig
    upstream_tracker: TrackerConfig
    downstream_tracker: TrackerConfig
    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    run: RunConfig = Field(default_factory=RunConfig)

    @property
    def state_dir(self) -> Path:
        """Get state directory as Path object."""
        return Path(self.run.state_directory)

    @property
    def candidate_release(self) -> ReleaseVersion:
        """The release being prepared, e.g. ``7.11.0.CR1``.

        Raises:
            ConfigurationError: If release or qualifier is not configured
        """
        if not self.run.release or not self.run.qualifier:
            raise ConfigurationError("Both run.release and run.qualifier are required")
        return ReleaseVersion.parse(f"{self.run.release}.{self.run.qualifier}")

    @property
    def requires_release_issues(self) -> bool:
        return self.candidate_release.requires_release_issues

    def with_run_overrides(self, **overrides: Any) -> TriageSettings:
        """Copy of the settings with ``run`` options replaced; None values are ignored.

        Raises:
            ConfigurationError: If an override is invalid
        """
        values = {key: value for key, value in overrides.items() if value is not None}
        if not values:
            return self

        try:
            run = RunConfig.model_validate({**self.run.model_dump(), **values})
        except ValueError as e:
            raise ConfigurationError(f"Invalid run option: {e}") from e
        return self.model_copy(update={"run": run})

    @classmethod
    def from_yaml(cls, config_path: str) -> TriageSettings:
        """Load the triage configuration from a YAML file.

        ``${VAR}`` and ``${VAR:-default}`` references are resolved from the
        environment before parsing, so tracker tokens stay out of the file.
        Values missing from the file are still read from ``TRIAGE_*``
        environment variables.

        Raises:
            ConfigurationError: If the file is missing, unreadable, references
                an unset variable or does not describe a valid triage run
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            raw = config_file.read_text()
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file {config_path}: {e}") from e

        try:
            config = yaml.safe_load(resolve_env_references(raw))
        except KeyError as e:
            raise ConfigurationError(f"Environment variable {e.args[0]} referenced in {config_path} is not set") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax in {config_path}: {e}") from e

        if not isinstance(config, dict):
            raise ConfigurationError(f"{config_path} must contain a YAML object with the triage sections")

        try:
            return cls(**config)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid triage configuration in {config_path}: {e}") from e


_ENV_REFERENCE = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def resolve_env_references(content: str) -> str:
    """Replace ``${VAR}`` references outside YAML comment lines.

    Raises:
        KeyError: Naming the first referenced variable that is unset and has no default
    """

    def substitute(match: re.Match[str]) -> str:
        name, default = match.groups()
        value = os.environ.get(name, default)
        if value is None:
            raise KeyError(name)
        return value

    return "\n".join(
        line if line.lstrip().startswith("#") else _ENV_REFERENCE.sub(substitute, line)
        for line in content.split("\n")
    )
