"""Configuration for release-triage."""

from release_triage.config.settings import PolicyConfig, RepositoryConfig, RunConfig, TrackerConfig, TriageSettings

__all__ = [
    "PolicyConfig",
    "RepositoryConfig",
    "RunConfig",
    "TrackerConfig",
    "TriageSettings",
]
