"""release-triage: upstream commit triage for downstream release branches."""

__version__ = "0.1.0"
