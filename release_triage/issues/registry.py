"""In-memory issue registry for a triage run.

The registry holds every upstream and downstream issue of the run together
with the cross-links between them. Links are kept as two one-directional
maps (upstream key -> downstream keys and downstream key -> upstream keys)
and mirrored into ``Issue.linked_keys`` so snapshots carry them.

The triage engine only reads from the registry. The task executor is the
single writer once the run has started.
"""

from collections.abc import Iterable, Iterator

import structlog

from release_triage.models.domain import Issue, IssueState

log = structlog.get_logger(__name__)


class IssueStore:
    """Issues of one tracker, keyed by issue key."""

    def __init__(self, issues: Iterable[Issue] = ()) -> None:
        self._issues: dict[str, Issue] = {}
        for issue in issues:
            self.put(issue)

    def get(self, key: str | None) -> Issue | None:
        if key is None:
            return None
        return self._issues.get(key)

    def put(self, issue: Issue) -> None:
        self._issues[issue.key] = issue

    def values(self) -> list[Issue]:
        return list(self._issues.values())

    def __contains__(self, key: object) -> bool:
        return key in self._issues

    def __iter__(self) -> Iterator[Issue]:
        return iter(self._issues.values())

    def __len__(self) -> int:
        return len(self._issues)


class IssueRegistry:
    """Upstream and downstream issues plus their cross-links.

    Example:
        >>> registry = IssueRegistry()
        >>> registry.load(upstream_issues, downstream_issues)
        >>> registry.downstream_keys_for("ARTEMIS-1234")
        ['ENTMQBR-5678']
    """

    def __init__(self) -> None:
        self.upstream = IssueStore()
        self.downstream = IssueStore()
        self._downstream_by_upstream: dict[str, list[str]] = {}
        self._upstream_by_downstream: dict[str, list[str]] = {}

    def load(self, upstream_issues: Iterable[Issue], downstream_issues: Iterable[Issue]) -> None:
        """Populate both stores and index the links found on either side.

        Downstream issues reference upstream keys through a tracker field;
        upstream issues loaded from a snapshot already carry the reverse
        links. Links pointing at an unknown upstream issue are kept on the
        downstream side and logged.
        """
        for issue in upstream_issues:
            self.upstream.put(issue)
        for issue in downstream_issues:
            self.downstream.put(issue)

        for upstream_issue in self.upstream:
            for downstream_key in list(upstream_issue.linked_keys):
                if downstream_key in self.downstream:
                    self.link(upstream_issue.key, downstream_key)

        unknown = 0
        for downstream_issue in self.downstream:
            for upstream_key in list(downstream_issue.linked_keys):
                if upstream_key in self.upstream:
                    self.link(upstream_key, downstream_issue.key)
                else:
                    unknown += 1
                    log.warning("upstream_issue_not_found", downstream_issue=downstream_issue.key, upstream_issue=upstream_key)

        log.info(
            "issue_registry_loaded",
            upstream_issues=len(self.upstream),
            downstream_issues=len(self.downstream),
            unknown_upstream_links=unknown,
        )

    def get_upstream(self, key: str | None) -> Issue | None:
        return self.upstream.get(key)

    def get_downstream(self, key: str | None) -> Issue | None:
        return self.downstream.get(key)

    def downstream_keys_for(self, upstream_key: str) -> list[str]:
        return list(self._downstream_by_upstream.get(upstream_key, []))

    def upstream_keys_for(self, downstream_key: str) -> list[str]:
        return list(self._upstream_by_downstream.get(downstream_key, []))

    def link(self, upstream_key: str, downstream_key: str) -> None:
        """Record a link in both directions; repeated links are ignored."""
        downstream_keys = self._downstream_by_upstream.setdefault(upstream_key, [])
        if downstream_key not in downstream_keys:
            downstream_keys.append(downstream_key)

        upstream_keys = self._upstream_by_downstream.setdefault(downstream_key, [])
        if upstream_key not in upstream_keys:
            upstream_keys.append(upstream_key)

        upstream_issue = self.upstream.get(upstream_key)
        if upstream_issue is not None and downstream_key not in upstream_issue.linked_keys:
            upstream_issue.linked_keys.append(downstream_key)

        downstream_issue = self.downstream.get(downstream_key)
        if downstream_issue is not None and upstream_key not in downstream_issue.linked_keys:
            downstream_issue.linked_keys.append(upstream_key)

    def add_downstream(self, issue: Issue) -> None:
        """Register a newly created downstream issue and its upstream links."""
        self.downstream.put(issue)
        for upstream_key in list(issue.linked_keys):
            self.link(upstream_key, issue.key)

    def add_label(self, key: str, label: str) -> None:
        issue = self._require_downstream(key)
        if label not in issue.labels:
            issue.labels.append(label)

    def set_target_release(self, key: str, release: str) -> None:
        self._require_downstream(key).target_release = release

    def set_state(self, key: str, state: IssueState) -> None:
        self._require_downstream(key).state = state

    def _require_downstream(self, key: str) -> Issue:
        issue = self.downstream.get(key)
        if issue is None:
            raise KeyError(f"Downstream issue not registered: {key}")
        return issue
