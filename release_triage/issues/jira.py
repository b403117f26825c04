"""Jira issue tracker implementation using the REST API v2.

Both trackers in a triage run are Jira instances: the upstream project
(public, usually read-only) and the downstream project, which carries the
custom fields the triage policy depends on (target release, upstream link,
customer and security data).

Bulk loading fetches pages concurrently with a bounded number of in-flight
requests and fails when the number of parsed issues does not match the
total reported by the search endpoint.
"""

import asyncio
import math
import os
import re
from typing import Any

import httpx
import structlog

from release_triage.exceptions import ExternalServiceError, IssueLoadError
from release_triage.issues.base import IssueTracker
from release_triage.models.domain import CustomerPriority, Issue, IssueState, IssueType, SecurityImpact
from release_triage.utils.retry import async_retry

log = structlog.get_logger(__name__)

# "id":"customfield_12311240","name":"Target Release"
TARGET_RELEASE_FIELD = "customfield_12311240"
# "id":"customfield_12314640","name":"Upstream Jira"
UPSTREAM_JIRA_FIELD = "customfield_12314640"
# "id":"customfield_12312340","name":"GSS Priority"
GSS_PRIORITY_FIELD = "customfield_12312340"
# "id":"customfield_12310120","name":"Help Desk Ticket Reference"
HELP_DESK_TICKET_FIELD = "customfield_12310120"
# "id":"customfield_12310021","name":"Support Case Reference"
SUPPORT_CASE_FIELD = "customfield_12310021"
# "id":"customfield_12311640","name":"Security Sensitive Issue"
SECURITY_SENSITIVE_FIELD = "customfield_12311640"

SECURITY_TRACKING_PREFIX = "Security Tracking Issue"

_PATCH_LINK_PATTERN = re.compile(r"PATCH-[0-9]+")
_SECURITY_IMPACT_PATTERN = re.compile(r"Impact: (Critical|Important|Moderate|Low)")


class JiraIssueTracker(IssueTracker):
    """Jira REST client bound to one project.

    Example:
        >>> tracker = JiraIssueTracker(
        ...     base_url="https://issues.redhat.com/rest/api/2",
        ...     project_key="ENTMQBR",
        ...     auth_string="Bearer abc",
        ...     upstream_issue_pattern=r"ARTEMIS-[0-9]+",
        ...     parse_custom_fields=True,
        ... )
        >>> issues = await tracker.load_project_issues()
    """

    def __init__(
        self,
        base_url: str,
        project_key: str,
        auth_string: str | None = None,
        upstream_issue_pattern: str | None = None,
        parse_custom_fields: bool = False,
        page_size: int = 250,
        max_workers: int | None = None,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the tracker.

        Args:
            base_url: REST API root, e.g. ``https://issues.apache.org/jira/rest/api/2``
            project_key: Project whose issues are loaded and created
            auth_string: Value of the Authorization header, e.g. ``Bearer ...``
            upstream_issue_pattern: Regex for upstream keys in the
                "Upstream Jira" field (downstream tracker only)
            parse_custom_fields: Parse the downstream custom fields
            page_size: Issues per search page
            max_workers: Concurrent page requests, defaults to the CPU count
            timeout: Request timeout in seconds
            client: Pre-built HTTP client (tests inject a mock transport)
        """
        self.base_url = base_url.rstrip("/")
        self.project_key = project_key
        self.parse_custom_fields = parse_custom_fields
        self.page_size = page_size
        self.max_workers = max_workers or os.cpu_count() or 4
        self._upstream_issue_pattern = re.compile(upstream_issue_pattern) if upstream_issue_pattern else None

        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if auth_string:
            headers["Authorization"] = auth_string.strip()

        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            http2=True,
            limits=httpx.Limits(max_connections=self.max_workers, max_keepalive_connections=self.max_workers),
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "JiraIssueTracker":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @async_retry(max_attempts=3, backoff_factor=2.0)
    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        response = await self._client.request(method, path, **kwargs)
        response.raise_for_status()
        return response

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request, mapping failures to ExternalServiceError."""
        try:
            return await self._send(method, path, **kwargs)
        except httpx.HTTPStatusError as e:
            log.error(
                "jira_request_failed",
                method=method,
                path=path,
                status_code=e.response.status_code,
                response=e.response.text[:500],
            )
            raise ExternalServiceError(
                f"Jira request failed: {method} {path}",
                status_code=e.response.status_code,
                response_text=e.response.text,
            ) from e
        except httpx.HTTPError as e:
            log.error("jira_unreachable", method=method, path=path, error=str(e))
            raise ExternalServiceError(f"Jira request failed: {method} {path}: {e}") from e

    async def _load_raw_issue(self, key: str) -> dict[str, Any]:
        response = await self._request("GET", f"/issue/{key}")
        return response.json()

    async def get_issue(self, key: str) -> Issue:
        log.debug("get_issue", key=key)
        return self.parse_issue(await self._load_raw_issue(key))

    async def load_project_issues(self) -> list[Issue]:
        jql = f'project="{self.project_key}"'
        response = await self._request("GET", "/search", params={"jql": jql, "maxResults": 0})
        total = int(response.json()["total"])

        issues: list[Issue] = []
        semaphore = asyncio.Semaphore(self.max_workers)

        async def load_page(start: int) -> int:
            async with semaphore:
                page = await self._request(
                    "GET",
                    "/search",
                    params={"jql": jql, "fields": "*all", "maxResults": self.page_size, "startAt": start},
                )
            page_issues = [self.parse_issue(data) for data in page.json().get("issues", [])]
            issues.extend(page_issues)
            return len(page_issues)

        page_count = math.ceil(total / self.page_size)
        loop = asyncio.get_running_loop()
        begin = loop.time()
        counts = await asyncio.gather(*(load_page(i * self.page_size) for i in range(page_count)))
        elapsed_ms = int((loop.time() - begin) * 1000)

        loaded = sum(counts)
        log.info("issues_loaded", project=self.project_key, loaded=loaded, total=total, elapsed_ms=elapsed_ms)

        if loaded != total:
            raise IssueLoadError(self.project_key, loaded, total)

        return issues

    async def create_issue(
        self,
        summary: str,
        description: str | None,
        issue_type: IssueType,
        assignee: str | None,
        upstream_link_text: str,
        target_release: str,
        labels: list[str],
    ) -> Issue:
        log.info("create_issue", project=self.project_key, summary=summary, target_release=target_release)

        fields: dict[str, Any] = {
            "project": {"key": self.project_key},
            "issuetype": {"name": issue_type.to_name()},
            "summary": summary,
            UPSTREAM_JIRA_FIELD: upstream_link_text,
            TARGET_RELEASE_FIELD: {"name": target_release},
            "labels": list(labels),
        }
        if description is not None:
            fields["description"] = description
        if assignee is not None:
            fields["assignee"] = {"name": assignee}

        response = await self._request("POST", "/issue/", json={"fields": fields})
        return await self.get_issue(response.json()["key"])

    async def clone_issue(self, source_key: str, target_release: str) -> Issue:
        log.info("clone_issue", source=source_key, target_release=target_release)

        source_fields = (await self._load_raw_issue(source_key))["fields"]
        fields: dict[str, Any] = {
            "project": {"key": self.project_key},
            "issuetype": {"name": source_fields["issuetype"]["name"]},
            "summary": source_fields["summary"],
            "labels": list(source_fields.get("labels") or []),
            TARGET_RELEASE_FIELD: {"name": target_release},
        }
        for name in ("description", "assignee", UPSTREAM_JIRA_FIELD):
            if source_fields.get(name) is not None:
                fields[name] = source_fields[name]

        response = await self._request("POST", "/issue/", json={"fields": fields})
        clone_key = response.json()["key"]
        await self.link_issue(clone_key, source_key, "Cloners")
        return await self.get_issue(clone_key)

    async def add_labels(self, key: str, *labels: str) -> None:
        fields = (await self._load_raw_issue(key))["fields"]
        current = [label for label in fields.get("labels") or [] if label is not None]
        missing = [label for label in labels if label not in current]

        if not missing:
            log.debug("labels_already_present", key=key, labels=list(labels))
            return

        log.info("add_labels", key=key, labels=missing)
        await self._request("PUT", f"/issue/{key}", json={"fields": {"labels": current + missing}})

    async def set_target_release(self, key: str, release: str) -> None:
        log.info("set_target_release", key=key, release=release)
        await self._request("PUT", f"/issue/{key}", json={"fields": {TARGET_RELEASE_FIELD: {"name": release}}})

    async def link_issue(self, key: str, other_key: str, link_type: str) -> None:
        log.info("link_issue", key=key, other_key=other_key, link_type=link_type)
        await self._request(
            "POST",
            "/issueLink",
            json={
                "type": {"name": link_type},
                "inwardIssue": {"key": key},
                "outwardIssue": {"key": other_key},
            },
        )

    async def transition_issue(self, key: str, target_state: IssueState) -> None:
        state = IssueState.from_name((await self._load_raw_issue(key))["fields"]["status"]["name"])

        while state != target_state:
            try:
                next_state = state.next_state()
            except ValueError as e:
                raise ExternalServiceError(f"Cannot transition {key} to {target_state.value}: {e}") from e
            transitions = await self._get_transitions(key)
            transition_id = next((tid for tid, to in transitions if to == next_state), None)
            if transition_id is None:
                raise ExternalServiceError(
                    f"No transition from {state.value} to {next_state.value} available for {key}"
                )

            log.info("transition_issue", key=key, transition=transition_id, to=next_state.value)
            await self._request("POST", f"/issue/{key}/transitions", json={"transition": {"id": transition_id}})
            state = next_state

    async def _get_transitions(self, key: str) -> list[tuple[str, IssueState]]:
        response = await self._request("GET", f"/issue/{key}/transitions", params={"expand": "transitions.fields"})
        transitions = []
        for transition in response.json().get("transitions", []):
            try:
                transitions.append((str(transition["id"]), IssueState.from_name(transition["to"]["name"])))
            except ValueError:
                log.debug("transition_ignored", key=key, to=transition["to"]["name"])
        return transitions

    def parse_issue(self, data: dict[str, Any]) -> Issue:
        """Normalize a Jira issue payload."""
        key = data["key"]
        fields = data["fields"]
        description = fields.get("description")

        issue = Issue(
            key=key,
            type=IssueType.from_name(fields["issuetype"]["name"]),
            state=IssueState.from_name(fields["status"]["name"]),
            summary=fields["summary"],
            description=description,
            assignee=_user_name(fields.get("assignee")),
            reporter=_user_name(fields.get("reporter")),
            creator=_user_name(fields.get("creator")),
            labels=[label for label in fields.get("labels") or [] if label is not None],
        )

        if self.parse_custom_fields:
            self._parse_custom_fields(issue, fields)

        return issue

    def _parse_custom_fields(self, issue: Issue, fields: dict[str, Any]) -> None:
        upstream_jira = fields.get(UPSTREAM_JIRA_FIELD)
        if upstream_jira and self._upstream_issue_pattern is not None:
            for upstream_key in self._upstream_issue_pattern.findall(str(upstream_jira)):
                if upstream_key not in issue.linked_keys:
                    issue.linked_keys.append(upstream_key)

        target_release = fields.get(TARGET_RELEASE_FIELD)
        if target_release:
            issue.target_release = target_release.get("name")

        issue_links = fields.get("issuelinks")
        issue.patch = bool(issue_links) and _PATCH_LINK_PATTERN.search(str(issue_links)) is not None

        gss_priority = fields.get(GSS_PRIORITY_FIELD)
        issue.customer = (
            issue.patch
            or gss_priority is not None
            or fields.get(HELP_DESK_TICKET_FIELD) is not None
            or fields.get(SUPPORT_CASE_FIELD) is not None
        )
        if gss_priority is not None:
            try:
                issue.customer_priority = CustomerPriority.from_name(gss_priority["value"])
            except ValueError:
                log.warning("unknown_customer_priority", key=issue.key, value=gss_priority.get("value"))

        issue.security = fields.get(SECURITY_SENSITIVE_FIELD) is not None
        if issue.description and issue.description.startswith(SECURITY_TRACKING_PREFIX):
            match = _SECURITY_IMPACT_PATTERN.search(issue.description)
            if match:
                issue.security_impact = SecurityImpact.from_name(match.group(1))


def _user_name(user: dict[str, Any] | None) -> str | None:
    if not user:
        return None
    return user.get("name")
