"""Replay flagged resolutions on a target project.

Functions:
    copy_issues_to_project(client, flagged_issues, project_key) -> MigrationSummary
    update_issue(client, open_issue, flagged_issue)             -> bool
    select_transition(target_status, flagged_status, flagged_resolution)
                                                                -> Transition | None
"""

import logging
from dataclasses import dataclass

from sonar_migrate.client import SonarClient
from sonar_migrate.models import Issue, Resolution, Status, Transition

log = logging.getLogger(__name__)

# Target statuses from which a flagged resolution may be replayed.
# CONFIRMED issues are left alone; the "confirm" transition is not replayed.
_TRANSITIONABLE = (Status.OPEN, Status.REOPENED)

_RESOLUTION_TRANSITIONS = {
    Resolution.FALSE_POSITIVE: Transition.FALSE_POSITIVE,
    Resolution.WONTFIX:        Transition.WONTFIX,
}


@dataclass
class MigrationSummary:
    processed: int = 0
    matched:   int = 0
    updated:   int = 0
    searches:  int = 0


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def select_transition(
    target_status: Status | str | None,
    flagged_status: Status | str | None,
    flagged_resolution: Resolution | str | None,
) -> Transition | None:
    """Transition that brings the target issue to the flagged issue's state.

    Only OPEN and REOPENED targets are moved, and only towards a RESOLVED
    false-positive or won't-fix. Everything else returns None.
    """
    if Status.parse(target_status) not in _TRANSITIONABLE:
        return None
    if Status.parse(flagged_status) is not Status.RESOLVED:
        return None
    return _RESOLUTION_TRANSITIONS.get(Resolution.parse(flagged_resolution))


def update_issue(client: SonarClient, open_issue: Issue, flagged_issue: Issue) -> bool:
    """Send the matching transition for *open_issue*.

    Returns True only if a transition applied and the request went through.
    """
    if open_issue.key is None:
        log.warning("Matched issue %s:%s has no key, skipped.",
                    open_issue.parsed_component, open_issue.line)
        return False

    transition = select_transition(
        open_issue.status, flagged_issue.status, flagged_issue.resolution
    )
    if transition is None:
        log.debug("No transition for %s:%s (target %s, flagged %s/%s)",
                  open_issue.parsed_component, open_issue.line, open_issue.status,
                  flagged_issue.status, flagged_issue.resolution)
        return False

    log.info("Updating %s:%s", open_issue.parsed_component, open_issue.line)
    if client.do_transition(open_issue.key, transition) is None:
        return False

    log.info("Issue %s:%s updated", open_issue.parsed_component, open_issue.line)
    return True


def copy_issues_to_project(
    client: SonarClient,
    flagged_issues: list[Issue],
    project_key: str,
) -> MigrationSummary:
    """Replay each flagged issue on its twin in *project_key*.

    Target issues are searched once per distinct rule and kept for the rest
    of the run, so the number of searches is the number of rules, not the
    number of flagged issues.
    """
    issues_by_rule: dict[str, list[Issue]] = {}
    summary = MigrationSummary()
    total = len(flagged_issues)

    for counter, flagged in enumerate(flagged_issues, start=1):
        summary.processed += 1
        log.info("Processing flagged issue %s %d of %d", flagged.parsed_component, counter, total)

        candidates = _candidates_for_rule(client, flagged.rule, project_key, issues_by_rule, summary)
        match = next((issue for issue in candidates if issue.matches(flagged)), None)
        if match is None:
            continue

        summary.matched += 1
        if update_issue(client, match, flagged):
            summary.updated += 1

    log.info("%d flagged issues matched.", summary.matched)
    return summary


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _candidates_for_rule(
    client: SonarClient,
    rule: str,
    project_key: str,
    cache: dict[str, list[Issue]],
    summary: MigrationSummary,
) -> list[Issue]:
    if rule in cache:
        return cache[rule]

    summary.searches += 1
    found = client.search_issues_by_rule(rule, project_key)
    if found is None:
        log.warning("Search for rule %s in %s failed, its flagged issues are skipped.",
                    rule, project_key)
        found = []
    cache[rule] = found
    return found
