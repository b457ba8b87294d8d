"""Read flagged issues from a CSV export instead of a source server."""

import csv
import logging

from sonar_migrate.models import Issue

log = logging.getLogger(__name__)

COLUMNS = ("key", "component", "line", "rule", "severity", "status", "resolution")


def read_issues_from_csv(path: str, delimiter: str = ",") -> list[Issue]:
    """Parse *path* into issues.

    The first row names the columns, so their order in the file does not
    matter. An unreadable file or an incomplete header gives an empty list.
    """
    try:
        with open(path, newline="", encoding="utf-8-sig") as f:
            rows = list(csv.reader(f, delimiter=delimiter))
    except (OSError, csv.Error, UnicodeDecodeError) as exc:
        log.error("Error getting issues from CSV file '%s': %s", path, exc)
        return []

    if not rows or not any(cell.strip() for cell in rows[0]):
        log.error("CSV file '%s' has no header row.", path)
        return []

    positions = {name.strip(): index for index, name in enumerate(rows[0])}
    missing = [col for col in COLUMNS if col not in positions]
    if missing:
        log.error("CSV file '%s' is missing columns: %s", path, ", ".join(missing))
        return []

    issues: list[Issue] = []
    for number, row in enumerate(rows[1:], start=2):
        if not any(cell.strip() for cell in row):
            continue
        if len(row) < len(rows[0]):
            log.warning("Skipping short row %d in '%s'", number, path)
            continue
        issues.append(_row_to_issue(row, positions))

    log.debug("Read %d issues from '%s'", len(issues), path)
    return issues


def _row_to_issue(row: list[str], positions: dict[str, int]) -> Issue:
    def cell(name: str) -> str | None:
        return row[positions[name]] or None

    return Issue(
        key=cell("key"),
        component=row[positions["component"]],
        line=cell("line"),
        rule=row[positions["rule"]],
        severity=cell("severity"),
        status=cell("status"),
        resolution=cell("resolution"),
    )
