"""Tests for sonar_migrate/cli.py"""

from urllib.parse import parse_qs

import pytest
from click.testing import CliRunner

from sonar_migrate.cli import cli

SOURCE = "https://source.example.com"
TARGET = "https://target.example.com"
COOKIES = {"Set-Cookie": "XSRF-TOKEN=tok; Path=/, JWT-SESSION=s; Path=/"}

BASE_ARGS = ["migrate", "-h", SOURCE, "-u", "admin", "-p", "secret",
             "-s", "com.example:app", "-t", "com.example:app-v2"]


def _page(issues: list) -> dict:
    return {"issues": issues, "paging": {"pageIndex": 1, "total": len(issues)}}


FLAGGED = {"key": "S1", "component": "com.example:app:src/Foo.java", "line": 10,
           "rule": "java:S1234", "status": "RESOLVED", "resolution": "FALSE-POSITIVE"}
OPEN = {"key": "T1", "component": "com.example:app:src/Foo.java", "line": 10,
        "rule": "java:S1234", "status": "OPEN"}


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def _mock_servers(requests_mock, source_login=None, target_login=None):
    requests_mock.post(f"{SOURCE}/api/authentication/login",
                       **(source_login or {"text": "", "headers": COOKIES}))
    requests_mock.post(f"{TARGET}/api/authentication/login",
                       **(target_login or {"text": "", "headers": COOKIES}))
    requests_mock.get(f"{SOURCE}/api/issues/search", json=_page([FLAGGED]))
    requests_mock.get(f"{TARGET}/api/issues/search", json=_page([OPEN]))
    return requests_mock.post(f"{TARGET}/api/issues/do_transition", json={})


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------

def test_init_writes_template(runner, tmp_path):
    out = tmp_path / "conf.yaml"
    result = runner.invoke(cli, ["init", "--output", str(out)])
    assert result.exit_code == 0
    assert out.exists()


def test_init_refuses_to_overwrite(runner, tmp_path):
    out = tmp_path / "conf.yaml"
    out.write_text("x")
    result = runner.invoke(cli, ["init", "--output", str(out)])
    assert result.exit_code == 1
    assert "already exists" in result.output


# ---------------------------------------------------------------------------
# migrate
# ---------------------------------------------------------------------------

def test_migrate_end_to_end(runner, requests_mock):
    transition = _mock_servers(requests_mock)
    result = runner.invoke(cli, BASE_ARGS + ["-H", TARGET])

    assert result.exit_code == 0, result.output
    assert "1 of 1 flagged issues matched, 1 updated" in result.output
    assert parse_qs(transition.last_request.text) == {
        "issue": ["T1"], "transition": ["falsepositive"],
    }


def test_migrate_target_defaults_to_source_host(runner, requests_mock):
    requests_mock.post(f"{SOURCE}/api/authentication/login", text="", headers=COOKIES)
    search = requests_mock.get(f"{SOURCE}/api/issues/search", json=_page([FLAGGED]))
    requests_mock.post(f"{SOURCE}/api/issues/do_transition", json={})

    result = runner.invoke(cli, BASE_ARGS)

    assert result.exit_code == 0, result.output
    assert search.call_count == 2


def test_migrate_missing_required_values(runner):
    result = runner.invoke(cli, ["migrate", "-h", SOURCE])
    assert result.exit_code == 1
    assert "Configuration error" in result.output


def test_migrate_malformed_source_url(runner, requests_mock):
    result = runner.invoke(cli, ["migrate", "-h", "sonar.example.com", "-u", "admin", "-p", "x",
                                 "-s", "a", "-t", "b"])
    assert result.exit_code == 1
    assert requests_mock.call_count == 0


def test_migrate_malformed_target_url(runner, requests_mock):
    _mock_servers(requests_mock)
    result = runner.invoke(cli, BASE_ARGS + ["-H", "target.example.com"])
    assert result.exit_code == 1


def test_migrate_source_authentication_failure(runner, requests_mock):
    _mock_servers(requests_mock, source_login={"text": "Authentication failed"})
    result = runner.invoke(cli, BASE_ARGS + ["-H", TARGET])

    assert result.exit_code == 1
    assert "Authentication failed on the source server" in result.output
    searched = [r for r in requests_mock.request_history if r.method == "GET"]
    assert searched == []


def test_migrate_target_authentication_failure(runner, requests_mock):
    transition = _mock_servers(requests_mock, target_login={"status_code": 401, "text": ""})
    result = runner.invoke(cli, BASE_ARGS + ["-H", TARGET])
    assert result.exit_code == 1
    assert transition.call_count == 0


def test_migrate_nothing_flagged_exits_zero(runner, requests_mock):
    requests_mock.post(f"{SOURCE}/api/authentication/login", text="", headers=COOKIES)
    requests_mock.get(f"{SOURCE}/api/issues/search", json=_page([]))
    target_login = requests_mock.post(f"{TARGET}/api/authentication/login", text="")

    result = runner.invoke(cli, BASE_ARGS + ["-H", TARGET])

    assert result.exit_code == 0
    assert target_login.call_count == 0


def test_migrate_source_fetch_failure_exits_zero(runner, requests_mock):
    requests_mock.post(f"{SOURCE}/api/authentication/login", text="", headers=COOKIES)
    requests_mock.get(f"{SOURCE}/api/issues/search", text="")
    result = runner.invoke(cli, BASE_ARGS + ["-H", TARGET])
    assert result.exit_code == 0


def test_migrate_from_csv_skips_source_server(runner, requests_mock, tmp_path):
    csv_path = tmp_path / "flagged.csv"
    csv_path.write_text(
        "key,component,line,rule,severity,status,resolution\n"
        "S1,com.example:app:src/Foo.java,10,java:S1234,MAJOR,RESOLVED,WONTFIX\n",
        encoding="utf-8",
    )
    transition = _mock_servers(requests_mock)

    result = runner.invoke(cli, ["migrate", "--from-file", str(csv_path),
                                 "-H", TARGET, "-U", "admin", "-P", "secret",
                                 "-s", "com.example:app", "-t", "com.example:app-v2"])

    assert result.exit_code == 0, result.output
    assert parse_qs(transition.last_request.text)["transition"] == ["wontfix"]
    assert not any(r.url.startswith(SOURCE) for r in requests_mock.request_history)


@pytest.mark.parametrize("delimiter", [";;", ""])
def test_migrate_rejects_bad_csv_delimiter(runner, requests_mock, tmp_path, delimiter):
    csv_path = tmp_path / "flagged.csv"
    csv_path.write_text("key,component,line,rule,severity,status,resolution\n", encoding="utf-8")

    result = runner.invoke(cli, ["migrate", "--from-file", str(csv_path),
                                 "--csv-delimiter", delimiter,
                                 "-H", TARGET, "-U", "admin", "-P", "secret",
                                 "-t", "com.example:app-v2"])

    assert result.exit_code == 1
    assert "Configuration error" in result.output
    assert requests_mock.call_count == 0


def test_migrate_from_csv_without_source_project(runner, requests_mock, tmp_path):
    csv_path = tmp_path / "flagged.csv"
    csv_path.write_text(
        "key,component,line,rule,severity,status,resolution\n"
        "S1,com.example:app:src/Foo.java,10,java:S1234,MAJOR,RESOLVED,FALSE-POSITIVE\n",
        encoding="utf-8",
    )
    transition = _mock_servers(requests_mock)

    result = runner.invoke(cli, ["migrate", "--from-file", str(csv_path),
                                 "-H", TARGET, "-U", "admin", "-P", "secret",
                                 "-t", "com.example:app-v2"])

    assert result.exit_code == 0, result.output
    assert transition.call_count == 1


def test_migrate_reads_config_file(runner, requests_mock, tmp_path):
    config = tmp_path / "conf.yaml"
    config.write_text(
        f"source:\n  host: {SOURCE}\n  user: admin\n  password: secret\n  project: com.example:app\n"
        f"target:\n  host: {TARGET}\n  project: com.example:app-v2\n",
        encoding="utf-8",
    )
    _mock_servers(requests_mock)
    result = runner.invoke(cli, ["--config", str(config), "migrate"])
    assert result.exit_code == 0, result.output


def test_log_file_records_errors(runner, requests_mock, tmp_path):
    log_file = tmp_path / "errors.log"
    _mock_servers(requests_mock, source_login={"text": "Authentication failed"})
    runner.invoke(cli, ["--log-file", str(log_file)] + BASE_ARGS + ["-H", TARGET])
    assert "Authentication failed for user 'admin'" in log_file.read_text(encoding="utf-8")
