"""
Tests for the bulkbm command-line interface.
"""

import importlib
import json

import pytest
from click.testing import CliRunner

from bulk_batch_manager.cli import cli
from bulk_batch_manager.core.errors import AuthenticationFailed, RemoteRejected

from conftest import FakeBulkClient

cli_utils = importlib.import_module("bulk_batch_manager.cli.utils")


@pytest.fixture
def fake_client(monkeypatch, sf_env, run_registry):
    client = FakeBulkClient()
    monkeypatch.setattr(cli_utils, "create_bulk_client", lambda **kwargs: client)
    return client


@pytest.fixture
def account_files(tmp_path):
    first = tmp_path / "accounts_1.jsonl"
    first.write_text(
        '{"Name": "Acme"}\n{"Name": "Initech", "MADEUPFIELD": "x"}\n', encoding="utf-8"
    )
    second = tmp_path / "accounts_2.jsonl"
    second.write_text('{"Name": "Hooli"}\n', encoding="utf-8")
    return [str(first), str(second)]


@pytest.fixture
def runner():
    return CliRunner()


class TestRunCommand:

    def test_prints_one_line_per_record(self, runner, fake_client, account_files, tmp_path):
        output = tmp_path / "outcomes.jsonl"

        result = runner.invoke(cli, ["run", "Account", "insert", *account_files, "--output", str(output)])

        assert result.exit_code == 0, result.output
        assert "Id:001B1000, Created:True, Success:True, Errors:False" in result.output
        assert "Id:, Created:False, Success:False, Errors:True" in result.output
        assert "\tField:MADEUPFIELD" in result.output
        assert "Id:001B2000, Created:True, Success:True, Errors:False" in result.output
        assert len(output.read_text(encoding="utf-8").splitlines()) == 3
        assert fake_client.closed

    def test_error_chain_is_printed(self, runner, fake_client, account_files, monkeypatch):
        def reject(*args, **kwargs):
            try:
                raise ValueError("Entity 'Acount' is not supported")
            except ValueError as e:
                raise RemoteRejected("InvalidEntity", "Unknown entity", 400) from e

        monkeypatch.setattr(fake_client, "create_job", reject)

        result = runner.invoke(cli, ["run", "Acount", "insert", *account_files])

        assert result.exit_code == 1
        assert "RemoteRejected: InvalidEntity: Unknown entity" in result.output
        assert "ValueError: Entity 'Acount' is not supported" in result.output
        assert "Traceback" not in result.output
        assert "in reject" in result.output

    def test_pause_prompts_before_exit(self, runner, fake_client, account_files):
        result = runner.invoke(cli, ["run", "Account", "insert", *account_files, "--pause"], input="\n")
        assert result.exit_code == 0
        assert "Press enter to close..." in result.output

    def test_authentication_failure(self, runner, sf_env, run_registry, account_files, monkeypatch):
        def fail(**kwargs):
            raise AuthenticationFailed("invalid_grant: authentication failure")

        monkeypatch.setattr(cli_utils, "create_bulk_client", fail)

        result = runner.invoke(cli, ["run", "Account", "insert", *account_files])

        assert result.exit_code == 1

    def test_missing_credentials(self, runner, run_registry, account_files, monkeypatch):
        for var in ("SF_CONSUMER_KEY", "SF_CONSUMER_SECRET", "SF_USERNAME", "SF_PASSWORD"):
            monkeypatch.delenv(var, raising=False)

        result = runner.invoke(cli, ["run", "Account", "insert", *account_files])

        assert result.exit_code == 1

    def test_invalid_operation(self, runner, fake_client, account_files):
        result = runner.invoke(cli, ["run", "Account", "merge", *account_files])
        assert result.exit_code == 2

    @pytest.mark.parametrize("operation", ["query", "queryAll"])
    def test_query_operations_are_not_offered(self, runner, fake_client, account_files, operation):
        result = runner.invoke(cli, ["run", "Account", operation, *account_files])
        assert result.exit_code == 2
        assert fake_client.jobs == {}

    def test_timeout_prints_finished_batches(self, runner, fake_client, account_files):
        fake_client.script("B1", "InProgress")

        result = runner.invoke(cli, ["run", "Account", "insert", *account_files, "--timeout", "0.5"])

        assert result.exit_code == 1
        assert "PollingTimeout: 1 batches still pending" in result.output
        assert "Id:001B2000, Created:True, Success:True, Errors:False" in result.output
        assert "Still pending: batch B1" in result.output
        assert fake_client.result_requests == ["B2"]


class TestStepwiseWorkflow:

    def test_submit_track_results(self, runner, fake_client, account_files, tmp_path, run_registry):
        base_folder = tmp_path / "runs" / "accounts"

        result = runner.invoke(cli, [
            "-r", "accounts", "submit", "Account", "insert", *account_files,
            "--base-folder", str(base_folder),
        ])
        assert result.exit_code == 0, result.output
        assert (base_folder / "run_state.yaml").exists()
        assert run_registry.get_base_folder("accounts") == base_folder.resolve()
        assert fake_client.jobs["750J1"]["state"] == "Closed"

        result = runner.invoke(cli, ["-r", "accounts", "check"])
        assert result.exit_code == 0, result.output

        result = runner.invoke(cli, ["-r", "accounts", "track", "--initial-delay", "0.01"])
        assert result.exit_code == 0, result.output

        output = tmp_path / "failed.jsonl"
        result = runner.invoke(cli, [
            "-r", "accounts", "results", "--only-failed", "--output", str(output),
        ])
        assert result.exit_code == 0, result.output
        rows = [json.loads(line) for line in output.read_text(encoding="utf-8").splitlines()]
        assert [row["error_status_code"] for row in rows] == ["INVALID_FIELD"]

    def test_submit_refuses_existing_run(self, runner, fake_client, account_files, tmp_path):
        args = ["-r", "accounts", "submit", "Account", "insert", *account_files,
                "--base-folder", str(tmp_path / "run")]
        assert runner.invoke(cli, args).exit_code == 0

        result = runner.invoke(cli, args)

        assert result.exit_code == 1
        assert len(fake_client.jobs) == 1

    def test_run_name_required(self, runner, fake_client):
        result = runner.invoke(cli, ["check"])
        assert result.exit_code == 2

    def test_unknown_run(self, runner, fake_client):
        result = runner.invoke(cli, ["-r", "nope", "track"])
        assert result.exit_code == 1

    def test_abort(self, runner, fake_client, account_files, tmp_path):
        runner.invoke(cli, [
            "-r", "accounts", "submit", "Account", "insert", *account_files,
            "--base-folder", str(tmp_path / "run"), "--keep-open",
        ])

        result = runner.invoke(cli, ["-r", "accounts", "abort", "--force"])

        assert result.exit_code == 0, result.output
        assert fake_client.jobs["750J1"]["state"] == "Aborted"


class TestRegistryCommands:

    def test_list_and_unregister(self, runner, run_registry, tmp_path):
        run_registry.register_run("old", tmp_path / "gone")

        assert runner.invoke(cli, ["list-runs"]).exit_code == 0
        assert runner.invoke(cli, ["unregister-run", "old"]).exit_code == 0
        assert run_registry.list_runs() == []
        assert runner.invoke(cli, ["unregister-run", "old"]).exit_code == 1

    def test_cleanup_orphaned(self, runner, run_registry, tmp_path):
        run_registry.register_run("orphan", tmp_path / "gone")

        result = runner.invoke(cli, ["unregister-run", "--cleanup-orphaned"])

        assert result.exit_code == 0
        assert run_registry.list_runs() == []
