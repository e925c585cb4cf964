from __future__ import annotations

import datetime as dt
import io
import json

import pyarrow.parquet as pq
import pytest

from energiapro.cli import (
    EXIT_AUTH,
    EXIT_MALFORMED_RECORD,
    EXIT_OK,
    EXIT_PARTIAL,
    EXIT_TRANSPORT,
    EXIT_USAGE,
    build_parser,
    exit_code_for,
    run_cli,
)
from energiapro.client.errors import (
    FetchCancelledError,
    InvalidCredentialsError,
    ServerError,
)
from energiapro.client.models import DateWindow
from fakes import BASE_URL, MockHTTPClient, json_response, range_rows


@pytest.fixture
def cli_env(monkeypatch, clean_env):
    monkeypatch.setenv("ENERGIAPRO_USERNAME", "api-user")
    monkeypatch.setenv("ENERGIAPRO_SECRET_KEY", "s3cret")
    monkeypatch.setenv("ENERGIAPRO_BASE_URL", BASE_URL)
    monkeypatch.setenv("ENERGIAPRO_RETRY_MIN_WAIT", "0")
    monkeypatch.setenv("ENERGIAPRO_RETRY_MAX_WAIT", "0")
    monkeypatch.setenv("ENERGIAPRO_MAX_WINDOW_DAYS", "1")


def _range_handler(form, headers):
    return json_response(range_rows(form))


def _run(argv, http):
    stdout = io.BytesIO()
    code = run_cli(argv, stdout=stdout, http_client=http)
    return code, stdout.getvalue()


class TestBuildParser:
    def test_measurement_defaults(self):
        args = build_parser().parse_args(["measurements", "123", "5806.000"])
        assert args.output_format == "table"
        assert args.scope == "lpn-json"
        assert args.on_malformed == "abort"
        assert args.start is None and args.end is None

    def test_multiple_installations(self):
        args = build_parser().parse_args(["measurements", "123", "1.000", "2.000"])
        assert args.installation_ids == ["1.000", "2.000"]

    def test_invalid_date_is_usage_error(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["measurements", "123", "1", "--from", "2024-1-1"])
        assert exc_info.value.code == 2
        assert "YYYY-MM-DD" in capsys.readouterr().err

    def test_unknown_format_is_usage_error(self):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["installations", "123", "--format", "xml"])
        assert exc_info.value.code == 2


class TestExitCodes:
    @pytest.mark.parametrize(
        "exc,expected",
        [
            (InvalidCredentialsError("bad"), EXIT_AUTH),
            (ServerError("boom"), EXIT_TRANSPORT),
            (KeyboardInterrupt(), 130),
        ],
    )
    def test_exit_code_for(self, exc, expected):
        assert exit_code_for(exc) == expected

    def test_cancellation_is_partial(self):
        window = DateWindow(index=1, start=dt.date(2024, 1, 1), end=dt.date(2024, 1, 1))
        exc = FetchCancelledError("cancelled", window=window, completed_windows=0, total_windows=1)
        assert exit_code_for(exc) == EXIT_PARTIAL


class TestInstallationsCommand:
    def test_table_output(self, cli_env):
        http = MockHTTPClient(data_responses=[json_response([{
            "insID": "5806.000",
            "adrNomRueC": "Rue du Lac",
            "adrRueC": "Rue du Lac 12",
            "adrNumImm": 12,
            "adrCPC": "1000",
            "adrLocaliteC": "Lausanne",
        }])])
        code, output = _run(["installations", "123"], http)

        assert code == EXIT_OK
        text = output.decode("utf-8")
        assert "street_address" in text
        assert "5806.000" in text

    def test_empty_table(self, cli_env):
        http = MockHTTPClient(data_responses=[json_response([])])
        code, output = _run(["installations", "123"], http)
        assert code == EXIT_OK
        assert output == b"No results.\n"

    def test_api_error_exit_code(self, cli_env):
        http = MockHTTPClient(data_responses=[json_response({"errorCode": "3", "error": "Scope"})])
        code, output = _run(["installations", "123", "--format", "json"], http)
        assert code == EXIT_TRANSPORT

    def test_invalid_credentials_exit_code(self, cli_env):
        http = MockHTTPClient(login_responses=[json_response({"errorCode": "15", "error": "Disabled"})])
        code, _ = _run(["installations", "123"], http)
        assert code == EXIT_AUTH

    def test_missing_credentials(self, clean_env):
        code, _ = _run(["installations", "123"], MockHTTPClient())
        assert code == EXIT_USAGE

    def test_cli_flags_override_env(self, cli_env):
        http = MockHTTPClient()
        _run(["installations", "123", "-u", "other-user", "--timeout", "9"], http)
        assert http.login_calls[0]["data"]["username"] == "other-user"
        assert http.login_calls[0]["timeout"] == 9

    def test_insecure_base_url_rejected(self, cli_env):
        http = MockHTTPClient()
        code, _ = _run(["installations", "123", "--base-url", "http://plain.example.test"], http)
        assert code == EXIT_USAGE
        assert http.calls == []


class TestMeasurementsCommand:
    def test_jsonl_range(self, cli_env):
        http = MockHTTPClient(handler=_range_handler)
        code, output = _run(
            ["measurements", "123", "5806.000", "--from", "2024-01-01", "--to", "2024-01-02",
             "--format", "jsonl"],
            http,
        )

        assert code == EXIT_OK
        rows = [json.loads(line) for line in output.decode("utf-8").splitlines()]
        assert len(rows) == 48
        assert rows[0]["timestamp"] == "2024-01-01T00:00:00"
        assert isinstance(rows[0]["consumption_m3"], float)
        assert len(http.data_calls) == 2

    def test_parquet_output(self, cli_env):
        http = MockHTTPClient(handler=_range_handler)
        code, output = _run(
            ["measurements", "123", "5806.000", "--from", "2024-01-01", "--to", "2024-01-01",
             "--format", "parquet"],
            http,
        )
        assert code == EXIT_OK
        table = pq.read_table(io.BytesIO(output))
        assert table.num_rows == 24
        assert table.column("installation_id").to_pylist()[0] == "5806.000"

    def test_partial_failure_keeps_completed_records(self, cli_env):
        def handler(form, headers):
            if form["date_debut"] == "2024-01-03":
                return json_response({}, status_code=500)
            return json_response(range_rows(form))

        http = MockHTTPClient(handler=handler)
        code, output = _run(
            ["measurements", "123", "5806.000", "--from", "2024-01-01", "--to", "2024-01-05",
             "--format", "jsonl"],
            http,
        )

        assert code == EXIT_PARTIAL
        assert len(output.decode("utf-8").splitlines()) == 48

    def test_malformed_record_abort(self, cli_env):
        rows = range_rows({"date_debut": "2024-01-01", "date_fin": "2024-01-01", "num_inst": "1"})
        rows[3]["index_m3"] = "broken"
        http = MockHTTPClient(data_responses=[json_response(rows)])
        code, _ = _run(
            ["measurements", "123", "1", "--from", "2024-01-01", "--to", "2024-01-01"], http
        )
        assert code == EXIT_MALFORMED_RECORD

    def test_malformed_record_skip(self, cli_env):
        rows = range_rows({"date_debut": "2024-01-01", "date_fin": "2024-01-01", "num_inst": "1"})
        rows[3]["index_m3"] = "broken"
        http = MockHTTPClient(data_responses=[json_response(rows)])
        code, output = _run(
            ["measurements", "123", "1", "--from", "2024-01-01", "--to", "2024-01-01",
             "--on-malformed", "skip", "--format", "jsonl"],
            http,
        )
        assert code == EXIT_OK
        assert len(output.splitlines()) == 23

    def test_without_dates_single_request(self, cli_env):
        http = MockHTTPClient(data_responses=[json_response([])])
        code, output = _run(["measurements", "123", "1", "--format", "json"], http)
        assert code == EXIT_OK
        assert json.loads(output) == []
        assert "date_debut" not in http.data_calls[0]["data"]

    def test_several_installations_concurrently(self, cli_env):
        http = MockHTTPClient(handler=_range_handler)
        code, output = _run(
            ["measurements", "123", "1.000", "2.000", "--from", "2024-01-01", "--to", "2024-01-01",
             "--max-workers", "2", "--format", "jsonl"],
            http,
        )
        assert code == EXIT_OK
        ids = [json.loads(line)["installation_id"] for line in output.decode("utf-8").splitlines()]
        assert ids == ["1.000"] * 24 + ["2.000"] * 24
        assert len(http.login_calls) == 1

    @pytest.mark.parametrize("workers", ["1", "2"])
    def test_repeated_installation_exported_once(self, cli_env, workers):
        http = MockHTTPClient(handler=_range_handler)
        code, output = _run(
            ["measurements", "123", "1.000", "2.000", "1.000", "--from", "2024-01-01",
             "--to", "2024-01-01", "--max-workers", workers, "--format", "jsonl"],
            http,
        )
        assert code == EXIT_OK
        ids = [json.loads(line)["installation_id"] for line in output.decode("utf-8").splitlines()]
        assert ids == ["1.000"] * 24 + ["2.000"] * 24
        assert len(http.data_calls) == 2
