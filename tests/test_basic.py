"""Basic tests for the genesys-peak CLI, storage and models."""

import csv
import json
from datetime import datetime, timezone
from pathlib import Path

import pytest
from typer.testing import CliRunner

FIXTURE = Path(__file__).parent / "fixtures" / "conversations_feb2024.json"


def test_import_cli():
    """Test that the CLI module can be imported."""
    from genesys_peak.cli import app

    assert app.info.name == "genesys-peak"


def test_cli_command_names():
    """Test that expected commands are registered."""
    from genesys_peak.cli import app, auth_app

    command_names = [cmd.name for cmd in app.registered_commands]
    for cmd in ["peak", "details-query", "analyze-file"]:
        assert cmd in command_names, f"Missing command: {cmd}"

    auth_names = [cmd.name for cmd in auth_app.registered_commands]
    assert auth_names == ["login", "status", "logout"]


def test_import_operations():
    """Test that the operations module exports the run driver."""
    from genesys_peak import operations

    assert hasattr(operations, "run_peak_analysis")
    assert hasattr(operations, "run_details_query")
    assert hasattr(operations, "analyze_conversations")
    assert hasattr(operations, "build_chunks")


def test_parse_timestamp_variants():
    from genesys_peak.models import format_timestamp, parse_timestamp

    expected = datetime(2024, 2, 16, 18, 23, 15, tzinfo=timezone.utc)
    assert parse_timestamp("2024-02-16T18:23:15.000Z") == expected
    assert parse_timestamp("2024-02-16T19:23:15+01:00") == expected
    assert parse_timestamp("2024-02-16") == datetime(2024, 2, 16, tzinfo=timezone.utc)
    assert parse_timestamp("") is None
    assert parse_timestamp(None) is None
    assert parse_timestamp("16/02/2024") is None
    assert format_timestamp(expected) == "2024-02-16T18:23:15Z"


def test_conversation_record_keeps_unknown_fields():
    """Test that raw records accept camelCase and keep extra vendor fields."""
    from genesys_peak.models import Conversation

    record = Conversation.model_validate({
        "conversationId": "c1",
        "originatingDirection": "inbound",
        "participants": [{"participantId": "p1", "sessions": [{"sessionId": "s1", "sessionDnis": "tel:+1"}]}],
    })

    assert record.conversation_id == "c1"
    assert record.participants[0].sessions[0].session_dnis == "tel:+1"
    assert record.model_extra["originatingDirection"] == "inbound"


def test_storage_save_run(tmp_path):
    """Test that a run writes interval CSV, series CSV and summary JSON."""
    from genesys_peak.models import Interval
    from genesys_peak.storage import save_run
    from genesys_peak.sweep import compute_peak

    interval = Interval(
        conversation_id="c1",
        participant_id="p1",
        session_id="s1",
        start=datetime(2024, 2, 16, 18, 0, 30, tzinfo=timezone.utc),
        end=datetime(2024, 2, 16, 18, 2, tzinfo=timezone.utc),
        ani="tel:+1555",
        dnis="tel:+1800",
        division_ids=["d1", "d2"],
    )
    peak = compute_peak(
        [interval],
        datetime(2024, 2, 16, 18, 0, tzinfo=timezone.utc),
        datetime(2024, 2, 16, 18, 5, tzinfo=timezone.utc),
    )

    files = save_run({"month": "2024-02"}, peak, [interval], output_dir=tmp_path)

    with open(files["intervals"]) as f:
        rows = list(csv.DictReader(f))
    assert rows == [{
        "conversationId": "c1",
        "participantId": "p1",
        "sessionId": "s1",
        "startUtc": "2024-02-16T18:00:30Z",
        "endUtc": "2024-02-16T18:02:00Z",
        "ani": "tel:+1555",
        "dnis": "tel:+1800",
        "divisionIds": "d1;d2",
    }]

    with open(files["series"]) as f:
        series = list(csv.DictReader(f))
    assert [row["activeCalls"] for row in series] == ["1", "1", "0", "0", "0"]
    assert series[0]["minuteUtc"] == "2024-02-16T18:00:00Z"

    with open(files["summary"]) as f:
        summary = json.load(f)
    assert summary["parameters"] == {"month": "2024-02"}
    assert summary["PeakConcurrentCalls"] == 1
    assert summary["PeakMinuteUtc"] == "2024-02-16T18:00:00Z"
    assert summary["PeakMinutesUtc"] == ["2024-02-16T18:00:00Z", "2024-02-16T18:01:00Z"]
    assert Path(files["summary"]).name.startswith("peak_")


def test_load_records_shapes(tmp_path):
    """Test loading bare lists, single pages and lists of pages."""
    from genesys_peak.storage import load_records

    records = [{"conversationId": "a"}, {"conversationId": "b"}]

    bare = tmp_path / "bare.json"
    bare.write_text(json.dumps(records))
    page = tmp_path / "page.json"
    page.write_text(json.dumps({"conversations": records, "cursor": "x"}))
    pages = tmp_path / "pages.json"
    pages.write_text(json.dumps([{"conversations": records[:1]}, {"conversations": records[1:]}]))

    assert load_records(bare) == records
    assert load_records(page) == records
    assert load_records(pages) == records

    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"results": []}))
    with pytest.raises(ValueError):
        load_records(bad)


def test_output_helpers(capsys):
    """Test CLI output helper functions."""
    from genesys_peak.cli import output_json

    output_json({"test": "value", "count": 42})
    parsed = json.loads(capsys.readouterr().out)
    assert parsed == {"test": "value", "count": 42}


def test_cli_version():
    from genesys_peak import __version__
    from genesys_peak.cli import app

    result = CliRunner().invoke(app, ["--version"])
    assert result.exit_code == 0
    assert json.loads(result.stdout) == {"version": __version__}


def test_cli_analyze_file(tmp_path):
    """Test the offline analyze-file command against the February fixture."""
    from genesys_peak.cli import app

    result = CliRunner().invoke(
        app, ["analyze-file", str(FIXTURE), "--month", "2024-02", "--output-dir", str(tmp_path)]
    )

    assert result.exit_code == 0, result.output
    output = json.loads(result.stdout)
    assert output["PeakConcurrentCalls"] == 10
    assert output["PeakMinuteUtc"] == "2024-02-16T18:23:00Z"
    assert output["records"] == 19
    assert output["intervals"] == 14
    assert Path(output["files"]["summary"]).exists()


def test_cli_rejects_ambiguous_window(tmp_path):
    from genesys_peak.cli import app

    result = CliRunner().invoke(
        app, ["analyze-file", str(FIXTURE), "--month", "2024-02", "--start", "2024-02-01"]
    )
    assert result.exit_code == 1
