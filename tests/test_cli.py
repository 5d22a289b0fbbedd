import json

import pytest

from fakes import make_activity
from strava_ls import cli
from strava_ls.config import Settings
from strava_ls.errors import ApiFault, FetchError
from strava_ls.models import Gear, Snapshot


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "setup_logging", lambda debug=False: None)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        client_id="123",
        client_secret="secret",
        token_path=tmp_path / "token",
        activity_cache=tmp_path / "activities.json",
        gear_cache=tmp_path / "gear.json",
    )


@pytest.fixture
def snapshot():
    return Snapshot(
        activities=[
            make_activity(1, 100, "b1", name="Commute", start_date_local="2024-03-01T08:00:00Z"),
            make_activity(2, 200, name="Walk", type="Walk", start_date_local="2024-03-02T09:00:00Z"),
        ],
        gear={"b1": Gear(id="b1", name="Bike")},
    )


@pytest.fixture
def stub_run(monkeypatch, settings, snapshot):
    calls = {}

    def fake_load_settings(config_path=None, **overrides):
        calls["config_path"] = config_path
        calls["overrides"] = overrides
        return settings

    def fake_run(run_settings):
        calls["run"] = run_settings
        return snapshot

    monkeypatch.setattr(cli, "load_settings", fake_load_settings)
    monkeypatch.setattr(cli, "run", fake_run)
    return calls


def test_table_output_and_cache_save(stub_run, settings, capsys):
    cli.main([])

    lines = capsys.readouterr().out.splitlines()
    assert lines[0].split()[-2:] == ["Gear", "Name"]
    assert lines[1].split()[-2:] == ["Bike", "Commute"]
    assert lines[2].split()[-2:] == ["-", "Walk"]
    assert settings.activity_cache.exists()
    assert settings.gear_cache.exists()


def test_json_output(stub_run, capsys):
    cli.main(["-j"])

    payload = json.loads(capsys.readouterr().out)
    assert [row["activity"]["id"] for row in payload] == [1, 2]
    assert payload[0]["gear"]["name"] == "Bike"


def test_flags_become_setting_overrides(stub_run, capsys):
    cli.main(["-r", "--workers", "4", "--dedupe", "--config", "custom.yaml"])

    assert stub_run["config_path"] == "custom.yaml"
    assert stub_run["overrides"] == {"refresh": True, "activity_workers": 4, "dedupe_on_merge": True}


def test_unset_flags_leave_config_values_alone(stub_run, capsys):
    cli.main([])

    assert stub_run["overrides"] == {"refresh": None, "activity_workers": None, "dedupe_on_merge": None}


def test_fetch_failure_exits_with_fatal_error(monkeypatch, settings, capsys):
    def failing_run(_settings):
        raise FetchError(ApiFault("Rate Limit Exceeded", 429), page=3)

    monkeypatch.setattr(cli, "load_settings", lambda config_path=None, **overrides: settings)
    monkeypatch.setattr(cli, "run", failing_run)

    with pytest.raises(SystemExit) as excinfo:
        cli.main([])

    assert str(excinfo.value.code).startswith("fatal error: failed to fetch activity page 3")
    assert capsys.readouterr().out == ""
    assert not settings.activity_cache.exists()


def test_export_dir_writes_exports(stub_run, monkeypatch, tmp_path, snapshot, capsys):
    exported = []
    monkeypatch.setattr(
        cli, "export_parquet", lambda out_dir, snap: exported.append((out_dir, snap)) or [out_dir / "a.ndjson"]
    )

    cli.main(["--export-dir", str(tmp_path / "out")])

    assert exported == [(tmp_path / "out", snapshot)]


def test_check_credentials_reports_sources(sls_home, monkeypatch, capsys):
    monkeypatch.setenv("STRAVA_CLIENT_ID", "123")
    (sls_home / ".env").write_text("STRAVA_CLIENT_SECRET=from-dotenv\n", encoding="utf-8")

    cli.main(["--check-credentials"])

    out = capsys.readouterr().out
    assert "- STRAVA_CLIENT_ID: environment" in out
    assert f"- STRAVA_CLIENT_SECRET: dotenv:{sls_home / '.env'}" in out


def test_check_credentials_fails_when_missing(sls_home):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--check-credentials"])

    assert "STRAVA_CLIENT_ID" in str(excinfo.value.code)
