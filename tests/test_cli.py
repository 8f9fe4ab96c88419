import json

import pytest

import cli
from hca.onboarding import OnboardingError
from hca.runner import check_status, run_setup
from hca.settings import Settings
from hca.state import ReconciliationState, StateStore


def _status(state_file, capsys, *extra):
    assert cli.main(["--state-file", state_file, "status", *extra]) == 0
    return capsys.readouterr().out


def test_status_pending_on_fresh_install(tmp_path, capsys):
    out = _status(str(tmp_path / "state.json"), capsys)
    assert "First-boot setup pending" in out


def test_status_after_setup(tmp_path, capsys):
    path = str(tmp_path / "state.json")
    state = ReconciliationState(first_boot_completed=True)
    state.update_sync_time()
    StateStore(path).save(state)

    out = _status(path, capsys)
    assert "First-boot setup completed" in out
    assert "Tracked apps: 0" in out


def test_remove_and_restore(tmp_path, capsys):
    path = str(tmp_path / "state.json")

    assert cli.main(["--state-file", path, "remove", "abc123"]) == 0
    assert StateStore(path).load().is_removed("abc123")

    st = json.loads(_status(path, capsys, "--json"))
    assert st["removed_apps"] == ["abc123"]
    assert st["first_boot_completed"] is False

    assert cli.main(["--state-file", path, "restore", "abc123"]) == 0
    assert not StateStore(path).load().is_removed("abc123")
    assert cli.main(["--state-file", path, "restore", "abc123"]) == 1


def test_setup_with_bad_branding_file_fails_cleanly(tmp_path):
    branding = tmp_path / "branding.json"
    branding.write_text(json.dumps({"credentials": {"admin_username": "admin"}}))
    rc = cli.main(
        ["--state-file", str(tmp_path / "state.json"), "--branding-file", str(branding), "setup"]
    )
    assert rc == 1


def test_setup_with_missing_branding_file_fails_cleanly(tmp_path):
    rc = cli.main(
        ["--state-file", str(tmp_path / "state.json"), "--branding-file", str(tmp_path / "nope.json"), "setup"]
    )
    assert rc == 1


def test_unknown_command_is_usage_error():
    with pytest.raises(SystemExit) as exc:
        cli.main(["bogus"])
    assert exc.value.code == 2


def test_run_setup_records_completion(tmp_path, homarr_client, fake_homarr, branding):
    cfg = Settings(state_file=str(tmp_path / "state.json"))
    run_setup(cfg, branding=branding, client=homarr_client)

    assert check_status(cfg)["first_boot_completed"] is True
    assert fake_homarr.home_board is not None


def test_run_setup_failure_leaves_flag_unset(tmp_path, homarr_client, fake_homarr, branding):
    cfg = Settings(state_file=str(tmp_path / "state.json"))
    fake_homarr.fail["user.initUser"] = (400, "BAD_REQUEST")

    with pytest.raises(OnboardingError):
        run_setup(cfg, branding=branding, client=homarr_client)
    assert check_status(cfg)["first_boot_completed"] is False
