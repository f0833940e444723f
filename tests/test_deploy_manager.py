"""Tests for the deployment manager entry point and menu."""

import pytest
from conftest import ScriptedPrompter

import deploy_manager
from config_loader import save_config
from deploy_manager import Session, menu_loop, run


@pytest.fixture
def as_user(monkeypatch):
    monkeypatch.setattr(deploy_manager.os, "geteuid", lambda: 1000)


@pytest.fixture
def saved_config(tmp_path, shop_config):
    return save_config(shop_config, tmp_path / ".django_deploy.conf")


class TestRun:

    def test_help(self, capsys):
        assert run(["--help"]) == 0
        assert "--deploy" in capsys.readouterr().out

    def test_root_refused(self, monkeypatch, fake_host):
        monkeypatch.setattr(deploy_manager.os, "geteuid", lambda: 0)
        assert run(["--monitor"], prompter=ScriptedPrompter(), host=fake_host) == 1
        assert fake_host.calls == []

    def test_unknown_flag_falls_through_to_menu(self, tmp_path, monkeypatch, as_user, fake_host):
        entered = []
        monkeypatch.setattr(deploy_manager, "interactive", lambda s: entered.append(s) or 0)
        code = run(["--frobnicate", "--config", str(tmp_path / "none.conf")],
                   prompter=ScriptedPrompter(), host=fake_host, log_dir=tmp_path / "logs")
        assert code == 0
        assert len(entered) == 1

    def test_monitor_with_saved_config(self, tmp_path, as_user, fake_host, saved_config, capsys):
        fake_host.on("df", "/", "--output=pcent", stdout="Use%\n 91%\n")
        code = run(["--monitor", "--config", str(saved_config)],
                   prompter=ScriptedPrompter(), host=fake_host, log_dir=tmp_path / "logs")
        assert code == 0
        assert "WARNING: Disk usage is at 91%" in capsys.readouterr().out
        assert list((tmp_path / "logs").glob("deployment_*.log"))

    @pytest.mark.parametrize("flag", ["--deploy", "--backup", "--monitor"])
    def test_flag_without_saved_config_fails(self, tmp_path, as_user, fake_host, flag):
        p = ScriptedPrompter()
        code = run([flag, "--config", str(tmp_path / "none.conf")],
                   prompter=p, host=fake_host, log_dir=tmp_path / "logs")
        assert code == 1
        assert p.asked == []
        assert fake_host.calls == []

    def test_deploy_without_secrets_fails(self, tmp_path, as_user, fake_host, shop_config):
        path = save_config(shop_config.replace(db_pass=""), tmp_path / "c.conf")
        code = run(["--deploy", "--config", str(path)],
                   prompter=ScriptedPrompter(), host=fake_host, log_dir=tmp_path / "logs")
        assert code == 1
        assert fake_host.calls == []


class TestMenu:

    def session(self, tmp_path, fake_host, shop_config, answers):
        return Session(prompter=ScriptedPrompter(answers), host=fake_host, cfg=shop_config,
                       config_path=tmp_path / "c.conf", backup_root=tmp_path / "backups",
                       outputs_root=tmp_path / "outputs", log_dir=tmp_path / "logs", pacing=0)

    def test_exit(self, tmp_path, fake_host, shop_config):
        s = self.session(tmp_path, fake_host, shop_config, ["0"])
        assert menu_loop(s) == 0
        assert s.history == []

    def test_failed_action_returns_to_menu(self, tmp_path, fake_host, shop_config):
        fake_host.on("systemctl", "restart", returncode=1, stderr="Unit gunicorn_shop.service not found")
        s = self.session(tmp_path, fake_host, shop_config, ["8", "0"])
        assert menu_loop(s) == 0
        assert s.history == ["8"]
        assert s.prompter.shown == []

    def test_restart_reports_units(self, tmp_path, fake_host, shop_config):
        s = self.session(tmp_path, fake_host, shop_config, ["8", "0"])
        menu_loop(s)
        title, text = s.prompter.shown[0]
        assert title == "Restart Services"
        assert "gunicorn_shop.service" in text

    def test_backup_then_rollback(self, tmp_path, fake_host, shop_config):
        s = self.session(tmp_path, fake_host, shop_config, ["4", "5", None, False, "0"])
        menu_loop(s)
        assert len(list((tmp_path / "backups").iterdir())) == 1
        assert s.history == ["4", "5"]

    def test_existing_config_reused(self, tmp_path, fake_host, shop_config, saved_config):
        s = Session(prompter=ScriptedPrompter([True, "0"]), host=fake_host, config_path=saved_config)
        assert deploy_manager.interactive(s) == 0
        assert s.cfg.project_name == "shop"
