"""Tests for monitoring, log viewing and service restart."""

import pytest

from host import CommandError
from monitor import disk_usage_alarm, monitoring_report, restart_services, view_logs


def test_report_sections(fake_host, shop_config):
    fake_host.on("free", "-h", stdout="Mem: 2.0Gi\n")
    fake_host.on("df", "/", "--output=pcent", stdout="Use%\n 42%\n")
    report = monitoring_report(fake_host, shop_config)
    assert "=== System Resources ===" in report
    assert "Mem: 2.0Gi" in report
    assert "=== Service Status ===" in report
    assert "Disk usage: OK" in report
    assert fake_host.ran("systemctl", "status", "gunicorn_shop.service")


def test_top_is_truncated(fake_host, shop_config):
    fake_host.on("top", "-bn1", stdout="".join(f"line{i}\n" for i in range(50)))
    report = monitoring_report(fake_host, shop_config)
    assert "line19" in report
    assert "line20" not in report


def test_disk_alarm_above_threshold(fake_host):
    fake_host.on("df", "/", "--output=pcent", stdout="Use%\n 91%\n")
    assert disk_usage_alarm(fake_host) == "WARNING: Disk usage is at 91%"


def test_disk_alarm_at_threshold_is_ok(fake_host):
    fake_host.on("df", "/", "--output=pcent", stdout="Use%\n 85%\n")
    assert disk_usage_alarm(fake_host) == "Disk usage: OK"


def test_celery_units_in_report(fake_host, shop_config):
    monitoring_report(fake_host, shop_config.replace(use_celery=True))
    assert fake_host.ran("systemctl", "status", "celery_shop.service")
    assert fake_host.ran("tail", "-n", "50", "/opt/shop/logs/celery_worker.log")


def test_view_logs_prefers_newest_deployment_log(tmp_path, fake_host, shop_config):
    (tmp_path / "deployment_20260101_000000.log").write_text("old\n")
    (tmp_path / "deployment_20260301_000000.log").write_text("".join(f"{i}\n" for i in range(150)))
    text = view_logs(fake_host, shop_config, tmp_path)
    assert text.splitlines()[0] == "50"
    assert text.splitlines()[-1] == "149"
    assert fake_host.calls == []


def test_view_logs_falls_back_to_journal(tmp_path, fake_host, shop_config):
    fake_host.on("journalctl", stdout="Mar 01 gunicorn started\n")
    assert "gunicorn started" in view_logs(fake_host, shop_config, tmp_path / "nologs")


def test_restart_services(fake_host, shop_config):
    units = restart_services(fake_host, shop_config.replace(use_celery=True))
    assert units == ["gunicorn_shop.service", "celery_shop.service", "celerybeat_shop.service"]
    assert len(fake_host.ran("systemctl", "restart")) == 3


def test_restart_failure_propagates(fake_host, shop_config):
    fake_host.on("systemctl", "restart", returncode=1, stderr="Unit not found")
    with pytest.raises(CommandError):
        restart_services(fake_host, shop_config)
