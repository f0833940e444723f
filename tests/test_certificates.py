"""Tests for certificate setup and batch renewal."""

import sys
from datetime import datetime, timedelta

import pytest
from conftest import ScriptedPrompter

import certificates
from certificates import (
    CRON_LINE,
    CertificateManager,
    DomainCertEntry,
    days_until_expiry,
    load_domains,
    parse_expiry,
    setup_ssl,
)

NOW = datetime(2026, 3, 1, 12, 0, 0)


def certbot_output(domain: str, days: int) -> str:
    expiry = NOW + timedelta(days=days)
    return (
        "Found the following certs:\n"
        f"  Certificate Name: {domain}\n"
        f"    Domains: {domain}\n"
        f"    Expiry Date: {expiry:%Y-%m-%d %H:%M:%S}+00:00 (VALID: {days} days)\n"
        f"    Certificate Path: /etc/letsencrypt/live/{domain}/fullchain.pem\n"
    )


def manager(fake_host, tmp_path, **kw):
    return CertificateManager(fake_host, log_dir=tmp_path / "log", pause=0,
                              sleep=lambda s: None, now=lambda: NOW, **kw)


class TestRegistry:

    def test_comments_and_blank_lines_skipped(self, tmp_path):
        path = tmp_path / "domains.conf"
        path.write_text(
            "# domain,email,webroot\n"
            "\n"
            "shop.example.com, ops@example.com, /var/www/certbot\n"
            "   # indented comment\n"
            "blog.example.com,ops@example.com,/var/www/blog\n"
        )
        assert load_domains(path) == [
            DomainCertEntry("shop.example.com", "ops@example.com", "/var/www/certbot"),
            DomainCertEntry("blog.example.com", "ops@example.com", "/var/www/blog"),
        ]

    def test_missing_registry(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_domains(tmp_path / "absent.conf")

    def test_parse_expiry(self):
        out = certbot_output("shop.example.com", 45)
        assert days_until_expiry(parse_expiry(out), NOW) == 45

    def test_parse_expiry_missing(self):
        assert parse_expiry("No certificates found.") is None


class TestRenewal:

    def entry(self, fake_host, domain="shop.example.com", webroot="/var/www/certbot", create=True):
        if create:
            fake_host.path(webroot).mkdir(parents=True, exist_ok=True)
        return DomainCertEntry(domain, "ops@example.com", webroot)

    def test_45_days_out_is_not_renewed(self, fake_host, tmp_path):
        fake_host.on("certbot", "certificates", stdout=certbot_output("shop.example.com", 45))
        errors = manager(fake_host, tmp_path).renew_all([self.entry(fake_host)])
        assert errors == 0
        assert not fake_host.ran("certbot", "renew")
        assert not fake_host.ran("systemctl", "reload", "nginx")

    def test_10_days_out_is_renewed_once(self, fake_host, tmp_path):
        fake_host.on("certbot", "certificates", stdout=certbot_output("shop.example.com", 10))
        errors = manager(fake_host, tmp_path).renew_all([self.entry(fake_host)])
        assert errors == 0
        renewals = fake_host.ran("certbot", "renew")
        assert [c.cmd for c in renewals] == [["certbot", "renew", "--cert-name", "shop.example.com", "--quiet"]]
        assert fake_host.ran("nginx", "-t")
        assert fake_host.ran("systemctl", "reload", "nginx")

    def test_threshold_is_inclusive(self, fake_host, tmp_path):
        fake_host.on("certbot", "certificates", stdout=certbot_output("shop.example.com", 30))
        manager(fake_host, tmp_path).renew_all([self.entry(fake_host)])
        assert len(fake_host.ran("certbot", "renew")) == 1

    def test_missing_certificate_is_requested(self, fake_host, tmp_path):
        fake_host.on("certbot", "certificates", stdout="No certificates found.\n")
        manager(fake_host, tmp_path).renew_all([self.entry(fake_host)])
        certonly = fake_host.ran("certbot", "certonly")
        assert len(certonly) == 1
        assert certonly[0].cmd[2:5] == ["--webroot", "-w", "/var/www/certbot"]

    def test_invalid_webroot_fails_only_that_domain(self, fake_host, tmp_path):
        fake_host.on("certbot", "certificates", "--domain", "bad.example.com", stdout="No certificates found.\n")
        fake_host.on("certbot", "certificates", "--domain", "shop.example.com",
                     stdout=certbot_output("shop.example.com", 10))
        entries = [
            self.entry(fake_host, "bad.example.com", "/nonexistent/webroot", create=False),
            self.entry(fake_host, "shop.example.com"),
        ]
        errors = manager(fake_host, tmp_path).renew_all(entries)

        assert errors == 1
        assert not fake_host.ran("certbot", "certonly")
        assert [c.cmd[3] for c in fake_host.ran("certbot", "renew")] == ["shop.example.com"]

    def test_reload_failure_is_isolated(self, fake_host, tmp_path):
        fake_host.on("certbot", "certificates", stdout=certbot_output("x", 5))
        fake_host.on("nginx", "-t", returncode=1)
        entries = [self.entry(fake_host, "a.example.com"), self.entry(fake_host, "b.example.com")]
        errors = manager(fake_host, tmp_path).renew_all(entries)
        assert errors == 2
        assert len(fake_host.ran("certbot", "renew")) == 2
        assert not fake_host.ran("systemctl", "reload", "nginx")

    def test_logs_pruned_regardless_of_outcome(self, fake_host, tmp_path):
        fake_host.on("certbot", "certificates", stdout="No certificates found.\n")
        manager(fake_host, tmp_path).renew_all([self.entry(fake_host, webroot="/missing", create=False)])
        prune = fake_host.ran("find")
        assert len(prune) == 1
        assert "-delete" in prune[0].cmd
        assert "+30" in prune[0].cmd

    def test_one_notification_for_all_errors(self, fake_host, tmp_path):
        fake_host.tools.add("mailx")
        fake_host.on("certbot", "certificates", stdout="No certificates found.\n")
        entries = [self.entry(fake_host, d, "/missing", create=False) for d in ("a.example.com", "b.example.com")]
        errors = manager(fake_host, tmp_path, admin_email="ops@example.com").renew_all(entries)
        assert errors == 2
        mails = fake_host.ran("mailx")
        assert len(mails) == 1
        assert mails[0].cmd[-1] == "ops@example.com"
        assert "2 error(s)" in mails[0].input

    def test_pause_between_domains(self, fake_host, tmp_path):
        fake_host.on("certbot", "certificates", stdout=certbot_output("x", 60))
        sleeps = []
        mgr = CertificateManager(fake_host, log_dir=tmp_path, pause=10, sleep=sleeps.append, now=lambda: NOW)
        mgr.renew_all([self.entry(fake_host, d) for d in ("a.example.com", "b.example.com", "c.example.com")])
        assert sleeps == [10, 10]

    def test_exit_code_non_zero_on_error(self, fake_host, tmp_path, monkeypatch):
        registry = tmp_path / "domains.conf"
        registry.write_text("bad.example.com,ops@example.com,/nonexistent\n")
        fake_host.on("certbot", "certificates", stdout="No certificates found.\n")
        monkeypatch.setattr(certificates, "Host", lambda: fake_host)
        monkeypatch.setattr(sys, "argv", [
            "renew-certs", "renew", "--domains", str(registry), "--log-file", str(tmp_path / "ssl-renewal.log"),
        ])
        with pytest.raises(SystemExit) as exc:
            certificates.main()
        assert exc.value.code == 1


class TestSetup:

    def test_no_domain_is_a_no_op(self, fake_host, shop_config):
        p = ScriptedPrompter()
        assert setup_ssl(fake_host, shop_config.replace(domain_name=""), p) is False
        assert fake_host.calls == []
        assert p.asked == []

    def test_certbot_nginx_and_cron(self, fake_host, shop_config):
        fake_host.tools.add("certbot")
        assert setup_ssl(fake_host, shop_config, ScriptedPrompter([True])) is True
        assert fake_host.ran("certbot", "--nginx", "-d", "shop.example.com")
        assert "--email" in fake_host.ran("certbot", "--nginx")[0].cmd
        assert fake_host.ran("certbot", "--nginx")[0].cmd[-1] == "admin@shop.example.com"
        assert fake_host.ran("crontab", "-")[0].input.endswith(CRON_LINE + "\n")

    def test_cron_not_duplicated(self, fake_host, shop_config):
        fake_host.tools.add("certbot")
        fake_host.on("crontab", "-l", stdout=CRON_LINE + "\n")
        setup_ssl(fake_host, shop_config, ScriptedPrompter([True]))
        assert not fake_host.ran("crontab", "-")

    def test_certbot_failure_is_a_warning(self, fake_host, shop_config):
        fake_host.tools.add("certbot")
        fake_host.on("certbot", "--nginx", returncode=1, stderr="challenge failed")
        assert setup_ssl(fake_host, shop_config, ScriptedPrompter([True])) is False
