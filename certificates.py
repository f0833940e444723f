#!/usr/bin/env python3
"""
Certificate Manager — Django Deploy Kit
=======================================
Let's Encrypt setup for a freshly deployed site, batch renewal for every
domain in the registry, and self-signed / DH parameter generation for
development hosts.

Domain registry (/etc/nginx/ssl/domains.conf), one domain per line:
  # domain,email,webroot
  shop.example.com,ops@example.com,/var/www/certbot

Renewal rules:
  - No VALID certificate  -> webroot must exist, then `certbot certonly --webroot`
  - Expires in <= 30 days -> `certbot renew --cert-name`, `nginx -t`, reload
  - Otherwise             -> nothing to do
  - One failed domain never stops the batch. Any failure means exit 1 and one
    mailx notification to ADMIN_EMAIL (when mailx is installed).
  - ssl-renewal* logs older than 30 days are pruned after every run.

Usage:
  python3 certificates.py renew [--domains FILE] [--admin-email ADDR]
  python3 certificates.py self-signed DOMAIN [--days 365] [--out certs]
  python3 certificates.py dhparam [--out dhparams]

Cron (installed by the deploy pipeline):
  0 12 * * * /usr/bin/certbot renew --quiet
"""
import argparse
import os
import re
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from config_loader import DeploymentConfig
from console import attach_log_file, fail, log, ok, section, warn
from host import CommandError, Host
from wizard import Prompter

DOMAINS_FILE        = Path("/etc/nginx/ssl/domains.conf")
NGINX_SSL_DIR       = Path("/etc/nginx/ssl")
LOG_DIR             = Path("/var/log")
LOG_FILE            = LOG_DIR / "ssl-renewal.log"
RENEW_WITHIN_DAYS   = 30
LOG_RETENTION_DAYS  = 30
RATE_LIMIT_PAUSE    = 10  # seconds between domains
CRON_LINE           = "0 12 * * * /usr/bin/certbot renew --quiet"


class RenewalError(RuntimeError):
    """Renewal for one domain failed."""


@dataclass(frozen=True)
class DomainCertEntry:
    domain: str
    email: str
    webroot: str


def load_domains(path: Path = DOMAINS_FILE) -> list[DomainCertEntry]:
    """Parse the registry. Comment and blank lines are skipped.

    Raises:
        FileNotFoundError: The registry does not exist
    """
    entries = []
    for line in Path(path).read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        parts = [p.strip() for p in line.split(",")]
        parts += [""] * (3 - len(parts))
        entries.append(DomainCertEntry(parts[0], parts[1], parts[2]))
    return entries


_EXPIRY = re.compile(r"Expiry Date:\s*(\d{4}-\d{2}-\d{2})(?:[ T](\d{2}:\d{2}:\d{2}))?")


def parse_expiry(certbot_output: str) -> datetime | None:
    """Expiry from `certbot certificates` output (naive, UTC), or None."""
    m = _EXPIRY.search(certbot_output)
    if not m:
        return None
    return datetime.strptime(f"{m.group(1)} {m.group(2) or '00:00:00'}", "%Y-%m-%d %H:%M:%S")


def days_until_expiry(expiry: datetime, now: datetime) -> int:
    return (expiry - now).days


def has_valid_certificate(certbot_output: str) -> bool:
    return "(VALID:" in certbot_output


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ═══════════════════════════════════════════════════════════════════════════════
#  BATCH RENEWAL
# ═══════════════════════════════════════════════════════════════════════════════
class CertificateManager:
    """Renews certificates for a list of domains, one failure at a time.

    Args:
        host:        Command runner
        admin_email: Recipient of the failure notification
        log_dir:     Directory holding ssl-renewal* logs to prune
        pause:       Seconds to wait between domains
        now:         Clock, returning naive UTC datetimes
    """

    def __init__(
        self,
        host: Host,
        admin_email: str = "",
        log_dir: Path = LOG_DIR,
        pause: float = RATE_LIMIT_PAUSE,
        sleep=time.sleep,
        now=_utcnow,
    ):
        self.host = host
        self.admin_email = admin_email
        self.log_dir = log_dir
        self.pause = pause
        self.sleep = sleep
        self.now = now
        self.errors = 0

    def status(self, domain: str) -> str:
        return self.host.run(["certbot", "certificates", "--domain", domain], check=False).stdout

    def reload_nginx(self) -> None:
        if not self.host.run(["nginx", "-t"], check=False).ok:
            raise RenewalError("Nginx configuration test failed")
        self.host.run(["systemctl", "reload", "nginx"])
        log("Nginx reloaded")

    def renew_one(self, entry: DomainCertEntry) -> str:
        """Returns "issued", "renewed" or "valid"; raises RenewalError/CommandError."""
        out = self.status(entry.domain)
        if not has_valid_certificate(out):
            warn(f"No valid certificate for {entry.domain} — requesting one")
            if not entry.webroot or not self.host.is_dir(Path(entry.webroot)):
                raise RenewalError(f"Webroot '{entry.webroot}' does not exist")
            self.host.run([
                "certbot", "certonly", "--webroot", "-w", entry.webroot,
                "-d", entry.domain, "--email", entry.email,
                "--agree-tos", "--non-interactive", "--force-renewal",
            ])
            return "issued"

        expiry = parse_expiry(out)
        if expiry is None:
            raise RenewalError("Could not read the expiry date from certbot")
        days = days_until_expiry(expiry, self.now())
        if days > RENEW_WITHIN_DAYS:
            log(f"{entry.domain}: valid for {days} more days, skipping renewal")
            return "valid"

        log(f"{entry.domain}: expires in {days} days, renewing")
        self.host.run(["certbot", "renew", "--cert-name", entry.domain, "--quiet"])
        self.reload_nginx()
        return "renewed"

    def renew_all(self, entries: list[DomainCertEntry]) -> int:
        """Process every entry; returns the error count."""
        self.errors = 0
        try:
            for i, entry in enumerate(entries):
                if i:
                    self.sleep(self.pause)
                log(f"Processing domain: {entry.domain}")
                try:
                    outcome = self.renew_one(entry)
                except (RenewalError, CommandError) as e:
                    self.errors += 1
                    fail(f"{entry.domain}: {e}")
                    continue
                if outcome != "valid":
                    ok(f"{entry.domain}: certificate {outcome}")
            if self.errors:
                fail(f"{self.errors} error(s) occurred during certificate renewal")
                self.notify()
            else:
                ok("All certificates processed successfully")
        finally:
            self.prune_logs()
        return self.errors

    def notify(self) -> None:
        if not self.host.which("mailx"):
            warn("mailx not installed — no notification sent")
            return
        if not self.admin_email:
            warn("No ADMIN_EMAIL set — no notification sent")
            return
        body = f"SSL certificate renewal encountered {self.errors} error(s). Check {LOG_FILE} for details.\n"
        subject = f"SSL Renewal Failed - {datetime.now():%Y-%m-%d %H:%M}"
        r = self.host.run(["mailx", "-s", subject, self.admin_email], input=body, check=False)
        if not r.ok:
            warn(f"mailx failed: {r.stderr.strip()}")

    def prune_logs(self) -> None:
        self.host.run([
            "find", str(self.log_dir), "-maxdepth", "1", "-name", "ssl-renewal*",
            "-type", "f", "-mtime", f"+{LOG_RETENTION_DAYS}", "-delete",
        ], check=False)


# ═══════════════════════════════════════════════════════════════════════════════
#  INITIAL SETUP (called by the deploy pipeline)
# ═══════════════════════════════════════════════════════════════════════════════
def ensure_renew_cron(host: Host) -> None:
    r = host.run(["crontab", "-l"], check=False)
    current = r.stdout if r.ok else ""
    if "certbot renew" in current:
        log("Renewal cron entry already present")
        return
    lines = [ln for ln in current.splitlines() if ln.strip()]
    host.run(["crontab", "-"], input="\n".join(lines + [CRON_LINE]) + "\n")
    ok("Daily certbot renewal scheduled")


def setup_ssl(host: Host, cfg: DeploymentConfig, prompter: Prompter) -> bool:
    """Obtain a certificate for cfg.domain_name. Returns True when one was installed."""
    if not cfg.domain_name:
        log("No domain configured — skipping SSL setup")
        return False
    if not prompter.ask_yes_no(f"Set up an SSL certificate for {cfg.domain_name} with Let's Encrypt?", True):
        log("SSL setup skipped")
        return False

    email = cfg.email_user or f"admin@{cfg.domain_name}"
    try:
        if not host.which("certbot"):
            host.run(
                ["apt-get", "install", "-y", "certbot", "python3-certbot-nginx"],
                env={"DEBIAN_FRONTEND": "noninteractive"},
            )
        host.run([
            "certbot", "--nginx", "-d", cfg.domain_name,
            "--non-interactive", "--agree-tos", "--email", email,
        ])
        ensure_renew_cron(host)
    except CommandError as e:
        warn(f"SSL setup failed: {e}")
        warn(f"Retry later with: sudo certbot --nginx -d {cfg.domain_name}")
        return False
    ok(f"SSL certificate installed for {cfg.domain_name}")
    return True


# ═══════════════════════════════════════════════════════════════════════════════
#  DEVELOPMENT CERTIFICATES
# ═══════════════════════════════════════════════════════════════════════════════
def san_config(domain: str) -> str:
    return f"""[req]
default_bits = 4096
prompt = no
default_md = sha256
req_extensions = req_ext
distinguished_name = dn

[dn]
C = US
ST = State
L = City
O = Organization
CN = {domain}

[req_ext]
subjectAltName = @alt_names

[alt_names]
DNS.1 = {domain}
DNS.2 = *.{domain}
DNS.3 = localhost
IP.1 = 127.0.0.1
"""


def generate_selfsigned(host: Host, domain: str = "localhost", days: int = 365,
                        cert_root: Path = Path("certs")) -> Path:
    """Self-signed certificate with SANs for development. Returns the cert dir."""
    d = cert_root / domain
    key, csr, cert, cnf = d / "privkey.pem", d / "csr.pem", d / "cert.pem", d / "openssl.cnf"
    section(f"Self-signed certificate for {domain}")
    host.run(["mkdir", "-p", str(d)])
    host.write_file(cnf, san_config(domain), 0o644)
    host.run(["openssl", "genrsa", "-out", str(key), "4096"])
    host.run(["chmod", "600", str(key)])
    host.run(["openssl", "req", "-new", "-key", str(key), "-out", str(csr), "-config", str(cnf)])
    host.run([
        "openssl", "x509", "-req", "-days", str(days), "-in", str(csr),
        "-signkey", str(key), "-out", str(cert),
        "-extfile", str(cnf), "-extensions", "req_ext",
    ])
    host.copy(cert, d / "fullchain.pem")
    ok(f"Certificate: {cert}")
    ok(f"Full chain:  {d / 'fullchain.pem'}")
    warn("Self-signed certificates are for development only")
    return d


def generate_dhparam(host: Host, out_dir: Path = Path("dhparams"),
                     install_dir: Path = NGINX_SSL_DIR) -> Path:
    """4096-bit DH params (required) plus a 2048-bit fallback; installs the 4096 file."""
    section("Diffie-Hellman parameters")
    log("This may take several minutes on weaker hardware...")
    host.run(["mkdir", "-p", str(out_dir), str(install_dir)])
    primary = out_dir / "dhparam.pem"
    host.run(["openssl", "dhparam", "-out", str(primary), "4096"])
    if not host.run(["openssl", "dhparam", "-out", str(out_dir / "dhparam-2048.pem"), "2048"], check=False).ok:
        warn("Failed to generate 2048-bit DH parameters")
    target = install_dir / "dhparam.pem"
    host.copy(primary, target)
    host.run(["chmod", "600", str(target)])
    ok(f"DH parameters installed: {target}")
    return target


def main() -> None:
    parser = argparse.ArgumentParser(description="Certificate management for Django deployments")
    sub = parser.add_subparsers(dest="command", required=True)

    p_renew = sub.add_parser("renew", help="Renew certificates for every domain in the registry")
    p_renew.add_argument("--domains",     default=str(DOMAINS_FILE), help="Domain registry file")
    p_renew.add_argument("--admin-email", default=os.environ.get("ADMIN_EMAIL", ""))
    p_renew.add_argument("--log-file",    default=str(LOG_FILE))

    p_self = sub.add_parser("self-signed", help="Generate a self-signed development certificate")
    p_self.add_argument("domain", nargs="?", default="localhost")
    p_self.add_argument("--days", type=int, default=365)
    p_self.add_argument("--out",  default="certs")

    p_dh = sub.add_parser("dhparam", help="Generate and install DH parameters")
    p_dh.add_argument("--out", default="dhparams")

    args = parser.parse_args()
    try:
        if args.command == "renew":
            try:
                attach_log_file(Path(args.log_file))
            except OSError as e:
                warn(f"Cannot write {args.log_file}: {e}")
            section("SSL certificate renewal")
            try:
                entries = load_domains(Path(args.domains))
            except FileNotFoundError:
                fail(f"Domains configuration file not found: {args.domains}")
                sys.exit(1)
            errors = CertificateManager(Host(), args.admin_email).renew_all(entries)
            sys.exit(1 if errors else 0)
        elif args.command == "self-signed":
            generate_selfsigned(Host(use_sudo=False), args.domain, args.days, Path(args.out))
        else:
            generate_dhparam(Host(), Path(args.out))
    except CommandError as e:
        fail(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        warn("Interrupted")
        sys.exit(130)


if __name__ == "__main__":
    main()
