"""Scan executor - runs trivy once per (host, image) and collects results.

For every target the executor derives a stable file identifier from the
host address and image reference, reads the image creation date, invokes
trivy twice (JSON for counting, template for the human readable report)
unless the JSON report already exists, and turns the JSON into a
:class:`ScanResult`.

Usage:
    executor = ScanExecutor(connector, "html.tpl", "./trivy_reports")
    result = executor.ensure_scanned(target)
"""
import datetime
import os
import sys
from typing import Optional

from .aggregator import count_severities
from .host_connector import HostConnector
from .models import Host, ImageRef, ScanResult, ScanTarget, TargetStatus

TRIVY_SCAN_FLAGS = ["--ignore-unfixed", "--scanners", "vuln", "--skip-db-update"]


def safe_identifier(address: str, image: ImageRef) -> str:
    safe_host = address.replace("@", "_").replace(".", "_")
    safe_image = str(image).replace("/", "_").replace(":", "_")
    return f"{safe_host}__{safe_image}"


def image_age_days(created: Optional[str], now: Optional[datetime.datetime] = None) -> int:
    """Whole days since the date part of a docker ``Created`` timestamp, or -1."""
    if not created:
        return -1
    date_part = created.strip().split("T", 1)[0]
    if not date_part or date_part == "null":
        return -1
    try:
        created_on = datetime.datetime.strptime(date_part, "%Y-%m-%d").replace(
            tzinfo=datetime.timezone.utc)
    except ValueError:
        return -1
    now = now or datetime.datetime.now(datetime.timezone.utc)
    return int((now - created_on).total_seconds() // 86400)


class ScanExecutor:
    def __init__(self, connector: HostConnector, template_path: str, output_dir: str):
        self.connector = connector
        self.template_path = template_path
        self.output_dir = output_dir
        self._refreshed_hosts: set[str] = set()
        self.scanner_invocations = 0

    # ------------------------------------------------------------------ public

    def refresh_database(self, host: Host) -> None:
        """Download the trivy DB once per host; failures are ignored."""
        if host.address in self._refreshed_hosts:
            return
        self._refreshed_hosts.add(host.address)
        _, rc = self.connector.run(host, ["trivy", "image", "--download-db-only"])
        if rc != 0:
            print(f"[WARN] {host.address}: trivy DB refresh failed (rc={rc}), "
                  "using existing database", file=sys.stderr)

    def ensure_scanned(self, target: ScanTarget) -> ScanResult:
        host = target.host
        self.refresh_database(host)

        ident = safe_identifier(host.address, target.image)
        json_path = os.path.join(self.output_dir, f"{ident}.json")
        html_path = os.path.join(self.output_dir, f"{ident}.html")

        age = image_age_days(self._created_timestamp(host, target.image))

        fresh = not os.path.isfile(json_path)
        if fresh:
            self._scan(host, target.image, json_path, html_path)

        critical, high = count_severities(json_path)

        if target.status is TargetStatus.INACTIVE and os.path.exists(json_path):
            os.remove(json_path)

        return ScanResult(
            target=target,
            critical_count=critical,
            high_count=high,
            age_days=age,
            structured_report_path=json_path,
            rendered_report_path=html_path,
            fresh=fresh,
        )

    # ----------------------------------------------------------------- helpers

    def _created_timestamp(self, host: Host, image: ImageRef) -> str:
        stdout, rc = self.connector.run(
            host, ["docker", "inspect", "-f", "{{.Created}}", str(image)])
        return stdout.strip() if rc == 0 else ""

    def _scan(self, host: Host, image: ImageRef, json_path: str, html_path: str) -> None:
        self.scanner_invocations += 1
        print(f"      scanning {image} ...", file=sys.stderr)

        json_out, rc = self.connector.run(
            host, ["trivy", "image", "--format", "json", *TRIVY_SCAN_FLAGS, str(image)])
        if rc != 0:
            print(f"[WARN] {host.address}: trivy JSON scan of {image} exited with {rc}",
                  file=sys.stderr)
        self._write(json_path, json_out)

        with self.connector.remote_copy(host, self.template_path) as template:
            html_out, rc = self.connector.run(
                host, ["trivy", "image", "--format", "template", "--template", f"@{template}",
                       *TRIVY_SCAN_FLAGS, str(image)])
        if rc != 0:
            print(f"[WARN] {host.address}: trivy report of {image} exited with {rc}",
                  file=sys.stderr)
        self._write(html_path, html_out)

    @staticmethod
    def _write(path: str, content: str) -> None:
        with open(path, "w") as f:
            f.write(content)
