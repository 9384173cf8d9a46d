"""Tests for the scan-once executor and image age computation."""
import datetime
import os

import pytest
from conftest import FakeConnector, trivy_answer, trivy_report

from image_auditor.models import ImageRef, ScanTarget, TargetStatus
from image_auditor.scan_executor import ScanExecutor, image_age_days, safe_identifier

NOW = datetime.datetime(2025, 3, 31, 12, 0, tzinfo=datetime.timezone.utc)


def _connector(reports=None, created="2025-03-21T08:15:00.123456789Z", db_rc=0):
    return FakeConnector({
        ("trivy", "image", "--download-db-only"): ("", db_rc),
        ("trivy", "image"): trivy_answer(reports or {}),
        ("docker", "inspect"): (created + "\n", 0),
    })


def _target(host, image="nginx:latest", status=TargetStatus.ACTIVE, name="web"):
    return ScanTarget(host, ImageRef.parse(image), name if status is TargetStatus.ACTIVE else None,
                      status)


class TestSafeIdentifier:
    def test_transliterates_host_and_image(self):
        ident = safe_identifier("admin@10.0.0.5", ImageRef.parse("ghcr.io/org/app:1.2"))
        assert ident == "admin_10_0_0_5__ghcr.io_org_app_1.2"


class TestImageAge:
    def test_whole_days_from_date_part(self):
        assert image_age_days("2025-03-21T08:15:00Z", NOW) == 10

    def test_created_today_is_zero(self):
        assert image_age_days("2025-03-31T23:59:59Z", NOW) == 0

    @pytest.mark.parametrize("created", ["", None, "null", "yesterday", "2025-13-40T00:00:00Z"])
    def test_unknown_timestamps(self, created):
        assert image_age_days(created, NOW) == -1


class TestScanExecutor:
    def test_active_scan_writes_both_reports(self, local_host, template, output_dir):
        connector = _connector({"nginx:latest": trivy_report("CRITICAL", "HIGH", "HIGH", "LOW")})
        executor = ScanExecutor(connector, template, output_dir)

        result = executor.ensure_scanned(_target(local_host))

        assert (result.critical_count, result.high_count) == (1, 2)
        assert not result.safe
        assert result.fresh
        assert result.age_days >= 0
        assert os.path.isfile(result.structured_report_path)
        assert os.path.isfile(result.rendered_report_path)
        assert result.rendered_report_path.endswith("localhost__nginx_latest.html")

        template_call = connector.scanner_calls("template")[0]
        assert f"@{template}" in template_call
        for flag in ("--ignore-unfixed", "--skip-db-update"):
            assert flag in template_call
        assert template_call[template_call.index("--scanners") + 1] == "vuln"

    def test_active_image_scanned_once(self, local_host, template, output_dir):
        connector = _connector()
        executor = ScanExecutor(connector, template, output_dir)

        first = executor.ensure_scanned(_target(local_host, name="web"))
        second = executor.ensure_scanned(_target(local_host, name="web-2"))

        assert executor.scanner_invocations == 1
        assert len(connector.scanner_calls("json")) == 1
        assert len(connector.scanner_calls("template")) == 1
        assert first.fresh and not second.fresh

    def test_inactive_structured_report_deleted(self, local_host, template, output_dir):
        connector = _connector({"postgres:16": trivy_report("HIGH")})
        executor = ScanExecutor(connector, template, output_dir)

        result = executor.ensure_scanned(_target(local_host, "postgres:16", TargetStatus.INACTIVE))

        assert result.high_count == 1
        assert not os.path.exists(result.structured_report_path)
        assert os.path.isfile(result.rendered_report_path)

    def test_database_refreshed_once_per_host(self, local_host, remote_host, template, output_dir):
        connector = _connector()
        executor = ScanExecutor(connector, template, output_dir)

        executor.ensure_scanned(_target(local_host, "nginx:latest"))
        executor.ensure_scanned(_target(local_host, "redis:7"))
        executor.ensure_scanned(_target(remote_host, "nginx:latest"))

        refreshes = [addr for addr, argv in connector.calls if "--download-db-only" in argv]
        assert refreshes == ["localhost", "admin@10.0.0.5"]

    def test_database_refresh_failure_is_not_fatal(self, local_host, template, output_dir, capsys):
        executor = ScanExecutor(_connector(db_rc=1), template, output_dir)
        result = executor.ensure_scanned(_target(local_host))
        assert result.fresh
        assert "DB refresh failed" in capsys.readouterr().err

    def test_remote_scan_uses_temporary_template(self, remote_host, template, output_dir):
        connector = _connector()
        executor = ScanExecutor(connector, template, output_dir)

        result = executor.ensure_scanned(_target(remote_host))

        assert connector.copies == [("admin@10.0.0.5", template, "/tmp/trivy_html_test.tpl")]
        assert connector.removed == ["/tmp/trivy_html_test.tpl"]
        assert "@/tmp/trivy_html_test.tpl" in connector.scanner_calls("template")[0]
        assert result.rendered_report_path.endswith("admin_10_0_0_5__nginx_latest.html")

    def test_unknown_age_when_inspect_fails(self, local_host, template, output_dir):
        connector = FakeConnector({
            ("trivy", "image"): trivy_answer({}),
            ("docker", "inspect"): ("", 1),
        })
        result = ScanExecutor(connector, template, output_dir).ensure_scanned(_target(local_host))
        assert result.age_days == -1
