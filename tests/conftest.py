import json
from contextlib import contextmanager

import pytest

from image_auditor.models import Host, HostKind


class FakeConnector:
    """Answers host commands from a table instead of running them.

    ``responses`` maps a command prefix (tuple of argv items) to either a
    ``(stdout, rc)`` pair or a callable taking the argv and returning one.
    The first matching prefix wins; unmatched commands return ("", 0).
    """

    def __init__(self, responses=None, reachable=None):
        self.responses = list((responses or {}).items())
        self.reachable = reachable or {}
        self.calls = []
        self.copies = []
        self.removed = []

    def classify(self, address):
        if address == "localhost":
            return Host(address, HostKind.LOCAL, True)
        return Host(address, HostKind.REMOTE, self.reachable.get(address, True))

    def run(self, host, argv):
        self.calls.append((host.address, list(argv)))
        for prefix, answer in self.responses:
            if tuple(argv[:len(prefix)]) == prefix:
                return answer(argv) if callable(answer) else answer
        return "", 0

    def copy_file(self, host, local_path, remote_path):
        self.copies.append((host.address, local_path, remote_path))
        return True

    @contextmanager
    def remote_copy(self, host, local_path):
        if host.is_local:
            yield local_path
            return
        path = "/tmp/trivy_html_test.tpl"
        self.copy_file(host, local_path, path)
        try:
            yield path
        finally:
            self.removed.append(path)

    def scanner_calls(self, fmt=None):
        calls = [argv for _, argv in self.calls if argv[:2] == ["trivy", "image"]
                 and "--download-db-only" not in argv]
        if fmt:
            calls = [argv for argv in calls if argv[argv.index("--format") + 1] == fmt]
        return calls


def trivy_report(*severities):
    return json.dumps({
        "Results": [{
            "Target": "image",
            "Vulnerabilities": [
                {"VulnerabilityID": f"CVE-2024-{i:04d}", "Severity": sev}
                for i, sev in enumerate(severities)
            ],
        }]
    })


def trivy_answer(reports):
    """Build a trivy responder from ``{image: json}``; templates render a body."""
    def answer(argv):
        if "--format" not in argv:
            return "", 0
        image = argv[-1]
        fmt = argv[argv.index("--format") + 1]
        if fmt == "json":
            return reports.get(image, trivy_report()), 0
        return f"<html><body><h1>{image}</h1></body></html>", 0
    return answer


@pytest.fixture
def local_host():
    return Host("localhost", HostKind.LOCAL, True)


@pytest.fixture
def remote_host():
    return Host("admin@10.0.0.5", HostKind.REMOTE, True)


@pytest.fixture
def template(tmp_path):
    path = tmp_path / "html.tpl"
    path.write_text("{{ range . }}{{ .Target }}{{ end }}")
    return str(path)


@pytest.fixture
def output_dir(tmp_path):
    path = tmp_path / "reports"
    path.mkdir()
    return str(path)
