"""CLI entry point for the Docker fleet image auditor."""
import argparse
import datetime
import glob
import os
import shutil
import sys
from typing import Optional

import yaml

from . import __version__
from .dashboard import INDEX_FILE, inject_back_link, write_dashboard
from .enumerator import ImageEnumerator
from .host_connector import DEFAULT_CONNECT_TIMEOUT, LOCAL_ADDRESS, SAFE_PATH, HostConnector
from .models import Host, HostSummary, StartupError
from .scan_executor import ScanExecutor

DEFAULT_HOSTS_FILE = "hosts.txt"
DEFAULT_TEMPLATE = "html.tpl"
DEFAULT_OUTPUT_DIR = "./trivy_reports"


def load_config(config_path: str) -> dict:
    """Load a YAML config mapping; keys set to null are dropped."""
    with open(config_path) as f:
        raw = f.read()
    for key, val in os.environ.items():
        raw = raw.replace(f"${{{key}}}", val)
    config = yaml.safe_load(raw) or {}
    if not isinstance(config, dict):
        raise StartupError(f"config '{config_path}' must be a mapping")
    config = {k: v for k, v in config.items() if v is not None}
    if "ssh" in config:
        if not isinstance(config["ssh"], dict):
            raise StartupError(f"'ssh' in config '{config_path}' must be a mapping")
        config["ssh"] = {k: v for k, v in config["ssh"].items() if v is not None}
    return config


def _setting(flag, config: dict, key: str, default):
    if flag is not None:
        return flag
    return config.get(key, default)


def read_hosts(hosts_path: str) -> list[str]:
    hosts = []
    with open(hosts_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            hosts.append(line)
    return hosts


def validate_startup(hosts_path: str, template_path: str) -> list[str]:
    """Check inputs and tools before any scanning; returns the host list."""
    if not os.path.isfile(template_path):
        raise StartupError(f"unable to find template '{template_path}'")
    if not os.path.isfile(hosts_path):
        raise StartupError(f"unable to find host list '{hosts_path}'")

    hosts = read_hosts(hosts_path)
    required = set()
    if LOCAL_ADDRESS in hosts:
        required.update({"docker", "trivy"})
    if any(h != LOCAL_ADDRESS for h in hosts):
        required.add("ssh")
    for tool in sorted(required):
        if shutil.which(tool, path=SAFE_PATH) is None:
            raise StartupError(f"'{tool}' missing from {SAFE_PATH}")
    return hosts


def clean_output_dir(output_dir: str) -> None:
    os.makedirs(output_dir, exist_ok=True)
    for pattern in ("*.html", "*.json"):
        for path in glob.glob(os.path.join(output_dir, pattern)):
            if os.path.isfile(path):
                os.remove(path)


def process_host(host: Host, enumerator: ImageEnumerator, executor: ScanExecutor) -> HostSummary:
    summary = HostSummary(host=host)
    executor.refresh_database(host)

    active = enumerator.list_active_targets(host)
    print(f"      {len(active)} running container(s)", file=sys.stderr)
    for target in active:
        summary = summary.add(executor.ensure_scanned(target))

    inactive = enumerator.list_inactive_targets(host, {t.image for t in active})
    print(f"      {len(inactive)} unused image(s)", file=sys.stderr)
    for target in inactive:
        summary = summary.add(executor.ensure_scanned(target))

    print(f"      {summary.total_images} image(s): {summary.safe_images} safe, "
          f"{summary.unsafe_images} unsafe", file=sys.stderr)
    return summary


def run_audit(hosts: list[str], template_path: str, output_dir: str,
              connector: Optional[HostConnector] = None) -> str:
    connector = connector or HostConnector()
    enumerator = ImageEnumerator(connector)
    executor = ScanExecutor(connector, template_path, output_dir)

    print(f"[*] Image Auditor v{__version__}", file=sys.stderr)
    print(f"[*] Hosts: {len(hosts)}", file=sys.stderr)
    print(f"[*] Output: {output_dir}", file=sys.stderr)

    clean_output_dir(output_dir)
    scanned_at = datetime.datetime.now().strftime("%a %d %b %Y %H:%M:%S")

    summaries = []
    for idx, address in enumerate(hosts, 1):
        print(f"[{idx}/{len(hosts)}] Host: {address}", file=sys.stderr)
        host = connector.classify(address)
        if not host.reachable:
            print(f"No connection to {address}, skipping", file=sys.stderr)
            continue
        summaries.append(process_host(host, enumerator, executor))

    index_path = os.path.join(output_dir, INDEX_FILE)
    write_dashboard(index_path, summaries, scanned_at)

    for summary in summaries:
        for result in summary.results:
            if result.fresh:
                inject_back_link(result.rendered_report_path)

    return index_path


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Image Auditor - Trivy scans across a fleet of Docker hosts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Scan every host in hosts.txt using html.tpl, write ./trivy_reports/index.html
  python -m image_auditor

  # Explicit inputs
  python -m image_auditor --hosts /etc/audit/hosts.txt --template html.tpl --output /srv/www/audit

  # Using a YAML config file (${VAR} placeholders come from the environment)
  python -m image_auditor --config configs/audit.yaml
        """,
    )
    parser.add_argument("--config", help="Path to YAML config file")
    parser.add_argument("--hosts", help=f"Host list, one address per line (default: {DEFAULT_HOSTS_FILE})")
    parser.add_argument("--template", help=f"Trivy HTML template (default: {DEFAULT_TEMPLATE})")
    parser.add_argument("--output", help=f"Output directory (default: {DEFAULT_OUTPUT_DIR})")
    parser.add_argument("--connect-timeout", type=int,
                        help=f"SSH connect timeout in seconds (default: {DEFAULT_CONNECT_TIMEOUT})")
    parser.add_argument("--debug", action="store_true", help="Print every command executed")

    args = parser.parse_args(argv)

    config = {}
    if args.config:
        try:
            config = load_config(args.config)
        except (OSError, yaml.YAMLError, StartupError) as e:
            print(f"ERROR: cannot load config '{args.config}': {e}", file=sys.stderr)
            return 1
    ssh_config = config.get("ssh", {})

    hosts_path = str(_setting(args.hosts, config, "hosts_file", DEFAULT_HOSTS_FILE))
    template_path = str(_setting(args.template, config, "template", DEFAULT_TEMPLATE))
    output_dir = str(_setting(args.output, config, "output_dir", DEFAULT_OUTPUT_DIR))
    connect_timeout = _setting(args.connect_timeout, ssh_config, "connect_timeout",
                               DEFAULT_CONNECT_TIMEOUT)
    ssh_options = ssh_config.get("options", [])

    try:
        if not isinstance(ssh_options, list):
            raise StartupError("'ssh.options' must be a list")
        try:
            connect_timeout = int(connect_timeout)
        except (TypeError, ValueError):
            raise StartupError(f"invalid ssh connect timeout {connect_timeout!r}")
        hosts = validate_startup(hosts_path, template_path)
    except StartupError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    connector = HostConnector(connect_timeout=connect_timeout,
                              ssh_options=[str(o) for o in ssh_options],
                              debug=args.debug)
    index_path = run_audit(hosts, os.path.abspath(template_path), output_dir, connector)
    print(f"Done! Dashboard: {index_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
