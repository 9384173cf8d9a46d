"""Image enumerator - lists running-container images and all images on a host."""
import sys
from typing import Iterable, Tuple

from .host_connector import HostConnector
from .models import Host, ImageRef, MalformedOutputError, ScanTarget, TargetStatus

PS_FORMAT = "{{.Image}}|{{.Names}}"
IMAGES_FORMAT = "{{.Repository}}:{{.Tag}}"
UNTAGGED_MARKER = "<none>"


def parse_container_line(line: str) -> Tuple[ImageRef, str]:
    """Parse one ``<image>|<name>`` line from ``docker ps``."""
    parts = line.strip().split("|")
    if len(parts) != 2:
        raise MalformedOutputError(f"expected '<image>|<name>', got {line!r}")
    image, name = parts[0].strip(), parts[1].strip()
    if not image or not name:
        raise MalformedOutputError(f"empty image or container name in {line!r}")
    return ImageRef.parse(image), name


class ImageEnumerator:
    def __init__(self, connector: HostConnector):
        self.connector = connector

    def list_active_targets(self, host: Host) -> list[ScanTarget]:
        pairs = set()
        for line in self._lines(host, ["docker", "ps", "--format", PS_FORMAT]):
            try:
                pairs.add(parse_container_line(line))
            except MalformedOutputError as exc:
                print(f"[WARN] {host.address}: skipping container line: {exc}", file=sys.stderr)
        return [
            ScanTarget(host=host, image=image, container_name=name, status=TargetStatus.ACTIVE)
            for image, name in sorted(pairs, key=lambda p: (str(p[0]), p[1]))
        ]

    def list_all_images(self, host: Host) -> list[ImageRef]:
        images = set()
        for line in self._lines(host, ["docker", "images", "--format", IMAGES_FORMAT]):
            if UNTAGGED_MARKER in line:
                continue
            images.add(ImageRef.parse(line))
        return sorted(images, key=str)

    def list_inactive_targets(self, host: Host, active_images: Iterable[ImageRef]) -> list[ScanTarget]:
        seen = set(active_images)
        return [
            ScanTarget(host=host, image=image, container_name=None, status=TargetStatus.INACTIVE)
            for image in self.list_all_images(host)
            if image not in seen
        ]

    def _lines(self, host: Host, argv: list) -> list[str]:
        stdout, rc = self.connector.run(host, argv)
        if rc != 0:
            print(f"[WARN] {host.address}: '{' '.join(argv[:2])}' exited with {rc}", file=sys.stderr)
            return []
        return [line.strip() for line in stdout.splitlines() if line.strip()]
