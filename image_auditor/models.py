"""Data models for hosts, images, scan targets and results."""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional


class HostKind(Enum):
    LOCAL = "local"
    REMOTE = "remote"


class TargetStatus(Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class AuditError(Exception):
    """Base class for errors raised by the auditor."""


class StartupError(AuditError):
    """A required input or tool is missing; the run cannot start."""


class MalformedOutputError(AuditError):
    """A line of container runtime output could not be parsed."""


@dataclass
class Host:
    address: str
    kind: HostKind
    reachable: bool = True

    @property
    def is_local(self) -> bool:
        return self.kind is HostKind.LOCAL


@dataclass(frozen=True)
class ImageRef:
    repository: str
    tag: str = "latest"

    @classmethod
    def parse(cls, text: str) -> "ImageRef":
        """Parse ``repo[:tag]``, defaulting the tag to ``latest``.

        Only a colon in the last path segment is a tag separator, so a
        registry port (``registry:5000/app``) is left alone. Digest
        references are kept whole with an empty tag.
        """
        text = text.strip()
        if not text:
            raise MalformedOutputError("empty image reference")
        if "@" in text:
            return cls(repository=text, tag="")
        base = text.rsplit("/", 1)[-1]
        if ":" not in base:
            return cls(repository=text)
        repository, _, tag = text.rpartition(":")
        return cls(repository=repository, tag=tag or "latest")

    def __str__(self) -> str:
        if not self.tag:
            return self.repository
        return f"{self.repository}:{self.tag}"


@dataclass(frozen=True)
class ScanTarget:
    host: Host = field(hash=False, compare=False)
    image: ImageRef
    container_name: Optional[str]
    status: TargetStatus


@dataclass(frozen=True)
class ScanResult:
    target: ScanTarget
    critical_count: int = 0
    high_count: int = 0
    age_days: int = -1
    structured_report_path: str = ""
    rendered_report_path: str = ""
    fresh: bool = False

    @property
    def safe(self) -> bool:
        return self.critical_count == 0 and self.high_count == 0


@dataclass(frozen=True)
class HostSummary:
    host: Host = field(compare=False)
    results: tuple = ()

    def add(self, result: ScanResult) -> "HostSummary":
        return replace(self, results=self.results + (result,))

    @property
    def total_images(self) -> int:
        return len(self.results)

    @property
    def safe_images(self) -> int:
        return sum(1 for r in self.results if r.safe)

    @property
    def unsafe_images(self) -> int:
        return self.total_images - self.safe_images

    @property
    def rows(self) -> list[str]:
        from .aggregator import build_row
        return [build_row(r) for r in self.results]
