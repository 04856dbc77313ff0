"""
Data models for the Dockrev API shapes consumed by dockrevui.

The API speaks camelCase JSON; these dataclasses hold the same data with
snake_case fields. Every model has a `from_dict()` constructor that accepts
the raw JSON object and tolerates missing optional keys, so partially
populated records (older API versions, fixtures) still load.

Data Classes:
  - ImageInfo: configured image ref/tag plus server-resolved tags
  - CandidateInfo: newest image the backend found for a service
  - IgnoreOutcome: whether an ignore rule suppresses the update
  - ServiceSettings / BackupTargetOverrides: per-service update settings
  - ServiceInfo: one compose service (image + candidate + ignore + settings)
  - StackListItem / StackDetail: compose projects
  - JobListItem: update/check jobs shown on the queue page
  - CandidateOption: one entry of the per-service candidate list

Nothing here is cached or mutated locally; views refetch on demand.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

ARCH_MATCH_VALUES = ("match", "mismatch", "unknown")
TERNARY_CHOICES = ("inherit", "skip", "force")


def _arch_match(value: Any) -> str:
    # Unknown values from newer servers are treated as unproven.
    return value if value in ARCH_MATCH_VALUES else "unknown"


def _ternary_map(raw: Optional[Dict[str, Any]]) -> Dict[str, str]:
    if not raw:
        return {}
    return {k: (v if v in TERNARY_CHOICES else "inherit") for k, v in raw.items()}


@dataclass
class ImageInfo:
    ref: str
    tag: str
    digest: Optional[str] = None
    resolved_tag: Optional[str] = None
    resolved_tags: Optional[List[str]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImageInfo":
        return cls(
            ref=data.get("ref", ""),
            tag=data.get("tag", ""),
            digest=data.get("digest"),
            resolved_tag=data.get("resolvedTag"),
            resolved_tags=data.get("resolvedTags"),
        )


@dataclass
class CandidateInfo:
    tag: str
    digest: str
    arch_match: str = "unknown"  # match, mismatch, unknown
    arch: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CandidateInfo":
        return cls(
            tag=data.get("tag", ""),
            digest=data.get("digest", ""),
            arch_match=_arch_match(data.get("archMatch")),
            arch=list(data.get("arch") or []),
        )


@dataclass
class IgnoreOutcome:
    matched: bool
    rule_id: str = ""
    reason: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IgnoreOutcome":
        return cls(
            matched=bool(data.get("matched")),
            rule_id=data.get("ruleId", ""),
            reason=data.get("reason", ""),
        )


@dataclass
class BackupTargetOverrides:
    bind_paths: Dict[str, str] = field(default_factory=dict)
    volume_names: Dict[str, str] = field(default_factory=dict)

    def has_force(self) -> bool:
        return any(v == "force" for v in self.bind_paths.values()) or any(
            v == "force" for v in self.volume_names.values()
        )


@dataclass
class ServiceSettings:
    auto_rollback: bool = False
    backup_targets: BackupTargetOverrides = field(default_factory=BackupTargetOverrides)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ServiceSettings":
        data = data or {}
        targets = data.get("backupTargets") or {}
        return cls(
            auto_rollback=bool(data.get("autoRollback")),
            backup_targets=BackupTargetOverrides(
                bind_paths=_ternary_map(targets.get("bindPaths")),
                volume_names=_ternary_map(targets.get("volumeNames")),
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "autoRollback": self.auto_rollback,
            "backupTargets": {
                "bindPaths": dict(self.backup_targets.bind_paths),
                "volumeNames": dict(self.backup_targets.volume_names),
            },
        }


@dataclass
class ServiceInfo:
    id: str
    name: str
    image: ImageInfo
    candidate: Optional[CandidateInfo] = None
    ignore: Optional[IgnoreOutcome] = None
    settings: ServiceSettings = field(default_factory=ServiceSettings)
    archived: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceInfo":
        candidate = data.get("candidate")
        ignore = data.get("ignore")
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            image=ImageInfo.from_dict(data.get("image") or {}),
            candidate=CandidateInfo.from_dict(candidate) if candidate else None,
            ignore=IgnoreOutcome.from_dict(ignore) if ignore else None,
            settings=ServiceSettings.from_dict(data.get("settings")),
            archived=bool(data.get("archived")),
        )


@dataclass
class StackListItem:
    id: str
    name: str
    status: str = "unknown"  # healthy, degraded, unknown
    services: int = 0
    updates: int = 0
    last_check_at: str = ""
    archived: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StackListItem":
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            status=data.get("status", "unknown"),
            services=int(data.get("services") or 0),
            updates=int(data.get("updates") or 0),
            last_check_at=data.get("lastCheckAt", ""),
            archived=bool(data.get("archived")),
        )


@dataclass
class StackDetail:
    id: str
    name: str
    compose_files: List[str] = field(default_factory=list)
    env_file: Optional[str] = None
    services: List[ServiceInfo] = field(default_factory=list)
    archived: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StackDetail":
        compose = data.get("compose") or {}
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            compose_files=list(compose.get("composeFiles") or []),
            env_file=compose.get("envFile"),
            services=[ServiceInfo.from_dict(s) for s in data.get("services") or []],
            archived=bool(data.get("archived")),
        )


@dataclass
class JobListItem:
    id: str
    type: str
    scope: str
    status: str
    created_at: str = ""
    stack_id: Optional[str] = None
    service_id: Optional[str] = None
    created_by: str = ""
    reason: str = ""
    finished_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobListItem":
        return cls(
            id=data.get("id", ""),
            type=data.get("type", ""),
            scope=data.get("scope", ""),
            status=data.get("status", ""),
            created_at=data.get("createdAt", ""),
            stack_id=data.get("stackId"),
            service_id=data.get("serviceId"),
            created_by=data.get("createdBy", ""),
            reason=data.get("reason", ""),
            finished_at=data.get("finishedAt"),
        )


@dataclass
class CandidateOption:
    tag: str
    digest: Optional[str] = None
    arch_match: str = "unknown"
    ignored: bool = False
    arch: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CandidateOption":
        return cls(
            tag=data.get("tag", ""),
            digest=data.get("digest") or None,
            arch_match=_arch_match(data.get("archMatch")),
            ignored=bool(data.get("ignored")),
            arch=list(data.get("arch") or []),
        )
