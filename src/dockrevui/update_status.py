"""
Update status classification for services.

Each service row is assigned exactly one RowStatus from its image, candidate
and ignore data. Classification is total: incomplete records and tags that do
not look like versions degrade to "hint" (needs confirmation) instead of
raising.

Tag series:
  A tag such as "v5.2.1-alpine" parses to major=5, minor=2, precision=3.
  Single-number tags ("16") act as floating major aliases, so any candidate
  with the same major is in the same series. Longer tags require the same
  major and minor.

Decision table (first match wins):
  1. ignore rule matched          -> blocked
  2. no candidate                 -> ok
  3. candidate arch mismatch      -> archMismatch
  4. tag series differs           -> crossTag
  5. arch unknown / tag unparsed  -> hint
  6. otherwise                    -> updatable
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional

from .model import ServiceInfo

_DIGITS = re.compile(r"[0-9]+")


class RowStatus(str, Enum):
    OK = "ok"
    UPDATABLE = "updatable"
    HINT = "hint"
    CROSS_TAG = "crossTag"
    ARCH_MISMATCH = "archMismatch"
    BLOCKED = "blocked"


# Statuses that represent an update opportunity (everything except ok).
CANDIDATE_STATUSES = (
    RowStatus.UPDATABLE,
    RowStatus.HINT,
    RowStatus.CROSS_TAG,
    RowStatus.ARCH_MISMATCH,
    RowStatus.BLOCKED,
)


@dataclass(frozen=True)
class TagSeries:
    major: int
    minor: Optional[int]
    precision: int  # 1, 2 or 3 numeric groups


def parse_tag_series(tag: str) -> Optional[TagSeries]:
    """Parse a loosely semver-like tag; None when it is not a version."""
    t = tag.strip()
    if t.startswith("v"):
        t = t[1:]
    if not t:
        return None

    # Prerelease/build metadata does not affect the series.
    core = re.split(r"[+-]", t, maxsplit=1)[0]
    parts = core.split(".")
    if len(parts) > 3:
        return None
    if not all(_DIGITS.fullmatch(p) for p in parts):
        return None

    nums = [int(p) for p in parts]
    return TagSeries(
        major=nums[0],
        minor=nums[1] if len(nums) >= 2 else None,
        precision=len(nums),
    )


def tag_series_matches(current_tag: str, candidate_tag: str) -> Optional[bool]:
    """
    Decide whether candidate_tag stays in the series of current_tag.

    Returns None when either tag is unparseable; callers must treat that as
    "unknown, needs confirmation" and never as a mismatch.
    """
    cur = parse_tag_series(current_tag)
    cand = parse_tag_series(candidate_tag)
    if cur is None or cand is None:
        return None
    if cur.major != cand.major:
        return False
    if cur.precision == 1:
        return True
    return cur.minor == cand.minor


def effective_current_tag(svc: ServiceInfo) -> str:
    """The server-resolved tag when present (even if empty), else the configured tag."""
    return svc.image.resolved_tag if svc.image.resolved_tag is not None else svc.image.tag


def service_row_status(svc: ServiceInfo) -> RowStatus:
    if svc.ignore is not None and svc.ignore.matched:
        return RowStatus.BLOCKED
    if svc.candidate is None:
        return RowStatus.OK
    if svc.candidate.arch_match == "mismatch":
        return RowStatus.ARCH_MISMATCH

    series_match = tag_series_matches(effective_current_tag(svc), svc.candidate.tag)
    if series_match is False:
        return RowStatus.CROSS_TAG
    if svc.candidate.arch_match == "unknown" or series_match is None:
        return RowStatus.HINT
    return RowStatus.UPDATABLE


_LABELS = {
    RowStatus.UPDATABLE: "Updatable",
    RowStatus.HINT: "Needs confirmation",
    RowStatus.CROSS_TAG: "Cross-tag version",
    RowStatus.ARCH_MISMATCH: "Arch mismatch",
    RowStatus.BLOCKED: "Blocked",
    RowStatus.OK: "No update",
}

_BADGES = {
    RowStatus.UPDATABLE: "updatable",
    RowStatus.HINT: "needs confirm",
    RowStatus.CROSS_TAG: "cross tag",
    RowStatus.ARCH_MISMATCH: "arch mismatch",
    RowStatus.BLOCKED: "blocked",
    RowStatus.OK: "no candidate",
}


def status_label(status: RowStatus) -> str:
    return _LABELS[status]


def status_badge(status: RowStatus) -> str:
    return _BADGES[status]


def status_tone(status: RowStatus) -> str:
    """Display tone: ok, warn, bad or muted."""
    if status == RowStatus.UPDATABLE:
        return "ok"
    if status in (RowStatus.HINT, RowStatus.CROSS_TAG):
        return "warn"
    if status in (RowStatus.ARCH_MISMATCH, RowStatus.BLOCKED):
        return "bad"
    return "muted"


def note_for(svc: ServiceInfo, status: RowStatus) -> str:
    """Short explanatory note shown next to a service row."""
    if status == RowStatus.BLOCKED:
        return (svc.ignore.reason if svc.ignore and svc.ignore.reason else "Blocked")
    if status == RowStatus.ARCH_MISMATCH:
        return "Hint only, update not allowed"
    if status == RowStatus.CROSS_TAG:
        return "Candidate tag is outside the current series"
    if status == RowStatus.HINT:
        if svc.candidate is not None and svc.candidate.arch_match == "unknown":
            return "arch unknown"
        return "tag relationship uncertain"
    if status == RowStatus.UPDATABLE:
        if svc.settings.backup_targets.has_force():
            return "runs after backup succeeds"
        return "follows current tag series"
    return "-"


# Candidate filters: "all" or any status other than ok.
FILTER_ALL = "all"
FILTER_VALUES = (FILTER_ALL,) + tuple(s.value for s in CANDIDATE_STATUSES)


def count_statuses(services: Iterable[ServiceInfo]) -> Dict[RowStatus, int]:
    counts = {s: 0 for s in CANDIDATE_STATUSES}
    for svc in services:
        st = service_row_status(svc)
        if st in counts:
            counts[st] += 1
    return counts


def filter_services(services: Iterable[ServiceInfo], flt: str = FILTER_ALL) -> List[ServiceInfo]:
    """Services with an update opportunity, narrowed to one status unless flt is "all"."""
    if flt not in FILTER_VALUES:
        raise ValueError(f"Unknown candidate filter: {flt}")
    out = []
    for svc in services:
        st = service_row_status(svc)
        if st == RowStatus.OK:
            continue
        if flt == FILTER_ALL or st.value == flt:
            out.append(svc)
    return out
