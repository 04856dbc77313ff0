"""Update target resolution for a single service."""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from .backend import ApiError, DockrevApi
from .model import CandidateOption
from .update_status import tag_series_matches

logger = logging.getLogger(__name__)

# Resolved tag when no option is usable.
NO_TARGET = "-"


@dataclass(frozen=True)
class SelectedTarget:
    tag: str
    digest: Optional[str] = None


def is_selectable(opt: CandidateOption) -> bool:
    if not opt.digest:
        return False
    if opt.ignored:
        return False
    if opt.arch_match == "mismatch":
        return False
    return True


class TargetResolver:
    """
    Picks the tag an update should apply for one service.

    The default prefers the first selectable option in the same tag series as
    the current tag, then the first selectable option, then the initial tag
    hint, then NO_TARGET. An explicit select() overrides the default for as
    long as the option set keeps offering that tag.

    on_change receives a SelectedTarget each time the resolved value changes,
    including the first default. It is never called while options are
    loading or when no option is selectable.
    """

    def __init__(self, current_tag: str, on_change: Callable[[SelectedTarget], None],
                 initial_tag: Optional[str] = None, initial_digest: Optional[str] = None):
        self.current_tag = current_tag
        self.initial_tag = initial_tag
        self.initial_digest = initial_digest
        self._on_change = on_change
        self.options: Optional[List[CandidateOption]] = None
        self.error: Optional[str] = None
        self._selected_tag: Optional[str] = None
        self._last_reported: Optional[SelectedTarget] = None

    @property
    def loading(self) -> bool:
        return self.options is None

    @property
    def selectable(self) -> List[CandidateOption]:
        return [o for o in self.options or [] if is_selectable(o)]

    @property
    def select_disabled(self) -> bool:
        return len(self.selectable) <= 1

    @property
    def default_tag(self) -> str:
        if self.options is None:
            return self.initial_tag or NO_TARGET
        selectable = self.selectable
        preferred = next(
            (o for o in selectable if tag_series_matches(self.current_tag, o.tag) is True),
            None,
        )
        base = preferred or (selectable[0] if selectable else None)
        if base is not None:
            return base.tag
        return self.initial_tag or NO_TARGET

    @property
    def effective_tag(self) -> str:
        if self.options is None:
            return self.default_tag
        if self._selected_tag and self._find(self._selected_tag, selectable_only=True):
            return self._selected_tag
        return self.default_tag

    @property
    def effective_digest(self) -> Optional[str]:
        if self.options is None:
            return self.initial_digest
        hit = self._find(self.effective_tag)
        if hit is not None and hit.digest:
            return hit.digest
        return self.initial_digest

    @property
    def target(self) -> SelectedTarget:
        return SelectedTarget(self.effective_tag, self.effective_digest)

    def _find(self, tag: str, selectable_only: bool = False) -> Optional[CandidateOption]:
        for o in self.options or []:
            if o.tag == tag and (not selectable_only or is_selectable(o)):
                return o
        return None

    def set_options(self, options: List[CandidateOption]) -> None:
        self.options = list(options)
        self.error = None
        if self._selected_tag and not self._find(self._selected_tag, selectable_only=True):
            logger.debug(f"Dropping stale target override {self._selected_tag}")
            self._selected_tag = None
        self._report()

    def set_error(self, message: str) -> None:
        self.error = message
        self.options = []
        self._selected_tag = None
        self._report()

    async def load(self, api: DockrevApi, service_id: str) -> None:
        try:
            options = await api.list_service_candidates(service_id)
        except ApiError as e:
            logger.warning(f"Candidate list for {service_id} unavailable: {e.message}")
            self.set_error(e.message)
            return
        self.set_options(options)

    def select(self, tag: str) -> bool:
        """Override the default target; refused for tags that are not selectable."""
        if self.options is None or not self._find(tag, selectable_only=True):
            logger.warning(f"Refusing non-selectable target tag {tag}")
            return False
        self._selected_tag = tag
        self._report()
        return True

    def _report(self) -> None:
        if self.options is None or not self.selectable:
            return
        target = self.target
        if target == self._last_reported:
            return
        self._last_reported = target
        self._on_change(target)

    def option_label(self, opt: CandidateOption) -> str:
        series = tag_series_matches(self.current_tag, opt.tag)
        prefix = "✓ " if series is True else "· " if series is False else "? "
        if opt.ignored:
            suffix = " (ignored)"
        elif opt.arch_match == "mismatch":
            suffix = " (arch mismatch)"
        elif not opt.digest:
            suffix = " (no digest)"
        else:
            suffix = ""
        return f"{prefix}{opt.tag}{suffix}"
