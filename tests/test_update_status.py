import pytest

from dockrevui.model import (
    BackupTargetOverrides,
    CandidateInfo,
    IgnoreOutcome,
    ImageInfo,
    ServiceInfo,
    ServiceSettings,
)
from dockrevui.update_status import (
    RowStatus,
    TagSeries,
    count_statuses,
    effective_current_tag,
    filter_services,
    note_for,
    parse_tag_series,
    service_row_status,
    status_tone,
    tag_series_matches,
)


def make_service(tag="5.2.1", candidate_tag="5.2.3", arch_match="match", ignored=False,
                 resolved_tag=None, no_candidate=False, name="web"):
    return ServiceInfo(
        id=f"svc_{name}",
        name=name,
        image=ImageInfo(ref="ghcr.io/acme/web", tag=tag, resolved_tag=resolved_tag),
        candidate=None if no_candidate else CandidateInfo(
            tag=candidate_tag, digest="sha256:abc", arch_match=arch_match, arch=["linux/amd64"]
        ),
        ignore=IgnoreOutcome(matched=True, rule_id="r1", reason="pinned by ops") if ignored else None,
    )


class TestParseTagSeries:
    @pytest.mark.parametrize("tag,expected", [
        ("16", TagSeries(16, None, 1)),
        ("5.2", TagSeries(5, 2, 2)),
        ("v5.2.1", TagSeries(5, 2, 1 + 2)),
        ("1.25.3-alpine", TagSeries(1, 25, 3)),
        ("2.0.0+build.7", TagSeries(2, 0, 3)),
        (" 3.1 ", TagSeries(3, 1, 2)),
    ])
    def test_valid_tags(self, tag, expected):
        assert parse_tag_series(tag) == expected

    @pytest.mark.parametrize("tag", ["", "v", "latest", "abc", "1.2.3.4", "1..2", "x1.2", "-1", "1.a"])
    def test_unparseable_tags(self, tag):
        assert parse_tag_series(tag) is None


class TestTagSeriesMatches:
    def test_major_only_tag_ignores_minor(self):
        assert tag_series_matches("16", "18.1") is False
        assert tag_series_matches("16", "16.4") is True

    def test_minor_must_match_for_longer_tags(self):
        assert tag_series_matches("5.2", "5.3") is False
        assert tag_series_matches("5.2.1", "5.2.3") is True

    def test_unparseable_is_unknown(self):
        assert tag_series_matches("abc", "1.0") is None
        assert tag_series_matches("1.0", "latest") is None


class TestServiceRowStatus:
    def test_same_series_match_is_updatable(self):
        assert service_row_status(make_service("5.2.1", "5.2.3")) == RowStatus.UPDATABLE

    def test_major_alias_is_updatable(self):
        assert service_row_status(make_service("16", "16.4")) == RowStatus.UPDATABLE

    def test_arch_mismatch_wins_over_tag_relationship(self):
        svc = make_service("2.49.0", "3.0.0", arch_match="mismatch")
        assert service_row_status(svc) == RowStatus.ARCH_MISMATCH

    def test_ignore_wins_over_perfect_candidate(self):
        svc = make_service("5.2.1", "5.2.3", ignored=True)
        assert service_row_status(svc) == RowStatus.BLOCKED

    def test_ignore_wins_over_arch_mismatch(self):
        svc = make_service(arch_match="mismatch", ignored=True)
        assert service_row_status(svc) == RowStatus.BLOCKED

    def test_no_candidate_is_ok(self):
        assert service_row_status(make_service(no_candidate=True)) == RowStatus.OK

    def test_cross_series_is_cross_tag(self):
        assert service_row_status(make_service("5.2.1", "5.3.0")) == RowStatus.CROSS_TAG

    def test_cross_tag_wins_over_unknown_arch(self):
        svc = make_service("5.2.1", "6.0.0", arch_match="unknown")
        assert service_row_status(svc) == RowStatus.CROSS_TAG

    def test_unknown_arch_is_hint(self):
        svc = make_service("5.2.1", "5.2.3", arch_match="unknown")
        assert service_row_status(svc) == RowStatus.HINT

    def test_unparseable_tag_is_hint(self):
        assert service_row_status(make_service("latest", "5.2.3")) == RowStatus.HINT

    def test_resolved_tag_takes_precedence(self):
        # "latest" resolves to 5.2.1, so 5.2.3 is a same-series update.
        svc = make_service("latest", "5.2.3", resolved_tag="5.2.1")
        assert service_row_status(svc) == RowStatus.UPDATABLE
        svc = make_service("latest", "5.3.0", resolved_tag="5.2.1")
        assert service_row_status(svc) == RowStatus.CROSS_TAG

    def test_empty_resolved_tag_is_not_replaced(self):
        # An empty resolved tag is a value, not a missing one.
        svc = make_service("5.2.1", "5.2.3", resolved_tag="")
        assert effective_current_tag(svc) == ""
        assert service_row_status(svc) == RowStatus.HINT
        assert effective_current_tag(make_service("5.2.1")) == "5.2.1"

    def test_unmatched_ignore_does_not_block(self):
        svc = make_service()
        svc.ignore = IgnoreOutcome(matched=False)
        assert service_row_status(svc) == RowStatus.UPDATABLE

    def test_loaded_from_partial_json(self):
        svc = ServiceInfo.from_dict({
            "id": "svc_1",
            "name": "db",
            "image": {"ref": "postgres", "tag": "16"},
            "candidate": {"tag": "16.4", "digest": "sha256:1", "archMatch": "weird"},
        })
        assert svc.candidate.arch_match == "unknown"
        assert service_row_status(svc) == RowStatus.HINT


class TestNotesAndFilters:
    def test_notes(self):
        assert note_for(make_service(ignored=True), RowStatus.BLOCKED) == "pinned by ops"
        hint = make_service(arch_match="unknown")
        assert note_for(hint, RowStatus.HINT) == "arch unknown"
        assert note_for(make_service("latest"), RowStatus.HINT) == "tag relationship uncertain"
        assert note_for(make_service(no_candidate=True), RowStatus.OK) == "-"

    def test_updatable_note_mentions_forced_backup(self):
        svc = make_service()
        assert note_for(svc, RowStatus.UPDATABLE) == "follows current tag series"
        svc.settings = ServiceSettings(
            backup_targets=BackupTargetOverrides(volume_names={"pgdata": "force"})
        )
        assert note_for(svc, RowStatus.UPDATABLE) == "runs after backup succeeds"

    def test_tones(self):
        assert status_tone(RowStatus.UPDATABLE) == "ok"
        assert status_tone(RowStatus.CROSS_TAG) == "warn"
        assert status_tone(RowStatus.BLOCKED) == "bad"
        assert status_tone(RowStatus.OK) == "muted"

    def test_count_and_filter(self):
        services = [
            make_service(name="a"),
            make_service("5.2.1", "5.3.0", name="b"),
            make_service(arch_match="mismatch", name="c"),
            make_service(no_candidate=True, name="d"),
            make_service(name="e"),
        ]
        counts = count_statuses(services)
        assert counts[RowStatus.UPDATABLE] == 2
        assert counts[RowStatus.CROSS_TAG] == 1
        assert counts[RowStatus.ARCH_MISMATCH] == 1
        assert RowStatus.OK not in counts

        assert [s.name for s in filter_services(services)] == ["a", "b", "c", "e"]
        assert [s.name for s in filter_services(services, "crossTag")] == ["b"]

    def test_unknown_filter_rejected(self):
        with pytest.raises(ValueError):
            filter_services([], "ok")
