"""
Tests for Notification Derivation - the pure key/window/merge functions.

These tests verify:
1. IDENTITY: One key per (complaint, status); a status change is a new key
2. WINDOW: Only the newest complaints are considered, before cleared filtering
3. MERGE: Existing entries survive verbatim; new ones take read state from the ledger
4. DISPLAY TIME: Transition time by default, filing time on request
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4
from zoneinfo import ZoneInfo

import pytest

from sarana_care.models import ComplaintStatus
from sarana_care.services.notifications import (
    InvalidNotificationKeyError,
    NotificationKind,
    build_notification,
    derive_candidates,
    event_time,
    format_display_time,
    merge_notifications,
    notification_key,
    parse_notification_key,
)

from factories import BASE_TIME, advance, make_complaint, newest_first


JAKARTA = ZoneInfo("Asia/Jakarta")


# =============================================================================
# TEST: IDENTITY KEYS
# =============================================================================


class TestNotificationKey:
    """Tests for notif-{complaint_id}-{status} keys."""

    def test_key_format(self):
        complaint_id = uuid4()
        key = notification_key(complaint_id, ComplaintStatus.IN_PROGRESS)
        assert key == f"notif-{complaint_id}-in_progress"

    def test_key_accepts_plain_status_string(self):
        complaint_id = uuid4()
        assert notification_key(complaint_id, "done") == notification_key(
            complaint_id, ComplaintStatus.DONE
        )

    def test_status_change_yields_new_key(self):
        complaint_id = uuid4()
        pending = notification_key(complaint_id, ComplaintStatus.PENDING)
        in_progress = notification_key(complaint_id, ComplaintStatus.IN_PROGRESS)
        assert pending != in_progress

    def test_parse_recovers_parts(self):
        complaint_id = uuid4()
        key = notification_key(complaint_id, ComplaintStatus.IN_PROGRESS)
        assert parse_notification_key(key) == (complaint_id, ComplaintStatus.IN_PROGRESS)

    @pytest.mark.parametrize(
        "key",
        ["", "notif-", "alert-123-pending", "notif-not-a-uuid-pending", f"notif-{uuid4()}-closed"],
    )
    def test_parse_rejects_malformed(self, key):
        with pytest.raises(InvalidNotificationKeyError):
            parse_notification_key(key)


# =============================================================================
# TEST: CANDIDATE DERIVATION
# =============================================================================


class TestDeriveCandidates:
    """Tests for the newest-K window and cleared filtering."""

    def test_takes_newest_five(self):
        complaints = newest_first(8)
        candidates = derive_candidates(complaints, cleared_keys=set(), window=5)

        assert len(candidates) == 5
        assert [c.complaint.id for c in candidates] == [c.id for c in complaints[:5]]

    def test_cleared_keys_are_dropped(self):
        complaints = newest_first(3)
        cleared = {notification_key(complaints[1].id, ComplaintStatus.PENDING)}

        candidates = derive_candidates(complaints, cleared)

        assert [c.complaint.id for c in candidates] == [complaints[0].id, complaints[2].id]

    def test_clearing_does_not_pull_in_older_complaints(self):
        """The window is taken before the cleared filter."""
        complaints = newest_first(6)
        cleared = {notification_key(c.id, c.current_status) for c in complaints[:2]}

        candidates = derive_candidates(complaints, cleared, window=5)

        assert len(candidates) == 3
        assert complaints[5].id not in {c.complaint.id for c in candidates}

    def test_cleared_key_stays_excluded_after_more_filings(self):
        complaints = newest_first(2)
        cleared = {notification_key(complaints[0].id, ComplaintStatus.PENDING)}

        newer = [make_complaint(created_at=BASE_TIME + timedelta(hours=1)), *complaints]
        for fetch in (complaints, complaints, newer):
            keys = {c.key for c in derive_candidates(fetch, cleared)}
            assert not keys & cleared

    def test_cleared_status_does_not_block_next_status(self):
        complaint = make_complaint()
        cleared = {notification_key(complaint.id, ComplaintStatus.IN_PROGRESS)}

        moved = advance(complaint, ComplaintStatus.DONE, BASE_TIME + timedelta(hours=2))
        candidates = derive_candidates([moved], cleared)

        assert [c.key for c in candidates] == [notification_key(complaint.id, ComplaintStatus.DONE)]

    def test_empty_list(self):
        assert derive_candidates([], set()) == []


# =============================================================================
# TEST: MERGE
# =============================================================================


class TestMergeNotifications:
    """Tests for the preserve-existing merge rule."""

    def test_new_pending_complaint_is_new_report(self):
        complaint = make_complaint(title="Leaking sink")
        merged = merge_notifications({}, derive_candidates([complaint], set()), set())

        (notification,) = merged.values()
        assert notification.kind == NotificationKind.NEW_REPORT
        assert notification.title == "New Report"
        assert notification.message == 'Report "Leaking sink" has been received.'
        assert notification.is_read is False

    def test_status_change_names_new_status(self):
        complaint = advance(
            make_complaint(title="Leaking sink"),
            ComplaintStatus.IN_PROGRESS,
            BASE_TIME + timedelta(hours=1),
        )
        merged = merge_notifications({}, derive_candidates([complaint], set()), set())

        (notification,) = merged.values()
        assert notification.kind == NotificationKind.STATUS_CHANGE
        assert notification.title == "Status Update"
        assert "IN_PROGRESS" in notification.message
        assert "Leaking sink" in notification.message

    def test_read_flag_seeded_from_ledger(self):
        complaint = make_complaint()
        key = notification_key(complaint.id, complaint.current_status)

        merged = merge_notifications({}, derive_candidates([complaint], set()), {key})

        assert merged[key].is_read is True

    def test_existing_entry_kept_verbatim(self):
        complaint = make_complaint()
        candidates = derive_candidates([complaint], set())
        first = merge_notifications({}, candidates, set())
        key = candidates[0].key
        first[key] = first[key].mark_read()

        # Same key again, ledger says unread: the in-memory entry wins
        second = merge_notifications(first, derive_candidates([complaint], set()), set())

        assert second[key] is first[key]
        assert second[key].is_read is True

    def test_read_state_survives_repeated_cycles(self):
        complaints = newest_first(3)
        visible = merge_notifications({}, derive_candidates(complaints, set()), set())
        key = next(iter(visible))
        visible[key] = visible[key].mark_read()

        for _ in range(5):
            visible = merge_notifications(visible, derive_candidates(complaints, set()), set())

        assert visible[key].is_read is True

    def test_old_status_key_drops_out(self):
        complaint = make_complaint()
        visible = merge_notifications({}, derive_candidates([complaint], set()), set())
        old_key = notification_key(complaint.id, ComplaintStatus.PENDING)

        moved = advance(complaint, ComplaintStatus.IN_PROGRESS, BASE_TIME + timedelta(hours=1))
        visible = merge_notifications(visible, derive_candidates([moved], set()), set())

        assert old_key not in visible
        assert list(visible) == [notification_key(complaint.id, ComplaintStatus.IN_PROGRESS)]

    def test_order_follows_candidates(self):
        complaints = newest_first(4)
        visible = merge_notifications({}, derive_candidates(complaints, set()), set())
        assert [n.complaint_id for n in visible.values()] == [c.id for c in complaints]


# =============================================================================
# TEST: DISPLAY TIME
# =============================================================================


class TestDisplayTime:
    """Tests for which timestamp a notification shows."""

    def test_pending_uses_filing_time(self):
        complaint = make_complaint(created_at=BASE_TIME)
        assert event_time(complaint) == BASE_TIME

    def test_transition_source_uses_transition_time(self):
        changed_at = BASE_TIME + timedelta(hours=3, minutes=15)
        complaint = advance(make_complaint(), ComplaintStatus.IN_PROGRESS, changed_at)

        assert event_time(complaint, "transition") == changed_at

    def test_filed_source_keeps_filing_time(self):
        changed_at = BASE_TIME + timedelta(hours=3)
        complaint = advance(make_complaint(), ComplaintStatus.IN_PROGRESS, changed_at)

        assert event_time(complaint, "filed") == BASE_TIME

    def test_transition_source_picks_latest_matching_entry(self):
        complaint = make_complaint(
            status=ComplaintStatus.DONE,
            transitions=[
                (ComplaintStatus.IN_PROGRESS, BASE_TIME + timedelta(hours=1)),
                (ComplaintStatus.DONE, BASE_TIME + timedelta(hours=5)),
            ],
        )
        assert event_time(complaint) == BASE_TIME + timedelta(hours=5)

    def test_formats_in_display_timezone(self):
        # 01:00 UTC is 08:00 in Jakarta
        assert format_display_time(BASE_TIME, JAKARTA) == "08:00"

    def test_naive_timestamps_treated_as_utc(self):
        naive = datetime(2024, 3, 1, 1, 30)
        assert format_display_time(naive, JAKARTA) == "08:30"

    def test_built_notification_carries_display_time(self):
        changed_at = datetime(2024, 3, 1, 6, 45, tzinfo=timezone.utc)
        complaint = advance(make_complaint(), ComplaintStatus.IN_PROGRESS, changed_at)
        (candidate,) = derive_candidates([complaint], set())

        notification = build_notification(candidate, tz=JAKARTA)

        assert notification.time == "13:45"
        assert notification.event_at == changed_at
