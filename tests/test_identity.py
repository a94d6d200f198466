"""Tests for worker naming and labels."""

from datetime import datetime, timedelta, timezone

import pytest

from runner_fleet.identity import (
    WorkerIdentity,
    format_slot,
    format_timestamp,
    name_prefix,
    worker_labels,
)


class TestFormatting:
    """Slot and timestamp formatting."""

    @pytest.mark.parametrize("slot,expected", [(1, '01'), (9, '09'), (10, '10'), (123, '123')])
    def test_slot_is_zero_padded(self, slot, expected) -> None:
        assert format_slot(slot) == expected

    def test_slot_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            format_slot(0)

    def test_timestamp_is_utc(self) -> None:
        moment = datetime(2025, 1, 1, 14, 30, 5, tzinfo=timezone(timedelta(hours=2)))
        assert format_timestamp(moment) == '20250101T123005'

    def test_timestamp_defaults_to_now(self) -> None:
        stamp = format_timestamp()
        assert len(stamp) == 15
        assert stamp[8] == 'T'

    def test_prefix(self) -> None:
        assert name_prefix('api', 'prod') == 'runner-api-prod-slot'


class TestWorkerIdentity:
    """Composed identity of one worker."""

    def test_composed_name(self) -> None:
        identity = WorkerIdentity.create('api', 'prod', 7, datetime(2025, 3, 4, 5, 6, 7, tzinfo=timezone.utc))

        assert identity.slot == '07'
        assert identity.timestamp == '20250304T050607'
        assert identity.composed_name == 'runner-api-prod-slot07-20250304T050607'

    def test_labels(self) -> None:
        identity = WorkerIdentity('api', 'prod', '02', '20250101T000000')
        assert identity.labels == ('self-hosted', 'api', 'prod', 'slot-02')

    def test_labels_deduplicated(self) -> None:
        identity = WorkerIdentity('self-hosted', 'self-hosted', '01', '20250101T000000')
        assert identity.labels == ('self-hosted', 'slot-01')

    def test_worker_labels_keep_order(self) -> None:
        assert worker_labels([' b', 'a', '', 'b', 'c ']) == ('b', 'a', 'c')
