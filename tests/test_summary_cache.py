"""Unit tests for SummaryCache and fingerprints."""
import threading
from dataclasses import replace
from datetime import timedelta

import pytest

from processor.models import EventStatus, to_public_event
from summary.cache import SummaryCache, fingerprint


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TestFingerprint:
    """Test cases for cache keys."""

    def test_same_fields_same_fingerprint(self, make_record, fixed_now):
        record = make_record(status=EventStatus.PUBLISHED, event_id='a')
        other = replace(
            record,
            id='b',
            status=EventStatus.CANCELLED,
            internal_notes='private'
        )

        assert fingerprint(to_public_event(record, fixed_now)) == fingerprint(
            to_public_event(other, fixed_now)
        )

    def test_record_and_projection_share_fingerprint(self, make_record, fixed_now):
        record = make_record(status=EventStatus.PUBLISHED)

        assert fingerprint(record) == fingerprint(to_public_event(record, fixed_now))

    @pytest.mark.parametrize('change', [
        {'title': 'Another title'},
        {'location': 'Elsewhere'},
        {'start_at_shift': timedelta(minutes=1)},
        {'end_at_shift': timedelta(minutes=1)},
    ])
    def test_hashed_field_change_changes_fingerprint(self, make_record, change):
        record = make_record(status=EventStatus.PUBLISHED)
        if 'start_at_shift' in change:
            other = replace(record, start_at=record.start_at + change['start_at_shift'])
        elif 'end_at_shift' in change:
            other = replace(record, end_at=record.end_at + change['end_at_shift'])
        else:
            other = replace(record, **change)

        assert fingerprint(record) != fingerprint(other)

    def test_field_order_is_pinned(self, make_record):
        """Test that swapping title and location values changes the key."""
        record = make_record(title='Alpha', location='Beta')
        swapped = replace(record, title='Beta', location='Alpha')

        assert fingerprint(record) != fingerprint(swapped)

    def test_fingerprint_is_sha256_hex(self, make_record):
        key = fingerprint(make_record())

        assert len(key) == 64
        int(key, 16)


class TestSummaryCache:
    """Test cases for SummaryCache."""

    def test_get_missing(self):
        cache = SummaryCache()

        assert cache.get('nope') is None

    def test_set_then_get(self):
        cache = SummaryCache()

        cache.set('k', 'summary text')

        assert cache.get('k') == 'summary text'
        assert 'k' in cache

    def test_set_overwrites(self):
        cache = SummaryCache()
        cache.set('k', 'old')
        cache.set('k', 'new')

        assert cache.get('k') == 'new'

    def test_entry_expires_after_ttl(self):
        """Test lazy expiry: an old entry is evicted on read."""
        clock = FakeClock()
        cache = SummaryCache(ttl_seconds=3600, clock=clock)
        cache.set('k', 'summary')

        clock.advance(3600)
        assert cache.get('k') == 'summary'

        clock.advance(1)
        assert cache.get('k') is None
        assert 'k' not in cache

    def test_expired_entry_stays_until_read(self):
        clock = FakeClock()
        cache = SummaryCache(ttl_seconds=10, clock=clock)
        cache.set('k', 'summary')
        clock.advance(60)

        assert cache.stats()['size'] == 1

    def test_invalidate(self):
        cache = SummaryCache()
        cache.set('k', 'summary')

        assert cache.invalidate('k') is True
        assert cache.get('k') is None
        assert cache.invalidate('k') is False

    def test_write_after_invalidate_is_discarded(self):
        """Test that a summary read at an older generation is not stored."""
        cache = SummaryCache()
        generation = cache.generation('k')

        cache.invalidate('k')

        assert cache.set('k', 'stale summary', generation=generation) is False
        assert cache.get('k') is None
        assert cache.set('k', 'fresh', generation=cache.generation('k')) is True
        assert cache.get('k') == 'fresh'

    def test_unconditional_set_ignores_generation(self):
        cache = SummaryCache()
        cache.invalidate('k')

        assert cache.set('k', 'summary') is True

    def test_stats_counts_hits_and_misses(self):
        cache = SummaryCache()
        cache.set('k', 'summary')

        cache.get('k')
        cache.get('other')

        assert cache.stats() == {'size': 1, 'hits': 1, 'misses': 1}

    def test_clear(self):
        cache = SummaryCache()
        cache.set('a', '1')
        cache.set('b', '2')

        cache.clear()

        assert cache.stats()['size'] == 0

    def test_invalid_ttl(self):
        with pytest.raises(ValueError):
            SummaryCache(ttl_seconds=0)

    def test_concurrent_access(self):
        """Test that parallel writers and readers see whole entries."""
        cache = SummaryCache()
        errors = []

        def worker(n):
            for i in range(200):
                key = f'key-{i % 10}'
                cache.set(key, f'value-{n}-{i}')
                value = cache.get(key)
                if value is not None and not value.startswith('value-'):
                    errors.append(value)
                if i % 7 == 0:
                    cache.invalidate(key)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert cache.stats()['size'] <= 10
