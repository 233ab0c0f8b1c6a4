"""
Tests for the tracked-auctions store.
"""

import json
import os
import sys
import tempfile
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from bidstream.data.storage import LocalStorage, TRACKED_KEY
from bidstream.tracking.store import TrackingStore


class TestTrackingStore(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self._tmp.name, "storage.json")
        self.store = TrackingStore(LocalStorage(self.path))

    def tearDown(self):
        self._tmp.cleanup()

    def reopen(self):
        """Simulate a restart."""
        return TrackingStore(LocalStorage(self.path))

    def test_track_survives_restart(self):
        self.store.track(7)

        restarted = self.reopen()
        self.assertTrue(restarted.is_tracked(7))
        self.assertTrue(restarted.get(7).notifications_enabled)

    def test_untrack_survives_restart(self):
        self.store.track(7)
        self.assertTrue(self.store.untrack(7))

        self.assertFalse(self.reopen().is_tracked(7))
        self.assertFalse(self.store.untrack(7))

    def test_track_accepts_auction_dict(self):
        self.store.track({"id": "12", "title": "Genesis"})
        self.assertIn(12, self.store)

    def test_track_twice_keeps_settings(self):
        self.store.track(7)
        self.store.set_notifications(7, False)
        self.store.track(7)

        self.assertEqual(len(self.store), 1)
        self.assertFalse(self.store.get(7).notifications_enabled)

    def test_toggle(self):
        self.assertTrue(self.store.toggle(3))
        self.assertTrue(self.store.is_tracked(3))
        self.assertFalse(self.store.toggle(3))
        self.assertFalse(self.store.is_tracked(3))

    def test_notifications(self):
        self.store.track(1)
        self.store.track(2)
        self.assertTrue(self.store.set_notifications(2, False))
        self.assertFalse(self.store.set_notifications(99, False))

        self.assertEqual(self.store.notified_ids(), [1])
        self.assertEqual(self.reopen().notified_ids(), [1])

    def test_stored_format(self):
        self.store.track(7)
        with open(self.path) as f:
            data = json.load(f)
        self.assertEqual(data[TRACKED_KEY], [{"id": 7, "notificationsEnabled": True}])

    def test_corrupt_value_loads_empty(self):
        LocalStorage(self.path).save(TRACKED_KEY, "not-a-list")

        restarted = self.reopen()
        self.assertEqual(len(restarted), 0)
        self.assertNotIn(TRACKED_KEY, LocalStorage(self.path))

    def test_corrupt_file_loads_empty(self):
        with open(self.path, "w") as f:
            f.write("{ definitely not json")

        restarted = self.reopen()
        self.assertEqual(len(restarted), 0)

        restarted.track(5)
        self.assertTrue(self.reopen().is_tracked(5))

    def test_clear(self):
        self.store.track(1)
        self.store.track(2)
        self.store.clear()

        self.assertEqual(len(self.reopen()), 0)
        self.assertEqual(self.store.summary()['tracked'], 0)


if __name__ == '__main__':
    unittest.main()
