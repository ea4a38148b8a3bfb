# tests/unit/runtime/test_monitor.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

import time
import unittest
from threading import Thread

from formsync.runtime.monitor import EngineMonitor


class TestEngineMonitor(unittest.TestCase):
    """Test cases for EngineMonitor class.

    Tests verify:
    1. Metric updates
    2. Event tracking and queries
    3. History limit
    4. Thread safety
    """

    def setUp(self):
        """Set up test fixtures."""
        self.monitor = EngineMonitor()

    def test_initial_state(self):
        self.assertEqual(self.monitor.metrics, {})
        self.assertEqual(self.monitor.history, [])
        self.assertEqual(self.monitor.get_metric("suite_invoked"), 0)

    def test_track_counts_and_records(self):
        """Test event tracking.

        Verifies:
        1. Each event increments its metric
        2. History stores path and details
        3. Returned history is a copy
        """
        self.monitor.track("suite_invoked", "a", generation=1)
        self.monitor.track("suite_invoked", "b", generation=1)
        self.monitor.track("stale_discarded", "a", generation=2)
        self.assertEqual(self.monitor.get_metric("suite_invoked"), 2)
        self.assertEqual(self.monitor.history[0]["generation"], 1)
        self.monitor.history.clear()
        self.assertEqual(len(self.monitor.history), 3)

    def test_query_events(self):
        start = time.monotonic()
        self.monitor.track("suite_invoked", "a")
        self.monitor.track("suite_invoked", "b")
        self.monitor.track("root_invoked", "rootForm")
        self.assertEqual(len(self.monitor.query_events("suite_invoked")), 2)
        self.assertEqual([e["path"] for e in self.monitor.query_events(path="b")], ["b"])
        self.assertEqual(len(self.monitor.query_events(start_time=start)), 3)
        self.assertEqual(self.monitor.query_events(start_time=time.monotonic() + 10), [])

    def test_history_limit(self):
        monitor = EngineMonitor(history_limit=2)
        for index in range(5):
            monitor.track("e", str(index))
        self.assertEqual([e["path"] for e in monitor.history], ["3", "4"])
        self.assertEqual(monitor.get_metric("e"), 5)
        with self.assertRaises(ValueError):
            EngineMonitor(history_limit=0)

    def test_reset(self):
        self.monitor.track("e")
        self.monitor.reset()
        self.assertEqual(self.monitor.metrics, {})
        self.assertEqual(self.monitor.history, [])

    def test_concurrent_updates(self):
        """Test metrics under concurrent updates.

        Verifies:
        1. No lost updates
        """
        def worker():
            for _ in range(100):
                self.monitor.update_metric("hits", 1)

        threads = [Thread(target=worker) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(self.monitor.get_metric("hits"), 1000)
