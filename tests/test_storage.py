"""
Unit tests for the JSON settings store.
"""
import json
import shutil
import tempfile
import unittest
from pathlib import Path

from kanjiquiz.storage import SettingsStore


class TestSettingsStore(unittest.TestCase):
    """Test cases for SettingsStore persistence."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.path = Path(self.temp_dir) / "storage.json"

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_load_creates_missing_file(self):
        store = SettingsStore(str(self.path))
        store.load()
        self.assertTrue(self.path.exists())
        self.assertEqual(store.get("output"), "")

    def test_put_writes_immediately(self):
        store = SettingsStore(str(self.path))
        store.load()
        store.put("output", 12345)

        with open(self.path, encoding="utf-8") as f:
            self.assertEqual(json.load(f), {"output": "12345"})

    def test_values_survive_reload(self):
        store = SettingsStore(str(self.path))
        store.put("output", "42")

        reloaded = SettingsStore(str(self.path))
        reloaded.load()
        self.assertEqual(reloaded.get("output"), "42")

    def test_corrupt_file_is_logged(self):
        self.path.write_text("{ nope", encoding="utf-8")
        store = SettingsStore(str(self.path))
        with self.assertLogs('kanjiquiz.storage', level='ERROR'):
            store.load()
        self.assertEqual(store.get("output"), "")

    def test_non_object_file_is_ignored(self):
        self.path.write_text("[1, 2]", encoding="utf-8")
        store = SettingsStore(str(self.path))
        with self.assertLogs('kanjiquiz.storage', level='ERROR'):
            store.load()
        self.assertEqual(store.get("anything"), "")


if __name__ == '__main__':
    unittest.main()
