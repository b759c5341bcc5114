import os
import unittest
from unittest.mock import patch

from projectstore.config import Settings
from projectstore.db import InMemoryProjectStore, PostgresProjectStore
from projectstore.dependencies import get_project_store, reset_project_store


def _settings(**overrides):
    return Settings(_env_file=None, **overrides)


class GetProjectStoreTests(unittest.TestCase):
    def tearDown(self):
        reset_project_store()

    @patch("projectstore.dependencies.get_settings")
    def test_in_memory_without_database_url(self, mock_settings):
        mock_settings.return_value = _settings(database_url=None)
        store = get_project_store()
        self.assertIsInstance(store, InMemoryProjectStore)
        self.assertIs(get_project_store(), store)

    @patch("projectstore.dependencies.get_settings")
    def test_in_memory_toggle_wins_over_database_url(self, mock_settings):
        mock_settings.return_value = _settings(
            database_url="sqlite+pysqlite:///:memory:", use_in_memory_backends=True
        )
        self.assertIsInstance(get_project_store(), InMemoryProjectStore)

    @patch("projectstore.dependencies.get_settings")
    def test_relational_store_with_schema(self, mock_settings):
        mock_settings.return_value = _settings(
            database_url="sqlite+pysqlite:///:memory:", auto_create_schema=True
        )
        store = get_project_store()
        self.assertIsInstance(store, PostgresProjectStore)

        project = store.insert_project("Alpha")
        self.assertEqual(store.list_projects(), [project])

    @patch("projectstore.dependencies.get_settings")
    def test_reset_forgets_singleton(self, mock_settings):
        mock_settings.return_value = _settings()
        first = get_project_store()
        reset_project_store()
        self.assertIsNot(get_project_store(), first)


class SettingsTests(unittest.TestCase):
    def test_reads_environment(self):
        env = {
            "DATABASE_URL": "postgresql://localhost/projects",
            "POOL_SIZE": "7",
            "STATEMENT_TIMEOUT_MS": "1500",
            "USE_IN_MEMORY_BACKENDS": "true",
        }
        with patch.dict(os.environ, env):
            settings = _settings()
        self.assertEqual(settings.database_url, "postgresql://localhost/projects")
        self.assertEqual(settings.pool_size, 7)
        self.assertEqual(settings.statement_timeout_ms, 1500)
        self.assertTrue(settings.use_in_memory_backends)

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = _settings()
        self.assertIsNone(settings.database_url)
        self.assertFalse(settings.use_in_memory_backends)
        self.assertFalse(settings.auto_create_schema)
        self.assertIsNone(settings.statement_timeout_ms)


if __name__ == "__main__":
    unittest.main()
