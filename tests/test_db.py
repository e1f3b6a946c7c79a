import os
import unittest
from unittest.mock import patch

from db import _SQLITE_FALLBACK_URL, sqlalchemy_url

DB_VARS = ("DATABASE_URL", "INSTANCE_CONNECTION_NAME", "DB_USER", "DB_PASS", "DB_PASSWORD", "DB_NAME", "DB_HOST", "DB_PORT")


def _env(**values):
    env = {k: v for k, v in os.environ.items() if k not in DB_VARS}
    env.update(values)
    return patch.dict(os.environ, env, clear=True)


class SqlalchemyUrlTests(unittest.TestCase):
    def test_database_url_is_used_for_any_driver(self):
        with _env(DATABASE_URL="postgresql+pg8000://app:pw@db:5432/portal"):
            self.assertEqual(sqlalchemy_url(), "postgresql+pg8000://app:pw@db:5432/portal")

    def test_tcp_parts_build_a_psycopg2_url(self):
        with _env(DB_USER="app", DB_PASS="pw", DB_NAME="portal", DB_HOST="db", DB_PORT="6432"):
            url = sqlalchemy_url()
        self.assertEqual(url.drivername, "postgresql+psycopg2")
        self.assertEqual((url.host, url.port, url.database), ("db", 6432, "portal"))

    def test_nothing_configured_falls_back_to_sqlite(self):
        with _env():
            self.assertEqual(sqlalchemy_url(), _SQLITE_FALLBACK_URL)


if __name__ == "__main__":
    unittest.main()
