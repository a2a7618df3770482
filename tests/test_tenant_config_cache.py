from __future__ import annotations

import unittest

from fieldops.services.cache import TTLCache
from fieldops.services.tenant_config import get_clock_config, get_clock_config_cache, update_clock_config

from factories import make_session, seed_site


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TTLCacheTests(unittest.TestCase):
    def test_entry_expires_after_ttl(self) -> None:
        clock = _Clock()
        cache: TTLCache[int, str] = TTLCache(10, clock=clock)
        cache.set(1, "a")
        clock.now = 9.9
        self.assertEqual(cache.get(1), "a")
        clock.now = 10.0
        self.assertIsNone(cache.get(1))

    def test_invalidate_removes_entry(self) -> None:
        cache: TTLCache[int, str] = TTLCache(60)
        cache.set(1, "a")
        cache.invalidate(1)
        self.assertIsNone(cache.get(1))
        self.assertIsNone(cache.stored_at(1))


class TenantClockConfigTests(unittest.TestCase):
    def setUp(self) -> None:
        get_clock_config_cache().clear()
        self.db = make_session()
        self.tenant, _, _ = seed_site(self.db)

    def tearDown(self) -> None:
        self.db.close()
        get_clock_config_cache().clear()

    def test_defaults_apply_when_unset(self) -> None:
        config = get_clock_config(self.db, self.tenant.id)
        self.assertTrue(config["receipt_email_enabled"])

    def test_update_invalidates_cached_entry(self) -> None:
        get_clock_config(self.db, self.tenant.id)
        self.assertIsNotNone(get_clock_config_cache().stored_at(self.tenant.id))

        update_clock_config(self.db, self.tenant.id, {"receipt_email_enabled": False})

        self.assertIsNone(get_clock_config_cache().stored_at(self.tenant.id))
        self.assertFalse(get_clock_config(self.db, self.tenant.id)["receipt_email_enabled"])


if __name__ == "__main__":
    unittest.main()
