import json
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from collector import migration
from collector.db import InMemoryDbClient
from collector.records import UserRecord
from shared.types import CardCondition, ListingStatus, TcgGame

BASE_URL = "https://new.example.test/storage/v1/object/public"

USERS_CSV = """id;email;raw_user_meta_data;raw_app_meta_data
old-1;ash@example.com;"{""username"":""ash""}";null
old-2;misty@example.com;;
old-3;brock@example.com;null;null
"""

PROFILES_CSV = """id;user_id;username;avatar_url;bio;is_live
p1;old-1;ash;https://uvjulnwoacftborhhhnr.supabase.co/storage/v1/object/public/avatars/ash.png;Trainer;true
p2;old-2;misty;https://cdn.example.com/misty.png;;false
p3;ghost;nobody;;;
"""

CARDS_CSV = """id;user_id;card_name;quantity;tcg_game;price_estimate;image_url;card_cache_id;created_at
c1;old-1;Pikachu;2;pokemon;3.50;;;2026-01-05 10:00:00.123+00
c2;gone;Zoro;1;;;;;
c3;old-2;Mystery;;?;;;;
"""

LISTINGS_CSV = """id;seller_id;card_name;tcg_game;asking_price;condition;status;accepts_offers;sold_price;description
l1;old-1;Charizard;pokemon;120.00;near_mint;active;true;;Holo
l2;gone;Luffy;onepiece;15;lightly_played;sold;false;14;
"""


class ParseTests(unittest.TestCase):
    def test_parse_values(self):
        self.assertIsNone(migration.parse_value(""))
        self.assertIsNone(migration.parse_value("null"))
        self.assertIs(migration.parse_value("true"), True)
        self.assertIs(migration.parse_value("false"), False)
        self.assertEqual(migration.parse_value('"{""a"": 1}"'), {"a": 1})
        self.assertEqual(migration.parse_value("plain"), "plain")

    def test_parse_csv_unescapes_json(self):
        rows = migration.parse_csv(USERS_CSV)
        self.assertEqual(len(rows), 3)
        self.assertEqual(rows[0]["raw_user_meta_data"], {"username": "ash"})
        self.assertIsNone(rows[0]["raw_app_meta_data"])
        self.assertIsNone(rows[1]["raw_user_meta_data"])

    def test_parse_timestamp(self):
        self.assertAlmostEqual(
            migration.parse_timestamp("1970-01-01 00:01:00+00"), 60.0
        )
        self.assertIsNone(migration.parse_timestamp("yesterday"))
        self.assertIsNone(migration.parse_timestamp(None))

    def test_rewrite_avatar_url(self):
        old = "https://uvjulnwoacftborhhhnr.supabase.co/storage/v1/object/public/avatars/a.png"
        self.assertEqual(
            migration.rewrite_avatar_url(old, BASE_URL), f"{BASE_URL}/avatars/a.png"
        )
        other = "https://cdn.example.com/a.png"
        self.assertEqual(migration.rewrite_avatar_url(other, BASE_URL), other)
        self.assertIsNone(migration.rewrite_avatar_url(None, BASE_URL))


class ImportTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.existing = self.db.create_user(UserRecord(email="Misty@Example.com"))
        self.users = migration.import_users(self.db, migration.parse_csv(USERS_CSV))

    def test_users_created_or_mapped(self):
        self.assertEqual(len(self.users.success), 2)
        self.assertEqual(len(self.users.skipped), 1)
        self.assertEqual(self.users.skipped[0].new_id, self.existing.id)
        self.assertEqual(self.users.skipped[0].note, "already existed")
        ash = self.db.get_user_by_email("ash@example.com")
        self.assertEqual(ash.user_metadata, {"username": "ash"})
        self.assertEqual(self.users.id_map()["old-2"], self.existing.id)

    def test_failed_user_is_recorded(self):
        db = InMemoryDbClient()
        with patch.object(db, "create_user", side_effect=RuntimeError("boom")):
            result = migration.import_users(db, migration.parse_csv(USERS_CSV))
        self.assertEqual(len(result.failed), 3)
        self.assertEqual(result.failed[0].error, "boom")
        self.assertIsNone(result.fallback_user_id())

    def test_profiles_remapped_and_unmapped_skipped(self):
        stats = migration.import_profiles(
            self.db, migration.parse_csv(PROFILES_CSV), self.users, public_base_url=BASE_URL
        )
        self.assertEqual(stats.imported, 2)
        self.assertEqual(stats.skipped, 1)
        ash_id = self.users.id_map()["old-1"]
        profile = self.db.get_profile_by_user(ash_id)
        self.assertEqual(profile.id, ash_id)
        self.assertEqual(profile.avatar_url, f"{BASE_URL}/avatars/ash.png")
        self.assertIs(profile.is_live, True)

    def test_cards_orphans_go_to_fallback(self):
        stats = migration.import_user_cards(self.db, migration.parse_csv(CARDS_CSV), self.users)
        self.assertEqual(stats.imported, 3)
        self.assertEqual(stats.orphaned, 1)

        fallback = self.users.fallback_user_id()
        self.assertEqual(fallback, self.users.id_map()["old-1"])
        cards = {c.id: c for c in self.db.user_cards.values()}
        self.assertEqual(cards["c1"].quantity, 2)
        self.assertEqual(cards["c1"].price_estimate, 3.5)
        self.assertEqual(cards["c2"].user_id, fallback)
        self.assertEqual(cards["c2"].tcg_game, TcgGame.ONEPIECE)
        self.assertEqual(cards["c3"].tcg_game, TcgGame.ONEPIECE)

    def test_listings_remapped(self):
        stats = migration.import_listings(self.db, migration.parse_csv(LISTINGS_CSV), self.users)
        self.assertEqual(stats.imported, 2)
        self.assertEqual(stats.orphaned, 1)
        sold = self.db.get_listing("l2")
        self.assertEqual(sold.status, ListingStatus.SOLD)
        self.assertEqual(sold.condition, CardCondition.LIGHTLY_PLAYED)
        self.assertFalse(sold.accepts_offers)
        self.assertEqual(sold.sold_price, 14.0)
        self.assertEqual(sold.seller_id, self.users.fallback_user_id())

    def test_failed_batch_is_counted(self):
        with patch.object(self.db, "upsert_listings", side_effect=RuntimeError("db down")):
            stats = migration.import_listings(
                self.db, migration.parse_csv(LISTINGS_CSV), self.users
            )
        self.assertEqual(stats.imported, 0)
        self.assertEqual(stats.failed, 2)

    def test_nothing_imported_without_mapping(self):
        empty = migration.UserImportResult()
        stats = migration.import_listings(self.db, migration.parse_csv(LISTINGS_CSV), empty)
        self.assertEqual(stats.imported, 0)
        self.assertEqual(self.db.listings, {})


class RunImportTests(unittest.TestCase):
    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())
        for name, content in (
            ("User-Authentication-Data-export.csv", USERS_CSV),
            ("User-Profiles-export.csv", PROFILES_CSV),
            ("user-cards-export.csv", CARDS_CSV),
            ("marketplace-listings-export.csv", LISTINGS_CSV),
        ):
            (self.tmp / name).write_text(content, encoding="utf-8")

    def tearDown(self):
        shutil.rmtree(self.tmp)

    def test_full_import_writes_mapping(self):
        db = InMemoryDbClient()
        mapping_path = self.tmp / "user_id_mapping.json"
        report = migration.run_import(
            db,
            users_csv=migration.find_export(self.tmp, "users"),
            profiles_csv=migration.find_export(self.tmp, "profiles"),
            cards_csv=migration.find_export(self.tmp, "cards"),
            listings_csv=migration.find_export(self.tmp, "listings"),
            mapping_path=mapping_path,
            public_base_url=BASE_URL,
        )
        self.assertEqual(len(report.users.success), 3)
        self.assertEqual(report.listings.imported, 2)

        payload = json.loads(mapping_path.read_text(encoding="utf-8"))
        self.assertEqual(len(payload["success"]), 3)
        self.assertEqual(payload["skipped"], 0)
        self.assertEqual(payload["success"][0]["old_id"], "old-1")

        resumed = migration.run_import(
            InMemoryDbClient(),
            users_csv=None,
            profiles_csv=None,
            cards_csv=None,
            listings_csv=migration.find_export(self.tmp, "listings"),
            mapping_path=mapping_path,
            public_base_url=BASE_URL,
            reuse_mapping=True,
        )
        self.assertEqual(resumed.users.id_map(), report.users.id_map())
        self.assertEqual(resumed.listings.orphaned, 1)


if __name__ == "__main__":
    unittest.main()
