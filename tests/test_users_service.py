from __future__ import annotations

import unittest
from unittest.mock import patch

from ledger_support import add_user, make_session

from timeledger.errors import ApiError
from timeledger.schemas import UserCreate
from timeledger.services.users import create_user
from timeledger.settings import Settings


class CreateUserTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.admin = add_user(self.db, email="admin@example.com", is_admin=True)

    def tearDown(self) -> None:
        self.db.close()

    def test_daily_minutes_default_comes_from_settings(self) -> None:
        with patch("timeledger.services.users.get_settings", return_value=Settings(default_daily_minutes=450)):
            user = create_user(
                self.db,
                admin_id=self.admin.id,
                payload=UserCreate(full_name="Marta Ruiz", email="marta@example.com"),
            )

        self.assertEqual(user.expected_daily_minutes, 450)

    def test_explicit_daily_minutes_win(self) -> None:
        with patch("timeledger.services.users.get_settings", return_value=Settings(default_daily_minutes=450)):
            user = create_user(
                self.db,
                admin_id=self.admin.id,
                payload=UserCreate(full_name="Marta Ruiz", email="marta@example.com", expected_daily_minutes=360),
            )

        self.assertEqual(user.expected_daily_minutes, 360)

    def test_invalid_days_off(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            create_user(
                self.db,
                admin_id=self.admin.id,
                payload=UserCreate(full_name="Marta Ruiz", email="marta@example.com", days_off=[0, 6]),
            )

        self.assertEqual(ctx.exception.code, "INVALID_DAYS_OFF")


if __name__ == "__main__":
    unittest.main()
