"""Tests for config.Settings.from_env."""

from bookpress.config import Settings


class TestSettingsFromEnv:
    def test_defaults(self):
        settings = Settings.from_env({})
        assert settings.chars_per_page == 3000
        assert settings.min_page_chars == 800
        assert settings.rate_limit_wait_threshold == 30.0
        assert settings.admin_ids == []
        assert settings.access_token is None

    def test_overrides_are_coerced(self):
        settings = Settings.from_env(
            {
                "BOOKPRESS_CHARS_PER_PAGE": "1500",
                "BOOKPRESS_COOLDOWN_MARGIN": "3.5",
                "BOOKPRESS_ACCESS_TOKEN": "seed-token",
                "UNRELATED": "ignored",
            }
        )
        assert settings.chars_per_page == 1500
        assert settings.cooldown_margin == 3.5
        assert settings.access_token == "seed-token"

    def test_admin_ids_comma_separated(self):
        settings = Settings.from_env({"BOOKPRESS_ADMIN_IDS": "12, 34,,56 "})
        assert settings.admin_ids == ["12", "34", "56"]

    def test_bookmark_template(self):
        settings = Settings.from_env({"BOOKPRESS_BOT_USERNAME": "my_bot"})
        url = settings.bookmark_url_template.format(bot_username=settings.bot_username, token="bm_1")
        assert url == "https://t.me/my_bot?start=bm_1"
