import config


class TestSettings:
    """Test settings loading."""

    def test_defaults(self, monkeypatch):
        """Test default settings."""
        for name in ["PORT", "USD_TO_NGN", "DAV_COIN_VALUE_USD", "WITHDRAW_RATE_LIMIT"]:
            monkeypatch.delenv(name, raising=False)

        settings = config.Settings(_env_file=None)

        assert settings.port == 5000
        assert settings.usd_to_ngn == 1500.0
        assert settings.dav_coin_value_usd == 0.01
        assert settings.withdraw_rate_limit == "5/minute"
        assert settings.provider_timeout_seconds == 10.0

    def test_environment_overrides(self, monkeypatch):
        """Test environment variables override defaults."""
        monkeypatch.setenv("USD_TO_NGN", "1620.5")
        monkeypatch.setenv("MONIEPOINT_API_KEY", "live-key")
        monkeypatch.setenv("PORT", "8080")

        settings = config.Settings(_env_file=None)

        assert settings.usd_to_ngn == 1620.5
        assert settings.moniepoint_api_key == "live-key"
        assert settings.port == 8080

    def test_settings_for_environment(self):
        """Test environment-specific settings classes."""
        assert isinstance(config.get_settings_for_environment("development"), config.DevelopmentSettings)
        assert isinstance(config.get_settings_for_environment("Production"), config.ProductionSettings)
        assert isinstance(config.get_settings_for_environment("testing"), config.TestingSettings)
        assert type(config.get_settings_for_environment("staging")) is config.Settings
