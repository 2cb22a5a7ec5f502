"""
Unit tests for configuration module
"""
import pytest
import os
from unittest.mock import patch

from flightwatch.config import Config, MonitoringConfig, MonitoringSettings, validate_interval
from flightwatch.utils.exceptions import ConfigurationInvalid


class TestConfig:

    def test_config_initialization(self):
        """Test configuration defaults"""
        with patch.dict(os.environ, {}, clear=True):
            config = Config()

        assert config.monitoring.interval_minutes == 30
        assert config.monitoring.activation_hours == 6
        assert config.monitoring.reminder_horizon_hours == 24
        assert config.monitoring.max_workers == 4
        assert config.flightaware.min_spacing_seconds == 2.0
        assert config.database.url == "sqlite:///./flightwatch.db"

    @patch.dict(os.environ, {
        'FLIGHTAWARE_API_KEY': 'test-key',
        'TELEGRAM_BOT_TOKEN': 'bot-token',
        'MONITOR_INTERVAL_MINUTES': '45',
        'MAX_WORKERS': '8'
    })
    def test_config_from_env(self):
        """Test configuration loading from environment variables"""
        config = Config()

        assert config.flightaware.api_key == 'test-key'
        assert config.telegram.bot_token == 'bot-token'
        assert config.monitoring.interval_minutes == 45
        assert config.monitoring.max_workers == 8

    def test_config_validation_success(self):
        """Test successful configuration validation"""
        with patch.dict(os.environ, {'MONITOR_INTERVAL_MINUTES': '120'}):
            config = Config()
            assert config.validate() == True

    def test_interval_out_of_range_fails_validation(self):
        with patch.dict(os.environ, {'MONITOR_INTERVAL_MINUTES': '10'}):
            config = Config()
            assert config.validate() == False

    def test_activation_after_horizon_fails_validation(self):
        with patch.dict(os.environ, {'MONITOR_ACTIVATION_HOURS': '30'}):
            config = Config()
            assert config.validate() == False

    def test_build_settings_carries_provider_and_channel_timings(self):
        with patch.dict(os.environ, {'PROVIDER_MIN_SPACING_SECONDS': '3.5',
                                     'DELIVERY_TIMEOUT_SECONDS': '4'}):
            settings = Config().build_settings()

        assert settings.min_spacing_seconds == 3.5
        assert settings.delivery_timeout_seconds == 4.0
        assert settings.interval_minutes == 30


class TestInterval:

    @pytest.mark.parametrize("minutes", [15, 45, 120])
    def test_accepts_bounds(self, minutes):
        assert validate_interval(minutes) == minutes

    @pytest.mark.parametrize("minutes", [10, 14, 121, 0, -30])
    def test_rejects_out_of_range(self, minutes):
        with pytest.raises(ConfigurationInvalid) as exc:
            validate_interval(minutes)
        assert exc.value.error_code == "INTERVAL_OUT_OF_RANGE"

    @pytest.mark.parametrize("minutes", ["30", 30.0, True, None])
    def test_rejects_non_integers(self, minutes):
        with pytest.raises(ConfigurationInvalid):
            validate_interval(minutes)

    def test_set_interval_never_clamps(self):
        settings = MonitoringSettings(MonitoringConfig(interval_minutes=30))
        with pytest.raises(ConfigurationInvalid):
            settings.set_interval(10)
        assert settings.interval_minutes == 30

        settings.set_interval(45)
        assert settings.interval_minutes == 45

    def test_invalid_initial_interval_rejected(self):
        with pytest.raises(ConfigurationInvalid):
            MonitoringSettings(MonitoringConfig(interval_minutes=5))
