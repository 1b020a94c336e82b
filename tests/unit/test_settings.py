"""
Unit tests for aggregator and operator settings.
"""

from unittest.mock import patch

import pytest
from pydantic import ValidationError

from quorum.aggregator.utils.config import AggregatorSettings
from quorum.operator.config import OperatorSettings


@pytest.mark.unit
class TestAggregatorSettings:
    def test_defaults(self):
        settings = AggregatorSettings(_env_file=None)

        assert settings.POLL_INTERVAL_SECONDS == 10
        assert settings.OPERATOR_TIMEOUT_SECONDS == 10
        assert settings.MAX_CONCURRENT_TASKS == 1
        assert settings.CHECKPOINT_BACKEND == "file"
        assert settings.CHECKPOINT_PATH == "./checkpoint.json"
        assert settings.START_POSITION == 0
        assert settings.LEDGER.SERVICE_PALLET == "SquareNumberService"

    def test_env_override(self):
        env = {
            "POLL_INTERVAL_SECONDS": "2.5",
            "CHECKPOINT_BACKEND": "database",
            "LEDGER_CHAIN_ENDPOINT": "ws://chain.test:9944",
            "DB_URL": "sqlite+aiosqlite:///:memory:",
        }
        with patch.dict("os.environ", env, clear=False):
            settings = AggregatorSettings(_env_file=None)

        assert settings.POLL_INTERVAL_SECONDS == 2.5
        assert settings.CHECKPOINT_BACKEND == "database"
        assert settings.LEDGER.CHAIN_ENDPOINT == "ws://chain.test:9944"
        assert settings.DATABASE.URL == "sqlite+aiosqlite:///:memory:"

    @pytest.mark.parametrize("field", ["POLL_INTERVAL_SECONDS", "OPERATOR_TIMEOUT_SECONDS"])
    def test_non_positive_interval_rejected(self, field):
        with pytest.raises(ValidationError):
            AggregatorSettings(_env_file=None, **{field: 0})

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValidationError):
            AggregatorSettings(_env_file=None, CHECKPOINT_BACKEND="redis")

    def test_retry_window_validated(self):
        with pytest.raises(ValidationError):
            AggregatorSettings(_env_file=None, RETRY_BASE_DELAY_SECONDS=100, RETRY_MAX_DELAY_SECONDS=10)

    def test_negative_start_position_rejected(self):
        with pytest.raises(ValidationError):
            AggregatorSettings(_env_file=None, START_POSITION=-1)


@pytest.mark.unit
def test_operator_settings_prefix():
    with patch.dict("os.environ", {"OPERATOR_PORT": "9000", "OPERATOR_SIGNER_URI": "//Dave"}, clear=False):
        settings = OperatorSettings(_env_file=None)
    assert settings.PORT == 9000
    assert settings.SIGNER_URI == "//Dave"
