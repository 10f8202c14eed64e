import pytest
from pydantic import ValidationError

from payaware.config import Settings

REQUIRED = {
    "DATABASE_URL": "postgresql://localhost/test",
    "REDIS_URL": "redis://localhost:6379/0",
    "KAFKA_BROKER": "localhost:9092",
    "KAFKA_TOPIC": "subscription_notifications",
}


def test_defaults():
    settings = Settings(**REQUIRED)

    assert settings.SCAN_INTERVAL_SECONDS == 60
    assert settings.LOOKAHEAD_SECONDS == 120
    assert settings.WORKER_COUNT == 10
    assert settings.DISPATCH_QUEUE_SIZE == 100
    assert settings.KAFKA_CONSUMER_GROUP == "subscription_consumer_group"


def test_interval_may_equal_lookahead():
    settings = Settings(**REQUIRED, SCAN_INTERVAL_SECONDS=120, LOOKAHEAD_SECONDS=120)

    assert settings.SCAN_INTERVAL_SECONDS == 120


@pytest.mark.parametrize(
    "overrides",
    [
        {"SCAN_INTERVAL_SECONDS": 300, "LOOKAHEAD_SECONDS": 120},
        {"SCAN_INTERVAL_SECONDS": 0},
        {"WORKER_COUNT": 0},
        {"DISPATCH_QUEUE_SIZE": 0},
    ],
)
def test_invalid_pipeline_settings(overrides):
    with pytest.raises(ValidationError):
        Settings(**REQUIRED, **overrides)


def test_development_pool_is_smaller():
    settings = Settings(**REQUIRED, environment="development")

    assert settings.get_db_pool_config()["max_size"] == 5
    assert Settings(**REQUIRED, environment="production").get_db_pool_config()["max_size"] == 10
