import pytest

from payaware.models.domain.user_domain import User
from tests.fakes import NOW, FakeRedis, make_subscription


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def user():
    return User(id=7, name="Ada", email="ada@example.com", device_token="ExponentPushToken[abc]")


@pytest.fixture
def subscription():
    return make_subscription()
