import pytest

from kataba.core.exceptions import NotFoundError
from kataba.core.principal import Authenticated
from kataba.services.users import UserService


@pytest.fixture
def users(session_factory):
    return UserService(session_factory)


async def test_ensure_user_provisions_row(users):
    created = await users.ensure_user(Authenticated(user_id="user-1", email="amina@example.com", name="Amina"))
    assert created.id == "user-1"
    assert created.name == "Amina"

    fetched = await users.get_user("user-1")
    assert fetched.email == "amina@example.com"


async def test_ensure_user_is_idempotent_and_refreshes_profile(users):
    await users.ensure_user(Authenticated(user_id="user-1", email="old@example.com", name="Amina"))
    updated = await users.ensure_user(
        Authenticated(user_id="user-1", email="new@example.com", name="Amina", image_url="https://img/a.png")
    )
    assert updated.email == "new@example.com"
    assert updated.image_url == "https://img/a.png"


async def test_blank_claims_do_not_erase_profile(users):
    await users.ensure_user(Authenticated(user_id="user-1", email="amina@example.com", name="Amina"))
    kept = await users.ensure_user(Authenticated(user_id="user-1"))
    assert kept.email == "amina@example.com"
    assert kept.name == "Amina"


async def test_nameless_user_gets_placeholder(users):
    created = await users.ensure_user(Authenticated(user_id="user-9"))
    assert created.name == "User"


async def test_get_missing_user(users):
    with pytest.raises(NotFoundError):
        await users.get_user("nobody")
