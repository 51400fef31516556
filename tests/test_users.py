import pytest

from tasknest.service.errors import BadRequestError, InternalError, NotFoundError
from tasknest.service.security import Argon2PasswordHashing
from tasknest.service.users import UserService
from tasknest.storage.memory import MemoryStore


@pytest.fixture
def hashing():
    return Argon2PasswordHashing()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def user(store, hashing):
    return store.create_user("me@example.com", hashing.hash("Passw0rd!"), "me")


@pytest.fixture
def service(store, hashing):
    return UserService(store, hashing=hashing)


class TestUserService:
    def test_detail(self, service, user):
        detail = service.get_user_detail(user.user_no)

        assert detail.email == "me@example.com"
        assert detail.user_name == "me"
        assert detail.created_at == user.created_at

    def test_detail_of_deleted_user(self, service, store, user):
        store.soft_delete_user(user.user_no)
        with pytest.raises(NotFoundError):
            service.get_user_detail(user.user_no)

    def test_rename_strips_whitespace(self, service, store, user):
        service.patch_user(user.user_no, "  new name  ")
        assert store.get_user(user.user_no).user_name == "new name"

    @pytest.mark.parametrize("name", ["", " a ", "x" * 31])
    def test_rename_length_enforced(self, service, user, name):
        with pytest.raises(BadRequestError):
            service.patch_user(user.user_no, name)

    def test_rename_zero_rows(self, service, store, user, monkeypatch):
        monkeypatch.setattr(store, "update_user_name", lambda user_no, name: 0)
        with pytest.raises(InternalError):
            service.patch_user(user.user_no, "renamed")

    def test_change_password(self, service, store, hashing, user):
        service.change_password(user.user_no, "Passw0rd!", "Newer1234")

        digest = store.get_user(user.user_no).password
        assert hashing.verify("Newer1234", digest)
        assert not hashing.verify("Passw0rd!", digest)

    def test_change_password_requires_current(self, service, store, hashing, user):
        with pytest.raises(BadRequestError):
            service.change_password(user.user_no, "wrong-one1", "Newer1234")
        assert hashing.verify("Passw0rd!", store.get_user(user.user_no).password)

    def test_unparseable_digest_is_a_mismatch(self, hashing):
        assert hashing.verify("anything", "not-an-argon2-digest") is False
