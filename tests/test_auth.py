"""Tests for accounts, sessions and role capabilities."""

from unittest import mock

import pytest

from core.errors import ConflictError, NotFoundError, PermissionDenied, ValidationError
from security import auth, create_account
from security.auth import Account, AccountStore, SessionManager, check_password, hash_password
from security.permissions import (
    ROLE_CUSTOMER,
    ROLE_MECHANIC,
    has_capability,
    is_admin,
    require,
    validate_role,
)

PASSWORD_CLI = "garage-pass"


@pytest.fixture
def accounts(store, clients, events):
    return AccountStore(
        store, clients, events,
        bootstrap_admin_emails=["Admin@Mechanic.com"],
        bcrypt_rounds=4,
    )


@pytest.fixture
def sessions(accounts):
    accounts.register("ivan@example.com", "secret1", display_name="Ivan Petrov")
    return SessionManager(accounts, session_timeout=60, max_login_attempts=3, lockout_duration=30)


class TestPasswords:

    def test_hash_and_check(self):
        hashed = hash_password("secret1", rounds=4)
        assert hashed != "secret1"
        assert check_password("secret1", hashed)
        assert not check_password("secret2", hashed)

    def test_garbage_hash(self):
        assert not check_password("secret1", "not-a-hash")
        assert not check_password("secret1", "")


class TestRegister:

    def test_customer_with_client_profile(self, accounts, clients):
        account = accounts.register("Ivan@Example.com", "secret1", display_name="Ivan Petrov")
        assert account.email == "ivan@example.com"
        assert account.role == ROLE_CUSTOMER
        profile = clients.find_by_email("ivan@example.com")
        assert profile.owner_name == "Ivan Petrov"

    def test_existing_profile_is_reused(self, accounts, clients):
        clients.create_client("Ivan Petrov", "0888", "Toyota", "Corolla", "1.6",
                              email="ivan@example.com")
        accounts.register("ivan@example.com", "secret1")
        assert len(clients.list_clients()) == 1

    def test_bootstrap_email_is_mechanic(self, accounts):
        assert accounts.register("admin@mechanic.com", "secret1").is_admin

    def test_duplicate(self, accounts):
        accounts.register("ivan@example.com", "secret1")
        with pytest.raises(ConflictError):
            accounts.register("IVAN@example.com", "other12")

    @pytest.mark.parametrize("email,password,confirm,field", [
        ("not-an-email", "secret1", None, "email"),
        ("ivan@example.com", "123", None, "password"),
        ("ivan@example.com", "secret1", "secret2", "confirm_password"),
    ])
    def test_rejected(self, accounts, email, password, confirm, field):
        with pytest.raises(ValidationError) as exc:
            accounts.register(email, password, confirm_password=confirm)
        assert exc.value.field == field

    def test_password_hash_not_exposed(self, accounts):
        data = accounts.register("ivan@example.com", "secret1").to_dict()
        assert set(data) == {"email", "displayName", "role", "isAdmin"}


class TestAuthenticateAndRoles:

    def test_authenticate(self, accounts):
        accounts.register("ivan@example.com", "secret1")
        assert accounts.authenticate("IVAN@example.com", "secret1").email == "ivan@example.com"
        assert accounts.authenticate("ivan@example.com", "wrong") is None
        assert accounts.authenticate("nobody@example.com", "secret1") is None

    def test_grant_role(self, accounts):
        accounts.register("ivan@example.com", "secret1")
        assert accounts.grant_role("ivan@example.com", ROLE_MECHANIC).is_admin
        assert [a.email for a in accounts.list_accounts(ROLE_MECHANIC)] == ["ivan@example.com"]

    def test_grant_role_unknown_account(self, accounts):
        with pytest.raises(NotFoundError):
            accounts.grant_role("nobody@example.com", ROLE_MECHANIC)

    def test_grant_role_unknown_role(self, accounts):
        accounts.register("ivan@example.com", "secret1")
        with pytest.raises(ValidationError):
            accounts.grant_role("ivan@example.com", "owner")


class TestSessions:

    def test_login_and_lookup(self, sessions):
        token = sessions.login("ivan@example.com", "secret1", "10.0.0.1")
        assert token
        assert sessions.get_account(token).email == "ivan@example.com"
        assert sessions.active_session_count == 1

    def test_logout(self, sessions):
        token = sessions.login("ivan@example.com", "secret1")
        sessions.destroy_session(token)
        assert sessions.get_account(token) is None

    def test_bad_password(self, sessions):
        assert sessions.login("ivan@example.com", "wrong", "10.0.0.1") is None

    def test_lockout_after_max_failures(self, sessions):
        for _ in range(3):
            sessions.login("ivan@example.com", "wrong", "10.0.0.9")
        assert sessions.get_lockout_remaining("10.0.0.9") > 0
        assert sessions.login("ivan@example.com", "secret1", "10.0.0.9") is None
        assert sessions.login("ivan@example.com", "secret1", "10.0.0.2")

    def test_expiry(self, sessions):
        token = sessions.login("ivan@example.com", "secret1")
        later = auth.time.time() + 120
        with mock.patch.object(auth.time, "time", return_value=later):
            assert sessions.get_account(token) is None
        assert sessions.active_session_count == 0

    def test_role_change_applies_to_live_session(self, sessions, accounts):
        token = sessions.login("ivan@example.com", "secret1")
        accounts.grant_role("ivan@example.com", ROLE_MECHANIC)
        assert sessions.get_account(token).is_admin

    def test_missing_token(self, sessions):
        assert sessions.get_account(None) is None
        assert sessions.get_account("forged") is None


class TestPermissions:

    def test_mechanic_has_everything(self):
        assert has_capability(ROLE_MECHANIC, "manage_repairs")
        assert has_capability(ROLE_MECHANIC, "view_events")
        assert is_admin(Account(email="x@example.com", role=ROLE_MECHANIC))
        assert not is_admin(Account(email="y@example.com", role=ROLE_CUSTOMER))
        assert not is_admin(ROLE_MECHANIC)

    def test_customer_is_limited(self):
        assert has_capability(ROLE_CUSTOMER, "view_own_repairs")
        assert has_capability(ROLE_CUSTOMER, "download_quote")
        assert not has_capability(ROLE_CUSTOMER, "manage_clients")
        assert not has_capability(ROLE_CUSTOMER, "view_all_repairs")

    def test_unknown_role_has_nothing(self):
        assert not has_capability("owner", "view_own_repairs")
        assert not has_capability(None, "view_own_repairs")

    def test_validate_role(self):
        validate_role(ROLE_CUSTOMER)
        with pytest.raises(ValidationError):
            validate_role("owner")

    def test_require(self, accounts):
        customer = accounts.register("ivan@example.com", "secret1")
        with pytest.raises(PermissionDenied):
            require(customer, "manage_services")
        require(customer, "view_services")


class TestCreateAccountCommand:

    def test_creates_mechanic(self, tmp_path, capsys):
        db = str(tmp_path / "cli.db")
        with mock.patch.object(create_account.getpass, "getpass", return_value=PASSWORD_CLI):
            code = create_account.main(["--email", "Georgi@Example.com", "--name", "Georgi", "--db", db])
        assert code == 0
        assert "georgi@example.com is now a mechanic" in capsys.readouterr().out

    def test_promotes_existing_account(self, tmp_path):
        db = str(tmp_path / "cli.db")
        with mock.patch.object(create_account.getpass, "getpass", return_value=PASSWORD_CLI):
            create_account.main(["--email", "georgi@example.com", "--db", db])
        with mock.patch.object(create_account.getpass, "getpass") as prompt:
            assert create_account.main(["--email", "georgi@example.com", "--db", db]) == 0
        prompt.assert_not_called()

    def test_bad_email_fails(self, tmp_path, capsys):
        db = str(tmp_path / "cli.db")
        with mock.patch.object(create_account.getpass, "getpass", return_value=PASSWORD_CLI):
            assert create_account.main(["--email", "nope", "--db", db]) == 1
        assert "Error" in capsys.readouterr().out
