"""Unit tests for the operator directory and capability check."""
import json
import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../..')))

from foundry.errors import ErrorCode, FoundryError
from foundry.security.capability import (
    CapabilityChecker,
    Operator,
    OperatorDirectory,
    hash_application_password,
)

APP_PASSWORD = "abcd EFGH 1234 ijkl MNOP 5678"


@pytest.fixture
def directory():
    return OperatorDirectory([
        Operator(
            login="admin",
            email="admin@example.com",
            password_sha256=hash_application_password(APP_PASSWORD),
            capabilities=("manage_options", "edit_posts"),
        ),
        Operator(
            login="editor",
            email="editor@example.com",
            password_sha256=hash_application_password("editor pass"),
            capabilities=("edit_posts",),
        ),
    ])


class TestOperatorDirectory:
    def test_lookup_by_login_then_email(self, directory):
        assert directory.lookup("admin").login == "admin"
        assert directory.lookup("ADMIN@example.com").login == "admin"
        assert directory.lookup("nobody") is None

    def test_application_password_spaces_ignored(self, directory):
        assert directory.authenticate("admin", APP_PASSWORD.replace(" ", "")).login == "admin"

    def test_wrong_password(self, directory):
        with pytest.raises(FoundryError) as exc_info:
            directory.authenticate("admin", "wrong")
        assert exc_info.value.code == ErrorCode.CAPABILITY_DENIED

    def test_unknown_user(self, directory):
        with pytest.raises(FoundryError) as exc_info:
            directory.authenticate("ghost", "whatever")
        assert exc_info.value.message == "Invalid username"

    def test_blank_credentials(self, directory):
        with pytest.raises(FoundryError) as exc_info:
            directory.authenticate("admin", "")
        assert exc_info.value.code == ErrorCode.CAPABILITY_DENIED

    def test_from_file(self, tmp_path):
        path = tmp_path / "operators.json"
        path.write_text(json.dumps({"operators": [{
            "login": "ops",
            "email": "ops@example.com",
            "password_sha256": hash_application_password("pw").upper(),
            "capabilities": ["manage_options"],
        }]}))
        directory = OperatorDirectory.from_file(path)
        assert len(directory) == 1
        assert directory.authenticate("ops@example.com", "pw").can("manage_options")


class TestCapabilityChecker:
    def test_no_directory_means_secret_is_enough(self, config):
        assert CapabilityChecker().verify(None) is None

    def test_credentials_required_with_directory(self, directory):
        with pytest.raises(FoundryError) as exc_info:
            CapabilityChecker(directory, "manage_options").verify(None)
        assert exc_info.value.code == ErrorCode.CAPABILITY_DENIED
        assert exc_info.value.http_status == 403

    def test_capability_granted(self, directory):
        operator = CapabilityChecker(directory, "manage_options").verify(("admin", APP_PASSWORD))
        assert operator.login == "admin"

    def test_capability_missing(self, directory):
        with pytest.raises(FoundryError) as exc_info:
            CapabilityChecker(directory, "manage_options").verify(("editor", "editor pass"))
        assert exc_info.value.code == ErrorCode.CAPABILITY_DENIED
        assert exc_info.value.http_status == 403
        assert exc_info.value.details["required"] == "manage_options"
