"""Tests for request building and input validation."""

from __future__ import annotations

import pytest

from schemaflow.core.errors import MissingConfigError
from schemaflow.core.request import (
    DEFAULT_CONTEXTS,
    DirectConnection,
    MigrationRequest,
    PooledDataSource,
    validate_request,
)


def direct(**overrides) -> MigrationRequest:
    props = {
        "changelog": "<databaseChangeLog/>",
        "user": "app",
        "password": "secret",
        "url": "sqlite:///app.db",
        "driver": "sqlite3",
    }
    props.update(overrides)
    return MigrationRequest.from_properties(**props)


class TestFromProperties:
    def test_datasource_selects_pooled_variant(self):
        request = MigrationRequest.from_properties(changelog="x", datasource="reporting", url="ignored")
        assert request.connection == PooledDataSource(name="reporting")
        assert request.connection.mode == "pooled"

    def test_without_datasource_selects_direct_variant(self):
        request = direct()
        assert isinstance(request.connection, DirectConnection)
        assert request.connection.mode == "direct"

    def test_blank_datasource_selects_direct_variant(self):
        request = direct(datasource="   ")
        assert isinstance(request.connection, DirectConnection)

    def test_contexts_default_to_main(self):
        assert direct().contexts == DEFAULT_CONTEXTS == "main"
        assert direct(contexts="").contexts == "main"
        assert direct(contexts="main,legacy").contexts == "main,legacy"

    def test_repr_hides_password(self):
        assert "secret" not in repr(direct().connection)


class TestValidateRequest:
    def test_valid_direct_request(self):
        request = direct()
        assert validate_request(request).unwrap() is request

    def test_valid_pooled_request(self):
        request = MigrationRequest.from_properties(changelog="x", datasource="reporting")
        assert validate_request(request).is_ok()

    @pytest.mark.parametrize("changelog", [None, "", "   \n\t"])
    def test_changelog_required(self, changelog):
        result = validate_request(direct(changelog=changelog))
        assert isinstance(result.error, MissingConfigError)
        assert result.error.key == "changelog"
        assert result.error.message == "ChangeLog is required"

    def test_changelog_checked_before_connection_fields(self):
        result = validate_request(direct(changelog="", user=None, url=None))
        assert result.error.key == "changelog"

    def test_pooled_requires_name(self):
        request = MigrationRequest(changelog="x", connection=PooledDataSource(name=" "))
        result = validate_request(request)
        assert result.error.key == "datasource"
        assert result.error.message == "DataSource is required"

    @pytest.mark.parametrize(
        "missing, message",
        [
            ("user", "User is required"),
            ("password", "Password is required"),
            ("url", "URL is required"),
            ("driver", "Driver is required"),
        ],
    )
    def test_direct_fields_required(self, missing, message):
        result = validate_request(direct(**{missing: None}))
        assert result.error.key == missing
        assert result.error.message == message

    def test_direct_fields_checked_in_order(self):
        result = validate_request(direct(password="", driver=""))
        assert result.error.key == "password"
