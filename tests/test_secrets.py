"""Unit tests for admin password hash readers."""

from __future__ import annotations

import base64
import logging
from unittest.mock import MagicMock

import bcrypt
import pytest
from kubernetes.client.exceptions import ApiException

from gitops.foundation.exceptions import InternalError
from gitops.server.auth.secrets import (
    KubernetesSecretReader,
    SecretNotFoundError,
    StaticSecretReader,
    check_password,
)
from gitops.server.auth.settings import AuthSettings


def _secret(data: dict[str, str] | None) -> MagicMock:
    secret = MagicMock()
    secret.data = data
    return secret


@pytest.mark.unit
class TestCheckPassword:
    def test_match(self, admin_password_hash: bytes) -> None:
        assert check_password("correct horse battery staple", admin_password_hash)

    def test_mismatch(self, admin_password_hash: bytes) -> None:
        assert not check_password("wrong", admin_password_hash)

    def test_unparsable_hash_is_mismatch(self) -> None:
        assert not check_password("anything", b"not-a-bcrypt-hash")

    def test_overlong_password_is_mismatch(
        self, admin_password_hash: bytes, caplog: pytest.LogCaptureFixture
    ) -> None:
        caplog.set_level(logging.INFO, logger="gitops.server.auth.secrets")

        assert not check_password("\u00e9" * 37, admin_password_hash)

        events = [record.getMessage() for record in caplog.records]
        assert events == ["admin_password_too_long"]


@pytest.mark.unit
class TestKubernetesSecretReader:
    @pytest.mark.asyncio
    async def test_reads_and_decodes_hash(self, admin_password_hash: bytes) -> None:
        api = MagicMock()
        api.read_namespaced_secret.return_value = _secret(
            {"password": base64.b64encode(admin_password_hash).decode()}
        )
        reader = KubernetesSecretReader(api)

        assert await reader.read_password_hash() == admin_password_hash
        api.read_namespaced_secret.assert_called_once_with("admin-password-hash", "wego-system")

    @pytest.mark.asyncio
    async def test_location_from_settings(self) -> None:
        api = MagicMock()
        api.read_namespaced_secret.return_value = _secret(
            {"hash": base64.b64encode(b"$2b$04$abc").decode()}
        )
        settings = AuthSettings(
            admin_secret_namespace="flux-system",
            admin_secret_name="cluster-user-auth",
            admin_secret_key="hash",
        )
        reader = KubernetesSecretReader.from_settings(settings, core_v1_api=api)

        assert await reader.read_password_hash() == b"$2b$04$abc"
        api.read_namespaced_secret.assert_called_once_with("cluster-user-auth", "flux-system")

    @pytest.mark.asyncio
    async def test_missing_secret(self) -> None:
        api = MagicMock()
        api.read_namespaced_secret.side_effect = ApiException(status=404, reason="Not Found")

        with pytest.raises(SecretNotFoundError, match="no password configured"):
            await KubernetesSecretReader(api).read_password_hash()

    @pytest.mark.asyncio
    async def test_missing_key(self) -> None:
        api = MagicMock()
        api.read_namespaced_secret.return_value = _secret({"other": "eA=="})

        with pytest.raises(SecretNotFoundError):
            await KubernetesSecretReader(api).read_password_hash()

    @pytest.mark.asyncio
    async def test_secret_without_data(self) -> None:
        api = MagicMock()
        api.read_namespaced_secret.return_value = _secret(None)

        with pytest.raises(SecretNotFoundError):
            await KubernetesSecretReader(api).read_password_hash()

    @pytest.mark.asyncio
    async def test_api_failure_is_internal_error(self) -> None:
        api = MagicMock()
        api.read_namespaced_secret.side_effect = ApiException(status=403, reason="Forbidden")

        with pytest.raises(InternalError) as exc_info:
            await KubernetesSecretReader(api).read_password_hash()

        assert exc_info.value.context["status"] == 403

    @pytest.mark.asyncio
    async def test_invalid_base64_is_internal_error(self) -> None:
        api = MagicMock()
        api.read_namespaced_secret.return_value = _secret({"password": "%%%"})

        with pytest.raises(InternalError):
            await KubernetesSecretReader(api).read_password_hash()


@pytest.mark.unit
class TestStaticSecretReader:
    @pytest.mark.asyncio
    async def test_from_password(self) -> None:
        reader = StaticSecretReader.from_password("s3cret")
        assert bcrypt.checkpw(b"s3cret", await reader.read_password_hash())

    @pytest.mark.asyncio
    async def test_none_behaves_like_absent_secret(self) -> None:
        with pytest.raises(SecretNotFoundError):
            await StaticSecretReader(None).read_password_hash()
