"""Admin password hash readers.

The local sign-in path compares the submitted password against a bcrypt hash
stored in a Kubernetes secret (by default ``wego-system/admin-password-hash``,
data key ``password``).
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from typing import TYPE_CHECKING, Protocol

import bcrypt
from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.exceptions import ApiException

from gitops.foundation.exceptions import DomainError, InternalError

if TYPE_CHECKING:
    from gitops.server.auth.settings import AuthSettings

logger = logging.getLogger(__name__)

BCRYPT_MAX_PASSWORD_BYTES = 72


class SecretNotFoundError(DomainError):
    """Raised when the admin password secret or its data key does not exist."""

    error_code = "SECRET_NOT_FOUND"


class AdminPasswordReader(Protocol):
    """Source of the admin password bcrypt hash."""

    async def read_password_hash(self) -> bytes:
        """Return the stored hash.

        Raises:
            SecretNotFoundError: If no password has been configured.
            InternalError: If the secret store cannot be read.
        """
        ...


def check_password(password: str, password_hash: bytes) -> bool:
    """Compare ``password`` against a bcrypt hash.

    An unparsable hash counts as a mismatch, and so does a password bcrypt
    cannot hash (longer than 72 bytes).
    """
    encoded = password.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_PASSWORD_BYTES:
        logger.info("admin_password_too_long", extra={"length": len(encoded)})
        return False
    try:
        return bcrypt.checkpw(encoded, password_hash)
    except ValueError:
        logger.warning("admin_password_hash_invalid")
        return False


class KubernetesSecretReader:
    """Read the admin password hash from a Kubernetes secret.

    Args:
        core_v1_api: ``kubernetes.client.CoreV1Api`` instance.
        namespace: Secret namespace.
        name: Secret name.
        key: Data key holding the hash.
    """

    def __init__(
        self,
        core_v1_api: k8s_client.CoreV1Api,
        namespace: str = "wego-system",
        name: str = "admin-password-hash",
        key: str = "password",
    ) -> None:
        self._api = core_v1_api
        self._namespace = namespace
        self._name = name
        self._key = key

    @classmethod
    def from_settings(
        cls,
        settings: AuthSettings,
        core_v1_api: k8s_client.CoreV1Api | None = None,
    ) -> KubernetesSecretReader:
        """Build a reader for the configured secret location.

        Without an explicit API object, in-cluster configuration is tried
        first and the local kubeconfig second.
        """
        if core_v1_api is None:
            try:
                k8s_config.load_incluster_config()
            except k8s_config.ConfigException:
                k8s_config.load_kube_config()
            core_v1_api = k8s_client.CoreV1Api()
        return cls(
            core_v1_api,
            namespace=settings.admin_secret_namespace,
            name=settings.admin_secret_name,
            key=settings.admin_secret_key,
        )

    async def read_password_hash(self) -> bytes:
        # The kubernetes client is synchronous
        try:
            secret = await asyncio.to_thread(
                self._api.read_namespaced_secret, self._name, self._namespace
            )
        except ApiException as exc:
            if exc.status == 404:
                raise SecretNotFoundError(
                    "no password configured",
                    context={"namespace": self._namespace, "name": self._name},
                ) from exc
            raise InternalError(
                "failed to read admin password secret",
                context={"namespace": self._namespace, "name": self._name, "status": exc.status},
            ) from exc

        data = secret.data or {}
        encoded = data.get(self._key)
        if not encoded:
            raise SecretNotFoundError(
                "no password configured",
                context={"namespace": self._namespace, "name": self._name, "key": self._key},
            )

        try:
            return base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InternalError(
                "admin password secret is not valid base64",
                context={"namespace": self._namespace, "name": self._name},
            ) from exc


class StaticSecretReader:
    """Serve a fixed hash; for local development and tests.

    ``None`` behaves like an absent secret.
    """

    def __init__(self, password_hash: bytes | None) -> None:
        self._hash = password_hash

    @classmethod
    def from_password(cls, password: str) -> StaticSecretReader:
        return cls(bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()))

    async def read_password_hash(self) -> bytes:
        if self._hash is None:
            raise SecretNotFoundError("no password configured")
        return self._hash
