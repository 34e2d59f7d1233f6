# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_federation

"""
SecretResolver component for loading upstream client credentials.
"""

from pydantic import SecretStr

from coreason_federation.config import OIDC_CLIENT_SECRET_TYPE
from coreason_federation.exceptions import (
    NotFoundError,
    SecretMissingKeysError,
    SecretNotFoundError,
    SecretWrongTypeError,
)
from coreason_federation.models import ClientCredentials
from coreason_federation.store import ConfigurationStore

CLIENT_ID_KEY = "clientID"
CLIENT_SECRET_KEY = "clientSecret"
REQUIRED_KEYS: tuple[str, ...] = (CLIENT_ID_KEY, CLIENT_SECRET_KEY)


def _format_keys(keys: tuple[str, ...]) -> str:
    return "[" + " ".join(f'"{key}"' for key in keys) + "]"


class SecretResolver:
    """
    Loads and validates the OAuth client credentials referenced by an upstream provider.

    Attributes:
        store (ConfigurationStore): The store secrets are read from.
        secret_type (str): The `type` every client credential secret must declare.
    """

    def __init__(self, store: ConfigurationStore, secret_type: str = OIDC_CLIENT_SECRET_TYPE) -> None:
        self.store = store
        self.secret_type = secret_type

    async def resolve(self, namespace: str, name: str) -> ClientCredentials:
        """
        Fetches the secret and extracts the client credentials.

        Args:
            namespace: Namespace of the upstream provider (and therefore of the secret).
            name: Name of the secret.

        Returns:
            ClientCredentials: The client ID and secret.

        Raises:
            SecretNotFoundError: If the secret does not exist.
            SecretWrongTypeError: If the secret's type is not `secret_type`.
            SecretMissingKeysError: If `clientID` or `clientSecret` is absent.
        """
        try:
            secret = await self.store.get_secret(namespace, name)
        except NotFoundError as e:
            raise SecretNotFoundError(f'secret "{namespace}/{name}" not found') from e

        if secret.type != self.secret_type:
            raise SecretWrongTypeError(
                f'referenced Secret "{name}" has wrong type "{secret.type}" (should be "{self.secret_type}")'
            )

        if any(key not in secret.data for key in REQUIRED_KEYS):
            # Always report the full required set so the message is stable.
            raise SecretMissingKeysError(
                f'referenced Secret "{name}" is missing required keys {_format_keys(REQUIRED_KEYS)}'
            )

        return ClientCredentials(
            client_id=secret.data[CLIENT_ID_KEY],
            client_secret=SecretStr(secret.data[CLIENT_SECRET_KEY]),
        )
