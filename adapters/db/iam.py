from __future__ import annotations

import logging
from typing import Any, Callable, Optional

import boto3

from sqlgate.errors.exceptions import BackendConnectionError

log = logging.getLogger(__name__)


class RdsTokenSigner:
    """
    Produce short-lived IAM auth tokens for RDS MySQL.

    The token is opaque to us: it is sent as the password over an SSL
    connection. Credentials come from the default boto3 chain.
    """

    def __init__(self, region: str, *, client_factory: Optional[Callable[..., Any]] = None):
        self.region = region
        self._client_factory = client_factory or boto3.client

    def __call__(self, host: str, port: int, user: str) -> str:
        log.info("Generating AWS RDS IAM auth token", extra={"host": host, "region": self.region})
        try:
            client = self._client_factory("rds", region_name=self.region)
            token = client.generate_db_auth_token(
                DBHostname=host, Port=port, DBUsername=user, Region=self.region
            )
        except Exception as exc:
            log.error("Failed to generate AWS RDS auth token: %s", exc)
            raise BackendConnectionError(
                f"AWS IAM authentication failed: {exc}"
            ) from exc
        log.info("AWS RDS IAM auth token generated")
        return token
