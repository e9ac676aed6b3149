# -*- coding: utf-8 -*-

"""
Salesforce authentication and Bulk API (1.0, JSON content) transport.

The orchestration layer only relies on the small set of calls exposed by
SalesforceBulkClient (create_job, create_batch, get_batch_state,
get_batch_result, close_job, abort_job), so any object offering them can be
used in its place.
"""

import os
import logging
from dataclasses import dataclass

import httpx
from tenacity import (retry, retry_if_exception_type, stop_after_attempt,
                      wait_exponential)

from ..errors import AuthenticationFailed, RemoteRejected, TransientQueryFailure
from ..bulk.models import BatchState, OperationKind

PRODUCTION_LOGIN_URL = "https://login.salesforce.com"
SANDBOX_LOGIN_URL = "https://test.salesforce.com"
DEFAULT_API_VERSION = "60.0"
DEFAULT_TIMEOUT = 30.0

TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}
SESSION_ERROR_CODES = {"InvalidSessionId", "INVALID_SESSION_ID"}


retry_on_transient_errors = retry(
    retry=retry_if_exception_type(TransientQueryFailure),
    wait=wait_exponential(min=1, max=30),
    stop=stop_after_attempt(5),
    reraise=True
)


#=============================================================================
# Configuration and authentication
#=============================================================================

@dataclass(frozen=True)
class Credentials:
    """Connected app and user credentials used for the password OAuth flow."""
    consumer_key: str
    consumer_secret: str
    username: str
    password: str
    security_token: str = ""
    is_sandbox: bool = False
    api_version: str = DEFAULT_API_VERSION

    @property
    def login_url(self) -> str:
        return SANDBOX_LOGIN_URL if self.is_sandbox else PRODUCTION_LOGIN_URL

    @property
    def token_url(self) -> str:
        return f"{self.login_url}/services/oauth2/token"

    @classmethod
    def from_env(cls, is_sandbox=None):
        """
        Read credentials from the environment.

        Args:
            is_sandbox (bool | None): Overrides SF_IS_SANDBOX when given.

        Raises:
            ValueError: If a required variable is missing.
        """
        values = {}
        for key, var in (
            ('consumer_key', 'SF_CONSUMER_KEY'),
            ('consumer_secret', 'SF_CONSUMER_SECRET'),
            ('username', 'SF_USERNAME'),
            ('password', 'SF_PASSWORD'),
        ):
            value = os.getenv(var)
            if not value:
                raise ValueError(f"No {var} provided or found in environment.")
            values[key] = value

        if is_sandbox is None:
            is_sandbox = os.getenv('SF_IS_SANDBOX', 'false').strip().lower() == 'true'

        return cls(
            security_token=os.getenv('SF_SECURITY_TOKEN', ''),
            is_sandbox=is_sandbox,
            api_version=os.getenv('SF_API_VERSION', DEFAULT_API_VERSION),
            **values
        )


@dataclass(frozen=True)
class Session:
    """Outcome of a successful credential exchange."""
    access_token: str
    instance_url: str
    api_version: str = DEFAULT_API_VERSION


def authenticate(credentials: Credentials, http_client: httpx.Client | None = None) -> Session:
    """
    Exchange username/password credentials for an access token.

    The security token is appended to the password, as required by the
    username-password OAuth flow.

    Raises:
        AuthenticationFailed: If the service rejects the credentials or
            cannot be reached.
    """
    logging.info(f"Authenticating with Salesforce ({'sandbox' if credentials.is_sandbox else 'production'})")
    data = {
        "grant_type": "password",
        "client_id": credentials.consumer_key,
        "client_secret": credentials.consumer_secret,
        "username": credentials.username,
        "password": credentials.password + credentials.security_token,
    }

    owns_client = http_client is None
    client = http_client or httpx.Client(timeout=DEFAULT_TIMEOUT)
    try:
        response = client.post(credentials.token_url, data=data)
    except httpx.HTTPError as e:
        raise AuthenticationFailed(f"Could not reach {credentials.token_url}: {e}") from e
    finally:
        if owns_client:
            client.close()

    if response.status_code != 200:
        code, message = _parse_oauth_error(response)
        raise AuthenticationFailed(f"{code}: {message}")

    body = response.json()
    access_token = body.get("access_token")
    instance_url = body.get("instance_url")
    if not access_token or not instance_url:
        raise AuthenticationFailed("Token response was missing access_token or instance_url")

    logging.info("Connected to Salesforce")
    return Session(
        access_token=access_token,
        instance_url=instance_url.rstrip("/"),
        api_version=credentials.api_version,
    )


#=============================================================================
# Bulk API client
#=============================================================================

class SalesforceBulkClient:
    """
    Thin synchronous client for the Bulk API 1.0 job/batch resources.

    Errors are mapped to the package taxonomy: transient conditions (HTTP 429
    and 5xx, timeouts, connection errors) raise TransientQueryFailure, an
    invalid session raises AuthenticationFailed and any other rejection raises
    RemoteRejected.

    Only reads, close and abort are retried here. Job and batch creation are
    sent exactly once.
    """

    def __init__(self, session: Session, http_client: httpx.Client | None = None,
                 timeout: float = DEFAULT_TIMEOUT):
        self.session = session
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.Client(timeout=timeout)

    @property
    def base_url(self) -> str:
        return f"{self.session.instance_url}/services/async/{self.session.api_version}"

    def _headers(self) -> dict[str, str]:
        return {
            "X-SFDC-Session": self.session.access_token,
            "Content-Type": "application/json; charset=UTF-8",
            "Accept": "application/json",
        }

    def _request(self, method, path, json=None):
        url = f"{self.base_url}{path}"
        try:
            response = self._http.request(method, url, headers=self._headers(), json=json)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise TransientQueryFailure(f"{method} {path} failed: {e}") from e

        if response.status_code in TRANSIENT_STATUS_CODES:
            raise TransientQueryFailure(
                f"{method} {path} returned HTTP {response.status_code}"
            )
        if response.status_code >= 400:
            code, message = _parse_bulk_error(response)
            if code in SESSION_ERROR_CODES:
                raise AuthenticationFailed(f"{code}: {message}")
            raise RemoteRejected(code, message, status_code=response.status_code)

        try:
            return response.json()
        except ValueError:
            raise RemoteRejected(
                "InvalidResponse",
                f"{method} {path} returned a non-JSON body",
                status_code=response.status_code,
            ) from None

    def create_job(self, entity_type, operation, external_id_field=None) -> dict:
        operation = OperationKind.parse(operation)
        payload = {
            "operation": operation.value,
            "object": entity_type,
            "contentType": "JSON",
        }
        if external_id_field:
            payload["externalIdFieldName"] = external_id_field
        return self._expect_dict(self._request("POST", "/job", json=payload), "job")

    def create_batch(self, job_id, records) -> dict:
        payload = [dict(record) for record in records]
        return self._expect_dict(
            self._request("POST", f"/job/{job_id}/batch", json=payload), "batch"
        )

    def get_batch_info(self, job_id, batch_id) -> dict:
        return self._expect_dict(
            self._request("GET", f"/job/{job_id}/batch/{batch_id}"), "batch"
        )

    def get_batch_state(self, job_id, batch_id) -> BatchState:
        info = self.get_batch_info(job_id, batch_id)
        if "state" not in info:
            raise RemoteRejected("InvalidResponse", f"Batch {batch_id} descriptor has no state: {info!r}")
        try:
            return BatchState.parse(info["state"])
        except ValueError as e:
            raise RemoteRejected("InvalidResponse", str(e)) from e

    @retry_on_transient_errors
    def get_batch_result(self, job_id, batch_id) -> list[dict]:
        body = self._request("GET", f"/job/{job_id}/batch/{batch_id}/result")
        if not isinstance(body, list):
            raise RemoteRejected(
                "InvalidResponse", f"Result of batch {batch_id} was not a list"
            )
        if not all(isinstance(row, dict) for row in body):
            raise RemoteRejected(
                "InvalidResponse", f"Result of batch {batch_id} holds rows that are not objects"
            )
        return body

    @retry_on_transient_errors
    def close_job(self, job_id) -> dict:
        return self._expect_dict(
            self._request("POST", f"/job/{job_id}", json={"state": "Closed"}), "job"
        )

    @retry_on_transient_errors
    def abort_job(self, job_id) -> dict:
        return self._expect_dict(
            self._request("POST", f"/job/{job_id}", json={"state": "Aborted"}), "job"
        )

    @staticmethod
    def _expect_dict(body, what):
        if not isinstance(body, dict) or "id" not in body:
            raise RemoteRejected("InvalidResponse", f"Malformed {what} descriptor: {body!r}")
        return body

    def close(self):
        if self._owns_http_client:
            self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


def create_bulk_client(credentials: Credentials | None = None, is_sandbox=None) -> SalesforceBulkClient:
    """
    Authenticate and return a ready-to-use Bulk API client.

    Args:
        credentials (Credentials): Credentials to use. If not provided, they
            are read from the environment.
        is_sandbox (bool | None): Overrides the sandbox flag of environment
            credentials.
    """
    if credentials is None:
        credentials = Credentials.from_env(is_sandbox=is_sandbox)
    session = authenticate(credentials)
    client = SalesforceBulkClient(session)
    logging.info("Bulk API client created successfully.")
    return client


#=============================================================================
# Error parsing
#=============================================================================

def _parse_bulk_error(response: httpx.Response) -> tuple[str, str]:
    fallback_code = "RemoteRejected"
    fallback_message = f"Bulk API request failed with HTTP {response.status_code}"

    try:
        payload = response.json()
    except ValueError:
        body = response.text.strip()
        return fallback_code, body or fallback_message

    if isinstance(payload, list) and payload and isinstance(payload[0], dict):
        payload = payload[0]
    if isinstance(payload, dict):
        return (
            str(payload.get("exceptionCode") or payload.get("errorCode") or fallback_code),
            str(payload.get("exceptionMessage") or payload.get("message") or fallback_message),
        )
    return fallback_code, fallback_message


def _parse_oauth_error(response: httpx.Response) -> tuple[str, str]:
    try:
        payload = response.json()
    except ValueError:
        return "authentication_failed", response.text.strip() or "Authentication failed"
    if not isinstance(payload, dict):
        return "authentication_failed", "Authentication failed"
    return (
        str(payload.get("error") or "authentication_failed"),
        str(payload.get("error_description") or "Authentication failed"),
    )
