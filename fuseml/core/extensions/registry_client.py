"""Client for the extension registry served by fuseml-core"""

import logging
from typing import List, Optional

import requests

from fuseml.core.extensions.credentials import TransformedCredentials
from fuseml.core.extensions.downloader import build_retry_session
from fuseml.core.extensions.exceptions import RegistryError
from fuseml.core.extensions.models import (
    ExtensionDescriptor,
    RegisteredCredentials,
    RegisteredEndpoint,
    RegisteredExtension,
    RegisteredService,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
RETRY_METHODS = ("GET", "POST", "DELETE")


class RegistryClient:
    """
    Registers, unregisters and queries extensions in the remote registry

    Protocol:
        GET    /extensions/{id}  200 registered, 404 not registered
        GET    /extensions       200 list
        POST   /extensions       201 created
        DELETE /extensions/{id}  204 deleted, 404 already gone
    """

    def __init__(
        self,
        base_url: str,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 4,
        session: Optional[requests.Session] = None,
        debug: bool = False
    ):
        """
        Initialize registry client

        Args:
            base_url: Registry URL, e.g. http://fuseml-core.example.io
            timeout: Request timeout in seconds
            max_retries: Retries for transient transport failures
            session: Preconfigured session (a retrying one is built otherwise)
            debug: Log retry attempts
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        # POST is safe to retry, register() checks is_registered first
        self.session = session or build_retry_session(
            max_retries,
            allowed_methods=RETRY_METHODS,
            debug=debug
        )

    def _url(self, extension_id: Optional[str] = None) -> str:
        if extension_id is None:
            return f"{self.base_url}/extensions"
        return f"{self.base_url}/extensions/{extension_id}"

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            return self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise RegistryError(f"{method} {url} failed: {e}") from e

    def is_registered(self, extension_id: str) -> bool:
        """
        Check if an extension is already registered

        Raises:
            RegistryError: Unexpected response
        """
        response = self._request("GET", self._url(extension_id))
        if response.status_code == 200:
            return True
        if response.status_code == 404:
            return False
        raise RegistryError(
            f"Unexpected response from registry: {response.status_code}",
            status_code=response.status_code,
            body=response.text
        )

    def register(
        self,
        descriptor: ExtensionDescriptor,
        transformed_credentials: Optional[TransformedCredentials] = None
    ) -> bool:
        """
        Register an extension unless it is already registered

        Updating a registered extension requires unregistering it first.

        Returns:
            True if the extension was registered, False if it was skipped

        Raises:
            RegistryError: Unexpected response
        """
        if self.is_registered(descriptor.name):
            logger.warning(
                f"Extension {descriptor.name} is already registered; "
                f"if you want to update it, delete it first"
            )
            return False

        if transformed_credentials is None:
            transformed_credentials = descriptor.transformed_credentials
        self.create(self.build_payload(descriptor, transformed_credentials))
        return True

    def create(self, extension: RegisteredExtension) -> None:
        """
        POST an extension record

        Raises:
            RegistryError: Any status other than 201, with the response body
        """
        response = self._request(
            "POST",
            self._url(),
            json=extension.model_dump(mode="json", exclude_none=True)
        )
        if response.status_code != 201:
            raise RegistryError(
                f"Failed registering the extension. Server returns {response.status_code}: {response.text}",
                status_code=response.status_code,
                body=response.text
            )
        logger.info(f"Extension {extension.id} registered")

    def unregister(self, extension_id: str) -> None:
        """
        Remove an extension from the registry; unknown extensions are ignored

        Raises:
            RegistryError: Any status other than 204/404, with the response body
        """
        response = self._request("DELETE", self._url(extension_id))
        if response.status_code == 204:
            logger.info(f"Extension {extension_id} unregistered")
            return
        if response.status_code == 404:
            logger.info(f"Extension {extension_id} is not registered")
            return
        raise RegistryError(
            f"Failed unregistering the extension. Server returns {response.status_code}: {response.text}",
            status_code=response.status_code,
            body=response.text
        )

    def list_registered(self) -> List[RegisteredExtension]:
        """
        Read all registered extensions

        Raises:
            RegistryError: Unexpected response or unparseable body
        """
        response = self._request("GET", self._url())
        if response.status_code != 200:
            raise RegistryError(
                f"Unexpected response from registry: {response.status_code}",
                status_code=response.status_code,
                body=response.text
            )
        try:
            items = response.json() or []
            return [RegisteredExtension.model_validate(item) for item in items]
        except ValueError as e:
            # pydantic's ValidationError is a ValueError too
            raise RegistryError(
                f"Failed to parse registry response: {e}",
                status_code=response.status_code,
                body=response.text
            ) from e

    @staticmethod
    def build_payload(
        descriptor: ExtensionDescriptor,
        transformed_credentials: Optional[TransformedCredentials] = None
    ) -> RegisteredExtension:
        """
        Build the registry record of an extension

        Values resolved from secrets override statically declared
        configuration keys of the same credential.
        """
        transformed_credentials = transformed_credentials or {}
        services = []
        for service in descriptor.services:
            service_transforms = transformed_credentials.get(service.id, {})

            endpoints = [
                RegisteredEndpoint(
                    url=endpoint.url,
                    type=endpoint.type or None,
                    configuration=dict(endpoint.configuration),
                )
                for endpoint in service.endpoints
            ]

            credentials = []
            for creds in service.credentials:
                configuration = dict(creds.configuration)
                configuration.update(service_transforms.get(creds.id, {}))
                credentials.append(RegisteredCredentials(
                    id=creds.id,
                    default=creds.default,
                    scope=creds.scope or None,
                    projects=list(creds.projects),
                    users=list(creds.users),
                    configuration=configuration,
                ))

            services.append(RegisteredService(
                id=service.id,
                resource=service.resource or None,
                category=service.category or None,
                description=service.description or None,
                auth_required=service.auth_required,
                endpoints=endpoints,
                credentials=credentials,
            ))

        return RegisteredExtension(
            id=descriptor.name,
            product=descriptor.product,
            version=descriptor.version,
            description=descriptor.description,
            zone=descriptor.zone or None,
            services=services,
        )

    def close(self):
        """Close the session"""
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
