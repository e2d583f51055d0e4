"""Resolution of service credential values from cluster secrets"""

import logging
from typing import Dict

from fuseml.core.extensions.cluster import Cluster
from fuseml.core.extensions.exceptions import ClusterError, CredentialError
from fuseml.core.extensions.models import ExtensionDescriptor

logger = logging.getLogger(__name__)

# service id -> credential id -> configuration key -> value
TransformedCredentials = Dict[str, Dict[str, Dict[str, str]]]


class CredentialTransformPipeline:
    """Maps the servicecredentials rules of a descriptor to concrete secret values"""

    def __init__(self, cluster: Cluster):
        self.cluster = cluster

    def resolve(self, descriptor: ExtensionDescriptor) -> TransformedCredentials:
        """
        Read every secret field referenced by the transform rules

        Any failure aborts the whole resolution, so partial credential
        sets are never registered.

        Raises:
            CredentialError: Secret cannot be read, lacks the field or holds binary data
        """
        result: TransformedCredentials = {}
        # every declared service/credential gets an entry, even without transforms
        for service in descriptor.service_credentials:
            credentials = result.setdefault(service.service_id, {})
            for credential in service.credentials:
                credentials.setdefault(credential.id, {})

        secrets: Dict[tuple, Dict[str, bytes]] = {}
        for rule in descriptor.credential_transform_rules():
            key = (rule.namespace, rule.secret)
            if key not in secrets:
                try:
                    secrets[key] = self.cluster.get_secret(rule.namespace, rule.secret)
                except ClusterError as e:
                    raise CredentialError(
                        f"Failed to read secret {rule.namespace}/{rule.secret} for credential "
                        f"{rule.credential_id} of service {rule.service_id}: {e}"
                    ) from e

            data = secrets[key]
            if rule.field not in data:
                raise CredentialError(
                    f"Secret {rule.namespace}/{rule.secret} has no field '{rule.field}' "
                    f"(credential {rule.credential_id} of service {rule.service_id})"
                )

            value = data[rule.field]
            if isinstance(value, bytes):
                try:
                    value = value.decode("utf-8")
                except UnicodeDecodeError as e:
                    raise CredentialError(
                        f"Field '{rule.field}' of secret {rule.namespace}/{rule.secret} is not valid text "
                        f"(credential {rule.credential_id} of service {rule.service_id}): {e}"
                    ) from e
            result[rule.service_id][rule.credential_id][rule.config_key] = value

        logger.debug(f"Resolved credential transforms for extension {descriptor.name}")
        return result

    def apply(self, descriptor: ExtensionDescriptor) -> TransformedCredentials:
        """Resolve and attach the result to the descriptor"""
        descriptor.transformed_credentials = self.resolve(descriptor)
        return descriptor.transformed_credentials
