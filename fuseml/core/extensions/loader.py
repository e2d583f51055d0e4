"""Loader for extension description files"""

import logging
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import ValidationError

from fuseml.core.extensions.exceptions import DescriptorError, FetchError
from fuseml.core.extensions.models import ExtensionDescriptor
from fuseml.core.extensions.resolver import AssetResolver

logger = logging.getLogger(__name__)

# Security limits
MAX_DESCRIPTION_SIZE = 500 * 1024  # 500KB


class DescriptorLoader:
    """Locates, fetches and parses <repository>/<extension>/description.yaml"""

    def __init__(self, resolver: AssetResolver, description_filename: str = "description.yaml"):
        self.resolver = resolver
        self.description_filename = description_filename

    def load(self) -> ExtensionDescriptor:
        """
        Load the extension descriptor

        Only the document structure is checked here; steps are validated
        when they are executed.

        Returns:
            ExtensionDescriptor

        Raises:
            DescriptorError: If the description cannot be fetched, read or parsed
        """
        with self.resolver.scratch_dir() as scratch_dir:
            try:
                path = self.resolver.fetch_file(self.description_filename, scratch_dir)
            except FetchError as e:
                raise DescriptorError(
                    f"Failed to fetch description file of extension {self.resolver.extension_name}: {e}"
                ) from e

            data = self._read(path)

        descriptor = self.parse(data)
        if not descriptor.name:
            descriptor.name = self.resolver.extension_name
        logger.info(
            f"Loaded description of extension {descriptor.name} "
            f"({len(descriptor.install)} install steps, {len(descriptor.uninstall)} uninstall steps)"
        )
        return descriptor

    @staticmethod
    def parse(data: Any) -> ExtensionDescriptor:
        """Build a descriptor from the parsed YAML document"""
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise DescriptorError(
                f"Failed to parse description file: expected a mapping, got {type(data).__name__}"
            )
        try:
            return ExtensionDescriptor.model_validate(data)
        except ValidationError as e:
            raise DescriptorError(f"Failed to parse description file: {e}") from e

    @staticmethod
    def _read(path: Path) -> Dict[str, Any]:
        try:
            size = path.stat().st_size
            if size > MAX_DESCRIPTION_SIZE:
                raise DescriptorError(
                    f"Description file too large: {size / 1024:.2f}KB "
                    f"(max: {MAX_DESCRIPTION_SIZE / 1024}KB)"
                )
            with open(path, 'r', encoding='utf-8') as f:
                return yaml.safe_load(f)
        except OSError as e:
            raise DescriptorError(f"Failed to read description file: {e}") from e
        except (UnicodeDecodeError, yaml.YAMLError) as e:
            raise DescriptorError(f"Failed to parse description file: {e}") from e
