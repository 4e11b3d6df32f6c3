"""Build metadata for the installed k0rdentd distribution.

Release pipelines overwrite the packaged ``metadata.json`` (and, for
air-gapped builds, drop binaries under ``assets/``) before building the
wheel; nothing here changes at run time.
"""

import json
from functools import cache
from importlib import resources

from k0rdentd.exceptions import ConfigurationError
from k0rdentd.models import BuildMetadata, Flavor

_METADATA_FILE = "metadata.json"


def parse_metadata(raw: str) -> BuildMetadata:
    """Parse the JSON build metadata document.

    Args:
        raw: The JSON text.

    Returns:
        The build metadata, with defaults for missing fields.

    Raises:
        ConfigurationError: If the document is not valid JSON or names an unknown flavor.

    """
    try:
        data = json.loads(raw)
        flavor = Flavor(data.get("flavor") or Flavor.ONLINE.value)
    except (json.JSONDecodeError, ValueError, AttributeError) as e:
        raise ConfigurationError(f"Invalid build metadata: {e}") from e

    return BuildMetadata(
        flavor=flavor,
        version=data.get("version") or "dev",
        k0s_version=data.get("k0sVersion", ""),
        k0rdent_version=data.get("k0rdentVersion", ""),
        build_time=data.get("buildTime", ""),
    )


@cache
def get_metadata() -> BuildMetadata:
    """Return the metadata of this build, read once per process."""
    raw = resources.files("k0rdentd").joinpath(_METADATA_FILE).read_text()
    return parse_metadata(raw)


def is_airgap() -> bool:
    """Whether this is an air-gapped build."""
    return get_metadata().is_airgap
