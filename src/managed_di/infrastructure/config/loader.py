import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml
from pydantic import ValidationError

from managed_di.domain import ClassDescriptor, ConfigurationError

logger = logging.getLogger(__name__)

MANAGED_CLASSES_KEY = "managed_classes"


def parse_descriptors(data: Dict[str, Any]) -> List[ClassDescriptor]:
    """Build class descriptors from a parsed configuration document.

    The ``managed_classes`` list declares the classes in order. A root entry
    named after a managed class is its configuration section, unless the
    class entry carries an explicit ``config`` mapping.

    Args:
        data: Parsed configuration document.

    Returns:
        Class descriptors in declaration order.

    Raises:
        ConfigurationError: If the document layout or a descriptor is invalid.

    Example:
        >>> parse_descriptors({
        ...     "managed_classes": [
        ...         {"name": "repository", "class": "app.repository:SqlRepository"},
        ...     ],
        ...     "repository": {"url": "sqlite://"},
        ... })
    """
    if not isinstance(data, dict):
        raise ConfigurationError("Configuration document must be a mapping.")
    entries = data.get(MANAGED_CLASSES_KEY)
    if not isinstance(entries, list):
        raise ConfigurationError(f"Configuration document requires a '{MANAGED_CLASSES_KEY}' list.")

    descriptors = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ConfigurationError(f"Managed class entry #{index} must be a mapping.")
        entry = dict(entry)
        section = data.get(entry.get("name"))
        if "config" not in entry and isinstance(section, dict):
            entry["config"] = section
        try:
            descriptors.append(ClassDescriptor.model_validate(entry))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid managed class entry #{index}: {e}") from e
    return descriptors


def load_descriptors(config_path: Union[str, Path]) -> List[ClassDescriptor]:
    """Load class descriptors from a YAML or JSON file.

    Args:
        config_path: Path of a ``.yaml``, ``.yml`` or ``.json`` file.

    Returns:
        Class descriptors in declaration order.

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid.

    Example:
        >>> container = ManagedContainer()
        >>> container.configure(load_descriptors("app.yaml"))
    """
    path = Path(config_path)
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    suffix = path.suffix.lower()
    try:
        with path.open("r", encoding="utf-8") as f:
            if suffix == ".json":
                data = json.load(f)
            elif suffix in (".yml", ".yaml"):
                data = yaml.safe_load(f)
            else:
                raise ConfigurationError(f"Unsupported configuration file format: {path.suffix}")
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to parse configuration file '{config_path}': {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read configuration file '{config_path}': {e}") from e

    descriptors = parse_descriptors(data or {})
    logger.debug("Loaded %d managed class descriptors from %s.", len(descriptors), path)
    return descriptors
