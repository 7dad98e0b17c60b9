import logging
from typing import Any, Dict, Type, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from .errors import ConfigDecodeError
from .metrics import config_decode_failures_total
from .models import Config, LegacyConfig

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that refuses mappings with repeated keys."""

    def construct_mapping(self, node, deep=False):
        seen = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if not isinstance(key, (str, int, float, bool)):
                continue
            if key in seen:
                raise yaml.constructor.ConstructorError(
                    "while constructing a mapping",
                    node.start_mark,
                    f"found duplicate key {key!r}",
                    key_node.start_mark,
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


def _load_mapping(data: bytes) -> Dict[str, Any]:
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ConfigDecodeError(f"configuration is not valid UTF-8: {e}") from e
    try:
        doc = yaml.load(text, Loader=_UniqueKeyLoader)
    except yaml.YAMLError as e:
        raise ConfigDecodeError(f"failed to parse configuration: {e}") from e
    if doc is None:
        # An empty file decodes to zero values, like an empty mapping
        return {}
    if not isinstance(doc, dict):
        raise ConfigDecodeError(f"configuration must be a mapping, got {type(doc).__name__}")
    return doc


def _decode(data: bytes, model: Type[M], schema: str) -> M:
    try:
        doc = _load_mapping(data)
        return model.model_validate(doc)
    except ValidationError as e:
        config_decode_failures_total.labels(schema=schema).inc()
        raise ConfigDecodeError(f"failed to unmarshal {schema} configuration: {e}") from e
    except ConfigDecodeError:
        config_decode_failures_total.labels(schema=schema).inc()
        raise


def decode_current(data: bytes) -> Config:
    """Decode a v1 document; unknown keys and any version other than 1 are rejected."""
    return _decode(data, Config, "v1")


def decode_legacy(data: bytes) -> LegacyConfig:
    return _decode(data, LegacyConfig, "v0")
