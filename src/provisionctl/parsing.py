"""
Parsing of tool output into domain records.

The provisioning templates expose a single output block:

    {"instance_info": {"value": {"name": ..., "image": ...,
                                 "status": ..., "ip_address": ...}}}

which `tofu output -json` prints on stdout. Extra keys at any level are
ignored; any missing or malformed field is a ParseError naming its key path,
and no partial Instance is ever returned.
"""

from __future__ import annotations

import ipaddress
import json
import logging
from typing import Any, Dict, Union

from provisionctl.errors import ParseError
from provisionctl.models.environment import Instance
from provisionctl.process import RawOutput

logger = logging.getLogger(__name__)

__all__ = ["parse_instance_info"]

OUTPUT_KEY = "instance_info"

# Instance field -> key in the output block
_FIELDS = {
    "id_or_name": "name",
    "image_reference": "image",
    "status": "status",
    "address": "ip_address",
}


def _require_object(value: Any, path: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ParseError(f"expected an object at '{path}', got {type(value).__name__}")
    return value


def parse_instance_info(raw: Union[RawOutput, str]) -> Instance:
    """
    Build an Instance from provisioning tool output.

    Raises:
        ParseError: On invalid JSON, a missing key, a non-string field or an
            ip_address that is not a valid IPv4/IPv6 address
    """
    text = raw.stdout if isinstance(raw, RawOutput) else raw
    try:
        document = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise ParseError(f"provisioning output is not valid JSON: {e}") from e

    document = _require_object(document, "$")
    if OUTPUT_KEY not in document:
        raise ParseError(f"missing key '{OUTPUT_KEY}' in provisioning output")
    block = _require_object(document[OUTPUT_KEY], OUTPUT_KEY)
    if "value" not in block:
        raise ParseError(f"missing key '{OUTPUT_KEY}.value' in provisioning output")
    value = _require_object(block["value"], f"{OUTPUT_KEY}.value")

    fields = {}
    for attr, key in _FIELDS.items():
        path = f"{OUTPUT_KEY}.value.{key}"
        if key not in value or value[key] is None:
            raise ParseError(f"missing key '{path}' in provisioning output")
        item = value[key]
        if not isinstance(item, str) or not item.strip():
            raise ParseError(f"'{path}' must be a non-empty string, got {item!r}")
        # status is backend-native text and kept as reported
        fields[attr] = item if attr == "status" else item.strip()

    try:
        ipaddress.ip_address(fields["address"])
    except ValueError as e:
        raise ParseError(
            f"'{OUTPUT_KEY}.value.ip_address' is not a valid IP address: {fields['address']!r}"
        ) from e

    instance = Instance(**fields)
    logger.debug(f"Parsed instance {instance.id_or_name} at {instance.address}")
    return instance
