"""
Parser for the YAML templates that describe zones, virtual networks
and VM types.

Keys are upper-cased at every level, and string values may not contain
the separators used when names are joined (`;` between items, `#`
between attributes), as VM requests join network and lease names
with them.
"""

import yaml

from vpe.exceptions import ValidationError

ITEM_SEPARATOR = ';'
ATTR_SEPARATOR = '#'


def _normalize(node):
    if isinstance(node, dict):
        return {str(key).upper(): _normalize(value) for key, value in node.items()}
    if isinstance(node, list):
        return [_normalize(item) for item in node]
    if isinstance(node, str):
        for sep in (ITEM_SEPARATOR, ATTR_SEPARATOR):
            if sep in node:
                raise ValidationError(f"Do not use '{sep}' in resource files: {node}", "RESERVED_CHARACTER")
    return node


def parse(text) -> dict:
    """Parse a template document into a dict with upper-case keys."""
    if isinstance(text, dict):
        return _normalize(text)
    try:
        tree = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ValidationError(f"Malformed resource file: {e}", "MALFORMED_TEMPLATE") from e
    if not isinstance(tree, dict):
        raise ValidationError("Resource file must be a mapping", "MALFORMED_TEMPLATE")
    return _normalize(tree)


def require(tree: dict, *keys, where='resource file'):
    """Return the values of `keys`, failing on the first missing one."""
    values = []
    for key in keys:
        value = tree.get(key)
        if value is None or value == '':
            raise ValidationError(f"{key} is not defined in {where}", "MISSING_FIELD")
        values.append(value)
    return values if len(values) > 1 else values[0]
