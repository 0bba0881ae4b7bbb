"""
Common utilities shared across components in the library
"""

# Standard
from typing import Any, Optional, Tuple
import re

# First Party
import alog

# Local
from . import constants
from .exceptions import assert_config

log = alog.use_channel("OPUTL")

# Sentinel for missing dict values
__MISSING__ = "__MISSING__"

## Dicts #######################################################################


def merge_configs(base, overrides) -> dict:
    """Helper to perform a deep merge of the overrides into the base. The merge
    is done in place, but the resulting dict is also returned for convenience.

    The merge logic is quite simple: If both the base and overrides have a key
    and the type of the key for both is a dict, recursively merge, otherwise
    set the base value to the override value.

    Args:
        base:  dict
            The base config that will be updated with the overrides
        overrides:  dict
            The override config

    Returns:
        merged:  dict
            The merged results of overrides merged onto base
    """
    for key, value in overrides.items():
        if (
            key not in base
            or not isinstance(base[key], dict)
            or not isinstance(value, dict)
        ):
            base[key] = value
        else:
            base[key] = merge_configs(base[key], value)

    return base


def nested_set(dct: dict, key: str, val: Any):
    """Helper to set values in a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict into which the key will be set
        key:  str
            Key that may contain '.' notation indicating dict nesting
        val:  Any
            The value to place at the nested key
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for i, part in enumerate(parts[:-1]):
        dct = dct.setdefault(part, {})
        if not isinstance(dct, dict):
            raise TypeError(
                "Intermediate key {} is not a dict".format(  # pylint: disable=consider-using-f-string
                    constants.NESTED_DICT_DELIM.join(parts[:i])
                )
            )
    dct[parts[-1]] = val


def nested_get(dct: dict, key: str, dflt=None) -> Any:
    """Helper to get values from a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict from which the key will be read
        key:  str
            Key that may contain '.' notation indicating dict nesting
        dflt:  Any
            Value returned when any part of the key is missing

    Returns:
        val:  Any
            Whatever value found in the dict or dflt
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for part in parts[:-1]:
        dct = dct.get(part, __MISSING__)
        if not isinstance(dct, dict):
            return dflt
    return dct.get(parts[-1], dflt)


## Versions ####################################################################

VERSION_EXPR = re.compile(r"^v(\d+)\.(\d+)\.(\d+)$")


def parse_version(version: str) -> Tuple[int, int, int]:
    """Parse a "vX.Y.Z" configuration version string

    Args:
        version:  str
            The version to parse

    Returns:
        parts:  Tuple[int, int, int]
            The major, minor and patch numbers
    """
    match = VERSION_EXPR.match(version or "")
    assert_config(
        match is not None, f"Version [{version}] is not of the form vX.Y.Z"
    )
    return tuple(int(part) for part in match.groups())


def version_at_least(version: str, minimum: str) -> bool:
    """Check that a version is at least the given minimum. Only the major and
    minor parts take part in the comparison.
    """
    major, minor, _ = parse_version(version)
    min_major, min_minor, _ = parse_version(minimum)
    return (major, minor) >= (min_major, min_minor)


def major_version(version: str) -> Optional[str]:
    """Get the "vX" major prefix of a version string if it has one"""
    match = re.match(r"^(v\d+)\.", version or "")
    return match.group(1) if match else None


## Classes #####################################################################


class abstractclassproperty:  # pylint: disable=invalid-name,too-few-public-methods
    """Class property that derived classes must overwrite with a plain class
    attribute. Accessing it on a class that did not do so raises.
    """

    def __init__(self, func):
        self.prop_name = func.__name__
        self.__doc__ = func.__doc__

    def __get__(self, *_):
        raise NotImplementedError(
            f"Cannot access abstractclassproperty {self.prop_name}"
        )
