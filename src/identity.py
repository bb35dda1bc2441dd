"""
Composite Identity Codec - Stable identifiers for multi-part remote objects.

Remote objects without a single natural key are identified by an ordered
list of components joined with a separator. Identities are not
self-describing, so decoding always needs the expected arity.
"""

from typing import List, Sequence

from errors import DecodeError, PermanentInvalidInputError

DEFAULT_SEPARATOR = "#"


def encode(components: Sequence[str], separator: str = DEFAULT_SEPARATOR) -> str:
    """
    Join identity components into their canonical textual form.

    Args:
        components: Ordered, non-empty string components.
        separator: Separator character.

    Returns:
        The encoded identity.

    Raises:
        PermanentInvalidInputError: If there are no components, a component is
            empty or not a string, or a component contains the separator.
    """
    if not separator:
        raise ValueError("Identity separator must not be empty")
    if not components:
        raise PermanentInvalidInputError("Cannot encode an identity with no components")

    for index, component in enumerate(components):
        if not isinstance(component, str):
            raise PermanentInvalidInputError(
                f"Identity component {index} must be a string, "
                f"got {type(component).__name__}"
            )
        if not component:
            raise PermanentInvalidInputError(f"Identity component {index} is empty")
        if separator in component:
            raise PermanentInvalidInputError(
                f"Identity component {index} ({component!r}) contains "
                f"the separator {separator!r}"
            )

    return separator.join(components)


def decode(
    identity: str, expected_arity: int, separator: str = DEFAULT_SEPARATOR
) -> List[str]:
    """
    Split an encoded identity back into its components.

    Raises:
        DecodeError: If the identity is empty, has an empty component or does
            not have exactly ``expected_arity`` components.
    """
    if expected_arity < 1:
        raise ValueError(f"expected_arity must be at least 1, got {expected_arity}")
    if not isinstance(identity, str) or not identity:
        raise DecodeError(f"Cannot decode empty identity {identity!r}")

    components = identity.split(separator)
    if len(components) != expected_arity:
        raise DecodeError(
            f"Identity {identity!r} has {len(components)} component(s), "
            f"expected {expected_arity}"
        )
    if any(not component for component in components):
        raise DecodeError(f"Identity {identity!r} has an empty component")
    return components


class CompositeIdentityCodec:
    """Codec bound to the arity of one resource kind."""

    def __init__(self, arity: int, separator: str = DEFAULT_SEPARATOR):
        if arity < 1:
            raise ValueError(f"Identity arity must be at least 1, got {arity}")
        self.arity = arity
        self.separator = separator

    def encode(self, components: Sequence[str]) -> str:
        if len(components) != self.arity:
            raise PermanentInvalidInputError(
                f"Expected {self.arity} identity component(s), got {len(components)}"
            )
        return encode(components, self.separator)

    def decode(self, identity: str) -> List[str]:
        return decode(identity, self.arity, self.separator)


def qualified_resource_name(
    service: str,
    resource_type: str,
    region: str,
    resource_id: str,
    account: str = "",
) -> str:
    """
    Build the provider-qualified resource name used by tagging endpoints.

    >>> qualified_resource_name("mongodb", "instance", "ap-guangzhou", "cmgo-1")
    'qcs::mongodb:ap-guangzhou:uin/:instance/cmgo-1'
    """
    return f"qcs::{service}:{region}:uin/{account}:{resource_type}/{resource_id}"
