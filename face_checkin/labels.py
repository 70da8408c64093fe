from __future__ import annotations

import re

from .types import Identity

LABEL_DELIMITER = "::"

_DISPLAY_WITH_CODE = re.compile(r"^(?P<name>.*) \((?P<code>[^()]*)\)$")


def validate_display_name(display_name: str) -> None:
    if LABEL_DELIMITER in display_name:
        raise ValueError(f"Display name cannot contain {LABEL_DELIMITER!r}: {display_name!r}")


def display_text(identity: Identity) -> str:
    if identity.code:
        return f"{identity.display_name} ({identity.code})"
    return identity.display_name


def encode_label(identity: Identity) -> str:
    """Render ``"<name> (<code>)::<id>"``; the id is everything after the first delimiter."""
    if not identity.identity_id:
        raise ValueError("identity_id cannot be empty.")
    validate_display_name(identity.display_name)
    if identity.code is not None:
        validate_display_name(identity.code)
    return f"{display_text(identity)}{LABEL_DELIMITER}{identity.identity_id}"


def decode_label(label: str) -> Identity:
    display, sep, identity_id = label.partition(LABEL_DELIMITER)
    if not sep or not identity_id:
        raise ValueError(f"Label has no identity id: {label!r}")

    found = _DISPLAY_WITH_CODE.match(display)
    if found:
        return Identity(identity_id=identity_id, display_name=found.group("name"), code=found.group("code"))
    return Identity(identity_id=identity_id, display_name=display)
