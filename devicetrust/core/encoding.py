"""
Unpadded base64, the key and signature encoding used on the federation wire.
"""

import base64
import binascii


def encode_base64(data: bytes) -> str:
    """Standard base64 alphabet, padding stripped."""
    return base64.b64encode(data).decode("ascii").rstrip("=")


def decode_base64(value: str) -> bytes:
    """
    Decode padded or unpadded standard base64.

    Raises:
        ValueError: If value is not valid base64
    """
    if not isinstance(value, str):
        raise ValueError("base64 value must be a string")
    padded = value + "=" * (-len(value) % 4)
    try:
        return base64.b64decode(padded.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(f"invalid base64: {e}") from e
