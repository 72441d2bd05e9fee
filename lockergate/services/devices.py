from __future__ import annotations

from lockergate.config import get_settings
from lockergate.utils import canonical_device_id

# matches the device_id column width on qr_sessions and commands
MAX_DEVICE_ID_LENGTH = 64


class InvalidDeviceError(ValueError):
    pass


def resolve_device_id(raw: object) -> str:
    settings = get_settings()
    device_id = canonical_device_id(
        raw,
        prefix=settings.device_id_prefix,
        width=settings.device_id_width,
    )
    if not device_id:
        raise InvalidDeviceError("Device identifier is required.")
    if len(device_id) > MAX_DEVICE_ID_LENGTH:
        raise InvalidDeviceError(
            f"Device identifier must be at most {MAX_DEVICE_ID_LENGTH} characters."
        )
    return device_id
