"""mentor-meter: usage tracking and entitlements for AI video mentorship."""

from mentor_meter.client import MentorMeterClient
from mentor_meter.webhooks.signing import build_signature_header, verify_signature

__all__ = [
    "MentorMeterClient",
    "build_signature_header",
    "verify_signature",
]
__version__ = "0.1.0"
