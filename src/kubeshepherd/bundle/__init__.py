from .builder import REMOTE_BUNDLE_NAME, BundleBuilder, transfer, validate
from .collaborators import PlatformFamily, detect_platform

__all__ = [
    "REMOTE_BUNDLE_NAME",
    "BundleBuilder",
    "PlatformFamily",
    "detect_platform",
    "transfer",
    "validate",
]
