"""
Rendering of captioned videos through the Remotion CLI.
"""

from .bundle import BundleHandle
from .remotion_client import KNOWN_STYLES, RenderClient, RenderedAsset, RenderRequest

__all__ = [
    "BundleHandle",
    "KNOWN_STYLES",
    "RenderClient",
    "RenderedAsset",
    "RenderRequest",
]
