"""HTTP clients for the supported streaming platforms."""

from .factory import HttpPlatformClientFactory
from .linkedin import LinkedInClient
from .youtube import YouTubeClient

__all__ = ["HttpPlatformClientFactory", "LinkedInClient", "YouTubeClient"]
