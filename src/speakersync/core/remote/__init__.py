"""
Remote Store Client for the dataset document.
"""

from speakersync.core.remote.client import GistClient, RemoteStore

__all__ = ["GistClient", "RemoteStore"]
