"""Client singletons for external web interactions."""
from place_resolver.clients.web_client import FetchResponse, WebClient

__all__ = ["FetchResponse", "WebClient"]
