import os
from dataclasses import dataclass

import requests
from injector import Module, provider, singleton
from loguru import logger

from src.synthetics_monitor.client import DEFAULT_BASE_URL, SyntheticsClient


@dataclass(frozen=True)
class SyntheticsSettings:
    """Operator settings for the Synthetics plugin.

    Environment Variables:
    - SYNTHETICS_API_URL: API base endpoint (default: New Relic Synthetics v3)
    - SYNTHETICS_RECONCILE_INTERVAL: Drift check interval in seconds (default: 300)
    """
    base_url: str = DEFAULT_BASE_URL
    reconcile_interval: float = 300

    @classmethod
    def from_env(cls) -> "SyntheticsSettings":
        return cls(
            base_url=os.getenv("SYNTHETICS_API_URL", DEFAULT_BASE_URL),
            reconcile_interval=float(os.getenv("SYNTHETICS_RECONCILE_INTERVAL", "300")),
        )


class SyntheticsClientFactory:
    """Builds API clients sharing one transport and one set of settings."""

    def __init__(self, session: requests.Session, settings: SyntheticsSettings):
        self.session = session
        self.settings = settings

    def for_api_key(self, api_key: str) -> SyntheticsClient:
        return SyntheticsClient(api_key, session=self.session, base_url=self.settings.base_url)


class SyntheticsModule(Module):
    """Dependency injection module for the Synthetics API transport."""

    @provider
    @singleton
    def provide_settings(self) -> SyntheticsSettings:
        settings = SyntheticsSettings.from_env()
        logger.debug(f"Synthetics settings: {settings}")
        return settings

    @provider
    @singleton
    def provide_session(self) -> requests.Session:
        return requests.Session()

    @provider
    @singleton
    def provide_client_factory(self, session: requests.Session, settings: SyntheticsSettings) -> SyntheticsClientFactory:
        return SyntheticsClientFactory(session, settings)
