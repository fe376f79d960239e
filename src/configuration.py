"""Configuration loader."""

import logging
from typing import Any, Optional

import yaml
from models.config import (
    Configuration,
    EnvironmentOverrides,
    FeatureFlagsConfiguration,
    QuotaHandlersConfiguration,
    ServiceConfiguration,
)


logger = logging.getLogger(__name__)


class LogicError(Exception):
    """Error in application logic."""


class AppConfig:
    """Singleton class to load and store the configuration."""

    _instance = None

    def __new__(cls, *args: Any, **kwargs: Any) -> "AppConfig":
        """Create a new instance of the class."""
        if not isinstance(cls._instance, cls):
            cls._instance = super().__new__(cls, *args, **kwargs)
        return cls._instance

    def __init__(self) -> None:
        """Initialize the class instance."""
        self._configuration: Optional[Configuration] = None
        self._filename: Optional[str] = None

    def load_configuration(self, filename: str) -> None:
        """Load configuration from YAML file.

        Ceilings found in the environment take precedence over the values
        stored in the file.
        """
        with open(filename, encoding="utf-8") as fin:
            config_dict = yaml.safe_load(fin) or {}
            logger.info("Loaded configuration from %s", filename)
            self.init_from_dict(config_dict)
        self._filename = filename

    def init_from_dict(self, config_dict: dict[Any, Any]) -> None:
        """Initialize configuration from a dictionary and the environment."""
        config_dict = EnvironmentOverrides().apply(dict(config_dict))
        self._configuration = Configuration(**config_dict)

    def reload(self) -> Configuration:
        """Read the configuration file and the environment again."""
        if self._filename is None:
            raise LogicError("logic error: configuration was not loaded from file")
        self.load_configuration(self._filename)
        return self.configuration

    def is_loaded(self) -> bool:
        """Check if configuration has been loaded."""
        return self._configuration is not None

    @property
    def configuration(self) -> Configuration:
        """Return the whole configuration."""
        if self._configuration is None:
            raise LogicError("logic error: configuration is not loaded")
        return self._configuration

    @property
    def service_configuration(self) -> ServiceConfiguration:
        """Return service configuration."""
        if self._configuration is None:
            raise LogicError("logic error: configuration is not loaded")
        return self._configuration.service

    @property
    def quota_handlers_configuration(self) -> QuotaHandlersConfiguration:
        """Return configuration of all admission components."""
        if self._configuration is None:
            raise LogicError("logic error: configuration is not loaded")
        return self._configuration.quota_handlers

    @property
    def features(self) -> FeatureFlagsConfiguration:
        """Return feature flags."""
        if self._configuration is None:
            raise LogicError("logic error: configuration is not loaded")
        return self._configuration.features


configuration: AppConfig = AppConfig()
