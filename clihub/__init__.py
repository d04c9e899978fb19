"""cli-hub: keep provider profiles in sync with CLI tool configuration files."""

__version__ = "0.4.0"
