"""Auth module - secure storage of the API token."""

from .keychain import KeychainManager, StoredCredentials

__all__ = ["KeychainManager", "StoredCredentials"]
