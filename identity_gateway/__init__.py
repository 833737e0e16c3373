"""Identity gateway: OIDC login and stateless sessions for web applications."""

__version__ = "1.0.0"
