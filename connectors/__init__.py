"""
connectors — OAuth-backed integrations with external services.

Provides a generic, data-driven connector framework that handles:
  • OAuth2 authorization-URL generation with single-use state
  • Callback handling (code → token exchange)
  • Encrypted config storage & lazy token refresh
  • AES-256-GCM encryption of credentials at rest
  • Provider API clients and their health checks

Each provider (Gmail, Outlook, Yahoo, …) is a ``ConnectorDescriptor`` in
``connectors.registry``; per-provider OAuth differences live on its
``OAuthFlow``.
"""
