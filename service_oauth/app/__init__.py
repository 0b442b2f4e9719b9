"""
OAuth token service package for the OAuth Session Lab.

This package exposes the FastAPI application that holds provider client
secrets and performs the server-to-server half of the authorization code
flow:

- app.main: Application entrypoint that wires /oauth/token, /oauth/verify
  and /oauth/authorize routes.
- app.providers: Static provider registry (endpoints, scopes, quirks).
- app.exchange: Grant execution against provider token endpoints and
  normalization of token and profile responses.
- app.persistence: Client for the users/tokens REST store.

Design notes:
- Module import must not perform network calls. All IO happens in route
  handlers or explicit lifecycle hooks.
- Use the shared/ utilities for logging, metrics, models and errors.
- Provider failures are never retried automatically.
"""
