"""
Client-side authentication session management.

Design goals:
- Provider-agnostic core (Cognito hosted UI + username/password today).
- Deterministic offline mode when no identity provider is configured.
- Session state owned by one object; consumers subscribe instead of polling.
"""
