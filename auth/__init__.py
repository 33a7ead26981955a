"""auth/ -- Authentication and session-lifecycle core for authcore.

Entry point: auth.service.AuthService.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/. core.config.Settings is referenced for typing
only (AuthConfig.from_settings). auth/dependencies.py is the single module
that touches FastAPI.
"""
