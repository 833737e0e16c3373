"""
Identity Gateway Application
============================

FastAPI service that authenticates users against Microsoft Entra ID,
resolves their application roles and keeps them signed in with a
stateless session cookie.

Use ``identity_gateway.app.main.create_app`` to build the application.
"""
