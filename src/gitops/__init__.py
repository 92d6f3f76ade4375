"""Weave GitOps control-plane server.

Authentication and authorization core for the GitOps API: OIDC relying
party, local admin login, principal resolution, and Git provider OAuth
with PKCE for the CLI.
"""

__version__ = "0.1.0"
