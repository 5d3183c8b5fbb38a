"""Synthetic load generator for ACME certificate-issuance servers.

Simulated clients register accounts, request authorizations, obtain and
revoke certificates at a configurable rate while the built-in challenge
responder answers HTTP-01 validation requests.
"""

from __future__ import annotations

__all__ = []
