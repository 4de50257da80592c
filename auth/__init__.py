"""auth/ -- Authentication and authorization package for Storefront.

Credential Store, OTP Issuer/Verifier, Token Issuer, Session Record Log and
the Access Control Gate.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, web/ or shop/.
api/ and web/ import from auth/, not the other way around.
"""
