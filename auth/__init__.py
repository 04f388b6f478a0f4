"""auth/ -- Authentication core for authgate.

Token service, strategy resolver, passkey ceremonies and the account store.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/ or cache/ at runtime (cache types appear in
annotations only). api/ imports from auth/, not the other way around.
"""
