"""auth/ -- Accounts, login handshake, and access credentials for Acorn.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/ or mods/.
api/ and mods/ import from auth/, not the other way around.
"""
