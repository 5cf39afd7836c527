"""auth/ -- Credential verification and token lifecycle for authkeep.

Layer rule: auth/ imports only stdlib + third-party libraries, plus
core.config for TokenConfig. It does NOT import from api/.
api/ and main.py import from auth/, not the other way around.
"""
