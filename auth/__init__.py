"""auth/ -- Token core: credential codec, token store, session manager, sweeper.

Layer rule: auth/ imports stdlib, third-party libraries and core/ only.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
