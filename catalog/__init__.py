"""catalog/ -- Local product records owned by permgate users.

Layer rule: catalog/ imports only stdlib + third-party libraries and core/.
It does NOT import from api/ or auth/.
"""
