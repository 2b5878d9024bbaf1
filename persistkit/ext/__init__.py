"""Optional framework integrations (``pip install persistkit[flask]``)."""
