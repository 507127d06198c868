"""Infrastructure layer package.

Implements Port interfaces with concrete adapters (PostgreSQL, S3/MinIO).
The relay core MUST NOT import from this package directly; adapters are
wired in the composition root (src.main).
"""
