"""
Domain Layer - Pure Data

This layer contains:
- Value objects: the closed set of tagged scalars and records
- Filters and queries: the backend-agnostic expression algebra
- Mapping and statements: how repositories describe entities and hook writes

No storage access happens in this layer.
"""
