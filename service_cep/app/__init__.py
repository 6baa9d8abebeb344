"""
CEP Lookup Service package.

Resolves Brazilian postal codes (CEP) into address records using a
cache-aside protocol over PostgreSQL and the ViaCEP directory:

- app.main: API surface for lookups and health.
- app.lookup: Normalization, record models and the LookupService core.
- app.persistence: PostgreSQL-backed cache table.
- app.adapters: HTTP client for the ViaCEP directory.

Guidelines:
- The service is stateless; every lookup stands alone.
- A broken cache is surfaced to callers; a failed cache write is not.
"""
