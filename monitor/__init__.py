"""monitor/ -- Persistence package for DriftWatch.

Layer rule: monitor/ imports only from core/, stdlib and third-party libraries.
It does NOT import from api/ or jobs/. jobs/ and api/ import from monitor/,
not the other way around.
"""
