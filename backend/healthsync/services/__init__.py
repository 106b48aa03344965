"""Business logic services for HealthSync.

Submodules are imported explicitly by callers; nothing is re-exported here
so importing the package does not create the database engine.
"""
