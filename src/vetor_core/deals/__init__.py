"""Deal management module -- brokers, deals, and activity logs.

Provides SQLAlchemy models (Broker, Deal, ActivityLog), Pydantic schemas for
the REST API, and DealRepository for organization-scoped async queries.
"""
