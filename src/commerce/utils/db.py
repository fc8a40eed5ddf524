"""Schema management for SQL-backed providers.

The memory provider needs no schema; only sqlite and postgresql providers
get tables created or dropped.
"""

from protean.domain import Domain
from sqlalchemy import create_engine

SQL_PROVIDERS = ("sqlite", "postgresql")


def _sql_providers(domain: Domain):
    for _, provider in domain.providers.items():
        if provider.conn_info["provider"] in SQL_PROVIDERS:
            yield provider, create_engine(provider.conn_info["database_uri"])


def _register_models(domain: Domain, provider) -> None:
    # Touching a repository's _dao builds its SQLAlchemy model, which is what
    # adds the table to the provider's metadata.
    records = list(domain.registry.aggregates.values()) + list(domain.registry.entities.values())
    for record in records:
        if record.cls.meta_.provider == provider.name:
            domain.repository_for(record.cls)._dao  # noqa: B018


def setup_db(domain: Domain):
    """Create tables for every aggregate and entity."""
    with domain.domain_context():
        for provider, engine in _sql_providers(domain):
            _register_models(domain, provider)
            provider._metadata.create_all(engine)


def drop_db(domain: Domain):
    """Drop every table the providers know about."""
    with domain.domain_context():
        for provider, engine in _sql_providers(domain):
            _register_models(domain, provider)
            provider._metadata.drop_all(engine)
