# =============================================================================
# Database Package
# =============================================================================
# Provides the async SQLAlchemy engine, ORM models, and the storage
# protocol the services program against.
#
# Key exports:
#   - get_async_session_factory: lazily built session factory for the API
#   - Base: SQLAlchemy declarative base for ORM models
#   - ExpertStore / ExpertRepository: transactional storage protocol
#   - SqlExpertStore: PostgreSQL implementation of that protocol
# =============================================================================
