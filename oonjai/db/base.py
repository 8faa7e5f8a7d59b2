from sqlalchemy.orm import declarative_base

# Tables owned by this service (ledger); managed by Alembic
Base = declarative_base()

# Tables owned by the Oonjai product database; read-only here
ExternalBase = declarative_base()
