# adaptive_escrow/models/__init__.py
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()

def init_app(app):
    app.config.setdefault("SQLALCHEMY_TRACK_MODIFICATIONS", False)
    db.init_app(app)
    migrate.init_app(app, db)

# Register models on the metadata
from .user import User  # noqa
from .escrow import Escrow  # noqa
from .user_stats import UserStats  # noqa
from .suggestion import AISuggestion  # noqa
from .job import ContractJob  # noqa

__all__ = ["db", "migrate", "User", "Escrow", "UserStats", "AISuggestion", "ContractJob"]
