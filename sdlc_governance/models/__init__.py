"""
SDLC Governance Approval Engine
Database models package.

Every model module imports the shared ``db`` instance from here; the app
factory binds it with ``db.init_app(app)``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
