"""
Gift Aid Claims Service - SQLAlchemy models.

The shared `db` handle is created here and bound to the app in
`create_app()` via `db.init_app(app)`.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
