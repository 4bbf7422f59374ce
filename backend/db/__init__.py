"""Database package - ORM models and repositories.

Schema lifecycle is owned by Flask-SQLAlchemy (``db.create_all()`` in
create_app). Repositories are request/app-context scoped; background threads
must push an application context before touching them.
"""
