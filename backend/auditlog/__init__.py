"""
Audit log search service package.

Avoid side effects here: no network, DB, or logging setup. Those happen when
``auditlog.main`` is imported.
"""

__all__ = ["create_app"]


def create_app():
    """Lazy re-export so ``flask --app auditlog run`` finds the factory."""
    from .main import create_app as _create_app

    return _create_app()
