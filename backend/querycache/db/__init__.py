from querycache.db.session import make_engine

__all__ = ["make_engine"]
