from .base import Base
from .session import engine


def init_db():
    import app.models  # noqa: F401  注册所有模型
    Base.metadata.create_all(bind=engine)
# Export for convenience
__all__ = ["Base", "engine", "init_db"]
