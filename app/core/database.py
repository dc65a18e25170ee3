import logging

from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from .config import settings

log = logging.getLogger("checkout")


def _normalized_database_url(raw_url: str) -> str:
    """
    Normalização do DATABASE_URL:
    - postgres:// ou postgresql:// sem driver -> dialeto psycopg3.
    - Qualquer outro (SQLite etc.) fica como está.
    """
    if not raw_url:
        return "sqlite:///./checkout.db"
    raw_url = raw_url.strip()
    if raw_url.startswith("postgres://"):
        return "postgresql+psycopg://" + raw_url[len("postgres://") :]
    if raw_url.startswith("postgresql://") and "+psycopg" not in raw_url.split("://", 1)[0]:
        return "postgresql+psycopg://" + raw_url[len("postgresql://") :]
    return raw_url


def make_engine(url: str):
    # SQLite em memória: uma conexão só, para as tabelas do init_db aparecerem em todas as requisições (testes)
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    use_static_pool = url.startswith("sqlite") and ":memory:" in url
    return create_engine(
        url,
        connect_args=connect_args,
        poolclass=StaticPool if use_static_pool else None,
    )


DATABASE_URL = _normalized_database_url(settings.database_url)
engine = make_engine(DATABASE_URL)


def get_db():
    with Session(engine) as session:
        yield session


def _seed_admin(db: Session) -> None:
    from app.core.security import hash_password
    from app.models import AdminUser

    email = (settings.admin_email or "").strip().lower()
    if not email or not settings.admin_password:
        return
    if db.exec(select(AdminUser).where(AdminUser.email == email)).first():
        return
    db.add(AdminUser(email=email, hashed_password=hash_password(settings.admin_password), name="Admin"))
    db.commit()
    log.info("Admin inicial criado: %s", email)


def init_db(bind=None) -> None:
    import app.models  # noqa: F401  registra as tabelas no metadata

    bind = bind or engine
    SQLModel.metadata.create_all(bind)
    with Session(bind) as db:
        _seed_admin(db)
