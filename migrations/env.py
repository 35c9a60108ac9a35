"""
Alembic environment configuration

Миграции выполняются синхронным драйвером: async-суффикс из URL
(sqlite+aiosqlite, postgresql+asyncpg) отбрасывается.
"""
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context

from marketplace.core.config import Config
from marketplace.database.orm_models import Base


config = context.config


def _sync_url(url: str) -> str:
    """URL для синхронного драйвера"""
    for async_driver in ("+aiosqlite", "+asyncpg"):
        url = url.replace(async_driver, "")
    return url


config.set_main_option("sqlalchemy.url", _sync_url(Config.get_database_url()))

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def include_object(object, name, type_, reflected, compare_to):
    """Фильтр для игнорирования некоторых изменений при автогенерации"""
    # Внешние ключи в SQLite часто без имен
    if type_ == "foreign_key_constraint":
        return False
    return True


def _configure_kwargs() -> dict:
    return {
        "target_metadata": target_metadata,
        "render_as_batch": True,  # Важно для SQLite при ALTER TABLE
        "compare_type": False,
        "compare_server_default": False,
        "include_object": include_object,
    }


def run_migrations_offline() -> None:
    """Генерация SQL без подключения к БД"""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_kwargs(),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Применение миграций к подключённой БД"""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection, **_configure_kwargs())

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
