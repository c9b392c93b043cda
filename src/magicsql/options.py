"""
Connection options and result data loaders.
"""
from typing import Any, Self

import pandas as pd
import sqlalchemy as sa
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = [
    'DatabaseOptions',
    'SUPPORTED_DRIVERS',
    'pandas_numpy_data_loader',
]

SUPPORTED_DRIVERS = ('sqlite', 'postgresql')


def pandas_numpy_data_loader(data: list[tuple], columns: list[str]) -> pd.DataFrame:
    """Standard pandas DataFrame loader using NumPy.

    Always returns a DataFrame, never None, with columns preserved for empty results.
    """
    if not data:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame.from_records(list(data), columns=columns)


class DatabaseOptions(BaseSettings):
    """Options

    supported driver names: `sqlite`, `postgresql`

    Every option can also come from the environment with a `MAGICSQL_` prefix
    (e.g. `MAGICSQL_DATABASE=app.db`) or from a `.env` file.

    Connection pooling options:
    - use_pool: Whether to use connection pooling (default: False)
    - pool_max_connections: Maximum connections in pool (default: 5)
    - pool_max_idle_time: Maximum seconds a connection can be idle (default: 300)
    - pool_wait_timeout: Maximum seconds to wait for a connection (default: 30)
    """
    model_config = SettingsConfigDict(
        env_prefix='MAGICSQL_',
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore',
    )

    drivername: str = 'sqlite'
    hostname: str | None = None
    username: str | None = None
    password: str | None = None
    database: str | None = None
    port: int = 0
    timeout: int = 0
    # Connection pooling parameters
    use_pool: bool = False
    pool_max_connections: int = 5
    pool_max_idle_time: int = 300
    pool_wait_timeout: int = 30

    @field_validator('drivername')
    @classmethod
    def check_drivername(cls, value: str) -> str:
        if value not in SUPPORTED_DRIVERS:
            raise ValueError(f'drivername must be one of: {list(SUPPORTED_DRIVERS)}')
        return value

    @model_validator(mode='after')
    def check_database(self) -> Self:
        if self.drivername == 'sqlite' and not self.database:
            self.database = ':memory:'
        if self.drivername == 'postgresql' and not (self.hostname and self.database):
            raise ValueError('postgresql requires hostname and database')
        return self

    @classmethod
    def from_url(cls, url: str, **kw: Any) -> Self:
        """Build options from a SQLAlchemy-style URL such as `sqlite:///app.db`.
        """
        parsed = sa.make_url(url)
        values = {
            'drivername': parsed.get_backend_name(),
            'hostname': parsed.host,
            'username': parsed.username,
            'password': parsed.password,
            'database': parsed.database,
            'port': parsed.port or 0,
            }
        values.update(kw)
        return cls(**values)
