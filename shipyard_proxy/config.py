import logging
from os import getenv
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_PORT = 9001
DEFAULT_PRIMARY_DOMAIN = 'shipyard.bhaveshg.dev'
DEFAULT_TENANT = 'default'
DEFAULT_DOCUMENT = 'index.html'
LEGACY_PREFIX = '/react-gh-pages'


class Settings(BaseModel):
    """Process-wide proxy configuration, built once at startup."""
    model_config = ConfigDict(frozen=True)

    base_path: str
    port: int = DEFAULT_PORT
    host: str = '0.0.0.0'
    primary_domain: str = DEFAULT_PRIMARY_DOMAIN
    resolution_mode: Literal['subdomain', 'path'] = 'subdomain'
    default_tenant: str = DEFAULT_TENANT
    legacy_prefix: str = LEGACY_PREFIX
    default_document: str = DEFAULT_DOCUMENT
    tenant_policy: Literal['reject', 'allow'] = 'reject'
    connect_timeout: float = Field(default=5.0, gt=0)
    request_timeout: float = Field(default=20.0, gt=0)
    status_page: bool = True
    log_level: str = 'INFO'

    @field_validator('base_path')
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        value = value.strip().rstrip('/')
        if not value:
            raise ValueError('BASE_PATH must not be empty')
        return value

    @field_validator('default_tenant')
    @classmethod
    def _non_empty_tenant(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError('DEFAULT_TENANT must not be empty')
        return value


def load_settings() -> Settings:
    """Build settings from the environment (and a local .env file, if any)."""
    load_dotenv()

    base_path = getenv('BASE_PATH')
    if not base_path:
        raise RuntimeError('BASE_PATH environment variable is required')

    return Settings(
        base_path=base_path,
        port=int(getenv('PORT', DEFAULT_PORT)),
        host=getenv('HOST', '0.0.0.0'),
        primary_domain=getenv('PRIMARY_DOMAIN', DEFAULT_PRIMARY_DOMAIN),
        resolution_mode=getenv('RESOLUTION_MODE', 'subdomain').lower(),
        default_tenant=getenv('DEFAULT_TENANT', DEFAULT_TENANT),
        legacy_prefix=getenv('LEGACY_PREFIX', LEGACY_PREFIX),
        tenant_policy=getenv('TENANT_POLICY', 'reject').lower(),
        connect_timeout=float(getenv('CONNECT_TIMEOUT', 5.0)),
        request_timeout=float(getenv('REQUEST_TIMEOUT', 20.0)),
        status_page=getenv('STATUS_PAGE', 'true').lower() not in ('0', 'false', 'no'),
        log_level=getenv('LOG_LEVEL', 'INFO').upper(),
    )


def configure_logging(level: str = 'INFO') -> None:
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    )
