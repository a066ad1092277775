import logging
import re
from collections.abc import Callable
from urllib.parse import unquote

from pydantic import BaseModel, ConfigDict

from .config import DEFAULT_DOCUMENT, DEFAULT_TENANT, LEGACY_PREFIX, Settings
from .errors import InvalidTenant, MissingTenant, UnsafePath

logger = logging.getLogger(__name__)

IPV4_LITERAL = re.compile(r'^\d+\.\d+\.\d+\.\d+')
TENANT_SLUG = re.compile(r'^[A-Za-z0-9](?:[A-Za-z0-9_-]{0,61}[A-Za-z0-9])?$')

# A strategy returns the tenant, '' for "no subdomain, use the default",
# or None to defer to the next strategy.
Strategy = Callable[[str, str], str | None]


class RoutingDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    tenant: str
    target_origin: str
    rewritten_path: str

    @property
    def target_url(self) -> str:
        return self.target_origin + self.rewritten_path


#---- Host resolution strategies ----

def _strip_port(host: str) -> str:
    return host.rsplit(':', 1)[0] if ':' in host else host


def match_primary_domain(host: str, primary_domain: str) -> str | None:
    """`acme.shipyard.example` -> `acme` when the host carries the primary domain."""
    primary_domain = primary_domain.lower()
    hostname = _strip_port(host)
    if not primary_domain or primary_domain not in hostname.lower():
        return None
    labels = hostname.split('.')
    if len(labels) > len(primary_domain.split('.')):
        return labels[0]
    return ''


def exclude_ip_literal(host: str, primary_domain: str) -> str | None:
    if IPV4_LITERAL.match(host):
        return ''
    return None


def match_bare_subdomain(host: str, primary_domain: str) -> str | None:
    """`acme.localhost:9001` -> `acme` for hosts outside the primary domain."""
    labels = host.split('.')
    if len(labels) > 1:
        return labels[0]
    return None


STRATEGIES: tuple[Strategy, ...] = (
    match_primary_domain,
    exclude_ip_literal,
    match_bare_subdomain,
)


def find_tenant(host_header: str | None, primary_domain: str) -> str | None:
    """Run the host strategies in order; None when the host names no tenant."""
    host = (host_header or '').strip()
    if not host:
        return None

    for strategy in STRATEGIES:
        tenant = strategy(host, primary_domain)
        if tenant is not None:
            return tenant.strip() or None
    return None


def resolve(host_header: str | None,
            primary_domain: str,
            default_tenant: str = DEFAULT_TENANT) -> str:
    """Map a Host header to a tenant, falling back to ``default_tenant``."""
    return find_tenant(host_header, primary_domain) or default_tenant


def resolve_path(url_path: str) -> tuple[str, str]:
    """Split `/acme/css/site.css` into (`acme`, `/css/site.css`)."""
    tenant, _, rest = url_path.lstrip('/').partition('/')
    if not tenant.strip():
        raise MissingTenant()
    return tenant, '/' + rest


#---- Path normalization ----

def normalize_path(path: str,
                   legacy_prefix: str = LEGACY_PREFIX,
                   default_document: str = DEFAULT_DOCUMENT) -> str:
    if not path.startswith('/'):
        path = '/' + path

    prefix = '/' + legacy_prefix.strip('/') if legacy_prefix.strip('/') else ''
    # strip repeatedly so that normalizing twice is a no-op
    while prefix and (path == prefix or path.startswith(prefix + '/')):
        path = path[len(prefix):] or '/'

    if path == '/':
        path = '/' + default_document
    return path


def is_safe_tenant(tenant: str) -> bool:
    return bool(TENANT_SLUG.match(tenant))


def has_parent_segment(path: str) -> bool:
    """True when `..` appears as a segment once percent-escapes are decoded."""
    return '..' in unquote(path).replace('\\', '/').split('/')


#---- Decision ----

def build_decision(settings: Settings, host_header: str | None, url_path: str) -> RoutingDecision:
    """Resolve tenant and path for a request according to ``settings``."""
    if has_parent_segment(url_path):
        logger.warning('Rejected path with parent segment %r (host=%r)', url_path, host_header)
        raise UnsafePath(url_path)

    if settings.resolution_mode == 'path':
        tenant, path = resolve_path(url_path)
    else:
        tenant = resolve(host_header, settings.primary_domain, settings.default_tenant)
        path = url_path

    if not is_safe_tenant(tenant):
        if settings.tenant_policy == 'reject':
            logger.warning('Rejected unsafe project ID %r (host=%r)', tenant, host_header)
            raise InvalidTenant(tenant)
        logger.warning('Forwarding unvalidated project ID %r', tenant)

    decision = RoutingDecision(
        tenant=tenant,
        target_origin=f'{settings.base_path}/{tenant}',
        rewritten_path=normalize_path(path, settings.legacy_prefix, settings.default_document),
    )
    logger.debug('Resolved tenant=%s target=%s', decision.tenant, decision.target_url)
    return decision
