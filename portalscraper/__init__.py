from .portalconfig import (
    Config as Config,
)
from .portalconfig import (
    FeedConfig as FeedConfig,
)
from .portalconfig import (
    ScrollConfig as ScrollConfig,
)
from .portalconfig import (
    SelectorCandidate as SelectorCandidate,
)
from .portalconfig import (
    SelectorSet as SelectorSet,
)
from .portalconfig import (
    TimeoutConfig as TimeoutConfig,
)
from .portalconfig import (
    coerce_headless as coerce_headless,
)
from .portalconfig import (
    coerce_nested as coerce_nested,
)
from .portalconfig import (
    coerce_value as coerce_value,
)
from .portalconfig import (
    config_from_env as config_from_env,
)
from .portalconfig import (
    load_config as load_config,
)
from .portalemail import (
    build_email_html as build_email_html,
)
from .portalnorm import (
    CanonicalEvent as CanonicalEvent,
)
from .portalnorm import (
    build_event_url as build_event_url,
)
from .portalnorm import (
    clean_html_description as clean_html_description,
)
from .portalnorm import (
    format_event_datetime as format_event_datetime,
)
from .portalnorm import (
    html_to_plain_text as html_to_plain_text,
)
from .portalnorm import (
    map_event as map_event,
)
from .portalnorm import (
    resolve_banner_url as resolve_banner_url,
)
from .portalnorm import (
    sort_events as sort_events,
)
from .portalscraper import (
    AuthState as AuthState,
)
from .portalscraper import (
    AuthStrategy as AuthStrategy,
)
from .portalscraper import (
    AuthenticationError as AuthenticationError,
)
from .portalscraper import (
    Credentials as Credentials,
)
from .portalscraper import (
    EventScraper as EventScraper,
)
from .portalscraper import (
    FeedInterceptor as FeedInterceptor,
)
from .portalscraper import (
    FeedParseError as FeedParseError,
)
from .portalscraper import (
    PortalLoginAuth as PortalLoginAuth,
)
from .portalscraper import (
    ScrapeError as ScrapeError,
)
from .portalscraper import (
    ScrollPaginator as ScrollPaginator,
)
from .portalscraper import (
    SelectorResolver as SelectorResolver,
)
from .portalscraper import (
    SessionError as SessionError,
)
from .portalscraper import (
    events_to_dataframe as events_to_dataframe,
)
from .portalscraper import (
    scrape_events as scrape_events,
)
from .portalselectors import (
    SELECTOR_CATALOG as SELECTOR_CATALOG,
)
from .portalselectors import (
    selector_set as selector_set,
)
