"""Python TAXII 2.x Connection Client"""

# flake8: noqa
# isort:skip_file

import logging

# Console Handler for taxii2connect messages
ch = logging.StreamHandler()
ch.setFormatter(logging.Formatter("[%(name)s] [%(levelname)-8s] [%(asctime)s] %(message)s"))

# Module-level logger
log = logging.getLogger(__name__)
log.propagate = False
log.addHandler(ch)

from .version import __version__

DEFAULT_USER_AGENT = "taxii2-connect/" + __version__
MEDIA_TYPE_STIX_V20 = "application/vnd.oasis.stix+json"
MEDIA_TYPE_TAXII_V20 = "application/vnd.oasis.taxii+json"
MEDIA_TYPE_STIX_V21 = "application/stix+json;version=2.1"
MEDIA_TYPE_TAXII_V21 = "application/taxii+json;version=2.1"

from .common import (
    ConnectParams, TaxiiConnection, TaxiiFilters, media_type_for,
    with_trailing_slash, without_trailing_slash
)
from .endpoints import (
    ApiRoot, Collection, Collections, Server, Status, as_pages
)
from .exceptions import (
    APIError, InvalidArgumentsError, InvalidURLError, NetworkError,
    ParserError, TAXIIServiceException, UnknownError
)
