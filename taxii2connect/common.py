import base64
from concurrent.futures import Future, ThreadPoolExecutor
import datetime
import json
import logging
import threading
from urllib.parse import quote, urlencode, urljoin, urlsplit

import pytz
import requests
import requests.auth
import requests.structures

from . import (
    DEFAULT_USER_AGENT, MEDIA_TYPE_STIX_V20, MEDIA_TYPE_STIX_V21,
    MEDIA_TYPE_TAXII_V20, MEDIA_TYPE_TAXII_V21
)
from .exceptions import (
    APIError, InvalidArgumentsError, InvalidURLError, NetworkError,
    ParserError, TAXIIServiceException, UnknownError
)
from .resources import ErrorMessage, _TAXIIResource

log = logging.getLogger(__name__)

TAXII_VERSIONS = ("2.0", "2.1")


def with_trailing_slash(url):
    """Return ``url`` trimmed, ending with exactly one added slash."""
    url = url.strip()
    return url if url.endswith("/") else url + "/"


def without_trailing_slash(url):
    """Return ``url`` trimmed, with a terminating slash removed."""
    url = url.strip()
    return url[:-1] if url.endswith("/") else url


def media_type_for(taxii_version, stix=False):
    """Select the media type for a TAXII version.

    Args:
        taxii_version (str): "2.0" or "2.1"
        stix (bool): True for the STIX content media type, False for the
            TAXII resource media type.

    """
    if taxii_version.strip() == "2.1":
        return MEDIA_TYPE_STIX_V21 if stix else MEDIA_TYPE_TAXII_V21
    return MEDIA_TYPE_STIX_V20 if stix else MEDIA_TYPE_TAXII_V20


def _format_datetime(dttm):
    """Convert a datetime object into a valid STIX timestamp string.

    1. Convert to timezone-aware
    2. Convert to UTC
    3. Format in ISO format
    4. Ensure correct precision
       a. Add subsecond value if non-zero and precision not defined
    5. Add "Z"

    """

    if dttm.tzinfo is None or dttm.tzinfo.utcoffset(dttm) is None:
        # dttm is timezone-naive; assume UTC
        zoned = pytz.utc.localize(dttm)
    else:
        zoned = dttm.astimezone(pytz.utc)
    ts = zoned.strftime("%Y-%m-%dT%H:%M:%S")
    ms = zoned.strftime("%f")
    precision = getattr(dttm, "precision", None)
    if precision == "second":
        pass  # Already precise to the second
    elif precision == "millisecond":
        ts = ts + "." + ms[:3]
    elif zoned.microsecond > 0:
        ts = ts + "." + ms.rstrip("0")
    return ts + "Z"


def _ensure_datetime_to_string(maybe_dttm):
    """If maybe_dttm is a datetime instance, convert to a STIX-compliant
    string representation.  Otherwise return the value unchanged."""
    if isinstance(maybe_dttm, datetime.datetime):
        maybe_dttm = _format_datetime(maybe_dttm)
    return maybe_dttm


class ConnectParams(object):
    """Connection settings for one TAXII server.

    Instances are immutable.

    Args:
        host (str): the server host name; a trailing slash is dropped
        port (int): the port number; None or -1 leaves it unset
        user (str): user login name (optional)
        password (str): user password (optional)
        scheme (str): "https" (default) or "http"
        taxii_version (str): "2.0" (default) or "2.1"
        timeout (float): bound on each HTTP call, in seconds (default 60)
        verify (bool): validate the server TLS certificate, or a path to a
            CA bundle (default: True)
        proxies (dict): key/value pair for http/https proxy settings.
            (optional)
        user_agent (str): value of the User-Agent header.  If not given, a
            value which represents this library is used.
        max_workers (int): number of threads dispatching requests
            (default: chosen by ``ThreadPoolExecutor``)
        strict (bool): raise ParserError when a response body does not
            decode, instead of resolving to None (default: False)

    """

    def __init__(self, host, port=-1, user=None, password=None,
                 scheme="https", taxii_version="2.0", timeout=60.0,
                 verify=True, proxies=None, user_agent=None, max_workers=None,
                 strict=False):
        taxii_version = taxii_version.strip()
        if taxii_version not in TAXII_VERSIONS:
            msg = "Unsupported TAXII version '{}', expected one of {}"
            raise InvalidArgumentsError(msg.format(taxii_version,
                                                   ", ".join(TAXII_VERSIONS)))
        scheme = scheme.strip()
        if scheme.endswith(":"):
            scheme = scheme[:-1]

        self.host = without_trailing_slash(host)
        self.port = None if port is None or port == -1 else int(port)
        self.user = user
        self.password = password
        self.scheme = scheme.lower()
        self.taxii_version = taxii_version
        self.timeout = float(timeout)
        self.verify = verify
        self.proxies = dict(proxies) if proxies else None
        self.user_agent = user_agent or DEFAULT_USER_AGENT
        self.max_workers = max_workers
        self.strict = strict
        self._frozen = True

    @classmethod
    def from_url(cls, url, user=None, password=None, **kwargs):
        """Take the scheme, host and port from ``url``."""
        try:
            parts = urlsplit(url.strip())
            port = parts.port
        except ValueError as e:
            raise InvalidURLError("Invalid URL '{}'".format(url)) from e
        if not parts.scheme or not parts.hostname:
            raise InvalidURLError("Invalid URL '{}'".format(url))
        return cls(parts.hostname, port=port, user=user, password=password,
                   scheme=parts.scheme, **kwargs)

    def __setattr__(self, name, value):
        if getattr(self, "_frozen", False):
            raise AttributeError("ConnectParams are immutable")
        super(ConnectParams, self).__setattr__(name, value)

    @property
    def base_url(self):
        port = "" if self.port is None else ":" + str(self.port)
        return self.scheme + "://" + self.host + port

    @property
    def basic_auth_token(self):
        login = "{}:{}".format(self.user or "", self.password or "")
        return base64.b64encode(login.encode("utf-8")).decode("ascii")

    def __repr__(self):
        return "ConnectParams(base_url={!r}, user={!r}, taxii_version={!r})".format(
            self.base_url, self.user, self.taxii_version)


class TaxiiFilters(object):
    """URL filtering parameters of the TAXII endpoints that list objects.

    All fields are optional.  The ``id``, ``type``, ``version`` and
    ``spec_version`` match filters take a single string or an iterable of
    strings.  ``added_after`` and the items of ``version`` may also be
    ``datetime.datetime`` instances, which are converted to STIX-compliant
    timestamps.  None values and empty lists are ignored.

    """

    _MATCH_FIELDS = ("id", "type", "version", "spec_version")

    def __init__(self, added_after=None, limit=None, next=None, id=None,
                 type=None, version=None, spec_version=None):
        if isinstance(added_after, (list, tuple)):
            raise InvalidArgumentsError("No more than one value for filter"
                                        " 'added_after' may be given")
        self.added_after = _ensure_datetime_to_string(added_after) or None

        if limit is not None:
            try:
                limit_value = int(limit)
            except (TypeError, ValueError):
                # Conversion to int failed.
                raise InvalidArgumentsError("Limits must be positive integers")
            if limit_value < 1 or isinstance(limit, bool) or \
                    (isinstance(limit, float) and limit != limit_value):
                raise InvalidArgumentsError("Limits must be positive integers")
            limit = limit_value
        self.limit = limit

        self.next = next or None
        self.id = self._as_list(id)
        self.type = self._as_list(type)
        self.version = self._as_list(version)
        self.spec_version = self._as_list(spec_version)

    @staticmethod
    def _as_list(values):
        if not values:
            return None
        # force iterability, for the sake of code uniformity
        if isinstance(values, (str, datetime.datetime)):
            values = values,
        return [_ensure_datetime_to_string(val) for val in values] or None

    def as_parameters(self):
        """Return the filters as a mapping of URL query parameters.  List
        values are joined with commas; unset filters are left out."""
        params = {}
        if self.added_after is not None:
            params["added_after"] = self.added_after
        if self.limit is not None:
            params["limit"] = str(self.limit)
        if self.next is not None:
            params["next"] = self.next
        for field in self._MATCH_FIELDS:
            values = getattr(self, field)
            if values is not None:
                params["match[" + field + "]"] = ",".join(values)
        return params

    @classmethod
    def from_parameters(cls, params):
        """Inverse of ``as_parameters``."""
        kwargs = {
            "added_after": params.get("added_after"),
            "limit": params.get("limit"),
            "next": params.get("next"),
        }
        for field in cls._MATCH_FIELDS:
            value = params.get("match[" + field + "]")
            if value is not None:
                kwargs[field] = value.split(",")
        return cls(**kwargs)

    def only(self, *fields):
        """A copy of these filters keeping only the named fields."""
        return TaxiiFilters(**{field: getattr(self, field) for field in fields})

    def __eq__(self, other):
        if not isinstance(other, TaxiiFilters):
            return NotImplemented
        return vars(self) == vars(other)

    __hash__ = None

    def __repr__(self):
        return "TaxiiFilters({})".format(", ".join(
            "{}={!r}".format(k, v) for k, v in vars(self).items() if v is not None
        ))


def _as_filters(filters):
    if filters is None or isinstance(filters, TaxiiFilters):
        return filters
    if isinstance(filters, dict):
        return TaxiiFilters(**filters)
    raise InvalidArgumentsError("Filters must be TaxiiFilters or a mapping,"
                                " got '{}'".format(type(filters).__name__))


def _encode_query(params):
    # quote() escapes a literal '+' as %2B; servers would read a bare '+' in
    # a timestamp such as added_after as a space.
    query = urlencode(params, safe=":,[]", quote_via=quote)
    return query.replace("+", "%2B")


def _serialize_body(body):
    """Turn a POST body (resource, dict, str or bytes) into JSON bytes."""
    if isinstance(body, _TAXIIResource):
        body = body.to_dict()

    if isinstance(body, dict):
        json_text = json.dumps(body, ensure_ascii=False)
        return json_text.encode("utf-8")

    elif isinstance(body, str):
        return body.encode("utf-8")

    elif isinstance(body, bytes):
        return body

    raise InvalidArgumentsError("Don't know how to handle type '{}'".format(
        type(body).__name__))


def _status_reason(status_code):
    """Map an HTTP status code to an error reason, or None for success."""
    if status_code == 401:
        return "Unauthorized"
    if status_code == 403:
        return "Resource forbidden"
    if status_code == 404:
        return "Resource not found"
    if 405 <= status_code < 500:
        return "client error"
    if 500 <= status_code < 600:
        return "server error"
    return None


def _to_json(resp):
    """
    Factors out some JSON parse code with error handling, to hopefully improve
    error messages.

    :param resp: A "requests" library response
    :return: Parsed JSON.
    :raises: ParserError If JSON parsing failed.
    """
    try:
        return resp.json()
    except ValueError as e:
        raise ParserError("Invalid JSON was received from {}".format(resp.url)) from e


def _error_message(resp):
    try:
        return ErrorMessage.from_dict(resp.json())
    except (ValueError, ParserError):
        return None


class BasicTokenAuth(requests.auth.AuthBase):
    """Sets ``Authorization: Basic <token>`` with a precomputed token."""

    def __init__(self, token):
        self.token = token

    def __call__(self, r):
        r.headers['Authorization'] = 'Basic {}'.format(self.token)
        return r


class TaxiiConnection(object):
    """A session with one TAXII server: the request pipeline and the
    response interpreter shared by all endpoint façades.

    This library uses the ``requests`` library, so this class doesn't
    represent a traditional ``connection``: it holds a ``requests.Session``
    (a set of connection pools), the connection parameters, and a thread
    pool on which requests are dispatched.  Every request method returns a
    ``concurrent.futures.Future`` immediately, which resolves to exactly one
    value or one exception.  Calling ``close()`` releases all of it.

    Attributes:
        params (ConnectParams): the connection settings
        session (requests.Session): A requests session object.

    """

    def __init__(self, params):
        self.params = params
        self.session = requests.Session()
        self.session.verify = params.verify
        self.session.auth = BasicTokenAuth(params.basic_auth_token)
        if params.proxies:
            self.session.proxies.update(params.proxies)
        self._executor = ThreadPoolExecutor(max_workers=params.max_workers,
                                            thread_name_prefix="taxii2connect")

    @property
    def taxii_version(self):
        return self.params.taxii_version

    @property
    def media_taxii(self):
        return media_type_for(self.params.taxii_version, stix=False)

    @property
    def media_stix(self):
        return media_type_for(self.params.taxii_version, stix=True)

    def url_for(self, path):
        """Resolve ``path`` against the server base URL.  Absolute URLs are
        returned unchanged.

        Raises:
            InvalidURLError: the result is not an http(s) URL with a host.

        """
        try:
            url = urljoin(self.params.base_url + "/", path.strip())
            parts = urlsplit(url)
        except (AttributeError, ValueError) as e:
            raise InvalidURLError("Cannot build a URL from '{}'".format(path)) from e

        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise InvalidURLError("Cannot build a URL from '{}'".format(path))
        return url

    def build_request(self, path, method="GET", stix=False, body=None,
                      filters=None):
        """Build the HTTP request of one TAXII operation.

        Args:
            path (str): URL, or path relative to the server base URL
            method (str): "GET", "POST" or "DELETE"
            stix (bool): use the STIX media type for ``Accept`` and
                ``Content-Type`` rather than the TAXII one.  Ignored for POST,
                which always accepts TAXII and sends STIX.
            body: the POST body: a resource, dict, str or bytes
            filters (TaxiiFilters): appended to the URL query (optional)

        Returns:
            requests.PreparedRequest: the request, with authentication.

        """
        url = self.url_for(path)
        filters = _as_filters(filters)
        if filters is not None:
            query = _encode_query(filters.as_parameters())
            if query:
                url += ("&" if urlsplit(url).query else "?") + query

        if method == "POST":
            accept, content_type = self.media_taxii, self.media_stix
            data = _serialize_body(body)
        else:
            accept = content_type = self.media_stix if stix else self.media_taxii
            data = None

        headers = self._merge_headers({
            "version": self.params.taxii_version,
            "Accept": accept,
            "Content-Type": content_type,
        })
        request = requests.Request(method, url, headers=headers, data=data)
        return self.session.prepare_request(request)

    def fetch(self, path, resource_cls=None, stix=False, filters=None):
        """GET ``path`` and decode the body as ``resource_cls`` (plain parsed
        JSON when None)."""
        prepared = self.build_request(path, stix=stix, filters=filters)
        return self._submit(prepared, resource_cls)

    def fetch_raw(self, path, stix=False, filters=None):
        """GET ``path``; the future resolves to the undecoded body bytes."""
        prepared = self.build_request(path, stix=stix, filters=filters)
        return self._submit(prepared, raw=True)

    def post(self, path, body, resource_cls=None):
        """POST ``body`` to ``path`` and decode the response."""
        prepared = self.build_request(path, method="POST", body=body)
        return self._submit(prepared, resource_cls)

    def delete(self, path, filters=None, resource_cls=None):
        """DELETE ``path``."""
        prepared = self.build_request(path, method="DELETE", filters=filters)
        return self._submit(prepared, resource_cls)

    def interpret(self, resp, resource_cls=None, raw=False):
        """Check the status of a response and decode its body.

        Args:
            resp (requests.Response): the transport response
            resource_cls: resource class to decode the body as; plain parsed
                JSON when None
            raw (bool): return the body bytes undecoded

        Raises:
            UnknownError: ``resp`` is not a valid HTTP response
            APIError: the status code denotes a client or server error
            ParserError: the body does not decode, in strict mode only

        """
        status_code = getattr(resp, "status_code", None)
        if not isinstance(status_code, int):
            raise UnknownError("No valid HTTP response")

        reason = _status_reason(status_code)
        if reason is not None:
            log.debug("%s answered %s (%s)", resp.url, status_code, reason)
            raise APIError(reason, status_code, _error_message(resp))

        if raw:
            return resp.content
        if resource_cls is None and not resp.content:
            return None

        try:
            data = _to_json(resp)
            if resource_cls is None:
                return data
            return resource_cls.from_dict(data)
        except ParserError as e:
            if self.params.strict:
                raise
            log.warning("Could not decode the response from %s: %s",
                        resp.url, e.reason)
            return None

    def close(self):
        """Closes connections.  This object is no longer usable."""
        self.session.close()
        self._executor.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def submit(self, fn, *args, **kwargs):
        """Run ``fn(*args, **kwargs)`` on the dispatch pool."""
        return self._executor.submit(fn, *args, **kwargs)

    def _submit(self, prepared, resource_cls=None, raw=False):
        return self.submit(self.send, prepared, resource_cls, raw)

    def send(self, prepared, resource_cls=None, raw=False):
        """Send a prepared request and interpret the response, blocking the
        calling thread.

        Raises:
            NetworkError: the transport failed
            UnknownError: any failure that is not otherwise classified

        """
        log.debug("%s %s", prepared.method, prepared.url)
        try:
            try:
                resp = self.session.send(prepared, timeout=self.params.timeout)
            except requests.exceptions.RequestException as e:
                raise NetworkError(e) from e
            return self.interpret(resp, resource_cls, raw)
        except TAXIIServiceException:
            raise
        except Exception as e:
            raise UnknownError(str(e) or "Unknown error") from e

    def _merge_headers(self, call_specific_headers):
        """
        Merge headers from different sources together.  Headers passed to the
        request methods have highest priority, then headers associated with
        the connection itself.

        :param call_specific_headers: A header dict, or None.
        :return: A key-case-insensitive MutableMapping object which contains
            the merged headers.
        """

        # A case-insensitive mapping keeps keys differing only in case from
        # both ending up in the request.
        merged_headers = requests.structures.CaseInsensitiveDict({
            "User-Agent": self.params.user_agent
        })

        if call_specific_headers:
            merged_headers.update(call_specific_headers)

        # The call-specific overlay could have null'd out that header.
        if not merged_headers.get("User-Agent"):
            merged_headers["User-Agent"] = self.params.user_agent

        return merged_headers


def chain(future, fn):
    """Return a future resolving to ``fn(future.result())``.

    When ``fn`` returns a Future, the returned future follows it.  An
    exception from ``future`` or from ``fn`` fails the returned future.
    Nothing blocks: the work happens in done-callbacks.

    """
    result = Future()

    def _done(source):
        try:
            value = fn(source.result())
        except Exception as e:
            result.set_exception(e)
            return
        if isinstance(value, Future):
            _follow(value, result)
        else:
            result.set_result(value)

    future.add_done_callback(_done)
    return result


def _follow(source, target):
    def _done(f):
        exc = f.exception()
        if exc is not None:
            target.set_exception(exc)
        else:
            target.set_result(f.result())

    source.add_done_callback(_done)


def gather(futures):
    """Join futures into one resolving to the list of their results, in the
    order given.  The first failure fails the join."""
    futures = list(futures)
    result = Future()
    if not futures:
        result.set_result([])
        return result

    lock = threading.Lock()
    remaining = [len(futures)]

    def _done(f):
        exc = f.exception()
        with lock:
            if result.done():
                return
            if exc is not None:
                result.set_exception(exc)
                return
            remaining[0] -= 1
            if remaining[0] == 0:
                result.set_result([each.result() for each in futures])

    for future in futures:
        future.add_done_callback(_done)
    return result
