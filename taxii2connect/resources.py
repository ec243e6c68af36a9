"""TAXII 2.x resources, decoded from the JSON bodies of server responses."""

import math
import re

from .exceptions import ParserError

_UINT_STRING = re.compile(r"^\+?[0-9]+$")


class TaxiiInt(int):
    """An unsigned integer read leniently from JSON.

    Some servers send counters such as ``max_content_length`` as strings or
    floats.  ``decode`` accepts, in order: an integer, a float (truncated)
    and a string (``0`` when the string is not a number).  Negative numbers
    are clamped to ``0``.  It encodes back as a plain integer.

    """

    @classmethod
    def decode(cls, value):
        if isinstance(value, bool):
            raise ParserError("Expected an unsigned integer, got a boolean")

        if isinstance(value, int):
            return cls(max(value, 0))

        if isinstance(value, float):
            if not math.isfinite(value):
                raise ParserError("Expected an unsigned integer, got {}".format(value))
            return cls(max(int(value), 0))

        if isinstance(value, str):
            if _UINT_STRING.match(value):
                return cls(int(value))
            return cls(0)

        raise ParserError("Expected an unsigned integer, got {}".format(
            type(value).__name__))


def _check_required(owner, name, value):
    if value is None:
        raise ParserError("No '{}' in {}".format(name, owner))


def _check_str(owner, name, value, required=False):
    if required:
        _check_required(owner, name, value)
    if value is not None and not isinstance(value, str):
        msg = "'{}' in {} must be a string, got {}"
        raise ParserError(msg.format(name, owner, type(value).__name__))
    return value


def _check_bool(owner, name, value, required=False):
    if required:
        _check_required(owner, name, value)
    if value is not None and not isinstance(value, bool):
        msg = "'{}' in {} must be a boolean, got {}"
        raise ParserError(msg.format(name, owner, type(value).__name__))
    return value


def _check_uint(owner, name, value):
    _check_required(owner, name, value)
    try:
        return TaxiiInt.decode(value)
    except ParserError as e:
        raise ParserError("'{}' in {}: {}".format(name, owner, e.reason)) from e


def _check_list(owner, name, value, required=False, single=False):
    """Lists of strings.  With ``single``, a lone string is accepted as a
    one-element list."""
    if required:
        _check_required(owner, name, value)
    if value is None:
        return None
    if single and isinstance(value, str):
        return [value]
    if not isinstance(value, list) or \
            not all(isinstance(item, str) for item in value):
        msg = "'{}' in {} must be a list of strings"
        raise ParserError(msg.format(name, owner))
    return list(value)


def _check_objects(owner, name, value):
    if value is not None and not isinstance(value, list):
        msg = "'{}' in {} must be a list, got {}"
        raise ParserError(msg.format(name, owner, type(value).__name__))
    return value


def _check_resources(owner, name, value, resource_cls):
    _check_objects(owner, name, value)
    if value is None:
        return None
    return [item if isinstance(item, resource_cls) else resource_cls.from_dict(item)
            for item in value]


def _encode(value):
    if isinstance(value, _TAXIIResource):
        return value.to_dict()
    if isinstance(value, TaxiiInt):
        return int(value)
    if isinstance(value, list):
        return [_encode(item) for item in value]
    return value


class _TAXIIResource(object):
    """Behaviour shared by all resources: decoding from and encoding to
    parsed JSON, structural equality and immutability.

    Subclasses list their ``(json member, attribute)`` pairs in
    ``_properties``.  JSON members not named there are kept in
    ``custom_properties``.

    """
    _properties = ()

    def __setattr__(self, name, value):
        if getattr(self, "_frozen", False):
            raise AttributeError("{} resources are immutable".format(
                type(self).__name__))
        super(_TAXIIResource, self).__setattr__(name, value)

    def _freeze(self, custom_properties):
        # Anything not captured by the named arguments is treated as custom
        self.custom_properties = dict(custom_properties)
        self._frozen = True

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            msg = "Expected a JSON object for {}, got {}"
            raise ParserError(msg.format(cls.__name__, type(data).__name__))
        return cls(**data)

    def to_dict(self):
        """Return this resource as parsed JSON, ready for ``json.dumps``."""
        result = {}
        for member, attr in self._properties:
            value = getattr(self, attr)
            if value is not None:
                result[member] = _encode(value)
        result.update(self.custom_properties)
        return result

    def __eq__(self, other):
        if type(self) is not type(other):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    __hash__ = None

    def __repr__(self):
        fields = ", ".join(
            "{}={!r}".format(attr, getattr(self, attr))
            for _, attr in self._properties
            if getattr(self, attr) is not None
        )
        return "{}({})".format(type(self).__name__, fields)


class Discovery(_TAXIIResource):
    """Server Discovery resource: describes the server and advertises its
    API Roots."""
    _properties = (
        ("title", "title"),
        ("description", "description"),
        ("contact", "contact"),
        ("default", "default_api"),
        ("api_roots", "api_roots"),
    )

    def __init__(self, /, title=None, description=None, contact=None,
                 default=None, api_roots=None, **kwargs):
        self.title = _check_str("Discovery", "title", title, required=True)
        self.description = _check_str("Discovery", "description", description)
        self.contact = _check_str("Discovery", "contact", contact)
        self.default_api = _check_str("Discovery", "default", default)
        self.api_roots = _check_list("Discovery", "api_roots", api_roots)
        self._freeze(kwargs)


class ApiRootInfo(_TAXIIResource):
    """API Root resource: title, supported versions and the largest body
    the API Root accepts."""
    _properties = (
        ("title", "title"),
        ("versions", "versions"),
        ("max_content_length", "max_content_length"),
        ("description", "description"),
    )

    def __init__(self, /, title=None, versions=None, max_content_length=None,
                 description=None, **kwargs):
        self.title = _check_str("API Root", "title", title, required=True)
        self.versions = _check_list("API Root", "versions", versions,
                                    required=True)
        self.max_content_length = _check_uint("API Root", "max_content_length",
                                              max_content_length)
        self.description = _check_str("API Root", "description", description)
        self._freeze(kwargs)


class Collection(_TAXIIResource):
    """Collection resource."""
    _properties = (
        ("id", "id"),
        ("title", "title"),
        ("can_read", "can_read"),
        ("can_write", "can_write"),
        ("description", "description"),
        ("alias", "alias"),
        ("media_types", "media_types"),
    )

    def __init__(self, /, id=None, title=None, can_read=None, can_write=None,
                 description=None, alias=None, media_types=None, **kwargs):
        self.id = _check_str("Collection", "id", id, required=True)
        self.title = _check_str("Collection", "title", title, required=True)
        self.can_read = _check_bool("Collection", "can_read", can_read,
                                    required=True)
        self.can_write = _check_bool("Collection", "can_write", can_write,
                                     required=True)
        self.description = _check_str("Collection", "description", description)
        self.alias = _check_str("Collection", "alias", alias)
        self.media_types = _check_list("Collection", "media_types", media_types)
        self._freeze(kwargs)


class Collections(_TAXIIResource):
    """Collections resource: a wrapper around a list of Collection."""
    _properties = (
        ("collections", "collections"),
    )

    def __init__(self, /, collections=None, **kwargs):
        self.collections = _check_resources("Collections", "collections",
                                            collections, Collection)
        self._freeze(kwargs)

    def at(self, index):
        """The collection at ``index``, or None when there is none."""
        if not self.collections or index < 0 or index >= len(self.collections):
            return None
        return self.collections[index]


class StatusDetail(_TAXIIResource):
    """An object listed in the successes, failures or pendings of a Status."""
    _properties = (
        ("id", "id"),
        ("version", "version"),
        ("message", "message"),
    )

    def __init__(self, /, id=None, version=None, message=None, **kwargs):
        self.id = _check_str("Status details", "id", id, required=True)
        self.version = _check_str("Status details", "version", version,
                                  required=True)
        self.message = _check_list("Status details", "message", message,
                                   single=True)
        self._freeze(kwargs)


class Status(_TAXIIResource):
    """Status resource: the progress of a request to add objects to a
    Collection."""
    _properties = (
        ("id", "id"),
        ("status", "status"),
        ("request_timestamp", "request_timestamp"),
        ("total_count", "total_count"),
        ("success_count", "success_count"),
        ("successes", "successes"),
        ("failure_count", "failure_count"),
        ("failures", "failures"),
        ("pending_count", "pending_count"),
        ("pendings", "pendings"),
    )

    def __init__(self, /, id=None, status=None, total_count=None,
                 success_count=None, failure_count=None, pending_count=None,
                 request_timestamp=None, successes=None, failures=None,
                 pendings=None, **kwargs):
        self.id = _check_str("Status", "id", id, required=True)
        self.status = _check_str("Status", "status", status, required=True)
        self.total_count = _check_uint("Status", "total_count", total_count)
        self.success_count = _check_uint("Status", "success_count",
                                         success_count)
        self.failure_count = _check_uint("Status", "failure_count",
                                         failure_count)
        self.pending_count = _check_uint("Status", "pending_count",
                                         pending_count)
        self.request_timestamp = _check_str("Status", "request_timestamp",
                                            request_timestamp)
        self.successes = _check_resources("Status", "successes", successes,
                                          StatusDetail)
        self.failures = _check_resources("Status", "failures", failures,
                                         StatusDetail)
        self.pendings = _check_resources("Status", "pendings", pendings,
                                         StatusDetail)
        self._freeze(kwargs)

    @property
    def completed(self):
        return self.status == "complete"


class ManifestRecord(_TAXIIResource):
    """Metadata about a single object of a Collection.

    TAXII 2.1 servers send one ``date_added``, ``version`` and
    ``media_type`` per record; these are normalized to the list-valued
    ``date_added``, ``versions`` and ``media_types``.

    """
    _properties = (
        ("id", "id"),
        ("date_added", "date_added"),
        ("versions", "versions"),
        ("media_types", "media_types"),
    )

    def __init__(self, /, id=None, date_added=None, versions=None,
                 media_types=None, **kwargs):
        if versions is None and "version" in kwargs:
            versions = kwargs.pop("version")
        if media_types is None and "media_type" in kwargs:
            media_types = kwargs.pop("media_type")

        self.id = _check_str("Manifest", "id", id, required=True)
        self.date_added = _check_list("Manifest", "date_added", date_added,
                                      required=True, single=True)
        self.versions = _check_list("Manifest", "versions", versions,
                                    required=True, single=True)
        self.media_types = _check_list("Manifest", "media_types", media_types,
                                       single=True)
        self._freeze(kwargs)


class ManifestResource(_TAXIIResource):
    """Manifest resource: a wrapper around a list of ManifestRecord."""
    _properties = (
        ("more", "more"),
        ("objects", "objects"),
    )

    def __init__(self, /, more=None, objects=None, **kwargs):
        self.more = _check_bool("Manifest resource", "more", more)
        self.objects = _check_resources("Manifest resource", "objects",
                                        objects, ManifestRecord)
        self._freeze(kwargs)


class VersionResource(_TAXIIResource):
    """Versions resource: the versions of one object."""
    _properties = (
        ("more", "more"),
        ("versions", "versions"),
    )

    def __init__(self, /, more=None, versions=None, **kwargs):
        self.more = _check_bool("Versions", "more", more)
        self.versions = _check_list("Versions", "versions", versions)
        self._freeze(kwargs)


class Bundle(_TAXIIResource):
    """STIX 2.0 bundle, the content wrapper used by TAXII 2.0."""
    _properties = (
        ("type", "type"),
        ("id", "id"),
        ("spec_version", "spec_version"),
        ("objects", "objects"),
    )

    def __init__(self, /, type=None, id=None, spec_version=None, objects=None,
                 **kwargs):
        self.type = _check_str("Bundle", "type", type, required=True)
        self.id = _check_str("Bundle", "id", id, required=True)
        self.spec_version = _check_str("Bundle", "spec_version", spec_version,
                                       required=True)
        self.objects = _check_objects("Bundle", "objects", objects)
        self._freeze(kwargs)


class Envelope(_TAXIIResource):
    """TAXII 2.1 envelope around STIX 2.1 content."""
    _properties = (
        ("more", "more"),
        ("next", "next"),
        ("objects", "objects"),
    )

    def __init__(self, /, more=None, next=None, objects=None, **kwargs):
        self.more = _check_bool("Envelope", "more", more)
        self.next = _check_str("Envelope", "next", next)
        self.objects = _check_objects("Envelope", "objects", objects)
        self._freeze(kwargs)


class ErrorMessage(_TAXIIResource):
    """Error message a server may send in the body of an HTTP error
    response."""
    _properties = (
        ("title", "title"),
        ("description", "description"),
        ("error_id", "error_id"),
        ("error_code", "error_code"),
        ("http_status", "http_status"),
        ("external_details", "external_details"),
        ("details", "details"),
    )

    def __init__(self, /, title=None, description=None, error_id=None,
                 error_code=None, http_status=None, external_details=None,
                 details=None, **kwargs):
        self.title = _check_str("Error message", "title", title, required=True)
        self.description = _check_str("Error message", "description",
                                      description)
        self.error_id = _check_str("Error message", "error_id", error_id)
        # Seen as both string and number in the wild
        if isinstance(error_code, int) and not isinstance(error_code, bool):
            error_code = str(error_code)
        self.error_code = _check_str("Error message", "error_code", error_code)
        if isinstance(http_status, int) and not isinstance(http_status, bool):
            http_status = str(http_status)
        self.http_status = _check_str("Error message", "http_status",
                                      http_status)
        self.external_details = _check_str("Error message", "external_details",
                                           external_details)
        if details is not None and (
                not isinstance(details, dict) or
                not all(isinstance(v, str) for v in details.values())):
            raise ParserError("'details' in Error message must map strings "
                              "to strings")
        self.details = details
        self._freeze(kwargs)
