"""TAXII 2.x endpoint façades.

Each façade knows the path of one TAXII endpoint and which resource it
returns; the requests themselves go through a shared ``TaxiiConnection``.
Every operation returns a ``concurrent.futures.Future``.

"""

import logging
import time
from urllib.parse import urljoin

from . import resources
from .common import TaxiiFilters, _as_filters, chain, gather, with_trailing_slash

log = logging.getLogger(__name__)


def as_pages(func, *args, per_request=0, **filter_kwargs):
    """Creates a generator for TAXII 2.1 endpoints that support pagination.

    ``func`` is an endpoint method taking a ``filters`` keyword, such as
    ``Collection.get_objects``.  Pages are fetched one after the other,
    following the ``next`` cursor of each response while the server reports
    ``more``.  This blocks the calling thread between pages.

    Args:
        per_request (int): the ``limit`` filter for each page (optional)
        filter_kwargs: other TaxiiFilters fields.

    """
    if per_request > 0:
        filter_kwargs["limit"] = per_request
    filters = page_filters = _as_filters(filter_kwargs)

    while True:
        page = func(*args, filters=page_filters).result()
        if page is None:
            return
        yield page

        objects = getattr(page, "objects", None) or []
        if per_request > 0 and len(objects) > per_request:
            log.warning("TAXII Server response with %s objects for a limit of %s",
                        len(objects), per_request)

        cursor = getattr(page, "next", None)
        if not getattr(page, "more", None) or not cursor:
            return
        params = filters.as_parameters()
        params["next"] = cursor
        page_filters = TaxiiFilters.from_parameters(params)


class Status(object):
    """TAXII Status endpoint: ``{api_root}/status/{status_id}/``."""

    def __init__(self, api_root, status_id, conn):
        self.api_root = with_trailing_slash(api_root)
        self.status_id = status_id
        self.url = self.api_root + "status/" + status_id + "/"
        self._conn = conn

    def get(self):
        return self._conn.fetch(self.url, resources.Status)

    def wait_until_final(self, poll_interval=1, timeout=60):
        """Poll the status resource until it is complete, or until the
        timeout expires.

        Args:
            poll_interval (int): how often to poll the status service.
            timeout (int): how long to poll the URL until giving up. Use <= 0
                to wait forever

        Returns:
            Future: resolves to the last Status obtained.

        """
        prepared = self._conn.build_request(self.url)

        def _poll():
            start_time = time.time()
            status = self._conn.send(prepared.copy(), resources.Status)
            elapsed = 0
            while ((status is None or not status.completed) and
                    (timeout <= 0 or elapsed < timeout)):
                time.sleep(poll_interval)
                status = self._conn.send(prepared.copy(), resources.Status)
                elapsed = time.time() - start_time
            return status

        return self._conn.submit(_poll)


class Collection(object):
    """A TAXII Collection and the endpoints under it.

    Methods on this class invoke the following endpoints:
        - ``Get Objects`` and ``Add Objects``: ``objects/``
        - ``Get an Object`` and ``Delete an Object``: ``objects/{id}/``
        - ``Get Object Versions``: ``objects/{id}/versions/``
        - ``Get Object Manifests``: ``manifest/``

    """

    def __init__(self, collection, api_root, conn):
        """
        Args:
            collection: a ``resources.Collection``, as obtained from
                ``ApiRoot.collections()``, or a collection id
            api_root (str): URL or path of the API Root holding the collection
            conn (TaxiiConnection): the connection to the server

        """
        if isinstance(collection, resources.Collection):
            self.info = collection
            self.collection_id = collection.id
        else:
            self.info = None
            self.collection_id = collection
        self.api_root = with_trailing_slash(api_root)
        self.url = self.api_root + "collections/" + self.collection_id + "/"
        self._conn = conn

    @property
    def objects_url(self):
        return self.url + "objects/"

    @property
    def manifest_url(self):
        return self.url + "manifest/"

    def _object_url(self, obj_id):
        return self.objects_url + str(obj_id) + "/"

    def get(self):
        """Implement the ``Get a Collection`` endpoint."""
        return self._conn.fetch(self.url, resources.Collection)

    def get_bundle(self):
        """Get all objects as a STIX bundle (TAXII 2.0)."""
        return self._conn.fetch(self.objects_url, resources.Bundle, stix=True)

    def get_objects(self, filters=None):
        return self._conn.fetch(self.objects_url, resources.Envelope,
                                stix=True, filters=filters)

    def get_object(self, obj_id, filters=None):
        return self._conn.fetch(self._object_url(obj_id), resources.Envelope,
                                stix=True, filters=filters)

    def get_object_versions(self, obj_id, filters=None):
        return self._conn.fetch(self._object_url(obj_id) + "versions/",
                                resources.VersionResource, filters=filters)

    def delete_object(self, obj_id, filters=None):
        """Implement the ``Delete an Object`` endpoint.  Only the
        ``version`` and ``spec_version`` filters apply."""
        filters = _as_filters(filters)
        if filters is not None:
            filters = filters.only("version", "spec_version")
        return self._conn.delete(self._object_url(obj_id), filters=filters)

    def get_raw(self):
        """The objects of the collection, as the undecoded response body."""
        return self._conn.fetch_raw(self.objects_url, stix=True)

    def get_manifests(self, filters=None):
        return self._conn.fetch(self.manifest_url, resources.ManifestResource,
                                filters=filters)

    def add_objects(self, content):
        """Implement the ``Add Objects`` endpoint.

        Args:
            content: a Bundle (TAXII 2.0) or an Envelope (TAXII 2.1), or
                their JSON as a dict, str or bytes.

        Returns:
            Future: resolves to the Status of the request.

        """
        return self._conn.post(self.objects_url, content, resources.Status)


class Collections(object):
    """TAXII Collections endpoint: ``{api_root}/collections/``."""

    def __init__(self, api_root, conn):
        self.api_root = with_trailing_slash(api_root)
        self.url = self.api_root + "collections/"
        self._conn = conn

    def get(self, index=None):
        """All collections, or only the one at ``index`` (None when the
        index is out of range)."""
        future = self._conn.fetch(self.url, resources.Collections)
        if index is None:
            return future
        return chain(future, lambda found: found.at(index) if found else None)

    def get_raw(self):
        return self._conn.fetch_raw(self.url)


class ApiRoot(object):
    """A TAXII API Root and the endpoints under it."""

    def __init__(self, api_root, conn):
        self.api_root = with_trailing_slash(api_root)
        self._conn = conn

    def get(self):
        """Implement the ``Get API Root Information`` endpoint."""
        return self._conn.fetch(self.api_root, resources.ApiRootInfo)

    def collections(self, index=None):
        return Collections(self.api_root, self._conn).get(index)

    def collection(self, collection):
        """The Collection façade of a collection resource or id."""
        return Collection(collection, self.api_root, self._conn)

    def status(self, status_id):
        return Status(self.api_root, status_id, self._conn).get()


class Server(object):
    """A server hosting a Discovery service.

    The discovery path is ``/taxii2/`` for TAXII 2.1 and ``/taxii/`` for
    TAXII 2.0, unless given.  API Roots share the connection of the server.

    """

    def __init__(self, conn, path=None):
        if path is None:
            path = "/taxii2/" if conn.taxii_version == "2.1" else "/taxii/"
        self.path = with_trailing_slash(path)
        self._conn = conn

    @property
    def url(self):
        return self._conn.url_for(self.path)

    def discovery(self):
        return self._conn.fetch(self.path, resources.Discovery)

    def api_root_strings(self):
        """The API Roots advertised by the server, as strings."""
        return chain(self.discovery(),
                     lambda found: list(found.api_roots or []) if found else [])

    def api_roots(self):
        """Fetch every advertised API Root concurrently.

        The future resolves to the ApiRootInfo list in the advertised order,
        leaving out roots whose response did not decode.  It fails if any
        one of the fetches fails.

        """
        def _fetch_all(roots):
            base = self.url
            futures = [ApiRoot(urljoin(base, root), self._conn).get()
                       for root in roots]
            return chain(gather(futures),
                         lambda infos: [info for info in infos if info is not None])

        return chain(self.api_root_strings(), _fetch_all)
