from concurrent.futures import Future
import datetime
import json
from urllib.parse import parse_qs, urlsplit

import pytest
import pytz
import requests
import responses

from taxii2connect import (
    DEFAULT_USER_AGENT, MEDIA_TYPE_STIX_V20, MEDIA_TYPE_STIX_V21,
    MEDIA_TYPE_TAXII_V20, MEDIA_TYPE_TAXII_V21
)
from taxii2connect.common import (
    ConnectParams, TaxiiConnection, TaxiiFilters, _encode_query, chain,
    gather, media_type_for, with_trailing_slash, without_trailing_slash
)
from taxii2connect.exceptions import (
    APIError, InvalidArgumentsError, InvalidURLError, NetworkError,
    ParserError, UnknownError
)
from taxii2connect.resources import Discovery, Envelope, ErrorMessage

TAXII_SERVER = "example.com"
DISCOVERY_URL = "https://{}/taxii2/".format(TAXII_SERVER)
OBJECTS_URL = ("https://{}/api1/collections/91a7b528-80eb-42ed-a74d-c6fbd5a26116"
               "/objects/".format(TAXII_SERVER))

DISCOVERY_RESPONSE = """{
    "title": "Some TAXII Server",
    "description": "This TAXII Server contains a listing of...",
    "contact": "string containing contact information",
    "default": "https://example.com/api2/",
    "api_roots": [
        "https://example.com/api1/",
        "https://example.com/api2/",
        "https://example.net/trustgroup1/"
    ]
}"""

ERROR_RESPONSE = """{
    "title": "Error condition XYZ",
    "description": "This error is caused when the application tries to access data...",
    "error_id": "1234",
    "error_code": "581234",
    "http_status": "409",
    "external_details": "http://example.com/ticketnumber1/errorid-1234",
    "details": {
        "somedetail": "some value"
    }
}"""


@pytest.fixture
def params():
    return ConnectParams(TAXII_SERVER, user="foo", password="bar",
                         taxii_version="2.1")


@pytest.fixture
def conn(params):
    connection = TaxiiConnection(params)
    yield connection
    connection.close()


@pytest.fixture
def strict_conn():
    connection = TaxiiConnection(ConnectParams(TAXII_SERVER, user="foo",
                                               password="bar",
                                               taxii_version="2.1",
                                               strict=True))
    yield connection
    connection.close()


def make_response(status_code, body=b"", url=DISCOVERY_URL):
    resp = requests.Response()
    resp.status_code = status_code
    resp._content = body
    resp.url = url
    return resp


def query_of(url):
    return parse_qs(urlsplit(url).query)


def test_base_url_without_port():
    params = ConnectParams("example.com", port=-1, scheme="https")
    assert params.base_url == "https://example.com"


def test_base_url_with_port():
    params = ConnectParams("example.com", port=8080, scheme="https")
    assert params.base_url == "https://example.com:8080"


def test_base_url_port_none():
    assert ConnectParams("example.com", port=None).base_url == "https://example.com"


def test_host_trailing_slash_removed():
    params = ConnectParams(" example.com/ ", scheme="http")
    assert params.host == "example.com"
    assert params.base_url == "http://example.com"


def test_scheme_normalized():
    params = ConnectParams("example.com", scheme=" HTTPS: ")
    assert params.scheme == "https"
    assert params.base_url == "https://example.com"


def test_basic_auth_token(params):
    assert params.basic_auth_token == "Zm9vOmJhcg=="


def test_params_are_immutable(params):
    with pytest.raises(AttributeError):
        params.host = "example.net"


def test_unsupported_taxii_version():
    with pytest.raises(InvalidArgumentsError):
        ConnectParams("example.com", taxii_version="1.1")


def test_params_from_url():
    params = ConnectParams.from_url("http://example.com:8080/taxii2/",
                                    user="foo", password="bar",
                                    taxii_version="2.1", timeout=5)
    assert params.host == "example.com"
    assert params.port == 8080
    assert params.scheme == "http"
    assert params.taxii_version == "2.1"
    assert params.timeout == 5.0
    assert params.base_url == "http://example.com:8080"


def test_params_from_bad_url():
    with pytest.raises(InvalidURLError):
        ConnectParams.from_url("not a url")


@pytest.mark.parametrize("value", ["https://example.com/api1", "/api1/", " /api1 ", "", "/"])
def test_trailing_slash_idempotence(value):
    once = with_trailing_slash(value)
    assert once.endswith("/")
    assert with_trailing_slash(once) == once

    removed = without_trailing_slash(value)
    assert without_trailing_slash(removed) == removed
    assert with_trailing_slash(without_trailing_slash(once)) == once


def test_media_type_selection():
    assert media_type_for("2.1", stix=True) == "application/stix+json;version=2.1"
    assert media_type_for("2.1", stix=False) == "application/taxii+json;version=2.1"
    assert media_type_for("2.0", stix=False) == "application/vnd.oasis.taxii+json"
    assert media_type_for("2.0", stix=True) == "application/vnd.oasis.stix+json"
    assert media_type_for(" 2.1 ", stix=True) == MEDIA_TYPE_STIX_V21


def test_filters_as_parameters():
    filters = TaxiiFilters(added_after="2016-11-04T03:04:05Z", limit=10,
                           next="abc", id=["a", "b"], type=("indicator", "malware"),
                           version="last", spec_version=["2.1"])
    assert filters.as_parameters() == {
        "added_after": "2016-11-04T03:04:05Z",
        "limit": "10",
        "next": "abc",
        "match[id]": "a,b",
        "match[type]": "indicator,malware",
        "match[version]": "last",
        "match[spec_version]": "2.1",
    }


def test_filters_absent_fields_omitted():
    filters = TaxiiFilters(type=["indicator"], id=[], next="")
    assert filters.as_parameters() == {"match[type]": "indicator"}
    assert TaxiiFilters().as_parameters() == {}


def test_filters_round_trip():
    filters = TaxiiFilters(added_after="2016-11-04T03:04:05.000+00:00", limit=2,
                           type=["indicator", "malware"],
                           spec_version=["2.0", "2.1"])
    params = filters.as_parameters()
    back = TaxiiFilters.from_parameters(params)

    assert back == filters
    assert back.added_after == "2016-11-04T03:04:05.000+00:00"
    assert back.limit == 2
    assert back.type == ["indicator", "malware"]
    assert back.id is None
    assert "match[id]" not in params
    assert "next" not in params


def test_filters_datetime_values():
    dt = datetime.datetime(2010, 9, 8, 7, 6, 5)
    filters = TaxiiFilters(added_after=dt, version=(dt, "bar"))
    assert filters.as_parameters() == {
        "added_after": "2010-09-08T07:06:05Z",
        "match[version]": "2010-09-08T07:06:05Z,bar",
    }


def test_filters_datetime_converted_to_utc():
    dt = pytz.timezone("US/Eastern").localize(
        datetime.datetime(2010, 9, 8, 7, 6, 5, 120000))
    assert TaxiiFilters(added_after=dt).added_after == "2010-09-08T11:06:05.12Z"


def test_filters_added_after_single_value():
    with pytest.raises(InvalidArgumentsError):
        TaxiiFilters(added_after=["2010-09-08T07:06:05Z", "bar"])


@pytest.mark.parametrize("limit", [0, -3, "abc", 2.5, True])
def test_filters_bad_limit(limit):
    with pytest.raises(InvalidArgumentsError):
        TaxiiFilters(limit=limit)


def test_filters_only():
    filters = TaxiiFilters(type=["indicator"], version=["last"], spec_version="2.1")
    assert filters.only("version", "spec_version").as_parameters() == {
        "match[version]": "last",
        "match[spec_version]": "2.1",
    }


def test_query_plus_encoded():
    query = _encode_query({"added_after": "2016-11-04T03:04:05.000+00:00"})
    assert query == "added_after=2016-11-04T03:04:05.000%2B00:00"


def test_query_space_not_turned_into_plus():
    assert _encode_query({"next": "a b"}) == "next=a%20b"


def test_build_request_headers(conn):
    request = conn.build_request("/taxii2/")

    assert request.method == "GET"
    assert request.url == DISCOVERY_URL
    assert request.headers["version"] == "2.1"
    assert request.headers["Authorization"] == "Basic Zm9vOmJhcg=="
    assert request.headers["Accept"] == MEDIA_TYPE_TAXII_V21
    assert request.headers["Content-Type"] == MEDIA_TYPE_TAXII_V21
    assert request.headers["User-Agent"] == DEFAULT_USER_AGENT
    assert request.body is None


def test_build_request_stix_media_type(conn):
    request = conn.build_request(OBJECTS_URL, stix=True)
    assert request.headers["Accept"] == MEDIA_TYPE_STIX_V21
    assert request.headers["Content-Type"] == MEDIA_TYPE_STIX_V21


def test_build_request_taxii_20_media_types():
    with TaxiiConnection(ConnectParams(TAXII_SERVER, user="foo", password="bar")) as conn:
        request = conn.build_request("/taxii/")
        assert request.headers["version"] == "2.0"
        assert request.headers["Accept"] == MEDIA_TYPE_TAXII_V20

        request = conn.build_request(OBJECTS_URL, stix=True)
        assert request.headers["Accept"] == MEDIA_TYPE_STIX_V20


def test_build_request_post(conn):
    request = conn.build_request(OBJECTS_URL, method="POST",
                                 body={"objects": [{"type": "indicator"}]})

    assert request.method == "POST"
    assert request.headers["Accept"] == MEDIA_TYPE_TAXII_V21
    assert request.headers["Content-Type"] == MEDIA_TYPE_STIX_V21
    assert json.loads(request.body.decode("utf-8")) == {"objects": [{"type": "indicator"}]}


def test_build_request_post_resource_and_text(conn):
    envelope = Envelope(objects=[{"type": "indicator"}])
    request = conn.build_request(OBJECTS_URL, method="POST", body=envelope)
    assert json.loads(request.body.decode("utf-8")) == {"objects": [{"type": "indicator"}]}

    request = conn.build_request(OBJECTS_URL, method="POST", body='{"objects": []}')
    assert request.body == b'{"objects": []}'

    request = conn.build_request(OBJECTS_URL, method="POST", body=b'{"objects": []}')
    assert request.body == b'{"objects": []}'


def test_build_request_post_bad_body(conn):
    with pytest.raises(InvalidArgumentsError):
        conn.build_request(OBJECTS_URL, method="POST", body=12)


def test_build_request_with_filters(conn):
    filters = TaxiiFilters(added_after="2016-11-04T03:04:05.000+00:00",
                           type=["indicator", "malware"])
    request = conn.build_request(OBJECTS_URL, stix=True, filters=filters)

    assert request.url.startswith(OBJECTS_URL + "?")
    assert "%2B00:00" in request.url
    assert query_of(request.url) == {
        "added_after": ["2016-11-04T03:04:05.000+00:00"],
        "match[type]": ["indicator,malware"],
    }


def test_build_request_with_filter_mapping(conn):
    request = conn.build_request(OBJECTS_URL, filters={"limit": 5})
    assert query_of(request.url) == {"limit": ["5"]}


def test_build_request_empty_filters(conn):
    request = conn.build_request(OBJECTS_URL, filters=TaxiiFilters())
    assert request.url == OBJECTS_URL


def test_build_request_relative_and_absolute(conn):
    assert conn.build_request("/api1/").url == "https://example.com/api1/"
    assert conn.build_request("https://example.net/trustgroup1/").url == \
        "https://example.net/trustgroup1/"


@pytest.mark.parametrize("path", ["ftp://example.com/taxii2/", "http://", "http://[::1/"])
def test_build_request_bad_url(conn, path):
    with pytest.raises(InvalidURLError):
        conn.build_request(path)


def test_build_request_bad_host():
    with TaxiiConnection(ConnectParams("")) as conn:
        with pytest.raises(InvalidURLError):
            conn.build_request("/taxii/")


def test_no_credentials_empty_authorization():
    # base64 of ":"
    with TaxiiConnection(ConnectParams(TAXII_SERVER)) as conn:
        request = conn.build_request("/taxii/")
        assert request.headers["Authorization"] == "Basic Og=="


@pytest.mark.parametrize("status_code, reason", [
    (401, "Unauthorized"),
    (403, "Resource forbidden"),
    (404, "Resource not found"),
    (405, "client error"),
    (406, "client error"),
    (499, "client error"),
    (500, "server error"),
    (503, "server error"),
])
def test_status_code_mapping(conn, status_code, reason):
    with pytest.raises(APIError) as excinfo:
        conn.interpret(make_response(status_code))

    assert excinfo.value.reason == reason
    assert excinfo.value.status_code == status_code
    assert str(excinfo.value) == reason
    assert excinfo.value.error_message is None


@pytest.mark.parametrize("status_code", [400, 402])
def test_unclassified_status_is_decoded(conn, status_code):
    resp = make_response(status_code, b'{"title": "Some TAXII Server"}')
    discovery = conn.interpret(resp, Discovery)
    assert discovery.title == "Some TAXII Server"

    assert conn.interpret(make_response(status_code, b"not json"), Discovery) is None


def test_status_error_carries_error_message(conn):
    with pytest.raises(APIError) as excinfo:
        conn.interpret(make_response(409, ERROR_RESPONSE.encode("utf-8")))

    assert excinfo.value.reason == "client error"
    error_message = excinfo.value.error_message
    assert isinstance(error_message, ErrorMessage)
    assert error_message.title == "Error condition XYZ"
    assert error_message.details == {"somedetail": "some value"}


def test_no_response_is_unknown(conn):
    with pytest.raises(UnknownError):
        conn.interpret(None)


def test_success_decodes(conn):
    discovery = conn.interpret(make_response(200, DISCOVERY_RESPONSE.encode("utf-8")),
                               Discovery)
    assert discovery.title == "Some TAXII Server"


def test_success_plain_json(conn):
    assert conn.interpret(make_response(200, b'{"a": 1}')) == {"a": 1}


def test_success_member_named_self(conn):
    resp = make_response(200, b'{"title": "Some TAXII Server", "self": "y"}')
    discovery = conn.interpret(resp, Discovery)
    assert discovery.custom_properties == {"self": "y"}


def test_success_empty_body(conn):
    assert conn.interpret(make_response(200)) is None


def test_success_raw(conn):
    assert conn.interpret(make_response(200, b"not json"), raw=True) == b"not json"


def test_decode_failure_is_none(conn):
    assert conn.interpret(make_response(200, b'{"title":'), Discovery) is None
    assert conn.interpret(make_response(200, b'{"description": "x"}'), Discovery) is None
    assert conn.interpret(make_response(204), Discovery) is None


def test_decode_failure_strict(strict_conn):
    with pytest.raises(ParserError):
        strict_conn.interpret(make_response(200, b'{"title":'), Discovery)

    with pytest.raises(ParserError):
        strict_conn.interpret(make_response(200, b'{"description": "x"}'), Discovery)


@responses.activate
def test_fetch_decodes(conn):
    responses.add(responses.GET, DISCOVERY_URL, body=DISCOVERY_RESPONSE,
                  status=200, content_type=MEDIA_TYPE_TAXII_V21)

    future = conn.fetch("/taxii2/", Discovery)
    assert isinstance(future, Future)
    assert future.result().title == "Some TAXII Server"


@responses.activate
def test_fetch_raw_keeps_bytes(conn):
    responses.add(responses.GET, DISCOVERY_URL, body=DISCOVERY_RESPONSE,
                  status=200, content_type=MEDIA_TYPE_TAXII_V21)

    assert conn.fetch_raw("/taxii2/").result() == DISCOVERY_RESPONSE.encode("utf-8")


@responses.activate
def test_raw_status_errors(conn):
    responses.add(responses.GET, DISCOVERY_URL, status=403)

    with pytest.raises(APIError) as excinfo:
        conn.fetch_raw("/taxii2/").result()
    assert excinfo.value.reason == "Resource forbidden"


@responses.activate
def test_connection_error_is_network_error(conn):
    cause = requests.exceptions.ConnectionError("connection reset")
    responses.add(responses.GET, DISCOVERY_URL, body=cause)

    with pytest.raises(NetworkError) as excinfo:
        conn.fetch("/taxii2/", Discovery).result()
    assert excinfo.value.cause is cause


@responses.activate
def test_timeout_is_network_error(conn):
    responses.add(responses.GET, DISCOVERY_URL,
                  body=requests.exceptions.ReadTimeout("timed out"))

    with pytest.raises(NetworkError) as excinfo:
        conn.fetch("/taxii2/", Discovery).result()
    assert isinstance(excinfo.value.cause, requests.exceptions.Timeout)


@responses.activate
def test_other_failure_is_unknown(conn):
    responses.add(responses.GET, DISCOVERY_URL, body=RuntimeError("boom"))

    with pytest.raises(UnknownError) as excinfo:
        conn.fetch("/taxii2/", Discovery).result()
    assert isinstance(excinfo.value.__cause__, RuntimeError)


def test_fetch_bad_url_raises_immediately(conn):
    with pytest.raises(InvalidURLError):
        conn.fetch("ftp://example.com/", Discovery)


def test_user_agent_overriding():
    with TaxiiConnection(ConnectParams(TAXII_SERVER, user_agent="foo/1.0")) as conn:
        headers = conn._merge_headers({})
        # also test key access is case-insensitive
        assert headers["user-agent"] == "foo/1.0"

        headers = conn._merge_headers({"User-Agent": "bar/2.0"})
        assert headers["user-agent"] == "bar/2.0"

        headers = conn._merge_headers({"User-Agent": None})
        assert headers["user-agent"] == "foo/1.0"


def test_header_merging(conn):
    headers = conn._merge_headers({"AddedHeader": "addedvalue"})

    assert headers == {
        "user-agent": DEFAULT_USER_AGENT,
        "addedheader": "addedvalue"
    }


def test_gather_keeps_order():
    first, second = Future(), Future()
    joined = gather([first, second])

    second.set_result("b")
    assert not joined.done()
    first.set_result("a")
    assert joined.result(timeout=1) == ["a", "b"]


def test_gather_fails_on_any_failure():
    first, second = Future(), Future()
    joined = gather([first, second])

    second.set_result("b")
    first.set_exception(APIError("server error", 500))
    with pytest.raises(APIError):
        joined.result(timeout=1)


def test_gather_empty():
    assert gather([]).result(timeout=1) == []


def test_chain_value_and_future():
    source = Future()
    inner = Future()
    chained = chain(source, lambda value: inner if value == "follow" else value)

    source.set_result("follow")
    assert not chained.done()
    inner.set_result(42)
    assert chained.result(timeout=1) == 42


def test_chain_propagates_errors():
    source = Future()
    chained = chain(source, lambda value: 1 // 0)
    source.set_result(None)
    with pytest.raises(ZeroDivisionError):
        chained.result(timeout=1)

    source = Future()
    chained = chain(source, lambda value: value)
    source.set_exception(NetworkError(OSError("unreachable")))
    with pytest.raises(NetworkError):
        chained.result(timeout=1)
