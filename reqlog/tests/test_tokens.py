import json
import re

from reqlog.compiler import CompiledFormat
from reqlog.registry import Registry, default_registry, define_format, define_token
from reqlog.tokens import (
    escape_body,
    token_date,
    token_http_version,
    token_payload,
    token_referrer,
    token_remote_addr,
    token_req_header,
    token_res_body,
    token_res_header,
    token_response_time,
    token_status,
    token_url,
)


def test_referrer_missing_renders_dash(make_request, make_response):
    reg = Registry.with_builtins()
    assert CompiledFormat(":referrer")(reg, make_request(), make_response(200)) == "-"


def test_referrer_prefers_referer(make_request, make_response):
    req = make_request(headers=[("Referer", "http://a/"), ("Referrer", "http://b/")])
    assert token_referrer(req, make_response()) == "http://a/"


def test_referrer_falls_back_to_misspelling(make_request, make_response):
    req = make_request(headers=[("Referrer", "http://b/")])
    assert token_referrer(req, make_response()) == "http://b/"


def test_request_header_case_insensitive(make_request, make_response):
    req = make_request(headers=[("X-Trace-Id", "abc")])
    assert token_req_header(req, make_response(), "x-TRACE-id") == "abc"
    assert token_req_header(req, make_response(), "x-other") is None
    assert token_req_header(req, make_response(), "") is None


def test_response_header(make_request, make_response):
    res = make_response(200, headers=[("Content-Length", "12")])
    assert token_res_header(make_request(), res, "content-length") == "12"
    assert token_res_header(make_request(), make_response(), "content-length") is None


def test_status_only_after_headers_sent(make_request, make_response):
    assert token_status(make_request(), make_response()) is None
    assert token_status(make_request(), make_response(404)) == 404


def test_http_version(make_request, make_response):
    assert token_http_version(make_request(http_version="1.1"), make_response()) == "1.1"
    assert token_http_version(make_request(http_version="2"), make_response()) == "2.0"


def test_url_prefers_original(make_request, make_response):
    req = make_request(path="/outer/thing", query=b"x=1")
    req.scope["path"] = "/thing"
    assert req.url == "/thing?x=1"
    assert token_url(req, make_response()) == "/outer/thing?x=1"


def test_remote_addr_frozen_at_arrival(make_request, make_response):
    req = make_request(client=("10.1.1.1", 1234))
    req.scope["client"] = ("10.9.9.9", 1)
    assert token_remote_addr(req, make_response()) == "10.1.1.1"


def test_remote_addr_falls_back_to_current_socket(make_request, make_response):
    req = make_request(client=None)
    assert token_remote_addr(req, make_response()) is None
    req.scope["client"] = ("10.2.2.2", 80)
    assert token_remote_addr(req, make_response()) == "10.2.2.2"


def test_remote_addr_explicit_ip_wins(make_request, make_response):
    req = make_request(state={"ip": "192.0.2.7"})
    assert token_remote_addr(req, make_response()) == "192.0.2.7"


def test_remote_addr_reads_state_ip_at_render_time(make_request, make_response):
    req = make_request(state={})
    assert token_remote_addr(req, make_response()) == "10.0.0.1"
    req.scope["state"]["ip"] = "198.51.100.9"
    assert token_remote_addr(req, make_response()) == "198.51.100.9"


def test_remote_addr_trusted_proxy(make_request, make_response):
    headers = [("X-Forwarded-For", "203.0.113.5, 10.0.0.2")]
    assert token_remote_addr(make_request(headers=headers, trust_proxy=True), make_response()) == "203.0.113.5"
    assert token_remote_addr(make_request(headers=headers), make_response()) == "10.0.0.1"


def test_response_time_is_integer_ms(make_request, make_response):
    value = token_response_time(make_request(), make_response())
    assert value.isdigit()


def test_date_is_rfc1123(make_request, make_response):
    value = token_date(make_request(), make_response())
    assert re.match(r"^\w{3}, \d{2} \w{3} \d{4} \d{2}:\d{2}:\d{2} GMT$", value)


def test_payload_json(make_request, make_response):
    req = make_request(method="POST", headers=[("Content-Type", "application/json; charset=utf-8")])
    req.add_body(b'{"a": 1, ')
    req.add_body(b'"b": [true]}')
    assert json.loads(token_payload(req, make_response())) == {"a": 1, "b": [True]}
    assert token_payload(req, make_response()) == '{"a":1,"b":[true]}'


def test_payload_form(make_request, make_response):
    req = make_request(method="POST", headers=[("Content-Type", "application/x-www-form-urlencoded")])
    req.add_body(b"a=1&b=x+y")
    assert token_payload(req, make_response()) == '{"a":"1","b":"x y"}'


def test_payload_empty_when_unparsed(make_request, make_response):
    assert token_payload(make_request(), make_response()) == ""

    text = make_request(method="POST", headers=[("Content-Type", "text/plain")])
    text.add_body(b"hello")
    assert token_payload(text, make_response()) == ""

    broken = make_request(method="POST", headers=[("Content-Type", "application/json")])
    broken.add_body(b"{not json")
    assert token_payload(broken, make_response()) == ""


def test_payload_empty_when_too_deeply_nested(make_request, make_response):
    depth = 100000
    req = make_request(method="POST", headers=[("Content-Type", "application/json")], capture_limit=4 * depth)
    req.add_body(b"[" * depth + b"]" * depth)
    assert token_payload(req, make_response()) == ""
    assert CompiledFormat("<:payload>")(default_registry, req, make_response()) == "<>"


def test_payload_dropped_over_capture_limit(make_request, make_response):
    req = make_request(method="POST", headers=[("Content-Type", "application/json")], capture_limit=8)
    req.add_body(b'{"a": 1}')
    req.add_body(b" ")
    assert req.body_dropped
    assert token_payload(req, make_response()) == ""


def test_res_body_single_chunk(make_request, make_response):
    res = make_response(200, body=b"hello world")
    assert token_res_body(make_request(), res) == "hello%20world"


def test_res_body_multi_chunk_not_captured(make_request, make_response):
    res = make_response(200)
    res.on_body({"type": "http.response.body", "body": b"a", "more_body": True})
    res.on_body({"type": "http.response.body", "body": b"b", "more_body": False})
    assert res.body_messages == 2
    assert token_res_body(make_request(), res) == ""


def test_escape_body():
    assert escape_body(b"a@b.c/d-e_f*g+h") == "a@b.c/d-e_f*g+h"
    assert escape_body('{"k": "é"}'.encode("utf-8")) == "%7B%22k%22%3A%20%22%C3%A9%22%7D"


def test_registry_chaining():
    reg = Registry()
    out = reg.token("a", lambda req, res, arg: 1).format("f", ":a")
    assert out is reg
    assert reg.token_names() == ("a",)
    assert reg.format_names() == ("f",)


def test_registry_last_registration_wins(make_request, make_response):
    reg = Registry().token("t", lambda req, res, arg: "one").token("t", lambda req, res, arg: "two")
    assert CompiledFormat(":t")(reg, make_request(), make_response()) == "two"


def test_registry_copy_is_independent():
    base = Registry.with_builtins()
    clone = base.copy().token("extra", lambda req, res, arg: 1)
    assert clone.resolve_token("extra") is not None
    assert base.resolve_token("extra") is None


def test_define_helpers_use_default_registry():
    try:
        out = define_token("test-only-token", lambda req, res, arg: "t")
        assert out is default_registry
        define_format("test-only-format", ":test-only-token")
        assert default_registry.resolve_format("test-only-format") == ":test-only-token"
    finally:
        default_registry._tokens.pop("test-only-token", None)
        default_registry._formats.pop("test-only-format", None)
