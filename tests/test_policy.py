import json
from datetime import datetime, timedelta, timezone

import pytest
from time_machine import travel

from fetchcache import CachePolicy, CachePolicyOptions, Headers, InvalidPolicyError, PolicyRequest, PolicyResponse

START = datetime(2024, 1, 1, 0, 0, 0, tzinfo=timezone.utc)
URL = "https://example.com/a"


def make_policy(response_headers, status=200, method="GET", request_headers=None, url=URL, **options):
    return CachePolicy(
        PolicyRequest(url=url, method=method, headers=Headers(request_headers or {})),
        PolicyResponse(status=status, headers=Headers(response_headers)),
        CachePolicyOptions(**options) if options else None,
    )


def make_request(headers=None, method="GET", url=URL):
    return PolicyRequest(url=url, method=method, headers=Headers(headers or {}))


@travel(START, tick=False)
def test_max_age():
    policy = make_policy({"cache-control": "max-age=60"})

    assert policy.storable()
    assert policy.max_age() == 60
    assert policy.time_to_live() == 60
    assert not policy.stale()


@pytest.mark.parametrize(
    "kwargs",
    [
        {"response_headers": {"cache-control": "no-store"}},
        {"response_headers": {"cache-control": "max-age=60"}, "request_headers": {"cache-control": "no-store"}},
        {"response_headers": {"cache-control": "private, max-age=60"}},
        {"response_headers": {"cache-control": "max-age=60"}, "status": 500},
        {"response_headers": {"cache-control": "max-age=60"}, "method": "PUT"},
        {"response_headers": {}, "method": "POST"},
        {"response_headers": {"cache-control": "max-age=60"}, "request_headers": {"authorization": "Bearer x"}},
        {"response_headers": {}, "status": 302},
    ],
)
def test_not_storable(kwargs):
    assert not make_policy(**kwargs).storable()


@pytest.mark.parametrize(
    "kwargs",
    [
        {"response_headers": {"cache-control": "private, max-age=60"}, "shared": False},
        {"response_headers": {"cache-control": "max-age=60"}, "method": "POST"},
        {"response_headers": {"cache-control": "public"}, "request_headers": {"authorization": "Bearer x"}},
        {"response_headers": {"cache-control": "s-maxage=60"}, "request_headers": {"authorization": "Bearer x"}},
        {"response_headers": {"cache-control": "max-age=60"}, "status": 302},
        {"response_headers": {}, "status": 404},
    ],
)
def test_storable(kwargs):
    assert make_policy(**kwargs).storable()


@travel(START, tick=False)
def test_s_maxage_applies_to_shared_caches_only():
    headers = {"cache-control": "max-age=60, s-maxage=600"}

    assert make_policy(headers).max_age() == 600
    assert make_policy(headers, shared=False).max_age() == 60


@travel(START, tick=False)
def test_proxy_revalidate_applies_to_shared_caches_only():
    headers = {"cache-control": "max-age=60, proxy-revalidate"}

    assert make_policy(headers).max_age() == 0
    assert make_policy(headers, shared=False).max_age() == 60


@travel(START, tick=False)
def test_expires():
    policy = make_policy({"date": "Mon, 01 Jan 2024 00:00:00 GMT", "expires": "Mon, 01 Jan 2024 01:00:00 GMT"})

    assert policy.max_age() == 3600
    assert policy.time_to_live() == 3600


@pytest.mark.parametrize("expires", ["0", "Sun, 31 Dec 2023 23:00:00 GMT"])
@travel(START, tick=False)
def test_invalid_or_past_expires_means_expired(expires):
    policy = make_policy({"date": "Mon, 01 Jan 2024 00:00:00 GMT", "expires": expires})

    assert policy.max_age() == 0
    assert policy.stale()


@travel(START, tick=False)
def test_heuristic_freshness_from_last_modified():
    policy = make_policy(
        {"date": "Mon, 01 Jan 2024 00:00:00 GMT", "last-modified": "Fri, 22 Dec 2023 00:00:00 GMT"},
    )

    # A tenth of the ten days since the last modification.
    assert policy.max_age() == 86400


@travel(START, tick=False)
def test_immutable_without_explicit_expiration():
    assert make_policy({"cache-control": "immutable"}).max_age() == 86400
    assert make_policy({"cache-control": "immutable"}, immutable_min_time_to_live=10).max_age() == 10
    assert make_policy({"cache-control": "immutable, max-age=5"}).max_age() == 5


@travel(START, tick=False)
def test_cookies_are_not_shared_unless_public():
    assert make_policy({"cache-control": "max-age=60", "set-cookie": "a=1"}).max_age() == 0
    assert make_policy({"cache-control": "public, max-age=60", "set-cookie": "a=1"}).max_age() == 60
    assert make_policy({"cache-control": "max-age=60", "set-cookie": "a=1"}, shared=False).max_age() == 60


@travel(START, tick=False)
def test_pragma_no_cache_without_cache_control():
    assert make_policy({"pragma": "no-cache", "expires": "Mon, 01 Jan 2024 01:00:00 GMT"}).max_age() == 0


@travel(START, tick=False)
def test_age_includes_upstream_age():
    policy = make_policy({"cache-control": "max-age=60", "age": "10"})

    assert policy.age() == 10
    assert policy.time_to_live() == 50


def test_satisfies_fresh_request():
    with travel(START, tick=False) as traveller:
        policy = make_policy({"cache-control": "max-age=60"})
        traveller.shift(timedelta(seconds=30))

        assert policy.satisfies_without_revalidation(make_request())
        assert not policy.satisfies_without_revalidation(make_request(url="https://example.com/b"))
        assert not policy.satisfies_without_revalidation(make_request(method="POST"))

        traveller.shift(timedelta(seconds=30))

        assert not policy.satisfies_without_revalidation(make_request())


@pytest.mark.parametrize(
    "request_headers",
    [
        {"cache-control": "no-cache"},
        {"pragma": "no-cache"},
        {"cache-control": "max-age=10"},
        {"cache-control": "min-fresh=50"},
    ],
)
def test_request_directives_prevent_reuse(request_headers):
    with travel(START, tick=False) as traveller:
        policy = make_policy({"cache-control": "max-age=60"})
        traveller.shift(timedelta(seconds=30))

        assert not policy.satisfies_without_revalidation(make_request(request_headers))


def test_max_stale_allows_stale_responses():
    with travel(START, tick=False) as traveller:
        policy = make_policy({"cache-control": "max-age=10"})
        strict_policy = make_policy({"cache-control": "max-age=10, must-revalidate"})
        traveller.shift(timedelta(seconds=15))

        assert policy.satisfies_without_revalidation(make_request({"cache-control": "max-stale=10"}))
        assert policy.satisfies_without_revalidation(make_request({"cache-control": "max-stale"}))
        assert not policy.satisfies_without_revalidation(make_request({"cache-control": "max-stale=3"}))
        assert not strict_policy.satisfies_without_revalidation(make_request({"cache-control": "max-stale"}))


@travel(START, tick=False)
def test_vary():
    policy = make_policy({"cache-control": "max-age=60", "vary": "Accept"}, request_headers={"accept": "text/html"})

    assert policy.satisfies_without_revalidation(make_request({"accept": "text/html"}))
    assert not policy.satisfies_without_revalidation(make_request({"accept": "application/json"}))


@travel(START, tick=False)
def test_vary_star_never_matches():
    policy = make_policy({"cache-control": "max-age=60", "vary": "*"})

    assert not policy.satisfies_without_revalidation(make_request())


@travel(START, tick=False)
def test_detached_url_matches_any_url():
    policy = make_policy({"cache-control": "max-age=60"})

    assert policy.detach_url() == URL
    assert policy.described_url is None
    assert policy.satisfies_without_revalidation(make_request(url="https://example.com/b"))


def test_response_headers():
    with travel(START, tick=False) as traveller:
        policy = make_policy({"cache-control": "max-age=60", "connection": "close", "etag": '"v1"'})
        traveller.shift(timedelta(seconds=5))

        headers = policy.response_headers()

    assert headers["age"] == "5"
    assert headers["date"] == "Mon, 01 Jan 2024 00:00:05 GMT"
    assert headers["etag"] == '"v1"'
    assert "connection" not in headers
    assert "age" not in policy.described_headers


def test_response_headers_warn_about_heuristic_freshness():
    with travel(START, tick=False) as traveller:
        policy = make_policy(
            {"date": "Mon, 01 Jan 2024 00:00:00 GMT", "last-modified": "Sat, 01 Jan 2022 00:00:00 GMT"},
        )
        traveller.shift(timedelta(days=2))

        assert policy.response_headers()["warning"] == '113 - "rfc7234 5.5.4"'


def test_revalidation_headers():
    last_modified = "Sun, 31 Dec 2023 00:00:00 GMT"
    policy = make_policy({"cache-control": "max-age=60", "etag": '"v1"', "last-modified": last_modified})

    headers = policy.revalidation_headers(
        make_request({"accept": "text/plain", "connection": "close", "if-range": '"v0"'})
    )

    assert headers["if-none-match"] == '"v1"'
    assert headers["if-modified-since"] == last_modified
    assert headers["accept"] == "text/plain"
    assert "connection" not in headers
    assert "if-range" not in headers


def test_revalidation_headers_without_validators():
    policy = make_policy({"cache-control": "max-age=60"})

    headers = policy.revalidation_headers(make_request())

    assert "if-none-match" not in headers
    assert "if-modified-since" not in headers


def test_revalidation_headers_for_a_different_resource():
    policy = make_policy({"cache-control": "max-age=60", "etag": '"v1"'})

    headers = policy.revalidation_headers(
        make_request({"if-none-match": '"mine"'}, url="https://example.com/other")
    )

    assert "if-none-match" not in headers


def test_revalidation_headers_drop_weak_validators_for_other_methods():
    policy = make_policy(
        {"cache-control": "max-age=60", "etag": 'W/"v1"', "last-modified": "Sun, 31 Dec 2023 00:00:00 GMT"},
        method="POST",
    )

    headers = policy.revalidation_headers(make_request(method="POST"))

    assert "if-none-match" not in headers
    assert "if-modified-since" not in headers


def test_not_modified_response_updates_stored_headers():
    with travel(START, tick=False) as traveller:
        policy = make_policy(
            {"cache-control": "max-age=10", "etag": '"v1"', "content-length": "7", "x-origin": "a"},
        )
        traveller.shift(timedelta(seconds=15))

        revalidated = policy.revalidated_policy(
            make_request({"if-none-match": '"v1"'}),
            PolicyResponse(
                status=304,
                headers=Headers({"cache-control": "max-age=100", "etag": '"v1"', "content-length": "0"}),
            ),
        )

        assert revalidated.modified is False
        assert revalidated.matches is True
        assert revalidated.policy.described_status == 200
        assert revalidated.policy.time_to_live() == 100

    headers = revalidated.policy.described_headers
    assert headers["cache-control"] == "max-age=100"
    assert headers["content-length"] == "7"
    assert headers["x-origin"] == "a"


@pytest.mark.parametrize(
    "stored_headers, not_modified_headers",
    [
        ({"etag": 'W/"v1"'}, {"etag": 'W/"v1"'}),
        ({"etag": '"v1"'}, {"etag": 'W/"v1"'}),
        ({"last-modified": "Sun, 31 Dec 2023 00:00:00 GMT"}, {"last-modified": "Sun, 31 Dec 2023 00:00:00 GMT"}),
        ({}, {}),
    ],
)
def test_not_modified_response_matching(stored_headers, not_modified_headers):
    policy = make_policy({"cache-control": "max-age=10", **stored_headers})

    revalidated = policy.revalidated_policy(
        make_request(), PolicyResponse(status=304, headers=Headers(not_modified_headers))
    )

    assert revalidated.matches is True
    assert revalidated.modified is False


def test_not_modified_response_for_another_representation():
    policy = make_policy({"cache-control": "max-age=10", "etag": '"v1"'})

    revalidated = policy.revalidated_policy(
        make_request(), PolicyResponse(status=304, headers=Headers({"etag": '"v2"'}))
    )

    assert revalidated.matches is False
    assert revalidated.modified is False
    assert revalidated.policy.described_status == 304


def test_new_content_replaces_the_stored_response():
    policy = make_policy({"cache-control": "max-age=10", "etag": '"v1"'})

    revalidated = policy.revalidated_policy(
        make_request(), PolicyResponse(status=200, headers=Headers({"cache-control": "max-age=5", "etag": '"v2"'}))
    )

    assert revalidated.modified is True
    assert revalidated.matches is False
    assert revalidated.policy.described_headers["etag"] == '"v2"'


def test_serialization():
    with travel(START, tick=False) as traveller:
        policy = make_policy(
            {"cache-control": "max-age=60", "vary": "Accept", "set-cookie": ["a=1", "b=2"]},
            request_headers={"accept": "text/html", "cache-control": "max-stale"},
            shared=False,
        )
        restored = CachePolicy.from_object(json.loads(json.dumps(policy.to_object())))
        traveller.shift(timedelta(seconds=20))

        assert restored.time_to_live() == 40
        assert restored.storable()
        assert restored.described_url == URL
        assert restored.described_status == 200
        assert restored.described_headers == policy.described_headers
        assert restored.options() == policy.options()
        assert restored.satisfies_without_revalidation(make_request({"accept": "text/html"}))
        assert not restored.satisfies_without_revalidation(make_request({"accept": "application/json"}))


@pytest.mark.parametrize("obj", [None, "policy", {"v": 2}, {"v": 1}, {"v": 1, "t": "soon"}])
def test_invalid_serialization(obj):
    with pytest.raises(InvalidPolicyError):
        CachePolicy.from_object(obj)


@travel(START, tick=False)
def test_ignore_cargo_cult():
    headers = {
        "cache-control": "pre-check=0, post-check=0, no-cache, no-store, must-revalidate, max-age=100",
        "expires": "Thu, 01 Jan 1970 00:00:00 GMT",
        "pragma": "no-cache",
    }

    assert not make_policy(headers).storable()

    policy = make_policy(headers, ignore_cargo_cult=True)
    assert policy.storable()
    assert policy.max_age() == 100
