# httplog/tests/test_paths.py
from httplog.paths import PathMatcher


def test_exact_and_trailing_slash():
    m = PathMatcher(["/health"])
    assert m.matches("/health")
    assert m.matches("/health/")
    assert not m.matches("/healthz")


def test_single_star_stays_in_segment():
    m = PathMatcher(["/static/*"])
    assert m.matches("/static/app.js")
    assert not m.matches("/static/js/app.js")


def test_double_star_spans_segments():
    m = PathMatcher(["/actuator/**"])
    assert m.matches("/actuator")
    assert m.matches("/actuator/health/liveness")
    assert not m.matches("/api/actuator")


def test_question_mark():
    m = PathMatcher(["/v?/items"])
    assert m.matches("/v1/items")
    assert not m.matches("/v10/items")


def test_empty_matcher():
    m = PathMatcher(["", "  "])
    assert not m
    assert not m.matches("/anything")
