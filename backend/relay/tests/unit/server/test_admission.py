"""Tests for connection admission control and origin resolution."""

from relay.logic.enums import CloseCode
from relay.server.admission import UNKNOWN_ORIGIN, AdmissionController


class TestResolveOrigin:
    def test_untrusted_peer_ignores_forwarded_header(self):
        admission = AdmissionController(10, 2)
        origin = admission.resolve_origin("203.0.113.5", {"x-forwarded-for": "198.51.100.1"})
        assert origin == "203.0.113.5"

    def test_trusted_proxy_uses_first_forwarded_address(self):
        admission = AdmissionController(10, 2, trusted_proxies=["10.0.0.1"])
        origin = admission.resolve_origin("10.0.0.1", {"x-forwarded-for": "198.51.100.1, 10.0.0.1"})
        assert origin == "198.51.100.1"

    def test_wildcard_trusts_every_peer(self):
        admission = AdmissionController(10, 2, trusted_proxies=["*"])
        assert admission.resolve_origin("10.9.9.9", {"x-forwarded-for": "198.51.100.7"}) == "198.51.100.7"

    def test_custom_header_name(self):
        admission = AdmissionController(10, 2, trusted_proxies=["10.0.0.1"], forwarded_for_header="X-Real-IP")
        assert admission.resolve_origin("10.0.0.1", {"x-real-ip": "198.51.100.9"}) == "198.51.100.9"

    def test_trusted_proxy_without_header_falls_back_to_peer(self):
        admission = AdmissionController(10, 2, trusted_proxies=["10.0.0.1"])
        assert admission.resolve_origin("10.0.0.1", {}) == "10.0.0.1"

    def test_trusted_network_range(self):
        admission = AdmissionController(10, 2, trusted_proxies=["10.0.0.0/8"])
        assert admission.resolve_origin("10.20.30.40", {"x-forwarded-for": "198.51.100.3"}) == "198.51.100.3"
        assert admission.resolve_origin("11.0.0.1", {"x-forwarded-for": "198.51.100.3"}) == "11.0.0.1"

    def test_non_ip_peer_never_trusted(self):
        admission = AdmissionController(10, 2, trusted_proxies=["10.0.0.0/8"])
        assert admission.resolve_origin("testclient", {"x-forwarded-for": "198.51.100.3"}) == "testclient"

    def test_missing_peer(self):
        admission = AdmissionController(10, 2)
        assert admission.resolve_origin(None, {}) == UNKNOWN_ORIGIN


class TestAdmit:
    def test_admits_and_counts(self):
        admission = AdmissionController(10, 2)
        assert admission.admit("a") is None
        assert admission.connection_count == 1
        assert admission.origin_count("a") == 1

    def test_per_origin_limit(self):
        admission = AdmissionController(10, 2)
        admission.admit("a")
        admission.admit("a")
        assert admission.admit("a") == (CloseCode.ORIGIN_LIMIT, "too_many_connections_from_origin")
        assert admission.admit("b") is None

    def test_global_limit_checked_first(self):
        admission = AdmissionController(2, 5)
        admission.admit("a")
        admission.admit("b")
        assert admission.admit("c") == (CloseCode.SERVER_FULL, "server_full")

    def test_rejection_does_not_reserve(self):
        admission = AdmissionController(1, 1)
        admission.admit("a")
        admission.admit("a")
        assert admission.connection_count == 1

    def test_release_frees_slot(self):
        admission = AdmissionController(1, 1)
        admission.admit("a")
        admission.release("a")
        assert admission.connection_count == 0
        assert admission.origin_count("a") == 0
        assert admission.admit("a") is None

    def test_release_unknown_origin_is_noop(self):
        admission = AdmissionController(1, 1)
        admission.release("ghost")
        assert admission.connection_count == 0
