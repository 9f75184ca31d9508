"""
Property-based tests for the dnspython-backed DNS client.

Direct server queries are answered by patching `dns.query.udp`; recursive
lookups use a mocked `dns.resolver.Resolver`.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import dns.exception
import dns.flags
import dns.message
import dns.rcode
import dns.resolver
import dns.rrset
from hypothesis import given, settings
from hypothesis import strategies as st

from share_redirect.dns_client import DNSClient, DnsPythonClient
from share_redirect.enums import DNSErrorCode, DNSStatus


HOST = "account.file.core.example.net"
SERVER = "192.0.2.53"

address_strategy = st.builds(
    lambda a, b, c: f"20.{a}.{b}.{c}",
    st.integers(0, 255), st.integers(0, 255), st.integers(1, 254),
)


def server_reply(rdtype: str = "A", answers=(), rcode: int = dns.rcode.NOERROR):
    """Build a reply to a query for HOST carrying the given answer rrsets."""
    response = dns.message.make_response(dns.message.make_query(HOST, rdtype))
    for rrset in answers:
        response.answer.append(rrset)
    response.set_rcode(rcode)
    return response


def a_rrset(name: str, *addresses: str):
    return dns.rrset.from_text(name, 300, "IN", "A", *addresses)


def cname_rrset(name: str, target: str):
    return dns.rrset.from_text(name, 300, "IN", "CNAME", target + ".")


class TestDirectQueryProperty:
    """Property 1: server replies map onto found / not found / error."""

    @given(addresses=st.lists(address_strategy, min_size=1, max_size=3, unique=True))
    @settings(max_examples=50)
    def test_a_records_found(self, addresses) -> None:
        reply = server_reply(answers=[a_rrset(HOST, *addresses)])
        with patch("dns.query.udp", return_value=reply):
            response = DnsPythonClient().query_a(HOST, SERVER)

        assert response.status == DNSStatus.FOUND
        assert sorted(response.records) == sorted(addresses)
        assert response.canonical_name is None

    def test_nxdomain_is_not_found(self) -> None:
        reply = server_reply(rcode=dns.rcode.NXDOMAIN)
        with patch("dns.query.udp", return_value=reply):
            response = DnsPythonClient().query_a(HOST, SERVER)

        assert response.status == DNSStatus.NOT_FOUND

    def test_servfail_is_error(self) -> None:
        reply = server_reply(rcode=dns.rcode.SERVFAIL)
        with patch("dns.query.udp", return_value=reply):
            response = DnsPythonClient().query_a(HOST, SERVER)

        assert response.status == DNSStatus.ERROR
        assert response.error.code == DNSErrorCode.SERVER_FAILURE.value

    def test_timeout_is_error(self) -> None:
        with patch("dns.query.udp", side_effect=dns.exception.Timeout()):
            response = DnsPythonClient().query_a(HOST, SERVER)

        assert response.status == DNSStatus.ERROR
        assert response.error.code == DNSErrorCode.TIMEOUT.value

    def test_network_error_is_error(self) -> None:
        with patch("dns.query.udp", side_effect=OSError("unreachable")):
            response = DnsPythonClient().query_a(HOST, SERVER)

        assert response.error.code == DNSErrorCode.NETWORK_ERROR.value

    def test_cname_only_answer_reports_canonical_name(self) -> None:
        target = "blob.zone1.store.example.net"
        reply = server_reply(answers=[cname_rrset(HOST, target)])
        with patch("dns.query.udp", return_value=reply):
            response = DnsPythonClient().query_a(HOST, SERVER)

        assert response.status == DNSStatus.FOUND
        assert response.records == []
        assert response.canonical_name == target

    def test_truncated_reply_retried_over_tcp(self) -> None:
        truncated = server_reply()
        truncated.flags |= dns.flags.TC
        full = server_reply(answers=[a_rrset(HOST, "20.60.1.1")])
        with patch("dns.query.udp", return_value=truncated), \
                patch("dns.query.tcp", return_value=full) as tcp:
            response = DnsPythonClient().query_a(HOST, SERVER)

        tcp.assert_called_once()
        assert response.records == ["20.60.1.1"]

    def test_named_server_resolved_first(self) -> None:
        resolver = MagicMock()
        resolver.resolve.return_value = SimpleNamespace(
            rrset=[SimpleNamespace(address="192.0.2.99")],
        )
        reply = server_reply(answers=[a_rrset(HOST, "20.60.1.1")])
        with patch("dns.query.udp", return_value=reply) as udp:
            DnsPythonClient(resolver=resolver).query_a(HOST, "ns1.example.net")

        assert udp.call_args[0][1] == "192.0.2.99"


class TestRecursiveQueryProperty:
    """Property 2: recursive lookups use the same three-way outcome."""

    @given(addresses=st.lists(address_strategy, min_size=1, max_size=3))
    @settings(max_examples=25)
    def test_system_resolve_found(self, addresses) -> None:
        resolver = MagicMock()
        resolver.resolve.return_value = SimpleNamespace(
            rrset=[SimpleNamespace(address=address) for address in addresses],
        )

        response = DnsPythonClient(resolver=resolver).system_resolve(HOST)

        assert response.status == DNSStatus.FOUND
        assert response.records == addresses

    def test_system_resolve_nxdomain(self) -> None:
        resolver = MagicMock()
        resolver.resolve.side_effect = dns.resolver.NXDOMAIN()

        response = DnsPythonClient(resolver=resolver).system_resolve(HOST)

        assert response.status == DNSStatus.NOT_FOUND

    def test_system_resolve_timeout(self) -> None:
        resolver = MagicMock()
        resolver.resolve.side_effect = dns.exception.Timeout()

        response = DnsPythonClient(resolver=resolver).system_resolve(HOST)

        assert response.status == DNSStatus.ERROR
        assert response.error.code == DNSErrorCode.TIMEOUT.value

    def test_query_ns_sorted_targets(self) -> None:
        resolver = MagicMock()
        resolver.resolve.return_value = SimpleNamespace(
            rrset=[SimpleNamespace(target="ns2.example.net."), SimpleNamespace(target="ns1.example.net.")],
        )

        response = DnsPythonClient(resolver=resolver).query_ns("example.net")

        assert response.records == ["ns1.example.net", "ns2.example.net"]

    def test_client_satisfies_protocol(self) -> None:
        assert isinstance(DnsPythonClient(), DNSClient)
