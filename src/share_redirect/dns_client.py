"""
DNS client module for endpoint address resolution.

This module defines the DNS collaborator the resolver talks to and its
dnspython-backed implementation. Every query reports one of three
outcomes so callers can tell a definitive "does not exist" apart from a
transient failure:

- FOUND: the server answered (the record list may be empty)
- NOT_FOUND: NXDOMAIN
- ERROR: timeout, network error, malformed or failed response
"""

from typing import Optional, Protocol, runtime_checkable

import dns.exception
import dns.flags
import dns.message
import dns.query
import dns.rcode
import dns.rdatatype
import dns.resolver

from .address_validator import is_valid_ipv4
from .audit_logger import AuditLogger
from .enums import DNSErrorCode, DNSStatus
from .models import DNSError, DNSResponse


@runtime_checkable
class DNSClient(Protocol):
    """Narrow DNS interface used by the resolver."""

    def query_ns(self, domain: str) -> DNSResponse:
        """Authoritative name servers for `domain`."""
        ...

    def query_a(self, hostname: str, server: Optional[str] = None) -> DNSResponse:
        """A records for `hostname`, asked of `server` when given."""
        ...

    def query_cname(self, hostname: str, server: Optional[str] = None) -> DNSResponse:
        """CNAME target for `hostname`, asked of `server` when given."""
        ...

    def system_resolve(self, hostname: str) -> DNSResponse:
        """A records for `hostname` through the system's recursive resolver."""
        ...


def _error(code: DNSErrorCode, message: str) -> DNSResponse:
    return DNSResponse(
        status=DNSStatus.ERROR,
        error=DNSError(code=code.value, message=message),
    )


def _not_found() -> DNSResponse:
    return DNSResponse(status=DNSStatus.NOT_FOUND)


def _strip_root(name) -> str:
    return str(name).rstrip(".")


class DnsPythonClient:
    """
    DNS collaborator backed by dnspython.

    Direct queries to a named server go over UDP (TCP when truncated);
    everything else goes through the system resolver configuration from
    /etc/resolv.conf. Each query is bounded by `timeout_seconds`.
    """

    COMPONENT = "dns_client"

    def __init__(
        self,
        timeout_seconds: float = 5.0,
        resolver: Optional[dns.resolver.Resolver] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the DNS client.

        Args:
            timeout_seconds: Upper bound for each query
            resolver: Recursive resolver to use; built from the system
                      configuration on first use when None
            logger: Optional audit logger
        """
        self._timeout = timeout_seconds
        self._resolver = resolver
        self._logger = logger

    @property
    def resolver(self) -> dns.resolver.Resolver:
        if self._resolver is None:
            self._resolver = dns.resolver.Resolver()
            self._resolver.timeout = self._timeout
            self._resolver.lifetime = self._timeout
        return self._resolver

    def query_ns(self, domain: str) -> DNSResponse:
        """
        Find the authoritative name servers for a domain.

        When the domain has no NS set of its own, the SOA origin from the
        authority section is returned instead.
        """
        response = self._recursive(domain, dns.rdatatype.NS)
        if isinstance(response, DNSResponse):
            return response

        answer = response
        if answer.rrset is not None:
            servers = sorted(_strip_root(r.target) for r in answer.rrset)
        else:
            servers = [
                _strip_root(r.mname)
                for rrset in answer.response.authority
                if rrset.rdtype == dns.rdatatype.SOA
                for r in rrset
            ]
        return DNSResponse(status=DNSStatus.FOUND, records=servers)

    def query_a(self, hostname: str, server: Optional[str] = None) -> DNSResponse:
        if server is None:
            return self.system_resolve(hostname)
        return self._query_server(hostname, dns.rdatatype.A, server)

    def query_cname(self, hostname: str, server: Optional[str] = None) -> DNSResponse:
        if server is None:
            response = self._recursive(hostname, dns.rdatatype.CNAME)
            if isinstance(response, DNSResponse):
                return response
            target = _strip_root(response.rrset[0].target) if response.rrset else None
            return DNSResponse(
                status=DNSStatus.FOUND,
                records=[target] if target else [],
                canonical_name=target,
            )
        return self._query_server(hostname, dns.rdatatype.CNAME, server)

    def system_resolve(self, hostname: str) -> DNSResponse:
        response = self._recursive(hostname, dns.rdatatype.A)
        if isinstance(response, DNSResponse):
            return response

        answer = response
        addresses = [r.address for r in answer.rrset] if answer.rrset is not None else []
        return DNSResponse(status=DNSStatus.FOUND, records=addresses)

    def _recursive(self, name: str, rdtype):
        """Query through the recursive resolver; DNSResponse on failure, else the Answer."""
        try:
            return self.resolver.resolve(name, rdtype, raise_on_no_answer=False)
        except dns.resolver.NXDOMAIN:
            return _not_found()
        except dns.resolver.NoNameservers as e:
            return _error(DNSErrorCode.NO_NAMESERVERS, str(e))
        except dns.exception.Timeout as e:
            return _error(DNSErrorCode.TIMEOUT, str(e))
        except dns.exception.DNSException as e:
            return _error(DNSErrorCode.MALFORMED_RESPONSE, str(e))

    def _server_address(self, server: str) -> Optional[str]:
        if is_valid_ipv4(server):
            return server
        response = self.system_resolve(server)
        if response.status != DNSStatus.FOUND or not response.records:
            return None
        return sorted(response.records)[0]

    def _query_server(self, hostname: str, rdtype, server: str) -> DNSResponse:
        server_ip = self._server_address(server)
        if server_ip is None:
            return _error(
                DNSErrorCode.NETWORK_ERROR,
                f"Could not resolve name server {server}",
            )

        if self._logger:
            self._logger.debug(
                self.COMPONENT,
                f"Querying {server} ({server_ip}) for {dns.rdatatype.to_text(rdtype)} {hostname}",
            )

        query = dns.message.make_query(hostname, rdtype)
        try:
            response = dns.query.udp(query, server_ip, timeout=self._timeout)
            if response.flags & dns.flags.TC:
                response = dns.query.tcp(query, server_ip, timeout=self._timeout)
        except dns.exception.Timeout as e:
            return _error(DNSErrorCode.TIMEOUT, f"{server}: {e}")
        except dns.exception.DNSException as e:
            return _error(DNSErrorCode.MALFORMED_RESPONSE, f"{server}: {e}")
        except OSError as e:
            return _error(DNSErrorCode.NETWORK_ERROR, f"{server}: {e}")

        rcode = response.rcode()
        if rcode == dns.rcode.NXDOMAIN:
            return _not_found()
        if rcode != dns.rcode.NOERROR:
            return _error(
                DNSErrorCode.SERVER_FAILURE,
                f"{server} answered {dns.rcode.to_text(rcode)}",
            )

        addresses: list[str] = []
        canonical_name: Optional[str] = None
        for rrset in response.answer:
            if rrset.rdtype == dns.rdatatype.A:
                addresses.extend(r.address for r in rrset)
            elif rrset.rdtype == dns.rdatatype.CNAME and canonical_name is None:
                canonical_name = _strip_root(rrset[0].target)

        if rdtype == dns.rdatatype.CNAME:
            return DNSResponse(
                status=DNSStatus.FOUND,
                records=[canonical_name] if canonical_name else [],
                canonical_name=canonical_name,
            )

        return DNSResponse(
            status=DNSStatus.FOUND,
            records=addresses,
            canonical_name=None if addresses else canonical_name,
        )
