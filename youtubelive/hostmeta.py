#!/usr/bin/env python3
"""deal with IP address malarky for the OAuth callback listener"""

import ipaddress
import logging
import pathlib
import socket
import sys

import netifaces  # pylint: disable=import-error

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address

FALLBACK_IP = ipaddress.ip_address('127.0.0.1')
V6_FALLBACK_IP = ipaddress.ip_address('::1')
IFF_UP = 0x1


def interface_is_up(name: str) -> bool:
    """netifaces has no flags, so ask sysfs where there is one"""
    if not sys.platform.startswith('linux'):
        return True
    flagsfile = pathlib.Path('/sys/class/net', name, 'flags')
    try:
        return bool(int(flagsfile.read_text(encoding='utf-8').strip(), 16) & IFF_UP)
    except (OSError, ValueError):
        return True


def _interface_ips(name: str) -> list[IPAddress]:
    """every unicast-looking address netifaces reports for the interface"""
    ips: list[IPAddress] = []
    try:
        addresses = netifaces.ifaddresses(name)  # pylint: disable=no-member
    except ValueError as error:
        logging.debug('Skipping interface %s: %s', name, error)
        return ips

    for family in (netifaces.AF_INET, netifaces.AF_INET6):  # pylint: disable=no-member
        for entry in addresses.get(family, []):
            addr = entry.get('addr')
            if not addr:
                continue
            # link-local v6 comes back as fe80::1%eth0
            addr = addr.split('%', 1)[0]
            try:
                ips.append(ipaddress.ip_address(addr))
            except ValueError:
                logging.debug('Ignoring unparsable address %s on %s', addr, name)
    return ips


def is_private(ip: IPAddress) -> bool:
    """RFC1918, link-local and a rough unique-local/link-local v6 check"""
    packed = ip.packed
    if ip.version == 4:
        return (packed[0] == 10 or (packed[0] == 172 and 16 <= packed[1] <= 31)
                or (packed[0] == 192 and packed[1] == 168)
                or (packed[0] == 169 and packed[1] == 254))
    return (packed[0] & 0xfe == 0xfc) or (packed[0] == 0xfe and (packed[1] & 0xc0) == 0x80)


def is_valid(ip: IPAddress) -> bool:
    """usable as a redirect host"""
    return not ip.is_loopback and not ip.is_multicast and not ip.is_unspecified


def is_global_unicast(ip: IPAddress) -> bool:
    """same idea as Go's net.IP.IsGlobalUnicast"""
    return not (ip.is_loopback or ip.is_multicast or ip.is_link_local or ip.is_unspecified)


def _sort_key(ip: IPAddress) -> tuple[bool, bool, str]:
    return (ip.version != 4, ip.version == 6 and not is_global_unicast(ip), str(ip))


def sort_ips(ips: list[IPAddress]) -> list[IPAddress]:
    """IPv4 first, then global unicast IPv6, then by string"""
    return sorted(ips, key=_sort_key)


def categorize_ips(
        versions: tuple[int, ...] = (4, 6)
) -> tuple[list[IPAddress], list[IPAddress], list[IPAddress]]:
    """collect the addresses of all up interfaces into public, private and loopback

    only addresses of the given IP versions are kept, so a listener bound to
    one family never advertises an address of the other
    """
    public: list[IPAddress] = []
    private: list[IPAddress] = []
    loopback: list[IPAddress] = []

    try:
        interfaces = netifaces.interfaces()  # pylint: disable=no-member
    except OSError as error:
        logging.error('Getting interface list via netifaces failed: %s', error)
        return public, private, loopback

    for name in interfaces:
        if not interface_is_up(name):
            continue
        for ip in _interface_ips(name):
            if ip.version not in versions:
                continue
            if ip.is_loopback:
                loopback.append(ip)
            elif is_private(ip):
                private.append(ip)
            else:
                public.append(ip)

    return sort_ips(public), sort_ips(private), sort_ips(loopback)


def select_best_ip(public: list[IPAddress], private: list[IPAddress],
                   loopback: list[IPAddress]) -> IPAddress:
    """first valid of public, private, loopback.  worst case? 127.0.0.1"""
    for bucket in (public, private, loopback):
        for ip in bucket:
            if is_valid(ip):
                return ip
    return FALLBACK_IP


def split_host_port(address: str) -> tuple[str, int]:
    """'host:port', '[v6]:port' or ':port' into parts"""
    host, sep, port = address.rpartition(':')
    if not sep:
        raise ValueError(f'missing port in address {address!r}')
    if host.startswith('[') and host.endswith(']'):
        host = host[1:-1]
    elif ':' in host:
        raise ValueError(f'too many colons in address {address!r}')
    try:
        portnum = int(port) if port else 0
    except ValueError as error:
        raise ValueError(f'invalid port in address {address!r}') from error
    return host or '0.0.0.0', portnum


def join_host_port(host: str, port: int) -> str:
    """inverse of split_host_port"""
    if ':' in host:
        return f'[{host}]:{port}'
    return f'{host}:{port}'


class ListenResolver:
    """Owns the one listening socket used for OAuth callbacks.

    The socket is bound once with address/port reuse enabled and kept for the
    life of the client so retries land on the same port.  ``effective_addr`` is
    what goes into the redirect URI: the bound address, or when bound to the
    unspecified address, the best address found on the machine's interfaces.
    """

    def __init__(self, listen_addr: str = '127.0.0.1:0') -> None:
        self.listen_addr = listen_addr
        self.sticky_socket: socket.socket | None = None
        self.effective_addr: str | None = None

    def setup_listener(self) -> socket.socket:
        """bind (once) and compute the effective address"""
        if self.sticky_socket is not None:
            return self.sticky_socket

        host, port = split_host_port(self.listen_addr)
        family = socket.AF_INET6 if ':' in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        versions: tuple[int, ...] = (4, )
        try:
            if family == socket.AF_INET6:
                versions = (6, )
                try:
                    # [::] takes v4 connections too where the OS allows it
                    sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
                    versions = (4, 6)
                except (AttributeError, OSError) as error:
                    logging.debug('dual-stack listener not available: %s', error)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if hasattr(socket, 'SO_REUSEPORT'):
                try:
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
                except OSError as error:
                    logging.debug('SO_REUSEPORT not available: %s', error)
            sock.bind((host, port))
            sock.listen(128)
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise

        bound_host, bound_port = sock.getsockname()[:2]
        bound_ip = ipaddress.ip_address(bound_host.split('%', 1)[0])
        if bound_ip.is_unspecified:
            selected = select_best_ip(*categorize_ips(versions))
            if selected.version not in versions:
                selected = V6_FALLBACK_IP
        else:
            selected = bound_ip

        self.sticky_socket = sock
        self.effective_addr = join_host_port(str(selected), bound_port)
        logging.debug('OAuth callback listener bound to %s, advertising %s', self.listen_addr,
                      self.effective_addr)
        return sock

    @property
    def redirect_uri(self) -> str:
        """callback URL for the bound listener"""
        if not self.effective_addr:
            raise RuntimeError('listener has not been set up')
        return f'http://{self.effective_addr}/callback'

    def close(self) -> None:
        """release the socket"""
        if self.sticky_socket is not None:
            self.sticky_socket.close()
            self.sticky_socket = None
