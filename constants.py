"""
NetSentry constants.
Port tables, encrypted-port set, and detector thresholds.
"""

# Well-known ports -> protocol label (source port is checked first, then destination).
KNOWN_PORTS = {
    20: "FTP-DATA", 21: "FTP", 22: "SSH", 23: "TELNET", 25: "SMTP", 53: "DNS",
    67: "DHCP", 68: "DHCP", 69: "TFTP", 80: "HTTP", 110: "POP3", 123: "NTP",
    135: "RPC", 137: "NETBIOS-NS", 138: "NETBIOS-DGM", 139: "NETBIOS-SSN",
    143: "IMAP", 161: "SNMP", 162: "SNMP-TRAP", 179: "BGP", 194: "IRC",
    443: "HTTPS", 465: "SMTPS", 514: "SYSLOG", 520: "RIP",
    587: "SMTP-SSL", 636: "LDAPS", 993: "IMAPS", 995: "POP3S",
    1080: "SOCKS", 1433: "MSSQL", 1521: "ORACLE", 1723: "PPTP",
    2049: "NFS", 3306: "MySQL", 3389: "RDP", 5432: "PostgreSQL",
    5900: "VNC", 8000: "HTTP-ALT", 8080: "HTTP-ALT", 8443: "HTTPS-ALT",
}

DEFAULT_PROTOCOL = "TCP"

# SSH, HTTPS, SMTPS, IMAPS, POP3S, FTPS, OpenVPN, IKE, IKE NAT-T
ENCRYPTED_PORTS = frozenset({22, 443, 465, 993, 995, 990, 1194, 500, 4500})

LINKTYPE_ETHERNET = "ETHERNET"
ETHERNET_HEADER_LEN = 14
IPPROTO_TCP = 6
IPPROTO_UDP = 17
UDP_HEADER_LEN = 8

CAPTURE_FILTER = "tcp or udp"
MAX_FRAME_SIZE = 65535

# Threat detector thresholds
PORT_SCAN_THRESHOLD = 20
FLOOD_WINDOW_SECONDS = 10.0
FLOOD_THRESHOLD = 100
DNS_MAX_SIZE = 512
TCP_STORM_SIZE = 10000
MAX_TRACKED_SOURCES = 10000
MAX_THREATS = 1000

# TLS audit
TLS_PORT = 443
TLS_PROBE_TIMEOUT = 10
AUDIT_WORKERS = 8
