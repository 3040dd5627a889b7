"""Canonical forms for values that the router prints in more than one way.

All helpers are idempotent: feeding a canonical value back in returns it
unchanged. They raise ValueError on malformed input so that parsers can turn
the failure into a ParseFormatError and validators into a ValidationError.
"""
import ipaddress
import re

# Reserved literal tokens with device-specific meaning, kept as-is.
INFINITY = "infinity"
ANY = "*"

_MAC_HEX = re.compile(r"^[0-9a-f]{12}$")
_INTERFACE_SLOT = re.compile(r"^(lan\d+)/(\d+)$", re.IGNORECASE)
_TIME_HHMM = re.compile(r"^(\d+):(\d{1,2})$")


def normalize_ipv4(text: str) -> str:
    """Return the dotted-quad form of an IPv4 address."""
    try:
        return str(ipaddress.IPv4Address(text.strip()))
    except ipaddress.AddressValueError as e:
        raise ValueError(f"invalid IPv4 address: {text}") from e


def is_ipv4(text: str) -> bool:
    try:
        ipaddress.IPv4Address(text)
        return True
    except ipaddress.AddressValueError:
        return False


def prefix_from_mask(text: str) -> int:
    """Convert a prefix length or dotted netmask to a prefix length.

    Accepts "24", "/24" and "255.255.255.0". Non-contiguous masks are rejected.
    """
    value = text.strip().lstrip("/")
    if value.isdigit():
        prefix = int(value)
        if not 0 <= prefix <= 32:
            raise ValueError(f"prefix length out of range: {text}")
        return prefix
    try:
        return ipaddress.IPv4Network(f"0.0.0.0/{value}").prefixlen
    except ValueError as e:
        raise ValueError(f"invalid netmask: {text}") from e


def mask_from_prefix(prefix: int) -> str:
    return str(ipaddress.IPv4Network(f"0.0.0.0/{prefix}").netmask)


def normalize_network(text: str) -> str:
    """Canonicalize "a.b.c.d/len" or "a.b.c.d/mask" to "a.b.c.d/len".

    The literal "default" is kept as the device's name for 0.0.0.0/0.
    """
    value = text.strip().lower()
    if value in ("default", "0.0.0.0/0", "0.0.0.0/0.0.0.0"):
        return "default"
    if "/" not in value:
        raise ValueError(f"network needs a mask: {text}")
    address, mask = value.split("/", 1)
    return f"{normalize_ipv4(address)}/{prefix_from_mask(mask)}"


def network_has_host_bits(network: str) -> bool:
    if network == "default":
        return False
    try:
        ipaddress.IPv4Network(network, strict=True)
        return False
    except ValueError:
        return True


def split_range(text: str) -> tuple[str, str]:
    """Split "start-end" into canonical addresses. A bare address is a range of one."""
    if "-" in text:
        start, end = text.split("-", 1)
    else:
        start = end = text
    return normalize_ipv4(start), normalize_ipv4(end)


def address_key(address: str) -> int:
    return int(ipaddress.IPv4Address(address))


def normalize_mac(text: str) -> str:
    """Canonicalize a MAC address to lowercase colon-separated form.

    Accepts colon, hyphen, dot (aabb.ccdd.eeff), space separated and bare
    hexadecimal forms.
    """
    digits = re.sub(r"[\s:\-.]", "", text.strip().lower())
    if not _MAC_HEX.match(digits):
        raise ValueError(f"invalid MAC address: {text}")
    return ":".join(digits[i:i + 2] for i in range(0, 12, 2))


def normalize_lease_time(text: str) -> str:
    """Canonicalize a lease time to "h:mm" or the "infinity" sentinel.

    The device accepts both "h:mm" and a plain minute count.
    """
    value = text.strip().lower()
    if value in (INFINITY, "infinite"):
        return INFINITY
    match = _TIME_HHMM.match(value)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
    elif value.isdigit():
        hours, minutes = divmod(int(value), 60)
    else:
        raise ValueError(f"invalid lease time: {text}")
    if minutes >= 60:
        raise ValueError(f"invalid lease time: {text}")
    return f"{hours}:{minutes:02d}"


def normalize_protocol(text: str) -> str:
    """Lowercase a protocol token or comma list, dropping empty items."""
    items = [item.strip().lower() for item in text.split(",")]
    return ",".join(item for item in items if item)


def split_interface_slot(text: str) -> tuple[str, int]:
    """Decompose a "lanN/M" token into ("lanN", M)."""
    match = _INTERFACE_SLOT.match(text.strip())
    if not match:
        raise ValueError(f"invalid VLAN interface: {text}")
    return match.group(1).lower(), int(match.group(2))


def normalize_interface(text: str) -> str:
    """Lowercase an interface name and collapse "pp  1" spacing."""
    return " ".join(text.strip().lower().split())


def unquote(text: str) -> str:
    value = text.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


def quote_if_needed(text: str) -> str:
    if text == "" or re.search(r"\s", text):
        return f'"{text}"'
    return text


def parse_key_values(text: str) -> dict[str, str]:
    """Parse "key=value key2=value" tokens into a dict, keeping token order."""
    result: dict[str, str] = {}
    for token in text.split():
        if "=" not in token:
            raise ValueError(f"expected key=value, got '{token}'")
        key, value = token.split("=", 1)
        result[key.lower()] = value
    return result


def parse_address_list(text: str) -> tuple[str, ...]:
    """Parse a comma list of addresses; the "none" token means explicitly empty."""
    if text.strip().lower() == "none":
        return ()
    return tuple(normalize_ipv4(item) for item in text.split(",") if item.strip())
