"""
Bech32 LNURL decoding and encoding.
Format: HRP("lnurl") + "1" + DATA(5-bit groups) + CHECKSUM(6 chars)

The checksum is verified by default. Lenient mode skips verification and
only strips the trailing six characters.
"""
from typing import List, Optional

from core.exceptions import InvalidLnurlError
from core.logger import setup_logger

logger = setup_logger(__name__)

CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
CHECKSUM_LENGTH = 6
LNURL_HRP = "lnurl"

_GENERATORS = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)


def _polymod(values: List[int]) -> int:
    chk = 1
    for value in values:
        top = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ value
        for i in range(5):
            chk ^= _GENERATORS[i] if ((top >> i) & 1) else 0
    return chk


def _hrp_expand(hrp: str) -> List[int]:
    return [ord(x) >> 5 for x in hrp] + [0] + [ord(x) & 31 for x in hrp]


def verify_checksum(hrp: str, data: List[int]) -> bool:
    """Check a bech32 checksum over hrp and data (checksum included)."""
    return _polymod(_hrp_expand(hrp) + data) == 1


def create_checksum(hrp: str, data: List[int]) -> List[int]:
    values = _hrp_expand(hrp) + data
    polymod = _polymod(values + [0] * CHECKSUM_LENGTH) ^ 1
    return [(polymod >> 5 * (5 - i)) & 31 for i in range(CHECKSUM_LENGTH)]


def convertbits(data: List[int], frombits: int, tobits: int, pad: bool = True) -> Optional[List[int]]:
    """General power-of-2 base conversion."""
    acc = 0
    bits = 0
    ret = []
    maxv = (1 << tobits) - 1
    max_acc = (1 << (frombits + tobits - 1)) - 1
    for value in data:
        if value < 0 or (value >> frombits):
            return None
        acc = ((acc << frombits) | value) & max_acc
        bits += frombits
        while bits >= tobits:
            bits -= tobits
            ret.append((acc >> bits) & maxv)
    if pad and bits:
        ret.append((acc << (tobits - bits)) & maxv)
    return ret


def decode_lnurl(lnurl: str, verify: bool = True) -> str:
    """
    Decode a bech32 LNURL to its URL.

    Args:
        lnurl: LNURL string (any case, optional "lightning:" prefix)
        verify: Verify the bech32 checksum

    Returns:
        Decoded URL

    Raises:
        InvalidLnurlError: If the string is not a decodable http(s) LNURL
    """
    if not lnurl or not isinstance(lnurl, str):
        raise InvalidLnurlError("Empty LNURL")

    normalized = lnurl.strip().lower()
    if normalized.startswith("lightning:"):
        normalized = normalized[len("lightning:"):]

    if not normalized.startswith(LNURL_HRP):
        raise InvalidLnurlError("Not a valid LNURL", details={"lnurl": lnurl})

    separator = normalized.rfind("1")
    if separator < len(LNURL_HRP) or separator + 1 + CHECKSUM_LENGTH > len(normalized):
        raise InvalidLnurlError("LNURL is too short or has no separator", details={"lnurl": lnurl})

    hrp = normalized[:separator]
    values = []
    for char in normalized[separator + 1:]:
        index = CHARSET.find(char)
        if index == -1:
            raise InvalidLnurlError(f"Invalid character in LNURL: {char!r}", details={"lnurl": lnurl})
        values.append(index)

    if verify and not verify_checksum(hrp, values):
        raise InvalidLnurlError("LNURL checksum mismatch", details={"lnurl": lnurl})

    payload = convertbits(values[:-CHECKSUM_LENGTH], 5, 8, pad=False)
    try:
        url = bytes(payload).decode("utf-8")
    except UnicodeDecodeError:
        raise InvalidLnurlError("LNURL payload is not valid UTF-8", details={"lnurl": lnurl})

    if not url.startswith("http"):
        raise InvalidLnurlError("Decoded LNURL is not a valid URL", details={"url": url})

    logger.debug(f"Decoded LNURL -> {url}")
    return url


def encode_lnurl(url: str) -> str:
    """
    Encode a URL as a lowercase bech32 LNURL with checksum.

    Args:
        url: http(s) URL

    Returns:
        "lnurl1..." string
    """
    data = convertbits(list(url.encode("utf-8")), 8, 5)
    checksum = create_checksum(LNURL_HRP, data)
    return LNURL_HRP + "1" + "".join(CHARSET[d] for d in data + checksum)
