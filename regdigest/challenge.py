"""
Parser for WWW-Authenticate challenges sent by container registries.

    Bearer realm="https://auth.docker.io/token",service="registry.docker.io"

becomes Challenge(scheme="bearer", params={"realm": ..., "service": ...}).
"""
import dataclasses
import logging
import re

logger = logging.getLogger(__name__)

CHALLENGE_HEADER = "WWW-Authenticate"

BASIC = "basic"
BEARER = "bearer"
OTHER = "other"

# Scheme token, ended by whitespace, a comma or the end of the header
_SCHEME = re.compile(r"([^\s,=]+)(?:[\s,]+|$)")


@dataclasses.dataclass(frozen=True)
class Challenge:
    scheme: str
    params: dict = dataclasses.field(default_factory=dict)
    # scheme token exactly as sent, for error messages
    raw_scheme: str = ""

    @property
    def realm(self):
        return self.params.get("realm", "")

    @property
    def service(self):
        return self.params.get("service", "")

    @property
    def scope(self):
        return self.params.get("scope", "")


def _split_params(body):
    """
    Split a challenge body on commas that are not inside double quotes
    """
    pieces = []
    current = []
    quoted = False
    for c in body:
        if c == '"':
            quoted = not quoted
        if c == "," and not quoted:
            pieces.append("".join(current))
            current = []
        else:
            current.append(c)
    pieces.append("".join(current))
    return pieces


def _unquote(value):
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        return value[1:-1]
    return value


def parse_www_authenticate(www_authenticate):
    """
    Parse a WWW-Authenticate header value into a Challenge.

    Returns None for an empty header. Never raises: trailing commas, pieces
    without a value and unknown keys are tolerated, and a header with no
    leading scheme token parses with scheme "other". Keys are lower-cased,
    values are kept as sent minus one pair of surrounding double quotes.
    Validation of required parameters is left to the caller.
    """
    if not www_authenticate or not www_authenticate.strip():
        return None

    header = www_authenticate.strip()
    match = _SCHEME.match(header)
    if match is None or header[match.end():].startswith("="):
        # No scheme, the whole header is parameters
        raw_scheme, body = "", header
    else:
        raw_scheme, body = match.group(1), header[match.end():]

    scheme = raw_scheme.lower()
    if scheme not in (BASIC, BEARER):
        scheme = OTHER

    params = {}
    for piece in _split_params(body):
        piece = piece.strip()
        if not piece:
            continue
        key, _, value = piece.partition("=")
        key = key.strip().lower()
        if not key:
            continue
        params[key] = _unquote(value.strip())

    challenge = Challenge(scheme=scheme, params=params, raw_scheme=raw_scheme)
    logger.debug(f"Parsed {raw_scheme or 'schemeless'} challenge with keys {sorted(params)}")
    return challenge
