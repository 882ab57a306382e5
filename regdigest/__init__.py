__version__ = "0.1.0"

from regdigest.auth import TokenGrant, get_token  # noqa: E402
from regdigest.credentials import transform_auth  # noqa: E402
from regdigest.digest import normalize_digest  # noqa: E402
from regdigest.registry import compare_digest, fetch_digest  # noqa: E402
