import re
from typing import Any, Dict, Protocol, Tuple

from ai_bill_reader.core.errors import InvalidImageError
from ai_bill_reader.storage.models import AiSettings

_DATA_URI = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<payload>.+)$", re.DOTALL)


class ProviderAdapter(Protocol):
    def analyze(self, image_data_uri: str, settings: AiSettings) -> Dict[str, Any]:
        """Return the provider's raw JSON object for a bill image.

        Shape is not enforced here; see ``core.normalizer``.
        """
        ...


def split_data_uri(image_data_uri: str) -> Tuple[str, str]:
    """Split ``data:<mime>;base64,<payload>`` into (mime type, base64 payload)."""
    match = _DATA_URI.match(image_data_uri or "")
    if not match:
        raise InvalidImageError("Image must be a base64 data URI (data:<mime>;base64,<payload>)")
    return match.group("mime"), match.group("payload")
