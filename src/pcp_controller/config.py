"""
Controller settings.

Defaults: 10s per message, 60s per operation, 60 inventory polls at 1s,
10 connection attempts.
"""

import json
import ssl
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field

CONFIG_FILE = Path.home() / ".pcp" / "config.json"

DEFAULT_BROKER_URL = "wss://localhost:8142"
DEFAULT_STATUS_URL = "https://localhost:8143"


class Credentials(BaseModel):
    ca_cert: Optional[str] = None
    cert: Optional[str] = None
    key: Optional[str] = None


def build_ssl_context(credentials: Credentials) -> Optional[ssl.SSLContext]:
    """TLS context from the controller certificate material, or None when there is none."""
    if not (credentials.ca_cert or credentials.cert):
        return None
    context = ssl.create_default_context(cafile=credentials.ca_cert)
    if credentials.cert:
        context.load_cert_chain(credentials.cert, credentials.key)
    return context


class ControllerSettings(BaseModel):
    broker_url: str = DEFAULT_BROKER_URL
    status_url: str = DEFAULT_STATUS_URL
    client_type: str = "pcp-controller"
    credentials: Credentials = Field(default_factory=Credentials)

    message_expiry_seconds: float = Field(10.0, gt=0)
    operation_expiry_seconds: float = Field(60.0, gt=0)
    provisional_expiry_seconds: float = Field(10.0, gt=0)

    inventory_poll_retries: int = Field(60, ge=0)
    inventory_poll_interval: float = Field(1.0, ge=0)

    connection_retries: int = Field(10, ge=1)
    connection_timeout: float = Field(5.0, gt=0)
    association_timeout: float = Field(10.0, gt=0)

    status_query_retries: int = Field(60, ge=0)
    status_query_interval: float = Field(1.0, ge=0)
    unknown_status_tolerance: int = Field(3, ge=0)


def load_settings(path: Union[str, Path, None] = None, **overrides) -> ControllerSettings:
    """Read settings from a JSON file. A missing file yields the defaults."""
    config_path = Path(path) if path else CONFIG_FILE
    try:
        raw = json.loads(config_path.read_text())
    except FileNotFoundError:
        raw = {}
    raw.update({k: v for k, v in overrides.items() if v is not None})
    return ControllerSettings.model_validate(raw)

