"""Various constants used by the minisip library."""

from __future__ import annotations


SUPPORTED_SIP_VERSIONS: list[str] = ["SIP/2.0"]
SIP_VERSION: str = "SIP/2.0"

DEFAULT_SERVER_HOST: str = "fritz.box"
DEFAULT_SIP_PORT: int = 5060
DEFAULT_LOCAL_HOST: str = "0.0.0.0"
DEFAULT_DEVICE: str = "miniSIP4fb"

DEFAULT_TIMEOUT: float = 5.0
DEFAULT_SEND_RETRIES: int = 3
RECV_BUFFER_SIZE: int = 2048

CALL_METHODS: list[str] = ["INVITE", "ACK", "BYE", "CANCEL"]

BRANCH_PREFIX: str = "z9hG4bK"
BRANCH_RANDOM_LENGTH: int = 20
TAG_RANGE: tuple[int, int] = (1_000_000_000, 9_999_999_999)

MAX_FORWARDS: int = 70
ALLOW_EVENTS: str = "org.3gpp.nwinitdereg"
REGISTER_SUPPORTED: list[str] = ["replaces", "from-change"]
INVITE_SUPPORTED: list[str] = ["replaces", "from-change", "100rel"]

MAX_CONTROL_ATTEMPTS: int = 10
FATAL_STATUS_CODE: int = 500

DEFAULT_EXPIRES: int = 3600
DEFAULT_LEAD_FRACTION: float = 0.75
DEFAULT_LEAD_TIME: int = 30

DEFAULT_ACK_RETRANSMISSIONS: int = 3

DIGEST_NONCE_COUNT: str = "00000001"
