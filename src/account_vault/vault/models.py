# Vault - Account Record Model
#
# AccountRecord is the unit stored in the vault. The snapshot schema below is
# the explicit, ordered field list written by the codec; changing it requires
# a new SNAPSHOT_VERSION.

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..errors import CorruptData

# Offset between a 64-bit community id and the 32-bit account id
STEAM_ID64_INDENT = 76561197960265728


@dataclass(eq=True)
class AccountRecord:
    """A single stored account.

    Identity inside the vault is positional; ``steam_id`` is the stable
    numeric identifier once the profile has been resolved.
    """

    login: str
    password: str = ""
    nickname: str = ""
    steam_id: Optional[int] = None
    note: Optional[str] = None
    authenticator: Optional[Dict[str, Any]] = None
    pinned: bool = False
    unpin_index: int = 0
    added_date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_update_date: Optional[datetime] = None

    # Profile fields, filled in by the enrichment service
    avatar_hash: Optional[str] = None
    vanity_url: Optional[str] = None
    steam_level: Optional[int] = None
    created_date: Optional[datetime] = None
    visibility_state: int = 0
    have_community_ban: bool = False
    vac_bans_count: int = 0
    game_bans_count: int = 0
    days_since_last_ban: int = 0
    economy_ban: int = 0

    def __post_init__(self):
        if not self.nickname:
            self.nickname = self.login

    @classmethod
    def from_account_id(cls, login: str, password: str, account_id: int) -> "AccountRecord":
        """Create a record from a 32-bit account id."""
        return cls(login=login, password=password, steam_id=account_id + STEAM_ID64_INDENT)

    @property
    def account_id(self) -> Optional[int]:
        if self.steam_id is None:
            return None
        return self.steam_id - STEAM_ID64_INDENT

    @property
    def is_fully_parsed(self) -> bool:
        return self.steam_id is not None

    @property
    def years_of_service(self) -> Optional[float]:
        if self.created_date is None:
            return None
        created = self.created_date
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return (datetime.now(timezone.utc) - created).days / 365.25

    @property
    def has_authenticator(self) -> bool:
        return self.authenticator is not None

    def to_row(self) -> List[Any]:
        """Serialize to a positional row following RECORD_SCHEMA."""
        return [_encode_value(kind, getattr(self, name)) for name, kind, _ in RECORD_SCHEMA]

    @classmethod
    def from_row(cls, row: Any) -> "AccountRecord":
        """Build a record from a positional row, failing closed on any mismatch."""
        if not isinstance(row, list) or len(row) != len(RECORD_SCHEMA):
            raise CorruptData(
                f"Account row must be a list of {len(RECORD_SCHEMA)} values"
            )
        kwargs = {}
        for (name, kind, optional), value in zip(RECORD_SCHEMA, row):
            kwargs[name] = _decode_value(name, kind, optional, value)
        if not kwargs["login"]:
            raise CorruptData("Account login must not be empty")
        if kwargs["unpin_index"] < 0:
            raise CorruptData("Account unpin_index must not be negative")
        return cls(**kwargs)


# ── Snapshot schema ──────────────────────────────────────────────────
# (field name, value kind, optional)

RECORD_SCHEMA: Tuple[Tuple[str, str, bool], ...] = (
    ("login", "str", False),
    ("password", "str", False),
    ("nickname", "str", False),
    ("steam_id", "int", True),
    ("note", "str", True),
    ("authenticator", "mapping", True),
    ("pinned", "bool", False),
    ("unpin_index", "int", False),
    ("added_date", "datetime", False),
    ("last_update_date", "datetime", True),
    ("avatar_hash", "str", True),
    ("vanity_url", "str", True),
    ("steam_level", "int", True),
    ("created_date", "datetime", True),
    ("visibility_state", "int", False),
    ("have_community_ban", "bool", False),
    ("vac_bans_count", "int", False),
    ("game_bans_count", "int", False),
    ("days_since_last_ban", "int", False),
    ("economy_ban", "int", False),
)

RECORD_FIELDS: Tuple[str, ...] = tuple(name for name, _, _ in RECORD_SCHEMA)

# Fields the enrichment service may update through VaultStore.apply_profile
PROFILE_FIELDS = frozenset({
    "nickname",
    "steam_id",
    "avatar_hash",
    "vanity_url",
    "steam_level",
    "created_date",
    "visibility_state",
    "have_community_ban",
    "vac_bans_count",
    "game_bans_count",
    "days_since_last_ban",
    "economy_ban",
    "last_update_date",
})


def _encode_value(kind: str, value: Any) -> Any:
    if value is None:
        return None
    if kind == "datetime":
        return value.isoformat()
    if kind == "mapping":
        return dict(value)
    return value


def _decode_value(name: str, kind: str, optional: bool, value: Any) -> Any:
    if value is None:
        if optional:
            return None
        raise CorruptData(f"Field '{name}' is required")

    if kind == "str":
        if not isinstance(value, str):
            raise CorruptData(f"Field '{name}' must be a string")
        return value
    if kind == "int":
        # bool is an int subclass; reject it explicitly
        if isinstance(value, bool) or not isinstance(value, int):
            raise CorruptData(f"Field '{name}' must be an integer")
        return value
    if kind == "bool":
        if not isinstance(value, bool):
            raise CorruptData(f"Field '{name}' must be a boolean")
        return value
    if kind == "datetime":
        if not isinstance(value, str):
            raise CorruptData(f"Field '{name}' must be an ISO timestamp")
        try:
            return datetime.fromisoformat(value)
        except ValueError as exc:
            raise CorruptData(f"Field '{name}' is not a valid timestamp") from exc
    if kind == "mapping":
        if not isinstance(value, dict):
            raise CorruptData(f"Field '{name}' must be an object")
        return value
    raise CorruptData(f"Unknown field kind '{kind}'")
