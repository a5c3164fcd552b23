from __future__ import annotations

import os
from pathlib import Path
from typing import FrozenSet, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class Settings(BaseModel):
    """Runtime configuration, read from the environment (and a .env file if present).

    Fields:
        free_entry: Keys or emails exempt from the entry fee, lower-cased.
        send_delay: Pause between SMS sends to stay under the gateway rate limit.
        test_phone: Only recipient of ``test-send``; unset disables test sends.
    """

    state_file: Path = Path("bridge_state.json")
    roster_csv: Path = Path("current_bridge_pub_complete.csv")
    walkin_csv: Optional[Path] = None
    special_requests: Path = Path("special_requests.json")
    export_csv: Path = Path("bridge_matches_export.csv")
    failed_sends: Path = Path("failed_sends.txt")
    report_dir: Path = Path("reports")
    free_entry: FrozenSet[str] = Field(default_factory=frozenset)
    event_name: str = "Bridge"
    entry_fee: int = 3
    send_delay: float = Field(default=0.1, ge=0.0)
    test_phone: Optional[str] = None
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_from_number: Optional[str] = None

    @property
    def sms_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_from_number)


_ENV_FIELDS = {
    "PUBMATCH_STATE_FILE": "state_file",
    "PUBMATCH_ROSTER_CSV": "roster_csv",
    "PUBMATCH_WALKIN_CSV": "walkin_csv",
    "PUBMATCH_SPECIAL_REQUESTS": "special_requests",
    "PUBMATCH_EXPORT_CSV": "export_csv",
    "PUBMATCH_FAILED_SENDS": "failed_sends",
    "PUBMATCH_REPORT_DIR": "report_dir",
    "PUBMATCH_EVENT_NAME": "event_name",
    "PUBMATCH_ENTRY_FEE": "entry_fee",
    "PUBMATCH_SEND_DELAY": "send_delay",
    "PUBMATCH_TEST_PHONE": "test_phone",
    "TWILIO_ACCOUNT_SID": "twilio_account_sid",
    "TWILIO_AUTH_TOKEN": "twilio_auth_token",
    "TWILIO_PHONE_NUMBER": "twilio_from_number",
}


def load_settings(env_file: Optional[Path] = None) -> Settings:
    load_dotenv(dotenv_path=env_file)
    values = {field: os.environ[var] for var, field in _ENV_FIELDS.items() if os.environ.get(var)}
    free = os.environ.get("PUBMATCH_FREE_ENTRY", "")
    values["free_entry"] = frozenset(item.strip().lower() for item in free.split(",") if item.strip())
    return Settings(**values)
