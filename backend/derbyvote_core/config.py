from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

# Award type used when the contest creates a new award in the racing system.
# The racing system ships "Design" as its first award type.
DEFAULT_AWARD_TYPE_NAME = "Design"
# Used only when the racing system reports no award types at all.
DEFAULT_AWARD_TYPE_ID = 1

DEFAULT_TIMEOUT = 30.0


@dataclass
class Settings:
    data_dir: Path
    derbynet_url: str = ""
    derbynet_role: str = ""
    derbynet_password: str = ""
    timeout: float = DEFAULT_TIMEOUT
    award_type_name: str = DEFAULT_AWARD_TYPE_NAME

    @classmethod
    def from_env(cls) -> "Settings":
        data_dir = os.getenv("DERBYVOTE_DATA_DIR")
        raw_timeout = os.getenv("DERBYNET_TIMEOUT", "")
        try:
            timeout = float(raw_timeout) if raw_timeout else DEFAULT_TIMEOUT
        except ValueError:
            timeout = DEFAULT_TIMEOUT
        if timeout <= 0:
            timeout = DEFAULT_TIMEOUT

        return cls(
            data_dir=Path(data_dir) if data_dir else Path(__file__).parent.parent / "data",
            derbynet_url=os.getenv("DERBYNET_URL", "").strip(),
            derbynet_role=os.getenv("DERBYNET_ROLE", "").strip(),
            derbynet_password=os.getenv("DERBYNET_PASSWORD", ""),
            timeout=timeout,
            award_type_name=os.getenv("DERBYNET_AWARD_TYPE", "").strip() or DEFAULT_AWARD_TYPE_NAME,
        )
