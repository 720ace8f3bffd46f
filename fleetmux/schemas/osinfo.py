"""Schemas for normalised remote OS identity."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

UNKNOWN = "unknown"


class OsIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    ostyp: str = UNKNOWN    # distribution id: debian | ubuntu | alpine | unknown
    osrel: str = UNKNOWN    # codename or version id
    osmir: str = UNKNOWN    # default package mirror

    @property
    def is_known(self) -> bool:
        return self.ostyp != UNKNOWN

    def as_env(self) -> dict[str, str]:
        """Variables in the shape provisioning scripts consume."""
        return {"OSTYP": self.ostyp, "OSREL": self.osrel, "OSMIR": self.osmir}
