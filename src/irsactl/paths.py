from __future__ import annotations

import os
import pathlib


class Paths:
    @property
    def cache(self) -> pathlib.Path:
        """Return the local cache directory.

        Set via the IRSACTL_CACHE environment variable, defaulting to
        `~/.irsactl`.
        """
        if "IRSACTL_CACHE" in os.environ:
            return pathlib.Path(os.environ["IRSACTL_CACHE"])

        return pathlib.Path.home() / ".irsactl"

    @property
    def state(self) -> pathlib.Path:
        return self.cache / "state"

    @property
    def bin(self) -> pathlib.Path:
        return self.cache / "bin"

    def state_backend_url(self) -> str:
        if os.environ.get("PULUMI_BACKEND_URL", "").strip() != "":
            return os.environ["PULUMI_BACKEND_URL"]

        return f"file://{self.state}"
