"""Local pickle cache of collected vCenter inventory snapshots."""
import logging
import pickle
import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional

from .models import Inventory


class CacheManager:
    """Keeps the last collected Inventory of each vCenter in one pickle file."""

    SUFFIX = ".inventory.pickle"

    def __init__(self, cache_dir: Path, use_cache: bool = False, max_age_hours: Optional[float] = None):
        """
        Args:
            cache_dir: Directory holding <vcenter>.inventory.pickle files
            use_cache: If True, serve a cached snapshot instead of querying vCenter
                      Note: freshly collected snapshots are ALWAYS stored, regardless of this flag
            max_age_hours: Snapshots older than this are ignored (None = no limit)
        """
        self.cache_dir = Path(cache_dir)
        self.use_cache = use_cache
        self.max_age = timedelta(hours=max_age_hours) if max_age_hours else None
        self.logger = logging.getLogger(__name__)

        self.cache_dir.mkdir(parents=True, exist_ok=True)

        if use_cache:
            limit = f"max age {max_age_hours}h" if self.max_age else "no age limit"
            self.logger.info(f"Inventory cache: READ when available ({limit})")
        else:
            self.logger.info("Inventory cache: always collect live (snapshot is still stored)")
        self.logger.debug(f"Cache directory: {self.cache_dir}")

    @staticmethod
    def key_for(vcenter: str) -> str:
        """Filesystem-safe name for a vCenter host, e.g. 'https://vc:443/' -> 'https-vc-443-'."""
        return re.sub(r"[^A-Za-z0-9.-]+", "-", vcenter.strip())

    def path_for(self, vcenter: str) -> Path:
        return self.cache_dir / f"{self.key_for(vcenter)}{self.SUFFIX}"

    def load(self, vcenter: str) -> Optional[Inventory]:
        """Return the cached snapshot for vcenter, or None when cache reads are off, missing, stale or unreadable."""
        if not self.use_cache:
            self.logger.debug(f"Cache reads disabled, collecting {vcenter} live")
            return None

        path = self.path_for(vcenter)
        if not path.exists():
            self.logger.info(f"Cache miss: {vcenter} (no snapshot at {path})")
            return None

        mtime = datetime.fromtimestamp(path.stat().st_mtime)
        if self.max_age and datetime.now() - mtime > self.max_age:
            self.logger.info(f"Cache stale: {vcenter} (stored {mtime:%Y-%m-%d %H:%M:%S})")
            return None

        try:
            with open(path, "rb") as f:
                data = pickle.load(f)
        except (OSError, EOFError, AttributeError, pickle.UnpicklingError) as e:
            self.logger.error(f"Error reading cached snapshot for {vcenter}: {e}")
            return None

        if not isinstance(data, Inventory):
            self.logger.warning(f"Ignoring cache file {path.name}: not an inventory snapshot")
            return None

        self.logger.info(f"Cache hit: {vcenter} (stored {mtime:%Y-%m-%d %H:%M:%S}, {len(data.vms)} VMs)")
        return data

    def store(self, inventory: Inventory) -> Optional[Path]:
        """Write the snapshot for inventory.vcenter. A write failure is logged, not raised."""
        path = self.path_for(inventory.vcenter)
        try:
            with open(path, "wb") as f:
                pickle.dump(inventory, f)
        except OSError as e:
            self.logger.error(f"Error writing cached snapshot for {inventory.vcenter}: {e}")
            return None

        size_kb = round(path.stat().st_size / 1024, 2)
        self.logger.info(f"Cached snapshot: {inventory.vcenter} ({size_kb} KB)")
        return path

    def invalidate(self, vcenter: str) -> bool:
        """Delete the snapshot for vcenter. Returns True if one existed."""
        path = self.path_for(vcenter)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as e:
            self.logger.error(f"Error deleting cached snapshot for {vcenter}: {e}")
            return False
        self.logger.info(f"Cache invalidated: {vcenter}")
        return True

    def entries(self) -> List[Dict[str, str]]:
        """Cached snapshots with size and timestamp, newest first."""
        out = []
        for path in self.cache_dir.glob(f"*{self.SUFFIX}"):
            stat = path.stat()
            out.append({
                "vcenter": path.name[: -len(self.SUFFIX)],
                "file": path.name,
                "size_kb": str(round(stat.st_size / 1024, 2)),
                "modified": datetime.fromtimestamp(stat.st_mtime).strftime("%Y-%m-%d %H:%M:%S"),
            })
        return sorted(out, key=lambda e: e["modified"], reverse=True)
