"""
Persistence of run state across restarts.

This module provides file-based persistence for analyzer state and tuned
grid parameters, keyed by asset to support multiple strategy instances
sharing one file.
"""

import json
import logging
import os
from typing import Any, Optional

from gridrisk.errors import RebalanceError
from gridrisk.params import GridParameters
from gridrisk.performance import PerformanceAnalyzer
from gridrisk.tuning import DynamicGridParams, validate_tuning

logger = logging.getLogger(__name__)


class PerformanceStore:
    """
    File-based storage for performance data.

    Each entry holds the analyzer's metrics, trade records and snapshots
    as written by PerformanceAnalyzer.to_dict().
    """

    def __init__(self, file_path: str = 'db/performance.json'):
        """
        Initialize performance store.

        Args:
            file_path: Path to JSON file for storing performance data
        """
        self.file_path = file_path

    def _read_all(self) -> dict[str, Any]:
        if not os.path.exists(self.file_path):
            return {}
        try:
            with open(self.file_path, 'r') as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError):
            return {}

    def _write_all(self, all_data: dict[str, Any]) -> None:
        dir_path = os.path.dirname(self.file_path)
        if dir_path and not os.path.exists(dir_path):
            os.makedirs(dir_path)

        with open(self.file_path, 'w') as f:
            json.dump(all_data, f, indent=2)

    def load(self, asset: str) -> Optional[dict]:
        """
        Load performance data for an asset.

        Returns:
            Dict with metrics, records and snapshots or None if not found
        """
        return self._read_all().get(asset)

    def save(self, asset: str, analyzer: PerformanceAnalyzer) -> None:
        """Save the analyzer state for an asset, keeping other assets' entries."""
        all_data = self._read_all()
        all_data[asset] = analyzer.to_dict()
        self._write_all(all_data)

    def delete(self, asset: str) -> bool:
        """
        Delete stored data for an asset.

        Returns:
            True if deleted, False if not found
        """
        all_data = self._read_all()
        if asset not in all_data:
            return False

        del all_data[asset]
        self._write_all(all_data)
        return True


class TuningStore(PerformanceStore):
    """File-based storage for DynamicGridParams, keyed by asset."""

    def __init__(self, file_path: str = 'db/dynamic_grid_params.json'):
        super().__init__(file_path)

    def load_tuning(self, asset: str, params: GridParameters) -> Optional[DynamicGridParams]:
        """
        Load tuned parameters for an asset.

        Entries that are malformed or outside the envelope of `params` are
        discarded with a warning.

        Returns:
            DynamicGridParams or None if not found or discarded
        """
        data = self._read_all().get(asset)
        if data is None:
            return None
        try:
            dynamic = DynamicGridParams.from_dict(data)
            validate_tuning(dynamic, params)
        except (KeyError, TypeError, ValueError, RebalanceError) as e:
            logger.warning('Discarding stored tuning for %s: %s', asset, e)
            return None
        return dynamic

    def save_tuning(self, asset: str, dynamic: DynamicGridParams) -> None:
        """Save tuned parameters for an asset, keeping other assets' entries."""
        all_data = self._read_all()
        all_data[asset] = dynamic.to_dict()
        self._write_all(all_data)
