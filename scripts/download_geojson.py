"""
Snapshot the geoserver admin layers into data_cache/.

The dashboard serves unfiltered layer requests (the all-India state map)
from these snapshots, so the first page load skips the WFS round trip.
Run again whenever the layers change on geoserver.

Usage:
    python scripts/download_geojson.py
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from api_clients import APIClientError, GeoDataClient
from config import DATA_CACHE_DIR, GEO_LAYER_NAMES, GEOSERVER_WFS_URL


def download_layers(cache_dir: Path = DATA_CACHE_DIR) -> bool:
    """Download every admin layer and save it to the cache."""
    client = GeoDataClient(cache_dir=cache_dir)

    print(f"Geoserver: {GEOSERVER_WFS_URL}")
    print(f"Target directory: {cache_dir}\n")

    failed = []
    for idx, layer_name in enumerate(GEO_LAYER_NAMES, 1):
        print(f"[{idx}/{len(GEO_LAYER_NAMES)}] {layer_name}")
        try:
            cache_file = client.save_snapshot(layer_name)
            print(f"  ✓ Saved to: {cache_file}\n")
        except APIClientError as e:
            print(f"  ✗ Failed: {e}\n")
            failed.append(layer_name)

    if failed:
        print(f"❌ {len(failed)} layer(s) failed: {', '.join(failed)}")
        print("Check GEOSERVER_WFS_URL and that the layers are published.")
        return False

    print("🎉 All layers cached! Refresh your Streamlit app.")
    return True


if __name__ == "__main__":
    print("=" * 70)
    print("Geoserver Admin Layer Snapshot")
    print("=" * 70 + "\n")
    sys.exit(0 if download_layers() else 1)
