"""
Python client helper for the bridge's HTTP status API.
"""

import requests
from typing import Optional, Dict


class BridgeClient:
    """Client for querying the bridge server."""

    def __init__(self, base_url: str = "http://localhost:4567"):
        """
        Initialize bridge client.

        Args:
            base_url: Base URL of the bridge server
        """
        self.base_url = base_url.rstrip("/")
        self.session = requests.Session()

    def health_check(self) -> bool:
        """
        Check whether the bridge server is up.

        Returns:
            True if the server answered healthy, False otherwise
        """
        try:
            response = self.session.get(f"{self.base_url}/api/health", timeout=1.0)
            response.raise_for_status()
            return response.json().get("status") == "healthy"
        except requests.RequestException:
            return False
        except ValueError:
            # Not JSON
            return False

    def get_stats(self) -> Optional[Dict]:
        """
        Get connection and cycle counters.

        Returns:
            Stats dictionary or None if not available
        """
        try:
            response = self.session.get(f"{self.base_url}/api/stats", timeout=1.0)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.Timeout:
            return None
        except requests.RequestException:
            return None
        except ValueError:
            return None
