"""Engine HTTP API."""
