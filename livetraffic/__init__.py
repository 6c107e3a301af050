"""LiveTraffic: live aircraft positions served to ATC clients as a radar feed."""
