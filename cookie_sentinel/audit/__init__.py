"""Page discovery, capture and classification for cookie scans."""
