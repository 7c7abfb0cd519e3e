"""img2url: image upload, dedup and short-link delivery gateway."""
