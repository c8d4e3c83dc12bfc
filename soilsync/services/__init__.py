"""Service layer: image acquisition, AI analysis and the demo fallback."""
