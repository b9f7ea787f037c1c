"""Budget-aware, resumable travel-distance enrichment for nearby geographic points."""
